from __future__ import annotations

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


class CalendarFeed(models.Model):
    """A connected source calendar. Events are imported into it by an external sync job."""

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="calendar_feeds",
    )
    name = models.CharField(max_length=255)
    source_url = models.URLField(max_length=1024, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self) -> str:
        return self.name


class Tag(models.Model):
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="tags",
        help_text="Empty for global tags shared by every teacher.",
    )
    name = models.CharField(max_length=100)
    slug = models.SlugField(max_length=100)

    class Meta:
        ordering = ["name", "id"]
        constraints = [
            models.UniqueConstraint(fields=["owner", "slug"], name="uniq_tag_slug_per_owner"),
        ]

    def __str__(self) -> str:
        return self.name


class TagRule(models.Model):
    """
    Automatic tagging rule.

    A rule fires when any of its keywords appears in the event title/description,
    any of its location keywords appears in the event location, or the legacy
    single keyword appears in the title/description.
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="tag_rules",
    )
    tag = models.ForeignKey(Tag, on_delete=models.CASCADE, related_name="rules")
    keywords = models.JSONField(default=list, blank=True)
    location_keywords = models.JSONField(default=list, blank=True)
    keyword = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"Rule for {self.tag}"


class Event(models.Model):
    class InvoiceType(models.TextChoices):
        STUDIO = "studio_invoice", "Studio invoice"
        TEACHER = "teacher_invoice", "Teacher invoice"

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="events",
    )
    feed = models.ForeignKey(
        CalendarFeed,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="events",
    )
    title = models.CharField(max_length=500, blank=True, default="")
    description = models.TextField(blank=True, default="")
    location = models.CharField(max_length=500, blank=True, default="")
    start_time = models.DateTimeField(db_index=True)
    end_time = models.DateTimeField(db_index=True)
    students_studio = models.PositiveIntegerField(default=0, validators=[MinValueValidator(0)])
    students_online = models.PositiveIntegerField(default=0, validators=[MinValueValidator(0)])
    tags = models.JSONField(default=list, blank=True)

    billing_entity = models.ForeignKey(
        "billing.BillingEntity",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="events",
    )
    invoice = models.ForeignKey(
        "billing.Invoice",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="events",
    )
    manually_assigned = models.BooleanField(
        default=False,
        help_text="Set when a human picked the billing entity; matching never overwrites it.",
    )
    exclude_from_matching = models.BooleanField(default=False, db_index=True)
    invoice_type = models.CharField(
        max_length=20,
        choices=InvoiceType.choices,
        default=InvoiceType.STUDIO,
    )
    substitute_notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-start_time", "-id"]
        indexes = [
            models.Index(fields=["owner", "billing_entity", "invoice"], name="sched_event_owner_ent_inv_idx"),
            models.Index(fields=["owner", "feed"], name="sched_event_owner_feed_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.title or 'Event'} @ {self.start_time:%Y-%m-%d %H:%M}"

    @property
    def is_invoiced(self) -> bool:
        return self.invoice_id is not None

    @property
    def is_matchable(self) -> bool:
        """True when automatic matching is allowed to touch this event."""
        return not (self.is_invoiced or self.manually_assigned or self.exclude_from_matching)
