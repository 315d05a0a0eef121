from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models


def _default_currency() -> str:
    return getattr(settings, "BILLING_DEFAULT_CURRENCY", "EUR")


def _default_invoice_prefix() -> str:
    return getattr(settings, "BILLING_INVOICE_PREFIX", "INV")


def normalize_location_patterns(patterns) -> list[str]:
    """Trim, drop blanks and de-duplicate (case-insensitively) while keeping order."""
    if not patterns:
        return []
    if isinstance(patterns, str):
        patterns = [patterns]
    seen: set[str] = set()
    result: list[str] = []
    for raw in patterns:
        pattern = str(raw or "").strip()
        key = pattern.casefold()
        if not pattern or key in seen:
            continue
        seen.add(key)
        result.append(pattern)
    return result


class BillingEntity(models.Model):
    """
    A studio or teacher that classes are billed against.

    ``location_match`` patterns drive automatic matching; ``match_priority``
    (lower first) decides which entity claims an event when patterns of
    several entities match the same location.
    """

    class Kind(models.TextChoices):
        STUDIO = "studio", "Studio"
        TEACHER = "teacher", "Teacher"

    class RecipientType(models.TextChoices):
        STUDIO = "studio", "Studio"
        INTERNAL_TEACHER = "internal_teacher", "Internal teacher"
        EXTERNAL_TEACHER = "external_teacher", "External teacher"

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="billing_entities",
    )
    kind = models.CharField(max_length=16, choices=Kind.choices, default=Kind.STUDIO, db_index=True)
    recipient_type = models.CharField(
        max_length=20,
        choices=RecipientType.choices,
        default=RecipientType.STUDIO,
    )
    name = models.CharField(max_length=255)
    location_match = models.JSONField(default=list, blank=True)
    match_priority = models.IntegerField(
        default=100,
        help_text="Lower values are matched first when several entities share a location pattern.",
    )
    rate_config = models.JSONField(null=True, blank=True)
    currency = models.CharField(max_length=3, default=_default_currency)

    recipient_name = models.CharField(max_length=255, blank=True, default="")
    recipient_email = models.EmailField(max_length=255, blank=True, default="")
    recipient_phone = models.CharField(max_length=50, blank=True, default="")
    address = models.TextField(blank=True, default="")
    recipient_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="billed_as_teacher",
    )
    iban = models.CharField(max_length=34, blank=True, default="")
    bic = models.CharField(max_length=11, blank=True, default="")
    tax_id = models.CharField(max_length=50, blank=True, default="")
    vat_id = models.CharField(max_length=50, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["match_priority", "created_at", "id"]
        indexes = [
            models.Index(fields=["owner", "kind"], name="bill_entity_owner_kind_idx"),
        ]

    def __str__(self) -> str:
        return self.display_name

    @property
    def display_name(self) -> str:
        return self.recipient_name or self.name

    @property
    def contact_email(self) -> str:
        return self.recipient_email

    def clean(self):
        super().clean()
        from billing.exceptions import RateConfigValidationError
        from billing.rate_config import dump_rate_config, validate_rate_config

        self.location_match = normalize_location_patterns(self.location_match)
        if self.rate_config:
            try:
                self.rate_config = dump_rate_config(validate_rate_config(self.rate_config))
            except RateConfigValidationError as exc:
                raise ValidationError({"rate_config": [str(exc)]})

    def save(self, *args, **kwargs):
        self.location_match = normalize_location_patterns(self.location_match)
        super().save(*args, **kwargs)

    def get_rate_config(self):
        """Typed rate config, or None when the entity has none configured."""
        from billing.rate_config import parse_rate_config

        if not self.rate_config:
            return None
        return parse_rate_config(self.rate_config)


class InvoiceSettings(models.Model):
    owner = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="invoice_settings",
    )
    invoice_prefix = models.CharField(max_length=20, default=_default_invoice_prefix)
    currency = models.CharField(max_length=3, default=_default_currency)
    sequence_period = models.CharField(max_length=6, blank=True, default="", help_text="YYYYMM of the last number issued.")
    sequence_last = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Invoice settings"
        verbose_name_plural = "Invoice settings"

    def __str__(self) -> str:
        return f"Invoice settings ({self.owner_id})"


class Invoice(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        SENT = "sent", "Sent"
        PAID = "paid", "Paid"
        OVERDUE = "overdue", "Overdue"
        CANCELLED = "cancelled", "Cancelled"

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="class_invoices",
    )
    billing_entity = models.ForeignKey(
        BillingEntity,
        on_delete=models.PROTECT,
        related_name="invoices",
    )
    invoice_number = models.CharField(max_length=50)
    period_start = models.DateField(null=True, blank=True)
    period_end = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    amount_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default=_default_currency)
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.DRAFT, db_index=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    pdf_url = models.URLField(max_length=1024, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["owner", "invoice_number"],
                name="uniq_class_invoice_number_per_owner",
            )
        ]

    def __str__(self) -> str:
        return self.invoice_number

    @property
    def is_editable(self) -> bool:
        return self.status == self.Status.DRAFT
