"""
Manual billing assignments: substitute teachers, human overrides and
exclusion from automatic matching.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from billing.exceptions import BillingError, EntityMismatch, EventAlreadyInvoiced
from billing.models import BillingEntity
from billing.services.matching import MatchResult, match_events
from scheduling.models import Event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TeacherRecipient:
    """Who a substitute class is billed to: another platform user or an outside teacher."""

    type: str  # "internal" or "external"
    user_id: Optional[int] = None
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    tax_id: str = ""
    vat_id: str = ""
    iban: str = ""
    bic: str = ""

    def validate(self) -> None:
        if self.type == "internal":
            if not self.user_id:
                raise BillingError("Internal recipients need a user_id.")
        elif self.type == "external":
            if not self.name or not self.email:
                raise BillingError("External recipients need a name and an email.")
        else:
            raise BillingError(f"Unknown recipient type: {self.type!r}")


def get_or_create_teacher_entity(owner, recipient: TeacherRecipient) -> BillingEntity:
    recipient.validate()
    teachers = BillingEntity.objects.filter(owner=owner, kind=BillingEntity.Kind.TEACHER)

    if recipient.type == "internal":
        existing = teachers.filter(
            recipient_type=BillingEntity.RecipientType.INTERNAL_TEACHER,
            recipient_user_id=recipient.user_id,
        ).first()
        if existing:
            return existing
        user = get_user_model().objects.filter(pk=recipient.user_id).first()
        if user is None:
            raise BillingError("Internal recipient user not found.")
        display = user.get_full_name() or user.get_username()
        return BillingEntity.objects.create(
            owner=owner,
            kind=BillingEntity.Kind.TEACHER,
            recipient_type=BillingEntity.RecipientType.INTERNAL_TEACHER,
            name=f"Teacher: {display}",
            recipient_user=user,
            recipient_name=display,
            recipient_email=user.email or "",
            notes="Substitute teacher recipient - internal",
        )

    existing = teachers.filter(
        recipient_type=BillingEntity.RecipientType.EXTERNAL_TEACHER,
        recipient_name=recipient.name,
        recipient_email__iexact=recipient.email,
    ).first()
    if existing:
        return existing
    return BillingEntity.objects.create(
        owner=owner,
        kind=BillingEntity.Kind.TEACHER,
        recipient_type=BillingEntity.RecipientType.EXTERNAL_TEACHER,
        name=f"Teacher: {recipient.name}",
        recipient_name=recipient.name,
        recipient_email=recipient.email,
        recipient_phone=recipient.phone,
        address=recipient.address,
        tax_id=recipient.tax_id,
        vat_id=recipient.vat_id,
        iban=recipient.iban,
        bic=recipient.bic,
        notes="Substitute teacher recipient - external",
    )


def _lock_event(event: Event) -> Event:
    locked = Event.objects.select_for_update().get(pk=event.pk)
    if locked.invoice_id is not None:
        raise EventAlreadyInvoiced("Invoiced events cannot change their billing entity.", event_ids=[locked.pk])
    return locked


@transaction.atomic
def assign_substitute(event: Event, entity: BillingEntity, notes: str = "") -> Event:
    """Bill ``event`` to a teacher entity; matching will leave it alone from now on."""
    if entity.owner_id != event.owner_id:
        raise EntityMismatch("Billing entity belongs to another owner.")
    event = _lock_event(event)
    event.billing_entity = entity
    event.manually_assigned = True
    event.exclude_from_matching = True
    event.invoice_type = Event.InvoiceType.TEACHER
    event.substitute_notes = notes or ""
    event.save(
        update_fields=[
            "billing_entity",
            "manually_assigned",
            "exclude_from_matching",
            "invoice_type",
            "substitute_notes",
            "updated_at",
        ]
    )
    logger.info("Event %s assigned to substitute entity %s", event.pk, entity.pk)
    return event


@transaction.atomic
def assign_entity_manually(event: Event, entity: Optional[BillingEntity]) -> Event:
    """Human override of the matcher. ``None`` clears the assignment and re-opens matching."""
    if entity is not None and entity.owner_id != event.owner_id:
        raise EntityMismatch("Billing entity belongs to another owner.")
    event = _lock_event(event)
    event.billing_entity = entity
    event.manually_assigned = entity is not None
    event.save(update_fields=["billing_entity", "manually_assigned", "updated_at"])
    return event


def revert_to_studio_invoicing(owner, event_ids: Sequence[int]) -> tuple[int, MatchResult]:
    """Undo substitute/manual assignments and let the matcher pick a studio again."""
    ids = [int(event_id) for event_id in event_ids or []]
    if not ids:
        return 0, MatchResult()

    with transaction.atomic():
        reverted = Event.objects.filter(owner=owner, id__in=ids, invoice__isnull=True).update(
            invoice_type=Event.InvoiceType.STUDIO,
            substitute_notes="",
            billing_entity=None,
            manually_assigned=False,
            exclude_from_matching=False,
            updated_at=timezone.now(),
        )
    if reverted != len(ids):
        logger.info("Reverted %d of %d events; the rest are invoiced or unknown", reverted, len(ids))
    return reverted, match_events(owner)


@transaction.atomic
def set_event_exclusion(event: Event, excluded: bool = True) -> Event:
    event = Event.objects.select_for_update().get(pk=event.pk)
    event.exclude_from_matching = excluded
    event.save(update_fields=["exclude_from_matching", "updated_at"])
    return event


def toggle_event_exclusion(event: Event) -> bool:
    event = set_event_exclusion(event, not event.exclude_from_matching)
    return event.exclude_from_matching


def get_excluded_events(owner):
    return Event.objects.filter(
        owner=owner,
        end_time__lt=timezone.now(),
        invoice__isnull=True,
        exclude_from_matching=True,
    ).exclude(invoice_type=Event.InvoiceType.TEACHER).order_by("-end_time", "-id")
