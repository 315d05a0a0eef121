"""
Invoice aggregator.

Groups an entity's unbilled events under one invoice and freezes their
combined payout as ``amount_total``. Every mutation runs in a single
transaction: event rows are locked, links are written with conditional
updates and the row counts are checked, so an invoice is never left
partially linked.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.utils import timezone

from billing.exceptions import (
    EmptySelection,
    EntityMismatch,
    EventAlreadyInvoiced,
    InvoiceError,
    InvoiceLocked,
)
from billing.models import BillingEntity, Invoice, InvoiceSettings
from billing.services.payouts import ZERO, _money, compute_payout
from billing.signals import invoice_deleted
from scheduling.models import Event

logger = logging.getLogger(__name__)


def _normalize_ids(event_ids: Optional[Iterable]) -> list[int]:
    ids: list[int] = []
    for raw in event_ids or []:
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise EntityMismatch(f"Invalid event id: {raw!r}")
        if value not in ids:
            ids.append(value)
    return ids


def _get_invoice_settings_for_update(owner) -> InvoiceSettings:
    row = InvoiceSettings.objects.select_for_update().filter(owner=owner).first()
    if row:
        return row
    try:
        with transaction.atomic():
            return InvoiceSettings.objects.create(owner=owner)
    except IntegrityError:
        return InvoiceSettings.objects.select_for_update().get(owner=owner)


@transaction.atomic
def generate_invoice_number(owner, when=None) -> str:
    """
    Next ``PREFIX-YYYYMM-NNNN`` number for the owner.

    The sequence restarts every month and only moves forward: numbers of
    deleted invoices are never handed out again. Allocation holds the
    owner's InvoiceSettings row lock.
    """
    when = timezone.localtime(when or timezone.now())
    invoice_settings = _get_invoice_settings_for_update(owner)
    prefix = (invoice_settings.invoice_prefix or "INV").strip()
    stem = f"{prefix}-{when:%Y%m}-"

    highest = 0
    for number in Invoice.objects.filter(owner=owner, invoice_number__startswith=stem).values_list(
        "invoice_number", flat=True
    ):
        suffix = number[len(stem):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    period = f"{when:%Y%m}"
    issued = invoice_settings.sequence_last if invoice_settings.sequence_period == period else 0
    number = max(issued, highest) + 1

    if period >= invoice_settings.sequence_period:
        invoice_settings.sequence_period = period
        invoice_settings.sequence_last = number
        invoice_settings.save(update_fields=["sequence_period", "sequence_last", "updated_at"])
    return f"{stem}{number:04d}"


def _rate_config_for(entity: BillingEntity):
    config = entity.get_rate_config()
    if config is None:
        logger.warning("Billing entity %s has no rate config; its events pay 0", entity.pk)
    return config


def _total_for(events, config) -> Decimal:
    if config is None:
        return ZERO
    total = ZERO
    for event in events:
        total += compute_payout(event, config)
    return _money(total)


def _period_for(events) -> tuple[Optional[date], Optional[date]]:
    if not events:
        return None, None
    days = [timezone.localtime(event.start_time).date() for event in events]
    return min(days), max(days)


def _check_link_preconditions(*, events, requested_ids, entity, invoice=None) -> None:
    found = {event.id for event in events}
    missing = [event_id for event_id in requested_ids if event_id not in found]
    if missing:
        raise EntityMismatch("One or more events were not found for this owner.", event_ids=missing)

    own_invoice_id = invoice.pk if invoice is not None else None
    invoiced = [e.id for e in events if e.invoice_id is not None and e.invoice_id != own_invoice_id]
    if invoiced:
        raise EventAlreadyInvoiced(event_ids=invoiced)

    mismatched = [e.id for e in events if e.billing_entity_id != entity.pk]
    if mismatched:
        raise EntityMismatch(event_ids=mismatched)


def _link_events(*, owner, invoice: Invoice, entity: BillingEntity, event_ids: list[int]) -> int:
    if not event_ids:
        return 0
    linked = Event.objects.filter(
        owner=owner,
        id__in=event_ids,
        billing_entity=entity,
        invoice__isnull=True,
    ).update(invoice=invoice, updated_at=timezone.now())
    if linked != len(event_ids):
        # Someone linked or reassigned an event between our read and write.
        raise EventAlreadyInvoiced(
            f"Only {linked} of {len(event_ids)} events could be linked; the selection changed concurrently."
        )
    return linked


def _lock_events(owner, event_ids: list[int]) -> list[Event]:
    return list(
        Event.objects.select_for_update()
        .filter(owner=owner, id__in=event_ids)
        .order_by("start_time", "id")
    )


def create_invoice(
    owner,
    entity_id,
    event_ids,
    notes: str = "",
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
) -> Invoice:
    """
    Create an invoice for ``entity_id`` covering ``event_ids``.

    Raises EmptySelection, EntityMismatch, EventAlreadyInvoiced or
    InvalidRateConfig; on any error nothing is written.
    """
    ids = _normalize_ids(event_ids)
    if not ids:
        raise EmptySelection()

    with transaction.atomic():
        entity = BillingEntity.objects.filter(owner=owner, pk=entity_id).first()
        if entity is None:
            raise EntityMismatch("Billing entity not found.")

        events = _lock_events(owner, ids)
        _check_link_preconditions(events=events, requested_ids=ids, entity=entity)

        config = _rate_config_for(entity)
        default_start, default_end = _period_for(events)

        invoice = Invoice.objects.create(
            owner=owner,
            billing_entity=entity,
            invoice_number=generate_invoice_number(owner),
            period_start=period_start or default_start,
            period_end=period_end or default_end,
            notes=notes or "",
            amount_total=_total_for(events, config),
            currency=entity.currency,
        )
        _link_events(owner=owner, invoice=invoice, entity=entity, event_ids=[e.id for e in events])

    logger.info(
        "Created invoice %s for entity %s with %d events (total %s)",
        invoice.invoice_number,
        entity.pk,
        len(events),
        invoice.amount_total,
    )
    return invoice


def update_invoice(
    owner,
    invoice_id,
    event_ids=None,
    notes: Optional[str] = None,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
) -> Invoice:
    """
    Change an invoice's notes and/or event set and recompute its total.

    Events dropped from the set return to the unbilled pool; added events
    must satisfy the same preconditions as on creation.
    """
    with transaction.atomic():
        invoice = (
            Invoice.objects.select_for_update()
            .select_related("billing_entity")
            .get(owner=owner, pk=invoice_id)
        )
        entity = invoice.billing_entity
        events_changed = False

        if event_ids is not None:
            if not invoice.is_editable:
                raise InvoiceLocked(f"Invoice {invoice.invoice_number} is {invoice.status}; only drafts can change events.")
            ids = _normalize_ids(event_ids)
            if not ids:
                raise EmptySelection()

            current = set(Event.objects.filter(invoice=invoice).values_list("id", flat=True))
            removed = [event_id for event_id in current if event_id not in ids]
            added = [event_id for event_id in ids if event_id not in current]

            if added:
                added_events = _lock_events(owner, added)
                _check_link_preconditions(events=added_events, requested_ids=added, entity=entity, invoice=invoice)
            if removed:
                Event.objects.filter(invoice=invoice, id__in=removed).update(invoice=None, updated_at=timezone.now())
            if added:
                _link_events(owner=owner, invoice=invoice, entity=entity, event_ids=added)
            events_changed = bool(added or removed)

        if notes is not None:
            invoice.notes = notes

        linked = list(Event.objects.filter(invoice=invoice).order_by("start_time", "id"))
        invoice.amount_total = _total_for(linked, _rate_config_for(entity))

        default_start, default_end = _period_for(linked)
        if period_start is not None:
            invoice.period_start = period_start
        elif events_changed:
            invoice.period_start = default_start
        if period_end is not None:
            invoice.period_end = period_end
        elif events_changed:
            invoice.period_end = default_end

        invoice.save()

    logger.info("Updated invoice %s (total %s)", invoice.invoice_number, invoice.amount_total)
    return invoice


def delete_invoice(owner, invoice_id) -> int:
    """
    Delete an invoice and return its events to the unbilled pool.

    Events are never deleted. Returns the number of events unlinked.
    """
    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().get(owner=owner, pk=invoice_id)
        unlinked = Event.objects.filter(invoice=invoice).update(invoice=None, updated_at=timezone.now())
        payload = {
            "invoice_id": invoice.pk,
            "owner_id": invoice.owner_id,
            "invoice_number": invoice.invoice_number,
            "pdf_url": invoice.pdf_url,
        }
        invoice.delete()
        transaction.on_commit(lambda: invoice_deleted.send(sender=Invoice, **payload))

    logger.info("Deleted invoice %s and unlinked %d events", payload["invoice_number"], unlinked)
    return unlinked


def update_invoice_status(owner, invoice_id, status: str, at=None) -> Invoice:
    if status not in Invoice.Status.values:
        raise InvoiceError(f"Unknown invoice status: {status!r}")
    at = at or timezone.now()

    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().get(owner=owner, pk=invoice_id)
        invoice.status = status
        update_fields = ["status", "updated_at"]
        if status == Invoice.Status.SENT:
            invoice.sent_at = at
            update_fields.append("sent_at")
        elif status == Invoice.Status.PAID:
            invoice.paid_at = at
            update_fields.append("paid_at")
        invoice.save(update_fields=update_fields)
    return invoice


def recalculate_invoice_total(invoice: Invoice) -> Decimal:
    linked = list(Event.objects.filter(invoice=invoice))
    invoice.amount_total = _total_for(linked, _rate_config_for(invoice.billing_entity))
    invoice.save(update_fields=["amount_total", "updated_at"])
    return invoice.amount_total


def get_uninvoiced_events(owner):
    """
    Ended, unbilled events that already have a billing entity.

    Excluded events only show up when they are teacher (substitute) invoices.
    """
    return (
        Event.objects.filter(
            owner=owner,
            end_time__lt=timezone.now(),
            invoice__isnull=True,
            billing_entity__isnull=False,
        )
        .filter(Q(exclude_from_matching=False) | Q(invoice_type=Event.InvoiceType.TEACHER))
        .select_related("billing_entity")
        .order_by("-end_time", "-id")
    )


def get_uninvoiced_events_by_entity(owner) -> dict[int, list[Event]]:
    grouped: dict[int, list[Event]] = {}
    for event in get_uninvoiced_events(owner):
        grouped.setdefault(event.billing_entity_id, []).append(event)
    return grouped


def get_owner_invoices(owner):
    return (
        Invoice.objects.filter(owner=owner)
        .select_related("billing_entity")
        .annotate(event_count=Count("events"))
        .order_by("-created_at", "-id")
    )


@dataclass
class InvoiceDocument:
    """Read model consumed by the external document generator."""

    invoice_id: int
    invoice_number: str
    status: str
    currency: str
    amount_total: Decimal
    period_start: Optional[date]
    period_end: Optional[date]
    notes: str
    entity: dict
    events: list = field(default_factory=list)


def get_invoice_document(invoice: Invoice) -> InvoiceDocument:
    entity = invoice.billing_entity
    config = entity.get_rate_config()
    events = []
    for event in Event.objects.filter(invoice=invoice).order_by("start_time", "id"):
        events.append(
            {
                "id": event.pk,
                "title": event.title,
                "start_time": event.start_time,
                "location": event.location,
                "students_studio": event.students_studio,
                "students_online": event.students_online,
                "payout": compute_payout(event, config) if config is not None else ZERO,
            }
        )
    return InvoiceDocument(
        invoice_id=invoice.pk,
        invoice_number=invoice.invoice_number,
        status=invoice.status,
        currency=invoice.currency,
        amount_total=invoice.amount_total,
        period_start=invoice.period_start,
        period_end=invoice.period_end,
        notes=invoice.notes,
        entity={
            "id": entity.pk,
            "name": entity.display_name,
            "kind": entity.kind,
            "email": entity.contact_email,
            "address": entity.address,
            "iban": entity.iban,
            "bic": entity.bic,
            "tax_id": entity.tax_id,
            "vat_id": entity.vat_id,
        },
        events=events,
    )
