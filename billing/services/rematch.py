"""
Rematch existing events against the current tag rules and location patterns
without re-fetching source calendars.

Manual assignments, invoiced events and events excluded from matching keep
their billing entity. Writes are conditional on the values that were read,
so a concurrent change turns into a skipped row rather than an overwrite,
and a second run with unchanged configuration writes nothing.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Optional, Sequence

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from billing.services.matching import find_entity_for_location, ordered_matchable_entities
from scheduling.models import Event
from scheduling.services.tagging import load_tag_context, tags_for_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RematchScope:
    feed_id: Optional[int] = None
    event_ids: Optional[tuple] = None

    @classmethod
    def all(cls) -> "RematchScope":
        return cls()

    @classmethod
    def feed(cls, feed_id: int) -> "RematchScope":
        return cls(feed_id=feed_id)

    @classmethod
    def events(cls, event_ids: Sequence[int]) -> "RematchScope":
        return cls(event_ids=tuple(int(event_id) for event_id in event_ids))

    def apply(self, queryset):
        if self.feed_id is not None:
            queryset = queryset.filter(feed_id=self.feed_id)
        if self.event_ids is not None:
            queryset = queryset.filter(id__in=self.event_ids)
        return queryset


@dataclass
class RematchResult:
    total_processed: int = 0
    updated_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    updated_event_ids: list = field(default_factory=list)

    @property
    def message(self) -> str:
        if not self.total_processed:
            return "No events found to rematch"
        return f"Successfully rematched {self.updated_count} out of {self.total_processed} events"

    def as_dict(self) -> dict:
        data = asdict(self)
        data["message"] = self.message
        return data


def _entity_locked(event: Event) -> bool:
    return event.manually_assigned or event.invoice_id is not None or event.exclude_from_matching


def _write_event(event: Event, updates: dict) -> bool:
    """Conditional update guarded on the values read; False when the row moved on."""
    guard = {
        "pk": event.pk,
        "owner_id": event.owner_id,
        "billing_entity_id": event.billing_entity_id,
    }
    if "billing_entity_id" in updates:
        guard.update(manually_assigned=False, invoice__isnull=True, exclude_from_matching=False)
    updates = dict(updates, updated_at=timezone.now())
    return Event.objects.filter(**guard).update(**updates) == 1


def rematch_events(
    owner,
    scope: Optional[RematchScope] = None,
    rematch_tags: bool = True,
    rematch_entities: bool = True,
    batch_size: Optional[int] = None,
) -> RematchResult:
    scope = scope or RematchScope.all()
    batch_size = max(int(batch_size or getattr(settings, "BILLING_REMATCH_BATCH_SIZE", 100)), 1)

    events = list(scope.apply(Event.objects.filter(owner=owner)).order_by("id"))
    result = RematchResult(total_processed=len(events))
    if not events:
        return result

    tag_context = load_tag_context(owner) if rematch_tags else None
    entities = ordered_matchable_entities(owner) if rematch_entities else []

    for start in range(0, len(events), batch_size):
        batch = events[start:start + batch_size]
        for event in batch:
            updates: dict = {}

            if tag_context is not None and not tag_context.is_empty:
                new_tags = tags_for_event(event, tag_context)
                if new_tags != list(event.tags or []):
                    updates["tags"] = new_tags

            if rematch_entities and entities and not _entity_locked(event):
                match = find_entity_for_location(event.location, entities)
                new_entity_id = match.pk if match else None
                if new_entity_id != event.billing_entity_id:
                    updates["billing_entity_id"] = new_entity_id

            if not updates:
                continue

            try:
                with transaction.atomic():
                    written = _write_event(event, updates)
            except DatabaseError as exc:
                logger.error("Failed to rematch event %s: %s", event.pk, exc)
                result.failed_count += 1
                continue

            if written:
                result.updated_count += 1
                result.updated_event_ids.append(event.pk)
                if "billing_entity_id" in updates:
                    logger.debug(
                        "Event %s moved from entity %s to %s",
                        event.pk,
                        event.billing_entity_id,
                        updates["billing_entity_id"],
                    )
            else:
                logger.info("Event %s changed concurrently; rematch skipped it", event.pk)
                result.skipped_count += 1

        logger.debug("Processed rematch batch %d for owner %s", start // batch_size + 1, owner.pk)

    logger.info(
        "Rematch for owner %s: %d/%d events updated (%d failed, %d skipped)",
        owner.pk,
        result.updated_count,
        result.total_processed,
        result.failed_count,
        result.skipped_count,
    )
    return result


def rematch_user_tags(owner) -> RematchResult:
    return rematch_events(owner, RematchScope.all(), rematch_tags=True, rematch_entities=False)


def rematch_user_entities(owner) -> RematchResult:
    return rematch_events(owner, RematchScope.all(), rematch_tags=False, rematch_entities=True)


def rematch_specific_events(owner, event_ids: Sequence[int]) -> RematchResult:
    return rematch_events(owner, RematchScope.events(event_ids))


def rematch_feed_events(owner, feed_id: int) -> RematchResult:
    return rematch_events(owner, RematchScope.feed(feed_id))
