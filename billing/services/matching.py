"""
Location matcher.

Assigns unassigned events to billing entities by comparing the event
location against each entity's ``location_match`` patterns (case-insensitive
substring). Entities are visited in a caller-visible order
(``match_priority``, then creation order); the first entity to claim an event
keeps it.

Claims are conditional bulk updates: a row is only written while it is still
unassigned, unlinked and not manually assigned, so a concurrent matcher or
invoice run degrades to a no-op instead of a double assignment.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Iterable, List, Optional, Sequence

from django.db import DatabaseError, transaction
from django.utils import timezone

from billing.exceptions import MatchConflict
from billing.models import BillingEntity, normalize_location_patterns
from scheduling.models import Event

logger = logging.getLogger(__name__)


@dataclass
class EntityMatch:
    entity_id: int
    entity_name: str
    attempted: int = 0
    matched: int = 0
    conflicts: int = 0
    failed: bool = False


@dataclass
class MatchResult:
    matched_count: int = 0
    per_entity: List[EntityMatch] = field(default_factory=list)
    failed_patterns: List[dict] = field(default_factory=list)

    def count_for(self, entity_id: int) -> int:
        for entry in self.per_entity:
            if entry.entity_id == entity_id:
                return entry.matched
        return 0

    def as_dict(self) -> dict:
        return {
            "matched_count": self.matched_count,
            "per_entity": [asdict(entry) for entry in self.per_entity],
            "failed_patterns": list(self.failed_patterns),
        }


def matchable_events(owner):
    """Events the matcher may claim: unassigned, unbilled, not manual, not excluded."""
    return Event.objects.filter(
        owner=owner,
        billing_entity__isnull=True,
        invoice__isnull=True,
        manually_assigned=False,
        exclude_from_matching=False,
    )


def ordered_matchable_entities(owner) -> list[BillingEntity]:
    entities = BillingEntity.objects.filter(owner=owner).order_by("match_priority", "created_at", "id")
    return [entity for entity in entities if normalize_location_patterns(entity.location_match)]


def location_matches(location: str, pattern: str) -> bool:
    if not location or not pattern:
        return False
    return pattern.strip().casefold() in location.casefold()


def find_entity_for_location(location: str, entities: Sequence[BillingEntity]) -> Optional[BillingEntity]:
    """First entity, in the given order, with a pattern contained in ``location``."""
    if not location:
        return None
    for entity in entities:
        for pattern in normalize_location_patterns(entity.location_match):
            if location_matches(location, pattern):
                return entity
    return None


def _matchable_locations(owner) -> list[tuple[int, str]]:
    return list(
        matchable_events(owner)
        .exclude(location="")
        .order_by("start_time", "id")
        .values_list("id", "location")
    )


def _candidate_ids(owner, entity: BillingEntity, result: MatchResult) -> list[int]:
    # Filtered with location_matches() so matching and rematch agree on
    # non-ASCII case folding; SQLite LIKE only folds ASCII.
    patterns = normalize_location_patterns(entity.location_match)
    try:
        with transaction.atomic():
            rows = _matchable_locations(owner)
    except DatabaseError as exc:
        logger.error("Matching query failed for entity %s: %s", entity.pk, exc)
        for pattern in patterns:
            result.failed_patterns.append({"entity_id": entity.pk, "pattern": pattern, "error": str(exc)})
        return []

    ids: list[int] = []
    seen: set[int] = set()
    for pattern in patterns:
        for event_id, location in rows:
            if event_id not in seen and location_matches(location, pattern):
                seen.add(event_id)
                ids.append(event_id)
    return ids


def claim_events(owner, entity: BillingEntity, event_ids: Iterable[int]) -> int:
    """Assign ``entity`` to the events that are still claimable; returns rows written."""
    event_ids = list(event_ids)
    if not event_ids:
        return 0
    return matchable_events(owner).filter(id__in=event_ids).update(
        billing_entity=entity,
        updated_at=timezone.now(),
    )


def match_events(owner, entities: Optional[Sequence[BillingEntity]] = None) -> MatchResult:
    """
    Run one matching pass for ``owner``.

    ``entities`` overrides the default precedence; it is used exactly in the
    order given. Query failures for a pattern or an entity are logged and
    reported in the result instead of aborting the pass.
    """
    if entities is None:
        entities = ordered_matchable_entities(owner)

    result = MatchResult()
    for entity in entities:
        if entity.owner_id != owner.pk:
            logger.warning("Skipping entity %s: it does not belong to owner %s", entity.pk, owner.pk)
            continue
        if not normalize_location_patterns(entity.location_match):
            continue

        candidate_ids = _candidate_ids(owner, entity, result)
        if not candidate_ids:
            continue

        entry = EntityMatch(entity_id=entity.pk, entity_name=entity.display_name, attempted=len(candidate_ids))
        try:
            with transaction.atomic():
                entry.matched = claim_events(owner, entity, candidate_ids)
        except DatabaseError as exc:
            logger.error("Failed to assign %d events to entity %s: %s", len(candidate_ids), entity.pk, exc)
            entry.failed = True
            result.per_entity.append(entry)
            continue

        entry.conflicts = entry.attempted - entry.matched
        if entry.conflicts:
            conflict = MatchConflict(
                f"{entry.conflicts} event(s) were claimed concurrently before entity {entity.pk} could take them."
            )
            logger.info("%s", conflict)

        result.matched_count += entry.matched
        result.per_entity.append(entry)

    logger.info(
        "Matched %d events for owner %s across %d entities",
        result.matched_count,
        owner.pk,
        len(result.per_entity),
    )
    return result


def get_unmatched_events(owner):
    """Ended events that still have no billing entity and are open for matching."""
    return Event.objects.filter(
        owner=owner,
        end_time__lt=timezone.now(),
        invoice__isnull=True,
        billing_entity__isnull=True,
        exclude_from_matching=False,
    ).order_by("-end_time", "-id")


def get_event_locations(owner) -> list[str]:
    locations = (
        Event.objects.filter(owner=owner)
        .exclude(location="")
        .values_list("location", flat=True)
        .distinct()
    )
    return sorted({location.strip() for location in locations if location and location.strip()})
