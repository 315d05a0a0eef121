"""
Keyword based auto-tagging for imported events.

Rules are evaluated in creation order; the resulting slug list keeps that
order and drops duplicates, so re-tagging an unchanged event yields the
exact same list.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from django.db.models import Q

from scheduling.models import Tag, TagRule

logger = logging.getLogger(__name__)


@dataclass
class TagContext:
    rules: List[TagRule] = field(default_factory=list)
    tag_slugs: dict = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.rules


def _keywords(value) -> list[str]:
    if not value or not isinstance(value, (list, tuple)):
        return []
    return [str(k).strip().lower() for k in value if str(k).strip()]


def _rule_matches(rule: TagRule, content: str, location: str) -> bool:
    if any(keyword in content for keyword in _keywords(rule.keywords)):
        return True
    if location and any(keyword in location for keyword in _keywords(rule.location_keywords)):
        return True
    legacy = (rule.keyword or "").strip().lower()
    return bool(legacy) and legacy in content


def match_tags(content: str, location: str, rules: Iterable[TagRule], tag_slugs: dict) -> list[str]:
    content = (content or "").lower()
    location = (location or "").lower()

    slugs: list[str] = []
    for rule in rules:
        if not _rule_matches(rule, content, location):
            continue
        slug = tag_slugs.get(rule.tag_id)
        if slug and slug not in slugs:
            slugs.append(slug)
    return slugs


def tags_for_event(event, context: TagContext) -> list[str]:
    content = f"{event.title or ''} {event.description or ''}"
    return match_tags(content, event.location or "", context.rules, context.tag_slugs)


def load_tag_context(owner, rules: Optional[Iterable[TagRule]] = None) -> TagContext:
    if rules is None:
        rules = TagRule.objects.filter(owner=owner).order_by("created_at", "id")
    rules = list(rules)
    tag_ids = {rule.tag_id for rule in rules}
    tags = Tag.objects.filter(id__in=tag_ids).filter(Q(owner=owner) | Q(owner__isnull=True))
    tag_slugs = {tag.id: tag.slug for tag in tags}
    logger.debug("Loaded %d tag rules and %d tags for owner %s", len(rules), len(tag_slugs), owner.pk)
    return TagContext(rules=rules, tag_slugs=tag_slugs)
