"""
Payout calculator.

``compute_payout`` is pure: it never touches the database and never mutates
the event. Callers validate configs at the boundary (``validate_rate_config``)
and pass typed configs in; raw dicts are parsed on the way in and rejected
with ``InvalidRateConfig`` when corrupt.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import asdict, dataclass
from decimal import Decimal, ROUND_HALF_UP
from types import SimpleNamespace
from typing import Iterable

from billing.exceptions import InvalidRateConfig
from billing.rate_config import (
    RATE_CONFIG_TYPES,
    FlatRateConfig,
    PerStudentRateConfig,
    TieredRateConfig,
    parse_rate_config,
)

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")


class TierGapWarning(UserWarning):
    """A headcount fell between the configured tiers and paid nothing."""


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def _count(value) -> int:
    if value is None or value == "":
        return 0
    return max(int(value), 0)


@dataclass(frozen=True)
class PayoutBreakdown:
    base: Decimal
    bonus: Decimal
    penalty: Decimal
    online_bonus: Decimal
    floor_applied: bool
    tier_gap: bool
    total: Decimal

    def as_dict(self) -> dict:
        data = asdict(self)
        for key in ("base", "bonus", "penalty", "online_bonus", "total"):
            data[key] = str(data[key])
        return data


def _coerce_config(rate_config):
    if isinstance(rate_config, RATE_CONFIG_TYPES):
        return rate_config
    if isinstance(rate_config, dict):
        return parse_rate_config(rate_config)
    raise InvalidRateConfig(f"Unsupported rate config: {type(rate_config).__name__}")


def compute_payout_breakdown(event, rate_config) -> PayoutBreakdown:
    config = _coerce_config(rate_config)
    studio = _count(getattr(event, "students_studio", 0))
    online = _count(getattr(event, "students_online", 0))

    base = ZERO
    bonus = ZERO
    penalty = ZERO
    tier_gap = False

    if isinstance(config, FlatRateConfig):
        base = config.base_rate
        if config.bonus_threshold is not None and studio > config.bonus_threshold:
            bonus = (studio - config.bonus_threshold) * (config.bonus_per_student or ZERO)
        # Under-threshold classes only lose money when a penalty is configured.
        if (
            config.studio_penalty_per_student is not None
            and config.minimum_threshold is not None
            and studio < config.minimum_threshold
        ):
            penalty = (config.minimum_threshold - studio) * config.studio_penalty_per_student
        if config.online_penalty_per_student is not None and online:
            penalty += online * config.online_penalty_per_student
    elif isinstance(config, PerStudentRateConfig):
        base = config.rate_per_student
    elif isinstance(config, TieredRateConfig):
        tier = config.tier_for(studio)
        if tier is None:
            tier_gap = True
            message = f"No rate tier covers {studio} studio students; payout is 0."
            logger.warning("%s (event=%s)", message, getattr(event, "pk", None))
            warnings.warn(message, TierGapWarning, stacklevel=2)
        else:
            base = tier.rate
    else:  # pragma: no cover - guarded by _coerce_config
        raise InvalidRateConfig("Unknown rate config variant.")

    online_bonus = ZERO
    if config.online_bonus_per_student is not None and online:
        eligible = online
        if config.online_bonus_ceiling is not None:
            eligible = min(online, config.online_bonus_ceiling)
        online_bonus = eligible * config.online_bonus_per_student

    amount = base + bonus - penalty + online_bonus

    floor_applied = False
    if isinstance(config, FlatRateConfig) and config.max_discount is not None:
        floor = config.base_rate - config.max_discount
        if amount < floor:
            amount = floor
            floor_applied = True

    amount = max(amount, ZERO)

    return PayoutBreakdown(
        base=_money(base),
        bonus=_money(bonus),
        penalty=_money(penalty),
        online_bonus=_money(online_bonus),
        floor_applied=floor_applied,
        tier_gap=tier_gap,
        total=_money(amount),
    )


def compute_payout(event, rate_config) -> Decimal:
    """Amount owed for one class under ``rate_config`` (never negative, 2dp)."""
    return compute_payout_breakdown(event, rate_config).total


def compute_total_payout(events: Iterable, rate_config) -> Decimal:
    config = _coerce_config(rate_config)
    total = ZERO
    for event in events:
        total += compute_payout(event, config)
    return _money(total)


def payout_for_event(event, rate_config=None) -> Decimal:
    """
    Payout using the event's own billing entity when no config is passed.

    Unassigned events and entities without a rate config pay 0.
    """
    if rate_config is None:
        entity = getattr(event, "billing_entity", None)
        if entity is None or not entity.rate_config:
            return ZERO
        rate_config = entity.get_rate_config()
    return compute_payout(event, rate_config)


def preview_payout(rate_config, students_studio: int = 0, students_online: int = 0) -> PayoutBreakdown:
    headcount = SimpleNamespace(pk=None, students_studio=students_studio, students_online=students_online)
    return compute_payout_breakdown(headcount, rate_config)

