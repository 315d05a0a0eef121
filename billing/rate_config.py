"""
Typed rate configuration for billing entities.

Rate configs are persisted as schemaless JSON on ``BillingEntity.rate_config``
and parsed here into one of three variants, discriminated by ``type``:

- ``flat``: a fixed base rate per class with an optional headcount bonus,
  optional studio and online penalties and a floor (``max_discount``).
- ``per_student``: a fixed per-class rate (see ``compute_payout``).
- ``tiered``: the rate of the headcount tier the class falls into.

Every variant carries the optional online bonus. Optional fields that are
absent stay ``None`` so "not configured" is distinguishable from zero.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from billing.exceptions import InvalidRateConfig, RateConfigValidationError


class _RateConfigBase(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    online_bonus_per_student: Optional[Decimal] = Field(default=None, ge=0)
    online_bonus_ceiling: Optional[int] = Field(default=None, ge=0)

    @field_validator(
        "online_bonus_per_student",
        "base_rate",
        "bonus_per_student",
        "studio_penalty_per_student",
        "online_penalty_per_student",
        "max_discount",
        "rate_per_student",
        mode="before",
        check_fields=False,
    )
    @classmethod
    def _floats_as_decimal_strings(cls, value):
        # JSON numbers arrive as floats; go through str() so 2.5 stays 2.5.
        if isinstance(value, float):
            return str(value)
        return value


class FlatRateConfig(_RateConfigBase):
    type: Literal["flat"] = "flat"
    base_rate: Decimal = Field(gt=0)
    minimum_threshold: Optional[int] = Field(default=None, ge=0)
    bonus_threshold: Optional[int] = Field(default=None, ge=0)
    bonus_per_student: Optional[Decimal] = Field(default=None, ge=0)
    studio_penalty_per_student: Optional[Decimal] = Field(default=None, ge=0)
    online_penalty_per_student: Optional[Decimal] = Field(default=None, ge=0)
    max_discount: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_thresholds(self):
        if (
            self.bonus_threshold is not None
            and self.minimum_threshold is not None
            and self.bonus_threshold <= self.minimum_threshold
        ):
            raise ValueError("bonus_threshold must be greater than minimum_threshold")
        if self.bonus_threshold is not None and self.bonus_per_student is None:
            raise ValueError("bonus_per_student is required when bonus_threshold is set")
        if self.studio_penalty_per_student is not None and self.minimum_threshold is None:
            raise ValueError("minimum_threshold is required when studio_penalty_per_student is set")
        return self


class PerStudentRateConfig(_RateConfigBase):
    type: Literal["per_student"] = "per_student"
    rate_per_student: Decimal = Field(gt=0)


class RateTier(BaseModel):
    """Inclusive headcount range ``[min, max]``; ``max=None`` means unbounded."""

    model_config = ConfigDict(frozen=True)

    min: int = Field(ge=0)
    max: Optional[int] = None
    rate: Decimal = Field(gt=0)

    @field_validator("rate", mode="before")
    @classmethod
    def _float_rate(cls, value):
        if isinstance(value, float):
            return str(value)
        return value

    @model_validator(mode="after")
    def _check_range(self):
        if self.max is not None and self.max < self.min:
            raise ValueError("tier max must be greater than or equal to min")
        return self

    def contains(self, headcount: int) -> bool:
        if headcount < self.min:
            return False
        return self.max is None or headcount <= self.max


class TieredRateConfig(_RateConfigBase):
    type: Literal["tiered"] = "tiered"
    tiers: List[RateTier] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_tiers(self):
        unbounded = [ix for ix, tier in enumerate(self.tiers) if tier.max is None]
        if len(unbounded) > 1:
            raise ValueError("only one unbounded tier is allowed")
        if unbounded and unbounded[0] != len(self.tiers) - 1:
            raise ValueError("the unbounded tier must be the last tier")
        for previous, current in zip(self.tiers, self.tiers[1:]):
            if current.min < previous.min:
                raise ValueError("tiers must be sorted ascending by min")
            if previous.max is None or current.min <= previous.max:
                raise ValueError(f"tier starting at {current.min} overlaps the previous tier")
        return self

    def tier_for(self, headcount: int) -> Optional[RateTier]:
        for tier in self.tiers:
            if tier.contains(headcount):
                return tier
        return None


RateConfig = Annotated[
    Union[FlatRateConfig, PerStudentRateConfig, TieredRateConfig],
    Field(discriminator="type"),
]

RATE_CONFIG_TYPES = (FlatRateConfig, PerStudentRateConfig, TieredRateConfig)

RATE_CONFIG_LITERALS = {"flat", "per_student", "tiered"}

_adapter = TypeAdapter(RateConfig)


def _collect_errors(exc: PydanticValidationError) -> list[dict]:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in RATE_CONFIG_LITERALS]
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append({"field": ".".join(loc), "message": message})
    return errors


def validate_rate_config(data: Any):
    """
    Validate user supplied rate config data and return the typed config.

    Raises RateConfigValidationError with field-level messages.
    """
    if isinstance(data, RATE_CONFIG_TYPES):
        data = dump_rate_config(data)
    if not isinstance(data, dict):
        raise RateConfigValidationError("Rate config must be an object.")
    if data.get("type") not in RATE_CONFIG_LITERALS:
        raise RateConfigValidationError(
            [{"field": "type", "message": "type must be one of flat, per_student, tiered"}]
        )
    try:
        return _adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise RateConfigValidationError(_collect_errors(exc)) from exc


def parse_rate_config(data: Any):
    """Parse a stored rate config. Corrupt data raises InvalidRateConfig."""
    if isinstance(data, RATE_CONFIG_TYPES):
        return data
    if not data:
        raise InvalidRateConfig("No rate config is configured.")
    try:
        return validate_rate_config(data)
    except RateConfigValidationError as exc:
        raise InvalidRateConfig(str(exc)) from exc


def _json_number(value: Decimal):
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def dump_rate_config(config) -> dict:
    """JSON-safe dict for persistence; unset optional fields are omitted."""
    raw = config.model_dump(exclude_none=True)
    if isinstance(config, TieredRateConfig):
        # An unbounded tier is stored as an explicit null max.
        raw["tiers"] = [tier.model_dump() for tier in config.tiers]
    return _jsonify(raw)


def _jsonify(value):
    if isinstance(value, Decimal):
        return _json_number(value)
    if isinstance(value, dict):
        return {k: _jsonify(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonify(v) for v in value]
    return value


def describe_rate_config(config, currency: str = "EUR") -> list[str]:
    lines: list[str] = []
    if isinstance(config, FlatRateConfig):
        lines.append(f"Base rate: {currency} {config.base_rate:.2f}")
        if config.minimum_threshold is not None:
            lines.append(f"Minimum students: {config.minimum_threshold}")
        if config.studio_penalty_per_student is not None:
            lines.append(
                f"Penalty: {currency} {config.studio_penalty_per_student:.2f} per student below minimum"
            )
        if config.online_penalty_per_student is not None:
            lines.append(f"Online penalty: {currency} {config.online_penalty_per_student:.2f} per online student")
        if config.bonus_threshold is not None:
            lines.append(
                f"Bonus: {currency} {config.bonus_per_student:.2f} per student above {config.bonus_threshold}"
            )
        if config.max_discount is not None:
            lines.append(f"Maximum discount: {currency} {config.max_discount:.2f}")
    elif isinstance(config, PerStudentRateConfig):
        lines.append(f"Rate per student: {currency} {config.rate_per_student:.2f}")
    elif isinstance(config, TieredRateConfig):
        for tier in config.tiers:
            span = f"{tier.min}-{tier.max}" if tier.max is not None else f"{tier.min}+"
            lines.append(f"{span} students: {currency} {tier.rate:.2f}")

    if config.online_bonus_per_student is not None:
        line = f"Online bonus: {currency} {config.online_bonus_per_student:.2f} per student"
        if config.online_bonus_ceiling is not None:
            line += f" (up to {config.online_bonus_ceiling})"
        lines.append(line)
    return lines
