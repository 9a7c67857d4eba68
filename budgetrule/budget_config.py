from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from budgetrule.errors import ValidationError

logger = logging.getLogger(__name__)

MIN_PERCENTAGE = Decimal("0")
MAX_PERCENTAGE = Decimal("100")
REQUIRED_TOTAL = Decimal("100")
PERCENTAGE_STEP = Decimal("0.01")


@dataclass(frozen=True)
class Configuration:
    needs_percentage: Decimal
    wants_percentage: Decimal
    savings_percentage: Decimal

    def as_dict(self) -> dict[str, Decimal]:
        return {
            "needs_percentage": self.needs_percentage,
            "wants_percentage": self.wants_percentage,
            "savings_percentage": self.savings_percentage,
        }


DEFAULT_CONFIGURATION = Configuration(
    needs_percentage=Decimal("50"),
    wants_percentage=Decimal("30"),
    savings_percentage=Decimal("20"),
)


def validate_configuration(candidate: Configuration) -> Configuration:
    """Check a candidate set of target percentages.

    Every value must lie in [0, 100] and the three must add up to exactly
    100. Returns the candidate with Decimal values, or raises
    ``ValidationError`` naming the failed constraint.
    """
    values = {
        name: _coerce_percentage(name, value)
        for name, value in candidate.as_dict().items()
    }
    for name, value in values.items():
        if value < MIN_PERCENTAGE or value > MAX_PERCENTAGE:
            raise ValidationError(f"{name} must be between 0 and 100.")
        if value != value.quantize(PERCENTAGE_STEP):
            raise ValidationError(f"{name} must have at most two decimal places.")

    total = sum(values.values(), Decimal("0"))
    if total != REQUIRED_TOTAL:
        raise ValidationError(f"Percentages must sum to 100 (got {total}).")

    return Configuration(**values)


class ConfigurationService:
    """Per-owner budget targets backed by a transaction store."""

    def __init__(self, store) -> None:
        self.store = store

    def get_active(self, owner_id: str) -> Configuration:
        stored = self.store.get_configuration(owner_id)
        if stored is None:
            return DEFAULT_CONFIGURATION
        return stored

    def has_saved(self, owner_id: str) -> bool:
        return self.store.get_configuration(owner_id) is not None

    def replace(self, owner_id: str, candidate: Configuration) -> Configuration:
        try:
            validated = validate_configuration(candidate)
        except ValidationError as exc:
            logger.info("Rejected budget configuration for %s: %s", owner_id, exc)
            raise
        self.store.set_configuration(owner_id, validated)
        return validated


def _coerce_percentage(name: str, value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        coerced = value
    else:
        try:
            coerced = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValidationError(f"{name} must be a number.") from exc
    if not coerced.is_finite():
        raise ValidationError(f"{name} must be a number.")
    return coerced
