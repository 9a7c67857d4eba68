from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from budgetrule.budget_config import Configuration
from budgetrule.budget_engine import NEEDS, WANTS, ZERO, AggregateResult

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BudgetAlert:
    category: str
    actual_percentage: Decimal
    allowed_percentage: Decimal

    @property
    def message(self) -> str:
        return (
            f"You've spent {self.actual_percentage}% of your income on "
            f"{self.category.lower()}, which is over the "
            f"{_format_percentage(self.allowed_percentage)}% recommendation."
        )


def evaluate_thresholds(
    aggregate: AggregateResult,
    configuration: Configuration,
) -> list[BudgetAlert]:
    """Compare Needs and Wants spending against the configured targets.

    Nothing is evaluated without income. Savings never raises an alert.
    """
    if aggregate.total_income <= ZERO:
        return []

    alerts: list[BudgetAlert] = []
    for category, total, allowed in (
        (NEEDS, aggregate.needs_total, configuration.needs_percentage),
        (WANTS, aggregate.wants_total, configuration.wants_percentage),
    ):
        actual = total / aggregate.total_income * HUNDRED
        allowed_value = Decimal(str(allowed))
        if actual > allowed_value:
            alerts.append(
                BudgetAlert(
                    category=category,
                    actual_percentage=actual.quantize(Decimal("1"), rounding=ROUND_HALF_UP),
                    allowed_percentage=allowed_value,
                )
            )
    return alerts


class LoggingAlertSink:
    def emit(self, alert: BudgetAlert) -> None:
        logger.warning("Budget alert (%s): %s", alert.category, alert.message)


@dataclass
class CollectingAlertSink:
    alerts: list[BudgetAlert] = field(default_factory=list)

    def emit(self, alert: BudgetAlert) -> None:
        self.alerts.append(alert)


def dispatch_alerts(alerts: Iterable[BudgetAlert], sink) -> int:
    count = 0
    for alert in alerts:
        sink.emit(alert)
        count += 1
    return count


def _format_percentage(value: Decimal) -> str:
    if value == value.to_integral_value():
        return str(value.to_integral_value())
    return str(value.normalize())
