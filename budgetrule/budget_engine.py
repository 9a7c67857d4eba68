from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Iterator, Optional

from budgetrule.errors import ValidationError

ZERO = Decimal("0")

NEEDS = "Needs"
WANTS = "Wants"
SAVINGS = "Savings"
CATEGORIES = (NEEDS, WANTS, SAVINGS)

INCOME = "income"
EXPENSE = "expense"


@dataclass(frozen=True)
class Transaction:
    amount: Decimal
    type: str
    date: date
    category: str
    description: str = ""
    id: Optional[int] = None
    owner_id: Optional[str] = None


@dataclass(frozen=True)
class ChartEntry:
    category: str
    total: Decimal


@dataclass(frozen=True)
class AggregateResult:
    total_income: Decimal
    total_expenses: Decimal
    net_savings: Decimal
    needs_total: Decimal
    wants_total: Decimal
    savings_total: Decimal
    chart_data: tuple[ChartEntry, ...]


@dataclass(frozen=True)
class MonthlyCashFlow:
    month: str
    income: Decimal
    expense: Decimal


def aggregate_transactions(transactions: Iterable[Transaction]) -> AggregateResult:
    """Reduce a transaction set into 50/30/20 totals.

    Category totals only look at expenses; income is already tagged
    Savings and is folded into ``savings_total`` through the residual
    ``income - expenses`` instead. The savings figure stays signed, so a
    month where expenses exceed income reports a deficit.
    """
    items = list(transactions)
    total_income = _sum_income(items)
    total_expenses = _sum_expenses(items)
    net_savings = total_income - total_expenses

    needs_total = _sum_expenses(items, category=NEEDS)
    wants_total = _sum_expenses(items, category=WANTS)
    savings_total = _sum_expenses(items, category=SAVINGS) + net_savings

    chart_data = tuple(
        ChartEntry(category=category, total=total)
        for category, total in (
            (NEEDS, needs_total),
            (WANTS, wants_total),
            (SAVINGS, savings_total),
        )
        if total > ZERO
    )

    return AggregateResult(
        total_income=total_income,
        total_expenses=total_expenses,
        net_savings=net_savings,
        needs_total=needs_total,
        wants_total=wants_total,
        savings_total=savings_total,
        chart_data=chart_data,
    )


def filter_window(
    transactions: Iterable[Transaction],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[Transaction]:
    if start_date is not None and end_date is not None and start_date > end_date:
        raise ValidationError("start_date must be on or before end_date.")
    return [
        txn
        for txn in transactions
        if (start_date is None or txn.date >= start_date)
        and (end_date is None or txn.date <= end_date)
    ]


def aggregate_by_month(
    transactions: Iterable[Transaction],
) -> dict[str, AggregateResult]:
    grouped: dict[str, list[Transaction]] = {}
    for txn in transactions:
        grouped.setdefault(month_key(txn.date), []).append(txn)
    return {
        month: aggregate_transactions(grouped[month])
        for month in sorted(grouped)
    }


def monthly_cash_flow(transactions: Iterable[Transaction]) -> list[MonthlyCashFlow]:
    income_by_month: dict[str, Decimal] = {}
    expense_by_month: dict[str, Decimal] = {}
    for txn in transactions:
        key = month_key(txn.date)
        income_by_month.setdefault(key, ZERO)
        expense_by_month.setdefault(key, ZERO)
        txn_type = _normalize_type(txn.type)
        if txn_type == INCOME:
            income_by_month[key] += _coerce_amount(txn.amount)
        elif txn_type == EXPENSE:
            expense_by_month[key] += _coerce_amount(txn.amount)
    return [
        MonthlyCashFlow(
            month=key,
            income=income_by_month[key],
            expense=expense_by_month[key],
        )
        for key in sorted(income_by_month)
    ]


def expense_category_totals(
    transactions: Iterable[Transaction],
) -> list[ChartEntry]:
    items = list(transactions)
    return [
        ChartEntry(category=category, total=_sum_expenses(items, category=category))
        for category in CATEGORIES
    ]


def iter_aggregates(
    snapshots: Iterable[Iterable[Transaction]],
) -> Iterator[AggregateResult]:
    for snapshot in snapshots:
        yield aggregate_transactions(snapshot)


def sort_recent_first(transactions: Iterable[Transaction]) -> list[Transaction]:
    return sorted(
        transactions,
        key=lambda txn: (txn.date, txn.id if txn.id is not None else 0),
        reverse=True,
    )


def month_key(value: date) -> str:
    return value.strftime("%Y-%m")


def _sum_expenses(
    transactions: Iterable[Transaction],
    *,
    category: Optional[str] = None,
) -> Decimal:
    total = ZERO
    for txn in transactions:
        if _normalize_type(txn.type) != EXPENSE:
            continue
        if category is not None and txn.category != category:
            continue
        total += _coerce_amount(txn.amount)
    return total


def _sum_income(transactions: Iterable[Transaction]) -> Decimal:
    total = ZERO
    for txn in transactions:
        if _normalize_type(txn.type) != INCOME:
            continue
        total += _coerce_amount(txn.amount)
    return total


def _normalize_type(value: str) -> str:
    return value.strip().lower()


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
