"""
Category Assignment Resolver

Decides the category persisted for a new transaction. A user-selected
category wins for expenses unless the caller explicitly accepted a
suggestion; income is always stored as Savings.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from budgetrule.budget_engine import CATEGORIES, EXPENSE, INCOME, SAVINGS, WANTS, Transaction
from budgetrule.errors import SuggestionUnavailable, ValidationError

logger = logging.getLogger(__name__)

AMOUNT_STEP = Decimal("0.01")


class TransactionType:
    values = {INCOME, EXPENSE}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in cls.values:
            raise ValidationError("Invalid transaction type.")
        return normalized


class BudgetCategory:
    values = {category.lower(): category for category in CATEGORIES}

    @classmethod
    def normalize(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in cls.values:
            raise ValidationError("Invalid category. Use Needs, Wants, or Savings.")
        return cls.values[normalized]


@dataclass(frozen=True)
class TransactionDraft:
    description: str
    amount: Decimal
    type: str
    date: date
    category: Optional[str] = None


@dataclass(frozen=True)
class CategorySuggestion:
    category: str
    explanation: str


def validate_draft(draft: TransactionDraft) -> TransactionDraft:
    description = _require_description(draft.description)
    amount = _require_positive_amount(draft.amount)
    txn_type = TransactionType.validate(draft.type)
    if txn_type == INCOME:
        category = SAVINGS
    else:
        category = BudgetCategory.normalize(draft.category)
    return replace(
        draft,
        description=description,
        amount=amount,
        type=txn_type,
        category=category,
    )


def resolve_category(
    draft: TransactionDraft,
    suggestion: Optional[CategorySuggestion] = None,
    accept_suggestion: bool = False,
) -> str:
    txn_type = TransactionType.validate(draft.type)
    # income is stored as Savings no matter what was selected or suggested
    if txn_type == INCOME:
        return SAVINGS
    if accept_suggestion and suggestion is not None:
        return BudgetCategory.normalize(suggestion.category)
    return BudgetCategory.normalize(draft.category)


async def request_suggestion(
    description: str,
    amount: Decimal | int | float | str,
    suggester,
) -> CategorySuggestion:
    """Ask the suggestion service for a category.

    The description and amount are checked before the service is called.
    Any service failure is reported as ``SuggestionUnavailable`` so the
    caller can keep its manual selection.
    """
    cleaned = _require_description(description)
    coerced = _require_positive_amount(amount)
    try:
        result = await suggester.suggest_category(cleaned, coerced)
    except SuggestionUnavailable as exc:
        logger.warning("Category suggestion failed: %s", exc)
        raise
    except asyncio.TimeoutError as exc:
        logger.warning("Category suggestion timed out for %r", cleaned)
        raise SuggestionUnavailable("Category suggestion timed out.") from exc
    except Exception as exc:
        logger.warning("Category suggestion failed for %r: %s", cleaned, exc)
        raise SuggestionUnavailable(f"Category suggestion failed: {exc}") from exc

    try:
        category = BudgetCategory.normalize(result.category)
        explanation = result.explanation or ""
    except (AttributeError, ValidationError) as exc:
        logger.warning("Category suggestion returned a malformed result: %r", result)
        raise SuggestionUnavailable("Category suggestion was malformed.") from exc
    return CategorySuggestion(category=category, explanation=explanation)


def submit_transaction(
    store,
    owner_id: str,
    draft: TransactionDraft,
    suggestion: Optional[CategorySuggestion] = None,
    accept_suggestion: bool = False,
) -> Transaction:
    validated = validate_draft(draft)
    category = resolve_category(validated, suggestion, accept_suggestion)
    record = Transaction(
        amount=validated.amount,
        type=validated.type,
        date=validated.date,
        category=category,
        description=validated.description,
        owner_id=owner_id,
    )
    transaction_id = store.create_transaction(owner_id, record)
    logger.info(
        "Recorded %s transaction %s for %s as %s",
        record.type,
        transaction_id,
        owner_id,
        category,
    )
    return replace(record, id=transaction_id)


class CategorySelection:
    """Category state of a transaction being edited.

    Every description edit, manual pick, or new suggestion request moves
    the generation forward. A suggestion is only applied when it carries
    the current generation, so late answers for an older description are
    dropped.
    """

    def __init__(self, category: str = WANTS, description: str = "") -> None:
        self.category = BudgetCategory.normalize(category)
        self.description = description
        self.explanation: Optional[str] = None
        self.generation = 0

    def edit_description(self, description: str) -> None:
        self.description = description
        self.explanation = None
        self.generation += 1

    def select_category(self, category: str) -> None:
        self.category = BudgetCategory.normalize(category)
        self.explanation = None
        self.generation += 1

    def begin_suggestion(self) -> int:
        self.generation += 1
        return self.generation

    def apply_suggestion(self, token: int, suggestion: CategorySuggestion) -> bool:
        if token != self.generation:
            logger.debug("Discarding stale suggestion %s (current %s)", token, self.generation)
            return False
        self.category = BudgetCategory.normalize(suggestion.category)
        self.explanation = suggestion.explanation
        return True

    async def suggest(self, amount: Decimal | int | float | str, suggester) -> bool:
        token = self.begin_suggestion()
        suggestion = await request_suggestion(self.description, amount, suggester)
        return self.apply_suggestion(token, suggestion)


def _require_description(description: str) -> str:
    cleaned = (description or "").strip()
    if not cleaned:
        raise ValidationError("Description required.")
    return cleaned


def _require_positive_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        coerced = amount
    else:
        try:
            coerced = Decimal(str(amount))
        except InvalidOperation as exc:
            raise ValidationError("Amount must be a number.") from exc
    if not coerced.is_finite() or coerced <= 0:
        raise ValidationError("Amount must be greater than zero.")
    try:
        quantized = coerced.quantize(AMOUNT_STEP)
    except InvalidOperation as exc:
        raise ValidationError("Amount is too large.") from exc
    if coerced != quantized:
        raise ValidationError("Amount must have at most two decimal places.")
    return coerced
