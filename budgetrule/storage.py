from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Callable, Iterator, Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from budgetrule.budget_config import Configuration
from budgetrule.budget_engine import Transaction
from budgetrule.errors import PersistenceError

logger = logging.getLogger(__name__)

metadata = MetaData()

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(128), nullable=False, index=True),
    Column("date", Date, nullable=False),
    Column("description", String(500), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("type", String(20), nullable=False),
    Column("category", String(20), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

budget_configurations = Table(
    "budget_configurations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(128), nullable=False),
    Column("needs_percentage", Numeric(5, 2), nullable=False),
    Column("wants_percentage", Numeric(5, 2), nullable=False),
    Column("savings_percentage", Numeric(5, 2), nullable=False),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("owner_id", name="uq_budget_configurations_owner"),
)

CONFIGURATION_FIELDS = ("needs_percentage", "wants_percentage", "savings_percentage")


class TransactionStore:
    """Owner-scoped access to transactions and budget configuration."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_schema(self) -> None:
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            logger.exception("Failed to create schema")
            raise PersistenceError("Failed to initialise storage.") from exc

    def create_transaction(self, owner_id: str, data: Transaction) -> int:
        stmt = (
            insert(transactions)
            .values(
                owner_id=owner_id,
                date=data.date,
                description=data.description,
                amount=data.amount,
                type=data.type,
                category=data.category,
            )
            .returning(transactions.c.id)
        )
        try:
            with self.engine.begin() as conn:
                transaction_id = conn.execute(stmt).scalar_one()
        except SQLAlchemyError as exc:
            logger.exception("Failed to create transaction for %s", owner_id)
            raise PersistenceError("Failed to create transaction.") from exc
        return int(transaction_id)

    def list_transactions(self, owner_id: str) -> list[Transaction]:
        stmt = (
            select(transactions)
            .where(transactions.c.owner_id == owner_id)
            .order_by(transactions.c.date.desc(), transactions.c.id.desc())
        )
        try:
            with self.engine.begin() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            logger.exception("Failed to list transactions for %s", owner_id)
            raise PersistenceError("Failed to load transactions.") from exc
        return [_row_to_transaction(row) for row in rows]

    def watch_transactions(
        self,
        owner_id: str,
        poll_interval: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Iterator[list[Transaction]]:
        """Yield the owner's transactions now and again after every change.

        The generator never ends on its own; callers stop iterating when
        they are done.
        """
        last_ids: Optional[frozenset[int]] = None
        while True:
            snapshot = self.list_transactions(owner_id)
            ids = frozenset(txn.id for txn in snapshot)
            if ids != last_ids:
                last_ids = ids
                yield snapshot
            sleep(poll_interval)

    def get_configuration(self, owner_id: str) -> Optional[Configuration]:
        stmt = select(budget_configurations).where(
            budget_configurations.c.owner_id == owner_id
        )
        try:
            with self.engine.begin() as conn:
                row = conn.execute(stmt).mappings().first()
        except SQLAlchemyError as exc:
            logger.exception("Failed to load configuration for %s", owner_id)
            raise PersistenceError("Failed to load budget configuration.") from exc
        if not row:
            return None
        return Configuration(
            needs_percentage=_coerce_decimal(row["needs_percentage"]),
            wants_percentage=_coerce_decimal(row["wants_percentage"]),
            savings_percentage=_coerce_decimal(row["savings_percentage"]),
        )

    def set_configuration(self, owner_id: str, configuration: Configuration) -> None:
        values = {
            name: value
            for name, value in configuration.as_dict().items()
            if value is not None
        }
        try:
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(budget_configurations.c.id).where(
                        budget_configurations.c.owner_id == owner_id
                    )
                ).first()
                if existing:
                    conn.execute(
                        update(budget_configurations)
                        .where(budget_configurations.c.owner_id == owner_id)
                        .values(**values, updated_at=func.now())
                    )
                else:
                    conn.execute(
                        insert(budget_configurations).values(owner_id=owner_id, **values)
                    )
        except SQLAlchemyError as exc:
            logger.exception("Failed to save configuration for %s", owner_id)
            raise PersistenceError("Failed to save budget configuration.") from exc


def _row_to_transaction(row) -> Transaction:
    return Transaction(
        id=row["id"],
        owner_id=row["owner_id"],
        date=row["date"],
        description=row["description"],
        amount=_coerce_decimal(row["amount"]),
        type=row["type"],
        category=row["category"],
    )


def _coerce_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))
