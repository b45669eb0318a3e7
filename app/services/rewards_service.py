"""
Rewards Service - loyalty points ledger.

Balance mutations are single conditional statements; every mutation also
appends an immutable points_transactions row. The ledger is the system of
record and user_points is a cache that audit_balance() checks against it.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Dict

from sqlalchemy import select, update, func, case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.rewards import PointsAccount, PointsTransaction, PointsTransactionType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class InsufficientBalanceError(Exception):
    """Raised when a redemption exceeds the available balance."""
    def __init__(self, message: str, available: Decimal, requested: Decimal):
        self.message = message
        self.available = available
        self.requested = requested
        self.details = {"available": str(available), "requested": str(requested)}
        super().__init__(self.message)


@dataclass
class PointsSummary:
    balance: Decimal
    total_earned: Decimal
    total_redeemed: Decimal


@dataclass
class LedgerAudit:
    """Comparison of the cached balance with the ledger."""
    user_id: uuid.UUID
    balance: Decimal
    total_earned: Decimal
    total_redeemed: Decimal
    ledger_earned: Decimal
    ledger_redeemed: Decimal

    @property
    def ledger_balance(self) -> Decimal:
        return self.ledger_earned - self.ledger_redeemed

    @property
    def is_consistent(self) -> bool:
        return (
            self.balance == self.total_earned - self.total_redeemed
            and self.total_earned == self.ledger_earned
            and self.total_redeemed == self.ledger_redeemed
        )


def _to_points(amount) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


class RewardsService:
    """Cashback and redemption against the points ledger."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _upsert_statement(self, user_id: uuid.UUID, amount: Decimal):
        dialect = self.db.get_bind().dialect.name
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        now = datetime.now(timezone.utc)

        stmt = insert_fn(PointsAccount).values(
            user_id=user_id,
            balance=amount,
            total_earned=amount,
            total_redeemed=Decimal("0.00"),
            created_at=now,
            updated_at=now,
        )
        return stmt.on_conflict_do_update(
            index_elements=[PointsAccount.user_id],
            set_={
                "balance": PointsAccount.balance + amount,
                "total_earned": PointsAccount.total_earned + amount,
                "updated_at": now,
            },
        )

    async def earn(
        self,
        user_id: uuid.UUID,
        order_id: Optional[uuid.UUID],
        amount: Decimal,
        description: Optional[str] = None,
    ) -> Decimal:
        """Credit points, creating the account on first use."""
        amount = _to_points(amount)
        if amount <= 0:
            raise ValueError(f"Points to earn must be positive, got {amount}")

        await self.db.execute(self._upsert_statement(user_id, amount))
        self.db.add(PointsTransaction(
            user_id=user_id,
            order_id=order_id,
            transaction_type=PointsTransactionType.EARNED.value,
            amount=amount,
            description=description or f"Cashback on order {order_id}",
        ))
        await self.db.flush()

        logger.info(f"Awarded {amount} points to user {user_id} for order {order_id}")
        return amount

    async def redeem(
        self,
        user_id: uuid.UUID,
        order_id: Optional[uuid.UUID],
        amount: Decimal,
    ) -> Decimal:
        """
        Debit points if the balance covers them.

        Raises InsufficientBalanceError otherwise (including when the user
        has no points account yet).
        """
        amount = _to_points(amount)
        if amount <= 0:
            raise ValueError(f"Points to redeem must be positive, got {amount}")

        result = await self.db.execute(
            update(PointsAccount)
            .where(PointsAccount.user_id == user_id, PointsAccount.balance >= amount)
            .values(
                balance=PointsAccount.balance - amount,
                total_redeemed=PointsAccount.total_redeemed + amount,
                updated_at=datetime.now(timezone.utc),
            )
            .returning(PointsAccount.balance)
            .execution_options(synchronize_session=False)
        )
        new_balance = result.scalar_one_or_none()

        if new_balance is None:
            current = await self.db.execute(
                select(PointsAccount.balance).where(PointsAccount.user_id == user_id)
            )
            available = current.scalar_one_or_none()
            if available is None:
                raise InsufficientBalanceError(
                    f"User {user_id} has no points account",
                    available=Decimal("0.00"),
                    requested=amount,
                )
            raise InsufficientBalanceError(
                f"Insufficient points balance. Available: {available}, Requested: {amount}",
                available=Decimal(str(available)),
                requested=amount,
            )

        self.db.add(PointsTransaction(
            user_id=user_id,
            order_id=order_id,
            transaction_type=PointsTransactionType.REDEEMED.value,
            amount=amount,
            description=f"Points redeemed for order {order_id}",
        ))
        await self.db.flush()

        logger.info(f"Deducted {amount} points for user {user_id}. New balance: {new_balance}")
        return amount

    async def get_points(self, user_id: uuid.UUID) -> PointsSummary:
        result = await self.db.execute(
            select(PointsAccount)
            .where(PointsAccount.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        account = result.scalar_one_or_none()
        if account is None:
            zero = Decimal("0.00")
            return PointsSummary(balance=zero, total_earned=zero, total_redeemed=zero)
        return PointsSummary(
            balance=account.balance,
            total_earned=account.total_earned,
            total_redeemed=account.total_redeemed,
        )

    async def list_transactions(self, user_id: uuid.UUID, limit: int = 100) -> List[PointsTransaction]:
        result = await self.db.execute(
            select(PointsTransaction)
            .where(PointsTransaction.user_id == user_id)
            .order_by(PointsTransaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _ledger_totals(self, user_id: uuid.UUID) -> Dict[str, Decimal]:
        earned_type = PointsTransactionType.EARNED.value
        redeemed_type = PointsTransactionType.REDEEMED.value
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(case(
                    (PointsTransaction.transaction_type == earned_type, PointsTransaction.amount),
                    else_=0,
                )), 0),
                func.coalesce(func.sum(case(
                    (PointsTransaction.transaction_type == redeemed_type, PointsTransaction.amount),
                    else_=0,
                )), 0),
            ).where(PointsTransaction.user_id == user_id)
        )
        earned, redeemed = result.one()
        return {"earned": _to_points(earned), "redeemed": _to_points(redeemed)}

    async def audit_balance(self, user_id: uuid.UUID) -> LedgerAudit:
        """Recompute the balance from the ledger and compare with the account."""
        summary = await self.get_points(user_id)
        totals = await self._ledger_totals(user_id)
        audit = LedgerAudit(
            user_id=user_id,
            balance=_to_points(summary.balance),
            total_earned=_to_points(summary.total_earned),
            total_redeemed=_to_points(summary.total_redeemed),
            ledger_earned=totals["earned"],
            ledger_redeemed=totals["redeemed"],
        )
        if not audit.is_consistent:
            logger.error(
                f"Points ledger mismatch for user {user_id}: balance={audit.balance}, "
                f"earned={audit.total_earned}/{audit.ledger_earned}, "
                f"redeemed={audit.total_redeemed}/{audit.ledger_redeemed}"
            )
        return audit
