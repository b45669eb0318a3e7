import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, PointsType


class PointsTransactionType(str, Enum):
    """Ledger entry kinds."""
    EARNED = "earned"
    REDEEMED = "redeemed"


class PointsAccount(Base):
    """
    Per-user loyalty balance.

    The balance is a cache of the ledger: balance == total_earned - total_redeemed
    == sum(earned) - sum(redeemed) over points_transactions.
    """
    __tablename__ = "user_points"
    __table_args__ = (
        CheckConstraint('balance >= 0', name='ck_user_points_balance_non_negative'),
        CheckConstraint('total_earned >= 0', name='ck_user_points_earned_non_negative'),
        CheckConstraint('total_redeemed >= 0', name='ck_user_points_redeemed_non_negative'),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )
    balance: Mapped[Decimal] = mapped_column(PointsType, default=Decimal("0.00"), nullable=False)
    total_earned: Mapped[Decimal] = mapped_column(PointsType, default=Decimal("0.00"), nullable=False)
    total_redeemed: Mapped[Decimal] = mapped_column(PointsType, default=Decimal("0.00"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<PointsAccount(user={self.user_id}, balance={self.balance})>"


class PointsTransaction(Base):
    """Append-only points ledger entry. Never updated or deleted."""
    __tablename__ = "points_transactions"
    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_points_transactions_amount_positive'),
        Index('ix_points_transactions_user_created', 'user_id', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    transaction_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="earned or redeemed"
    )
    amount: Mapped[Decimal] = mapped_column(PointsType, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<PointsTransaction(type='{self.transaction_type}', amount={self.amount})>"
