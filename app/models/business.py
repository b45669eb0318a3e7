import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, RateType


class Business(Base):
    """
    Independent business selling on the marketplace.

    Commission precedence: active trial (0%), then commission_rate_override,
    then the tier matching the rolling 30-day turnover.
    """
    __tablename__ = "businesses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    business_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    owner_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    commission_rate_override: Mapped[Optional[Decimal]] = mapped_column(
        RateType,
        nullable=True,
        comment="Takes precedence over the turnover tier when within [0, 1]"
    )
    trial_ends_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Zero commission until this instant"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    payment_account: Mapped[Optional["BusinessPaymentAccount"]] = relationship(
        "BusinessPaymentAccount",
        back_populates="business",
        uselist=False
    )

    def in_trial(self, now: Optional[datetime] = None) -> bool:
        """Check whether the zero-commission trial is still running."""
        if self.trial_ends_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        trial_ends_at = self.trial_ends_at
        if trial_ends_at.tzinfo is None:
            # SQLite drops tzinfo; stored values are UTC
            trial_ends_at = trial_ends_at.replace(tzinfo=timezone.utc)
        return now < trial_ends_at

    def __repr__(self) -> str:
        return f"<Business(name='{self.business_name}')>"


class BusinessPaymentAccount(Base):
    """
    Link between a business and its payout account at the payment processor.

    Capability flags are a cache refreshed from account webhooks.
    """
    __tablename__ = "business_payment_accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    business_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    processor_account_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        comment="Linked account ID (acc_xxx)"
    )
    account_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    charges_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    business: Mapped["Business"] = relationship("Business", back_populates="payment_account")

    def __repr__(self) -> str:
        return f"<BusinessPaymentAccount(account='{self.processor_account_id}', charges={self.charges_enabled})>"
