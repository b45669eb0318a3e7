"""
Commission Service - tier resolution for business payouts.

Effective rate, in priority order:
1. Active trial -> 0%
2. Business commission_rate_override (when within [0, 1])
3. Tier matching the rolling turnover (30 days of recognized revenue)
4. Lowest tier, then the platform default rate

The tier table is a versioned CommissionTierSchedule handed to the resolver,
so tier changes are configuration, not code.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple, List, Dict, Any
import uuid

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.business import Business
from app.models.order import Order, REVENUE_RECOGNIZED_STATUSES

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

TIER_TRIAL = "trial"
TIER_OVERRIDE = "override"
TIER_DEFAULT = "default"


class CommissionScheduleError(Exception):
    """Raised when a tier schedule violates its invariants."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


@dataclass(frozen=True)
class CommissionTier:
    """Turnover band [min_turnover, max_turnover) with its commission rate."""
    name: str
    min_turnover: Decimal
    max_turnover: Optional[Decimal]
    rate: Decimal

    def contains(self, turnover: Decimal) -> bool:
        if turnover < self.min_turnover:
            return False
        return self.max_turnover is None or turnover < self.max_turnover

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "min_turnover": self.min_turnover,
            "max_turnover": self.max_turnover,
            "rate": self.rate,
        }


class CommissionTierSchedule:
    """
    Immutable, versioned list of contiguous commission tiers.

    Bands start at zero, each band begins where the previous one ends, only
    the last band is unbounded and rates never increase with turnover.
    """

    def __init__(self, tiers: List[CommissionTier], version: str = "default"):
        self.tiers: Tuple[CommissionTier, ...] = tuple(
            sorted(tiers, key=lambda t: t.min_turnover)
        )
        self.version = version
        self._validate()

    def _validate(self) -> None:
        if not self.tiers:
            raise CommissionScheduleError("Commission schedule has no tiers")

        if self.tiers[0].min_turnover != 0:
            raise CommissionScheduleError(
                "Lowest tier must start at zero turnover",
                {"tier": self.tiers[0].name},
            )

        for tier in self.tiers:
            if not (Decimal("0") <= tier.rate <= Decimal("1")):
                raise CommissionScheduleError(
                    f"Tier {tier.name} rate {tier.rate} is outside [0, 1]",
                    {"tier": tier.name},
                )

        for lower, upper in zip(self.tiers, self.tiers[1:]):
            if lower.max_turnover is None:
                raise CommissionScheduleError(
                    f"Only the top tier may be unbounded, {lower.name} is not the top tier",
                    {"tier": lower.name},
                )
            if lower.max_turnover != upper.min_turnover:
                raise CommissionScheduleError(
                    f"Tiers {lower.name} and {upper.name} are not contiguous",
                    {"gap_from": str(lower.max_turnover), "gap_to": str(upper.min_turnover)},
                )
            if upper.rate > lower.rate:
                raise CommissionScheduleError(
                    f"Tier {upper.name} rate exceeds lower tier {lower.name}",
                    {"tier": upper.name},
                )

        if self.tiers[-1].max_turnover is not None:
            raise CommissionScheduleError(
                "Top tier must be unbounded",
                {"tier": self.tiers[-1].name},
            )

    @classmethod
    def from_config(cls, raw_tiers: List[Dict[str, Any]], version: str) -> "CommissionTierSchedule":
        """Build a schedule from settings-style dicts."""
        tiers = []
        for raw in raw_tiers:
            max_turnover = raw.get("max_turnover")
            tiers.append(CommissionTier(
                name=raw["name"],
                min_turnover=Decimal(str(raw["min_turnover"])),
                max_turnover=Decimal(str(max_turnover)) if max_turnover is not None else None,
                rate=Decimal(str(raw["rate"])),
            ))
        return cls(tiers, version=version)

    @property
    def lowest(self) -> CommissionTier:
        return self.tiers[0]

    def tier_for_turnover(self, turnover: Decimal) -> CommissionTier:
        """Find the band containing turnover, scanning from the top band down."""
        for tier in reversed(self.tiers):
            if tier.contains(turnover):
                return tier
        return self.lowest

    def next_tier(self, tier: CommissionTier) -> Optional[CommissionTier]:
        for index, candidate in enumerate(self.tiers):
            if candidate.name == tier.name:
                if index + 1 < len(self.tiers):
                    return self.tiers[index + 1]
                return None
        return None


DEFAULT_COMMISSION_TIERS = [
    {"name": "Starter", "min_turnover": 0, "max_turnover": 5000, "rate": "0.09"},
    {"name": "Growth", "min_turnover": 5000, "max_turnover": 10000, "rate": "0.08"},
    {"name": "Momentum", "min_turnover": 10000, "max_turnover": 25000, "rate": "0.07"},
    {"name": "Elite", "min_turnover": 25000, "max_turnover": None, "rate": "0.06"},
]


def load_tier_schedule() -> CommissionTierSchedule:
    """Schedule from settings, or the built-in one when none is configured."""
    raw_tiers = settings.COMMISSION_TIERS or DEFAULT_COMMISSION_TIERS
    return CommissionTierSchedule.from_config(raw_tiers, version=settings.COMMISSION_TIERS_VERSION)


def compute_split(amount: Decimal, rate: Decimal) -> Tuple[Decimal, Decimal]:
    """
    Split a settled amount into (platform_commission, business_amount).

    Commission is rounded half-up to the cent; the business gets the exact
    remainder so the two always add back to the amount.
    """
    amount = Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
    commission = (amount * Decimal(rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    return commission, amount - commission


@dataclass(frozen=True)
class CommissionQuote:
    """Rate applied to a business and how it was chosen."""
    rate: Decimal
    tier_name: str
    turnover: Optional[Decimal] = None


class CommissionResolver:
    """Read-only resolver of a business's effective commission rate."""

    def __init__(
        self,
        schedule: Optional[CommissionTierSchedule] = None,
        default_rate: Optional[Decimal] = None,
        window_days: Optional[int] = None,
    ):
        self.schedule = schedule
        self.default_rate = (
            Decimal(str(default_rate)) if default_rate is not None
            else Decimal(str(settings.PLATFORM_COMMISSION_RATE))
        )
        self.window_days = window_days if window_days is not None else settings.TURNOVER_WINDOW_DAYS

    async def turnover_for_business(
        self,
        db: AsyncSession,
        business_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """Sum of recognized order totals inside the rolling window."""
        now = now or datetime.now(timezone.utc)
        window_start = now - timedelta(days=self.window_days)

        result = await db.execute(
            select(func.coalesce(func.sum(Order.total_amount), 0))
            .where(
                Order.business_id == business_id,
                Order.status.in_([s.value for s in REVENUE_RECOGNIZED_STATUSES]),
                Order.created_at >= window_start,
            )
        )
        return Decimal(str(result.scalar() or 0)).quantize(CENT)

    def quote_for_turnover(self, turnover: Decimal) -> CommissionQuote:
        if self.schedule is None:
            logger.warning(f"No commission schedule loaded, using default rate {self.default_rate}")
            return CommissionQuote(rate=self.default_rate, tier_name=TIER_DEFAULT, turnover=turnover)
        tier = self.schedule.tier_for_turnover(turnover)
        return CommissionQuote(rate=tier.rate, tier_name=tier.name, turnover=turnover)

    async def resolve_rate(
        self,
        db: AsyncSession,
        business_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> CommissionQuote:
        """
        Resolve the effective commission for a business.

        Never raises for data problems: read failures fall back to the
        platform default so settlement can complete.
        """
        now = now or datetime.now(timezone.utc)

        try:
            result = await db.execute(select(Business).where(Business.id == business_id))
            business = result.scalar_one_or_none()

            if business is not None:
                if business.in_trial(now):
                    logger.info(f"Business {business_id} is in trial until {business.trial_ends_at}, using 0% commission")
                    return CommissionQuote(rate=Decimal("0"), tier_name=TIER_TRIAL)

                override = business.commission_rate_override
                if override is not None:
                    override = Decimal(str(override))
                    if Decimal("0") <= override <= Decimal("1"):
                        logger.info(f"Using commission override {override} for business {business_id}")
                        return CommissionQuote(rate=override, tier_name=TIER_OVERRIDE)
                    logger.warning(f"Ignoring out-of-range commission override {override} for business {business_id}")
            else:
                logger.warning(f"Business {business_id} not found while resolving commission")

            turnover = await self.turnover_for_business(db, business_id, now=now)
        except SQLAlchemyError as e:
            logger.error(f"Failed to resolve commission for business {business_id}, using default {self.default_rate}: {e}")
            return CommissionQuote(rate=self.default_rate, tier_name=TIER_DEFAULT)

        return self.quote_for_turnover(turnover)


def get_commission_resolver() -> CommissionResolver:
    """Resolver wired to the configured schedule."""
    try:
        schedule = load_tier_schedule()
    except (CommissionScheduleError, KeyError, ValueError, ArithmeticError) as e:
        logger.error(f"Invalid commission tier configuration, falling back to default rate: {e}")
        schedule = None
    return CommissionResolver(schedule=schedule)
