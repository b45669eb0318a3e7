import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType


class OutboxEventType(str, Enum):
    ORDER_FINALIZED = "order.finalized"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class OutboxEvent(Base):
    """
    Outbound message committed in the same transaction as the state change
    that produced it, delivered later by the notification worker.
    """
    __tablename__ = "outbox_events"
    __table_args__ = (
        Index('ix_outbox_status_created', 'status', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    aggregate_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=False,
        index=True,
        comment="Order ID the event is about"
    )
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=OutboxStatus.PENDING.value,
        nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<OutboxEvent(type='{self.event_type}', status='{self.status}')>"
