import uuid

from sqlalchemy import select

from app.database import async_session_factory
from app.models import OutboxEvent, OutboxEventType, OutboxStatus
from app.services.notification_service import (
    NotificationDeliveryError,
    NotificationDispatcher,
    NotificationRecipient,
    NotificationSender,
    NotificationType,
)


class RecordingSender(NotificationSender):
    def __init__(self, fail: bool = False):
        super().__init__(webhook_url="")
        self.fail = fail
        self.sent = []

    async def send(self, notification_type, recipient, payload):
        if self.fail:
            raise NotificationDeliveryError("collaborator unavailable")
        self.sent.append((notification_type, recipient, payload["order_number"]))


async def add_event(db, order_number: str = "ORD-1") -> OutboxEvent:
    event = OutboxEvent(
        event_type=OutboxEventType.ORDER_FINALIZED.value,
        aggregate_id=uuid.uuid4(),
        payload={"order_number": order_number, "customer": {}, "business": {}, "items": []},
        status=OutboxStatus.PENDING.value,
    )
    db.add(event)
    await db.commit()
    return event


async def load_events():
    async with async_session_factory() as session:
        return (await session.execute(select(OutboxEvent))).scalars().all()


async def test_delivers_to_customer_and_business(db):
    await add_event(db, "ORD-100")
    sender = RecordingSender()

    async with async_session_factory() as session:
        stats = await NotificationDispatcher(session, sender=sender).dispatch_pending()

    assert stats["sent"] == 1
    assert sender.sent == [
        (NotificationType.ORDER_CONFIRMED, NotificationRecipient.CUSTOMER, "ORD-100"),
        (NotificationType.NEW_ORDER_ALERT, NotificationRecipient.BUSINESS, "ORD-100"),
    ]
    [event] = await load_events()
    assert event.status == OutboxStatus.SENT.value
    assert event.attempts == 1
    assert event.dispatched_at is not None


async def test_failed_delivery_is_retried_then_marked_failed(db):
    await add_event(db)
    sender = RecordingSender(fail=True)

    for _ in range(2):
        async with async_session_factory() as session:
            await NotificationDispatcher(session, sender=sender, max_attempts=3).dispatch_pending()

    [event] = await load_events()
    assert event.status == OutboxStatus.PENDING.value
    assert event.attempts == 2
    assert event.last_error == "collaborator unavailable"

    async with async_session_factory() as session:
        stats = await NotificationDispatcher(session, sender=sender, max_attempts=3).dispatch_pending()

    assert stats["failed"] == 1
    [event] = await load_events()
    assert event.status == OutboxStatus.FAILED.value


async def test_sent_events_are_not_redelivered(db):
    await add_event(db)
    sender = RecordingSender()

    async with async_session_factory() as session:
        await NotificationDispatcher(session, sender=sender).dispatch_pending()
    async with async_session_factory() as session:
        stats = await NotificationDispatcher(session, sender=sender).dispatch_pending()

    assert stats["processed"] == 0
    assert len(sender.sent) == 2


async def test_sender_without_url_only_logs(caplog):
    sender = NotificationSender(webhook_url="")

    with caplog.at_level("INFO"):
        await sender.send(NotificationType.ORDER_CONFIRMED, NotificationRecipient.CUSTOMER, {"order_number": "ORD-7"})

    assert "ORD-7" in caplog.text
