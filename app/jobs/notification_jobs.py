"""
Notification Jobs

Delivers order.finalized outbox events to customers and businesses.
"""

import logging

logger = logging.getLogger(__name__)


async def dispatch_order_notifications():
    """Drain one batch of pending outbox events."""
    try:
        from app.database import get_db_session
        from app.services.notification_service import NotificationDispatcher

        async with get_db_session() as session:
            stats = await NotificationDispatcher(session).dispatch_pending()

        if stats["processed"]:
            logger.info(
                f"Order notifications: sent {stats['sent']}, retrying {stats['retrying']}, "
                f"failed {stats['failed']}"
            )
        return stats

    except Exception as e:
        logger.error(f"Order notification dispatch failed: {e}")
        raise
