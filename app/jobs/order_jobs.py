"""
Order Processing Jobs

Background jobs for settlement recovery:
- Pending payment checks against Razorpay
"""

import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


async def check_pending_payments():
    """
    Reconcile awaiting-payment orders with Razorpay.

    Runs every PENDING_PAYMENT_CHECK_INTERVAL_MINUTES and finalizes orders
    whose captured payment never reached the webhook. Orders younger than
    PENDING_PAYMENT_MIN_AGE_MINUTES are left for the webhook.
    """
    logger.info("Starting pending payments check...")
    start_time = datetime.now(timezone.utc)

    try:
        from app.database import get_db_session
        from app.services.commission_service import get_commission_resolver
        from app.services.payment_service import PaymentService
        from app.services.reconciliation_service import ReconciliationService
        from app.services.settlement_service import SettlementService

        payment_service = PaymentService()

        async with get_db_session() as session:
            settlement = SettlementService(session, get_commission_resolver())
            service = ReconciliationService(session, settlement, payment_service)
            stats = await service.reconcile_stale_orders()

        elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(
            f"Pending payments check completed: "
            f"processed {stats['processed']}, finalized {stats['finalized']}, "
            f"errors {stats['errors']} in {elapsed:.2f}s"
        )
        return stats

    except Exception as e:
        logger.error(f"Pending payments check failed: {e}")
        raise
