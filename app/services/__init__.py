# Services module
from app.services.commission_service import CommissionResolver, CommissionTierSchedule
from app.services.inventory_service import InventoryService
from app.services.rewards_service import RewardsService
from app.services.payment_service import PaymentService
from app.services.account_service import PaymentAccountService
from app.services.settlement_service import SettlementService

# Webhooks, reconciliation and notifications
from app.services.webhook_service import WebhookService
from app.services.reconciliation_service import ReconciliationService
from app.services.notification_service import NotificationDispatcher

__all__ = [
    "CommissionResolver",
    "CommissionTierSchedule",
    "InventoryService",
    "RewardsService",
    "PaymentService",
    "PaymentAccountService",
    "SettlementService",
    # Webhooks, reconciliation and notifications
    "WebhookService",
    "ReconciliationService",
    "NotificationDispatcher",
]
