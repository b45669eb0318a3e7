"""
Payment Service - Razorpay Integration

Handles the processor side of settlement:
- Create Razorpay orders with the commission split (Route transfers)
- Verify webhook signatures
- Fetch payments for reconciliation
- Fetch linked accounts to refresh capability flags
"""

import logging
import hmac
import hashlib
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any, List, Tuple
import uuid

import razorpay
from pydantic import BaseModel

from app.config import settings

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Raised when a call to the payment processor fails."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# Linked account status -> (charges_enabled, payouts_enabled)
ACCOUNT_CAPABILITIES = {
    "activated": (True, True),
    "instantly_activated": (True, False),
    "activated_kyc_pending": (True, False),
}


def account_capabilities(account_status: Optional[str]) -> Tuple[bool, bool]:
    """Capability flags for a linked account status. Unknown statuses enable nothing."""
    return ACCOUNT_CAPABILITIES.get(account_status or "", (False, False))


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount (12.34) to minor units (1234)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    """Convert minor units (1234) to a major-unit amount (12.34)."""
    return (Decimal(int(amount)) / Decimal(100)).quantize(Decimal("0.01"))


class CheckoutRequest(BaseModel):
    """Everything needed to open a processor checkout for an order."""
    order_id: uuid.UUID
    business_id: uuid.UUID
    order_number: str
    amount: Decimal  # Major units
    currency: str = "GBP"
    platform_commission: Decimal
    destination_account_id: str  # Business's linked account (acc_xxx)
    customer_email: Optional[str] = None


class CheckoutResponse(BaseModel):
    """Processor order created for checkout."""
    checkout_session_id: str
    amount: int  # Minor units
    currency: str
    key_id: str
    order_id: uuid.UUID
    platform_commission: int  # Minor units
    business_amount: int  # Minor units
    transfer_id: Optional[str] = None  # trf_xxx, when Razorpay returns it


class PaymentService:
    """
    Service for handling Razorpay payments.
    """

    def __init__(self, client: Optional[razorpay.Client] = None):
        """Initialize Razorpay client."""
        self.client = client or razorpay.Client(
            auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
        )
        self.key_id = settings.RAZORPAY_KEY_ID
        self.webhook_secret = settings.RAZORPAY_WEBHOOK_SECRET

    def create_checkout(self, request: CheckoutRequest) -> CheckoutResponse:
        """
        Create a Razorpay order for an awaiting-payment order.

        The business amount is routed to the business's linked account via a
        transfer; the remainder stays with the platform as commission.
        """
        amount_minor = to_minor_units(request.amount)
        commission_minor = to_minor_units(request.platform_commission)
        business_minor = amount_minor - commission_minor

        notes = {
            "order_id": str(request.order_id),
            "business_id": str(request.business_id),
            "order_number": request.order_number,
        }
        if request.customer_email:
            notes["customer_email"] = request.customer_email

        order_data = {
            "amount": amount_minor,
            "currency": request.currency.upper(),
            "receipt": request.order_number,
            "notes": notes,
            "transfers": [
                {
                    "account": request.destination_account_id,
                    "amount": business_minor,
                    "currency": request.currency.upper(),
                    "notes": {"order_id": str(request.order_id)},
                    "on_hold": 0,
                }
            ],
        }

        try:
            razorpay_order = self.client.order.create(data=order_data)
        except Exception as e:
            logger.error(f"Failed to create Razorpay order for order {request.order_id}: {e}")
            raise PaymentGatewayError("Failed to create checkout", {"order_id": str(request.order_id)}) from e

        transfers = razorpay_order.get("transfers") or []
        transfer_id = transfers[0].get("id") if transfers else None

        logger.info(
            f"Created Razorpay order {razorpay_order['id']} "
            f"for order {request.order_id} (commission {commission_minor}, business {business_minor}, "
            f"transfer {transfer_id})"
        )

        return CheckoutResponse(
            checkout_session_id=razorpay_order["id"],
            amount=amount_minor,
            currency=request.currency.upper(),
            key_id=self.key_id,
            order_id=request.order_id,
            platform_commission=commission_minor,
            business_amount=business_minor,
            transfer_id=transfer_id,
        )

    def get_order_payments(self, checkout_session_id: str) -> List[Dict[str, Any]]:
        """
        Get all payment attempts for a Razorpay order.

        Args:
            checkout_session_id: Razorpay order ID

        Returns:
            List of payment entities
        """
        try:
            payments = self.client.order.payments(checkout_session_id)
        except Exception as e:
            logger.error(f"Failed to fetch payments for {checkout_session_id}: {e}")
            raise PaymentGatewayError("Failed to fetch order payments", {"checkout_session_id": checkout_session_id}) from e
        return payments.get("items", [])

    def fetch_account(self, account_id: str) -> Dict[str, Any]:
        """Fetch a Route linked account."""
        try:
            return self.client.account.fetch(account_id)
        except Exception as e:
            logger.error(f"Failed to fetch account {account_id}: {e}")
            raise PaymentGatewayError("Failed to fetch account", {"account_id": account_id}) from e

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """
        Verify Razorpay webhook signature.

        Args:
            body: Raw request body bytes
            signature: X-Razorpay-Signature header value

        Returns:
            True if signature is valid, False otherwise
        """
        if not self.webhook_secret:
            logger.warning("Webhook secret not configured, rejecting webhook")
            return False

        if not signature:
            logger.warning("Webhook received without signature header")
            return False

        expected_signature = hmac.new(
            self.webhook_secret.encode(),
            body,
            hashlib.sha256
        ).hexdigest()

        # Constant-time comparison
        is_valid = hmac.compare_digest(expected_signature, signature)

        if not is_valid:
            logger.warning("Invalid webhook signature")

        return is_valid


def get_payment_service() -> PaymentService:
    """FastAPI dependency for the processor client."""
    return PaymentService()
