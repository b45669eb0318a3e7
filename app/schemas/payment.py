"""Payment schemas for checkout, status and reconciliation."""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional
import uuid

from app.schemas.base import BaseCreateSchema, BaseResponseSchema


class CreatePaymentOrderRequest(BaseCreateSchema):
    """API request to open a processor checkout for an order."""
    order_id: uuid.UUID = Field(..., description="Internal order ID")
    customer_email: Optional[str] = Field(None, description="Customer email (optional)")


class PaymentOrderResponse(BaseModel):
    """Checkout details handed to the frontend."""
    order_id: uuid.UUID
    checkout_session_id: str = Field(..., description="Razorpay order ID")
    amount: int = Field(..., description="Amount in minor units")
    currency: str
    key_id: str
    platform_commission: int = Field(..., description="Commission in minor units")
    business_amount: int = Field(..., description="Business share in minor units")
    commission_tier: str
    transfer_id: Optional[str] = Field(None, description="Route transfer carrying the business share")


class OrderPaymentStatusResponse(BaseModel):
    """Shopper-facing payment status. Never exposes internal failure reasons."""
    order_id: uuid.UUID
    order_number: str
    status: str
    paid: bool
    total_amount: Decimal
    currency: str
    paid_at: Optional[datetime] = None
    points_earned: Decimal = Decimal("0.00")
    message: Optional[str] = None


class ReconcileResponse(BaseModel):
    order_id: uuid.UUID
    outcome: str
    correlation_id: Optional[str] = None


class PaymentAccountResponse(BaseResponseSchema):
    """Linked account state as cached after a refresh."""
    business_id: uuid.UUID
    processor_account_id: str
    account_status: Optional[str] = None
    charges_enabled: bool
    payouts_enabled: bool
    updated_at: datetime
