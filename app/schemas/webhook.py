"""Razorpay webhook payload schemas."""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any


def _notes_dict(value: Any) -> Dict[str, Any]:
    # Razorpay sends an empty list when an entity has no notes
    if isinstance(value, dict):
        return value
    return {}


class RazorpayEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    notes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("notes", mode="before")
    @classmethod
    def normalize_notes(cls, value):
        return _notes_dict(value)


class RazorpayPaymentEntity(RazorpayEntity):
    """payload.payment.entity"""
    amount: int = 0  # Minor units
    currency: Optional[str] = None
    status: Optional[str] = None
    order_id: Optional[str] = None
    email: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None
    error_reason: Optional[str] = None


class RazorpayOrderEntity(RazorpayEntity):
    """payload.order.entity"""
    amount: int = 0
    amount_paid: int = 0
    currency: Optional[str] = None
    status: Optional[str] = None
    receipt: Optional[str] = None


class RazorpayAccountEntity(RazorpayEntity):
    """payload.account.entity (Route linked account)"""
    status: Optional[str] = None


class RazorpayWebhookEnvelope(BaseModel):
    """Top level of every Razorpay webhook delivery."""
    model_config = ConfigDict(extra="ignore")

    event: str = Field(..., min_length=1)
    account_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[int] = None

    def entity(self, name: str) -> Optional[Dict[str, Any]]:
        wrapper = self.payload.get(name)
        if not isinstance(wrapper, dict):
            return None
        entity = wrapper.get("entity")
        return entity if isinstance(entity, dict) else None


class WebhookAck(BaseModel):
    """Response body returned to the processor."""
    status: str = "ok"
    event: str
    outcome: Optional[str] = None
