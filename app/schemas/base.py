"""
Base Schema Classes for Pydantic Models

Response schemas that read from ORM rows inherit from BaseResponseSchema;
request bodies inherit from BaseCreateSchema.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas that read from ORM models.

    Usage:
        class PointsTransactionResponse(BaseResponseSchema):
            id: UUID
            amount: Decimal
    """
    model_config = ConfigDict(
        from_attributes=True,
        # Money and ids go out as strings
        json_encoders={
            UUID: str,
            Decimal: str,
            datetime: lambda v: v.isoformat() if v else None,
        },
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for request bodies.

    Unknown fields are ignored so older clients keep working.
    """
    model_config = ConfigDict(
        extra='ignore',
    )
