from datetime import datetime
from typing import Any, Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field

OrderStatus = Literal["pending", "settled", "failed"]
OrderPurpose = Literal["credits", "subscription", "feature_unlock"]


class PaymentOrder(Document):
    """One purchase attempt; status only moves pending -> settled | failed."""
    account_id: PydanticObjectId
    gateway_order_id: Indexed(str, unique=True)
    amount: int  # minor units (paise)
    currency: str = "INR"
    status: OrderStatus = "pending"
    purpose: OrderPurpose = "credits"
    credits_added: int = 0
    receipt: str
    package_id: str | None = None
    feature_id: str | None = None
    resume_id: str | None = None
    notes: dict[str, Any] = Field(default_factory=dict)
    gateway_payment_id: str | None = None
    failure_reason: str | None = None
    settled_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payment_orders"
        indexes = [
            [("account_id", 1), ("created_at", -1)],
            [("status", 1), ("created_at", 1)],
        ]
