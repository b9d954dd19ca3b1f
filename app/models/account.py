from datetime import datetime
from typing import Literal

from beanie import Document, Indexed
from pydantic import Field

PlanTag = Literal["free", "paid"]
PlanStatus = Literal["active", "inactive", "cancelled"]


class Account(Document):
    """A user's credit balance and plan state, keyed by the identity provider's id."""
    external_id: Indexed(str, unique=True)
    email: str
    name: str = ""
    credits: int = 0  # mutated only through app.services.ledger
    plan: PlanTag = "free"
    plan_status: PlanStatus = "active"
    plan_expires_at: datetime | None = None
    gateway_subscription_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "accounts"
        indexes = [[("gateway_subscription_id", 1)]]
