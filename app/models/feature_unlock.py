from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field


class FeatureUnlock(Document):
    account_id: PydanticObjectId
    feature: str
    resume_id: str | None = None
    gateway_payment_id: str | None = None
    expires_at: datetime | None = None  # None = permanent
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "feature_unlocks"
        indexes = [[("account_id", 1), ("feature", 1)]]
