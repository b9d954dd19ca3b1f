from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field


class UsageRecord(Document):
    """Append-only: one row per successful debit."""
    account_id: PydanticObjectId
    service: str  # action kind, e.g. resume_analyze
    amount: int
    description: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "usage_records"
        indexes = [
            [("account_id", 1), ("service", 1), ("created_at", -1)],
            [("account_id", 1), ("created_at", -1)],
        ]
