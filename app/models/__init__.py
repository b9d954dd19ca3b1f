from app.models.account import Account
from app.models.usage_record import UsageRecord
from app.models.payment_order import PaymentOrder
from app.models.feature_unlock import FeatureUnlock
from app.models.audit_log import AuditLog

__all__ = [
    "Account",
    "UsageRecord",
    "PaymentOrder",
    "FeatureUnlock",
    "AuditLog",
]
