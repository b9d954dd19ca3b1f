"""Feature unlock resolver: plan access or a standing FeatureUnlock, independent of credits."""

from datetime import datetime

from beanie import PydanticObjectId
from beanie.operators import GT, Eq, Or
from pydantic import BaseModel

from app.models.feature_unlock import FeatureUnlock
from app.services import ledger
from app.services.plans import plan_allows_unlimited

PREMIUM_FEATURES = (
    "detailed_ats_analysis",
    "pdf_export",
    "keyword_suggestions",
    "industry_templates",
    "cover_letter_generator",
)


class FeatureAccess(BaseModel):
    unlocked: bool
    reason: str  # subscription | feature_unlock | not_unlocked | subscription_expired | subscription_cancelled


def _active_unlocks(account_id: PydanticObjectId, now: datetime, feature_id: str | None = None, resume_id: str | None = None):
    conditions = [
        FeatureUnlock.account_id == account_id,
        Or(Eq(FeatureUnlock.expires_at, None), GT(FeatureUnlock.expires_at, now)),
    ]
    if feature_id:
        conditions.append(FeatureUnlock.feature == feature_id)
    if resume_id:
        conditions.append(FeatureUnlock.resume_id == resume_id)
    return FeatureUnlock.find(*conditions)


async def has_feature_unlock(
    account_id: PydanticObjectId,
    feature_id: str,
    resume_id: str | None = None,
    now: datetime | None = None,
) -> bool:
    now = now or datetime.utcnow()
    return await _active_unlocks(account_id, now, feature_id, resume_id).count() > 0


async def check_feature_access(
    account_id: PydanticObjectId,
    feature_id: str,
    resume_id: str | None = None,
    now: datetime | None = None,
) -> FeatureAccess:
    now = now or datetime.utcnow()
    account = await ledger.get_account(account_id)
    if plan_allows_unlimited(account, now):
        return FeatureAccess(unlocked=True, reason="subscription")
    if await has_feature_unlock(account_id, feature_id, resume_id, now):
        return FeatureAccess(unlocked=True, reason="feature_unlock")
    reason = "not_unlocked"
    if account.plan == "paid":
        if account.plan_status == "cancelled":
            reason = "subscription_cancelled"
        elif account.plan_status == "inactive" or (account.plan_expires_at and account.plan_expires_at <= now):
            reason = "subscription_expired"
    return FeatureAccess(unlocked=False, reason=reason)


async def is_unlocked(
    account_id: PydanticObjectId,
    feature_id: str,
    resume_id: str | None = None,
    now: datetime | None = None,
) -> bool:
    return (await check_feature_access(account_id, feature_id, resume_id, now)).unlocked


async def list_unlocked_features(account_id: PydanticObjectId, now: datetime | None = None) -> list[str]:
    now = now or datetime.utcnow()
    account = await ledger.get_account(account_id)
    if plan_allows_unlimited(account, now):
        return list(PREMIUM_FEATURES)
    unlocks = await _active_unlocks(account_id, now).to_list()
    return sorted({u.feature for u in unlocks})
