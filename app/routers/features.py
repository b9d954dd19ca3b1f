from fastapi import APIRouter, Depends, Query

from app.deps import get_current_account
from app.models.account import Account
from app.services import features as features_service

router = APIRouter()


@router.get("/check")
async def feature_check(
    feature_id: str = Query(..., min_length=1, max_length=64),
    resume_id: str | None = Query(None, max_length=64),
    account: Account = Depends(get_current_account),
):
    access = await features_service.check_feature_access(account.id, feature_id, resume_id)
    return {"feature_id": feature_id, "is_unlocked": access.unlocked, "reason": access.reason}


@router.get("/unlocked")
async def features_unlocked(account: Account = Depends(get_current_account)):
    return {"features": await features_service.list_unlocked_features(account.id)}
