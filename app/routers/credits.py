from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.deps import get_current_account
from app.models.account import Account
from app.services import credit_guard, ledger
from app.services.plans import plan_allows_unlimited
from app.services.rate_limit import check_daily_quota

router = APIRouter()


class CheckCreditsRequest(BaseModel):
    action: str = Field(min_length=1, max_length=64)
    required_credits: int = Field(default=1, ge=1)


class DeductCreditsRequest(BaseModel):
    service: str = Field(min_length=1, max_length=64)
    credits: int = Field(default=1, ge=1)


@router.get("/balance")
async def credits_balance(account: Account = Depends(get_current_account)):
    """Return current credit balance."""
    return {"balance": await ledger.get_balance(account.id)}


@router.get("/usage")
async def credits_usage(
    account: Account = Depends(get_current_account),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return usage records for current account (newest first)."""
    records = await ledger.list_usage(account.id, limit=limit, offset=offset)
    out = [
        {
            "id": str(r.id),
            "service": r.service,
            "amount": r.amount,
            "description": r.description,
            "created_at": r.created_at.isoformat(),
        }
        for r in records
    ]
    return {"entries": out, "limit": limit, "offset": offset}


@router.get("/quota/{action_kind}")
async def credits_quota(action_kind: str, account: Account = Depends(get_current_account)):
    quota = await check_daily_quota(account.id, action_kind, plan_allows_unlimited(account))
    return quota.model_dump(mode="json")


@router.post("/check")
async def credits_check(body: CheckCreditsRequest, account: Account = Depends(get_current_account)):
    """Pre-flight only: nothing is charged. The later /deduct call is authoritative."""
    decision = await credit_guard.authorize(account.id, body.required_credits, body.action)
    return decision.model_dump(mode="json")


@router.post("/deduct")
async def credits_deduct(body: DeductCreditsRequest, account: Account = Depends(get_current_account)):
    decision = await credit_guard.authorize(account.id, body.credits, body.service)
    error = credit_guard.decision_error(decision)
    if error is not None:
        raise error
    result = await ledger.debit(account.id, body.credits, body.service)
    return {
        "success": True,
        "remaining_credits": result["new_balance"],
        "usage": {
            "id": result["usage_id"],
            "amount": body.credits,
            "service": body.service,
            "timestamp": result["created_at"].isoformat(),
        },
    }
