from fastapi import APIRouter, Depends

from app.deps import get_current_account
from app.models.account import Account
from app.services.plans import plan_allows_unlimited, refresh_plan_status

router = APIRouter()


@router.get("/me")
async def account_me(account: Account = Depends(get_current_account)):
    """Return current account with balance and plan state."""
    account = await refresh_plan_status(account)
    return {
        "id": str(account.id),
        "external_id": account.external_id,
        "email": account.email,
        "name": account.name,
        "credits": account.credits,
        "plan": account.plan,
        "plan_status": account.plan_status,
        "plan_expires_at": account.plan_expires_at.isoformat() if account.plan_expires_at else None,
        "unlimited": plan_allows_unlimited(account),
    }
