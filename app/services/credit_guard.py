"""Pre-flight gate for paid actions: balance sufficiency, then the free-tier daily quota.

authorize() and ledger.debit() are separate calls. Two requests can both be
Allowed and then race to debit; the conditional debit is the authority and the
loser gets InsufficientCreditError. The account is not locked across the
action because the action itself may wait on slow text generation.
"""

from datetime import datetime
from typing import Literal, Union

from beanie import PydanticObjectId
from pydantic import BaseModel

from app.core.exceptions import AppError, InsufficientCreditError, RateLimitedError
from app.services import ledger
from app.services.plans import plan_allows_unlimited
from app.services.rate_limit import check_daily_quota


class Allowed(BaseModel):
    decision: Literal["allowed"] = "allowed"
    balance: int
    remaining: int  # -1 = unlimited


class InsufficientCredit(BaseModel):
    decision: Literal["insufficient_credit"] = "insufficient_credit"
    available: int
    required: int


class RateLimited(BaseModel):
    decision: Literal["rate_limited"] = "rate_limited"
    action_kind: str
    limit: int
    reset_at: datetime


AuthDecision = Union[Allowed, InsufficientCredit, RateLimited]


async def authorize(
    account_id: PydanticObjectId,
    required_credits: int,
    action_kind: str,
    now: datetime | None = None,
) -> AuthDecision:
    account = await ledger.get_account(account_id)
    if account.credits < required_credits:
        return InsufficientCredit(available=account.credits, required=required_credits)
    quota = await check_daily_quota(
        account_id,
        action_kind,
        plan_allows_unlimited=plan_allows_unlimited(account, now),
        now=now,
    )
    if not quota.allowed:
        return RateLimited(action_kind=action_kind, limit=quota.limit, reset_at=quota.reset_at)
    return Allowed(balance=account.credits, remaining=quota.remaining)


def decision_error(decision: AuthDecision) -> AppError | None:
    """The error an HTTP adapter raises to refuse the action, or None if allowed."""
    if isinstance(decision, InsufficientCredit):
        return InsufficientCreditError(available=decision.available, required=decision.required)
    if isinstance(decision, RateLimited):
        return RateLimitedError(decision.action_kind, decision.reset_at, limit=decision.limit)
    return None
