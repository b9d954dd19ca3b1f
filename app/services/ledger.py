"""Ledger store: account upsert and the only code paths that change a balance."""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Inc, Set
from pymongo.errors import DuplicateKeyError

from app.core.config import get_settings
from app.core.exceptions import InsufficientCreditError, InvalidAmountError, NotFoundError, UnauthorizedError
from app.core.logging import get_logger
from app.db.session import run_in_transaction
from app.models.account import Account
from app.models.usage_record import UsageRecord

log = get_logger(__name__)


def _require_positive(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(f"Credit amount must be a positive integer, got {amount!r}")
    return amount


async def get_or_create_account(
    external_id: str,
    default_email: str | None = None,
    default_name: str | None = None,
    starting_credits: int | None = None,
) -> Account:
    """
    Upsert by external identity. The unique index on external_id settles
    concurrent first requests: the loser of the insert race re-reads the winner's row.
    """
    external_id = (external_id or "").strip()
    if not external_id:
        raise UnauthorizedError("Missing external identity")
    account = await Account.find_one(Account.external_id == external_id)
    if account:
        return account
    if starting_credits is None:
        starting_credits = max(get_settings().signup_bonus_credits, 0)
    account = Account(
        external_id=external_id,
        email=default_email or f"user-{external_id}@example.com",
        name=default_name or "New User",
        credits=starting_credits,
    )
    try:
        await account.insert()
    except DuplicateKeyError:
        existing = await Account.find_one(Account.external_id == external_id)
        if existing is None:
            raise
        return existing
    from app.core.audit import log_event
    await log_event(str(account.id), "account_created", "account", str(account.id), {"starting_credits": starting_credits})
    return account


async def get_account(account_id: PydanticObjectId, session=None) -> Account:
    account = await Account.get(account_id, session=session)
    if not account:
        raise NotFoundError("Account not found")
    return account


async def get_balance(account_id: PydanticObjectId) -> int:
    return (await get_account(account_id)).credits


async def _decrement(account_id: PydanticObjectId, amount: int, session) -> Account:
    # Conditional $inc: the balance check and the write are one server-side operation
    updated = await Account.find_one(
        Account.id == account_id,
        Account.credits >= amount,
    ).update(
        Inc({Account.credits: -amount}),
        Set({Account.updated_at: datetime.utcnow()}),
        session=session,
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        account = await get_account(account_id, session=session)
        raise InsufficientCreditError(available=account.credits, required=amount)
    return updated


async def _increment(account_id: PydanticObjectId, amount: int, session) -> Account:
    updated = await Account.find_one(Account.id == account_id).update(
        Inc({Account.credits: amount}),
        Set({Account.updated_at: datetime.utcnow()}),
        session=session,
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        raise NotFoundError("Account not found")
    return updated


async def debit(account_id: PydanticObjectId, amount: int, action_kind: str) -> dict:
    """
    Take amount credits and append one UsageRecord, together or not at all.
    Raises InsufficientCreditError (nothing written) when balance < amount.
    """
    amount = _require_positive(amount)
    action_kind = (action_kind or "").strip()
    if not action_kind:
        raise InvalidAmountError("Action kind is required")

    async def _apply(session) -> dict:
        account = await _decrement(account_id, amount, session)
        noun = "credit" if amount == 1 else "credits"
        record = UsageRecord(
            account_id=account_id,
            service=action_kind,
            amount=amount,
            description=f"Used {amount} {noun} for {action_kind}",
        )
        try:
            await record.insert(session=session)
        except Exception:
            if session is None:
                # No transaction to abort: put the credits back before surfacing the error
                await _increment(account_id, amount, None)
            raise
        return {"new_balance": account.credits, "usage_id": str(record.id), "created_at": record.created_at}

    result = await run_in_transaction(_apply)
    log.info("credits_debited", account_id=str(account_id), amount=amount, action_kind=action_kind, new_balance=result["new_balance"])
    return result


async def credit(account_id: PydanticObjectId, amount: int, session=None) -> dict:
    """
    Add credits. Callers pass the session of the transaction that also records
    why the credits were granted (a settling PaymentOrder, a refund).
    """
    amount = _require_positive(amount)
    account = await _increment(account_id, amount, session)
    log.info("credits_added", account_id=str(account_id), amount=amount, new_balance=account.credits)
    return {"new_balance": account.credits}


async def refund(account_id: PydanticObjectId, amount: int, action_kind: str, reason: str = "") -> dict:
    """Compensating credit after a paid action failed downstream. The usage record stays."""
    result = await run_in_transaction(lambda session: credit(account_id, amount, session=session))
    from app.core.audit import log_event
    await log_event(
        str(account_id),
        "credits_refunded",
        "account",
        str(account_id),
        {"amount": amount, "action_kind": action_kind, "reason": reason[:500]},
    )
    return result


async def list_usage(account_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[UsageRecord]:
    """Usage records for account, newest first."""
    return (
        await UsageRecord.find(UsageRecord.account_id == account_id)
        .sort(-UsageRecord.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
