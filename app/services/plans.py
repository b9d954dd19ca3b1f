"""Subscription plan state: activation on settlement, gateway subscription events, expiry."""

from calendar import monthrange
from datetime import datetime, timedelta

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Set

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.models.account import Account

log = get_logger(__name__)


def add_months(dt: datetime, months: int) -> datetime:
    month = dt.month - 1 + months
    year = dt.year + month // 12
    month = month % 12 + 1
    day = min(dt.day, monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def plan_allows_unlimited(account: Account, now: datetime | None = None) -> bool:
    """Paid + Active and not past its expiry."""
    if account.plan != "paid" or account.plan_status != "active":
        return False
    if account.plan_expires_at is None:
        return True
    return account.plan_expires_at > (now or datetime.utcnow())


async def refresh_plan_status(account: Account, now: datetime | None = None) -> Account:
    """Downgrade a paid plan whose expiry has passed to inactive."""
    now = now or datetime.utcnow()
    if (
        account.plan == "paid"
        and account.plan_status == "active"
        and account.plan_expires_at is not None
        and account.plan_expires_at <= now
    ):
        # Plan fields only; credits belong to the ledger
        await Account.find_one(Account.id == account.id).update(
            Set({Account.plan_status: "inactive", Account.updated_at: now})
        )
        account.plan_status = "inactive"
        account.updated_at = now
        log.info("subscription_expired", account_id=str(account.id), expired_at=account.plan_expires_at.isoformat())
    return account


async def activate_paid_plan(
    account_id: PydanticObjectId,
    months: int | None = None,
    gateway_subscription_id: str | None = None,
    session=None,
) -> Account:
    """Set plan paid/active; extend expiry from the later of now and the current expiry."""
    months = max(1, int(months or get_settings().subscription_months))
    account = await Account.get(account_id, session=session)
    if not account:
        raise NotFoundError("Account not found")
    now = datetime.utcnow()
    start = now
    if account.plan_expires_at and account.plan_expires_at > now:
        start = account.plan_expires_at
    fields = {
        Account.plan: "paid",
        Account.plan_status: "active",
        Account.plan_expires_at: add_months(start, months),
        Account.updated_at: now,
    }
    if gateway_subscription_id:
        fields[Account.gateway_subscription_id] = gateway_subscription_id
    updated = await Account.find_one(Account.id == account_id).update(
        Set(fields),
        session=session,
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    log.info("subscription_activated", account_id=str(account_id), expires_at=updated.plan_expires_at.isoformat())
    return updated


async def restore_plan(previous: Account) -> None:
    """Put back plan fields captured before activate_paid_plan."""
    await Account.find_one(Account.id == previous.id).update(
        Set({
            Account.plan: previous.plan,
            Account.plan_status: previous.plan_status,
            Account.plan_expires_at: previous.plan_expires_at,
            Account.gateway_subscription_id: previous.gateway_subscription_id,
            Account.updated_at: datetime.utcnow(),
        })
    )


async def apply_subscription_event(event: str, gateway_subscription_id: str) -> Account | None:
    """Gateway-driven plan changes: charged (renew), cancelled, completed."""
    account = await Account.find_one(Account.gateway_subscription_id == gateway_subscription_id)
    if not account:
        log.warning("subscription_event_unknown", gateway_event=event, gateway_subscription_id=gateway_subscription_id)
        return None
    now = datetime.utcnow()
    if event == "subscription.charged":
        base = max(account.plan_expires_at or now, now)
        fields = {
            Account.plan: "paid",
            Account.plan_status: "active",
            Account.plan_expires_at: base + timedelta(days=get_settings().subscription_renewal_days),
        }
    elif event == "subscription.cancelled":
        fields = {Account.plan_status: "cancelled"}
    elif event == "subscription.completed":
        fields = {Account.plan_status: "inactive"}
    else:
        return account
    fields[Account.updated_at] = now
    account = await Account.find_one(Account.id == account.id).update(
        Set(fields),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    await log_event(
        str(account.id),
        "subscription_updated",
        "account",
        str(account.id),
        {"gateway_event": event, "plan_status": account.plan_status},
    )
    return account
