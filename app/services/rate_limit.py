"""Free-tier daily quota per action kind, counted from the usage log."""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from beanie import PydanticObjectId
from pydantic import BaseModel

from app.core.config import get_settings
from app.models.usage_record import UsageRecord

UNLIMITED = -1


class QuotaResult(BaseModel):
    allowed: bool
    remaining: int  # -1 = unlimited
    limit: int
    reset_at: datetime | None = None


def local_day_bounds(now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    (start of today, start of tomorrow) in APP_TIMEZONE, both timezone-aware.
    A naive `now` is read as UTC, matching how documents store created_at.
    """
    tz = ZoneInfo(get_settings().app_timezone)
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_now = now.astimezone(tz)
    midnight = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    next_midnight = datetime.combine(local_now.date() + timedelta(days=1), time.min, tzinfo=tz)
    return midnight, next_midnight


def _as_naive_utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


async def count_usage_today(account_id: PydanticObjectId, action_kind: str, now: datetime | None = None) -> int:
    start, end = local_day_bounds(now)
    return await UsageRecord.find(
        UsageRecord.account_id == account_id,
        UsageRecord.service == action_kind,
        UsageRecord.created_at >= _as_naive_utc(start),
        UsageRecord.created_at < _as_naive_utc(end),
    ).count()


async def check_daily_quota(
    account_id: PydanticObjectId,
    action_kind: str,
    plan_allows_unlimited: bool,
    now: datetime | None = None,
) -> QuotaResult:
    """Read-only. Paid plans are unlimited; free accounts get FREE_DAILY_ACTION_LIMIT per local day."""
    if plan_allows_unlimited:
        return QuotaResult(allowed=True, remaining=UNLIMITED, limit=UNLIMITED)
    limit = get_settings().free_daily_action_limit
    used = await count_usage_today(account_id, action_kind, now)
    _, reset_at = local_day_bounds(now)
    return QuotaResult(
        allowed=used < limit,
        remaining=max(0, limit - used),
        limit=limit,
        reset_at=reset_at,
    )
