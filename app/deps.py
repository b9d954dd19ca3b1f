"""Shared FastAPI dependencies."""

from fastapi import Request

from app.core.exceptions import UnauthorizedError
from app.core.logging import bind_account_id
from app.core.security import load_session_cookie
from app.models.account import Account
from app.services import ledger

SESSION_COOKIE_NAME = "resume_credits_session"


async def get_current_account(request: Request) -> Account:
    """Dependency: resolve the identity provider's session to an Account, creating it on first sight."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    external_id = payload.get("external_id")
    if not external_id:
        raise UnauthorizedError("Invalid session")
    account = await ledger.get_or_create_account(
        external_id,
        default_email=payload.get("email"),
        default_name=payload.get("name"),
    )
    bind_account_id(str(account.id))
    return account


def get_gateway():
    """Dependency: payment gateway client (overridden in tests)."""
    from app.services.gateway import get_gateway as _get_gateway
    return _get_gateway()
