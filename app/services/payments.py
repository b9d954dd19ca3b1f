"""Order service: create a Razorpay order and record it as a pending PaymentOrder."""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, ConflictError, InvalidAmountError
from app.core.logging import get_logger
from app.core.security import build_receipt
from app.models.payment_order import PaymentOrder
from app.services import ledger

log = get_logger(__name__)

PURPOSES = ("credits", "subscription", "feature_unlock")


def _credits_for(purpose: str, metadata: dict[str, Any]) -> int:
    raw = metadata.get("credits")
    if raw is None:
        return get_settings().default_credit_pack if purpose == "credits" else 0
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise BadRequestError("Invalid credits")
    if purpose == "credits" and raw == 0:
        raise BadRequestError("Invalid credits")
    return raw


async def create_order(
    account_id: PydanticObjectId,
    amount: int,
    currency: str = "INR",
    purpose: str = "credits",
    metadata: dict[str, Any] | None = None,
    gateway=None,
) -> dict:
    """
    Create the gateway order first, then persist exactly one pending row.
    A gateway failure raises GatewayError and leaves nothing behind.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError("Invalid amount")
    if purpose not in PURPOSES:
        raise BadRequestError(f"Unknown payment purpose: {purpose}")
    metadata = dict(metadata or {})
    credits = _credits_for(purpose, metadata)
    feature_id = metadata.get("feature_id")
    if purpose == "feature_unlock" and not feature_id:
        raise BadRequestError("feature_id is required for a feature unlock")

    account = await ledger.get_account(account_id)
    if gateway is None:
        from app.services.gateway import get_gateway
        gateway = get_gateway()

    settings = get_settings()
    currency = (currency or "INR").upper()
    receipt = build_receipt(str(account.id), datetime.utcnow(), settings.receipt_max_length)
    notes = {
        "account_id": str(account.id),
        "external_id": account.external_id,
        "purpose": purpose,
        "credits": str(credits),
        "package_id": metadata.get("package_id") or "basic",
    }
    if feature_id:
        notes["feature_id"] = str(feature_id)

    order = await gateway.create_order(amount, currency, receipt, notes)

    po = PaymentOrder(
        account_id=account.id,
        gateway_order_id=order["id"],
        amount=amount,
        currency=currency,
        purpose=purpose,
        credits_added=credits,
        receipt=receipt,
        package_id=metadata.get("package_id"),
        feature_id=feature_id,
        resume_id=metadata.get("resume_id"),
        notes=notes,
    )
    try:
        await po.insert()
    except DuplicateKeyError as e:
        log.error("payment_order_duplicate", gateway_order_id=order["id"])
        raise ConflictError("Gateway returned an order id that is already recorded") from e

    from app.core.audit import log_event
    await log_event(
        str(account.id),
        "payment_order_created",
        "payment_order",
        po.gateway_order_id,
        {"amount": amount, "currency": currency, "purpose": purpose, "credits": credits},
    )
    return {
        "gateway_order_id": order["id"],
        "amount": order.get("amount", amount),
        "currency": order.get("currency", currency),
        "receipt": receipt,
        "key_id": getattr(gateway, "key_id", settings.razorpay_key_id),
    }


async def list_orders(account_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[PaymentOrder]:
    return (
        await PaymentOrder.find(PaymentOrder.account_id == account_id)
        .sort(-PaymentOrder.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


def order_to_dict(po: PaymentOrder) -> dict:
    return {
        "id": str(po.id),
        "gateway_order_id": po.gateway_order_id,
        "amount": po.amount,
        "currency": po.currency,
        "status": po.status,
        "purpose": po.purpose,
        "credits_added": po.credits_added,
        "feature_id": po.feature_id,
        "resume_id": po.resume_id,
        "gateway_payment_id": po.gateway_payment_id,
        "failure_reason": po.failure_reason,
        "settled_at": po.settled_at.isoformat() if po.settled_at else None,
        "created_at": po.created_at.isoformat(),
    }
