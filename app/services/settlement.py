"""Verification service: authenticate payment confirmations and settle each order exactly once.

Two triggers reach the same settlement path: the client callback after
checkout (verify_and_settle, signed order|payment) and the server webhook
(handle_webhook, signed raw body). Settlement is a compare-and-set on
status == "pending", in the same transaction as the credit, so concurrent or
repeated calls for one order apply its effects once.
"""

import json
from datetime import datetime

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Set, Unset
from pydantic import BaseModel

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, InvalidSignatureError, OrderNotFoundError
from app.core.logging import get_logger
from app.core.security import verify_payment_signature, verify_razorpay_webhook
from app.db.session import run_in_transaction
from app.models.feature_unlock import FeatureUnlock
from app.models.payment_order import PaymentOrder
from app.services import ledger, plans

log = get_logger(__name__)


class SettlementResult(BaseModel):
    gateway_order_id: str
    status: str
    purpose: str
    credits_added: int
    new_balance: int
    already_processed: bool = False
    feature_id: str | None = None


async def _recorded_outcome(order: PaymentOrder) -> SettlementResult:
    """What a terminal order already did; returned instead of re-applying it."""
    balance = await ledger.get_balance(order.account_id)
    return SettlementResult(
        gateway_order_id=order.gateway_order_id,
        status=order.status,
        purpose=order.purpose,
        credits_added=order.credits_added if order.status == "settled" else 0,
        new_balance=balance,
        already_processed=True,
        feature_id=order.feature_id,
    )


async def _apply_effects(order: PaymentOrder, session, undo: list) -> int:
    """
    Grant what the order paid for; returns the balance after. Each applied
    effect pushes its inverse onto undo. The credit goes last so a failed
    credit leaves only the earlier effects to reverse.
    """
    if order.purpose == "subscription":
        previous = await ledger.get_account(order.account_id, session=session)
        await plans.activate_paid_plan(order.account_id, session=session)
        undo.append(lambda: plans.restore_plan(previous))
    elif order.purpose == "feature_unlock" and order.feature_id:
        unlock = FeatureUnlock(
            account_id=order.account_id,
            feature=order.feature_id,
            resume_id=order.resume_id,
            gateway_payment_id=order.gateway_payment_id,
        )
        await unlock.insert(session=session)
        undo.append(unlock.delete)
    if order.credits_added > 0:
        return (await ledger.credit(order.account_id, order.credits_added, session=session))["new_balance"]
    return (await ledger.get_account(order.account_id, session=session)).credits


async def _reopen(order_id: PydanticObjectId, gateway_payment_id: str) -> None:
    """settled -> pending, only for the transition this caller made."""
    await PaymentOrder.find_one(
        PaymentOrder.id == order_id,
        PaymentOrder.status == "settled",
        PaymentOrder.gateway_payment_id == gateway_payment_id,
    ).update(
        Set({PaymentOrder.status: "pending", PaymentOrder.updated_at: datetime.utcnow()}),
        Unset({PaymentOrder.gateway_payment_id: "", PaymentOrder.settled_at: ""}),
    )
    log.warning("payment_settlement_reverted", order_id=str(order_id), gateway_payment_id=gateway_payment_id)


async def settle_order(
    gateway_order_id: str,
    gateway_payment_id: str,
    source: str,
    account_id: PydanticObjectId | None = None,
) -> SettlementResult:
    """Settle an already-authenticated confirmation. Callers must have verified a signature."""
    order = await PaymentOrder.find_one(PaymentOrder.gateway_order_id == gateway_order_id)
    if not order or (account_id is not None and order.account_id != account_id):
        raise OrderNotFoundError(gateway_order_id)
    if order.status != "pending":
        return await _recorded_outcome(order)

    async def _apply(session) -> SettlementResult | None:
        now = datetime.utcnow()
        settled = await PaymentOrder.find_one(
            PaymentOrder.id == order.id,
            PaymentOrder.status == "pending",
        ).update(
            Set({
                PaymentOrder.status: "settled",
                PaymentOrder.gateway_payment_id: gateway_payment_id,
                PaymentOrder.settled_at: now,
                PaymentOrder.updated_at: now,
            }),
            session=session,
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        if settled is None:
            return None  # another caller won the transition
        undo = []
        try:
            new_balance = await _apply_effects(settled, session, undo)
        except Exception:
            if session is None:
                # No transaction to abort: reverse the effects and reopen the order for a retry
                for step in reversed(undo):
                    await step()
                await _reopen(settled.id, gateway_payment_id)
            raise
        return SettlementResult(
            gateway_order_id=settled.gateway_order_id,
            status=settled.status,
            purpose=settled.purpose,
            credits_added=settled.credits_added,
            new_balance=new_balance,
            feature_id=settled.feature_id,
        )

    result = await run_in_transaction(_apply)
    if result is None:
        return await _recorded_outcome(await PaymentOrder.get(order.id))

    from app.core.audit import log_event
    await log_event(
        str(order.account_id),
        "payment_settled",
        "payment_order",
        gateway_order_id,
        {
            "gateway_payment_id": gateway_payment_id,
            "amount": order.amount,
            "credits": result.credits_added,
            "purpose": order.purpose,
            "source": source,
        },
    )
    return result


async def verify_and_settle(
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    account_id: PydanticObjectId | None = None,
) -> SettlementResult:
    """Client callback: the order|payment HMAC is the only proof of payment."""
    secret = get_settings().razorpay_key_secret
    if not verify_payment_signature(gateway_order_id, gateway_payment_id, signature, secret):
        log.warning("payment_signature_invalid", gateway_order_id=gateway_order_id)
        raise InvalidSignatureError()
    return await settle_order(gateway_order_id, gateway_payment_id, "client_callback", account_id=account_id)


async def mark_failed(gateway_order_id: str, reason: str = "") -> SettlementResult:
    """Pending -> failed. Terminal orders are returned unchanged."""
    order = await PaymentOrder.find_one(PaymentOrder.gateway_order_id == gateway_order_id)
    if not order:
        raise OrderNotFoundError(gateway_order_id)
    now = datetime.utcnow()
    failed = await PaymentOrder.find_one(
        PaymentOrder.id == order.id,
        PaymentOrder.status == "pending",
    ).update(
        Set({
            PaymentOrder.status: "failed",
            PaymentOrder.failure_reason: (reason or "")[:500],
            PaymentOrder.updated_at: now,
        }),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if failed is None:
        return await _recorded_outcome(await PaymentOrder.get(order.id))
    from app.core.audit import log_event
    await log_event(str(order.account_id), "payment_failed", "payment_order", gateway_order_id, {"reason": failed.failure_reason})
    return SettlementResult(
        gateway_order_id=gateway_order_id,
        status="failed",
        purpose=failed.purpose,
        credits_added=0,
        new_balance=await ledger.get_balance(order.account_id),
    )


async def handle_webhook(payload: bytes, signature: str) -> str:
    """Verify the body HMAC and dispatch the event. Returns the event name handled."""
    settings = get_settings()
    if not settings.razorpay_webhook_secret:
        raise BadRequestError("Webhook secret not configured")
    if not verify_razorpay_webhook(payload, signature, settings.razorpay_webhook_secret):
        log.warning("webhook_signature_invalid")
        raise InvalidSignatureError("Invalid webhook signature")
    try:
        data = json.loads(payload.decode())
    except ValueError as e:
        raise BadRequestError("Malformed webhook payload") from e
    if not isinstance(data, dict):
        raise BadRequestError("Malformed webhook payload")
    event = data.get("event") or ""
    body = data.get("payload") or {}

    if event in ("payment.captured", "payment.failed"):
        payment = (body.get("payment") or {}).get("entity") or {}
        order_id = payment.get("order_id")
        payment_id = payment.get("id")
        if not order_id:
            log.warning("webhook_payment_without_order", gateway_event=event, gateway_payment_id=payment_id)
            return event
        if event == "payment.captured" and not payment_id:
            log.warning("webhook_capture_without_payment_id", gateway_event=event, gateway_order_id=order_id)
            return event
        try:
            if event == "payment.captured":
                await settle_order(order_id, payment_id, "webhook")
            else:
                await mark_failed(order_id, payment.get("error_description") or "payment failed")
        except OrderNotFoundError:
            # Not one of ours (or created by another environment); acknowledge so the gateway stops retrying
            log.warning("webhook_order_unknown", gateway_event=event, gateway_order_id=order_id)
        return event

    if event.startswith("subscription."):
        subscription = (body.get("subscription") or {}).get("entity") or {}
        if subscription.get("id"):
            await plans.apply_subscription_event(event, subscription["id"])
        return event

    log.info("webhook_event_ignored", gateway_event=event)
    return event
