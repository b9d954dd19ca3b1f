"""Server-to-server webhook: body HMAC, event dispatch, redelivery."""

import hashlib
import hmac
import json
from datetime import datetime, timedelta

import pytest

from app.core.exceptions import BadRequestError, InvalidSignatureError
from app.models.account import Account
from app.models.payment_order import PaymentOrder
from app.services import ledger, settlement
from app.services import payments as payments_service

pytestmark = pytest.mark.asyncio


def _signed(event: dict, secret: str = "whsec_test") -> tuple[bytes, str]:
    body = json.dumps(event).encode()
    return body, hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _payment_event(event: str, order_id: str, payment_id: str, **entity) -> dict:
    return {"event": event, "payload": {"payment": {"entity": {"id": payment_id, "order_id": order_id, **entity}}}}


def _subscription_event(event: str, subscription_id: str) -> dict:
    return {"event": event, "payload": {"subscription": {"entity": {"id": subscription_id}}}}


async def test_payment_captured_settles_once(account, gateway, sign):
    out = await payments_service.create_order(account.id, 4900, metadata={"credits": 7}, gateway=gateway)
    order_id = out["gateway_order_id"]
    body, sig = _signed(_payment_event("payment.captured", order_id, "pay_w1"))

    assert await settlement.handle_webhook(body, sig) == "payment.captured"
    await settlement.handle_webhook(body, sig)
    # the client callback arriving after the webhook is also a no-op
    result = await settlement.verify_and_settle(order_id, "pay_w1", sign(order_id, "pay_w1"))
    assert result.already_processed is True
    assert await ledger.get_balance(account.id) == 7


async def test_bad_webhook_signature_changes_nothing(account, gateway):
    out = await payments_service.create_order(account.id, 4900, metadata={"credits": 7}, gateway=gateway)
    body, _ = _signed(_payment_event("payment.captured", out["gateway_order_id"], "pay_w2"))
    _, wrong = _signed({"event": "other"})
    with pytest.raises(InvalidSignatureError):
        await settlement.handle_webhook(body, wrong)
    po = await PaymentOrder.find_one(PaymentOrder.gateway_order_id == out["gateway_order_id"])
    assert po.status == "pending"
    assert await ledger.get_balance(account.id) == 0


async def test_payment_failed_marks_order_failed(account, gateway):
    out = await payments_service.create_order(account.id, 4900, gateway=gateway)
    body, sig = _signed(
        _payment_event("payment.failed", out["gateway_order_id"], "pay_w3", error_description="Card declined")
    )
    await settlement.handle_webhook(body, sig)
    po = await PaymentOrder.find_one(PaymentOrder.gateway_order_id == out["gateway_order_id"])
    assert po.status == "failed"
    assert po.failure_reason == "Card declined"


async def test_captured_for_unknown_order_is_acknowledged():
    body, sig = _signed(_payment_event("payment.captured", "order_elsewhere", "pay_w4"))
    assert await settlement.handle_webhook(body, sig) == "payment.captured"


async def test_unhandled_event_is_acknowledged():
    body, sig = _signed({"event": "refund.created", "payload": {}})
    assert await settlement.handle_webhook(body, sig) == "refund.created"


async def _subscribed_account(expires_at: datetime) -> Account:
    account = await ledger.get_or_create_account("idp|sub", starting_credits=0)
    account.plan = "paid"
    account.plan_status = "active"
    account.plan_expires_at = expires_at
    account.gateway_subscription_id = "sub_123"
    await account.save()
    return account


async def test_subscription_charged_extends_plan(settings):
    expires = datetime.utcnow() + timedelta(days=2)
    account = await _subscribed_account(expires)
    body, sig = _signed(_subscription_event("subscription.charged", "sub_123"))
    await settlement.handle_webhook(body, sig)
    refreshed = await ledger.get_account(account.id)
    assert refreshed.plan_status == "active"
    delta = refreshed.plan_expires_at - expires
    assert abs(delta - timedelta(days=settings.subscription_renewal_days)) < timedelta(seconds=1)


@pytest.mark.parametrize(
    "event,status",
    [("subscription.cancelled", "cancelled"), ("subscription.completed", "inactive")],
)
async def test_subscription_end_events(event, status):
    account = await _subscribed_account(datetime.utcnow() + timedelta(days=10))
    body, sig = _signed(_subscription_event(event, "sub_123"))
    await settlement.handle_webhook(body, sig)
    assert (await ledger.get_account(account.id)).plan_status == status


async def test_non_object_body_is_rejected():
    body = b"[]"
    sig = hmac.new(b"whsec_test", body, hashlib.sha256).hexdigest()
    with pytest.raises(BadRequestError):
        await settlement.handle_webhook(body, sig)


async def test_captured_without_payment_id_leaves_order_pending(account, gateway):
    out = await payments_service.create_order(account.id, 4900, metadata={"credits": 7}, gateway=gateway)
    event = {"event": "payment.captured", "payload": {"payment": {"entity": {"order_id": out["gateway_order_id"]}}}}
    body, sig = _signed(event)
    assert await settlement.handle_webhook(body, sig) == "payment.captured"
    po = await PaymentOrder.find_one(PaymentOrder.gateway_order_id == out["gateway_order_id"])
    assert po.status == "pending"
    assert await ledger.get_balance(account.id) == 0
