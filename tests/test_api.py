"""HTTP adapters end to end over ASGITransport."""

import hashlib
import hmac
import json

import pytest

from app.models.account import Account

pytestmark = pytest.mark.asyncio


async def test_requires_session(client):
    r = await client.get("/v1/credits/balance")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"


async def test_first_request_creates_account(client, session_cookie, settings):
    client.cookies.update(session_cookie("idp|api-1", email="api@example.com", name="Api"))
    r = await client.get("/v1/account/me")
    assert r.status_code == 200
    body = r.json()
    assert body["credits"] == settings.signup_bonus_credits
    assert body["email"] == "api@example.com"
    assert body["plan"] == "free"
    assert await Account.find(Account.external_id == "idp|api-1").count() == 1


async def test_check_then_deduct_flow(client, session_cookie):
    client.cookies.update(session_cookie("idp|api-2"))
    r = await client.post("/v1/credits/check", json={"action": "resume_analyze"})
    assert r.json()["decision"] == "allowed"

    r = await client.post("/v1/credits/deduct", json={"service": "resume_analyze"})
    assert r.status_code == 200
    assert r.json()["remaining_credits"] == 0

    r = await client.post("/v1/credits/deduct", json={"service": "resume_analyze"})
    assert r.status_code == 402
    error = r.json()["error"]
    assert error["code"] == "INSUFFICIENT_CREDIT"
    assert error["details"] == {"available": 0, "required": 1, "shortfall": 1}

    r = await client.get("/v1/credits/usage")
    assert [e["service"] for e in r.json()["entries"]] == ["resume_analyze"]


async def test_rate_limited_deduct_reports_reset_time(client, session_cookie):
    client.cookies.update(session_cookie("idp|api-3"))
    me = (await client.get("/v1/account/me")).json()
    from app.services import ledger
    from beanie import PydanticObjectId
    await ledger.credit(PydanticObjectId(me["id"]), 5)

    assert (await client.post("/v1/credits/deduct", json={"service": "cover_letter"})).status_code == 200
    r = await client.post("/v1/credits/deduct", json={"service": "cover_letter"})
    assert r.status_code == 429
    assert r.json()["error"]["details"]["reset_at"]

    quota = (await client.get("/v1/credits/quota/cover_letter")).json()
    assert quota["allowed"] is False
    assert quota["remaining"] == 0


async def test_purchase_flow_over_http(client, session_cookie, gateway, sign):
    client.cookies.update(session_cookie("idp|api-4"))
    r = await client.post("/v1/payments/orders", json={"amount": 9900, "purpose": "credits", "credits": 10})
    assert r.status_code == 200
    order_id = r.json()["gateway_order_id"]
    assert gateway.calls[0]["amount"] == 9900

    payload = {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": "pay_http",
        "razorpay_signature": sign(order_id, "pay_http"),
    }
    r = await client.post("/v1/payments/verify", json=payload)
    assert r.status_code == 200
    assert r.json()["credits_added"] == 10
    assert r.json()["new_balance"] == 11

    r = await client.post("/v1/payments/verify", json=payload)
    assert r.json()["already_processed"] is True
    assert (await client.get("/v1/credits/balance")).json() == {"balance": 11}

    orders = (await client.get("/v1/payments/orders")).json()["orders"]
    assert [o["status"] for o in orders] == ["settled"]


async def test_verify_rejects_bad_signature(client, session_cookie):
    client.cookies.update(session_cookie("idp|api-5"))
    r = await client.post(
        "/v1/payments/verify",
        json={"razorpay_order_id": "order_x", "razorpay_payment_id": "pay_x", "razorpay_signature": "nope"},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_SIGNATURE"


async def test_order_gateway_failure_is_502(client, session_cookie, gateway):
    from app.core.exceptions import GatewayError
    gateway.error = GatewayError("Failed to create payment order")
    client.cookies.update(session_cookie("idp|api-6"))
    r = await client.post("/v1/payments/orders", json={"amount": 100})
    assert r.status_code == 502
    assert (await client.get("/v1/payments/orders")).json()["orders"] == []


async def test_webhook_endpoint(client):
    body = json.dumps({"event": "refund.created", "payload": {}}).encode()
    sig = hmac.new(b"whsec_test", body, hashlib.sha256).hexdigest()
    r = await client.post("/v1/payments/webhook", content=body, headers={"X-Razorpay-Signature": sig})
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "event": "refund.created"}

    r = await client.post("/v1/payments/webhook", content=body, headers={"X-Razorpay-Signature": "bad"})
    assert r.status_code == 400


async def test_feature_endpoints(client, session_cookie):
    client.cookies.update(session_cookie("idp|api-7"))
    r = await client.get("/v1/features/check", params={"feature_id": "pdf_export"})
    assert r.json() == {"feature_id": "pdf_export", "is_unlocked": False, "reason": "not_unlocked"}
    assert (await client.get("/v1/features/unlocked")).json() == {"features": []}
