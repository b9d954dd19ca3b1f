"""Order service: gateway first, then one pending PaymentOrder."""

from datetime import datetime

import pytest

from app.core.exceptions import BadRequestError, GatewayError, InvalidAmountError
from app.core.security import build_receipt
from app.models.audit_log import AuditLog
from app.models.payment_order import PaymentOrder
from app.services import payments as payments_service

pytestmark = pytest.mark.asyncio


async def test_create_order_persists_pending_row(account, gateway):
    out = await payments_service.create_order(account.id, 9900, "INR", "subscription", {}, gateway=gateway)
    assert out["gateway_order_id"].startswith("order_")
    assert out["amount"] == 9900
    assert out["key_id"] == "rzp_test_key"

    po = await PaymentOrder.find_one(PaymentOrder.gateway_order_id == out["gateway_order_id"])
    assert po.status == "pending"
    assert po.amount == 9900
    assert po.purpose == "subscription"
    assert po.account_id == account.id
    assert po.gateway_payment_id is None
    assert await AuditLog.find(AuditLog.event_type == "payment_order_created").count() == 1


async def test_credits_order_defaults_to_pack_size(account, gateway, settings):
    out = await payments_service.create_order(account.id, 4900, gateway=gateway)
    po = await PaymentOrder.find_one(PaymentOrder.gateway_order_id == out["gateway_order_id"])
    assert po.credits_added == settings.default_credit_pack
    assert gateway.calls[0]["notes"]["credits"] == str(settings.default_credit_pack)
    assert gateway.calls[0]["notes"]["account_id"] == str(account.id)


async def test_receipt_fits_gateway_limit(account, gateway):
    await payments_service.create_order(account.id, 100, gateway=gateway, metadata={"credits": 1})
    receipt = gateway.calls[0]["receipt"]
    assert len(receipt) <= 40
    assert receipt.startswith("cr_")
    assert receipt.endswith(str(account.id)[-8:])


def test_build_receipt_truncates():
    receipt = build_receipt("x" * 100, datetime(2026, 1, 1), max_length=12)
    assert len(receipt) == 12


@pytest.mark.parametrize("amount", [0, -100, True, 99.5])
async def test_invalid_amount_rejected_before_gateway(account, gateway, amount):
    with pytest.raises(InvalidAmountError):
        await payments_service.create_order(account.id, amount, gateway=gateway)
    assert gateway.calls == []
    assert await PaymentOrder.find_all().count() == 0


async def test_gateway_failure_persists_nothing(account, failing_gateway):
    failing = failing_gateway
    with pytest.raises(GatewayError):
        await payments_service.create_order(account.id, 9900, gateway=failing)
    assert len(failing.calls) == 1
    assert await PaymentOrder.find_all().count() == 0


async def test_feature_unlock_requires_feature_id(account, gateway):
    with pytest.raises(BadRequestError):
        await payments_service.create_order(account.id, 1900, purpose="feature_unlock", gateway=gateway)
    out = await payments_service.create_order(
        account.id,
        1900,
        purpose="feature_unlock",
        metadata={"feature_id": "pdf_export", "resume_id": "r1"},
        gateway=gateway,
    )
    po = await PaymentOrder.find_one(PaymentOrder.gateway_order_id == out["gateway_order_id"])
    assert (po.feature_id, po.resume_id, po.credits_added) == ("pdf_export", "r1", 0)


async def test_unknown_purpose_rejected(account, gateway):
    with pytest.raises(BadRequestError):
        await payments_service.create_order(account.id, 100, purpose="donation", gateway=gateway)


async def test_list_orders_scoped_to_account(account, gateway):
    from app.services import ledger
    other = await ledger.get_or_create_account("idp|other")
    await payments_service.create_order(account.id, 100, gateway=gateway)
    await payments_service.create_order(other.id, 200, gateway=gateway)
    orders = await payments_service.list_orders(account.id)
    assert [o.amount for o in orders] == [100]
    assert payments_service.order_to_dict(orders[0])["status"] == "pending"
