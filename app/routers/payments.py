from typing import Literal

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field

from app.deps import get_current_account, get_gateway
from app.models.account import Account
from app.services import payments as payments_service
from app.services import settlement

router = APIRouter()


class CreateOrderRequest(BaseModel):
    amount: int  # minor units, e.g. 9900 for ₹99
    currency: str = "INR"
    purpose: Literal["credits", "subscription", "feature_unlock"] = "credits"
    credits: int | None = None
    package_id: str | None = Field(default=None, max_length=64)
    feature_id: str | None = Field(default=None, max_length=64)
    resume_id: str | None = Field(default=None, max_length=64)


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


@router.post("/orders")
async def create_order(
    body: CreateOrderRequest,
    account: Account = Depends(get_current_account),
    gateway=Depends(get_gateway),
):
    """Create Razorpay order; frontend opens checkout with gateway_order_id and key_id."""
    metadata = body.model_dump(include={"credits", "package_id", "feature_id", "resume_id"}, exclude_none=True)
    return await payments_service.create_order(
        account.id,
        body.amount,
        body.currency,
        body.purpose,
        metadata,
        gateway=gateway,
    )


@router.get("/orders")
async def list_orders(
    account: Account = Depends(get_current_account),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    orders = await payments_service.list_orders(account.id, limit=limit, offset=offset)
    return {"orders": [payments_service.order_to_dict(o) for o in orders], "limit": limit, "offset": offset}


@router.post("/verify")
async def verify_payment(body: VerifyPaymentRequest, account: Account = Depends(get_current_account)):
    """Checkout callback: verify signature and settle (safe to repeat)."""
    result = await settlement.verify_and_settle(
        body.razorpay_order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
        account_id=account.id,
    )
    return {"success": result.status == "settled", **result.model_dump()}


@router.post("/webhook")
async def razorpay_webhook(request: Request, x_razorpay_signature: str = Header(..., alias="X-Razorpay-Signature")):
    """Razorpay webhook: payment.captured settles (idempotent), payment.failed fails, subscription.* updates plan."""
    body = await request.body()
    event = await settlement.handle_webhook(body, x_razorpay_signature)
    return {"status": "ok", "event": event}
