"""Razorpay order creation behind a bounded timeout."""

import asyncio
from typing import Any

import razorpay
import requests
from razorpay.errors import BadRequestError as RazorpayBadRequestError
from razorpay.errors import GatewayError as RazorpayGatewayError
from razorpay.errors import ServerError as RazorpayServerError

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, GatewayError
from app.core.logging import get_logger

log = get_logger(__name__)


class RazorpayGateway:
    """The one outbound call the credit core makes: create an order."""

    def __init__(self, key_id: str, key_secret: str, timeout_seconds: float = 10.0):
        self.key_id = key_id
        self.timeout_seconds = timeout_seconds
        self._client = razorpay.Client(auth=(key_id, key_secret))

    async def create_order(self, amount: int, currency: str, receipt: str, notes: dict[str, Any]) -> dict:
        """Return the gateway order ({"id", "amount", "currency", ...}); any failure or timeout is GatewayError."""
        data = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        settings = get_settings()
        try:
            return await asyncio.wait_for(
                # wait_for bounds the await; timeout bounds the HTTP call in the worker thread
                asyncio.to_thread(self._client.order.create, data, timeout=self.timeout_seconds),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            log.error("gateway_timeout", timeout_seconds=self.timeout_seconds, receipt=receipt)
            raise GatewayError("Payment gateway timed out") from e
        except (
            RazorpayBadRequestError,
            RazorpayServerError,
            RazorpayGatewayError,
            requests.RequestException,
        ) as e:
            log.error("gateway_order_failed", error=str(e), error_type=type(e).__name__, receipt=receipt)
            details = {} if settings.is_production else {"gateway_error": type(e).__name__, "description": str(e)}
            raise GatewayError("Failed to create payment order", details=details) from e


def get_gateway() -> RazorpayGateway:
    settings = get_settings()
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise BadRequestError("Payments not configured")
    return RazorpayGateway(
        settings.razorpay_key_id,
        settings.razorpay_key_secret,
        timeout_seconds=settings.razorpay_timeout_seconds,
    )
