import hashlib
import hmac
from datetime import datetime
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import get_settings

SESSION_MAX_AGE = 7 * 24 * 3600


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="resume-credits-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    """Sign an identity payload ({"external_id", "email"?, "name"?}) for the session cookie."""
    return get_session_serializer().dumps(payload)


def load_session_cookie(cookie_value: str, max_age_seconds: int = SESSION_MAX_AGE) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None


def _hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def compute_payment_signature(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    """Razorpay checkout signature: HMAC-SHA256 of "order_id|payment_id" keyed by the API secret."""
    return _hmac_sha256_hex(secret, f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8"))


def verify_payment_signature(gateway_order_id: str, gateway_payment_id: str, signature: str, secret: str) -> bool:
    if not secret or not signature:
        return False
    expected = compute_payment_signature(gateway_order_id, gateway_payment_id, secret)
    return hmac.compare_digest(expected.encode(), signature.encode("utf-8"))


def verify_razorpay_webhook(payload: bytes, signature: str, secret: str) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(_hmac_sha256_hex(secret, payload).encode(), signature.encode("utf-8"))


def build_receipt(account_id: str, now: datetime, max_length: int = 40) -> str:
    """Short receipt for the gateway: cr_<last 8 digits of ms timestamp>_<last 8 chars of account id>."""
    stamp = str(int(now.timestamp() * 1000))[-8:]
    return f"cr_{stamp}_{str(account_id)[-8:]}"[:max_length]
