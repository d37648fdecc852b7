import hashlib
import hmac
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from creditledger.core.config import get_settings


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="creditledger-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_token(claims: dict[str, Any]) -> str:
    """Sign identity claims (sub, email, name) into a bearer token."""
    return get_session_serializer().dumps(claims)


def load_session_token(token: str) -> dict[str, Any] | None:
    settings = get_settings()
    serializer = get_session_serializer()
    try:
        payload = serializer.loads(token, max_age=settings.session_max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None
    return payload if isinstance(payload, dict) else None


def sign_payment_webhook(payload: bytes, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()


def verify_payment_webhook(payload: bytes, signature: str, secret: str) -> bool:
    return hmac.compare_digest(sign_payment_webhook(payload, secret), signature or "")
