"""Credit packages and the payment-completion webhook: verified, idempotent credit apply."""

import json

from pydantic import BaseModel

from creditledger.core.audit import log_event
from creditledger.core.config import get_settings
from creditledger.core.exceptions import BadRequestError, DuplicateExternalReferenceError
from creditledger.core.logging import get_logger
from creditledger.core.security import verify_payment_webhook
from creditledger.models.ledger import CreditPurchaseMetadata
from creditledger.services import balance as balance_engine
from creditledger.services import notifications

log = get_logger(__name__)

PAYMENT_COMPLETED = "payment.completed"


class CreditPackage(BaseModel):
    id: str
    credits: int
    price: int  # minor currency units
    currency: str = "USD"


CREDIT_PACKAGES: dict[str, CreditPackage] = {
    "starter": CreditPackage(id="starter", credits=50, price=499),
    "popular": CreditPackage(id="popular", credits=100, price=999),
    "premium": CreditPackage(id="premium", credits=200, price=1999),
}


class PaymentEvent(BaseModel):
    account_id: str
    package_id: str
    credits: int = 0
    amount: int | None = None
    currency: str | None = None
    external_reference: str


def list_packages() -> list[CreditPackage]:
    return list(CREDIT_PACKAGES.values())


def credits_for(event: PaymentEvent) -> int:
    package = CREDIT_PACKAGES.get(event.package_id)
    if package is None:
        return event.credits
    if event.credits and event.credits != package.credits:
        log.warning(
            "payment_credits_mismatch",
            package_id=event.package_id,
            event_credits=event.credits,
            package_credits=package.credits,
            external_reference=event.external_reference,
        )
    return package.credits


async def handle_webhook(payload: bytes, signature: str) -> dict:
    """Verify HMAC and credit the account once per external reference (payment.completed)."""
    settings = get_settings()
    if not settings.payment_webhook_secret:
        raise BadRequestError("Webhook secret not configured")
    if not verify_payment_webhook(payload, signature, settings.payment_webhook_secret):
        raise BadRequestError("Invalid webhook signature")
    try:
        data = json.loads(payload.decode())
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BadRequestError("Malformed webhook payload") from e
    event_type = data.get("type") if isinstance(data, dict) else None
    if event_type != PAYMENT_COMPLETED:
        log.info("payment_event_ignored", type=event_type)
        return {"status": "ignored"}
    try:
        event = PaymentEvent.model_validate(data.get("data") or {})
    except ValueError as e:
        raise BadRequestError("Malformed payment event", details={"errors": str(e)[:500]}) from e
    if not event.external_reference:
        raise BadRequestError("external_reference is required")

    credits = credits_for(event)
    metadata = CreditPurchaseMetadata(
        package_id=event.package_id,
        external_reference=event.external_reference,
        amount_paid=event.amount,
        currency=event.currency,
    )
    try:
        applied = await balance_engine.apply_entry(event.account_id, "purchase", credits, metadata)
    except DuplicateExternalReferenceError:
        log.info("payment_already_applied", external_reference=event.external_reference, account_id=event.account_id)
        return {"status": "duplicate"}

    await log_event(
        event.account_id,
        "payment_captured",
        "payment",
        event.external_reference,
        {"amount": event.amount, "currency": event.currency, "credits": credits, "package_id": event.package_id},
    )
    await notifications.publish(
        notifications.CREDIT_PURCHASE_SUCCEEDED,
        event.account_id,
        {"package_id": event.package_id, "credits": credits, "balance": applied.balance},
    )
    return {"status": "applied", "entry_id": applied.entry.id, "balance": applied.balance}
