"""Administrative credit changes. Both are journaled and audited like any other entry."""

from creditledger.core.audit import log_event
from creditledger.core.exceptions import BadRequestError
from creditledger.core.logging import get_logger
from creditledger.models.ledger import AdminAdjustmentMetadata, AdminGrantMetadata
from creditledger.services import accounts as accounts_service
from creditledger.services import balance as balance_engine
from creditledger.services.balance import AppliedEntry

log = get_logger(__name__)


async def _resolve_account_id(account_id: str | None, email: str | None) -> str:
    if account_id:
        return account_id
    if email:
        return (await accounts_service.get_account_by_email(email)).id
    raise BadRequestError("account_id or email is required")


async def grant_credits(
    acting_admin_id: str,
    credits: int,
    reason: str = "",
    account_id: str | None = None,
    email: str | None = None,
) -> AppliedEntry:
    if credits <= 0:
        raise BadRequestError("Credits must be positive")
    target = await _resolve_account_id(account_id, email)
    metadata = AdminGrantMetadata(acting_admin_id=acting_admin_id, reason=reason or "Credits granted by admin")
    applied = await balance_engine.apply_entry(target, "admin_grant", credits, metadata)
    await log_event(acting_admin_id, "credits_granted", "account", target, {"credits": credits, "reason": metadata.reason})
    log.info("credits_granted", account_id=target, credits=credits, acting_admin_id=acting_admin_id)
    return applied


async def adjust_credits(acting_admin_id: str, account_id: str, amount: int, reason: str) -> AppliedEntry:
    """Signed correction; cannot take the balance below zero."""
    if not reason:
        raise BadRequestError("Reason is required")
    metadata = AdminAdjustmentMetadata(
        acting_admin_id=acting_admin_id,
        reason=reason,
        source="manual",
    )
    applied = await balance_engine.apply_entry(account_id, "admin_adjustment", amount, metadata)
    await log_event(acting_admin_id, "credits_adjusted", "account", account_id, {"amount": amount, "reason": reason})
    log.info("credits_adjusted", account_id=account_id, amount=amount, acting_admin_id=acting_admin_id)
    return applied
