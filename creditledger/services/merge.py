"""Duplicate account merge: a repair tool for historical accounts that share an email."""

from pydantic import BaseModel, Field

from creditledger.core import audit
from creditledger.core.config import get_settings
from creditledger.core.exceptions import BadRequestError, NoDuplicatesFoundError
from creditledger.core.logging import get_logger
from creditledger.models.account import Account, ContentReference
from creditledger.models.ledger import AdminAdjustmentMetadata
from creditledger.services.balance import plan_entry
from creditledger.stores import Mutation, get_backend, run_transaction

log = get_logger(__name__)


class DuplicateGroup(BaseModel):
    email: str
    account_ids: list[str]


class MergeResult(BaseModel):
    email: str
    merged: bool
    primary_account_id: str
    merged_account_ids: list[str] = Field(default_factory=list)
    balance: int
    entitlement_count: int
    entry_id: str | None = None


def merge_score(account: Account) -> int:
    return account.balance + get_settings().merge_entitlement_weight * len(account.entitlements)


def select_primary(accounts: list[Account]) -> Account:
    """Highest score wins; ties go to the oldest account."""
    return min(accounts, key=lambda a: (-merge_score(a), a.created_at, a.id))


async def find_duplicates(limit: int = 100) -> list[DuplicateGroup]:
    groups = await get_backend().find_duplicate_emails(limit)
    return [DuplicateGroup(email=email, account_ids=ids) for email, ids in groups.items()]


async def merge_duplicates(email: str, acting_admin_id: str) -> MergeResult:
    """Fold every account holding ``email`` into one primary account.

    The primary keeps the highest balance among the duplicates (not their sum)
    and the union of their entitlements; the change is journaled as one
    ``admin_adjustment`` entry on the primary and the other accounts are removed.
    Their ledger entries stay in the store under their original account ids.
    """
    email = (email or "").strip().lower()
    if not email:
        raise BadRequestError("Email is required")
    backend = get_backend()

    async def attempt() -> MergeResult:
        accounts = await backend.find_accounts_by_email(email)
        if not accounts:
            raise NoDuplicatesFoundError(email)
        primary = select_primary(accounts)
        if len(accounts) == 1:
            return MergeResult(
                email=email,
                merged=False,
                primary_account_id=primary.id,
                balance=primary.balance,
                entitlement_count=len(primary.entitlements),
            )
        others = [a for a in accounts if a.id != primary.id]
        held = primary.entitlement_keys()
        granted: dict[tuple[str, int], ContentReference] = {}
        for account in others:
            for e in account.entitlements:
                if e.key not in held:
                    granted.setdefault(e.key, ContentReference(series_id=e.series_id, episode_number=e.episode_number))
        target_balance = max(a.balance for a in accounts)
        merged_ids = sorted(a.id for a in others)
        metadata = AdminAdjustmentMetadata(
            acting_admin_id=acting_admin_id,
            reason=f"Merged duplicate accounts for {email}",
            source="merge",
            merged_account_ids=merged_ids,
            granted_entitlements=list(granted.values()),
        )
        updated, entry = plan_entry(primary, "admin_adjustment", target_balance - primary.balance, metadata)
        updated.merged_from = sorted({*primary.merged_from, *merged_ids, *(m for a in others for m in a.merged_from)})
        await backend.commit(Mutation(accounts=[updated], deleted_accounts=others, entries=[entry]))
        return MergeResult(
            email=email,
            merged=True,
            primary_account_id=updated.id,
            merged_account_ids=merged_ids,
            balance=updated.balance,
            entitlement_count=len(updated.entitlements),
            entry_id=entry.id,
        )

    result = await run_transaction(attempt, name="merge_duplicates", key=email)
    if result.merged:
        log.info(
            "accounts_merged",
            email=email,
            primary_account_id=result.primary_account_id,
            merged_account_ids=result.merged_account_ids,
            balance=result.balance,
            acting_admin_id=acting_admin_id,
        )
        await audit.log_event(
            acting_admin_id,
            "accounts_merged",
            "account",
            result.primary_account_id,
            {"email": email, "merged_account_ids": result.merged_account_ids, "balance": result.balance},
        )
    return result
