"""Balance engine: apply one ledger entry to an account as a single atomic unit.

``plan_entry`` is pure: given the account as read, it validates the change and
returns the new projection plus the entry to append. ``apply_entry`` commits
both together, conditioned on the version that was read, and re-plans from a
fresh read when another writer got there first.
"""

from dataclasses import dataclass
from datetime import datetime

from creditledger.core.exceptions import (
    AccountNotFoundError,
    AlreadyUnlockedError,
    DuplicateExternalReferenceError,
    InsufficientCreditsError,
    InvalidLedgerEntryError,
)
from creditledger.core.logging import get_logger
from creditledger.models.account import Account, Entitlement
from creditledger.models.ledger import METADATA_KINDS, EntryMetadata, LedgerEntry
from creditledger.stores import Mutation, get_backend, load_account, run_transaction

log = get_logger(__name__)

CREDIT_KINDS = ("credit_purchase", "admin_grant", "bonus")
DEBIT_KINDS = ("spend", "vote_package")


@dataclass
class AppliedEntry:
    account: Account
    entry: LedgerEntry

    @property
    def balance(self) -> int:
        return self.account.balance


def validate_entry(entry_type: str, amount: int, metadata: EntryMetadata) -> None:
    kinds = METADATA_KINDS.get(entry_type)
    if kinds is None:
        raise InvalidLedgerEntryError(f"Unknown entry type: {entry_type}")
    if metadata.kind not in kinds:
        raise InvalidLedgerEntryError(
            f"{metadata.kind} metadata is not valid for {entry_type} entries",
            details={"type": entry_type, "metadata_kind": metadata.kind},
        )
    if metadata.kind in CREDIT_KINDS and amount <= 0:
        raise InvalidLedgerEntryError(f"{entry_type} amount must be positive", details={"amount": amount})
    if metadata.kind in DEBIT_KINDS and amount > 0:
        raise InvalidLedgerEntryError(f"{entry_type} amount must not be positive", details={"amount": amount})


def _apply_stats(account: Account, amount: int, metadata: EntryMetadata) -> None:
    if metadata.kind == "credit_purchase":
        account.stats.credits_purchased += amount
    elif metadata.kind in DEBIT_KINDS:
        account.stats.credits_spent += -amount


def plan_entry(
    account: Account,
    entry_type: str,
    amount: int,
    metadata: EntryMetadata,
    now: datetime | None = None,
) -> tuple[Account, LedgerEntry]:
    """Return (updated account, entry) or raise; never touches the store."""
    validate_entry(entry_type, amount, metadata)
    if metadata.kind == "admin_adjustment":
        metadata = metadata.model_copy(update={"previous_balance": account.balance})
    content = metadata.content if metadata.kind == "spend" else None
    if content is not None and account.has_entitlement(content.series_id, content.episode_number):
        raise AlreadyUnlockedError(content.series_id, content.episode_number)
    balance_after = account.balance + amount
    if balance_after < 0:
        raise InsufficientCreditsError(required=-amount, available=account.balance)

    now = now or datetime.utcnow()
    updated = account.model_copy(deep=True)
    updated.balance = balance_after
    updated.version = account.version + 1
    updated.updated_at = now
    _apply_stats(updated, amount, metadata)
    if content is not None:
        updated.entitlements.append(
            Entitlement(series_id=content.series_id, episode_number=content.episode_number, unlocked_at=now)
        )
        updated.stats.episodes_unlocked += 1
    if metadata.kind == "admin_adjustment":
        held = updated.entitlement_keys()
        for ref in metadata.granted_entitlements:
            if ref.key in held:
                continue
            updated.entitlements.append(
                Entitlement(series_id=ref.series_id, episode_number=ref.episode_number, unlocked_at=now)
            )
            updated.stats.episodes_unlocked += 1
            held.add(ref.key)

    entry = LedgerEntry(
        account_id=account.id,
        type=entry_type,
        amount=amount,
        balance_after=balance_after,
        sequence=updated.version,
        metadata=metadata,
        created_at=now,
    )
    return updated, entry


async def apply_entry(account_id: str, entry_type: str, amount: int, metadata: EntryMetadata) -> AppliedEntry:
    """Append one entry and update the account projection in the same transaction.

    Raises InsufficientCreditsError, AlreadyUnlockedError,
    DuplicateExternalReferenceError, InvalidLedgerEntryError,
    AccountNotFoundError; ConcurrentModificationError once retries run out.
    An account id that was merged away is applied to the account it was merged into.
    """
    validate_entry(entry_type, amount, metadata)
    backend = get_backend()
    external_reference = getattr(metadata, "external_reference", None)

    async def attempt() -> AppliedEntry:
        account = await load_account(backend, account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        if external_reference and await backend.find_entry_by_external_reference(external_reference):
            raise DuplicateExternalReferenceError(external_reference)
        updated, entry = plan_entry(account, entry_type, amount, metadata)
        await backend.commit(Mutation(accounts=[updated], entries=[entry]))
        return AppliedEntry(account=updated, entry=entry)

    applied = await run_transaction(attempt, name="apply_entry", key=account_id)
    log.info(
        "ledger_entry_applied",
        account_id=account_id,
        entry_id=applied.entry.id,
        type=entry_type,
        amount=amount,
        balance_after=applied.balance,
    )
    return applied
