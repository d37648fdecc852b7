"""Reconciliation: fold an account's ledger and compare it with the cached projection.

``reconcile`` is read-only. ``repair`` is the only way a discrepancy is
corrected, and it does so by appending an ``admin_adjustment`` entry and
rebuilding the projection from the ledger, never by overwriting the balance.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from creditledger.core.audit import log_event
from creditledger.core.config import get_settings
from creditledger.core.exceptions import (
    AccountNotFoundError,
    BadRequestError,
    InvalidLedgerEntryError,
    StaleReconciliationReportError,
)
from creditledger.core.logging import get_logger
from creditledger.models.account import Account, AccountStats, ContentReference, Entitlement
from creditledger.models.ledger import AdminAdjustmentMetadata, LedgerEntry
from creditledger.services.balance import DEBIT_KINDS
from creditledger.stores import Mutation, get_backend, run_transaction

log = get_logger(__name__)

RepairStrategy = Literal["trust_balance", "trust_ledger"]


class ReconciliationReport(BaseModel):
    account_id: str
    account_version: int
    opening_balance: int
    calculated_balance: int
    actual_balance: int
    discrepancy: int  # actual - calculated
    missing_entitlements: list[ContentReference] = Field(default_factory=list)  # in ledger, not on account
    extra_entitlements: list[ContentReference] = Field(default_factory=list)  # on account, not in ledger
    snapshot_mismatches: list[str] = Field(default_factory=list)  # entry ids
    entry_count: int = 0
    generated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_consistent(self) -> bool:
        return self.discrepancy == 0 and not self.missing_entitlements and not self.extra_entitlements


class RepairResult(BaseModel):
    applied: bool
    strategy: RepairStrategy
    entry_id: str | None = None
    report: ReconciliationReport


@dataclass
class LedgerFold:
    opening_balance: int
    balance: int
    entitlements: dict[tuple[str, int], ContentReference] = field(default_factory=dict)
    stats: AccountStats = field(default_factory=AccountStats)
    snapshot_mismatches: list[str] = field(default_factory=list)


def opening_balance(entries: list[LedgerEntry]) -> int:
    """Accounts opened before the welcome bonus was journaled start from the bonus."""
    if any(e.is_welcome_bonus for e in entries):
        return 0
    return get_settings().welcome_bonus_credits


def fold_ledger(entries: list[LedgerEntry]) -> LedgerFold:
    """Replay entries in creation order."""
    opening = opening_balance(entries)
    fold = LedgerFold(opening_balance=opening, balance=opening)
    for entry in entries:
        fold.balance += entry.amount
        if fold.balance != entry.balance_after:
            fold.snapshot_mismatches.append(entry.id)
        kind = entry.metadata.kind
        if kind == "credit_purchase":
            fold.stats.credits_purchased += entry.amount
        elif kind in DEBIT_KINDS:
            fold.stats.credits_spent += -entry.amount
        refs = [entry.content] if entry.content is not None else []
        if kind == "admin_adjustment":
            refs.extend(entry.metadata.granted_entitlements)
        for ref in refs:
            fold.entitlements.setdefault(ref.key, ref)
    fold.stats.episodes_unlocked = len(fold.entitlements)
    return fold


def build_report(account: Account, entries: list[LedgerEntry]) -> ReconciliationReport:
    fold = fold_ledger(entries)
    stored = account.entitlement_keys()
    extra: dict[tuple[str, int], ContentReference] = {}
    for e in account.entitlements:
        if e.key not in fold.entitlements:
            extra.setdefault(e.key, ContentReference(series_id=e.series_id, episode_number=e.episode_number))
    return ReconciliationReport(
        account_id=account.id,
        account_version=account.version,
        opening_balance=fold.opening_balance,
        calculated_balance=fold.balance,
        actual_balance=account.balance,
        discrepancy=account.balance - fold.balance,
        missing_entitlements=[ref for key, ref in fold.entitlements.items() if key not in stored],
        extra_entitlements=list(extra.values()),
        snapshot_mismatches=fold.snapshot_mismatches,
        entry_count=len(entries),
    )


async def _snapshot(account_id: str) -> tuple[Account, list[LedgerEntry]]:
    """Account plus exactly the entries that produced its current version."""
    backend = get_backend()
    account = await backend.get_account(account_id)
    if account is None:
        raise AccountNotFoundError(account_id)
    entries = [e for e in await backend.all_entries(account_id) if e.sequence <= account.version]
    return account, entries


async def reconcile(account_id: str) -> ReconciliationReport:
    account, entries = await _snapshot(account_id)
    report = build_report(account, entries)
    if not report.is_consistent:
        log.warning(
            "reconciliation_discrepancy",
            account_id=account_id,
            calculated_balance=report.calculated_balance,
            actual_balance=report.actual_balance,
            discrepancy=report.discrepancy,
            missing_entitlements=len(report.missing_entitlements),
            extra_entitlements=len(report.extra_entitlements),
        )
    return report


def _fingerprint(report: ReconciliationReport) -> tuple:
    return (
        report.discrepancy,
        sorted(r.key for r in report.missing_entitlements),
        sorted(r.key for r in report.extra_entitlements),
    )


def _rebuild_entitlements(account: Account, fold: LedgerFold, now: datetime) -> list[Entitlement]:
    unlocked_at = {e.key: e.unlocked_at for e in account.entitlements}
    return [
        Entitlement(series_id=ref.series_id, episode_number=ref.episode_number, unlocked_at=unlocked_at.get(key, now))
        for key, ref in fold.entitlements.items()
    ]


async def repair(
    account_id: str,
    report: ReconciliationReport,
    acting_admin_id: str,
    strategy: RepairStrategy = "trust_balance",
) -> RepairResult:
    """Correct the discrepancy described by ``report`` with one adjustment entry.

    trust_balance: the entry's amount is the discrepancy, so the ledger comes to
    account for the cached balance; unbacked entitlements are recorded as granted.
    trust_ledger: a zero-amount entry records the previous cached values and the
    projection is rebuilt from the ledger.

    Idempotent: a consistent account is left untouched. A report that no longer
    matches a fresh reconciliation is refused.
    """
    if report.account_id != account_id:
        raise BadRequestError("Report belongs to a different account")
    if strategy not in ("trust_balance", "trust_ledger"):
        raise BadRequestError(f"Unknown repair strategy: {strategy}")
    backend = get_backend()

    async def attempt() -> RepairResult:
        account, entries = await _snapshot(account_id)
        fresh = build_report(account, entries)
        if fresh.is_consistent:
            return RepairResult(applied=False, strategy=strategy, report=fresh)
        if _fingerprint(fresh) != _fingerprint(report):
            raise StaleReconciliationReportError(
                details={"discrepancy": fresh.discrepancy, "reported_discrepancy": report.discrepancy}
            )
        fold = fold_ledger(entries)
        trust_balance = strategy == "trust_balance"
        amount = fresh.discrepancy if trust_balance else 0
        if fold.balance + amount < 0:
            raise InvalidLedgerEntryError(
                "Ledger folds to a negative balance; repair with trust_balance",
                details={"calculated_balance": fold.balance},
            )
        now = datetime.utcnow()
        entry = LedgerEntry(
            account_id=account_id,
            type="admin_adjustment",
            amount=amount,
            balance_after=fold.balance + amount,
            sequence=account.version + 1,
            metadata=AdminAdjustmentMetadata(
                acting_admin_id=acting_admin_id,
                reason=f"Reconciliation repair ({strategy})",
                source="repair",
                granted_entitlements=fresh.extra_entitlements if trust_balance else [],
                previous_balance=account.balance,
                dropped_entitlements=[] if trust_balance else fresh.extra_entitlements,
            ),
            created_at=now,
        )
        rebuilt = fold_ledger([*entries, entry])
        updated = account.model_copy(deep=True)
        updated.balance = rebuilt.balance
        updated.entitlements = _rebuild_entitlements(account, rebuilt, now)
        updated.stats = rebuilt.stats
        updated.version = account.version + 1
        updated.updated_at = now
        await backend.commit(Mutation(accounts=[updated], entries=[entry]))
        return RepairResult(
            applied=True,
            strategy=strategy,
            entry_id=entry.id,
            report=build_report(updated, [*entries, entry]),
        )

    result = await run_transaction(attempt, name="repair", key=account_id)
    if result.applied:
        log.info(
            "account_repaired",
            account_id=account_id,
            strategy=strategy,
            entry_id=result.entry_id,
            balance=result.report.actual_balance,
            acting_admin_id=acting_admin_id,
        )
        await log_event(
            acting_admin_id,
            "account_repaired",
            "account",
            account_id,
            {"strategy": strategy, "entry_id": result.entry_id, "discrepancy": report.discrepancy},
        )
    return result
