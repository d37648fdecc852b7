import pytest

from creditledger.core.exceptions import StaleReconciliationReportError
from creditledger.models.account import Account, Entitlement
from creditledger.models.ledger import CreditPurchaseMetadata
from creditledger.services.balance import apply_entry
from creditledger.services.entitlements import unlock_episode
from creditledger.services.reconciliation import reconcile, repair
from creditledger.stores import Mutation

pytestmark = pytest.mark.asyncio


async def funded_account(make_account):
    """100 welcome + 300 purchase - 30 unlock = 370."""
    await make_account("u1")
    await apply_entry("u1", "purchase", 300, CreditPurchaseMetadata(package_id="x", external_reference="pay-1"))
    await unlock_episode("u1", "series-1", 1, cost=30)


async def test_consistent_account(make_account):
    await funded_account(make_account)
    report = await reconcile("u1")
    assert report.is_consistent
    assert report.opening_balance == 0
    assert report.calculated_balance == report.actual_balance == 370
    assert report.entry_count == 3
    assert report.snapshot_mismatches == []


async def test_reports_balance_discrepancy_without_mutating(backend, make_account):
    await funded_account(make_account)
    backend.accounts["u1"].balance = 400

    report = await reconcile("u1")
    assert report.calculated_balance == 370
    assert report.actual_balance == 400
    assert report.discrepancy == 30
    assert not report.is_consistent

    assert backend.accounts["u1"].balance == 400
    assert len(backend.entries["u1"]) == 3


async def test_reports_entitlement_differences(backend, make_account):
    await funded_account(make_account)
    backend.accounts["u1"].entitlements = [Entitlement(series_id="series-9", episode_number=9)]

    report = await reconcile("u1")
    assert [r.key for r in report.missing_entitlements] == [("series-1", 1)]
    assert [r.key for r in report.extra_entitlements] == [("series-9", 9)]
    assert report.discrepancy == 0


async def test_snapshot_mismatch_is_listed(backend, make_account):
    await funded_account(make_account)
    tampered = backend.entries["u1"][1]
    tampered.balance_after = 999

    report = await reconcile("u1")
    assert report.snapshot_mismatches == [tampered.id]
    assert report.is_consistent


async def test_legacy_account_folds_from_welcome_bonus(backend):
    legacy = Account(id="old", email="old@example.com", balance=100, version=1)
    await backend.commit(Mutation(accounts=[legacy]))

    report = await reconcile("old")
    assert report.opening_balance == 100
    assert report.calculated_balance == 100
    assert report.is_consistent


async def test_repair_trust_balance(backend, make_account):
    await funded_account(make_account)
    backend.accounts["u1"].balance = 400
    backend.accounts["u1"].entitlements.append(Entitlement(series_id="series-9", episode_number=9))
    report = await reconcile("u1")

    result = await repair("u1", report, acting_admin_id="admin-1")
    assert result.applied
    assert result.report.is_consistent

    account = await backend.get_account("u1")
    entries = await backend.all_entries("u1")
    assert account.balance == 400
    assert sum(e.amount for e in entries) == 400
    adjustment = entries[-1]
    assert adjustment.id == result.entry_id
    assert adjustment.type == "admin_adjustment"
    assert adjustment.amount == 30
    assert adjustment.balance_after == 400
    assert adjustment.metadata.source == "repair"
    assert adjustment.metadata.acting_admin_id == "admin-1"
    assert [r.key for r in adjustment.metadata.granted_entitlements] == [("series-9", 9)]
    assert account.has_entitlement("series-9", 9)
    assert account.has_entitlement("series-1", 1)
    assert (await reconcile("u1")).is_consistent

    events = await backend.list_audit(entity_id="u1")
    assert events[0].event_type == "account_repaired"


async def test_repair_trust_ledger(backend, make_account):
    await funded_account(make_account)
    backend.accounts["u1"].balance = 400
    backend.accounts["u1"].entitlements.append(Entitlement(series_id="series-9", episode_number=9))
    report = await reconcile("u1")

    result = await repair("u1", report, acting_admin_id="admin-1", strategy="trust_ledger")
    assert result.applied

    account = await backend.get_account("u1")
    adjustment = (await backend.all_entries("u1"))[-1]
    assert account.balance == 370
    assert adjustment.amount == 0
    assert adjustment.metadata.previous_balance == 400
    assert [r.key for r in adjustment.metadata.dropped_entitlements] == [("series-9", 9)]
    assert not account.has_entitlement("series-9", 9)
    assert account.has_entitlement("series-1", 1)
    assert account.stats.credits_purchased == 300
    assert account.stats.credits_spent == 30
    assert (await reconcile("u1")).is_consistent


async def test_repair_restores_missing_entitlement(backend, make_account):
    await funded_account(make_account)
    backend.accounts["u1"].entitlements = []
    report = await reconcile("u1")

    await repair("u1", report, acting_admin_id="admin-1")
    assert (await backend.get_account("u1")).has_entitlement("series-1", 1)


async def test_repair_is_idempotent(backend, make_account):
    await funded_account(make_account)
    backend.accounts["u1"].balance = 400
    report = await reconcile("u1")

    first = await repair("u1", report, acting_admin_id="admin-1")
    second = await repair("u1", report, acting_admin_id="admin-1")
    assert first.applied
    assert not second.applied
    assert len(await backend.all_entries("u1")) == 4
    assert (await backend.get_account("u1")).balance == 400


async def test_repair_refuses_stale_report(backend, make_account):
    await funded_account(make_account)
    backend.accounts["u1"].balance = 400
    report = await reconcile("u1")
    backend.accounts["u1"].balance = 410

    with pytest.raises(StaleReconciliationReportError):
        await repair("u1", report, acting_admin_id="admin-1")
    assert len(await backend.all_entries("u1")) == 3
