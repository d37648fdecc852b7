import asyncio

import pytest

from creditledger.core.exceptions import BadRequestError, InsufficientCreditsError
from creditledger.models.account import ContentReference
from creditledger.models.ledger import CreditPurchaseMetadata, SpendMetadata
from creditledger.services.balance import apply_entry
from creditledger.services.entitlements import has_entitlement, list_entitlements, unlock_episode

pytestmark = pytest.mark.asyncio


async def test_purchase_then_unlock_is_idempotent(backend, make_account):
    account = await make_account("u1")
    assert account.balance == 100

    await apply_entry("u1", "purchase", 300, CreditPurchaseMetadata(package_id="x", external_reference="pay-1"))
    assert (await backend.get_account("u1")).balance == 400

    first = await unlock_episode("u1", "series-1", 3, cost=30)
    assert first.already_unlocked is False
    assert first.credits_charged == 30
    assert first.balance == 370
    assert await has_entitlement("u1", "series-1", 3)

    second = await unlock_episode("u1", "series-1", 3, cost=30)
    assert second.already_unlocked is True
    assert second.credits_charged == 0
    assert second.balance == 370

    spends = [e for e in await backend.all_entries("u1") if e.type == "spend"]
    assert len(spends) == 1


async def test_unlock_without_credits_fails(backend, make_account):
    await make_account("u1")
    with pytest.raises(InsufficientCreditsError):
        await unlock_episode("u1", "series-1", 1, cost=101)
    assert not await has_entitlement("u1", "series-1", 1)


async def test_free_episode_is_still_journaled(backend, make_account):
    await make_account("u1")
    result = await unlock_episode("u1", "series-1", 0, cost=0)
    assert result.balance == 100
    entries = await backend.all_entries("u1")
    assert entries[-1].type == "spend"
    assert entries[-1].amount == 0


async def test_rejects_negative_cost(make_account):
    await make_account("u1")
    with pytest.raises(BadRequestError):
        await unlock_episode("u1", "series-1", 1, cost=-5)


async def test_concurrent_unlocks_of_same_episode_charge_once(backend, make_account):
    await make_account("u1")
    await apply_entry(
        "u1", "spend", -70, SpendMetadata(content=ContentReference(series_id="other", episode_number=1))
    )

    results = await asyncio.gather(
        unlock_episode("u1", "series-1", 5, cost=30),
        unlock_episode("u1", "series-1", 5, cost=30),
        return_exceptions=True,
    )
    charged = [r for r in results if not isinstance(r, Exception) and r.credits_charged == 30]
    others = [r for r in results if r not in charged]
    assert len(charged) == 1
    assert len(others) == 1
    other = others[0]
    assert isinstance(other, InsufficientCreditsError) or other.already_unlocked
    account = await backend.get_account("u1")
    assert account.balance == 0
    assert account.has_entitlement("series-1", 5)


async def test_list_entitlements_filters_by_series(make_account):
    await make_account("u1")
    await unlock_episode("u1", "b", 2, cost=0)
    await unlock_episode("u1", "a", 1, cost=0)
    await unlock_episode("u1", "b", 1, cost=0)

    everything = await list_entitlements("u1")
    assert [(e.series_id, e.episode_number) for e in everything] == [("a", 1), ("b", 1), ("b", 2)]
    only_b = await list_entitlements("u1", series_id="b")
    assert [e.episode_number for e in only_b] == [1, 2]
