import pytest

from creditledger.core.config import get_settings
from creditledger.core.exceptions import ConcurrentModificationError, StoreUnavailableError
from creditledger.models.account import ContentReference
from creditledger.models.contest import ContestActivity
from creditledger.models.ledger import SpendMetadata
from creditledger.services.balance import plan_entry
from creditledger.services.entitlements import unlock_episode
from creditledger.stores import Mutation

pytestmark = pytest.mark.asyncio

UNLOCK = {"series_id": "series-1", "episode_number": 1, "cost": 30}


def failing_commit(backend, monkeypatch, exc_type):
    calls = []

    async def commit(mutation):
        calls.append(mutation)
        raise exc_type()

    monkeypatch.setattr(backend, "commit", commit)
    return calls


async def test_conflicts_exhaust_retries_and_write_nothing(backend, make_account, monkeypatch):
    await make_account("u1")
    calls = failing_commit(backend, monkeypatch, ConcurrentModificationError)

    with pytest.raises(ConcurrentModificationError) as exc:
        await unlock_episode("u1", "series-1", 1, cost=30)

    assert exc.value.retriable
    assert len(calls) == get_settings().ledger_max_retries
    account = backend.accounts["u1"]
    assert (account.balance, account.version, account.entitlements) == (100, 1, [])
    assert len(backend.entries["u1"]) == 1


async def test_store_unavailable_is_not_retried(backend, make_account, monkeypatch):
    await make_account("u1")
    calls = failing_commit(backend, monkeypatch, StoreUnavailableError)

    with pytest.raises(StoreUnavailableError) as exc:
        await unlock_episode("u1", "series-1", 1, cost=30)

    assert exc.value.retriable
    assert len(calls) == 1
    assert backend.accounts["u1"].balance == 100


async def test_rejected_commit_leaves_every_record_untouched(backend, make_account):
    account = await make_account("u1")
    updated, entry = plan_entry(
        account, "spend", -30, SpendMetadata(content=ContentReference(series_id="s", episode_number=1))
    )
    stale = ContestActivity.new("u1", "c1")
    stale.version = 3

    with pytest.raises(ConcurrentModificationError):
        await backend.commit(Mutation(accounts=[updated], entries=[entry], activities=[stale]))

    assert backend.accounts["u1"].balance == 100
    assert backend.accounts["u1"].version == 1
    assert [e.sequence for e in backend.entries["u1"]] == [1]
    assert backend.activities == {}


async def test_conflict_envelope_is_409_and_retriable(client, auth_headers, make_account, backend, monkeypatch):
    await make_account("u1")
    failing_commit(backend, monkeypatch, ConcurrentModificationError)

    r = await client.post("/v1/entitlements/unlock", json=UNLOCK, headers=auth_headers("u1"))

    assert r.status_code == 409
    error = r.json()["error"]
    assert error["code"] == "CONCURRENT_MODIFICATION"
    assert error["retriable"] is True


async def test_store_unavailable_envelope_is_503(client, auth_headers, make_account, backend, monkeypatch):
    await make_account("u1")
    failing_commit(backend, monkeypatch, StoreUnavailableError)

    r = await client.post("/v1/entitlements/unlock", json=UNLOCK, headers=auth_headers("u1"))

    assert r.status_code == 503
    error = r.json()["error"]
    assert error["code"] == "STORE_UNAVAILABLE"
    assert error["retriable"] is True
