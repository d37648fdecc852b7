import asyncio

import pytest

from creditledger.core.config import get_settings
from creditledger.services import notifications
from creditledger.worker import tasks
from creditledger.worker.cron import sweep_accounts

pytestmark = pytest.mark.asyncio


async def test_sweep_reports_without_repairing(backend, make_account):
    await make_account("u1")
    await make_account("u2")
    await make_account("u3")
    backend.accounts["u2"].balance = 250

    summary = await sweep_accounts()

    assert summary == {"checked": 3, "inconsistent": 1, "snapshot_mismatches": 0}
    assert backend.accounts["u2"].balance == 250
    assert len(backend.entries["u2"]) == 1


async def test_notification_without_webhook_is_skipped(monkeypatch):
    monkeypatch.setattr(get_settings(), "notification_webhook_url", "")
    assert await tasks.deliver_notification({}, "episode_unlocked", "u1", {"series_id": "s"}) is False


async def test_failed_delivery_is_dead_lettered(backend, monkeypatch):
    async def boom(event, account_id, payload):
        raise RuntimeError("endpoint down")

    monkeypatch.setattr(tasks, "post_notification", boom)
    with pytest.raises(RuntimeError):
        await tasks.deliver_notification({"job_id": "job-1"}, "episode_unlocked", "u1", {"cost": 30})

    assert len(backend.failed_jobs) == 1
    failed = backend.failed_jobs[0]
    assert failed.job_name == "deliver_notification"
    assert failed.job_id == "job-1"
    assert failed.args == ["episode_unlocked", "u1", {"cost": 30}]
    assert "endpoint down" in failed.reason


async def test_publish_failure_never_propagates(monkeypatch):
    async def no_pool():
        raise ConnectionError("redis unavailable")

    monkeypatch.setattr(get_settings(), "notifications_backend", "arq")
    monkeypatch.setattr(notifications, "_get_pool", no_pool)
    await notifications.publish(notifications.EPISODE_UNLOCKED, "u1", {"series_id": "s"})


async def test_publish_gives_up_on_an_unreachable_queue(monkeypatch):
    async def hanging_pool():
        await asyncio.sleep(30)

    monkeypatch.setattr(get_settings(), "notifications_backend", "arq")
    monkeypatch.setattr(get_settings(), "notification_publish_timeout_seconds", 0.05)
    monkeypatch.setattr(notifications, "_get_pool", hanging_pool)

    loop = asyncio.get_running_loop()
    started = loop.time()
    await notifications.publish(notifications.EPISODE_UNLOCKED, "u1", {"series_id": "s"})
    assert loop.time() - started < 5


async def test_redis_settings_from_url(monkeypatch):
    monkeypatch.setattr(get_settings(), "redis_url", "redis://:secret@cache.internal:6380/2")
    settings = tasks.get_redis_settings()
    assert (settings.host, settings.port, settings.password, settings.database) == ("cache.internal", 6380, "secret", 2)
