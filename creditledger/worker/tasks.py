"""ARQ job definitions."""

import uuid
from typing import Any

import httpx
from arq.connections import RedisSettings

from creditledger.core.config import get_settings
from creditledger.core.logging import get_logger
from creditledger.models.failed_job import FailedJob
from creditledger.stores import get_backend

log = get_logger(__name__)


async def _run_with_dlq(
    job_name: str,
    job_id: str | None,
    args: list[Any],
    kwargs: dict[str, Any],
    coro,
) -> Any:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    try:
        return await coro
    except Exception as e:
        fid = job_id or str(uuid.uuid4())
        await get_backend().record_failed_job(
            FailedJob(
                job_name=job_name,
                job_id=fid,
                args=args,
                kwargs=kwargs,
                reason=str(e)[:2000],
                retries=0,
            )
        )
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


async def post_notification(event: str, account_id: str, payload: dict[str, Any]) -> bool:
    """POST one event to the notification endpoint. False when none is configured."""
    settings = get_settings()
    if not settings.notification_webhook_url:
        log.info("notification_skipped", event=event, account_id=account_id, reason="no webhook url")
        return False
    async with httpx.AsyncClient(timeout=settings.notification_timeout_seconds) as client:
        resp = await client.post(
            settings.notification_webhook_url,
            json={"event": event, "account_id": account_id, "payload": payload},
        )
        resp.raise_for_status()
    log.info("notification_delivered", event=event, account_id=account_id, status_code=resp.status_code)
    return True


async def deliver_notification(ctx: dict[str, Any], event: str, account_id: str, payload: dict[str, Any]) -> bool:
    """Deliver a ledger event published after commit."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    return await _run_with_dlq(
        "deliver_notification",
        job_id,
        [event, account_id, payload],
        {},
        post_notification(event, account_id, payload),
    )


async def reconcile_accounts(ctx: dict[str, Any]) -> dict[str, int]:
    """Cron job: nightly read-only reconciliation sweep."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    from creditledger.worker.cron import run_reconciliation_sweep
    return await _run_with_dlq("reconcile_accounts", job_id, [], {}, run_reconciliation_sweep())


async def startup(ctx: dict) -> None:
    await get_backend().connect()


async def shutdown(ctx: dict) -> None:
    await get_backend().close()


def get_redis_settings() -> RedisSettings:
    from urllib.parse import urlparse
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/") or 0),
    )
