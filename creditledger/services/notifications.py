"""Fire-and-forget events for the notification collaborator.

Publishing happens after the ledger commit; a failure here is logged and never
propagates to the caller. Enqueueing is bounded by
``notification_publish_timeout_seconds`` so an unreachable Redis cannot hold
up the request that triggered the event.
"""

import asyncio
from typing import Any

from creditledger.core.config import get_settings
from creditledger.core.logging import get_logger

log = get_logger(__name__)

CREDIT_PURCHASE_SUCCEEDED = "credit_purchase_succeeded"
EPISODE_UNLOCKED = "episode_unlocked"
VOTE_PACKAGE_PURCHASED = "vote_package_purchased"

_pool = None


async def _get_pool():
    global _pool
    if _pool is None:
        from arq import create_pool
        from creditledger.worker.tasks import get_redis_settings
        _pool = await create_pool(get_redis_settings())
    return _pool


async def _enqueue(event: str, account_id: str, payload: dict[str, Any]) -> None:
    pool = await _get_pool()
    await pool.enqueue_job("deliver_notification", event, account_id, payload)


async def publish(event: str, account_id: str, payload: dict[str, Any] | None = None) -> None:
    settings = get_settings()
    payload = payload or {}
    try:
        if settings.notifications_backend == "arq":
            await asyncio.wait_for(
                _enqueue(event, account_id, payload),
                timeout=settings.notification_publish_timeout_seconds,
            )
        log.info("notification_published", event=event, account_id=account_id, backend=settings.notifications_backend)
    except Exception as e:
        log.warning("notification_publish_failed", event=event, account_id=account_id, reason=repr(e)[:500])


async def close() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
