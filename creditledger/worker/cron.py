"""Cron: reconcile every account against its ledger. Reports only; repairs are an admin action."""

import json
from datetime import datetime

import redis.asyncio as aioredis

from creditledger.core.config import get_settings
from creditledger.core.exceptions import AccountNotFoundError
from creditledger.core.logging import get_logger
from creditledger.services.reconciliation import reconcile
from creditledger.stores import get_backend

log = get_logger(__name__)

LAST_SWEEP_KEY = "creditledger:reconciliation:last_sweep"
PAGE_SIZE = 500


async def sweep_accounts() -> dict[str, int]:
    """Reconcile every account; discrepancies are logged by ``reconcile``."""
    backend = get_backend()
    checked = inconsistent = snapshot_mismatches = 0
    after: str | None = None
    while True:
        ids = await backend.list_account_ids(after=after, limit=PAGE_SIZE)
        if not ids:
            break
        for account_id in ids:
            try:
                report = await reconcile(account_id)
            except AccountNotFoundError:
                continue  # merged away since the page was read
            checked += 1
            if not report.is_consistent:
                inconsistent += 1
            if report.snapshot_mismatches:
                snapshot_mismatches += 1
        after = ids[-1]
    return {"checked": checked, "inconsistent": inconsistent, "snapshot_mismatches": snapshot_mismatches}


async def run_reconciliation_sweep() -> dict[str, int]:
    summary = await sweep_accounts()
    log.info("reconciliation_sweep_done", **summary)
    redis = aioredis.from_url(get_settings().redis_url, decode_responses=True)
    try:
        await redis.set(LAST_SWEEP_KEY, json.dumps({**summary, "finished_at": datetime.utcnow().isoformat()}))
    finally:
        await redis.aclose()
    return summary
