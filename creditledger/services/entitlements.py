"""Episode unlocks: a credit debit and the entitlement it buys, committed together."""

from pydantic import BaseModel

from creditledger.core.exceptions import AlreadyUnlockedError, BadRequestError
from creditledger.core.logging import get_logger
from creditledger.models.account import ContentReference, Entitlement
from creditledger.models.ledger import SpendMetadata
from creditledger.services import accounts as accounts_service
from creditledger.services import balance as balance_engine
from creditledger.services import notifications

log = get_logger(__name__)


class EntitlementResult(BaseModel):
    series_id: str
    episode_number: int
    already_unlocked: bool = False
    credits_charged: int = 0
    balance: int
    entry_id: str | None = None


async def unlock_episode(account_id: str, series_id: str, episode_number: int, cost: int) -> EntitlementResult:
    """Debit ``cost`` and grant the episode. Retrying an unlock never charges twice:
    an existing entitlement is reported as success with ``already_unlocked``.
    """
    if cost < 0:
        raise BadRequestError("Cost must not be negative")
    if not series_id or episode_number < 0:
        raise BadRequestError("Invalid episode reference")
    metadata = SpendMetadata(
        content=ContentReference(series_id=series_id, episode_number=episode_number),
        description=f"Unlocked episode {episode_number}",
    )
    try:
        applied = await balance_engine.apply_entry(account_id, "spend", -cost, metadata)
    except AlreadyUnlockedError:
        account = await accounts_service.get_account(account_id)
        log.info("episode_already_unlocked", account_id=account_id, series_id=series_id, episode_number=episode_number)
        return EntitlementResult(
            series_id=series_id,
            episode_number=episode_number,
            already_unlocked=True,
            balance=account.balance,
        )
    log.info(
        "episode_unlocked",
        account_id=account_id,
        series_id=series_id,
        episode_number=episode_number,
        cost=cost,
        balance=applied.balance,
    )
    await notifications.publish(
        notifications.EPISODE_UNLOCKED,
        account_id,
        {"series_id": series_id, "episode_number": episode_number, "cost": cost},
    )
    return EntitlementResult(
        series_id=series_id,
        episode_number=episode_number,
        credits_charged=cost,
        balance=applied.balance,
        entry_id=applied.entry.id,
    )


async def list_entitlements(account_id: str, series_id: str | None = None) -> list[Entitlement]:
    account = await accounts_service.get_account(account_id)
    items = [e for e in account.entitlements if series_id is None or e.series_id == series_id]
    return sorted(items, key=lambda e: (e.series_id, e.episode_number))


async def has_entitlement(account_id: str, series_id: str, episode_number: int) -> bool:
    account = await accounts_service.get_account(account_id)
    return account.has_entitlement(series_id, episode_number)
