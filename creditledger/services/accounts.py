"""Accounts: one per verified subject, opened with the welcome bonus."""

from datetime import datetime

from creditledger.core.config import get_settings
from creditledger.core.exceptions import AccountNotFoundError
from creditledger.core.logging import get_logger
from creditledger.core.pagination import CursorPage, clamp_limit
from creditledger.models.account import Account
from creditledger.models.ledger import WELCOME_BONUS_REASON, BonusMetadata, LedgerEntry
from creditledger.services.balance import plan_entry
from creditledger.services.identity import Identity
from creditledger.stores import Mutation, get_backend, load_account, run_transaction

log = get_logger(__name__)


def _role_for(email: str, current: str = "user") -> str:
    if email and email in get_settings().admin_emails:
        return "admin"
    return current


def open_account(identity: Identity, now: datetime | None = None) -> Mutation:
    """Mutation creating the account and, when configured, its welcome bonus entry."""
    settings = get_settings()
    blank = Account(
        id=identity.account_id,
        email=identity.email,
        display_name=identity.display_name,
        role=_role_for(identity.email),
        timezone=settings.default_timezone,
    )
    if settings.welcome_bonus_credits <= 0:
        return Mutation(accounts=[blank.model_copy(update={"version": 1})])
    created, entry = plan_entry(
        blank,
        "bonus",
        settings.welcome_bonus_credits,
        BonusMetadata(reason=WELCOME_BONUS_REASON),
        now=now,
    )
    return Mutation(accounts=[created], entries=[entry])


async def get_or_create_account(identity: Identity) -> Account:
    """Return the account for a verified identity, creating it on first access.

    Profile claims (email, display name) are refreshed when they change. A
    subject whose account was merged into another resolves to that account.
    """
    backend = get_backend()

    async def attempt() -> Account:
        account = await backend.get_account(identity.account_id)
        if account is None:
            primary = await backend.find_merged_account(identity.account_id)
            if primary is not None:
                log.info("merged_account_resolved", account_id=identity.account_id, primary_account_id=primary.id)
                return primary
            mutation = open_account(identity)
            await backend.commit(mutation)
            created = mutation.accounts[0]
            log.info("account_created", account_id=created.id, email=created.email, balance=created.balance)
            return created
        role = _role_for(identity.email, account.role)
        if (account.email, account.display_name, account.role) == (identity.email, identity.display_name, role):
            return account
        updated = account.model_copy(deep=True)
        updated.email = identity.email
        updated.display_name = identity.display_name
        updated.role = role
        updated.version = account.version + 1
        updated.updated_at = datetime.utcnow()
        await backend.commit(Mutation(accounts=[updated]))
        log.info("account_profile_updated", account_id=updated.id, email=updated.email)
        return updated

    return await run_transaction(attempt, name="get_or_create_account", key=identity.account_id)


async def get_account(account_id: str) -> Account:
    account = await load_account(get_backend(), account_id)
    if account is None:
        raise AccountNotFoundError(account_id)
    return account


async def get_account_by_email(email: str) -> Account:
    """Oldest account holding this email."""
    email = (email or "").strip().lower()
    accounts = await get_backend().find_accounts_by_email(email) if email else []
    if not accounts:
        raise AccountNotFoundError(email=email)
    return min(accounts, key=lambda a: a.created_at)


async def get_balance(account_id: str) -> int:
    return (await get_account(account_id)).balance


async def list_ledger(account_id: str, limit: int = 50, cursor: int | None = None) -> CursorPage[LedgerEntry]:
    """Entries newest first; pass ``next_cursor`` back as ``cursor`` for the next page."""
    limit = clamp_limit(limit, get_settings().ledger_page_max)
    entries = await get_backend().list_entries(account_id, limit, before_sequence=cursor)
    next_cursor = entries[-1].sequence if len(entries) == limit else None
    return CursorPage[LedgerEntry](items=entries, limit=limit, next_cursor=next_cursor)
