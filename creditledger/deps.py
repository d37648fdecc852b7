"""Shared FastAPI dependencies."""

from fastapi import Request

from creditledger.core.exceptions import ForbiddenError, InvalidCredentialError
from creditledger.models.account import Account
from creditledger.services.accounts import get_or_create_account
from creditledger.services.identity import Identity, resolve_identity


def bearer_credential(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, credential = header.partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        raise InvalidCredentialError("Missing bearer credential")
    return credential.strip()


async def get_identity(request: Request) -> Identity:
    """Dependency: verify the bearer credential and return its identity."""
    return resolve_identity(bearer_credential(request))


async def get_current_account(request: Request) -> Account:
    """Dependency: account for the verified caller, created on first access."""
    identity = await get_identity(request)
    return await get_or_create_account(identity)


async def require_admin(request: Request) -> Account:
    """Dependency: require current account to have role admin."""
    account = await get_current_account(request)
    if account.role != "admin":
        raise ForbiddenError("Admin only")
    return account
