from fastapi import APIRouter, Depends

from creditledger.deps import get_current_account
from creditledger.models.account import Account

router = APIRouter()


def account_profile(account: Account) -> dict:
    return {
        "id": account.id,
        "email": account.email,
        "display_name": account.display_name,
        "role": account.role,
        "timezone": account.timezone,
        "balance": account.balance,
        "stats": account.stats.model_dump(),
        "created_at": account.created_at.isoformat(),
    }


@router.get("/me")
async def auth_me(account: Account = Depends(get_current_account)):
    """Return the caller's account; the first authenticated call opens it with the welcome bonus."""
    return account_profile(account)
