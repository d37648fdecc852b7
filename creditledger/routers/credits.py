from fastapi import APIRouter, Depends, Query

from creditledger.deps import get_current_account
from creditledger.models.account import Account
from creditledger.models.ledger import LedgerEntry
from creditledger.services import accounts as accounts_service
from creditledger.services import payments as payments_service

router = APIRouter()


def entry_out(e: LedgerEntry) -> dict:
    return {
        "id": e.id,
        "type": e.type,
        "amount": e.amount,
        "balance_after": e.balance_after,
        "sequence": e.sequence,
        "metadata": e.metadata.model_dump(mode="json"),
        "created_at": e.created_at.isoformat(),
    }


@router.get("/balance")
async def credits_balance(account: Account = Depends(get_current_account)):
    """Return current credit balance."""
    balance = await accounts_service.get_balance(account.id)
    return {"balance": balance}


@router.get("/ledger")
async def credits_ledger(
    account: Account = Depends(get_current_account),
    limit: int = Query(50, ge=1, le=200),
    cursor: int | None = Query(None, ge=1),
):
    """Return ledger entries for the caller (newest first)."""
    page = await accounts_service.list_ledger(account.id, limit=limit, cursor=cursor)
    return {"entries": [entry_out(e) for e in page.items], "limit": page.limit, "next_cursor": page.next_cursor}


@router.get("/packages")
async def credit_packages():
    return {"packages": [p.model_dump() for p in payments_service.list_packages()]}
