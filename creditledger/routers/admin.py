from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from creditledger.deps import require_admin
from creditledger.models.account import Account
from creditledger.routers.auth import account_profile
from creditledger.routers.credits import entry_out
from creditledger.services import accounts as accounts_service
from creditledger.services import admin as admin_service
from creditledger.services import merge as merge_service
from creditledger.services import reconciliation as reconciliation_service
from creditledger.services.reconciliation import ReconciliationReport, RepairStrategy
from creditledger.stores import get_backend

router = APIRouter()


class GrantCreditsRequest(BaseModel):
    account_id: str | None = None
    email: str | None = None
    credits: int = Field(..., gt=0)
    reason: str = ""


class AdjustCreditsRequest(BaseModel):
    amount: int
    reason: str = Field(..., min_length=1)


class RepairRequest(BaseModel):
    report: ReconciliationReport
    strategy: RepairStrategy = "trust_balance"


class MergeRequest(BaseModel):
    email: str = Field(..., min_length=3)


@router.post("/credits/grant")
async def admin_grant_credits(body: GrantCreditsRequest, admin: Account = Depends(require_admin)):
    """Admin: grant credits to an account by id or email."""
    applied = await admin_service.grant_credits(
        admin.id, body.credits, body.reason, account_id=body.account_id, email=body.email
    )
    return {"account_id": applied.account.id, "balance": applied.balance, "entry": entry_out(applied.entry)}


@router.post("/accounts/{account_id}/adjust")
async def admin_adjust_credits(account_id: str, body: AdjustCreditsRequest, admin: Account = Depends(require_admin)):
    """Admin: signed balance correction, journaled as an admin_adjustment entry."""
    applied = await admin_service.adjust_credits(admin.id, account_id, body.amount, body.reason)
    return {"account_id": account_id, "balance": applied.balance, "entry": entry_out(applied.entry)}


@router.get("/accounts/{account_id}")
async def admin_get_account(account_id: str, admin: Account = Depends(require_admin)):
    account = await accounts_service.get_account(account_id)
    return {**account_profile(account), "merged_from": account.merged_from, "version": account.version}


@router.get("/accounts/{account_id}/ledger")
async def admin_account_ledger(
    account_id: str,
    admin: Account = Depends(require_admin),
    limit: int = Query(50, ge=1, le=200),
    cursor: int | None = Query(None, ge=1),
):
    page = await accounts_service.list_ledger(account_id, limit=limit, cursor=cursor)
    return {"entries": [entry_out(e) for e in page.items], "limit": page.limit, "next_cursor": page.next_cursor}


@router.get("/accounts/{account_id}/reconcile")
async def admin_reconcile(account_id: str, admin: Account = Depends(require_admin)):
    """Admin: read-only comparison of the ledger against the cached balance and entitlements."""
    report = await reconciliation_service.reconcile(account_id)
    return {**report.model_dump(mode="json"), "is_consistent": report.is_consistent}


@router.post("/accounts/{account_id}/repair")
async def admin_repair(account_id: str, body: RepairRequest, admin: Account = Depends(require_admin)):
    """Admin: correct a reported discrepancy with an adjustment entry."""
    result = await reconciliation_service.repair(account_id, body.report, admin.id, strategy=body.strategy)
    return result.model_dump(mode="json")


@router.get("/duplicates")
async def admin_duplicates(admin: Account = Depends(require_admin), limit: int = Query(100, ge=1, le=500)):
    groups = await merge_service.find_duplicates(limit)
    return {"duplicates": [g.model_dump() for g in groups]}


@router.post("/duplicates/merge")
async def admin_merge_duplicates(body: MergeRequest, admin: Account = Depends(require_admin)):
    """Admin: merge every account sharing an email into one."""
    result = await merge_service.merge_duplicates(body.email, admin.id)
    return result.model_dump()


@router.get("/audit")
async def admin_audit(
    admin: Account = Depends(require_admin),
    entity_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    events = await get_backend().list_audit(entity_id=entity_id, limit=limit)
    return {"events": [e.model_dump(mode="json") for e in events]}
