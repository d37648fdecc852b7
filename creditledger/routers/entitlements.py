from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from creditledger.deps import get_current_account
from creditledger.models.account import Account
from creditledger.services import entitlements as entitlements_service

router = APIRouter()


class UnlockRequest(BaseModel):
    series_id: str = Field(..., min_length=1)
    episode_number: int = Field(..., ge=0)
    cost: int = Field(..., ge=0)


@router.post("/unlock")
async def unlock_episode(body: UnlockRequest, account: Account = Depends(get_current_account)):
    """Debit credits and unlock the episode. Safe to retry: an unlocked episode is never charged twice."""
    result = await entitlements_service.unlock_episode(account.id, body.series_id, body.episode_number, body.cost)
    return result.model_dump()


@router.get("")
async def list_entitlements(
    account: Account = Depends(get_current_account),
    series_id: str | None = Query(None),
):
    items = await entitlements_service.list_entitlements(account.id, series_id)
    return {"entitlements": [e.model_dump(mode="json") for e in items]}


@router.get("/{series_id}/{episode_number}")
async def check_entitlement(series_id: str, episode_number: int, account: Account = Depends(get_current_account)):
    unlocked = await entitlements_service.has_entitlement(account.id, series_id, episode_number)
    return {"series_id": series_id, "episode_number": episode_number, "unlocked": unlocked}
