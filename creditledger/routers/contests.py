from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from creditledger.deps import get_current_account
from creditledger.models.account import Account
from creditledger.services import contests as contests_service

router = APIRouter()


class VotePackageRequest(BaseModel):
    package_type: str


class CastVoteRequest(BaseModel):
    submission_id: str
    vote_type: str = "free"


@router.get("/vote-packages")
async def vote_packages():
    return {
        "packages": [p.model_dump() for p in contests_service.VOTE_PACKAGES.values()],
        "weights": contests_service.VOTE_WEIGHTS,
        "credit_costs": contests_service.VOTE_CREDIT_COSTS,
    }


@router.get("/{contest_id}/activity")
async def contest_activity(contest_id: str, account: Account = Depends(get_current_account)):
    activity = await contests_service.get_activity(account.id, contest_id)
    return activity.model_dump(mode="json", exclude={"version"})


@router.post("/{contest_id}/daily-claim")
async def claim_daily_vote(contest_id: str, account: Account = Depends(get_current_account)):
    result = await contests_service.claim_daily_vote(account.id, contest_id)
    return result.model_dump()


@router.post("/{contest_id}/vote-packages")
async def purchase_vote_package(
    contest_id: str,
    body: VotePackageRequest,
    account: Account = Depends(get_current_account),
):
    """Buy a vote package with credits; the debit and the votes land together."""
    result = await contests_service.purchase_vote_package(account.id, contest_id, body.package_type)
    return result.model_dump()


@router.post("/{contest_id}/votes")
async def cast_vote(contest_id: str, body: CastVoteRequest, account: Account = Depends(get_current_account)):
    result = await contests_service.cast_vote(account.id, contest_id, body.submission_id, body.vote_type)
    return result.model_dump()


@router.get("/{contest_id}/leaderboard")
async def contest_leaderboard(contest_id: str, limit: int = Query(50, ge=1, le=200)):
    tallies = await contests_service.leaderboard(contest_id, limit=limit)
    return {"contest_id": contest_id, "submissions": [t.model_dump(mode="json") for t in tallies]}
