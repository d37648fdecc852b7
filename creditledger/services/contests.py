"""Contest vote ledger: daily free votes, vote packages bought with credits, and voting.

Every operation reads the (account, contest) activity and commits its next
version, so concurrent requests for the same pair serialize on that version.
"""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel

from creditledger.core.config import get_settings
from creditledger.core.exceptions import (
    AccountNotFoundError,
    AlreadyClaimedTodayError,
    AlreadyVotedError,
    BadRequestError,
    NoVotesRemainingError,
)
from creditledger.core.logging import get_logger
from creditledger.models.contest import (
    VOTE_TIERS,
    ContestActivity,
    SubmissionTally,
    TallyIncrement,
    VoteCounts,
    VoteRecord,
)
from creditledger.models.ledger import VotePackageMetadata
from creditledger.services import notifications
from creditledger.services.balance import plan_entry
from creditledger.stores import Mutation, get_backend, run_transaction

log = get_logger(__name__)

VOTE_WEIGHTS: dict[str, int] = {"free": 1, "premium": 3, "super": 10}
VOTE_CREDIT_COSTS: dict[str, int] = {"free": 0, "premium": 5, "super": 20}


class VotePackage(BaseModel):
    id: str
    premium_votes: int
    super_votes: int = 0
    cost: int


VOTE_PACKAGES: dict[str, VotePackage] = {
    "basic": VotePackage(id="basic", premium_votes=3, cost=5),
    "pro": VotePackage(id="pro", premium_votes=10, super_votes=1, cost=25),
    "super": VotePackage(id="super", premium_votes=20, super_votes=5, cost=100),
}


class DailyClaimResult(BaseModel):
    contest_id: str
    votes_added: int
    bonus_votes: int
    daily_streak: int
    votes_remaining: VoteCounts


class VotePackageResult(BaseModel):
    contest_id: str
    package_type: str
    credits_charged: int
    balance: int
    entry_id: str
    votes_remaining: VoteCounts


class VoteResult(BaseModel):
    contest_id: str
    submission_id: str
    vote_type: str
    vote_weight: int
    vote_id: str
    votes_remaining: VoteCounts


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def local_date(moment: datetime, tz: ZoneInfo) -> date:
    """Calendar date of a naive UTC timestamp in ``tz``."""
    return moment.replace(tzinfo=timezone.utc).astimezone(tz).date()


def next_streak(last_claim: datetime | None, streak: int, now: datetime, tz: ZoneInfo, contest_id: str) -> int:
    today = local_date(now, tz)
    if last_claim is None:
        return 1
    last_day = local_date(last_claim, tz)
    if last_day >= today:
        raise AlreadyClaimedTodayError(contest_id)
    if last_day == today - timedelta(days=1):
        return streak + 1
    return 1


def _check_tier(vote_type: str) -> None:
    if vote_type not in VOTE_TIERS:
        raise BadRequestError(f"Unknown vote type: {vote_type}", details={"vote_types": list(VOTE_TIERS)})


async def _load_activity(account_id: str, contest_id: str) -> ContestActivity:
    activity = await get_backend().get_activity(account_id, contest_id)
    return activity or ContestActivity.new(account_id, contest_id)


async def get_activity(account_id: str, contest_id: str) -> ContestActivity:
    return await _load_activity(account_id, contest_id)


async def claim_daily_vote(account_id: str, contest_id: str, now: datetime | None = None) -> DailyClaimResult:
    """One free vote per calendar day in the account's timezone; every
    ``daily_streak_length`` consecutive days adds a bonus free vote.
    """
    settings = get_settings()
    backend = get_backend()

    async def attempt() -> DailyClaimResult:
        account = await backend.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        moment = now or datetime.utcnow()
        activity = await _load_activity(account_id, contest_id)
        streak = next_streak(
            activity.last_daily_claim, activity.daily_streak, moment, _zone(account.timezone), contest_id
        )
        bonus = 1 if settings.daily_streak_length > 0 and streak % settings.daily_streak_length == 0 else 0
        updated = activity.model_copy(deep=True)
        updated.votes_remaining.add("free", 1 + bonus)
        updated.daily_streak = streak
        updated.last_daily_claim = moment
        updated.version = activity.version + 1
        updated.updated_at = moment
        await backend.commit(Mutation(activities=[updated]))
        return DailyClaimResult(
            contest_id=contest_id,
            votes_added=1 + bonus,
            bonus_votes=bonus,
            daily_streak=streak,
            votes_remaining=updated.votes_remaining,
        )

    result = await run_transaction(attempt, name="claim_daily_vote", key=f"{account_id}:{contest_id}")
    log.info(
        "daily_vote_claimed",
        account_id=account_id,
        contest_id=contest_id,
        streak=result.daily_streak,
        bonus_votes=result.bonus_votes,
    )
    return result


async def purchase_vote_package(account_id: str, contest_id: str, package_type: str) -> VotePackageResult:
    """Debit the package cost and credit its votes in one commit."""
    package = VOTE_PACKAGES.get(package_type)
    if package is None:
        raise BadRequestError(f"Unknown vote package: {package_type}", details={"packages": list(VOTE_PACKAGES)})
    backend = get_backend()

    async def attempt() -> VotePackageResult:
        account = await backend.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        activity = await _load_activity(account_id, contest_id)
        metadata = VotePackageMetadata(
            contest_id=contest_id,
            package_type=package.id,
            premium_votes=package.premium_votes,
            super_votes=package.super_votes,
        )
        updated_account, entry = plan_entry(account, "purchase", -package.cost, metadata)
        updated = activity.model_copy(deep=True)
        updated.votes_remaining.add("premium", package.premium_votes)
        updated.votes_remaining.add("super", package.super_votes)
        updated.last_purchase_at = entry.created_at
        updated.version = activity.version + 1
        updated.updated_at = entry.created_at
        await backend.commit(Mutation(accounts=[updated_account], entries=[entry], activities=[updated]))
        return VotePackageResult(
            contest_id=contest_id,
            package_type=package.id,
            credits_charged=package.cost,
            balance=updated_account.balance,
            entry_id=entry.id,
            votes_remaining=updated.votes_remaining,
        )

    result = await run_transaction(attempt, name="purchase_vote_package", key=f"{account_id}:{contest_id}")
    log.info(
        "vote_package_purchased",
        account_id=account_id,
        contest_id=contest_id,
        package_type=package.id,
        cost=package.cost,
        balance=result.balance,
    )
    await notifications.publish(
        notifications.VOTE_PACKAGE_PURCHASED,
        account_id,
        {"contest_id": contest_id, "package_type": package.id, "cost": package.cost},
    )
    return result


async def cast_vote(account_id: str, contest_id: str, submission_id: str, vote_type: str) -> VoteResult:
    """Spend one vote of ``vote_type`` on a submission; one vote per account and submission."""
    _check_tier(vote_type)
    if not submission_id:
        raise BadRequestError("submission_id is required")
    backend = get_backend()

    async def attempt() -> VoteResult:
        if await backend.get_vote(account_id, submission_id) is not None:
            raise AlreadyVotedError(submission_id)
        activity = await _load_activity(account_id, contest_id)
        if activity.votes_remaining.get(vote_type) <= 0:
            raise NoVotesRemainingError(vote_type)
        now = datetime.utcnow()
        updated = activity.model_copy(deep=True)
        updated.votes_remaining.add(vote_type, -1)
        updated.votes_used.add(vote_type, 1)
        updated.last_vote_at = now
        updated.version = activity.version + 1
        updated.updated_at = now
        vote = VoteRecord(
            contest_id=contest_id,
            submission_id=submission_id,
            account_id=account_id,
            vote_type=vote_type,
            vote_weight=VOTE_WEIGHTS[vote_type],
            credit_cost=VOTE_CREDIT_COSTS[vote_type],
            voted_at=now,
        )
        tally = TallyIncrement(
            submission_id=submission_id, contest_id=contest_id, vote_type=vote_type, weight=vote.vote_weight
        )
        await backend.commit(Mutation(activities=[updated], votes=[vote], tallies=[tally]))
        return VoteResult(
            contest_id=contest_id,
            submission_id=submission_id,
            vote_type=vote_type,
            vote_weight=vote.vote_weight,
            vote_id=vote.id,
            votes_remaining=updated.votes_remaining,
        )

    result = await run_transaction(attempt, name="cast_vote", key=f"{account_id}:{contest_id}")
    log.info(
        "vote_cast",
        account_id=account_id,
        contest_id=contest_id,
        submission_id=submission_id,
        vote_type=vote_type,
        weight=result.vote_weight,
    )
    return result


async def leaderboard(contest_id: str, limit: int = 50) -> list[SubmissionTally]:
    return await get_backend().list_tallies(contest_id, limit=max(1, min(limit, 200)))
