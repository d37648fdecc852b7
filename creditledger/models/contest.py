from datetime import datetime

from pydantic import BaseModel, Field

from creditledger.models.account import new_id

VOTE_TIERS: tuple[str, ...] = ("free", "premium", "super")


class VoteCounts(BaseModel):
    free: int = 0
    premium: int = 0
    super: int = 0

    def get(self, tier: str) -> int:
        return getattr(self, tier)

    def add(self, tier: str, n: int) -> None:
        setattr(self, tier, getattr(self, tier) + n)


def activity_id(account_id: str, contest_id: str) -> str:
    return f"{account_id}_{contest_id}"


class ContestActivity(BaseModel):
    """Per (account, contest) vote wallet and daily-claim streak."""

    id: str
    account_id: str
    contest_id: str
    votes_used: VoteCounts = Field(default_factory=VoteCounts)
    votes_remaining: VoteCounts = Field(default_factory=VoteCounts)
    daily_streak: int = 0
    last_daily_claim: datetime | None = None
    last_purchase_at: datetime | None = None
    last_vote_at: datetime | None = None
    version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def new(cls, account_id: str, contest_id: str) -> "ContestActivity":
        return cls(id=activity_id(account_id, contest_id), account_id=account_id, contest_id=contest_id)


class VoteRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    contest_id: str
    submission_id: str
    account_id: str
    vote_type: str
    vote_weight: int
    credit_cost: int = 0
    voted_at: datetime = Field(default_factory=datetime.utcnow)


class SubmissionTally(BaseModel):
    id: str  # submission id
    contest_id: str
    votes: VoteCounts = Field(default_factory=VoteCounts)
    total: int = 0  # weighted
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class TallyIncrement(BaseModel):
    submission_id: str
    contest_id: str
    vote_type: str
    weight: int
