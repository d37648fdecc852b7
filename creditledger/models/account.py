from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field


def new_id() -> str:
    return uuid4().hex


class ContentReference(BaseModel):
    series_id: str
    episode_number: int

    @property
    def key(self) -> tuple[str, int]:
        return (self.series_id, self.episode_number)


class Entitlement(ContentReference):
    unlocked_at: datetime = Field(default_factory=datetime.utcnow)


class AccountStats(BaseModel):
    episodes_unlocked: int = 0
    credits_spent: int = 0
    credits_purchased: int = 0


class Account(BaseModel):
    """Per-account projection of the ledger: balance, entitlements, stats.

    ``version`` increases on every committed change and is the compare-and-swap
    token for writers. Ledger entries take it as their sequence number.
    """

    id: str  # verified identity subject
    email: str
    display_name: str = ""
    role: str = "user"  # "user" | "admin"
    timezone: str = "UTC"
    balance: int = 0
    entitlements: list[Entitlement] = Field(default_factory=list)
    stats: AccountStats = Field(default_factory=AccountStats)
    merged_from: list[str] = Field(default_factory=list)
    version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def entitlement_keys(self) -> set[tuple[str, int]]:
        return {e.key for e in self.entitlements}

    def has_entitlement(self, series_id: str, episode_number: int) -> bool:
        return (series_id, episode_number) in self.entitlement_keys()
