"""Ledger entries: append-only, immutable, one per balance change.

Metadata is a tagged union keyed by ``kind``; each entry type accepts only the
kinds listed in ``METADATA_KINDS``.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from creditledger.models.account import ContentReference, new_id

EntryType = Literal["purchase", "spend", "admin_grant", "bonus", "admin_adjustment"]

ENTRY_TYPES: tuple[str, ...] = ("purchase", "spend", "admin_grant", "bonus", "admin_adjustment")


class CreditPurchaseMetadata(BaseModel):
    kind: Literal["credit_purchase"] = "credit_purchase"
    package_id: str
    external_reference: str
    amount_paid: int | None = None  # minor currency units
    currency: str | None = None


class VotePackageMetadata(BaseModel):
    kind: Literal["vote_package"] = "vote_package"
    contest_id: str
    package_type: str
    premium_votes: int = 0
    super_votes: int = 0


class SpendMetadata(BaseModel):
    kind: Literal["spend"] = "spend"
    content: ContentReference | None = None
    description: str = ""


class AdminGrantMetadata(BaseModel):
    kind: Literal["admin_grant"] = "admin_grant"
    acting_admin_id: str
    reason: str = "Credits granted by admin"


class BonusMetadata(BaseModel):
    kind: Literal["bonus"] = "bonus"
    reason: str  # "welcome", ...


class AdminAdjustmentMetadata(BaseModel):
    kind: Literal["admin_adjustment"] = "admin_adjustment"
    acting_admin_id: str
    reason: str
    source: Literal["manual", "merge", "repair"] = "manual"
    merged_account_ids: list[str] = Field(default_factory=list)
    granted_entitlements: list[ContentReference] = Field(default_factory=list)
    previous_balance: int | None = None
    dropped_entitlements: list[ContentReference] = Field(default_factory=list)


EntryMetadata = Annotated[
    Union[
        CreditPurchaseMetadata,
        VotePackageMetadata,
        SpendMetadata,
        AdminGrantMetadata,
        BonusMetadata,
        AdminAdjustmentMetadata,
    ],
    Field(discriminator="kind"),
]

METADATA_KINDS: dict[str, tuple[str, ...]] = {
    "purchase": ("credit_purchase", "vote_package"),
    "spend": ("spend",),
    "admin_grant": ("admin_grant",),
    "bonus": ("bonus",),
    "admin_adjustment": ("admin_adjustment",),
}

WELCOME_BONUS_REASON = "welcome"


class LedgerEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    account_id: str
    type: EntryType
    amount: int  # positive = credit, negative = debit
    balance_after: int
    sequence: int  # account version this entry produced
    metadata: EntryMetadata
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def external_reference(self) -> str | None:
        return getattr(self.metadata, "external_reference", None)

    @property
    def content(self) -> ContentReference | None:
        if self.type == "spend":
            return self.metadata.content
        return None

    @property
    def is_welcome_bonus(self) -> bool:
        return self.type == "bonus" and self.metadata.reason == WELCOME_BONUS_REASON
