from creditledger.models.account import Account, AccountStats, ContentReference, Entitlement
from creditledger.models.audit_log import AuditEvent
from creditledger.models.contest import ContestActivity, SubmissionTally, TallyIncrement, VoteCounts, VoteRecord
from creditledger.models.failed_job import FailedJob
from creditledger.models.ledger import (
    AdminAdjustmentMetadata,
    AdminGrantMetadata,
    BonusMetadata,
    CreditPurchaseMetadata,
    LedgerEntry,
    SpendMetadata,
    VotePackageMetadata,
)

__all__ = [
    "Account",
    "AccountStats",
    "ContentReference",
    "Entitlement",
    "AuditEvent",
    "ContestActivity",
    "SubmissionTally",
    "TallyIncrement",
    "VoteCounts",
    "VoteRecord",
    "FailedJob",
    "AdminAdjustmentMetadata",
    "AdminGrantMetadata",
    "BonusMetadata",
    "CreditPurchaseMetadata",
    "LedgerEntry",
    "SpendMetadata",
    "VotePackageMetadata",
]
