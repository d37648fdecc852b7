"""Beanie documents: the domain models bound to MongoDB collections."""

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from creditledger.models.account import Account, new_id
from creditledger.models.audit_log import AuditEvent
from creditledger.models.contest import ContestActivity, SubmissionTally, VoteRecord
from creditledger.models.failed_job import FailedJob
from creditledger.models.ledger import LedgerEntry

EXTERNAL_REFERENCE_INDEX = "external_reference_unique"
ACCOUNT_SUBMISSION_INDEX = "account_submission_unique"


class AccountDocument(Account, Document):
    id: str

    class Settings:
        name = "accounts"
        indexes = [IndexModel([("email", ASCENDING)]), IndexModel([("merged_from", ASCENDING)])]


class LedgerEntryDocument(LedgerEntry, Document):
    id: str = Field(default_factory=new_id)

    class Settings:
        name = "ledger_entries"
        indexes = [
            IndexModel([("account_id", ASCENDING), ("sequence", DESCENDING)], unique=True),
            IndexModel([("account_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel(
                [("metadata.external_reference", ASCENDING)],
                unique=True,
                name=EXTERNAL_REFERENCE_INDEX,
                partialFilterExpression={"metadata.external_reference": {"$type": "string"}},
            ),
        ]


class ContestActivityDocument(ContestActivity, Document):
    id: str

    class Settings:
        name = "contest_activity"
        indexes = [IndexModel([("contest_id", ASCENDING), ("account_id", ASCENDING)])]


class VoteDocument(VoteRecord, Document):
    id: str = Field(default_factory=new_id)

    class Settings:
        name = "votes"
        indexes = [
            IndexModel([("account_id", ASCENDING), ("submission_id", ASCENDING)], unique=True, name=ACCOUNT_SUBMISSION_INDEX),
            IndexModel([("contest_id", ASCENDING)]),
        ]


class SubmissionTallyDocument(SubmissionTally, Document):
    id: str

    class Settings:
        name = "submission_tallies"
        indexes = [IndexModel([("contest_id", ASCENDING), ("total", DESCENDING)])]


class AuditLogDocument(AuditEvent, Document):
    id: str = Field(default_factory=new_id)

    class Settings:
        name = "audit_logs"
        indexes = [
            IndexModel([("actor_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("entity_type", ASCENDING), ("entity_id", ASCENDING)]),
        ]


class FailedJobDocument(FailedJob, Document):
    id: str = Field(default_factory=new_id)

    class Settings:
        name = "failed_jobs"
        indexes = [IndexModel([("job_name", ASCENDING)]), IndexModel([("created_at", DESCENDING)])]
