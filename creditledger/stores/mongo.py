"""MongoDB backend: one multi-document transaction per mutation.

Account and activity documents are replaced only when their stored ``version``
matches, so two writers that read the same state cannot both commit. Requires a
replica set (transactions).
"""

from datetime import datetime
from typing import Any, Awaitable, TypeVar

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pydantic import BaseModel
from pymongo.errors import ConnectionFailure, DuplicateKeyError, OperationFailure, PyMongoError

from creditledger.core.exceptions import (
    AlreadyVotedError,
    ConcurrentModificationError,
    DuplicateExternalReferenceError,
    StoreUnavailableError,
)
from creditledger.core.logging import get_logger
from creditledger.db.documents import (
    ACCOUNT_SUBMISSION_INDEX,
    EXTERNAL_REFERENCE_INDEX,
    AccountDocument,
    AuditLogDocument,
    ContestActivityDocument,
    FailedJobDocument,
    LedgerEntryDocument,
    SubmissionTallyDocument,
    VoteDocument,
)
from creditledger.db.init import init_db
from creditledger.models.account import Account
from creditledger.models.audit_log import AuditEvent
from creditledger.models.contest import ContestActivity, SubmissionTally, VoteRecord, activity_id
from creditledger.models.failed_job import FailedJob
from creditledger.models.ledger import LedgerEntry
from creditledger.stores.base import LedgerBackend, Mutation

log = get_logger(__name__)

T = TypeVar("T")

WRITE_CONFLICT = 112


def _to_mongo(model: BaseModel) -> dict[str, Any]:
    doc = model.model_dump()
    doc["_id"] = doc.pop("id")
    return doc


def _duplicate_error(exc: DuplicateKeyError, mutation: Mutation) -> Exception:
    message = str(exc)
    if EXTERNAL_REFERENCE_INDEX in message:
        ref = next((e.external_reference for e in mutation.entries if e.external_reference), "")
        return DuplicateExternalReferenceError(ref)
    if ACCOUNT_SUBMISSION_INDEX in message and mutation.votes:
        return AlreadyVotedError(mutation.votes[0].submission_id)
    # _id on first insert, or a ledger sequence taken by a concurrent writer
    return ConcurrentModificationError()


class MongoBackend(LedgerBackend):
    def __init__(self, uri: str | None = None, db_name: str | None = None) -> None:
        self._uri = uri
        self._db_name = db_name
        self._client: AsyncIOMotorClient | None = None

    async def connect(self) -> None:
        self._client = await init_db(self._uri, self._db_name)
        log.info("store_connected", backend="mongo")

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    async def _read(self, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except PyMongoError as e:
            raise StoreUnavailableError(f"Store read failed: {e}") from e

    async def commit(self, mutation: Mutation) -> None:
        if self._client is None:
            raise StoreUnavailableError("Store not connected")
        try:
            async with await self._client.start_session() as session:
                async with session.start_transaction():
                    await self._write(mutation, session)
        except DuplicateKeyError as e:
            raise _duplicate_error(e, mutation) from e
        except ConnectionFailure as e:
            raise StoreUnavailableError(f"Store write failed: {e}") from e
        except OperationFailure as e:
            if e.code == WRITE_CONFLICT or e.has_error_label("TransientTransactionError"):
                raise ConcurrentModificationError() from e
            raise StoreUnavailableError(f"Store write failed: {e}") from e
        except PyMongoError as e:
            raise StoreUnavailableError(f"Store write failed: {e}") from e

    async def _write(self, mutation: Mutation, session: AsyncIOMotorClientSession) -> None:
        accounts = AccountDocument.get_motor_collection()
        for account in mutation.deleted_accounts:
            res = await accounts.delete_one({"_id": account.id, "version": account.version}, session=session)
            if res.deleted_count != 1:
                raise ConcurrentModificationError()
        for account in mutation.accounts:
            await self._compare_and_swap(accounts, account, session)
        activities = ContestActivityDocument.get_motor_collection()
        for activity in mutation.activities:
            await self._compare_and_swap(activities, activity, session)
        # insert_one so unique-index violations surface as DuplicateKeyError, not BulkWriteError
        entries = LedgerEntryDocument.get_motor_collection()
        for entry in mutation.entries:
            await entries.insert_one(_to_mongo(entry), session=session)
        votes = VoteDocument.get_motor_collection()
        for vote in mutation.votes:
            await votes.insert_one(_to_mongo(vote), session=session)
        tallies = SubmissionTallyDocument.get_motor_collection()
        for inc in mutation.tallies:
            await tallies.update_one(
                {"_id": inc.submission_id},
                {
                    "$inc": {f"votes.{inc.vote_type}": 1, "total": inc.weight},
                    "$set": {"updated_at": datetime.utcnow()},
                    "$setOnInsert": {"contest_id": inc.contest_id},
                },
                upsert=True,
                session=session,
            )

    async def _compare_and_swap(self, collection, model: Account | ContestActivity, session) -> None:
        doc = _to_mongo(model)
        if model.version == 1:
            await collection.insert_one(doc, session=session)
            return
        res = await collection.replace_one({"_id": model.id, "version": model.version - 1}, doc, session=session)
        if res.matched_count != 1:
            raise ConcurrentModificationError()

    async def get_account(self, account_id: str) -> Account | None:
        doc = await self._read(AccountDocument.get(account_id))
        return Account.model_validate(doc.model_dump()) if doc else None

    async def find_merged_account(self, account_id: str) -> Account | None:
        doc = await self._read(AccountDocument.find_one({"merged_from": account_id}))
        return Account.model_validate(doc.model_dump()) if doc else None

    async def find_accounts_by_email(self, email: str) -> list[Account]:
        docs = await self._read(AccountDocument.find(AccountDocument.email == email).to_list())
        return [Account.model_validate(d.model_dump()) for d in docs]

    async def find_duplicate_emails(self, limit: int = 100) -> dict[str, list[str]]:
        pipeline = [
            {"$match": {"email": {"$ne": ""}}},
            {"$group": {"_id": "$email", "ids": {"$push": "$_id"}, "n": {"$sum": 1}}},
            {"$match": {"n": {"$gt": 1}}},
            {"$sort": {"_id": 1}},
            {"$limit": limit},
        ]
        cursor = AccountDocument.get_motor_collection().aggregate(pipeline)
        rows = await self._read(cursor.to_list(length=None))
        return {row["_id"]: sorted(row["ids"]) for row in rows}

    async def list_account_ids(self, after: str | None = None, limit: int = 500) -> list[str]:
        query = {"_id": {"$gt": after}} if after else {}
        cursor = AccountDocument.get_motor_collection().find(query, {"_id": 1}).sort("_id", 1).limit(limit)
        rows = await self._read(cursor.to_list(length=None))
        return [row["_id"] for row in rows]

    async def list_entries(
        self, account_id: str, limit: int, before_sequence: int | None = None
    ) -> list[LedgerEntry]:
        query = LedgerEntryDocument.find(LedgerEntryDocument.account_id == account_id)
        if before_sequence is not None:
            query = query.find(LedgerEntryDocument.sequence < before_sequence)
        docs = await self._read(
            query.sort(-LedgerEntryDocument.created_at, -LedgerEntryDocument.sequence).limit(limit).to_list()
        )
        return [LedgerEntry.model_validate(d.model_dump()) for d in docs]

    async def all_entries(self, account_id: str) -> list[LedgerEntry]:
        docs = await self._read(
            LedgerEntryDocument.find(LedgerEntryDocument.account_id == account_id)
            .sort(+LedgerEntryDocument.created_at, +LedgerEntryDocument.sequence)
            .to_list()
        )
        return [LedgerEntry.model_validate(d.model_dump()) for d in docs]

    async def find_entry_by_external_reference(self, external_reference: str) -> LedgerEntry | None:
        doc = await self._read(
            LedgerEntryDocument.find_one({"metadata.external_reference": external_reference})
        )
        return LedgerEntry.model_validate(doc.model_dump()) if doc else None

    async def get_activity(self, account_id: str, contest_id: str) -> ContestActivity | None:
        doc = await self._read(ContestActivityDocument.get(activity_id(account_id, contest_id)))
        return ContestActivity.model_validate(doc.model_dump()) if doc else None

    async def get_vote(self, account_id: str, submission_id: str) -> VoteRecord | None:
        doc = await self._read(
            VoteDocument.find_one(VoteDocument.account_id == account_id, VoteDocument.submission_id == submission_id)
        )
        return VoteRecord.model_validate(doc.model_dump()) if doc else None

    async def list_tallies(self, contest_id: str, limit: int = 50) -> list[SubmissionTally]:
        docs = await self._read(
            SubmissionTallyDocument.find(SubmissionTallyDocument.contest_id == contest_id)
            .sort(-SubmissionTallyDocument.total)
            .limit(limit)
            .to_list()
        )
        return [SubmissionTally.model_validate(d.model_dump()) for d in docs]

    async def append_audit(self, event: AuditEvent) -> None:
        await self._read(AuditLogDocument.model_validate(event.model_dump()).insert())

    async def list_audit(self, entity_id: str | None = None, limit: int = 100) -> list[AuditEvent]:
        query = AuditLogDocument.find(AuditLogDocument.entity_id == entity_id) if entity_id else AuditLogDocument.find()
        docs = await self._read(query.sort(-AuditLogDocument.created_at).limit(limit).to_list())
        return [AuditEvent.model_validate(d.model_dump()) for d in docs]

    async def record_failed_job(self, job: FailedJob) -> None:
        await self._read(FailedJobDocument.model_validate(job.model_dump()).insert())
