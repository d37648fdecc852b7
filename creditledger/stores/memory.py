"""Process-local backend for development and tests.

Commits are serialized under one lock and checked against the same version and
unique-key rules as the Mongo backend. Reads hand out copies and yield to the
event loop, so concurrent callers interleave the way they would over a network.
"""

import asyncio
from collections import defaultdict
from datetime import datetime

from creditledger.core.exceptions import (
    AlreadyVotedError,
    ConcurrentModificationError,
    DuplicateExternalReferenceError,
)
from creditledger.models.account import Account
from creditledger.models.audit_log import AuditEvent
from creditledger.models.contest import ContestActivity, SubmissionTally, VoteRecord, activity_id
from creditledger.models.failed_job import FailedJob
from creditledger.models.ledger import LedgerEntry
from creditledger.stores.base import LedgerBackend, Mutation


class MemoryBackend(LedgerBackend):
    def __init__(self) -> None:
        self.accounts: dict[str, Account] = {}
        self.entries: dict[str, list[LedgerEntry]] = defaultdict(list)
        self.external_references: dict[str, str] = {}
        self.activities: dict[str, ContestActivity] = {}
        self.votes: dict[tuple[str, str], VoteRecord] = {}
        self.tallies: dict[str, SubmissionTally] = {}
        self.audit: list[AuditEvent] = []
        self.failed_jobs: list[FailedJob] = []
        self._lock = asyncio.Lock()

    async def commit(self, mutation: Mutation) -> None:
        async with self._lock:
            self._check(mutation)
            self._apply(mutation)

    def _check(self, mutation: Mutation) -> None:
        for account in mutation.accounts:
            stored = self.accounts.get(account.id)
            if (stored.version if stored else 0) != account.version - 1:
                raise ConcurrentModificationError()
        for account in mutation.deleted_accounts:
            stored = self.accounts.get(account.id)
            if stored is None or stored.version != account.version:
                raise ConcurrentModificationError()
        for activity in mutation.activities:
            stored = self.activities.get(activity.id)
            if (stored.version if stored else 0) != activity.version - 1:
                raise ConcurrentModificationError()
        seen_refs: set[str] = set()
        for entry in mutation.entries:
            ref = entry.external_reference
            if ref and (ref in self.external_references or ref in seen_refs):
                raise DuplicateExternalReferenceError(ref)
            if ref:
                seen_refs.add(ref)
            if any(e.sequence == entry.sequence for e in self.entries.get(entry.account_id, [])):
                raise ConcurrentModificationError()
        seen_votes: set[tuple[str, str]] = set()
        for vote in mutation.votes:
            key = (vote.account_id, vote.submission_id)
            if key in self.votes or key in seen_votes:
                raise AlreadyVotedError(vote.submission_id)
            seen_votes.add(key)

    def _apply(self, mutation: Mutation) -> None:
        for account in mutation.deleted_accounts:
            del self.accounts[account.id]
        for account in mutation.accounts:
            self.accounts[account.id] = account.model_copy(deep=True)
        for entry in mutation.entries:
            self.entries[entry.account_id].append(entry.model_copy(deep=True))
            if entry.external_reference:
                self.external_references[entry.external_reference] = entry.id
        for activity in mutation.activities:
            self.activities[activity.id] = activity.model_copy(deep=True)
        for vote in mutation.votes:
            self.votes[(vote.account_id, vote.submission_id)] = vote.model_copy(deep=True)
        for inc in mutation.tallies:
            tally = self.tallies.get(inc.submission_id)
            if tally is None:
                tally = SubmissionTally(id=inc.submission_id, contest_id=inc.contest_id)
                self.tallies[inc.submission_id] = tally
            tally.votes.add(inc.vote_type, 1)
            tally.total += inc.weight
            tally.updated_at = datetime.utcnow()

    async def get_account(self, account_id: str) -> Account | None:
        await asyncio.sleep(0)
        account = self.accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def find_merged_account(self, account_id: str) -> Account | None:
        await asyncio.sleep(0)
        for account in self.accounts.values():
            if account_id in account.merged_from:
                return account.model_copy(deep=True)
        return None

    async def find_accounts_by_email(self, email: str) -> list[Account]:
        await asyncio.sleep(0)
        return [a.model_copy(deep=True) for a in self.accounts.values() if a.email == email]

    async def find_duplicate_emails(self, limit: int = 100) -> dict[str, list[str]]:
        groups: dict[str, list[str]] = defaultdict(list)
        for account in self.accounts.values():
            if account.email:
                groups[account.email].append(account.id)
        dupes = {email: ids for email, ids in sorted(groups.items()) if len(ids) > 1}
        return dict(list(dupes.items())[:limit])

    async def list_account_ids(self, after: str | None = None, limit: int = 500) -> list[str]:
        ids = sorted(i for i in self.accounts if after is None or i > after)
        return ids[:limit]

    async def list_entries(
        self, account_id: str, limit: int, before_sequence: int | None = None
    ) -> list[LedgerEntry]:
        await asyncio.sleep(0)
        entries = [
            e for e in self.entries.get(account_id, [])
            if before_sequence is None or e.sequence < before_sequence
        ]
        entries.sort(key=lambda e: (e.created_at, e.sequence), reverse=True)
        return [e.model_copy(deep=True) for e in entries[:limit]]

    async def all_entries(self, account_id: str) -> list[LedgerEntry]:
        await asyncio.sleep(0)
        entries = sorted(self.entries.get(account_id, []), key=lambda e: (e.created_at, e.sequence))
        return [e.model_copy(deep=True) for e in entries]

    async def find_entry_by_external_reference(self, external_reference: str) -> LedgerEntry | None:
        await asyncio.sleep(0)
        entry_id = self.external_references.get(external_reference)
        if entry_id is None:
            return None
        for entries in self.entries.values():
            for e in entries:
                if e.id == entry_id:
                    return e.model_copy(deep=True)
        return None

    async def get_activity(self, account_id: str, contest_id: str) -> ContestActivity | None:
        await asyncio.sleep(0)
        activity = self.activities.get(activity_id(account_id, contest_id))
        return activity.model_copy(deep=True) if activity else None

    async def get_vote(self, account_id: str, submission_id: str) -> VoteRecord | None:
        await asyncio.sleep(0)
        vote = self.votes.get((account_id, submission_id))
        return vote.model_copy(deep=True) if vote else None

    async def list_tallies(self, contest_id: str, limit: int = 50) -> list[SubmissionTally]:
        tallies = [t for t in self.tallies.values() if t.contest_id == contest_id]
        tallies.sort(key=lambda t: t.total, reverse=True)
        return [t.model_copy(deep=True) for t in tallies[:limit]]

    async def append_audit(self, event: AuditEvent) -> None:
        self.audit.append(event.model_copy(deep=True))

    async def list_audit(self, entity_id: str | None = None, limit: int = 100) -> list[AuditEvent]:
        events = [e for e in reversed(self.audit) if entity_id is None or e.entity_id == entity_id]
        return events[:limit]

    async def record_failed_job(self, job: FailedJob) -> None:
        self.failed_jobs.append(job)
