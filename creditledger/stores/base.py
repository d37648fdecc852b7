from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from creditledger.core.config import get_settings
from creditledger.core.exceptions import ConcurrentModificationError
from creditledger.core.logging import get_logger
from creditledger.models.account import Account
from creditledger.models.audit_log import AuditEvent
from creditledger.models.contest import ContestActivity, SubmissionTally, TallyIncrement, VoteRecord
from creditledger.models.failed_job import FailedJob
from creditledger.models.ledger import LedgerEntry

log = get_logger(__name__)

T = TypeVar("T")


@dataclass
class Mutation:
    """Everything one transaction writes.

    Account and activity states carry their new ``version``; the backend applies
    them only if the stored version is exactly one less (absent for version 1).
    Deleted accounts are matched on their current ``version``.
    """

    accounts: list[Account] = field(default_factory=list)
    deleted_accounts: list[Account] = field(default_factory=list)
    entries: list[LedgerEntry] = field(default_factory=list)
    activities: list[ContestActivity] = field(default_factory=list)
    votes: list[VoteRecord] = field(default_factory=list)
    tallies: list[TallyIncrement] = field(default_factory=list)


class LedgerBackend(ABC):
    async def connect(self) -> None:
        """Open connections / create indexes. No-op by default."""

    async def close(self) -> None:
        """Release connections. No-op by default."""

    @abstractmethod
    async def commit(self, mutation: Mutation) -> None:
        """Apply mutation atomically.

        Raises ConcurrentModificationError on a version mismatch,
        DuplicateExternalReferenceError / AlreadyVotedError on unique-key
        violations, StoreUnavailableError on transport failure. On any error
        nothing is written.
        """
        ...

    # Accounts

    @abstractmethod
    async def get_account(self, account_id: str) -> Account | None:
        ...

    @abstractmethod
    async def find_merged_account(self, account_id: str) -> Account | None:
        """The account whose ``merged_from`` lists ``account_id``, if any."""
        ...

    @abstractmethod
    async def find_accounts_by_email(self, email: str) -> list[Account]:
        ...

    @abstractmethod
    async def find_duplicate_emails(self, limit: int = 100) -> dict[str, list[str]]:
        """Return email -> account ids for every email held by more than one account."""
        ...

    @abstractmethod
    async def list_account_ids(self, after: str | None = None, limit: int = 500) -> list[str]:
        """Account ids in ascending order, for sweeps."""
        ...

    # Ledger

    @abstractmethod
    async def list_entries(
        self, account_id: str, limit: int, before_sequence: int | None = None
    ) -> list[LedgerEntry]:
        """Newest first; ``before_sequence`` is an exclusive cursor."""
        ...

    @abstractmethod
    async def all_entries(self, account_id: str) -> list[LedgerEntry]:
        """Every entry for the account in creation order."""
        ...

    @abstractmethod
    async def find_entry_by_external_reference(self, external_reference: str) -> LedgerEntry | None:
        ...

    # Contest

    @abstractmethod
    async def get_activity(self, account_id: str, contest_id: str) -> ContestActivity | None:
        ...

    @abstractmethod
    async def get_vote(self, account_id: str, submission_id: str) -> VoteRecord | None:
        ...

    @abstractmethod
    async def list_tallies(self, contest_id: str, limit: int = 50) -> list[SubmissionTally]:
        """Highest weighted total first."""
        ...

    # Audit / dead-letter

    @abstractmethod
    async def append_audit(self, event: AuditEvent) -> None:
        ...

    @abstractmethod
    async def list_audit(self, entity_id: str | None = None, limit: int = 100) -> list[AuditEvent]:
        ...

    @abstractmethod
    async def record_failed_job(self, job: FailedJob) -> None:
        ...


async def run_transaction(attempt: Callable[[], Awaitable[T]], *, name: str, key: str) -> T:
    """Run a read-plan-commit attempt, re-reading on optimistic-concurrency conflicts.

    Every attempt must read fresh state; a conflict on the final attempt is raised
    to the caller (still retriable).
    """
    max_attempts = max(1, get_settings().ledger_max_retries)
    for n in range(1, max_attempts + 1):
        try:
            return await attempt()
        except ConcurrentModificationError:
            log.warning("transaction_conflict", op=name, key=key, attempt=n, max_attempts=max_attempts)
            if n == max_attempts:
                raise
    raise ConcurrentModificationError()


async def load_account(backend: LedgerBackend, account_id: str) -> Account | None:
    """Account by id, following a merged-away id to the account it was merged into."""
    account = await backend.get_account(account_id)
    if account is None:
        account = await backend.find_merged_account(account_id)
    return account
