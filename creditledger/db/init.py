import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from creditledger.core.config import get_settings
from creditledger.db.documents import (
    AccountDocument,
    AuditLogDocument,
    ContestActivityDocument,
    FailedJobDocument,
    LedgerEntryDocument,
    SubmissionTallyDocument,
    VoteDocument,
)

DOCUMENT_MODELS = [
    AccountDocument,
    LedgerEntryDocument,
    ContestActivityDocument,
    VoteDocument,
    SubmissionTallyDocument,
    AuditLogDocument,
    FailedJobDocument,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(uri: str | None = None, db_name: str | None = None) -> AsyncIOMotorClient:
    settings = get_settings()
    uri = uri or settings.mongodb_uri
    # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
    kwargs = {}
    if _use_tls(uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(uri, **kwargs)
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    return client
