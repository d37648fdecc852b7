from functools import lru_cache

from creditledger.core.config import get_settings
from creditledger.stores.base import LedgerBackend, Mutation, load_account, run_transaction


@lru_cache
def get_backend() -> LedgerBackend:
    settings = get_settings()
    if settings.store_backend == "memory":
        from creditledger.stores.memory import MemoryBackend
        return MemoryBackend()
    from creditledger.stores.mongo import MongoBackend
    return MongoBackend()


__all__ = ["LedgerBackend", "Mutation", "get_backend", "load_account", "run_transaction"]
