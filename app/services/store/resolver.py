import logging
from typing import Optional

from app.core.settings import settings
from .base import IssueStore

logger = logging.getLogger(__name__)

_store_instance: Optional[IssueStore] = None


def get_issue_store() -> IssueStore:
    """
    Resolve the active issue store based on settings.

    Rules:
    - USE_MOCK_DB=true: in-memory store, snapshotted to MOCK_DB_PATH.
    - Otherwise: Firestore, every call bounded by STORE_TIMEOUT_SECONDS.
    """
    global _store_instance
    if _store_instance is not None:
        return _store_instance

    if settings.USE_MOCK_DB:
        from .memory_store import InMemoryIssueStore

        _store_instance = InMemoryIssueStore(path=settings.MOCK_DB_PATH)
        logger.info("[STORE] Using in-memory mock database")
    else:
        from app.config.firebase import get_db
        from .firestore_store import FirestoreIssueStore

        _store_instance = FirestoreIssueStore(get_db(), timeout=settings.STORE_TIMEOUT_SECONDS)
        logger.info("[STORE] Using Firestore")

    return _store_instance


def set_issue_store(store: Optional[IssueStore]) -> None:
    """Install a specific store (tests, scripts)."""
    global _store_instance
    _store_instance = store


def reset_issue_store() -> None:
    set_issue_store(None)
