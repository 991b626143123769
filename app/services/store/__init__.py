from .base import IssueStore
from .memory_store import InMemoryIssueStore
from .resolver import get_issue_store, reset_issue_store, set_issue_store

__all__ = [
    "IssueStore",
    "InMemoryIssueStore",
    "get_issue_store",
    "reset_issue_store",
    "set_issue_store",
]
