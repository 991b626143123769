from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional
import logging

from app.models.issue import Issue
from app.models.user import Authority

logger = logging.getLogger(__name__)

IssueMutation = Callable[[Issue], Issue]


class IssueStore(ABC):
    """
    Persistence boundary for issues and authority accounts.

    Contract:
    - Reads return fully-parsed models; records that fail to parse are
      skipped (and logged), never half-returned.
    - mutate_issue() is an atomic read-modify-write keyed by issue id: the
      mutation sees the latest stored version and its result is written
      only if no other writer got in between (or while holding the id's
      lock). The mutation may raise to abort; nothing is written then.
    - Every successful write bumps Issue.version and sets updated_at.
    - Store failures and timeouts surface as DependencyError. The store
      never retries on the caller's behalf.
    """

    @abstractmethod
    def get_issue(self, issue_id: str) -> Optional[Issue]:
        raise NotImplementedError

    @abstractmethod
    def find_issues(
        self,
        category: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
        reporter_id: Optional[str] = None,
        department: Optional[str] = None,
        priority: Optional[str] = None,
        is_overdue: Optional[bool] = None,
    ) -> List[Issue]:
        raise NotImplementedError

    @abstractmethod
    def create_issue(self, issue: Issue) -> Issue:
        raise NotImplementedError

    @abstractmethod
    def mutate_issue(self, issue_id: str, mutation: IssueMutation) -> Issue:
        raise NotImplementedError

    @abstractmethod
    def new_issue_id(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def get_authority(self, authority_id: str) -> Optional[Authority]:
        raise NotImplementedError

    @abstractmethod
    def find_authorities(self, department: Optional[str] = None, active_only: bool = True) -> List[Authority]:
        raise NotImplementedError

    @abstractmethod
    def save_authority(self, authority: Authority) -> Authority:
        raise NotImplementedError

    def ping(self) -> bool:
        """Cheap connectivity check used by /health/db."""
        return True


def matches_filters(
    issue: Issue,
    category: Optional[str] = None,
    statuses: Optional[Iterable[str]] = None,
    reporter_id: Optional[str] = None,
    department: Optional[str] = None,
    priority: Optional[str] = None,
    is_overdue: Optional[bool] = None,
) -> bool:
    """In-process equivalent of the filtered scan, shared by store implementations."""
    if category is not None and issue.category.value != str(_value(category)):
        return False
    if statuses is not None and issue.status.value not in {str(_value(s)) for s in statuses}:
        return False
    if reporter_id is not None and issue.reporter_id != reporter_id:
        return False
    if department is not None and issue.assigned_department != department:
        return False
    if priority is not None and issue.priority.value != str(_value(priority)):
        return False
    if is_overdue is not None and issue.is_overdue != is_overdue:
        return False
    return True


def _value(item):
    return getattr(item, "value", item)


def parse_issue(data: dict, issue_id: Optional[str] = None) -> Optional[Issue]:
    """Parse a stored document; partially-written or malformed records yield None."""
    if data is None:
        return None
    if issue_id is not None:
        data = {**data, "id": issue_id}
    try:
        return Issue.model_validate(data)
    except ValueError as e:
        logger.warning(f"Skipping malformed issue record {data.get('id')}: {e}")
        return None


def parse_authority(data: dict, authority_id: Optional[str] = None) -> Optional[Authority]:
    if data is None:
        return None
    if authority_id is not None:
        data = {**data, "id": authority_id}
    try:
        return Authority.model_validate(data)
    except ValueError as e:
        logger.warning(f"Skipping malformed authority record {data.get('id')}: {e}")
        return None
