"""
Firestore-backed issue store.

Collections:
- issues:       one document per issue, document ID == Issue.id
- authorities:  one document per field-staff account

Read-modify-write runs inside a Firestore transaction, so two citizens
upvoting the same issue at once are both reflected: the loser of the race
is re-run by the transaction protocol against the winner's write.
"""

import logging
from typing import Iterable, List, Optional

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions

from app.core.exceptions import DependencyError, EngineError, NotFoundError
from app.models.issue import Issue
from app.models.user import Authority
from app.utils.firestore_helpers import where_filter
from app.utils.timestamps import utc_now
from .base import IssueMutation, IssueStore, matches_filters, parse_authority, parse_issue

logger = logging.getLogger(__name__)

ISSUES_COLLECTION = "issues"
AUTHORITIES_COLLECTION = "authorities"


class FirestoreIssueStore(IssueStore):

    def __init__(self, db, timeout: float = 10.0):
        self.db = db
        self.timeout = timeout

    def _issues(self):
        return self.db.collection(ISSUES_COLLECTION)

    def _authorities(self):
        return self.db.collection(AUTHORITIES_COLLECTION)

    def _wrap(self, action: str, error: Exception) -> DependencyError:
        logger.error(f"Firestore {action} failed: {error}", exc_info=True)
        return DependencyError(f"Store {action} failed: {error}")

    # Issues

    def new_issue_id(self) -> str:
        return self._issues().document().id

    def get_issue(self, issue_id: str) -> Optional[Issue]:
        try:
            doc = self._issues().document(issue_id).get(timeout=self.timeout)
        except google_exceptions.GoogleAPIError as e:
            raise self._wrap(f"read of issue {issue_id}", e)

        if not doc.exists:
            return None
        return parse_issue(doc.to_dict(), doc.id)

    def find_issues(
        self,
        category: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
        reporter_id: Optional[str] = None,
        department: Optional[str] = None,
        priority: Optional[str] = None,
        is_overdue: Optional[bool] = None,
    ) -> List[Issue]:
        statuses = [getattr(s, "value", s) for s in statuses] if statuses is not None else None
        if statuses == []:
            return []

        # Equality filters only: no composite index needed. The rest is
        # applied in-process by matches_filters().
        query = self._issues()
        if category is not None:
            query = where_filter(query, "category", "==", getattr(category, "value", category))
        if statuses is not None:
            query = where_filter(query, "status", "in", statuses)
        if reporter_id is not None:
            query = where_filter(query, "reporter_id", "==", reporter_id)

        try:
            docs = list(query.stream(timeout=self.timeout))
        except google_exceptions.GoogleAPIError as e:
            raise self._wrap("issue scan", e)

        issues = []
        for doc in docs:
            issue = parse_issue(doc.to_dict(), doc.id)
            if issue is None:
                continue
            if matches_filters(issue, category, statuses, reporter_id, department, priority, is_overdue):
                issues.append(issue)
        return issues

    def create_issue(self, issue: Issue) -> Issue:
        stamped = issue.model_copy(update={"version": 1, "updated_at": utc_now()})
        try:
            self._issues().document(stamped.id).create(stamped.to_document(), timeout=self.timeout)
        except google_exceptions.GoogleAPIError as e:
            raise self._wrap(f"create of issue {stamped.id}", e)
        logger.info(f"Issue saved to Firestore: {stamped.id}")
        return stamped

    def mutate_issue(self, issue_id: str, mutation: IssueMutation) -> Issue:
        doc_ref = self._issues().document(issue_id)
        timeout = self.timeout

        @firestore.transactional
        def run(transaction):
            snapshot = doc_ref.get(transaction=transaction, timeout=timeout)
            if not snapshot.exists:
                raise NotFoundError(f"Issue {issue_id} not found")
            current = parse_issue(snapshot.to_dict(), snapshot.id)
            if current is None:
                raise DependencyError(f"Issue {issue_id} is stored in an unreadable format")

            updated = mutation(current)
            if updated is current:
                return current

            stamped = updated.model_copy(update={"version": current.version + 1, "updated_at": utc_now()})
            transaction.set(doc_ref, stamped.to_document())
            return stamped

        try:
            return run(self.db.transaction())
        except EngineError:
            raise
        except google_exceptions.GoogleAPIError as e:
            raise self._wrap(f"update of issue {issue_id}", e)
        except ValueError as e:
            # Raised by the transaction wrapper once it gives up on contention
            raise self._wrap(f"update of issue {issue_id}", e)

    # Authorities

    def get_authority(self, authority_id: str) -> Optional[Authority]:
        try:
            doc = self._authorities().document(authority_id).get(timeout=self.timeout)
        except google_exceptions.GoogleAPIError as e:
            raise self._wrap(f"read of authority {authority_id}", e)

        if not doc.exists:
            return None
        return parse_authority(doc.to_dict(), doc.id)

    def find_authorities(self, department: Optional[str] = None, active_only: bool = True) -> List[Authority]:
        query = self._authorities()
        if department is not None:
            query = where_filter(query, "department", "==", department)
        if active_only:
            query = where_filter(query, "is_active", "==", True)

        try:
            docs = list(query.stream(timeout=self.timeout))
        except google_exceptions.GoogleAPIError as e:
            raise self._wrap("authority scan", e)

        authorities = []
        for doc in docs:
            authority = parse_authority(doc.to_dict(), doc.id)
            if authority is not None:
                authorities.append(authority)
        return authorities

    def save_authority(self, authority: Authority) -> Authority:
        data = authority.model_dump(mode="json", exclude={"id"})
        try:
            self._authorities().document(authority.id).set(data, timeout=self.timeout)
        except google_exceptions.GoogleAPIError as e:
            raise self._wrap(f"write of authority {authority.id}", e)
        return authority

    def ping(self) -> bool:
        try:
            list(self.db.collections(timeout=self.timeout))
        except google_exceptions.GoogleAPIError as e:
            raise self._wrap("connectivity check", e)
        return True
