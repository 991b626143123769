"""
In-memory issue store for local development (USE_MOCK_DB=true) and tests.

Documents are kept as plain dicts, exactly as they would be written to
Firestore, and parsed on every read so callers always get private copies.
Optionally snapshots to a JSON file so a dev server keeps its data across
restarts.
"""

import json
import logging
import os
import threading
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from app.core.exceptions import DependencyError, NotFoundError
from app.models.issue import Issue
from app.models.user import Authority
from app.utils.timestamps import utc_now
from .base import IssueMutation, IssueStore, matches_filters, parse_authority, parse_issue

logger = logging.getLogger(__name__)


class InMemoryIssueStore(IssueStore):

    def __init__(self, path: Optional[str] = None, clock: Callable[[], datetime] = utc_now):
        self.path = path
        self.clock = clock
        self._issues: Dict[str, dict] = {}
        self._authorities: Dict[str, dict] = {}
        # Guards the dicts themselves and the per-id lock table
        self._lock = threading.RLock()
        self._issue_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)

        if path and os.path.exists(path):
            self._load(path)

    def _load(self, path: str) -> None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DependencyError(f"Could not read mock DB at {path}: {e}")

        self._issues = dict(data.get("issues", {}))
        self._authorities = dict(data.get("authorities", {}))
        logger.info(
            f"[MOCK DB] Loaded {len(self._issues)} issues and "
            f"{len(self._authorities)} authorities from {path}"
        )

    def _flush(self) -> None:
        if not self.path:
            return
        try:
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump({"issues": self._issues, "authorities": self._authorities}, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"[MOCK DB] Failed to write snapshot to {self.path}: {e}", exc_info=True)
            raise DependencyError(f"Could not write mock DB at {self.path}: {e}")

    # Issues

    def new_issue_id(self) -> str:
        return uuid.uuid4().hex[:20]

    def get_issue(self, issue_id: str) -> Optional[Issue]:
        with self._lock:
            data = self._issues.get(issue_id)
        return parse_issue(data, issue_id) if data is not None else None

    def find_issues(
        self,
        category: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
        reporter_id: Optional[str] = None,
        department: Optional[str] = None,
        priority: Optional[str] = None,
        is_overdue: Optional[bool] = None,
    ) -> List[Issue]:
        with self._lock:
            snapshot = list(self._issues.items())

        statuses = list(statuses) if statuses is not None else None
        issues = []
        for issue_id, data in snapshot:
            issue = parse_issue(data, issue_id)
            if issue is None:
                continue
            if matches_filters(issue, category, statuses, reporter_id, department, priority, is_overdue):
                issues.append(issue)
        return issues

    def create_issue(self, issue: Issue) -> Issue:
        stamped = issue.model_copy(update={"version": 1, "updated_at": self.clock()})
        with self._lock:
            self._commit(self._issues, stamped.id, stamped.to_document())
        return stamped

    def _commit(self, collection: Dict[str, dict], key: str, document: dict) -> None:
        """Swap a document in and snapshot; put the previous one back if the snapshot fails."""
        missing = object()
        previous = collection.get(key, missing)
        collection[key] = document
        try:
            self._flush()
        except DependencyError:
            if previous is missing:
                del collection[key]
            else:
                collection[key] = previous
            raise

    def mutate_issue(self, issue_id: str, mutation: IssueMutation) -> Issue:
        with self._lock:
            if issue_id not in self._issues:
                raise NotFoundError(f"Issue {issue_id} not found")
            issue_lock = self._issue_locks[issue_id]

        with issue_lock:
            current = self.get_issue(issue_id)
            if current is None:
                raise DependencyError(f"Issue {issue_id} is stored in an unreadable format")
            updated = mutation(current)
            if updated is current:
                # Mutation decided nothing changed
                return current

            stamped = updated.model_copy(update={"version": current.version + 1, "updated_at": self.clock()})
            with self._lock:
                self._commit(self._issues, stamped.id, stamped.to_document())
            return stamped

    # Authorities

    def get_authority(self, authority_id: str) -> Optional[Authority]:
        with self._lock:
            data = self._authorities.get(authority_id)
        return parse_authority(data, authority_id) if data is not None else None

    def find_authorities(self, department: Optional[str] = None, active_only: bool = True) -> List[Authority]:
        with self._lock:
            snapshot = list(self._authorities.items())

        authorities = []
        for authority_id, data in snapshot:
            authority = parse_authority(data, authority_id)
            if authority is None:
                continue
            if department is not None and authority.department != department:
                continue
            if active_only and not authority.is_active:
                continue
            authorities.append(authority)
        return authorities

    def save_authority(self, authority: Authority) -> Authority:
        with self._lock:
            self._commit(self._authorities, authority.id, authority.model_dump(mode="json"))
        return authority
