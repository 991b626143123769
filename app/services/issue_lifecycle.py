"""
Issue Lifecycle Coordinator.

Two layers:

1. Pure transforms (apply_upvote, transition, reopen, ...). Each takes an
   in-memory Issue and returns a NEW Issue with every derived field
   (target_resolution_time, is_overdue) recomputed. They raise before
   building anything, so a rejected request never produces a half-updated
   issue.

2. IssueLifecycleService, which runs those transforms inside the store's
   atomic read-modify-write (one persist per operation) and adds the
   store-backed steps: duplicate check, authority assignment, scans.

Event order on creation: duplicate check (advisory) → deadline with
upvotes=0 → nearest authority → single persist.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Union

from app.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.core.settings import settings
from app.models.base import AdminStats, CitizenStats, DashboardStats
from app.models.issue import (
    Category,
    Comment,
    DuplicateMatch,
    Issue,
    IssueCreate,
    IssueCreateResponse,
    IssueListResponse,
    IssueStatus,
    Location,
    OPEN_STATUSES,
    Priority,
)
from app.models.user import Actor, ActorRole
from app.services.assignment_service import AuthorityAssignmentService
from app.services.deadline_policy import compute_deadline, is_overdue
from app.services.departments import department_for_category
from app.services.duplicate_detection import DuplicateDetectionService
from app.services.geo import validate_coordinates
from app.services.status_workflow import StatusWorkflowEngine
from app.services.store import IssueStore, get_issue_store
from app.utils.timestamps import ensure_utc, utc_now

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure transforms
# ---------------------------------------------------------------------------

def refresh_derived_fields(issue: Issue, now: datetime) -> Issue:
    """
    Recompute deadline and overdue flag from primary fields.

    Returns the same object when nothing changed, so callers can skip the
    write.
    """
    deadline = compute_deadline(issue.priority, issue.upvotes, issue.created_at)
    overdue = is_overdue(deadline, now, issue.status)
    if issue.target_resolution_time == deadline and issue.is_overdue == overdue:
        return issue
    return issue.model_copy(update={"target_resolution_time": deadline, "is_overdue": overdue})


def _derive(issue: Issue, now: datetime, **changes) -> Issue:
    updated = issue.model_copy(update=changes)
    deadline = compute_deadline(updated.priority, updated.upvotes, updated.created_at)
    return updated.model_copy(update={
        "target_resolution_time": deadline,
        "is_overdue": is_overdue(deadline, now, updated.status),
    })


def apply_upvote(issue: Issue, actor_id: str, now: datetime) -> Issue:
    if actor_id in issue.upvoted_by:
        raise ConflictError("You have already upvoted this issue", code=ConflictError.ALREADY_UPVOTED)

    upvoted_by = [*issue.upvoted_by, actor_id]
    return _derive(issue, now, upvoted_by=upvoted_by, upvotes=len(upvoted_by))


def apply_unupvote(issue: Issue, actor_id: str, now: datetime) -> Issue:
    if actor_id not in issue.upvoted_by:
        raise ConflictError("You have not upvoted this issue", code=ConflictError.NOT_UPVOTED)

    upvoted_by = [uid for uid in issue.upvoted_by if uid != actor_id]
    return _derive(issue, now, upvoted_by=upvoted_by, upvotes=max(0, len(upvoted_by)))


def transition(
    issue: Issue,
    actor: Actor,
    target_status: Union[IssueStatus, str],
    now: datetime,
    estimated_resolution: Optional[datetime] = None,
    note: Optional[str] = None,
) -> Issue:
    """
    Staff status change (admin, or the authority the issue is assigned to).

    Resolving stamps resolved_at. estimated_resolution is stored as given
    and is informational only; it never moves the computed deadline.
    """
    target = StatusWorkflowEngine.validate_transition(issue.status, target_status, actor.role)

    if actor.role == ActorRole.AUTHORITY and issue.assigned_authority_id != actor.id:
        raise PermissionDeniedError(f"Issue {issue.id} is not assigned to authority {actor.id}")

    history_entry = StatusWorkflowEngine.create_status_history_entry(
        from_status=issue.status, to_status=target, changed_by=actor.id, timestamp=now, note=note
    )
    changes = {
        "status": target,
        "status_history": [*issue.status_history, history_entry],
    }
    if target == IssueStatus.RESOLVED:
        changes["resolved_at"] = now
    if estimated_resolution is not None:
        changes["estimated_resolution"] = ensure_utc(estimated_resolution)
    if note:
        changes["comments"] = [*issue.comments, Comment(user_id=actor.id, message=note, timestamp=now)]

    return _derive(issue, now, **changes)


def reopen(issue: Issue, actor_id: str, now: datetime, note: Optional[str] = None) -> Issue:
    """
    Reporter sends a resolved/rejected issue back to pending.

    Assignment is re-run by the caller; the original authority may have
    gone inactive since.
    """
    if actor_id != issue.reporter_id:
        raise ConflictError("Only the original reporter can reopen this issue", code=ConflictError.NOT_REPORTER)
    if not StatusWorkflowEngine.can_reopen(issue.status):
        raise ConflictError(
            f"Only resolved or rejected issues can be reopened (current: {issue.status.value})",
            code=ConflictError.NOT_TERMINAL,
        )

    history_entry = StatusWorkflowEngine.create_status_history_entry(
        from_status=issue.status, to_status=IssueStatus.PENDING, changed_by=actor_id, timestamp=now,
        note=note or "Reopened by reporter",
    )
    changes = {
        "status": IssueStatus.PENDING,
        "resolved_at": None,
        "status_history": [*issue.status_history, history_entry],
    }
    if note:
        changes["comments"] = [*issue.comments, Comment(user_id=actor_id, message=note, timestamp=now)]
    return _derive(issue, now, **changes)


def change_priority(issue: Issue, actor: Actor, priority: Union[Priority, str], now: datetime) -> Issue:
    if actor.role != ActorRole.ADMIN:
        raise PermissionDeniedError("Only administrators can change issue priority")
    try:
        priority = Priority(priority)
    except ValueError:
        raise ValidationError(f"Unknown priority: {priority!r}")

    if priority == issue.priority:
        return issue
    return _derive(issue, now, priority=priority)


def add_comment(issue: Issue, actor: Actor, message: str, now: datetime) -> Issue:
    if actor.role == ActorRole.CITIZEN and actor.id != issue.reporter_id:
        raise PermissionDeniedError("Citizens can only comment on their own issues")
    if not message or not message.strip():
        raise ValidationError("Comment message cannot be empty")

    comment = Comment(user_id=actor.id, message=message.strip(), timestamp=now)
    return issue.model_copy(update={"comments": [*issue.comments, comment]})


def refresh_overdue_flags(issues: Iterable[Issue], now: datetime) -> List[Issue]:
    """
    Recompute derived fields for non-terminal issues.

    Returns only the issues whose stored deadline/overdue values are stale,
    already updated. Running it again on its own output at the same `now`
    returns an empty list.
    """
    updated = []
    for issue in issues:
        if issue.is_terminal:
            continue
        refreshed = refresh_derived_fields(issue, now)
        if refreshed is not issue:
            updated.append(refreshed)
    return updated


# ---------------------------------------------------------------------------
# Store-backed coordinator
# ---------------------------------------------------------------------------

class IssueLifecycleService:
    """
    Applies lifecycle events to stored issues, one atomic write each.
    """

    def __init__(
        self,
        store: Optional[IssueStore] = None,
        duplicate_service: Optional[DuplicateDetectionService] = None,
        assignment_service: Optional[AuthorityAssignmentService] = None,
        clock: Callable[[], datetime] = utc_now,
        refresh_workers: Optional[int] = None,
    ):
        self.store = store or get_issue_store()
        self.duplicates = duplicate_service or DuplicateDetectionService(self.store)
        self.assignments = assignment_service or AuthorityAssignmentService(self.store)
        self.clock = clock
        self.refresh_workers = refresh_workers or settings.OVERDUE_REFRESH_WORKERS

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    # Creation

    def find_duplicate(
        self,
        category: Union[Category, str],
        latitude: float,
        longitude: float,
        threshold_meters: Optional[float] = None,
    ) -> Optional[DuplicateMatch]:
        match = self.duplicates.find_duplicate(category, latitude, longitude, threshold_meters)
        if match is None:
            return None
        return DuplicateMatch(issue=refresh_derived_fields(match.issue, self._now()), distance_meters=match.distance_meters)

    def create_issue(
        self,
        payload: IssueCreate,
        actor: Actor,
        duplicate_threshold_meters: Optional[float] = None,
    ) -> IssueCreateResponse:
        """
        File a new issue.

        The duplicate check never blocks creation; its result is handed back
        so the caller can point the reporter at the existing issue.
        """
        validate_coordinates(payload.latitude, payload.longitude)

        duplicate = self.find_duplicate(
            payload.category, payload.latitude, payload.longitude, duplicate_threshold_meters
        )

        now = self._now()
        department = department_for_category(payload.category)
        authority_id = self.assignments.assign_nearest_authority(department, payload.latitude, payload.longitude)

        issue = Issue(
            id=self.store.new_issue_id(),
            title=payload.title,
            description=payload.description,
            category=payload.category,
            priority=payload.priority,
            status=IssueStatus.PENDING,
            location=Location(address=payload.address, latitude=payload.latitude, longitude=payload.longitude),
            reporter_id=actor.id,
            assigned_department=department,
            assigned_authority_id=authority_id,
            target_resolution_time=compute_deadline(payload.priority, 0, now),
            is_overdue=False,
            status_history=[
                StatusWorkflowEngine.create_status_history_entry(
                    from_status=None, to_status=IssueStatus.PENDING, changed_by=actor.id,
                    timestamp=now, note="Issue reported",
                )
            ],
            created_at=now,
        )

        created = self.store.create_issue(issue)
        logger.info(
            f"Issue {created.id} created: {created.category.value} → {department}, "
            f"authority={authority_id or 'unassigned'}, deadline={created.target_resolution_time.isoformat()}"
        )
        return IssueCreateResponse(issue=created, duplicate=duplicate)

    # Reads (derived fields are recomputed against the current time)

    def get_issue(self, issue_id: str) -> Issue:
        issue = self.store.get_issue(issue_id)
        if issue is None:
            raise NotFoundError(f"Issue {issue_id} not found")
        return refresh_derived_fields(issue, self._now())

    def list_issues(
        self,
        actor: Actor,
        scope: str = "mine",
        status: Optional[IssueStatus] = None,
        category: Optional[Category] = None,
        priority: Optional[Priority] = None,
        department: Optional[str] = None,
        reporter_id: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> IssueListResponse:
        """
        Filtered, paginated listing sorted by upvotes desc then newest first.

        Citizens see their own reports unless scope="all"; the reporter
        filter is honored for staff only.
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        if actor.role == ActorRole.CITIZEN:
            reporter_id = actor.id if scope != "all" else None

        issues = self.store.find_issues(
            category=category.value if category else None,
            statuses=[status.value] if status else None,
            reporter_id=reporter_id,
            department=department,
            priority=priority.value if priority else None,
        )
        now = self._now()
        issues = [refresh_derived_fields(issue, now) for issue in issues]
        issues.sort(key=lambda i: (-i.upvotes, -i.created_at.timestamp(), i.id))

        total = len(issues)
        start = (page - 1) * limit
        return IssueListResponse(
            issues=issues[start:start + limit],
            current_page=page,
            total_pages=math.ceil(total / limit) if total else 0,
            total_issues=total,
        )

    # Mutations

    def upvote(self, issue_id: str, actor: Actor) -> Issue:
        updated = self.store.mutate_issue(issue_id, lambda issue: apply_upvote(issue, actor.id, self._now()))
        logger.info(f"Issue {issue_id} upvoted by {actor.id} ({updated.upvotes} upvotes)")
        return updated

    def remove_upvote(self, issue_id: str, actor: Actor) -> Issue:
        updated = self.store.mutate_issue(issue_id, lambda issue: apply_unupvote(issue, actor.id, self._now()))
        logger.info(f"Upvote removed from issue {issue_id} by {actor.id} ({updated.upvotes} upvotes)")
        return updated

    def change_status(
        self,
        issue_id: str,
        actor: Actor,
        target_status: Union[IssueStatus, str],
        estimated_resolution: Optional[datetime] = None,
        note: Optional[str] = None,
    ) -> Issue:
        updated = self.store.mutate_issue(
            issue_id,
            lambda issue: transition(issue, actor, target_status, self._now(), estimated_resolution, note),
        )
        logger.info(f"Issue {issue_id} moved to {updated.status.value} by {actor.role.value} {actor.id}")
        return updated

    def reopen(self, issue_id: str, actor: Actor, note: Optional[str] = None) -> Issue:
        def mutation(issue: Issue) -> Issue:
            reopened = reopen(issue, actor.id, self._now(), note)
            authority_id = self.assignments.assign_nearest_authority(
                reopened.assigned_department, reopened.location.latitude, reopened.location.longitude
            )
            return reopened.model_copy(update={"assigned_authority_id": authority_id})

        updated = self.store.mutate_issue(issue_id, mutation)
        logger.info(
            f"Issue {issue_id} reopened by reporter {actor.id}, "
            f"reassigned to {updated.assigned_authority_id or 'nobody'}"
        )
        return updated

    def change_priority(self, issue_id: str, actor: Actor, priority: Union[Priority, str]) -> Issue:
        updated = self.store.mutate_issue(
            issue_id, lambda issue: change_priority(issue, actor, priority, self._now())
        )
        logger.info(f"Issue {issue_id} priority set to {updated.priority.value} by {actor.id}")
        return updated

    def add_comment(self, issue_id: str, actor: Actor, message: str) -> Issue:
        return self.store.mutate_issue(issue_id, lambda issue: add_comment(issue, actor, message, self._now()))

    # Batch overdue refresh

    def _persist_refresh(self, issue_id: str, now: datetime) -> Optional[Issue]:
        changed = []

        def mutation(current: Issue) -> Issue:
            # Transactions may re-run this; only the attempt that commits counts
            changed.clear()
            if current.is_terminal:
                return current
            refreshed = refresh_derived_fields(current, now)
            if refreshed is not current:
                changed.append(True)
            return refreshed

        result = self.store.mutate_issue(issue_id, mutation)
        return result if changed else None

    def refresh_overdue(self, now: Optional[datetime] = None) -> List[Issue]:
        """
        Persist any stale overdue flag across all open issues.

        Each issue is an independent read-modify-write, so they run in a
        thread pool. Issues whose flags are already current are not written.
        """
        now = ensure_utc(now) if now is not None else self._now()
        open_issues = self.store.find_issues(statuses=[s.value for s in OPEN_STATUSES])
        stale = refresh_overdue_flags(open_issues, now)
        if not stale:
            logger.info(f"Overdue refresh: {len(open_issues)} open issues, nothing to update")
            return []

        with ThreadPoolExecutor(max_workers=self.refresh_workers) as pool:
            results = list(pool.map(lambda issue: self._persist_refresh(issue.id, now), stale))

        updated = [issue for issue in results if issue is not None]
        logger.info(f"Overdue refresh: {len(updated)} of {len(open_issues)} open issues updated")
        return updated

    def overdue_alerts(self, actor: Actor) -> List[Issue]:
        """Open overdue issues, most overdue first."""
        if actor.role != ActorRole.ADMIN:
            raise PermissionDeniedError("Admin access required")

        now = self._now()
        open_issues = self.store.find_issues(statuses=[s.value for s in OPEN_STATUSES])
        overdue = [issue for issue in (refresh_derived_fields(i, now) for i in open_issues) if issue.is_overdue]
        overdue.sort(key=lambda i: i.target_resolution_time)
        return overdue

    # Dashboard

    def recent_activity(self, actor: Actor, limit: int = 10) -> List[Issue]:
        """Most recently touched issues; citizens only see their own reports."""
        if limit < 1:
            raise ValidationError("limit must be positive")

        reporter_id = actor.id if actor.role == ActorRole.CITIZEN else None
        issues = self.store.find_issues(reporter_id=reporter_id)
        issues.sort(key=lambda i: ((i.updated_at or i.created_at).timestamp(), i.id), reverse=True)

        now = self._now()
        return [refresh_derived_fields(issue, now) for issue in issues[:limit]]

    def dashboard_stats(self, actor: Actor) -> DashboardStats:
        now = self._now()

        if actor.role == ActorRole.CITIZEN:
            mine = self.store.find_issues(reporter_id=actor.id)
            return DashboardStats(citizen=CitizenStats(
                total_reported=len(mine),
                pending=sum(1 for i in mine if i.status == IssueStatus.PENDING),
                resolved=sum(1 for i in mine if i.status == IssueStatus.RESOLVED),
            ))

        issues = [refresh_derived_fields(i, now) for i in self.store.find_issues()]
        if actor.role == ActorRole.AUTHORITY:
            issues = [i for i in issues if i.assigned_authority_id == actor.id]

        by_status = {status: 0 for status in IssueStatus}
        category_stats = {}
        priority_stats = {}
        resolution_days = []
        for issue in issues:
            by_status[issue.status] += 1
            category_stats[issue.category.value] = category_stats.get(issue.category.value, 0) + 1
            priority_stats[issue.priority.value] = priority_stats.get(issue.priority.value, 0) + 1
            if issue.status == IssueStatus.RESOLVED and issue.resolved_at:
                resolution_days.append((issue.resolved_at - issue.created_at).total_seconds() / 86400)

        avg_days = sum(resolution_days) / len(resolution_days) if resolution_days else 0.0
        return DashboardStats(admin=AdminStats(
            total_issues=len(issues),
            pending_issues=by_status[IssueStatus.PENDING],
            in_progress_issues=by_status[IssueStatus.IN_PROGRESS],
            resolved_issues=by_status[IssueStatus.RESOLVED],
            rejected_issues=by_status[IssueStatus.REJECTED],
            overdue_issues=sum(1 for i in issues if i.is_overdue),
            category_stats=dict(sorted(category_stats.items(), key=lambda kv: -kv[1])),
            priority_stats=priority_stats,
            avg_resolution_days=round(avg_days, 1),
        ))


# Global service instance
_lifecycle_service = None


def get_issue_lifecycle_service() -> IssueLifecycleService:
    """Get or create IssueLifecycleService singleton."""
    global _lifecycle_service
    if _lifecycle_service is None:
        _lifecycle_service = IssueLifecycleService()
    return _lifecycle_service


def reset_issue_lifecycle_service() -> None:
    global _lifecycle_service
    _lifecycle_service = None
