"""
Issue endpoints - reporting, upvoting and lifecycle transitions.

Engine errors (validation, conflict, not found, store failures) propagate
to the handlers registered in app.main, which map them to HTTP statuses.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from app.models.issue import (
    Category,
    CommentRequest,
    DuplicateCheckRequest,
    DuplicateMatch,
    Issue,
    IssueCreate,
    IssueCreateResponse,
    IssueListResponse,
    IssueStatus,
    Priority,
    PriorityUpdateRequest,
    ReopenRequest,
    StatusUpdateRequest,
    UpvoteResponse,
)
from app.models.user import Actor
from app.services.issue_lifecycle import IssueLifecycleService, get_issue_lifecycle_service
from app.utils.security import get_current_actor

router = APIRouter(prefix="/issues", tags=["Issues"])


def _upvote_response(issue: Issue) -> UpvoteResponse:
    return UpvoteResponse(
        issue_id=issue.id,
        upvotes=issue.upvotes,
        target_resolution_time=issue.target_resolution_time,
        is_overdue=issue.is_overdue,
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=IssueCreateResponse)
async def report_issue(
    payload: IssueCreate,
    threshold_meters: Optional[float] = Query(None, gt=0, description="Duplicate search radius"),
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    """
    Report a new issue.

    The issue is always created. If an open issue of the same category
    already exists nearby it is returned under `duplicate` so the client can
    suggest upvoting it instead.
    """
    return service.create_issue(payload, actor, duplicate_threshold_meters=threshold_meters)


@router.post("/duplicates/check", response_model=Optional[DuplicateMatch])
async def check_duplicate(
    request: DuplicateCheckRequest,
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    """Pre-submit check: nearest open same-category issue within the radius, or null."""
    return service.find_duplicate(request.category, request.latitude, request.longitude, request.threshold_meters)


@router.get("", response_model=IssueListResponse)
async def list_issues(
    scope: str = Query("mine", pattern="^(mine|all)$"),
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    category: Optional[Category] = None,
    priority: Optional[Priority] = None,
    department: Optional[str] = None,
    reporter: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    return service.list_issues(
        actor,
        scope=scope,
        status=status_filter,
        category=category,
        priority=priority,
        department=department,
        reporter_id=reporter,
        page=page,
        limit=limit,
    )


@router.get("/{issue_id}", response_model=Issue)
async def get_issue(
    issue_id: str,
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    return service.get_issue(issue_id)


@router.post("/{issue_id}/upvote", response_model=UpvoteResponse)
async def upvote_issue(
    issue_id: str,
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    """409 with code ALREADY_UPVOTED if this actor has upvoted before."""
    return _upvote_response(service.upvote(issue_id, actor))


@router.delete("/{issue_id}/upvote", response_model=UpvoteResponse)
async def remove_upvote(
    issue_id: str,
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    return _upvote_response(service.remove_upvote(issue_id, actor))


@router.put("/{issue_id}/status", response_model=Issue)
async def update_status(
    issue_id: str,
    request: StatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    """Staff-only status change (admin, or the assigned authority)."""
    return service.change_status(
        issue_id,
        actor,
        request.status,
        estimated_resolution=request.estimated_resolution,
        note=request.note,
    )


@router.post("/{issue_id}/reopen", response_model=Issue)
async def reopen_issue(
    issue_id: str,
    request: Optional[ReopenRequest] = None,
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    return service.reopen(issue_id, actor, note=request.note if request else None)


@router.patch("/{issue_id}/priority", response_model=Issue)
async def update_priority(
    issue_id: str,
    request: PriorityUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    return service.change_priority(issue_id, actor, request.priority)


@router.post("/{issue_id}/comments", status_code=status.HTTP_201_CREATED, response_model=Issue)
async def add_comment(
    issue_id: str,
    request: CommentRequest,
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    return service.add_comment(issue_id, actor, request.message)
