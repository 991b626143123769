"""
Dashboard endpoints - aggregate counts for the admin and citizen home pages.
"""

from typing import List
from fastapi import APIRouter, Depends, Query

from app.models.base import DashboardStats
from app.models.issue import Issue
from app.models.user import Actor
from app.services.issue_lifecycle import IssueLifecycleService, get_issue_lifecycle_service
from app.utils.security import get_current_actor

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/stats", response_model=DashboardStats, response_model_exclude_none=True)
async def dashboard_stats(
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    """
    Admins get issue totals by status, category and priority plus average
    resolution time in days; authorities get the same for issues assigned to
    them; citizens get counts of their own reports.
    """
    return service.dashboard_stats(actor)


@router.get("/activity", response_model=List[Issue])
async def recent_activity(
    limit: int = Query(10, ge=1, le=50),
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    """Most recently updated issues; citizens get only their own reports."""
    return service.recent_activity(actor, limit=limit)
