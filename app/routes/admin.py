"""
Admin endpoints - overdue monitoring and authority roster.

SCOPE OF ADMIN:
✅ Refresh persisted overdue flags across open issues
✅ List overdue issues, most overdue first
✅ View the authority roster used for assignment

❌ NOT create or deactivate authority accounts (handled by account management)
❌ NOT delete issues
"""

from typing import List, Optional
from fastapi import APIRouter, Depends

from app.models.issue import Issue, OverdueRefreshResponse
from app.models.user import Actor, Authority
from app.services.issue_lifecycle import IssueLifecycleService, get_issue_lifecycle_service
from app.utils.security import get_current_actor, require_admin
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/issues/refresh-overdue", response_model=OverdueRefreshResponse)
async def refresh_overdue(
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    """
    Recompute overdue flags for every open issue and persist the ones that
    changed. Safe to call repeatedly: a second call with no time elapsed
    writes nothing.
    """
    require_admin(actor)
    updated = service.refresh_overdue()
    logger.info(f"Admin {actor.id} refreshed overdue flags ({len(updated)} updated)")
    return OverdueRefreshResponse(
        updated_count=len(updated),
        updated_issue_ids=[issue.id for issue in updated],
    )


@router.get("/alerts/overdue", response_model=List[Issue])
async def overdue_alerts(
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    return service.overdue_alerts(actor)


@router.get("/authorities", response_model=List[Authority])
async def list_authorities(
    department: Optional[str] = None,
    include_inactive: bool = False,
    actor: Actor = Depends(get_current_actor),
    service: IssueLifecycleService = Depends(get_issue_lifecycle_service),
):
    require_admin(actor)
    authorities = service.store.find_authorities(department=department, active_only=not include_inactive)
    return sorted(authorities, key=lambda a: (a.department, a.id))
