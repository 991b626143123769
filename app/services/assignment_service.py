"""
Authority Assignment Service - route an issue to the nearest field responder.

Rules:
- Only active authorities of exactly the issue's department are eligible
- No cross-department fallback: an empty pool leaves the issue unassigned
- Authorities without a known location cannot be ranked and are skipped
- Ties on distance go to the smallest authority id
"""

from app.core.exceptions import ValidationError
from app.models.user import Authority
from app.services.departments import DEPARTMENTS
from app.services.geo import haversine_meters, validate_coordinates
from app.services.store import IssueStore, get_issue_store
from typing import Iterable, Optional
import logging

logger = logging.getLogger(__name__)


def nearest_authority(
    authorities: Iterable[Authority],
    department: str,
    latitude: float,
    longitude: float,
) -> Optional[Authority]:
    best = None
    best_key = None

    for authority in authorities:
        if not authority.is_active or authority.department != department:
            continue
        if not authority.has_location:
            continue

        distance = haversine_meters(latitude, longitude, authority.latitude, authority.longitude)
        key = (distance, authority.id)
        if best_key is None or key < best_key:
            best, best_key = authority, key

    return best


class AuthorityAssignmentService:

    def __init__(self, store: Optional[IssueStore] = None):
        self.store = store or get_issue_store()

    def assign_nearest_authority(self, department: str, latitude: float, longitude: float) -> Optional[str]:
        """
        Id of the nearest active authority in the department, or None.

        None is a normal outcome: the issue stays visible to the department
        until someone picks it up.
        """
        if not department:
            raise ValidationError("Department is required for assignment")
        if department not in DEPARTMENTS:
            raise ValidationError(f"Unknown department: {department!r}")
        validate_coordinates(latitude, longitude)

        candidates = self.store.find_authorities(department=department, active_only=True)
        authority = nearest_authority(candidates, department, latitude, longitude)

        if authority is None:
            logger.warning(f"No active authority with a known location in {department}; issue left unassigned")
            return None

        logger.info(f"Nearest {department} authority: {authority.id}")
        return authority.id


# Global service instance
_assignment_service = None


def get_assignment_service() -> AuthorityAssignmentService:
    """Get or create AuthorityAssignmentService singleton."""
    global _assignment_service
    if _assignment_service is None:
        _assignment_service = AuthorityAssignmentService()
    return _assignment_service
