"""
Duplicate Detection Service - advisory check run before an issue is filed.

DESIGN PRINCIPLES:
- Same category is mandatory; proximity across categories never counts
- Only open issues (pending / in-progress) are candidates
- Nearest candidate within the threshold wins; ties go to the most recent report
- Advisory only: the caller decides whether to redirect the reporter to an
  upvote or to file a new issue anyway
"""

from app.core.exceptions import ValidationError
from app.core.settings import settings
from app.models.issue import Category, DuplicateMatch, Issue, OPEN_STATUSES
from app.services.geo import haversine_meters, validate_coordinates
from app.services.store import IssueStore, get_issue_store
from datetime import datetime, timezone
from typing import Iterable, Optional, Union
import logging

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def nearest_duplicate(
    candidates: Iterable[Issue],
    category: Union[Category, str],
    latitude: float,
    longitude: float,
    threshold_meters: float,
) -> Optional[DuplicateMatch]:
    """
    Pick the nearest open same-category issue within threshold_meters.

    Ranking key: (distance ascending, created_at descending, id ascending).
    The id component only keeps the choice reproducible on exact ties.
    """
    category = Category(category)
    best = None
    best_key = None

    for issue in candidates:
        if issue.category != category or issue.status not in OPEN_STATUSES:
            continue

        distance = haversine_meters(latitude, longitude, issue.location.latitude, issue.location.longitude)
        if distance > threshold_meters:
            continue

        created_ts = (issue.created_at or _EPOCH).timestamp()
        key = (distance, -created_ts, issue.id)
        if best_key is None or key < best_key:
            best, best_key = issue, key

    if best is None:
        return None
    return DuplicateMatch(issue=best, distance_meters=round(best_key[0], 2))


class DuplicateDetectionService:
    """
    Service for detecting nearby open issues of the same category.
    """

    def __init__(self, store: Optional[IssueStore] = None, default_threshold_meters: Optional[float] = None):
        self.store = store or get_issue_store()
        self.default_threshold_meters = (
            default_threshold_meters
            if default_threshold_meters is not None
            else settings.DUPLICATE_THRESHOLD_METERS
        )

    def find_duplicate(
        self,
        category: Union[Category, str],
        latitude: float,
        longitude: float,
        threshold_meters: Optional[float] = None,
    ) -> Optional[DuplicateMatch]:
        """
        Find the nearest open issue that probably describes the same problem.

        Args:
            category: Category of the report being filed
            latitude: Report latitude (degrees)
            longitude: Report longitude (degrees)
            threshold_meters: Search radius; defaults to DUPLICATE_THRESHOLD_METERS

        Returns:
            DuplicateMatch with the issue and its distance, or None
        """
        try:
            category = Category(category)
        except ValueError:
            raise ValidationError(f"Unknown category: {category!r}")
        validate_coordinates(latitude, longitude)

        threshold = self.default_threshold_meters if threshold_meters is None else threshold_meters
        if threshold <= 0:
            raise ValidationError(f"Duplicate threshold must be positive, got {threshold}")

        candidates = self.store.find_issues(
            category=category.value,
            statuses=[status.value for status in OPEN_STATUSES],
        )
        match = nearest_duplicate(candidates, category, latitude, longitude, threshold)

        if match:
            logger.info(
                f"Possible duplicate of issue {match.issue.id} "
                f"({category.value}, {match.distance_meters}m away)"
            )
        return match


# Global service instance (singleton pattern)
_duplicate_service = None


def get_duplicate_detection_service() -> DuplicateDetectionService:
    """
    Get or create DuplicateDetectionService singleton instance.

    Returns:
        DuplicateDetectionService: The global duplicate detection service instance
    """
    global _duplicate_service
    if _duplicate_service is None:
        _duplicate_service = DuplicateDetectionService()
    return _duplicate_service
