"""
Deadline Policy and Overdue Evaluator.

Every issue gets a target resolution time derived from its priority and
the crowd interest it has attracted:

    base hours     high=24, medium=72, low=168
    reduction      min(upvotes * 2, 50) percent
    final hours    max(base * (1 - reduction / 100), 4)
    deadline       created_at + final hours

The deadline is not a stored constant. It is re-derived whenever upvotes
or priority change, so an upvote retroactively tightens an issue that is
already in flight.
"""

from datetime import datetime, timedelta
from typing import Optional, Union

from app.core.exceptions import ValidationError
from app.models.issue import IssueStatus, Priority, TERMINAL_STATUSES
from app.utils.timestamps import ensure_utc

BASE_HOURS = {
    Priority.HIGH: 24,
    Priority.MEDIUM: 72,
    Priority.LOW: 168,
}
UPVOTE_REDUCTION_PERCENT = 2
MAX_REDUCTION_PERCENT = 50
MIN_RESOLUTION_HOURS = 4


def _base_hours(priority: Union[Priority, str, None]) -> int:
    try:
        return BASE_HOURS[Priority(priority)]
    except ValueError:
        # Unrecognized priorities get medium's window
        return BASE_HOURS[Priority.MEDIUM]


def resolution_hours(priority: Union[Priority, str, None], upvotes: int) -> float:
    """Hours allowed between creation and the target deadline."""
    if upvotes < 0:
        raise ValidationError(f"Upvote count cannot be negative, got {upvotes}")

    reduction = min(upvotes * UPVOTE_REDUCTION_PERCENT, MAX_REDUCTION_PERCENT)
    adjusted = _base_hours(priority) * (1 - reduction / 100)
    return max(adjusted, MIN_RESOLUTION_HOURS)


def compute_deadline(priority: Union[Priority, str, None], upvotes: int, created_at: datetime) -> datetime:
    """Target resolution deadline for an issue."""
    return ensure_utc(created_at) + timedelta(hours=resolution_hours(priority, upvotes))


def is_overdue(deadline: Optional[datetime], now: datetime, status: Union[IssueStatus, str]) -> bool:
    """
    False for resolved/rejected issues regardless of time; otherwise True
    iff now is strictly past the deadline.
    """
    try:
        status = IssueStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown issue status: {status!r}")

    if status in TERMINAL_STATUSES or deadline is None:
        return False
    return ensure_utc(now) > ensure_utc(deadline)
