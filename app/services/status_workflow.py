"""
Status Workflow Engine - strict state machine for issue status.

DESIGN PRINCIPLES:
- Only admins and the assigned authority move an issue forward
- Citizens never set status directly; the reporter may only reopen
- resolved / rejected are terminal except for the reporter's reopen
- Invalid transitions rejected programmatically, before any mutation
"""

from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Union
import logging

from app.core.exceptions import InvalidTransitionError, ValidationError
from app.models.issue import IssueStatus, StatusHistoryEntry, TERMINAL_STATUSES
from app.models.user import ActorRole

logger = logging.getLogger(__name__)


class StatusWorkflowEngine:
    """
    Strict state machine for issue status transitions.

    Staff transitions (admin or assigned authority):
        pending     → in-progress | resolved | rejected
        in-progress → resolved | rejected
    Reporter transition:
        resolved | rejected → pending   (reopen)
    """

    STAFF_TRANSITIONS: Dict[IssueStatus, FrozenSet[IssueStatus]] = {
        IssueStatus.PENDING: frozenset({IssueStatus.IN_PROGRESS, IssueStatus.RESOLVED, IssueStatus.REJECTED}),
        IssueStatus.IN_PROGRESS: frozenset({IssueStatus.RESOLVED, IssueStatus.REJECTED}),
        IssueStatus.RESOLVED: frozenset(),
        IssueStatus.REJECTED: frozenset(),
    }

    STAFF_ROLES = frozenset({ActorRole.ADMIN, ActorRole.AUTHORITY})

    @staticmethod
    def parse_status(value: Union[IssueStatus, str]) -> IssueStatus:
        try:
            return IssueStatus(value)
        except ValueError:
            raise ValidationError(f"Unknown issue status: {value!r}")

    @classmethod
    def get_allowed_transitions(cls, current_status: Union[IssueStatus, str], role: Union[ActorRole, str]) -> List[str]:
        """
        Get list of statuses the given role may move an issue to.
        """
        current = cls.parse_status(current_status)
        if ActorRole(role) not in cls.STAFF_ROLES:
            return []
        return sorted(status.value for status in cls.STAFF_TRANSITIONS[current])

    @classmethod
    def is_valid_transition(
        cls,
        from_status: Union[IssueStatus, str],
        to_status: Union[IssueStatus, str],
        role: Union[ActorRole, str],
    ) -> bool:
        return cls.parse_status(to_status).value in cls.get_allowed_transitions(from_status, role)

    @classmethod
    def validate_transition(
        cls,
        from_status: Union[IssueStatus, str],
        to_status: Union[IssueStatus, str],
        role: Union[ActorRole, str],
    ) -> IssueStatus:
        """
        Validate a staff transition and return the parsed target status.

        Raises:
            ValidationError: unknown status
            InvalidTransitionError: transition not in the table for this role
        """
        current = cls.parse_status(from_status)
        target = cls.parse_status(to_status)

        if not cls.is_valid_transition(current, target, role):
            allowed = cls.get_allowed_transitions(current, role)
            raise InvalidTransitionError(
                f"Invalid status transition for {ActorRole(role).value}: "
                f"{current.value} → {target.value}. Allowed: {allowed}"
            )
        return target

    @staticmethod
    def can_reopen(current_status: Union[IssueStatus, str]) -> bool:
        return IssueStatus(current_status) in TERMINAL_STATUSES

    @staticmethod
    def create_status_history_entry(
        from_status: Optional[Union[IssueStatus, str]],
        to_status: Union[IssueStatus, str],
        changed_by: str,
        timestamp: datetime,
        note: Optional[str] = None,
    ) -> StatusHistoryEntry:
        """
        Create a status history entry for audit trail.
        """
        return StatusHistoryEntry(
            from_status=getattr(from_status, "value", from_status),
            to_status=getattr(to_status, "value", to_status),
            changed_by=changed_by,
            timestamp=timestamp,
            note=note,
        )
