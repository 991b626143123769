"""
Pydantic models for civic issues.
These models describe the stored issue document and the request/response
payloads of the issue endpoints.
"""

from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import Optional, List, Dict
from enum import Enum


class Category(str, Enum):
    """Fixed set of issue categories a citizen can report."""
    POTHOLE = "pothole"
    STREETLIGHT = "streetlight"
    TRASH = "trash"
    GRAFFITI = "graffiti"
    TRAFFIC = "traffic"
    DRAINAGE = "drainage"
    WATER = "water"
    OTHER = "other"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IssueStatus(str, Enum):
    """
    Issue lifecycle states.

    pending → in-progress → resolved | rejected, with reopen back to pending.
    """
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({IssueStatus.RESOLVED, IssueStatus.REJECTED})
OPEN_STATUSES = frozenset({IssueStatus.PENDING, IssueStatus.IN_PROGRESS})


class Location(BaseModel):
    address: str = Field(..., min_length=1, max_length=500, description="Human-readable address")
    latitude: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude in degrees")


class Comment(BaseModel):
    user_id: str
    message: str
    timestamp: datetime


class StatusHistoryEntry(BaseModel):
    """Status transition history entry."""
    from_status: Optional[str] = Field(None, description="Previous status (None on creation)")
    to_status: str = Field(..., description="New status")
    changed_by: str = Field(..., description="Actor who made the change")
    timestamp: datetime = Field(..., description="When change occurred")
    note: Optional[str] = Field(None, description="Optional note explaining the change")


class Issue(BaseModel):
    """
    Stored issue document.

    target_resolution_time and is_overdue are derived from priority, upvotes,
    created_at and status; they are persisted only as a cache and are
    recomputed on every mutation and on read.
    """
    id: str = Field(..., description="Store document ID")
    title: str
    description: str = ""
    category: Category
    priority: Priority = Priority.MEDIUM
    status: IssueStatus = IssueStatus.PENDING
    location: Location
    reporter_id: str

    upvotes: int = Field(default=0, ge=0)
    upvoted_by: List[str] = Field(default_factory=list)

    assigned_department: str
    assigned_authority_id: Optional[str] = None

    target_resolution_time: Optional[datetime] = None
    is_overdue: bool = False
    estimated_resolution: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    comments: List[Comment] = Field(default_factory=list)
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)

    created_at: datetime
    updated_at: Optional[datetime] = None
    version: int = 0

    @model_validator(mode="after")
    def _sync_upvotes(self):
        # The upvoter set is authoritative; the counter follows it.
        unique = list(dict.fromkeys(self.upvoted_by))
        if unique != self.upvoted_by:
            self.upvoted_by = unique
        if self.upvotes != len(unique):
            self.upvotes = len(unique)
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_document(self) -> Dict:
        """Serialize for the store (JSON-compatible values only)."""
        return self.model_dump(mode="json")


class IssueCreate(BaseModel):
    """
    Model for creating a new issue (incoming POST request).
    """
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=5, max_length=2000)
    category: Category
    priority: Priority = Priority.MEDIUM
    address: str = Field(..., min_length=1, max_length=500)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Deep pothole on Station Road",
                "description": "Pothole near the bus stop, two-wheelers swerving into traffic.",
                "category": "pothole",
                "priority": "high",
                "address": "Station Road, near bus stop 4",
                "latitude": 18.5204,
                "longitude": 73.8567,
            }
        }


class DuplicateCheckRequest(BaseModel):
    category: Category
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    threshold_meters: Optional[float] = Field(None, gt=0, description="Defaults to DUPLICATE_THRESHOLD_METERS")


class DuplicateMatch(BaseModel):
    """Nearest open issue of the same category within the threshold."""
    issue: Issue
    distance_meters: float


class IssueCreateResponse(BaseModel):
    issue: Issue
    duplicate: Optional[DuplicateMatch] = Field(
        None, description="Advisory: nearby open issue of the same category, if any"
    )


class StatusUpdateRequest(BaseModel):
    status: IssueStatus
    estimated_resolution: Optional[datetime] = None
    note: Optional[str] = Field(None, max_length=1000)


class PriorityUpdateRequest(BaseModel):
    priority: Priority


class ReopenRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=1000)


class CommentRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=1000)


class UpvoteResponse(BaseModel):
    issue_id: str
    upvotes: int
    target_resolution_time: Optional[datetime]
    is_overdue: bool


class IssueListResponse(BaseModel):
    issues: List[Issue]
    current_page: int
    total_pages: int
    total_issues: int


class OverdueRefreshResponse(BaseModel):
    updated_count: int
    updated_issue_ids: List[str]
