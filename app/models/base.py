"""
Pydantic base models shared by API responses.
"""

from pydantic import BaseModel
from typing import Optional


class AdminStats(BaseModel):
    total_issues: int
    pending_issues: int
    in_progress_issues: int
    resolved_issues: int
    rejected_issues: int
    overdue_issues: int
    category_stats: dict
    priority_stats: dict
    avg_resolution_days: float


class CitizenStats(BaseModel):
    total_reported: int
    pending: int
    resolved: int


class DashboardStats(BaseModel):
    admin: Optional[AdminStats] = None
    citizen: Optional[CitizenStats] = None
