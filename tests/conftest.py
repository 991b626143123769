"""Test configuration and fixtures"""

import pytest
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient

from app.main import app
from app.models.issue import IssueCreate
from app.models.user import Actor, ActorRole, Authority
from app.services.assignment_service import AuthorityAssignmentService
from app.services.duplicate_detection import DuplicateDetectionService
from app.services.issue_lifecycle import IssueLifecycleService, get_issue_lifecycle_service
from app.services.store import InMemoryIssueStore, reset_issue_store, set_issue_store

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

# Reference point in central Pune; offsets below are ~meters north
BASE_LAT = 18.5204
BASE_LON = 73.8567
METERS_PER_DEG_LAT = 111195.0


def north_of(meters, lat=BASE_LAT):
    return lat + meters / METERS_PER_DEG_LAT


class FakeClock:
    """Settable clock so deadline/overdue tests don't depend on wall time."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryIssueStore(clock=clock)


@pytest.fixture
def service(store, clock):
    return IssueLifecycleService(
        store=store,
        duplicate_service=DuplicateDetectionService(store, default_threshold_meters=300),
        assignment_service=AuthorityAssignmentService(store),
        clock=clock,
        refresh_workers=4,
    )


@pytest.fixture
def citizen():
    return Actor(id="citizen-1", role=ActorRole.CITIZEN)


@pytest.fixture
def admin():
    return Actor(id="admin-1", role=ActorRole.ADMIN)


@pytest.fixture
def make_issue(service, citizen):
    """Create an issue through the service with sensible defaults."""

    def _make(actor=None, **overrides):
        fields = {
            "title": "Pothole on Station Road",
            "description": "Large pothole near the bus stop",
            "category": "pothole",
            "priority": "medium",
            "address": "Station Road",
            "latitude": BASE_LAT,
            "longitude": BASE_LON,
        }
        fields.update(overrides)
        return service.create_issue(IssueCreate(**fields), actor or citizen).issue

    return _make


@pytest.fixture
def add_authority(store):
    def _add(authority_id, department, meters_north=None, is_active=True):
        authority = Authority(
            id=authority_id,
            name=authority_id,
            department=department,
            is_active=is_active,
            latitude=north_of(meters_north) if meters_north is not None else None,
            longitude=BASE_LON if meters_north is not None else None,
        )
        return store.save_authority(authority)

    return _add


@pytest.fixture
def client(store, service):
    """Create test client wired to the in-memory store"""
    set_issue_store(store)
    app.dependency_overrides[get_issue_lifecycle_service] = lambda: service
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
    reset_issue_store()


def headers(actor_id="citizen-1", role="citizen"):
    return {"X-Actor-Id": actor_id, "X-Actor-Role": role}
