"""Tests for the issue lifecycle coordinator"""

import threading
import pytest
from datetime import timedelta

from app.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.models.issue import IssueCreate, IssueStatus, Priority
from app.models.user import Actor, ActorRole
from app.services import issue_lifecycle
from app.services.assignment_service import AuthorityAssignmentService
from app.services.departments import PUBLIC_WORKS, SANITATION
from app.services.duplicate_detection import DuplicateDetectionService
from app.services.store import InMemoryIssueStore

from conftest import BASE_LAT, BASE_LON, T0, north_of


# Creation

def test_new_issue_defaults(make_issue, citizen):
    issue = make_issue(priority="high")

    assert issue.status == IssueStatus.PENDING
    assert issue.upvotes == 0
    assert issue.upvoted_by == []
    assert issue.reporter_id == citizen.id
    assert issue.created_at == T0
    assert issue.target_resolution_time == T0 + timedelta(hours=24)
    assert issue.is_overdue is False
    assert issue.assigned_department == PUBLIC_WORKS
    assert issue.version == 1
    assert issue.status_history[0].to_status == "pending"


def test_get_unknown_issue_raises(service):
    with pytest.raises(NotFoundError):
        service.get_issue("missing")


# Upvotes

def test_upvote_tightens_deadline(service, make_issue):
    issue = make_issue(priority="medium")

    for n in range(25):
        service.upvote(issue.id, Actor(id=f"voter-{n}"))

    updated = service.get_issue(issue.id)
    assert updated.upvotes == 25
    assert len(updated.upvoted_by) == 25
    assert updated.target_resolution_time == T0 + timedelta(hours=36)


def test_duplicate_upvote_rejected_without_mutation(service, make_issue, store):
    issue = make_issue()
    service.upvote(issue.id, Actor(id="voter"))
    before = store.get_issue(issue.id)

    with pytest.raises(ConflictError) as exc:
        service.upvote(issue.id, Actor(id="voter"))

    assert exc.value.code == ConflictError.ALREADY_UPVOTED
    assert store.get_issue(issue.id) == before


def test_unupvote_restores_deadline(service, make_issue):
    issue = make_issue(priority="high")
    service.upvote(issue.id, Actor(id="voter"))
    updated = service.remove_upvote(issue.id, Actor(id="voter"))

    assert updated.upvotes == 0
    assert updated.upvoted_by == []
    assert updated.target_resolution_time == T0 + timedelta(hours=24)


def test_unupvote_without_upvote_rejected(service, make_issue):
    issue = make_issue()

    with pytest.raises(ConflictError) as exc:
        service.remove_upvote(issue.id, Actor(id="stranger"))

    assert exc.value.code == ConflictError.NOT_UPVOTED


def test_upvote_count_tracks_set_over_mixed_sequence(service, make_issue):
    issue = make_issue()
    voters = [Actor(id=f"v{n}") for n in range(8)]
    succeeded = 0

    for voter in voters:
        service.upvote(issue.id, voter)
        succeeded += 1
    for voter in voters[:3]:
        service.remove_upvote(issue.id, voter)
        succeeded -= 1
    for voter in voters[:3]:
        with pytest.raises(ConflictError):
            service.remove_upvote(issue.id, voter)

    final = service.get_issue(issue.id)
    assert final.upvotes == succeeded == 5
    assert final.upvotes == len(final.upvoted_by)
    assert set(final.upvoted_by) == {v.id for v in voters[3:]}


def test_concurrent_upvotes_are_all_reflected(service, make_issue):
    issue = make_issue()
    voters = [Actor(id=f"voter-{n}") for n in range(40)]
    barrier = threading.Barrier(len(voters))
    errors = []

    def vote(actor):
        barrier.wait()
        try:
            service.upvote(issue.id, actor)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=vote, args=(voter,)) for voter in voters]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    final = service.get_issue(issue.id)
    assert errors == []
    assert final.upvotes == 40
    assert sorted(final.upvoted_by) == sorted(v.id for v in voters)
    assert final.version == 41


def test_concurrent_same_actor_upvote_counted_once(service, make_issue):
    issue = make_issue()
    actor = Actor(id="eager")
    barrier = threading.Barrier(10)
    conflicts = []

    def vote():
        barrier.wait()
        try:
            service.upvote(issue.id, actor)
        except ConflictError as e:
            conflicts.append(e)

    threads = [threading.Thread(target=vote) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(conflicts) == 9
    assert service.get_issue(issue.id).upvotes == 1


# Status transitions

@pytest.mark.parametrize("target", ["in-progress", "resolved", "rejected"])
def test_admin_moves_pending_forward(service, make_issue, admin, target):
    issue = make_issue()
    updated = service.change_status(issue.id, admin, target)
    assert updated.status == IssueStatus(target)


def test_resolve_stamps_time_and_clears_overdue(service, make_issue, admin, clock):
    issue = make_issue(priority="high")
    clock.advance(hours=30)
    assert service.get_issue(issue.id).is_overdue

    resolved = service.change_status(issue.id, admin, IssueStatus.RESOLVED)

    assert resolved.resolved_at == T0 + timedelta(hours=30)
    assert resolved.is_overdue is False
    clock.advance(days=30)
    assert service.get_issue(issue.id).is_overdue is False


def test_estimated_resolution_does_not_move_deadline(service, make_issue, admin):
    issue = make_issue(priority="low")
    eta = T0 + timedelta(hours=2)

    updated = service.change_status(issue.id, admin, IssueStatus.IN_PROGRESS, estimated_resolution=eta, note="Crew dispatched")

    assert updated.estimated_resolution == eta
    assert updated.target_resolution_time == issue.target_resolution_time
    assert updated.comments[-1].message == "Crew dispatched"
    assert updated.status_history[-1].from_status == "pending"
    assert updated.status_history[-1].to_status == "in-progress"


@pytest.mark.parametrize("start,target", [
    ("in-progress", "pending"),
    ("in-progress", "in-progress"),
    ("resolved", "in-progress"),
    ("resolved", "rejected"),
    ("rejected", "resolved"),
    ("rejected", "pending"),
])
def test_invalid_staff_transitions_rejected(service, make_issue, admin, store, start, target):
    issue = make_issue()
    if start != "pending":
        service.change_status(issue.id, admin, start)
    before = store.get_issue(issue.id)

    with pytest.raises(InvalidTransitionError):
        service.change_status(issue.id, admin, target)

    assert store.get_issue(issue.id) == before


def test_citizen_cannot_change_status(service, make_issue, citizen):
    issue = make_issue()
    with pytest.raises(InvalidTransitionError):
        service.change_status(issue.id, citizen, "resolved")


def test_unknown_status_is_validation_error(service, make_issue, admin):
    issue = make_issue()
    with pytest.raises(ValidationError):
        service.change_status(issue.id, admin, "closed")


def test_only_assigned_authority_may_transition(service, make_issue, add_authority):
    add_authority("auth-near", PUBLIC_WORKS, meters_north=10)
    add_authority("auth-far", PUBLIC_WORKS, meters_north=9000)
    issue = make_issue()
    assert issue.assigned_authority_id == "auth-near"

    with pytest.raises(PermissionDeniedError):
        service.change_status(issue.id, Actor(id="auth-far", role=ActorRole.AUTHORITY), "in-progress")

    updated = service.change_status(issue.id, Actor(id="auth-near", role=ActorRole.AUTHORITY), "in-progress")
    assert updated.status == IssueStatus.IN_PROGRESS


# Reopen

@pytest.mark.parametrize("terminal", ["resolved", "rejected"])
def test_reporter_reopens_terminal_issue(service, make_issue, admin, citizen, terminal):
    issue = make_issue()
    service.change_status(issue.id, admin, terminal)

    reopened = service.reopen(issue.id, citizen, note="Still broken")

    assert reopened.status == IssueStatus.PENDING
    assert reopened.resolved_at is None
    assert reopened.status_history[-1].to_status == "pending"
    assert reopened.comments[-1].message == "Still broken"


def test_reopen_reassigns_when_authority_went_inactive(service, make_issue, admin, citizen, add_authority, store):
    add_authority("auth-a", SANITATION, meters_north=100)
    add_authority("auth-b", SANITATION, meters_north=5000)
    issue = make_issue(category="trash")
    service.change_status(issue.id, admin, "resolved")

    store.save_authority(store.get_authority("auth-a").model_copy(update={"is_active": False}))
    reopened = service.reopen(issue.id, citizen)

    assert reopened.assigned_authority_id == "auth-b"


def test_reopen_by_non_reporter_rejected(service, make_issue, admin, store):
    issue = make_issue()
    service.change_status(issue.id, admin, "resolved")
    before = store.get_issue(issue.id)

    with pytest.raises(ConflictError) as exc:
        service.reopen(issue.id, Actor(id="someone-else"))

    assert exc.value.code == ConflictError.NOT_REPORTER
    assert store.get_issue(issue.id) == before


@pytest.mark.parametrize("status", ["pending", "in-progress"])
def test_reopen_non_terminal_rejected(service, make_issue, admin, citizen, store, status):
    issue = make_issue()
    if status != "pending":
        service.change_status(issue.id, admin, status)
    before = store.get_issue(issue.id)

    with pytest.raises(ConflictError) as exc:
        service.reopen(issue.id, citizen)

    assert exc.value.code == ConflictError.NOT_TERMINAL
    assert store.get_issue(issue.id) == before


def test_reopened_issue_can_be_overdue_immediately(service, make_issue, admin, citizen, clock):
    issue = make_issue(priority="high")
    service.change_status(issue.id, admin, "resolved")
    clock.advance(days=3)

    reopened = service.reopen(issue.id, citizen)

    assert reopened.is_overdue is True


# Priority and comments

def test_priority_change_rederives_deadline(service, make_issue, admin, citizen):
    issue = make_issue(priority="low")

    with pytest.raises(PermissionDeniedError):
        service.change_priority(issue.id, citizen, "high")

    updated = service.change_priority(issue.id, admin, Priority.HIGH)
    assert updated.target_resolution_time == T0 + timedelta(hours=24)


def test_citizen_comments_only_on_own_issue(service, make_issue, citizen, admin):
    issue = make_issue()

    service.add_comment(issue.id, citizen, "Any update?")
    service.add_comment(issue.id, admin, "Scheduled for Monday")
    with pytest.raises(PermissionDeniedError):
        service.add_comment(issue.id, Actor(id="neighbour"), "Me too")

    comments = service.get_issue(issue.id).comments
    assert [c.message for c in comments] == ["Any update?", "Scheduled for Monday"]


# Overdue refresh

def test_refresh_overdue_is_idempotent(service, make_issue, admin, clock, store):
    high = make_issue(priority="high")
    low = make_issue(priority="low")
    done = make_issue(priority="high")
    service.change_status(done.id, admin, "rejected")

    clock.advance(hours=25)
    first = service.refresh_overdue()
    assert [i.id for i in first] == [high.id]
    assert store.get_issue(high.id).is_overdue is True
    assert store.get_issue(low.id).is_overdue is False
    assert store.get_issue(done.id).is_overdue is False

    versions = {i.id: i.version for i in store.find_issues()}
    assert service.refresh_overdue() == []
    assert {i.id: i.version for i in store.find_issues()} == versions


def test_refresh_overdue_flags_pure():
    from app.models.issue import Issue, Location

    issue = Issue(
        id="i1",
        title="t",
        category="pothole",
        priority="high",
        location=Location(address="a", latitude=0, longitude=0),
        reporter_id="r",
        assigned_department=PUBLIC_WORKS,
        target_resolution_time=T0 + timedelta(hours=24),
        created_at=T0,
    )
    later = T0 + timedelta(hours=48)

    updated = issue_lifecycle.refresh_overdue_flags([issue], later)
    assert len(updated) == 1 and updated[0].is_overdue
    assert issue_lifecycle.refresh_overdue_flags(updated, later) == []


def test_overdue_alerts_sorted_by_deadline(service, make_issue, admin, citizen, clock):
    medium = make_issue(priority="medium")
    high = make_issue(priority="high")
    make_issue(priority="low")
    clock.advance(hours=100)

    alerts = service.overdue_alerts(admin)

    assert [i.id for i in alerts] == [high.id, medium.id]
    with pytest.raises(PermissionDeniedError):
        service.overdue_alerts(citizen)


# Listing and stats

def test_list_issues_scope_and_sorting(service, make_issue, citizen, clock):
    mine_old = make_issue()
    clock.advance(minutes=5)
    mine_new = make_issue()
    other = make_issue(actor=Actor(id="citizen-2"))
    service.upvote(other.id, Actor(id="fan"))

    mine = service.list_issues(citizen)
    assert [i.id for i in mine.issues] == [mine_new.id, mine_old.id]

    everything = service.list_issues(citizen, scope="all")
    assert [i.id for i in everything.issues] == [other.id, mine_new.id, mine_old.id]

    paged = service.list_issues(citizen, scope="all", page=2, limit=2)
    assert paged.total_issues == 3
    assert paged.total_pages == 2
    assert [i.id for i in paged.issues] == [mine_old.id]


def test_dashboard_stats(service, make_issue, admin, citizen, clock):
    a = make_issue(category="trash")
    make_issue()
    make_issue(actor=Actor(id="citizen-2"))
    clock.advance(hours=36)
    service.change_status(a.id, admin, "resolved")

    stats = service.dashboard_stats(admin).admin
    assert stats.total_issues == 3
    assert stats.resolved_issues == 1
    assert stats.pending_issues == 2
    assert stats.category_stats == {"pothole": 2, "trash": 1}
    assert stats.avg_resolution_days == 1.5

    mine = service.dashboard_stats(citizen).citizen
    assert mine.total_reported == 2
    assert mine.pending == 1
    assert mine.resolved == 1


def test_recent_activity_orders_by_last_update(service, make_issue, admin, citizen, clock):
    first = make_issue()
    clock.advance(minutes=5)
    second = make_issue(latitude=north_of(2000))
    clock.advance(minutes=5)
    service.upvote(first.id, Actor(id="citizen-9"))
    clock.advance(minutes=5)
    other = make_issue(actor=Actor(id="citizen-2"), latitude=north_of(4000))

    assert [i.id for i in service.recent_activity(admin)] == [other.id, first.id, second.id]
    assert [i.id for i in service.recent_activity(citizen)] == [first.id, second.id]
    assert [i.id for i in service.recent_activity(admin, limit=1)] == [other.id]


def test_recent_activity_defaults_to_ten(service, make_issue, admin, clock):
    for n in range(12):
        make_issue(latitude=north_of(1000 * n))
        clock.advance(minutes=1)

    assert len(service.recent_activity(admin)) == 10

    with pytest.raises(ValidationError):
        service.recent_activity(admin, limit=0)


class RetriedTransactionStore(InMemoryIssueStore):
    """Runs every mutation once on a stale read before a competing writer commits, then again."""

    def mutate_issue(self, issue_id, mutation):
        mutation(self.get_issue(issue_id))
        super().mutate_issue(
            issue_id, lambda issue: issue_lifecycle.refresh_derived_fields(issue, self.clock())
        )
        return super().mutate_issue(issue_id, mutation)


def test_refresh_counts_only_the_committed_attempt(clock):
    store = RetriedTransactionStore(clock=clock)
    service = issue_lifecycle.IssueLifecycleService(
        store=store,
        duplicate_service=DuplicateDetectionService(store, default_threshold_meters=300),
        assignment_service=AuthorityAssignmentService(store),
        clock=clock,
    )
    issue = service.create_issue(
        IssueCreate(
            title="Broken streetlight",
            description="Light out on the main road",
            category="streetlight",
            priority="high",
            address="Main Road",
            latitude=BASE_LAT,
            longitude=BASE_LON,
        ),
        Actor(id="citizen-1"),
    ).issue
    clock.advance(hours=25)

    assert service.refresh_overdue() == []
    assert store.get_issue(issue.id).is_overdue
