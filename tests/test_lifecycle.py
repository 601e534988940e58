"""Tests for the instance lifecycle state machine."""

import copy
import logging
from datetime import date, datetime, time, timezone

import pytest

from routineplanner.audit.dispatcher import AuditDispatcher, AuditSink, InMemoryAuditSink
from routineplanner.domain.errors import (
    ConflictError,
    DependencyError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from routineplanner.domain.models import (
    AssignmentType,
    InstanceStatus,
    Member,
    RoutineInstance,
    RoutineProgress,
    StepStatus,
)
from routineplanner.domain.policies import (
    Permission,
    StaticMembershipDirectory,
    StaticPermissionChecker,
)
from routineplanner.scheduling.lifecycle import (
    InstanceLifecycleManager,
    LifecycleAction,
    allowed_actions,
    next_status,
    sweep_missed,
)
from routineplanner.storage.document_store import InMemoryDocumentStore
from routineplanner.storage.repositories import InstanceRepository

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


class FailingSink(AuditSink):
    def record(self, event):
        raise OSError("audit log unavailable")


@pytest.fixture
def repo():
    return InstanceRepository(InMemoryDocumentStore())


@pytest.fixture
def permissions():
    checker = StaticPermissionChecker()
    checker.grant("mgr", "org", Permission.MANAGE_SCHEDULES)
    return checker


@pytest.fixture
def membership():
    directory = StaticMembershipDirectory()
    directory.add("org", "stable", Member("anna", "Anna A."), Member("ben", "Ben B."))
    return directory


@pytest.fixture
def sink():
    return InMemoryAuditSink()


@pytest.fixture
def dispatcher(sink):
    dispatcher = AuditDispatcher(sink)
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture
def manager(repo, permissions, membership, dispatcher):
    return InstanceLifecycleManager(repo, permissions, membership, dispatcher, clock=lambda: NOW)


@pytest.fixture
def seed(repo):
    """Create an instance, assigned to anna unless overridden."""
    counter = iter(range(1000))

    def _seed(**overrides) -> RoutineInstance:
        fields = dict(
            id=f"inst-{next(counter)}",
            template_id="feeding",
            stable_id="stable",
            organization_id="org",
            scheduled_date=date(2026, 3, 12),
            scheduled_start_time=time(7, 0),
            assigned_to="anna",
            assignment_type=AssignmentType.AUTO,
            progress=RoutineProgress.for_steps(["hay", "water"]),
            points_value=5,
        )
        fields.update(overrides)
        return repo.create(RoutineInstance(**fields))

    return _seed


class TestTransitionTable:
    """Pure transition table lookups."""

    def test_happy_path(self):
        assert next_status(InstanceStatus.SCHEDULED, LifecycleAction.START) == InstanceStatus.STARTED
        assert next_status(InstanceStatus.STARTED, LifecycleAction.PROGRESS) == InstanceStatus.IN_PROGRESS
        assert next_status(InstanceStatus.IN_PROGRESS, LifecycleAction.COMPLETE) == InstanceStatus.COMPLETED

    def test_delete_removes(self):
        assert next_status(InstanceStatus.CANCELLED, LifecycleAction.DELETE) is None

    def test_terminal_states_allow_nothing_but_delete(self):
        assert allowed_actions(InstanceStatus.COMPLETED) == []
        assert allowed_actions(InstanceStatus.MISSED) == []
        assert allowed_actions(InstanceStatus.CANCELLED) == [LifecycleAction.DELETE]

    def test_unlisted_pair_conflicts(self):
        with pytest.raises(ConflictError):
            next_status(InstanceStatus.SCHEDULED, LifecycleAction.COMPLETE)


class TestStart:
    def test_assignee_starts(self, manager, seed):
        instance = seed()
        started = manager.start(instance.id, "anna")

        assert started.status == InstanceStatus.STARTED
        assert started.started_by == "anna"
        assert started.started_at == NOW
        assert started.revision == 1

    def test_other_member_forbidden(self, manager, seed):
        instance = seed()
        with pytest.raises(ForbiddenError):
            manager.start(instance.id, "ben")

    def test_unassigned_claimed_by_starter(self, manager, seed):
        """Starting an open instance books it to the starter."""
        instance = seed(assigned_to=None, assignment_type=AssignmentType.UNASSIGNED)
        started = manager.start(instance.id, "ben")

        assert started.assigned_to == "ben"
        assert started.assigned_to_name == "Ben B."
        assert started.assignment_type == AssignmentType.SELF

    def test_unassigned_requires_eligible_member(self, manager, seed):
        instance = seed(assigned_to=None)
        with pytest.raises(ForbiddenError):
            manager.start(instance.id, "stranger")

    def test_start_twice_conflicts(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")
        with pytest.raises(ConflictError):
            manager.start(instance.id, "anna")

    def test_missing_instance(self, manager):
        with pytest.raises(NotFoundError):
            manager.start("nope", "anna")


class TestProgressAndCompletion:
    def test_progress_then_complete(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")

        updated = manager.record_progress(instance.id, "anna", "hay", notes="half bale")
        assert updated.status == InstanceStatus.IN_PROGRESS
        assert updated.progress.steps_completed == 1
        assert updated.progress.step_progress["hay"].notes == "half bale"
        assert updated.progress.step_progress["hay"].completed_at == NOW

        updated = manager.record_progress(instance.id, "anna", "water", status="skipped")
        assert updated.progress.steps_completed == 2
        assert updated.progress.percent_complete == 100

        done = manager.complete(instance.id, "anna", notes="all good")
        assert done.status == InstanceStatus.COMPLETED
        assert done.completed_by == "anna"
        assert done.completed_by_name == "Anna A."
        assert done.points_awarded == 5
        assert done.notes == "all good"

    def test_complete_from_started(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")
        assert manager.complete(instance.id, "anna").status == InstanceStatus.COMPLETED

    def test_complete_scheduled_conflicts(self, manager, seed):
        instance = seed()
        with pytest.raises(ConflictError):
            manager.complete(instance.id, "anna")

    def test_manager_can_complete(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")
        done = manager.complete(instance.id, "mgr")

        assert done.completed_by == "mgr"
        assert done.completed_by_name is None

    def test_other_member_cannot_complete(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")
        with pytest.raises(ForbiddenError):
            manager.complete(instance.id, "ben")

    def test_only_assignee_records_progress(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")
        with pytest.raises(ForbiddenError):
            manager.record_progress(instance.id, "mgr", "hay")

    def test_unknown_step(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")
        with pytest.raises(ValidationError) as exc_info:
            manager.record_progress(instance.id, "anna", "groom")
        assert exc_info.value.issues[0].code == "unknown_step"

    def test_progress_before_start_conflicts(self, manager, seed):
        instance = seed()
        with pytest.raises(ConflictError):
            manager.record_progress(instance.id, "anna", "hay")


class TestCancelAndDelete:
    def test_cancel_keeps_assignee(self, manager, seed, dispatcher, sink):
        instance = seed()
        cancelled = manager.cancel(instance.id, "anna", reason="vet visit")

        assert cancelled.status == InstanceStatus.CANCELLED
        assert cancelled.assigned_to == "anna"
        assert cancelled.cancellation_reason == "vet visit"

        dispatcher.flush(timeout=5)
        assert [e.action for e in sink.events] == ["cancel"]
        assert sink.events[0].details["reason"] == "vet visit"

    def test_cancel_in_progress(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")
        manager.record_progress(instance.id, "anna", "hay")
        assert manager.cancel(instance.id, "mgr").status == InstanceStatus.CANCELLED

    def test_cancel_completed_conflicts(self, manager, seed):
        instance = seed(status=InstanceStatus.COMPLETED)
        with pytest.raises(ConflictError):
            manager.cancel(instance.id, "mgr")

    def test_cancel_by_other_member_forbidden(self, manager, seed):
        instance = seed()
        with pytest.raises(ForbiddenError):
            manager.cancel(instance.id, "ben")

    def test_delete_scheduled(self, manager, seed, repo):
        instance = seed()
        assert manager.delete(instance.id, "mgr") is None
        assert repo.get(instance.id) is None

    def test_delete_requires_manager(self, manager, seed):
        instance = seed()
        with pytest.raises(ForbiddenError):
            manager.delete(instance.id, "anna")

    def test_delete_in_progress_conflicts_before_guard(self, manager, seed):
        """The transition table is checked before permissions."""
        instance = seed()
        manager.start(instance.id, "anna")
        with pytest.raises(ConflictError):
            manager.delete(instance.id, "anna")

    def test_delete_with_notes_blocked(self, manager, seed, repo):
        instance = seed(notes="left gate open")
        with pytest.raises(DependencyError) as exc_info:
            manager.delete(instance.id, "mgr")

        assert exc_info.value.dependencies == ["notes"]
        assert repo.exists(instance.id)

    def test_delete_cancelled_with_progress_blocked(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")
        manager.record_progress(instance.id, "anna", "hay", photo_urls=["https://img/1.jpg"])
        manager.cancel(instance.id, "anna")

        with pytest.raises(DependencyError) as exc_info:
            manager.delete(instance.id, "mgr")
        assert exc_info.value.dependencies == ["completed_steps", "step_photos"]

    def test_delete_clean_cancelled(self, manager, seed, repo):
        instance = seed()
        manager.cancel(instance.id, "mgr")
        manager.delete(instance.id, "mgr")
        assert not repo.exists(instance.id)


class TestReassign:
    def test_reassign_records_audit(self, manager, seed, dispatcher, sink):
        instance = seed()
        updated = manager.reassign(instance.id, "mgr", "ben")

        assert updated.assigned_to == "ben"
        assert updated.assigned_to_name == "Ben B."
        assert updated.assignment_type == AssignmentType.MANUAL
        assert updated.status == InstanceStatus.SCHEDULED

        dispatcher.flush(timeout=5)
        event = sink.events[0]
        assert event.action == "reassign"
        assert event.actor_id == "mgr"
        assert event.prior_assignee == "anna"
        assert event.new_assignee == "ben"
        assert event.timestamp == NOW

    def test_unassign(self, manager, seed):
        instance = seed()
        updated = manager.reassign(instance.id, "mgr", None)

        assert updated.assigned_to is None
        assert updated.assignment_type == AssignmentType.UNASSIGNED

    def test_requires_manager(self, manager, seed):
        instance = seed()
        with pytest.raises(ForbiddenError):
            manager.reassign(instance.id, "anna", "ben")

    def test_ineligible_target(self, manager, seed):
        instance = seed()
        with pytest.raises(ValidationError) as exc_info:
            manager.reassign(instance.id, "mgr", "stranger")
        assert exc_info.value.issues[0].code == "ineligible_assignee"

    def test_started_instance_conflicts(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")
        with pytest.raises(ConflictError):
            manager.reassign(instance.id, "mgr", "ben")

    def test_failing_audit_sink_does_not_fail_transition(
        self, repo, permissions, membership, seed, caplog
    ):
        dispatcher = AuditDispatcher(FailingSink())
        manager = InstanceLifecycleManager(repo, permissions, membership, dispatcher)
        instance = seed()

        with caplog.at_level(logging.ERROR):
            updated = manager.reassign(instance.id, "mgr", "ben")
            dispatcher.flush(timeout=5)
        dispatcher.shutdown()

        assert updated.assigned_to == "ben"
        assert repo.require(instance.id).assigned_to == "ben"
        assert "could not be written" in caplog.text


class TestConcurrency:
    """Conditional writes reject stale reads."""

    def test_stale_read_conflicts(self, manager, seed, repo, monkeypatch):
        instance = seed()
        stale = repo.require(instance.id)
        manager.start(instance.id, "anna")

        monkeypatch.setattr(repo, "require", lambda _id: copy.deepcopy(stale))
        with pytest.raises(ConflictError):
            manager.cancel(instance.id, "mgr")

        monkeypatch.undo()
        assert repo.require(instance.id).status == InstanceStatus.STARTED

    def test_same_status_different_revision_conflicts(self, manager, seed, repo, monkeypatch):
        """Two reassigns from the same read: the second loses."""
        instance = seed()
        stale = repo.require(instance.id)
        manager.reassign(instance.id, "mgr", "ben")

        monkeypatch.setattr(repo, "require", lambda _id: copy.deepcopy(stale))
        with pytest.raises(ConflictError):
            manager.reassign(instance.id, "mgr", None)

        monkeypatch.undo()
        assert repo.require(instance.id).assigned_to == "ben"

    def test_revision_increments(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")
        manager.record_progress(instance.id, "anna", "hay")
        done = manager.complete(instance.id, "anna")
        assert done.revision == 3


class TestMissed:
    def test_mark_missed(self, manager, seed):
        instance = seed(scheduled_date=date(2026, 3, 5))
        assert manager.mark_missed(instance.id, "mgr").status == InstanceStatus.MISSED

    def test_not_overdue(self, manager, seed):
        instance = seed(scheduled_date=date(2026, 3, 10))
        with pytest.raises(ValidationError) as exc_info:
            manager.mark_missed(instance.id, "mgr")
        assert exc_info.value.issues[0].code == "not_overdue"

    def test_started_cannot_be_missed(self, manager, seed):
        instance = seed(scheduled_date=date(2026, 3, 5))
        manager.start(instance.id, "anna")
        with pytest.raises(ConflictError):
            manager.mark_missed(instance.id, "mgr")

    @pytest.mark.parametrize("actor", ["anna", "ben", "total-stranger"])
    def test_only_managers_mark_missed(self, manager, seed, repo, actor):
        instance = seed(scheduled_date=date(2026, 3, 5))

        with pytest.raises(ForbiddenError):
            manager.apply(instance.id, "mark_missed", actor)
        assert repo.require(instance.id).status == InstanceStatus.SCHEDULED

    def test_cutoff_comes_from_clock(self, manager, seed, repo):
        """A caller cannot move the cutoff forward to expire a future instance."""
        instance = seed(scheduled_date=date(2026, 3, 20))

        with pytest.raises(ValidationError) as exc_info:
            manager.apply(instance.id, "mark_missed", "mgr", as_of=date(2030, 1, 1))
        assert exc_info.value.issues[0].code == "invalid_params"
        with pytest.raises(ValidationError):
            manager.apply(instance.id, "mark_missed", "mgr")
        assert repo.require(instance.id).status == InstanceStatus.SCHEDULED

    def test_sweep(self, manager, seed, repo):
        overdue = seed(scheduled_date=date(2026, 3, 5))
        started = seed(scheduled_date=date(2026, 3, 6))
        manager.start(started.id, "anna")
        today = seed(scheduled_date=date(2026, 3, 10))
        future = seed(scheduled_date=date(2026, 3, 11))

        marked = sweep_missed(manager, repo.query())

        assert marked == [overdue.id]
        assert repo.require(overdue.id).updated_by == "system"
        assert repo.require(today.id).status == InstanceStatus.SCHEDULED
        assert repo.require(future.id).status == InstanceStatus.SCHEDULED
        assert repo.require(started.id).status == InstanceStatus.STARTED

    def test_sweep_skips_vanished_instances(self, manager, seed, repo):
        instance = seed(scheduled_date=date(2026, 3, 5))
        listed = repo.query()
        manager.delete(instance.id, "mgr")

        assert sweep_missed(manager, listed) == []

    def test_sweep_skips_instances_changed_since_listing(self, manager, seed, repo):
        instance = seed(scheduled_date=date(2026, 3, 5))
        listed = repo.query()
        manager.reassign(instance.id, "mgr", "ben")

        assert sweep_missed(manager, listed) == []
        assert repo.require(instance.id).status == InstanceStatus.SCHEDULED


class TestApply:
    """Dispatch by action name."""

    def test_string_actions(self, manager, seed):
        instance = seed()
        manager.apply(instance.id, "start", "anna")
        manager.apply(instance.id, "progress", "anna", step_id="hay", status=StepStatus.COMPLETED)
        done = manager.apply(instance.id, LifecycleAction.COMPLETE, "anna")

        assert done.status == InstanceStatus.COMPLETED

    def test_delete_returns_none(self, manager, seed):
        instance = seed()
        assert manager.apply(instance.id, "delete", "mgr") is None

    def test_unknown_action(self, manager, seed):
        instance = seed()
        with pytest.raises(ValidationError) as exc_info:
            manager.apply(instance.id, "archive", "mgr")
        assert exc_info.value.issues[0].code == "invalid_action"

    def test_bad_params(self, manager, seed):
        instance = seed()
        with pytest.raises(ValidationError) as exc_info:
            manager.apply(instance.id, "start", "anna", reason="x")
        assert exc_info.value.issues[0].code == "invalid_params"

    def test_missing_params(self, manager, seed):
        instance = seed()
        manager.start(instance.id, "anna")
        with pytest.raises(ValidationError):
            manager.apply(instance.id, "progress", "anna")
