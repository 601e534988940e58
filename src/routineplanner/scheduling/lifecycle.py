"""Instance lifecycle state machine.

Every action is looked up in ``TRANSITIONS``; a (status, action) pair that is
not listed is rejected. Each call reads the instance once, checks the guards,
and writes conditionally on the status and revision it read. A concurrent
writer that got there first turns the write into a ``ConflictError``.
"""

import copy
import inspect
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from routineplanner.audit.dispatcher import AuditDispatcher, AuditEvent
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
    RoutineInstance,
    StepStatus,
)
from routineplanner.domain.policies import MembershipDirectory, Permission, PermissionChecker
from routineplanner.storage.repositories import InstanceRepository

logger = logging.getLogger(__name__)


class LifecycleAction(Enum):
    """Actions that drive an instance through its lifecycle."""

    START = "start"
    PROGRESS = "progress"  # Record step progress (continue)
    COMPLETE = "complete"
    CANCEL = "cancel"
    DELETE = "delete"
    REASSIGN = "reassign"
    MARK_MISSED = "mark_missed"  # Managers, or the overdue sweep


S = InstanceStatus
A = LifecycleAction

# (current status, action) -> next status. None means the instance is removed.
TRANSITIONS: dict[tuple[InstanceStatus, LifecycleAction], Optional[InstanceStatus]] = {
    (S.SCHEDULED, A.START): S.STARTED,
    (S.STARTED, A.PROGRESS): S.IN_PROGRESS,
    (S.IN_PROGRESS, A.PROGRESS): S.IN_PROGRESS,
    (S.STARTED, A.COMPLETE): S.COMPLETED,
    (S.IN_PROGRESS, A.COMPLETE): S.COMPLETED,
    (S.SCHEDULED, A.CANCEL): S.CANCELLED,
    (S.STARTED, A.CANCEL): S.CANCELLED,
    (S.IN_PROGRESS, A.CANCEL): S.CANCELLED,
    (S.SCHEDULED, A.DELETE): None,
    (S.CANCELLED, A.DELETE): None,
    (S.SCHEDULED, A.REASSIGN): S.SCHEDULED,
    (S.SCHEDULED, A.MARK_MISSED): S.MISSED,
}

del S, A


def next_status(status: InstanceStatus, action: LifecycleAction) -> Optional[InstanceStatus]:
    """Target status of an action.

    Raises:
        ConflictError: If the action is not allowed from ``status``.
    """
    try:
        return TRANSITIONS[(status, action)]
    except KeyError:
        raise ConflictError(
            f"Cannot {action.value} an instance that is {status.value}",
            {"status": status.value, "action": action.value},
        ) from None


def allowed_actions(status: InstanceStatus) -> list[LifecycleAction]:
    return [action for (s, action) in TRANSITIONS if s == status]


class InstanceLifecycleManager:
    """Applies lifecycle actions to persisted instances.

    Guards:
        start: the current assignee, or any eligible member when unassigned.
        progress: the current assignee.
        complete: the current assignee or a schedule manager.
        cancel: the current assignee or a schedule manager.
        delete, reassign: schedule managers only.
        mark_missed: schedule managers only, once the scheduled date has passed.
            The overdue sweep (``sweep_missed``) runs without an actor check.
    """

    def __init__(
        self,
        instances: InstanceRepository,
        permissions: PermissionChecker,
        membership: MembershipDirectory,
        audit: Optional[AuditDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.instances = instances
        self.permissions = permissions
        self.membership = membership
        self.audit = audit
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def apply(
        self,
        instance_id: str,
        action: Union[LifecycleAction, str],
        actor_id: str,
        **params,
    ) -> Optional[RoutineInstance]:
        """Dispatch an action by name.

        Returns:
            The updated instance, or None after a delete.
        """
        try:
            action = LifecycleAction(action)
        except ValueError:
            raise ValidationError.single(
                "invalid_action", f"Unknown lifecycle action: {action!r}", "action"
            ) from None

        handlers = {
            LifecycleAction.START: self.start,
            LifecycleAction.PROGRESS: self.record_progress,
            LifecycleAction.COMPLETE: self.complete,
            LifecycleAction.CANCEL: self.cancel,
            LifecycleAction.DELETE: self.delete,
            LifecycleAction.REASSIGN: self.reassign,
            LifecycleAction.MARK_MISSED: self.mark_missed,
        }
        handler = handlers[action]
        try:
            inspect.signature(handler).bind(instance_id, actor_id, **params)
        except TypeError as exc:
            raise ValidationError.single("invalid_params", str(exc), "params") from exc
        return handler(instance_id, actor_id, **params)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def start(self, instance_id: str, actor_id: str) -> RoutineInstance:
        current = self.instances.require(instance_id)
        target = next_status(current.status, LifecycleAction.START)

        updated = copy.deepcopy(current)
        if current.assigned_to is None:
            member = self.membership.find_member(
                actor_id, current.organization_id, current.stable_id
            )
            if member is None:
                raise ForbiddenError(
                    f"{actor_id} is not an eligible member of stable {current.stable_id}",
                    {"actor_id": actor_id, "action": LifecycleAction.START.value},
                )
            updated.assigned_to = member.id
            updated.assigned_to_name = member.display_name
            updated.assignment_type = AssignmentType.SELF
        elif current.assigned_to != actor_id:
            raise ForbiddenError(
                f"Only the assignee can start instance {instance_id}",
                {"actor_id": actor_id, "action": LifecycleAction.START.value},
            )

        now = self.clock()
        updated.status = target
        updated.started_at = now
        updated.started_by = actor_id
        return self._save(current, updated, LifecycleAction.START, actor_id, now)

    def record_progress(
        self,
        instance_id: str,
        actor_id: str,
        step_id: str,
        status: Union[StepStatus, str] = StepStatus.COMPLETED,
        notes: Optional[str] = None,
        photo_urls: Optional[list[str]] = None,
    ) -> RoutineInstance:
        """Record the outcome of one step."""
        current = self.instances.require(instance_id)
        target = next_status(current.status, LifecycleAction.PROGRESS)
        if current.assigned_to != actor_id:
            raise ForbiddenError(
                f"Only the assignee can record progress on instance {instance_id}",
                {"actor_id": actor_id, "action": LifecycleAction.PROGRESS.value},
            )

        updated = copy.deepcopy(current)
        step = updated.progress.step_progress.get(step_id)
        if step is None:
            raise ValidationError.single(
                "unknown_step", f"Step {step_id} is not part of this routine", "step_id"
            )

        now = self.clock()
        step.status = StepStatus(status)
        if notes is not None:
            step.notes = notes
        if photo_urls:
            step.photo_urls.extend(photo_urls)
        step.completed_at = now if step.is_done else None
        updated.progress.recount()
        updated.status = target
        return self._save(current, updated, LifecycleAction.PROGRESS, actor_id, now)

    def complete(
        self, instance_id: str, actor_id: str, notes: Optional[str] = None
    ) -> RoutineInstance:
        current = self.instances.require(instance_id)
        target = next_status(current.status, LifecycleAction.COMPLETE)
        self._require_assignee_or_manager(current, actor_id, LifecycleAction.COMPLETE)

        now = self.clock()
        updated = copy.deepcopy(current)
        updated.status = target
        updated.completed_at = now
        updated.completed_by = actor_id
        member = self.membership.find_member(actor_id, current.organization_id, current.stable_id)
        updated.completed_by_name = member.display_name if member else None
        updated.points_awarded = current.points_value
        if notes is not None:
            updated.notes = notes
        return self._save(current, updated, LifecycleAction.COMPLETE, actor_id, now)

    def cancel(
        self, instance_id: str, actor_id: str, reason: Optional[str] = None
    ) -> RoutineInstance:
        """Cancel an instance. The assignee is kept for the record."""
        current = self.instances.require(instance_id)
        target = next_status(current.status, LifecycleAction.CANCEL)
        self._require_assignee_or_manager(current, actor_id, LifecycleAction.CANCEL)

        now = self.clock()
        updated = copy.deepcopy(current)
        updated.status = target
        updated.cancelled_at = now
        updated.cancelled_by = actor_id
        updated.cancellation_reason = reason
        saved = self._save(current, updated, LifecycleAction.CANCEL, actor_id, now)

        self._audit(
            AuditEvent(
                action=LifecycleAction.CANCEL.value,
                instance_id=instance_id,
                actor_id=actor_id,
                timestamp=now,
                prior_assignee=current.assigned_to,
                new_assignee=saved.assigned_to,
                details={"reason": reason, "prior_status": current.status.value},
            )
        )
        return saved

    def delete(self, instance_id: str, actor_id: str) -> None:
        """Hard-delete a scheduled or cancelled instance.

        Raises:
            DependencyError: If notes or execution artifacts were recorded.
        """
        current = self.instances.require(instance_id)
        next_status(current.status, LifecycleAction.DELETE)
        self._require_manager(current, actor_id, LifecycleAction.DELETE)

        dependencies = []
        if current.notes:
            dependencies.append("notes")
        dependencies.extend(current.progress.execution_artifacts())
        if dependencies:
            raise DependencyError(
                f"Instance {instance_id} has recorded {', '.join(dependencies)}; "
                "cancel it instead of deleting",
                dependencies,
            )

        self.instances.delete_if_unchanged(current)
        logger.info("Deleted instance %s (was %s) by %s", instance_id, current.status.value, actor_id)

    def reassign(
        self, instance_id: str, actor_id: str, new_assignee: Optional[str] = None
    ) -> RoutineInstance:
        """Give a scheduled instance to another member (None = unassign)."""
        current = self.instances.require(instance_id)
        target = next_status(current.status, LifecycleAction.REASSIGN)
        self._require_manager(current, actor_id, LifecycleAction.REASSIGN)

        updated = copy.deepcopy(current)
        if new_assignee is None:
            updated.assigned_to = None
            updated.assigned_to_name = None
            updated.assignment_type = AssignmentType.UNASSIGNED
        else:
            member = self.membership.find_member(
                new_assignee, current.organization_id, current.stable_id
            )
            if member is None:
                raise ValidationError.single(
                    "ineligible_assignee",
                    f"{new_assignee} is not an eligible member of stable {current.stable_id}",
                    "new_assignee",
                )
            updated.assigned_to = member.id
            updated.assigned_to_name = member.display_name
            updated.assignment_type = AssignmentType.MANUAL

        now = self.clock()
        updated.status = target
        saved = self._save(current, updated, LifecycleAction.REASSIGN, actor_id, now)

        self._audit(
            AuditEvent(
                action=LifecycleAction.REASSIGN.value,
                instance_id=instance_id,
                actor_id=actor_id,
                timestamp=now,
                prior_assignee=current.assigned_to,
                new_assignee=saved.assigned_to,
            )
        )
        return saved

    def mark_missed(self, instance_id: str, actor_id: str) -> RoutineInstance:
        """Mark a scheduled instance whose date has passed as missed.

        The cutoff is always today's date from the manager's clock.
        """
        current = self.instances.require(instance_id)
        next_status(current.status, LifecycleAction.MARK_MISSED)
        self._require_manager(current, actor_id, LifecycleAction.MARK_MISSED)
        return self._mark_missed(current, actor_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_manager(self, instance: RoutineInstance, actor_id: str) -> bool:
        return self.permissions.has_permission(
            actor_id, instance.organization_id, Permission.MANAGE_SCHEDULES
        )

    def _require_manager(
        self, instance: RoutineInstance, actor_id: str, action: LifecycleAction
    ) -> None:
        if not self._is_manager(instance, actor_id):
            raise ForbiddenError(
                f"{action.value} requires the {Permission.MANAGE_SCHEDULES.value} permission",
                {"actor_id": actor_id, "action": action.value},
            )

    def _require_assignee_or_manager(
        self, instance: RoutineInstance, actor_id: str, action: LifecycleAction
    ) -> None:
        if instance.assigned_to == actor_id or self._is_manager(instance, actor_id):
            return
        raise ForbiddenError(
            f"Only the assignee or a schedule manager can {action.value} instance {instance.id}",
            {"actor_id": actor_id, "action": action.value},
        )

    def _mark_missed(self, current: RoutineInstance, actor_id: str) -> RoutineInstance:
        target = next_status(current.status, LifecycleAction.MARK_MISSED)
        now = self.clock()
        if current.scheduled_date >= now.date():
            raise ValidationError.single(
                "not_overdue",
                f"Instance {current.id} is scheduled for {current.scheduled_date.isoformat()}",
                "scheduled_date",
            )

        updated = copy.deepcopy(current)
        updated.status = target
        return self._save(current, updated, LifecycleAction.MARK_MISSED, actor_id, now)

    def _save(
        self,
        current: RoutineInstance,
        updated: RoutineInstance,
        action: LifecycleAction,
        actor_id: str,
        now: datetime,
    ) -> RoutineInstance:
        updated.updated_at = now
        updated.updated_by = actor_id
        saved = self.instances.save_transition(current, updated)
        logger.info(
            "%s %s: %s -> %s by %s",
            action.value,
            current.id,
            current.status.value,
            saved.status.value,
            actor_id,
        )
        return saved

    def _audit(self, event: AuditEvent) -> None:
        if self.audit is None:
            return
        try:
            self.audit.dispatch(event)
        except RuntimeError:
            # Dispatcher already shut down
            logger.exception("Audit record for %s on %s was dropped", event.action, event.instance_id)


def sweep_missed(
    manager: InstanceLifecycleManager,
    instances: Iterable[RoutineInstance],
    actor_id: str = "system",
) -> list[str]:
    """Mark every overdue scheduled instance as missed.

    Overdue means scheduled before today on the manager's clock. Instances
    that changed since they were listed are left alone.

    Returns:
        IDs of instances marked missed.
    """
    today = manager.clock().date()
    marked = []
    for instance in instances:
        if instance.status != InstanceStatus.SCHEDULED or instance.scheduled_date >= today:
            continue
        try:
            manager._mark_missed(instance, actor_id)
        except (ConflictError, NotFoundError) as exc:
            logger.info("Skipping %s in missed sweep: %s", instance.id, exc.message)
            continue
        marked.append(instance.id)
    logger.info("Missed sweep as of %s marked %d instances", today.isoformat(), len(marked))
    return marked
