"""Main scheduler interface.

This module provides the high-level RoutineScheduler class that orchestrates
validation, recurrence expansion, fairness ranking, planning, publishing and
the instance lifecycle behind the operations exposed to callers.
"""

import dataclasses
import logging
import uuid
from datetime import date, datetime, time, timezone
from typing import Callable, Optional, Union

from routineplanner.audit.dispatcher import AuditDispatcher, AuditSink, LoggingAuditSink
from routineplanner.domain.config import PlannerStrategy, SchedulerConfig
from routineplanner.domain.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    ValidationIssue,
)
from routineplanner.domain.models import (
    AssignmentPlan,
    AssignmentType,
    FairnessScore,
    InstanceStatus,
    Member,
    PublishResult,
    RoutineInstance,
    RoutineProgress,
    RoutineTemplate,
    ScheduleDefinition,
    parse_date,
)
from routineplanner.domain.policies import (
    DefaultHolidayPointsPolicy,
    HolidayCalendar,
    MembershipDirectory,
    Permission,
    PermissionChecker,
    StaticHolidayCalendar,
    TemplateCatalog,
)
from routineplanner.scheduling.cpsat_planner import BalancedPlanner
from routineplanner.scheduling.fairness import FairnessRanker
from routineplanner.scheduling.lifecycle import InstanceLifecycleManager, LifecycleAction
from routineplanner.scheduling.planner import AssignmentPlanner
from routineplanner.scheduling.publisher import SchedulePublisher
from routineplanner.scheduling.recurrence import RecurrenceExpander
from routineplanner.storage.document_store import (
    DocumentExistsError,
    DocumentStore,
    InMemoryDocumentStore,
)
from routineplanner.storage.repositories import InstanceRepository, ScheduleRepository
from routineplanner.validation.validator import ScheduleValidator

logger = logging.getLogger(__name__)

ScheduleInput = Union[ScheduleDefinition, dict]


class RoutineScheduler:
    """High-level entry point for routine scheduling.

    Example:
        >>> scheduler = RoutineScheduler(permissions, membership, templates, holidays)
        >>> schedule_id = scheduler.create_schedule(definition, actor_id="manager-1")
        >>> plan = scheduler.preview_schedule(scheduler.get_schedule(schedule_id))
        >>> plan.override(date(2026, 3, 4), "member-2")
        >>> result = scheduler.publish_schedule(schedule_id, plan, actor_id="manager-1")
    """

    def __init__(
        self,
        permissions: PermissionChecker,
        membership: MembershipDirectory,
        templates: TemplateCatalog,
        holidays: Optional[HolidayCalendar] = None,
        store: Optional[DocumentStore] = None,
        config: Optional[SchedulerConfig] = None,
        audit_sink: Optional[AuditSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the scheduler with its collaborators.

        Args:
            permissions: Permission engine.
            membership: Membership directory (candidate source).
            templates: Routine template catalog.
            holidays: Holiday calendar. Defaults to one without holidays.
            store: Document store. Defaults to an in-memory store.
            config: Scheduler configuration.
            audit_sink: Where reassign and cancel records go. Defaults to
                the logging sink.
            clock: Source of "now", for tests.
        """
        self.config = config or SchedulerConfig()
        self.permissions = permissions
        self.membership = membership
        self.templates = templates
        self.holidays = holidays or StaticHolidayCalendar()
        self.store = store or InMemoryDocumentStore()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.schedules = ScheduleRepository(self.store)
        self.instances = InstanceRepository(self.store)

        self.expander = RecurrenceExpander(self.holidays)
        self.validator = ScheduleValidator(self.expander, self.config.max_range_months)
        self.ranker = FairnessRanker(self.config.fairness)
        self.points_policy = DefaultHolidayPointsPolicy(self.config.fairness.holiday_multiplier)

        if self.config.planner.strategy == PlannerStrategy.BALANCED:
            self.planner = BalancedPlanner(
                self.config.planner, self.config.fairness, self.points_policy
            )
        else:
            self.planner = AssignmentPlanner(self.config.fairness, self.points_policy)

        self.publisher = SchedulePublisher(
            self.instances, self.config.publisher, self.schedules, self.clock
        )
        self.audit = AuditDispatcher(audit_sink or LoggingAuditSink(), self.config.audit_workers)
        self.lifecycle = InstanceLifecycleManager(
            self.instances, self.permissions, self.membership, self.audit, self.clock
        )

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def create_schedule(self, definition: ScheduleInput, actor_id: str) -> str:
        """Validate and persist a schedule definition.

        Returns:
            The schedule ID.

        Raises:
            ValidationError: If the definition is malformed.
            ForbiddenError: If the actor cannot manage schedules.
        """
        schedule = self._coerce(definition)
        self._require_manager(actor_id, schedule.organization_id, "create schedules")
        self._validate(schedule)

        now = self.clock()
        schedule.created_by = actor_id
        schedule.created_at = now
        schedule.updated_by = actor_id
        schedule.updated_at = now
        schedule.last_generated_date = None
        schedule.instances_generated = 0
        try:
            self.schedules.create(schedule)
        except DocumentExistsError as exc:
            raise ConflictError(f"Routine schedule {schedule.id} already exists") from exc

        logger.info(
            "Created schedule %s (%s, %s..%s) by %s",
            schedule.id,
            schedule.repeat_pattern.value,
            schedule.start_date,
            schedule.end_date,
            actor_id,
        )
        return schedule.id

    def get_schedule(self, schedule_id: str) -> ScheduleDefinition:
        return self.schedules.require(schedule_id)

    def preview_schedule(
        self, definition: ScheduleInput, as_of: Optional[date] = None
    ) -> AssignmentPlan:
        """Plan assignees for every qualifying date without persisting anything.

        Args:
            definition: Schedule definition (stored or not yet created).
            as_of: Reference date for fairness history (default today).

        Returns:
            The plan. Callers may override entries before publishing.
        """
        schedule = self._coerce(definition)
        members = self.membership.eligible_members(schedule.organization_id, schedule.stable_id)
        dates = self._validate(schedule, members)
        template = self._require_template(schedule.template_id)

        as_of = as_of or self.clock().date()
        history = self.instances.completed_history(
            schedule.organization_id, schedule.stable_id, until=as_of
        )
        ranked = self.ranker.rank([m.id for m in members], history, as_of)
        holiday_dates = self.expander.holidays_in_range(
            schedule.start_date, schedule.end_date, schedule.holiday_locale
        )

        plan = self.planner.plan(
            dates,
            schedule.assignment,
            ranked,
            template.points_value,
            members,
            holiday_dates,
        )
        logger.debug(
            "Previewed %d dates for schedule %s (%s)",
            len(plan.entries),
            schedule.id,
            schedule.assignment_mode.value,
        )
        return plan

    def publish_schedule(
        self,
        schedule_id: str,
        confirmed_plan: Optional[AssignmentPlan] = None,
        actor_id: Optional[str] = None,
    ) -> PublishResult:
        """Materialize a schedule's instances.

        Args:
            schedule_id: Stored schedule to publish.
            confirmed_plan: Previewed plan with any overrides. Planned fresh
                when omitted.
            actor_id: When given, must hold the manage-schedules permission.

        Returns:
            PublishResult with created, skipped and failed dates.
        """
        schedule = self.schedules.require(schedule_id)
        if actor_id is not None:
            self._require_manager(actor_id, schedule.organization_id, "publish schedules")
        if not schedule.enabled:
            raise ValidationError.single(
                "schedule_disabled", f"Schedule {schedule_id} is disabled", "enabled"
            )

        members = self.membership.eligible_members(schedule.organization_id, schedule.stable_id)
        plan = confirmed_plan if confirmed_plan is not None else self.preview_schedule(schedule)
        self._check_plan(schedule, plan, members)
        template = self._require_template(schedule.template_id)
        return self.publisher.publish(schedule, plan, template, members)

    def extend_schedule(
        self, schedule_id: str, new_end_date: Union[date, str], actor_id: str
    ) -> ScheduleDefinition:
        """Move a schedule's end date later. Ranges never shrink.

        Dates that were already published stay as they are; publishing again
        materializes only the added dates.
        """
        schedule = self.schedules.require(schedule_id)
        self._require_manager(actor_id, schedule.organization_id, "edit schedules")
        new_end_date = parse_date(new_end_date)
        if new_end_date < schedule.end_date:
            raise ValidationError.single(
                "range_shrink",
                f"Schedules can only be extended; {new_end_date.isoformat()} is before the "
                f"current end date {schedule.end_date.isoformat()}",
                "end_date",
            )

        previous_end = schedule.end_date
        extended = dataclasses.replace(
            schedule,
            end_date=new_end_date,
            updated_by=actor_id,
            updated_at=self.clock(),
        )
        self._validate(extended)
        saved = self.schedules.update(extended, expected={"end_date": previous_end.isoformat()})
        logger.info("Extended schedule %s to %s", schedule_id, new_end_date)
        return saved

    def set_schedule_enabled(
        self, schedule_id: str, enabled: bool, actor_id: str
    ) -> ScheduleDefinition:
        schedule = self.schedules.require(schedule_id)
        self._require_manager(actor_id, schedule.organization_id, "edit schedules")
        schedule.enabled = enabled
        schedule.updated_by = actor_id
        schedule.updated_at = self.clock()
        return self.schedules.update(schedule)

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def transition(
        self,
        instance_id: str,
        action: Union[LifecycleAction, str],
        actor_id: str,
        **params,
    ) -> Optional[RoutineInstance]:
        """Apply a lifecycle action. Returns None after a delete."""
        return self.lifecycle.apply(instance_id, action, actor_id, **params)

    def create_instance(
        self,
        organization_id: str,
        stable_id: str,
        template_id: str,
        scheduled_date: Union[date, str],
        actor_id: str,
        scheduled_start_time: Optional[time] = None,
        assigned_to: Optional[str] = None,
        holiday_locale: str = "default",
    ) -> RoutineInstance:
        """Create a one-off instance outside any schedule."""
        self._require_manager(actor_id, organization_id, "create routine instances")
        template = self._require_template(template_id)
        scheduled_date = parse_date(scheduled_date)

        start_time = scheduled_start_time or template.default_start_time
        if start_time is None:
            raise ValidationError.single(
                "missing_field", "is required", "scheduled_start_time"
            )

        assignee: Optional[Member] = None
        if assigned_to is not None:
            assignee = self.membership.find_member(assigned_to, organization_id, stable_id)
            if assignee is None:
                raise ValidationError.single(
                    "ineligible_assignee",
                    f"{assigned_to} is not an eligible member of stable {stable_id}",
                    "assigned_to",
                )

        is_holiday = self.holidays.is_holiday(scheduled_date, holiday_locale)
        now = self.clock()
        instance = RoutineInstance(
            id=uuid.uuid4().hex,
            template_id=template.id,
            template_name=template.name,
            stable_id=stable_id,
            organization_id=organization_id,
            scheduled_date=scheduled_date,
            scheduled_start_time=start_time,
            assigned_to=assignee.id if assignee else None,
            assigned_to_name=assignee.display_name if assignee else None,
            assignment_type=AssignmentType.MANUAL if assignee else AssignmentType.UNASSIGNED,
            progress=RoutineProgress.for_steps(template.step_ids),
            points_value=self.points_policy.points_for(template.points_value, is_holiday),
            is_holiday_shift=is_holiday,
            created_at=now,
            created_by=actor_id,
            updated_at=now,
            updated_by=actor_id,
        )
        self.instances.create(instance)
        logger.info("Created ad hoc instance %s on %s", instance.id, scheduled_date)
        return instance

    def get_instance(self, instance_id: str) -> RoutineInstance:
        return self.instances.require(instance_id)

    def list_instances(
        self,
        stable_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        status: Optional[InstanceStatus] = None,
        assigned_to: Optional[str] = None,
    ) -> list[RoutineInstance]:
        return self.instances.query(
            stable_id=stable_id, status=status, assigned_to=assigned_to, start=start, end=end
        )

    def fairness_scores(
        self, organization_id: str, stable_id: str, as_of: Optional[date] = None
    ) -> list[FairnessScore]:
        """Current ranking of the stable's eligible members."""
        as_of = as_of or self.clock().date()
        members = self.membership.eligible_members(organization_id, stable_id)
        history = self.instances.completed_history(organization_id, stable_id, until=as_of)
        return self.ranker.rank([m.id for m in members], history, as_of)

    def close(self) -> None:
        """Deliver pending audit records and stop the audit workers."""
        self.audit.shutdown(wait_for_pending=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _coerce(self, definition: ScheduleInput) -> ScheduleDefinition:
        if isinstance(definition, ScheduleDefinition):
            return dataclasses.replace(definition)
        return ScheduleDefinition.from_dict(definition)

    def _validate(
        self, schedule: ScheduleDefinition, members: Optional[list[Member]] = None
    ) -> list[date]:
        if members is None:
            members = self.membership.eligible_members(
                schedule.organization_id, schedule.stable_id
            )
        result = self.validator.validate(schedule, self.templates, members)
        for warning in result.warnings:
            logger.warning("Schedule %s: %s", schedule.id, warning)
        result.raise_if_invalid()
        return result.dates

    def _require_manager(self, actor_id: str, organization_id: str, what: str) -> None:
        if not self.permissions.has_permission(
            actor_id, organization_id, Permission.MANAGE_SCHEDULES
        ):
            raise ForbiddenError(
                f"{actor_id} is not allowed to {what}",
                {"actor_id": actor_id, "permission": Permission.MANAGE_SCHEDULES.value},
            )

    def _require_template(self, template_id: str) -> RoutineTemplate:
        template = self.templates.get_template(template_id)
        if template is None:
            raise NotFoundError("Routine template", template_id)
        return template

    def _check_plan(
        self, schedule: ScheduleDefinition, plan: AssignmentPlan, members: list[Member]
    ) -> None:
        """Reject plans that do not belong to the schedule or name ineligible members."""
        qualifying = set(
            self.expander.expand(
                schedule.start_date, schedule.end_date, schedule.repeat, schedule.holiday_locale
            )
        )
        eligible = {m.id for m in members}
        issues = []
        for entry in plan.entries:
            if entry.date not in qualifying:
                issues.append(
                    ValidationIssue(
                        "date_not_scheduled",
                        f"{entry.date.isoformat()} is not a qualifying date of this schedule",
                        "plan",
                    )
                )
            assignee = entry.effective_assignee
            if entry.overridden and assignee is not None and assignee not in eligible:
                issues.append(
                    ValidationIssue(
                        "ineligible_assignee",
                        f"{assignee} is not an eligible member of stable {schedule.stable_id}",
                        "plan",
                        {"date": entry.date.isoformat()},
                    )
                )
        if issues:
            raise ValidationError.from_issues(issues)
