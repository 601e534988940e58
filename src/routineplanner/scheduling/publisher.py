"""Materializes confirmed plans as routine instances.

Every instance gets an ID derived from (template, stable, date). An existing
instance is skipped, and a concurrent publisher that loses the race on the
same date collides at the store instead of creating a duplicate. Dates fail
independently: one failed write never rolls back the others, and publishing
again creates only the dates that are still missing.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Optional

from routineplanner.domain.config import PublisherConfig
from routineplanner.domain.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    ValidationIssue,
)
from routineplanner.domain.models import (
    AssignmentMode,
    AssignmentPlan,
    AssignmentType,
    Member,
    PlanEntry,
    PublishResult,
    RoutineInstance,
    RoutineProgress,
    RoutineTemplate,
    ScheduleDefinition,
)
from routineplanner.storage.document_store import DocumentExistsError, StoreError
from routineplanner.storage.repositories import InstanceRepository, ScheduleRepository

logger = logging.getLogger(__name__)


class _Outcome(Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


def instance_key(template_id: str, stable_id: str, d: date) -> str:
    return f"{template_id}:{stable_id}:{d.isoformat()}"


def assignment_type_for(mode: AssignmentMode, entry: PlanEntry) -> AssignmentType:
    """How a published entry's assignee came about."""
    if entry.effective_assignee is None:
        return AssignmentType.UNASSIGNED
    if entry.overridden:
        return AssignmentType.MANUAL
    if mode == AssignmentMode.AUTO:
        return AssignmentType.AUTO
    return AssignmentType.MANUAL


class SchedulePublisher:
    """Bulk, idempotent creation of instances for a schedule."""

    def __init__(
        self,
        instances: InstanceRepository,
        config: Optional[PublisherConfig] = None,
        schedules: Optional[ScheduleRepository] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.instances = instances
        self.config = config or PublisherConfig()
        self.schedules = schedules
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def instance_id(self, template_id: str, stable_id: str, d: date) -> str:
        """Deterministic instance ID for a (template, stable, date) key."""
        return str(uuid.uuid5(self.config.id_namespace, instance_key(template_id, stable_id, d)))

    def publish(
        self,
        schedule: ScheduleDefinition,
        plan: AssignmentPlan,
        template: RoutineTemplate,
        members: Optional[Iterable[Member]] = None,
    ) -> PublishResult:
        """Create the missing instances of a confirmed plan.

        Args:
            schedule: Schedule being published.
            plan: Confirmed plan, overrides included.
            template: Template snapshot for names, steps and points.
            members: Members used to denormalize assignee names.

        Returns:
            PublishResult. IDs of created and already-existing instances are
            listed by date; failed dates are reported with their error.

        Raises:
            ValidationError: If a plan date lies outside the schedule range.
        """
        outside = [d for d in plan.dates if not schedule.start_date <= d <= schedule.end_date]
        if outside:
            raise ValidationError.from_issues(
                [
                    ValidationIssue(
                        "date_out_of_range",
                        f"{d.isoformat()} is outside {schedule.start_date.isoformat()}"
                        f"..{schedule.end_date.isoformat()}",
                        "plan",
                    )
                    for d in outside
                ]
            )

        names = {m.id: m.display_name for m in members or ()}
        entries = sorted(plan.entries, key=lambda e: e.date)
        now = self.clock()

        def publish_entry(entry: PlanEntry) -> tuple[_Outcome, str, Optional[str]]:
            instance = self._build(schedule, plan, template, entry, names, now)
            return self._create(instance)

        if self.config.max_workers > 1 and len(entries) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                outcomes = list(executor.map(publish_entry, entries))
        else:
            outcomes = [publish_entry(entry) for entry in entries]

        result = PublishResult()
        materialized: list[date] = []
        for entry, (outcome, instance_id, error) in zip(entries, outcomes):
            if outcome == _Outcome.FAILED:
                result.failed_dates[entry.date] = error
                continue
            if outcome == _Outcome.CREATED:
                result.created_count += 1
            else:
                result.skipped_count += 1
            result.instance_ids.append(instance_id)
            materialized.append(entry.date)

        logger.info(
            "Published schedule %s: %d created, %d skipped, %d failed",
            schedule.id,
            result.created_count,
            result.skipped_count,
            len(result.failed_dates),
        )

        if self.schedules is not None and materialized:
            try:
                self.schedules.record_generation(
                    schedule.id, max(materialized), result.created_count
                )
            except (NotFoundError, ConflictError) as exc:
                logger.warning(
                    "Published schedule %s but could not record generation metadata: %s",
                    schedule.id,
                    exc.message,
                )
        return result

    def _build(
        self,
        schedule: ScheduleDefinition,
        plan: AssignmentPlan,
        template: RoutineTemplate,
        entry: PlanEntry,
        names: dict[str, str],
        now: datetime,
    ) -> RoutineInstance:
        assignee = entry.effective_assignee
        if assignee is not None:
            assignee_name = names.get(assignee)
            if assignee_name is None and assignee == schedule.default_assigned_to:
                assignee_name = schedule.assignment.default_assignee_name
        else:
            assignee_name = None

        return RoutineInstance(
            id=self.instance_id(schedule.template_id, schedule.stable_id, entry.date),
            schedule_id=schedule.id,
            template_id=schedule.template_id,
            template_name=template.name,
            stable_id=schedule.stable_id,
            organization_id=schedule.organization_id,
            scheduled_date=entry.date,
            scheduled_start_time=schedule.scheduled_start_time,
            assigned_to=assignee,
            assigned_to_name=assignee_name,
            assignment_type=assignment_type_for(plan.mode, entry),
            progress=RoutineProgress.for_steps(template.step_ids),
            points_value=entry.points,
            is_holiday_shift=entry.is_holiday,
            created_at=now,
            updated_at=now,
        )

    def _create(self, instance: RoutineInstance) -> tuple[_Outcome, str, Optional[str]]:
        try:
            if self.instances.exists(instance.id):
                return (_Outcome.SKIPPED, instance.id, None)
            self.instances.create(instance)
        except DocumentExistsError:
            logger.debug("Instance %s created concurrently, skipping", instance.id)
            return (_Outcome.SKIPPED, instance.id, None)
        except StoreError as exc:
            logger.warning("Could not create instance for %s: %s", instance.scheduled_date, exc)
            return (_Outcome.FAILED, instance.id, str(exc))
        return (_Outcome.CREATED, instance.id, None)
