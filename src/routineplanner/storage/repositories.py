"""Repositories mapping domain objects onto the document store.

Storage exceptions are translated into domain errors here, except for
``DocumentExistsError`` on instance creation, which the publisher treats as
"already materialized".
"""

import logging
from datetime import date
from typing import Optional

from routineplanner.domain.errors import ConflictError, NotFoundError
from routineplanner.domain.models import InstanceStatus, RoutineInstance, ScheduleDefinition
from routineplanner.storage.document_store import (
    DocumentNotFoundError,
    DocumentStore,
    PreconditionFailedError,
)

logger = logging.getLogger(__name__)


class InstanceRepository:
    """Persistence for routine instances."""

    COLLECTION = "routine_instances"

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, instance_id: str) -> Optional[RoutineInstance]:
        doc = self.store.get(self.COLLECTION, instance_id)
        return RoutineInstance.from_dict(doc) if doc is not None else None

    def require(self, instance_id: str) -> RoutineInstance:
        instance = self.get(instance_id)
        if instance is None:
            raise NotFoundError("Routine instance", instance_id)
        return instance

    def exists(self, instance_id: str) -> bool:
        return self.store.get(self.COLLECTION, instance_id) is not None

    def create(self, instance: RoutineInstance) -> RoutineInstance:
        """Persist a new instance.

        Raises:
            DocumentExistsError: If an instance with the same ID exists.
        """
        self.store.create(self.COLLECTION, instance.id, instance.to_dict())
        return instance

    def find_in_range(
        self,
        template_id: str,
        stable_id: str,
        start: date,
        end: date,
    ) -> list[RoutineInstance]:
        """Instances of a template in a stable, scheduled within [start, end]."""
        docs = self.store.query(
            self.COLLECTION,
            filters={"template_id": template_id, "stable_id": stable_id},
            date_field="scheduled_date",
            start=start,
            end=end,
        )
        return [RoutineInstance.from_dict(doc) for doc in docs]

    def query(
        self,
        organization_id: Optional[str] = None,
        stable_id: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        assigned_to: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[RoutineInstance]:
        filters = {}
        if organization_id is not None:
            filters["organization_id"] = organization_id
        if stable_id is not None:
            filters["stable_id"] = stable_id
        if status is not None:
            filters["status"] = status.value
        if assigned_to is not None:
            filters["assigned_to"] = assigned_to
        docs = self.store.query(
            self.COLLECTION,
            filters=filters,
            date_field="scheduled_date",
            start=start,
            end=end,
        )
        return [RoutineInstance.from_dict(doc) for doc in docs]

    def completed_history(
        self,
        organization_id: str,
        stable_id: str,
        until: Optional[date] = None,
    ) -> list[RoutineInstance]:
        """Completed instances that feed fairness scores."""
        return self.query(
            organization_id=organization_id,
            stable_id=stable_id,
            status=InstanceStatus.COMPLETED,
            end=until,
        )

    def save_transition(
        self, current: RoutineInstance, updated: RoutineInstance
    ) -> RoutineInstance:
        """Write ``updated`` only if the stored record still matches ``current``.

        The precondition is the status and revision that ``current`` was read
        with. The stored revision is bumped by one.

        Raises:
            ConflictError: If another writer changed the record first.
            NotFoundError: If the record was deleted in the meantime.
        """
        updated.revision = current.revision + 1
        try:
            doc = self.store.update(
                self.COLLECTION,
                current.id,
                updated.to_dict(),
                expected={"status": current.status.value, "revision": current.revision},
            )
        except PreconditionFailedError as exc:
            logger.info("Conditional write lost on instance %s: %s", current.id, exc)
            raise ConflictError(
                f"Routine instance {current.id} was modified concurrently; re-read and retry",
                {"field": exc.field_name, "expected": str(exc.expected), "actual": str(exc.actual)},
            ) from exc
        except DocumentNotFoundError as exc:
            raise NotFoundError("Routine instance", current.id) from exc
        return RoutineInstance.from_dict(doc)

    def delete_if_unchanged(self, current: RoutineInstance) -> None:
        """Hard-delete an instance if its status and revision still match."""
        try:
            self.store.delete(
                self.COLLECTION,
                current.id,
                expected={"status": current.status.value, "revision": current.revision},
            )
        except PreconditionFailedError as exc:
            raise ConflictError(
                f"Routine instance {current.id} was modified concurrently; re-read and retry",
                {"field": exc.field_name, "expected": str(exc.expected), "actual": str(exc.actual)},
            ) from exc
        except DocumentNotFoundError as exc:
            raise NotFoundError("Routine instance", current.id) from exc


class ScheduleRepository:
    """Persistence for schedule definitions."""

    COLLECTION = "routine_schedules"
    MAX_GENERATION_ATTEMPTS = 10

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, schedule_id: str) -> Optional[ScheduleDefinition]:
        doc = self.store.get(self.COLLECTION, schedule_id)
        return ScheduleDefinition.from_dict(doc) if doc is not None else None

    def require(self, schedule_id: str) -> ScheduleDefinition:
        schedule = self.get(schedule_id)
        if schedule is None:
            raise NotFoundError("Routine schedule", schedule_id)
        return schedule

    def create(self, schedule: ScheduleDefinition) -> ScheduleDefinition:
        self.store.create(self.COLLECTION, schedule.id, schedule.to_dict())
        return schedule

    def query(
        self,
        stable_id: Optional[str] = None,
        template_id: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> list[ScheduleDefinition]:
        filters = {}
        if stable_id is not None:
            filters["stable_id"] = stable_id
        if template_id is not None:
            filters["template_id"] = template_id
        if enabled is not None:
            filters["enabled"] = enabled
        docs = self.store.query(self.COLLECTION, filters=filters)
        return [ScheduleDefinition.from_dict(doc) for doc in docs]

    def update(
        self,
        schedule: ScheduleDefinition,
        expected: Optional[dict] = None,
    ) -> ScheduleDefinition:
        try:
            doc = self.store.update(self.COLLECTION, schedule.id, schedule.to_dict(), expected)
        except PreconditionFailedError as exc:
            raise ConflictError(
                f"Routine schedule {schedule.id} was modified concurrently; re-read and retry",
                {"field": exc.field_name},
            ) from exc
        except DocumentNotFoundError as exc:
            raise NotFoundError("Routine schedule", schedule.id) from exc
        return ScheduleDefinition.from_dict(doc)

    def record_generation(
        self, schedule_id: str, last_generated_date: date, created: int
    ) -> None:
        """Update generation metadata after a publish.

        The counter is incremented with a conditional write, retried when
        another publisher updated it in between.

        Raises:
            NotFoundError: If the schedule no longer exists.
            ConflictError: If every attempt lost the race.
        """
        for _ in range(self.MAX_GENERATION_ATTEMPTS):
            doc = self.store.get(self.COLLECTION, schedule_id)
            if doc is None:
                raise NotFoundError("Routine schedule", schedule_id)
            previous_last = doc.get("last_generated_date")
            previous_count = doc.get("instances_generated")
            new_last = last_generated_date.isoformat()
            if previous_last and previous_last > new_last:
                new_last = previous_last
            try:
                self.store.update(
                    self.COLLECTION,
                    schedule_id,
                    {
                        "last_generated_date": new_last,
                        "instances_generated": (previous_count or 0) + created,
                    },
                    expected={
                        "last_generated_date": previous_last,
                        "instances_generated": previous_count,
                    },
                )
                return
            except PreconditionFailedError:
                logger.debug("Generation metadata for %s changed concurrently, retrying", schedule_id)
            except DocumentNotFoundError as exc:
                raise NotFoundError("Routine schedule", schedule_id) from exc
        raise ConflictError(
            f"Could not update generation metadata for routine schedule {schedule_id}",
            {"schedule_id": schedule_id},
        )
