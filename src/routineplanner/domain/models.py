"""Domain models for routine scheduling.

This module contains the core data structures used throughout the system:
schedule definitions with their recurrence and assignment rules, materialized
routine instances, members, and the ephemeral assignment plan produced during
preview.

Conditionally-required schedule fields are modeled as tagged variants. A
manual default assignee only exists on ``ManualAssignRule`` and repeat days
only exist on the recurrence rules that need them, so a definition cannot
carry a combination of fields that makes no sense.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum, IntEnum
from typing import ClassVar, Optional, Union

from routineplanner.domain.errors import ValidationError, ValidationIssue


class Weekday(IntEnum):
    """Day of week, numbered like ``date.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


WORK_DAYS = frozenset(Weekday(d) for d in range(5))
WEEKEND_DAYS = frozenset({Weekday.SATURDAY, Weekday.SUNDAY})
ALL_DAYS = frozenset(Weekday)


def _normalize_days(days) -> frozenset:
    try:
        return frozenset(Weekday(int(d)) for d in days)
    except (TypeError, ValueError):
        raise ValidationError.single(
            "invalid_repeat_days",
            f"Repeat days must be weekday numbers 0-6 (Monday=0), got {days!r}",
            "repeat_days",
        ) from None


# ============================================================================
# Recurrence rules
# ============================================================================


class RepeatPattern(Enum):
    """Recurrence pattern for a schedule."""

    DAILY = "daily"
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"
    HOLIDAYS = "holidays"
    CUSTOM = "custom"


@dataclass(frozen=True)
class DailyRepeat:
    """Every date in the range."""

    pattern: ClassVar[RepeatPattern] = RepeatPattern.DAILY

    @property
    def weekdays(self) -> frozenset:
        return ALL_DAYS

    @property
    def include_holidays(self) -> bool:
        return False


@dataclass(frozen=True)
class WeekdaysRepeat:
    """Monday through Friday."""

    pattern: ClassVar[RepeatPattern] = RepeatPattern.WEEKDAYS

    @property
    def weekdays(self) -> frozenset:
        return WORK_DAYS

    @property
    def include_holidays(self) -> bool:
        return False


@dataclass(frozen=True)
class WeekendsRepeat:
    """Saturday and/or Sunday.

    Attributes:
        days: Which weekend days qualify. Must be a non-empty subset of
            Saturday and Sunday.
    """

    days: frozenset = WEEKEND_DAYS

    pattern: ClassVar[RepeatPattern] = RepeatPattern.WEEKENDS

    def __post_init__(self):
        days = _normalize_days(self.days)
        if not days:
            raise ValidationError.single(
                "missing_repeat_days",
                f"{self.pattern.value} pattern requires at least one repeat day",
                "repeat_days",
            )
        if not days <= WEEKEND_DAYS:
            raise ValidationError.single(
                "invalid_repeat_days",
                f"{self.pattern.value} pattern only accepts Saturday (5) and Sunday (6)",
                "repeat_days",
            )
        object.__setattr__(self, "days", days)

    @property
    def weekdays(self) -> frozenset:
        return self.days

    @property
    def include_holidays(self) -> bool:
        return False


@dataclass(frozen=True)
class HolidaysRepeat(WeekendsRepeat):
    """Weekend days plus every date the holiday calendar marks as a holiday."""

    pattern: ClassVar[RepeatPattern] = RepeatPattern.HOLIDAYS

    @property
    def include_holidays(self) -> bool:
        return True


@dataclass(frozen=True)
class CustomRepeat:
    """Selected weekdays, optionally unioned with holidays.

    Attributes:
        days: Weekdays that qualify.
        include_holidays: If True, holidays qualify even when they fall on a
            day not listed in ``days``.
    """

    days: frozenset = frozenset()
    include_holidays: bool = False

    pattern: ClassVar[RepeatPattern] = RepeatPattern.CUSTOM

    def __post_init__(self):
        days = _normalize_days(self.days)
        if not days and not self.include_holidays:
            raise ValidationError.single(
                "missing_repeat_days",
                "Custom pattern requires at least one day or holidays to be selected",
                "repeat_days",
            )
        object.__setattr__(self, "days", days)

    @property
    def weekdays(self) -> frozenset:
        return self.days


RepeatRule = Union[DailyRepeat, WeekdaysRepeat, WeekendsRepeat, HolidaysRepeat, CustomRepeat]


def make_repeat_rule(
    pattern: Union[RepeatPattern, str],
    repeat_days=None,
    include_holidays: bool = False,
) -> RepeatRule:
    """Build the recurrence variant for a pattern and its optional fields."""
    try:
        pattern = RepeatPattern(pattern)
    except ValueError:
        raise ValidationError.single(
            "invalid_repeat_pattern",
            f"Unknown repeat pattern: {pattern!r}",
            "repeat_pattern",
        ) from None

    if pattern == RepeatPattern.DAILY:
        return DailyRepeat()
    if pattern == RepeatPattern.WEEKDAYS:
        return WeekdaysRepeat()
    if pattern == RepeatPattern.CUSTOM:
        return CustomRepeat(days=frozenset(repeat_days or ()), include_holidays=include_holidays)
    if repeat_days is None:
        raise ValidationError.single(
            "missing_repeat_days",
            f"{pattern.value} pattern requires repeat days",
            "repeat_days",
        )
    if pattern == RepeatPattern.WEEKENDS:
        return WeekendsRepeat(days=frozenset(repeat_days))
    return HolidaysRepeat(days=frozenset(repeat_days))


def repeat_rule_to_dict(rule: RepeatRule) -> dict:
    data = {"repeat_pattern": rule.pattern.value}
    if isinstance(rule, (WeekendsRepeat, CustomRepeat)):
        data["repeat_days"] = sorted(int(d) for d in rule.days)
    if isinstance(rule, CustomRepeat):
        data["include_holidays"] = rule.include_holidays
    return data


# ============================================================================
# Assignment rules
# ============================================================================


class AssignmentMode(Enum):
    """How instances of a schedule get their assignee."""

    UNASSIGNED = "unassigned"
    AUTO = "auto"
    MANUAL = "manual"
    SELF_BOOKED = "selfBooked"


@dataclass(frozen=True)
class UnassignedRule:
    mode: ClassVar[AssignmentMode] = AssignmentMode.UNASSIGNED


@dataclass(frozen=True)
class AutoAssignRule:
    mode: ClassVar[AssignmentMode] = AssignmentMode.AUTO


@dataclass(frozen=True)
class SelfBookedRule:
    mode: ClassVar[AssignmentMode] = AssignmentMode.SELF_BOOKED


@dataclass(frozen=True)
class ManualAssignRule:
    """Every instance goes to one fixed member.

    Attributes:
        default_assignee: Member ID that receives every instance.
        default_assignee_name: Denormalized display name.
    """

    default_assignee: str
    default_assignee_name: Optional[str] = None

    mode: ClassVar[AssignmentMode] = AssignmentMode.MANUAL

    def __post_init__(self):
        if not self.default_assignee:
            raise ValidationError.single(
                "missing_default_assignee",
                "Manual assignment requires a default assignee",
                "default_assigned_to",
            )


AssignmentRule = Union[UnassignedRule, AutoAssignRule, SelfBookedRule, ManualAssignRule]


def make_assignment_rule(
    mode: Union[AssignmentMode, str],
    default_assigned_to: Optional[str] = None,
    default_assigned_to_name: Optional[str] = None,
) -> AssignmentRule:
    """Build the assignment variant for a mode.

    ``default_assigned_to`` must be present for manual mode and absent for
    every other mode.
    """
    try:
        mode = AssignmentMode(mode)
    except ValueError:
        raise ValidationError.single(
            "invalid_assignment_mode",
            f"Unknown assignment mode: {mode!r}",
            "assignment_mode",
        ) from None

    if mode == AssignmentMode.MANUAL:
        return ManualAssignRule(default_assigned_to or "", default_assigned_to_name)
    if default_assigned_to:
        raise ValidationError.single(
            "unexpected_default_assignee",
            f"default_assigned_to is only allowed in manual mode, not {mode.value}",
            "default_assigned_to",
        )
    if mode == AssignmentMode.AUTO:
        return AutoAssignRule()
    if mode == AssignmentMode.SELF_BOOKED:
        return SelfBookedRule()
    return UnassignedRule()


def assignment_rule_to_dict(rule: AssignmentRule) -> dict:
    data = {"assignment_mode": rule.mode.value}
    if isinstance(rule, ManualAssignRule):
        data["default_assigned_to"] = rule.default_assignee
        data["default_assigned_to_name"] = rule.default_assignee_name
    return data


# ============================================================================
# Serialization helpers
# ============================================================================


def format_time(value: Optional[time]) -> Optional[str]:
    return value.strftime("%H:%M") if value is not None else None


def parse_time(value) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(value)


def parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _parse_optional_date(value) -> Optional[date]:
    return parse_date(value) if value is not None else None


# ============================================================================
# Schedule definition
# ============================================================================


@dataclass
class ScheduleDefinition:
    """A recurring routine schedule for one template in one stable.

    Attributes:
        organization_id: Owning organization.
        stable_id: Stable the routine runs in.
        template_id: Routine template being scheduled.
        start_date: First date of the range (inclusive).
        end_date: Last date of the range (inclusive).
        repeat: Recurrence rule variant.
        scheduled_start_time: Time of day the routine starts.
        assignment: Assignment rule variant.
        name: Human-readable schedule name.
        holiday_locale: Holiday calendar locale used for holiday patterns.
        enabled: Disabled schedules cannot be published.
        id: Schedule identifier.
        last_generated_date: Last date materialized by a publish.
        instances_generated: Number of instances created by publishes so far.
    """

    organization_id: str
    stable_id: str
    template_id: str
    start_date: date
    end_date: date
    repeat: RepeatRule
    scheduled_start_time: time
    assignment: AssignmentRule = field(default_factory=UnassignedRule)
    name: str = ""
    holiday_locale: str = "default"
    enabled: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    last_generated_date: Optional[date] = None
    instances_generated: int = 0

    @property
    def repeat_pattern(self) -> RepeatPattern:
        return self.repeat.pattern

    @property
    def assignment_mode(self) -> AssignmentMode:
        return self.assignment.mode

    @property
    def default_assigned_to(self) -> Optional[str]:
        if isinstance(self.assignment, ManualAssignRule):
            return self.assignment.default_assignee
        return None

    @property
    def num_days(self) -> int:
        """Number of calendar days in the range."""
        return (self.end_date - self.start_date).days + 1

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "organization_id": self.organization_id,
            "stable_id": self.stable_id,
            "template_id": self.template_id,
            "name": self.name,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "scheduled_start_time": format_time(self.scheduled_start_time),
            "holiday_locale": self.holiday_locale,
            "enabled": self.enabled,
            "created_by": self.created_by,
            "created_at": _format_datetime(self.created_at),
            "updated_at": _format_datetime(self.updated_at),
            "updated_by": self.updated_by,
            "last_generated_date": (
                self.last_generated_date.isoformat() if self.last_generated_date else None
            ),
            "instances_generated": self.instances_generated,
        }
        data.update(repeat_rule_to_dict(self.repeat))
        data.update(assignment_rule_to_dict(self.assignment))
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ScheduleDefinition":
        """Parse a definition from ISO-formatted primitives.

        Raises:
            ValidationError: If any field is missing, malformed, or present
                in a combination the rules do not allow.
        """
        issues: list[ValidationIssue] = []

        for key in ("organization_id", "stable_id", "template_id"):
            if not data.get(key):
                issues.append(ValidationIssue("missing_field", "is required", key))

        dates = {}
        for key in ("start_date", "end_date"):
            try:
                dates[key] = parse_date(data[key])
            except KeyError:
                issues.append(ValidationIssue("missing_field", "is required", key))
            except (TypeError, ValueError):
                issues.append(
                    ValidationIssue("invalid_date", f"not an ISO date: {data[key]!r}", key)
                )

        start_time = None
        try:
            start_time = parse_time(data.get("scheduled_start_time", "00:00"))
        except (TypeError, ValueError):
            issues.append(
                ValidationIssue(
                    "invalid_time",
                    f"not an HH:MM time: {data.get('scheduled_start_time')!r}",
                    "scheduled_start_time",
                )
            )

        repeat = None
        try:
            repeat = make_repeat_rule(
                data.get("repeat_pattern", ""),
                data.get("repeat_days"),
                bool(data.get("include_holidays", False)),
            )
        except ValidationError as exc:
            issues.extend(exc.issues)

        assignment = None
        try:
            assignment = make_assignment_rule(
                data.get("assignment_mode", AssignmentMode.UNASSIGNED.value),
                data.get("default_assigned_to"),
                data.get("default_assigned_to_name"),
            )
        except ValidationError as exc:
            issues.extend(exc.issues)

        if issues:
            raise ValidationError.from_issues(issues)

        kwargs = {}
        if data.get("id"):
            kwargs["id"] = data["id"]

        return cls(
            organization_id=data["organization_id"],
            stable_id=data["stable_id"],
            template_id=data["template_id"],
            start_date=dates["start_date"],
            end_date=dates["end_date"],
            repeat=repeat,
            scheduled_start_time=start_time,
            assignment=assignment,
            name=data.get("name", ""),
            holiday_locale=data.get("holiday_locale", "default"),
            enabled=data.get("enabled", True),
            created_by=data.get("created_by"),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
            updated_by=data.get("updated_by"),
            last_generated_date=_parse_optional_date(data.get("last_generated_date")),
            instances_generated=data.get("instances_generated", 0),
            **kwargs,
        )


# ============================================================================
# Routine instances
# ============================================================================


class InstanceStatus(Enum):
    """Lifecycle states of a routine instance."""

    SCHEDULED = "scheduled"
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"


class AssignmentType(Enum):
    """How an instance got its current assignee."""

    AUTO = "auto"
    MANUAL = "manual"
    SELF = "self"
    UNASSIGNED = "unassigned"


class StepStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


@dataclass
class StepProgress:
    """Execution record for one template step."""

    step_id: str
    status: StepStatus = StepStatus.PENDING
    notes: Optional[str] = None
    photo_urls: list[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    @property
    def is_done(self) -> bool:
        return self.status in (StepStatus.COMPLETED, StepStatus.SKIPPED)

    def to_dict(self) -> dict:
        return {
            "step_id": self.step_id,
            "status": self.status.value,
            "notes": self.notes,
            "photo_urls": list(self.photo_urls),
            "completed_at": _format_datetime(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StepProgress":
        return cls(
            step_id=data["step_id"],
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
            notes=data.get("notes"),
            photo_urls=list(data.get("photo_urls", [])),
            completed_at=_parse_datetime(data.get("completed_at")),
        )


@dataclass
class RoutineProgress:
    """Step progress for an instance. Owned by the execution subsystem."""

    steps_total: int = 0
    steps_completed: int = 0
    step_progress: dict[str, StepProgress] = field(default_factory=dict)

    @classmethod
    def for_steps(cls, step_ids: list[str]) -> "RoutineProgress":
        return cls(
            steps_total=len(step_ids),
            step_progress={sid: StepProgress(step_id=sid) for sid in step_ids},
        )

    @property
    def percent_complete(self) -> int:
        if self.steps_total == 0:
            return 0
        return round(self.steps_completed / self.steps_total * 100)

    def recount(self) -> None:
        self.steps_completed = sum(1 for s in self.step_progress.values() if s.is_done)

    def execution_artifacts(self) -> list[str]:
        """Names of recorded execution artifacts that block deletion."""
        artifacts = []
        if self.steps_completed > 0 or any(s.is_done for s in self.step_progress.values()):
            artifacts.append("completed_steps")
        if any(s.notes for s in self.step_progress.values()):
            artifacts.append("step_notes")
        if any(s.photo_urls for s in self.step_progress.values()):
            artifacts.append("step_photos")
        return artifacts

    def to_dict(self) -> dict:
        return {
            "steps_total": self.steps_total,
            "steps_completed": self.steps_completed,
            "percent_complete": self.percent_complete,
            "step_progress": {k: v.to_dict() for k, v in self.step_progress.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RoutineProgress":
        return cls(
            steps_total=data.get("steps_total", 0),
            steps_completed=data.get("steps_completed", 0),
            step_progress={
                k: StepProgress.from_dict(v) for k, v in data.get("step_progress", {}).items()
            },
        )


@dataclass
class RoutineInstance:
    """One concrete, dated occurrence of a routine.

    ``points_value`` is snapshotted from the template (with any holiday
    multiplier applied) at creation, so later template edits do not change
    fairness history. ``revision`` increases on every write and is part of
    the precondition of every conditional update.
    """

    id: str
    template_id: str
    stable_id: str
    organization_id: str
    scheduled_date: date
    scheduled_start_time: time
    schedule_id: Optional[str] = None
    template_name: str = ""
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    assignment_type: AssignmentType = AssignmentType.UNASSIGNED
    status: InstanceStatus = InstanceStatus.SCHEDULED
    progress: RoutineProgress = field(default_factory=RoutineProgress)
    points_value: int = 0
    is_holiday_shift: bool = False
    points_awarded: Optional[int] = None
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    started_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    completed_by_name: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    revision: int = 0
    created_at: Optional[datetime] = None
    created_by: str = "system"
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            InstanceStatus.COMPLETED,
            InstanceStatus.CANCELLED,
            InstanceStatus.MISSED,
        )

    @property
    def credited_member(self) -> Optional[str]:
        """Member a completed instance counts toward for fairness."""
        return self.completed_by or self.assigned_to

    @property
    def credited_points(self) -> int:
        return self.points_awarded if self.points_awarded is not None else self.points_value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "template_id": self.template_id,
            "template_name": self.template_name,
            "stable_id": self.stable_id,
            "organization_id": self.organization_id,
            "scheduled_date": self.scheduled_date.isoformat(),
            "scheduled_start_time": format_time(self.scheduled_start_time),
            "assigned_to": self.assigned_to,
            "assigned_to_name": self.assigned_to_name,
            "assignment_type": self.assignment_type.value,
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "points_value": self.points_value,
            "is_holiday_shift": self.is_holiday_shift,
            "points_awarded": self.points_awarded,
            "notes": self.notes,
            "started_at": _format_datetime(self.started_at),
            "started_by": self.started_by,
            "completed_at": _format_datetime(self.completed_at),
            "completed_by": self.completed_by,
            "completed_by_name": self.completed_by_name,
            "cancelled_at": _format_datetime(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
            "revision": self.revision,
            "created_at": _format_datetime(self.created_at),
            "created_by": self.created_by,
            "updated_at": _format_datetime(self.updated_at),
            "updated_by": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RoutineInstance":
        return cls(
            id=data["id"],
            schedule_id=data.get("schedule_id"),
            template_id=data["template_id"],
            template_name=data.get("template_name", ""),
            stable_id=data["stable_id"],
            organization_id=data["organization_id"],
            scheduled_date=parse_date(data["scheduled_date"]),
            scheduled_start_time=parse_time(data["scheduled_start_time"]),
            assigned_to=data.get("assigned_to"),
            assigned_to_name=data.get("assigned_to_name"),
            assignment_type=AssignmentType(
                data.get("assignment_type", AssignmentType.UNASSIGNED.value)
            ),
            status=InstanceStatus(data["status"]),
            progress=RoutineProgress.from_dict(data.get("progress", {})),
            points_value=data.get("points_value", 0),
            is_holiday_shift=data.get("is_holiday_shift", False),
            points_awarded=data.get("points_awarded"),
            notes=data.get("notes"),
            started_at=_parse_datetime(data.get("started_at")),
            started_by=data.get("started_by"),
            completed_at=_parse_datetime(data.get("completed_at")),
            completed_by=data.get("completed_by"),
            completed_by_name=data.get("completed_by_name"),
            cancelled_at=_parse_datetime(data.get("cancelled_at")),
            cancelled_by=data.get("cancelled_by"),
            cancellation_reason=data.get("cancellation_reason"),
            revision=data.get("revision", 0),
            created_at=_parse_datetime(data.get("created_at")),
            created_by=data.get("created_by", "system"),
            updated_at=_parse_datetime(data.get("updated_at")),
            updated_by=data.get("updated_by"),
        )


# ============================================================================
# Members and templates (collaborator data)
# ============================================================================


@dataclass
class Member:
    """A member who can be assigned routine instances.

    Attributes:
        id: Member (user) identifier.
        display_name: Name shown on assignments.
        unavailable_weekdays: Weekdays the member can never take.
        preferred_weekdays: Weekdays the member prefers.
        max_per_week: Maximum instances per ISO week during auto-assignment.
        max_per_month: Maximum instances per calendar month.
    """

    id: str
    display_name: str = ""
    unavailable_weekdays: frozenset = frozenset()
    preferred_weekdays: frozenset = frozenset()
    max_per_week: Optional[int] = None
    max_per_month: Optional[int] = None

    def __post_init__(self):
        if not self.display_name:
            self.display_name = self.id
        self.unavailable_weekdays = frozenset(Weekday(d) for d in self.unavailable_weekdays)
        self.preferred_weekdays = frozenset(Weekday(d) for d in self.preferred_weekdays)

    def is_available_on(self, d: date) -> bool:
        return Weekday(d.weekday()) not in self.unavailable_weekdays

    def prefers(self, d: date) -> bool:
        return Weekday(d.weekday()) in self.preferred_weekdays


@dataclass
class RoutineTemplate:
    """The slice of a routine template the scheduler needs."""

    id: str
    name: str
    points_value: int
    step_ids: list[str] = field(default_factory=list)
    default_start_time: Optional[time] = None


# ============================================================================
# Fairness and planning
# ============================================================================


@dataclass(frozen=True)
class FairnessScore:
    """Historical workload of one member. Lower means next in line."""

    member_id: str
    score: int


@dataclass
class PlanEntry:
    """One date of an assignment plan.

    Attributes:
        date: The planned date.
        suggested_assignee: Member suggested by the planner (None = open).
        points: Points the instance will be worth on this date.
        is_holiday: Whether the date is a holiday.
        overridden: True once a reviewer replaced the suggestion.
        overridden_assignee: The reviewer's choice (None = leave open).
    """

    date: date
    suggested_assignee: Optional[str]
    points: int = 0
    is_holiday: bool = False
    overridden: bool = False
    overridden_assignee: Optional[str] = None

    @property
    def effective_assignee(self) -> Optional[str]:
        if self.overridden:
            return self.overridden_assignee
        return self.suggested_assignee

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "suggested_assignee": self.suggested_assignee,
            "overridden_assignee": self.overridden_assignee if self.overridden else None,
            "overridden": self.overridden,
            "points": self.points,
            "is_holiday": self.is_holiday,
        }


@dataclass
class FairnessMetrics:
    """Metrics for evaluating how evenly a plan spreads points.

    Attributes:
        points_per_member: Final points per member (history + plan).
        assignments_per_member: Dates assigned per member in the plan.
        avg_points: Average final points.
        points_std_dev: Standard deviation of final points.
        min_points: Lowest final points.
        max_points: Highest final points.
        fairness_score: Overall fairness score (0-100, higher is fairer).
    """

    points_per_member: dict[str, int] = field(default_factory=dict)
    assignments_per_member: dict[str, int] = field(default_factory=dict)
    avg_points: float = 0.0
    points_std_dev: float = 0.0
    min_points: int = 0
    max_points: int = 0
    fairness_score: float = 100.0

    @classmethod
    def calculate(
        cls,
        points: dict[str, int],
        assignments: dict[str, int],
        reference_points: int = 1,
    ) -> "FairnessMetrics":
        """Calculate fairness metrics from final per-member points.

        Args:
            points: Final points per member.
            assignments: Number of plan dates per member.
            reference_points: Points of one instance, used to scale the score.
        """
        if not points:
            return cls()

        values = list(points.values())
        avg = sum(values) / len(values)
        variance = sum((v - avg) ** 2 for v in values) / len(values)
        std_dev = variance ** 0.5

        # 100 = perfectly even; one instance's worth of spread costs 50
        scale = max(reference_points, 1) * 2.0
        score = max(0.0, 100.0 - (std_dev / scale) * 100.0)

        return cls(
            points_per_member=dict(points),
            assignments_per_member=dict(assignments),
            avg_points=avg,
            points_std_dev=std_dev,
            min_points=min(values),
            max_points=max(values),
            fairness_score=score,
        )


@dataclass
class AssignmentPlan:
    """Previewable date -> assignee mapping, alive between preview and publish.

    Attributes:
        mode: Assignment mode the plan was produced for.
        points_value: Base points of one instance.
        entries: Plan entries in chronological order.
        baseline_scores: Ranked scores the plan started from.
        simulated_scores: Scores after the planning pass.
    """

    mode: AssignmentMode
    points_value: int
    entries: list[PlanEntry] = field(default_factory=list)
    baseline_scores: dict[str, int] = field(default_factory=dict)
    simulated_scores: dict[str, int] = field(default_factory=dict)

    @property
    def dates(self) -> list[date]:
        return [e.date for e in self.entries]

    def entry_for(self, d: date) -> PlanEntry:
        for entry in self.entries:
            if entry.date == d:
                return entry
        raise ValidationError.single(
            "date_not_in_plan", f"{d.isoformat()} is not part of this plan", "date"
        )

    def override(self, d: date, member_id: Optional[str]) -> PlanEntry:
        """Replace the suggestion for one date.

        Only that entry changes. Other suggestions are never recomputed.
        """
        entry = self.entry_for(d)
        entry.overridden = True
        entry.overridden_assignee = member_id
        return entry

    def assignments(self) -> dict[date, Optional[str]]:
        return {e.date: e.effective_assignee for e in self.entries}

    def fairness_metrics(self) -> FairnessMetrics:
        """Fairness of the plan as it stands, overrides included."""
        points = dict(self.baseline_scores)
        counts: dict[str, int] = {m: 0 for m in self.baseline_scores}
        for entry in self.entries:
            assignee = entry.effective_assignee
            if assignee is None:
                continue
            points[assignee] = points.get(assignee, 0) + entry.points
            counts[assignee] = counts.get(assignee, 0) + 1
        return FairnessMetrics.calculate(points, counts, self.points_value)

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "points_value": self.points_value,
            "entries": [e.to_dict() for e in self.entries],
            "baseline_scores": dict(self.baseline_scores),
            "simulated_scores": dict(self.simulated_scores),
        }


@dataclass
class PublishResult:
    """Outcome of materializing a plan.

    Attributes:
        created_count: Instances created by this call.
        skipped_count: Dates that already had an instance.
        instance_ids: IDs of created and already-existing instances, by date.
        failed_dates: Dates whose create failed, with the error message.
    """

    created_count: int = 0
    skipped_count: int = 0
    instance_ids: list[str] = field(default_factory=list)
    failed_dates: dict[date, str] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return not self.failed_dates

    def to_dict(self) -> dict:
        return {
            "created_count": self.created_count,
            "skipped_count": self.skipped_count,
            "instance_ids": list(self.instance_ids),
            "failed_dates": {d.isoformat(): msg for d, msg in self.failed_dates.items()},
        }
