"""Tests for domain models, configuration and errors."""

from datetime import date, datetime, time, timezone

import pytest

from routineplanner.domain.config import (
    LookbackKind,
    PlannerStrategy,
    SchedulerConfig,
)
from routineplanner.domain.errors import (
    ConflictError,
    DependencyError,
    NotFoundError,
    ValidationError,
    ValidationIssue,
)
from routineplanner.domain.models import (
    AssignmentMode,
    AssignmentType,
    AutoAssignRule,
    CustomRepeat,
    FairnessMetrics,
    HolidaysRepeat,
    InstanceStatus,
    ManualAssignRule,
    Member,
    RepeatPattern,
    RoutineInstance,
    RoutineProgress,
    ScheduleDefinition,
    StepStatus,
    Weekday,
    WeekendsRepeat,
    make_assignment_rule,
    make_repeat_rule,
)
from routineplanner.domain.policies import DefaultHolidayPointsPolicy


class TestRepeatRules:
    """Tests for recurrence variants."""

    def test_weekends_default_to_both_days(self):
        assert WeekendsRepeat().weekdays == {Weekday.SATURDAY, Weekday.SUNDAY}

    def test_weekends_reject_weekdays(self):
        with pytest.raises(ValidationError) as exc_info:
            WeekendsRepeat(days=frozenset({Weekday.MONDAY}))
        assert exc_info.value.issues[0].code == "invalid_repeat_days"

    def test_weekends_reject_empty(self):
        with pytest.raises(ValidationError):
            WeekendsRepeat(days=frozenset())

    def test_days_normalized_from_ints(self):
        rule = CustomRepeat(days=frozenset({0, 2}))
        assert rule.days == {Weekday.MONDAY, Weekday.WEDNESDAY}

    def test_custom_needs_days_or_holidays(self):
        with pytest.raises(ValidationError):
            CustomRepeat()
        assert CustomRepeat(include_holidays=True).include_holidays

    def test_out_of_range_day(self):
        with pytest.raises(ValidationError):
            CustomRepeat(days=frozenset({7}))

    def test_make_repeat_rule(self):
        assert isinstance(make_repeat_rule("holidays", [6]), HolidaysRepeat)
        assert make_repeat_rule(RepeatPattern.DAILY).pattern == RepeatPattern.DAILY

    def test_unknown_pattern(self):
        with pytest.raises(ValidationError) as exc_info:
            make_repeat_rule("fortnightly")
        assert exc_info.value.issues[0].code == "invalid_repeat_pattern"


class TestAssignmentRules:
    """Tests for assignment variants."""

    def test_manual_requires_default(self):
        with pytest.raises(ValidationError) as exc_info:
            make_assignment_rule("manual")
        assert exc_info.value.issues[0].code == "missing_default_assignee"

    def test_manual(self):
        rule = make_assignment_rule("manual", "M001", "Alice")
        assert rule == ManualAssignRule("M001", "Alice")

    def test_self_booked_value(self):
        assert make_assignment_rule("selfBooked").mode == AssignmentMode.SELF_BOOKED

    def test_default_rejected_outside_manual(self):
        for mode in ("auto", "unassigned", "selfBooked"):
            with pytest.raises(ValidationError):
                make_assignment_rule(mode, "M001")

    def test_unknown_mode(self):
        with pytest.raises(ValidationError):
            make_assignment_rule("round_robin")


class TestScheduleDefinition:
    """Tests for parsing and serializing schedule definitions."""

    @pytest.fixture
    def data(self):
        return {
            "id": "sched-1",
            "organization_id": "org",
            "stable_id": "stable",
            "template_id": "feeding",
            "start_date": "2026-03-02",
            "end_date": "2026-03-31",
            "repeat_pattern": "custom",
            "repeat_days": [4, 0],
            "include_holidays": True,
            "scheduled_start_time": "06:30",
            "assignment_mode": "manual",
            "default_assigned_to": "M001",
        }

    def test_from_dict(self, data):
        schedule = ScheduleDefinition.from_dict(data)

        assert schedule.id == "sched-1"
        assert schedule.repeat == CustomRepeat(
            days=frozenset({Weekday.MONDAY, Weekday.FRIDAY}), include_holidays=True
        )
        assert schedule.scheduled_start_time == time(6, 30)
        assert schedule.default_assigned_to == "M001"
        assert schedule.num_days == 30

    def test_round_trip(self, data):
        schedule = ScheduleDefinition.from_dict(data)
        schedule.last_generated_date = date(2026, 3, 6)
        schedule.created_at = datetime(2026, 3, 1, tzinfo=timezone.utc)

        restored = ScheduleDefinition.from_dict(schedule.to_dict())

        assert restored == schedule
        assert schedule.to_dict()["repeat_days"] == [0, 4]

    def test_collects_every_issue(self, data):
        """Problems in several fields are reported in one error."""
        data["end_date"] = "31/03/2026"
        data["scheduled_start_time"] = "early"
        data["repeat_pattern"] = "weekends"
        data["repeat_days"] = [1]
        data["default_assigned_to"] = None

        with pytest.raises(ValidationError) as exc_info:
            ScheduleDefinition.from_dict(data)

        codes = [issue.code for issue in exc_info.value.issues]
        assert codes == [
            "invalid_date",
            "invalid_time",
            "invalid_repeat_days",
            "missing_default_assignee",
        ]

    def test_generates_id(self, data):
        del data["id"]
        a = ScheduleDefinition.from_dict(data)
        b = ScheduleDefinition.from_dict(data)
        assert a.id and a.id != b.id


class TestRoutineInstance:
    """Tests for RoutineInstance."""

    def test_round_trip(self):
        progress = RoutineProgress.for_steps(["hay", "water"])
        progress.step_progress["hay"].status = StepStatus.COMPLETED
        progress.step_progress["hay"].photo_urls.append("https://img/1.jpg")
        progress.recount()
        instance = RoutineInstance(
            id="i1",
            template_id="feeding",
            stable_id="stable",
            organization_id="org",
            scheduled_date=date(2026, 3, 2),
            scheduled_start_time=time(7, 0),
            assigned_to="M001",
            assignment_type=AssignmentType.SELF,
            status=InstanceStatus.IN_PROGRESS,
            progress=progress,
            points_value=8,
            is_holiday_shift=True,
            started_at=datetime(2026, 3, 2, 7, 5, tzinfo=timezone.utc),
            revision=2,
        )

        restored = RoutineInstance.from_dict(instance.to_dict())

        assert restored == instance
        assert instance.to_dict()["progress"]["percent_complete"] == 50

    def test_credit(self):
        instance = RoutineInstance(
            id="i1",
            template_id="t",
            stable_id="s",
            organization_id="o",
            scheduled_date=date(2026, 3, 2),
            scheduled_start_time=time(7, 0),
            assigned_to="M001",
            points_value=5,
        )
        assert instance.credited_member == "M001"
        assert instance.credited_points == 5

        instance.completed_by = "M002"
        instance.points_awarded = 0
        assert instance.credited_member == "M002"
        assert instance.credited_points == 0

    def test_execution_artifacts(self):
        progress = RoutineProgress.for_steps(["hay"])
        assert progress.execution_artifacts() == []

        progress.step_progress["hay"].notes = "wet hay"
        assert progress.execution_artifacts() == ["step_notes"]


class TestMember:
    def test_display_name_defaults_to_id(self):
        assert Member("M001").display_name == "M001"

    def test_availability_and_preference(self):
        member = Member("M001", unavailable_weekdays={6}, preferred_weekdays={5})

        assert not member.is_available_on(date(2026, 3, 8))
        assert member.is_available_on(date(2026, 3, 7))
        assert member.prefers(date(2026, 3, 7))


class TestFairnessMetrics:
    def test_even_distribution(self):
        metrics = FairnessMetrics.calculate({"A": 10, "B": 10}, {"A": 2, "B": 2}, 5)

        assert metrics.points_std_dev == 0
        assert metrics.fairness_score == 100.0

    def test_uneven_distribution(self):
        metrics = FairnessMetrics.calculate({"A": 0, "B": 10}, {"A": 0, "B": 2}, 5)

        assert metrics.avg_points == 5
        assert metrics.min_points == 0
        assert metrics.max_points == 10
        assert metrics.fairness_score == pytest.approx(50.0)

    def test_empty(self):
        assert FairnessMetrics.calculate({}, {}).fairness_score == 100.0


class TestHolidayPointsPolicy:
    def test_default_leaves_points(self):
        assert DefaultHolidayPointsPolicy().points_for(5, True) == 5

    def test_rounds_half_up(self):
        policy = DefaultHolidayPointsPolicy(1.5)
        assert policy.points_for(5, True) == 8
        assert policy.points_for(4, True) == 6
        assert policy.points_for(5, False) == 5


class TestSchedulerConfig:
    def test_defaults(self):
        config = SchedulerConfig.from_dict(None)

        assert config.max_range_months == 12
        assert config.fairness.lookback.kind == LookbackKind.ROLLING_DAYS
        assert config.fairness.lookback.days == 90
        assert config.planner.strategy == PlannerStrategy.GREEDY

    def test_from_dict(self):
        config = SchedulerConfig.from_dict(
            {
                "fairness": {
                    "lookback": {"kind": "last_n_instances", "count": 10},
                    "holiday_multiplier": 2.0,
                    "preference_bonus": -3,
                },
                "planner": {"strategy": "balanced", "time_limit_seconds": 2},
                "publisher": {
                    "max_workers": 4,
                    "id_namespace": "12345678-1234-5678-1234-567812345678",
                },
            }
        )

        assert config.fairness.lookback.kind == LookbackKind.LAST_N_INSTANCES
        assert config.fairness.lookback.count == 10
        assert config.fairness.holiday_multiplier == 2.0
        assert config.fairness.preference_bonus == -3
        assert config.planner.strategy == PlannerStrategy.BALANCED
        assert config.publisher.max_workers == 4
        assert str(config.publisher.id_namespace) == "12345678-1234-5678-1234-567812345678"


class TestErrors:
    def test_validation_to_dict(self):
        error = ValidationError.from_issues(
            [
                ValidationIssue("missing_field", "is required", "stable_id"),
                ValidationIssue("invalid_range", "end before start", "end_date"),
            ]
        )
        data = error.to_dict()

        assert data["type"] == "validation"
        assert [i["field"] for i in data["issues"]] == ["stable_id", "end_date"]
        assert "2 validation errors" in data["message"]

    def test_error_types(self):
        assert ConflictError("x").to_dict()["type"] == "conflict"
        assert NotFoundError("Routine instance", "i1").to_dict()["details"] == {
            "entity": "Routine instance",
            "id": "i1",
        }
        assert DependencyError("blocked", ["notes"]).details == {"dependencies": ["notes"]}

    def test_auto_rule_is_stateless(self):
        assert AutoAssignRule() == AutoAssignRule()
