"""Tests for schedule validation."""

from datetime import date, time

import pytest

from routineplanner.domain.errors import ValidationError
from routineplanner.domain.models import (
    AutoAssignRule,
    CustomRepeat,
    DailyRepeat,
    ManualAssignRule,
    Member,
    RoutineTemplate,
    ScheduleDefinition,
    Weekday,
)
from routineplanner.domain.policies import StaticHolidayCalendar, StaticTemplateCatalog
from routineplanner.scheduling.recurrence import RecurrenceExpander
from routineplanner.validation.validator import ScheduleValidator, ValidationIssueType


def make_schedule(**kwargs) -> ScheduleDefinition:
    fields = dict(
        organization_id="org",
        stable_id="stable",
        template_id="feeding",
        start_date=date(2026, 3, 2),
        end_date=date(2026, 3, 8),
        repeat=DailyRepeat(),
        scheduled_start_time=time(7, 0),
        assignment=AutoAssignRule(),
    )
    fields.update(kwargs)
    return ScheduleDefinition(**fields)


class TestScheduleValidator:
    """Tests for ScheduleValidator."""

    @pytest.fixture
    def validator(self):
        calendar = StaticHolidayCalendar()
        calendar.add("default", date(2026, 3, 4))
        return ScheduleValidator(RecurrenceExpander(calendar))

    @pytest.fixture
    def templates(self):
        catalog = StaticTemplateCatalog()
        catalog.add(RoutineTemplate("feeding", "Feeding", 5))
        return catalog

    @pytest.fixture
    def members(self):
        return [Member("M001"), Member("M002")]

    def test_valid_schedule(self, validator, templates, members):
        result = validator.validate(make_schedule(), templates, members)

        assert result.is_valid
        assert result.issues == []
        assert len(result.dates) == 7

    def test_holiday_only_custom_rule(self, validator):
        rule = CustomRepeat(days=frozenset(), include_holidays=True)
        result = validator.validate(make_schedule(repeat=rule))

        assert result.dates == [date(2026, 3, 4)]

    def test_invalid_range_skips_expansion(self, validator):
        result = validator.validate(make_schedule(end_date=date(2026, 3, 1)))

        assert not result.is_valid
        assert [i.code for i in result.issues] == [ValidationIssueType.INVALID_RANGE.value]
        assert result.dates == []

    def test_single_day_range(self, validator):
        result = validator.validate(make_schedule(end_date=date(2026, 3, 2)))
        assert result.dates == [date(2026, 3, 2)]

    def test_range_limit_uses_calendar_months(self, validator):
        assert validator.max_end_date(date(2026, 1, 31)) == date(2027, 1, 31)
        assert validator.max_end_date(date(2028, 2, 29)) == date(2029, 2, 28)

    def test_range_too_long(self, validator):
        schedule = make_schedule(start_date=date(2026, 3, 2), end_date=date(2027, 3, 3))
        result = validator.validate(schedule)
        assert [i.code for i in result.issues] == ["range_too_long"]

    def test_custom_limit(self):
        validator = ScheduleValidator(RecurrenceExpander(), max_range_months=1)
        schedule = make_schedule(end_date=date(2026, 4, 3))
        assert not validator.validate(schedule).is_valid

    def test_no_qualifying_dates(self, validator):
        rule = CustomRepeat(days=frozenset({Weekday.SATURDAY}))
        result = validator.validate(make_schedule(end_date=date(2026, 3, 6), repeat=rule))

        assert [i.code for i in result.issues] == ["no_qualifying_dates"]

    def test_missing_ids(self, validator):
        result = validator.validate(make_schedule(stable_id="", template_id=""))
        assert [i.field_name for i in result.issues] == ["stable_id", "template_id"]

    def test_unknown_template(self, validator, templates):
        result = validator.validate(make_schedule(template_id="mucking"), templates)
        assert [i.code for i in result.issues] == ["unknown_template"]

    def test_manual_assignee_must_be_eligible(self, validator, members):
        ok = make_schedule(assignment=ManualAssignRule("M002"))
        bad = make_schedule(assignment=ManualAssignRule("M999"))

        assert validator.validate(ok, members=members).is_valid
        result = validator.validate(bad, members=members)
        assert [i.code for i in result.issues] == ["ineligible_assignee"]

    def test_no_members_is_a_warning(self, validator):
        result = validator.validate(make_schedule(), members=[])

        assert result.is_valid
        assert result.warnings

    def test_raise_if_invalid(self, validator, templates):
        result = validator.validate(
            make_schedule(template_id="mucking", end_date=date(2026, 3, 1)), templates
        )

        with pytest.raises(ValidationError) as exc_info:
            result.raise_if_invalid()
        assert len(exc_info.value.issues) == 2

    @pytest.mark.parametrize("points", [0, -3])
    def test_auto_mode_needs_positive_points(self, validator, points):
        catalog = StaticTemplateCatalog()
        catalog.add(RoutineTemplate("feeding", "Feeding", points))

        result = validator.validate(make_schedule(), catalog)

        assert [i.code for i in result.issues] == ["non_positive_points"]

    def test_zero_points_allowed_outside_auto_mode(self, validator):
        catalog = StaticTemplateCatalog()
        catalog.add(RoutineTemplate("feeding", "Feeding", 0))

        result = validator.validate(make_schedule(assignment=ManualAssignRule("M001")), catalog)

        assert result.is_valid
