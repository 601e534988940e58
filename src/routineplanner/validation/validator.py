"""Validation of schedule definitions before they are persisted.

Structural rules (which fields each recurrence and assignment variant needs)
are enforced when the variants are built. This module checks everything that
needs context: the date range, the expansion result, the template, and the
eligibility of a manual default assignee.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

from routineplanner.domain.errors import ValidationError, ValidationIssue
from routineplanner.domain.models import (
    AutoAssignRule,
    ManualAssignRule,
    Member,
    ScheduleDefinition,
)
from routineplanner.domain.policies import TemplateCatalog


class ValidationIssueType(Enum):
    """Types of schedule validation issues."""

    INVALID_RANGE = "invalid_range"
    RANGE_TOO_LONG = "range_too_long"
    NO_QUALIFYING_DATES = "no_qualifying_dates"
    UNKNOWN_TEMPLATE = "unknown_template"
    INELIGIBLE_ASSIGNEE = "ineligible_assignee"
    MISSING_FIELD = "missing_field"
    NON_POSITIVE_POINTS = "non_positive_points"


@dataclass
class ValidationResult:
    """Result of validating a schedule definition.

    Attributes:
        is_valid: False once any issue was added.
        issues: Problems that block the schedule.
        warnings: Non-blocking observations.
        dates: Qualifying dates, when the range could be expanded.
    """

    is_valid: bool = True
    issues: list[ValidationIssue] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dates: list[date] = field(default_factory=list)

    def add_issue(
        self, issue_type: ValidationIssueType, message: str, field_name: Optional[str] = None
    ) -> None:
        """Add an issue and mark as invalid."""
        self.issues.append(ValidationIssue(issue_type.value, message, field_name))
        self.is_valid = False

    def add_warning(self, warning: str) -> None:
        """Add a warning (doesn't affect validity)."""
        self.warnings.append(warning)

    def raise_if_invalid(self) -> None:
        if not self.is_valid:
            raise ValidationError.from_issues(self.issues)


class ScheduleValidator:
    """Validates schedule definitions.

    Example:
        >>> validator = ScheduleValidator(RecurrenceExpander(calendar))
        >>> result = validator.validate(schedule, templates, members)
        >>> result.raise_if_invalid()
    """

    def __init__(self, expander, max_range_months: int = 12):
        """Initialize the validator.

        Args:
            expander: RecurrenceExpander used to count qualifying dates.
            max_range_months: Longest allowed schedule range.
        """
        self.expander = expander
        self.max_range_months = max_range_months

    def validate(
        self,
        schedule: ScheduleDefinition,
        templates: Optional[TemplateCatalog] = None,
        members: Optional[Iterable[Member]] = None,
    ) -> ValidationResult:
        """Validate a schedule definition.

        Args:
            schedule: Definition to check.
            templates: Template catalog. When given, the referenced template
                must exist.
            members: Eligible members. When given, a manual default assignee
                must be one of them.

        Returns:
            ValidationResult with issues, warnings and the qualifying dates.
        """
        result = ValidationResult()
        self._check_required(schedule, result)
        self._check_range(schedule, result)
        if result.is_valid:
            self._check_dates(schedule, result)
        if templates is not None:
            self._check_template(schedule, templates, result)
        if members is not None:
            self._check_assignee(schedule, list(members), result)
        return result

    def max_end_date(self, start: date) -> date:
        return start + relativedelta(months=self.max_range_months)

    def _check_template(
        self, schedule: ScheduleDefinition, templates: TemplateCatalog, result: ValidationResult
    ) -> None:
        template = templates.get_template(schedule.template_id)
        if template is None:
            result.add_issue(
                ValidationIssueType.UNKNOWN_TEMPLATE,
                f"Routine template {schedule.template_id} does not exist",
                "template_id",
            )
        elif isinstance(schedule.assignment, AutoAssignRule) and template.points_value <= 0:
            # Auto rotation needs every assignment to raise the assignee's score
            result.add_issue(
                ValidationIssueType.NON_POSITIVE_POINTS,
                f"Routine template {template.id} is worth {template.points_value} points; "
                "auto assignment needs a positive value",
                "template_id",
            )

    def _check_required(self, schedule: ScheduleDefinition, result: ValidationResult) -> None:
        for name in ("organization_id", "stable_id", "template_id"):
            if not getattr(schedule, name):
                result.add_issue(ValidationIssueType.MISSING_FIELD, "is required", name)

    def _check_range(self, schedule: ScheduleDefinition, result: ValidationResult) -> None:
        if schedule.end_date < schedule.start_date:
            result.add_issue(
                ValidationIssueType.INVALID_RANGE,
                f"end date {schedule.end_date.isoformat()} is before start date "
                f"{schedule.start_date.isoformat()}",
                "end_date",
            )
            return

        limit = self.max_end_date(schedule.start_date)
        if schedule.end_date > limit:
            result.add_issue(
                ValidationIssueType.RANGE_TOO_LONG,
                f"range may span at most {self.max_range_months} months "
                f"(latest end date {limit.isoformat()})",
                "end_date",
            )

    def _check_dates(self, schedule: ScheduleDefinition, result: ValidationResult) -> None:
        result.dates = self.expander.expand(
            schedule.start_date, schedule.end_date, schedule.repeat, schedule.holiday_locale
        )
        if not result.dates:
            result.add_issue(
                ValidationIssueType.NO_QUALIFYING_DATES,
                f"{schedule.repeat_pattern.value} pattern yields no dates between "
                f"{schedule.start_date.isoformat()} and {schedule.end_date.isoformat()}",
                "repeat_pattern",
            )

    def _check_assignee(
        self, schedule: ScheduleDefinition, members: list[Member], result: ValidationResult
    ) -> None:
        if not isinstance(schedule.assignment, ManualAssignRule):
            if not members:
                result.add_warning(f"No eligible members in stable {schedule.stable_id}")
            return
        assignee = schedule.assignment.default_assignee
        if all(m.id != assignee for m in members):
            result.add_issue(
                ValidationIssueType.INELIGIBLE_ASSIGNEE,
                f"{assignee} is not an eligible member of stable {schedule.stable_id}",
                "default_assigned_to",
            )
