"""Validation of schedule definitions."""

from routineplanner.validation.validator import (
    ScheduleValidator,
    ValidationIssueType,
    ValidationResult,
)

__all__ = [
    "ScheduleValidator",
    "ValidationIssueType",
    "ValidationResult",
]
