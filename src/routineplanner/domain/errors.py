"""Error taxonomy for routine scheduling.

Every failure the scheduling core reports to its caller is one of the
discriminated errors below. Callers can branch on the exception class or on
``error_type`` and serialize with ``to_dict()``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ErrorType(str, Enum):
    """Discriminator for domain errors."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    DEPENDENCY = "dependency"


@dataclass
class ValidationIssue:
    """A single problem found while validating a schedule definition."""

    code: str
    message: str
    field_name: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        parts = [f"[{self.code}]"]
        if self.field_name:
            parts.append(f"{self.field_name}:")
        parts.append(self.message)
        return " ".join(parts)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "field": self.field_name,
            "message": self.message,
            "details": self.details,
        }


class DomainError(Exception):
    """Base class for all errors surfaced by the scheduling core."""

    error_type: ErrorType

    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert error to a dictionary for API responses."""
        return {
            "type": self.error_type.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DomainError):
    """Malformed schedule or request. Rejected before anything is persisted."""

    error_type = ErrorType.VALIDATION

    def __init__(
        self,
        message: str,
        issues: Optional[list[ValidationIssue]] = None,
        details: Optional[dict] = None,
    ) -> None:
        super().__init__(message, details)
        self.issues = issues or []

    @classmethod
    def from_issues(cls, issues: list[ValidationIssue]) -> "ValidationError":
        if len(issues) == 1:
            return cls(str(issues[0]), issues)
        messages = "; ".join(str(issue) for issue in issues)
        return cls(f"{len(issues)} validation errors: {messages}", issues)

    @classmethod
    def single(
        cls, code: str, message: str, field_name: Optional[str] = None
    ) -> "ValidationError":
        return cls.from_issues([ValidationIssue(code, message, field_name)])

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["issues"] = [issue.to_dict() for issue in self.issues]
        return data


class ConflictError(DomainError):
    """The record changed underneath the caller. Re-read state, then retry."""

    error_type = ErrorType.CONFLICT


class ForbiddenError(DomainError):
    """The actor is not allowed to perform the action."""

    error_type = ErrorType.FORBIDDEN


class NotFoundError(DomainError):
    """A schedule, instance or template does not exist."""

    error_type = ErrorType.NOT_FOUND

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            f"{entity} not found: {entity_id}",
            {"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class DependencyError(DomainError):
    """Deletion blocked by recorded execution artifacts."""

    error_type = ErrorType.DEPENDENCY

    def __init__(self, message: str, dependencies: list[str]) -> None:
        super().__init__(message, {"dependencies": list(dependencies)})
        self.dependencies = list(dependencies)
