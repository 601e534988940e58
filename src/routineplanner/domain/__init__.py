"""Domain models and business rules for routine scheduling."""

from routineplanner.domain.config import (
    FairnessConfig,
    LookbackKind,
    LookbackWindow,
    PlannerConfig,
    PlannerStrategy,
    PublisherConfig,
    SchedulerConfig,
)
from routineplanner.domain.errors import (
    ConflictError,
    DependencyError,
    DomainError,
    ErrorType,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    ValidationIssue,
)
from routineplanner.domain.models import (
    AssignmentMode,
    AssignmentPlan,
    AssignmentType,
    AutoAssignRule,
    CustomRepeat,
    DailyRepeat,
    FairnessMetrics,
    FairnessScore,
    HolidaysRepeat,
    InstanceStatus,
    ManualAssignRule,
    Member,
    PlanEntry,
    PublishResult,
    RepeatPattern,
    RoutineInstance,
    RoutineProgress,
    RoutineTemplate,
    ScheduleDefinition,
    SelfBookedRule,
    StepProgress,
    StepStatus,
    UnassignedRule,
    Weekday,
    WeekdaysRepeat,
    WeekendsRepeat,
    make_assignment_rule,
    make_repeat_rule,
)
from routineplanner.domain.policies import (
    DefaultHolidayPointsPolicy,
    HolidayCalendar,
    HolidayPointsPolicy,
    MembershipDirectory,
    Permission,
    PermissionChecker,
    StaticHolidayCalendar,
    StaticMembershipDirectory,
    StaticPermissionChecker,
    StaticTemplateCatalog,
    TemplateCatalog,
)

__all__ = [
    # Recurrence
    "Weekday",
    "RepeatPattern",
    "DailyRepeat",
    "WeekdaysRepeat",
    "WeekendsRepeat",
    "HolidaysRepeat",
    "CustomRepeat",
    "make_repeat_rule",
    # Assignment
    "AssignmentMode",
    "UnassignedRule",
    "AutoAssignRule",
    "SelfBookedRule",
    "ManualAssignRule",
    "make_assignment_rule",
    # Schedules and instances
    "ScheduleDefinition",
    "InstanceStatus",
    "AssignmentType",
    "StepStatus",
    "StepProgress",
    "RoutineProgress",
    "RoutineInstance",
    "Member",
    "RoutineTemplate",
    # Planning
    "FairnessScore",
    "FairnessMetrics",
    "PlanEntry",
    "AssignmentPlan",
    "PublishResult",
    # Configuration
    "LookbackKind",
    "LookbackWindow",
    "FairnessConfig",
    "PlannerStrategy",
    "PlannerConfig",
    "PublisherConfig",
    "SchedulerConfig",
    # Errors
    "ErrorType",
    "DomainError",
    "ValidationIssue",
    "ValidationError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "DependencyError",
    # Collaborators
    "Permission",
    "PermissionChecker",
    "MembershipDirectory",
    "HolidayCalendar",
    "TemplateCatalog",
    "HolidayPointsPolicy",
    "StaticPermissionChecker",
    "StaticMembershipDirectory",
    "StaticHolidayCalendar",
    "StaticTemplateCatalog",
    "DefaultHolidayPointsPolicy",
]
