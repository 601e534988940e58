"""Collaborator contracts and default implementations.

The scheduling core only talks to permissions, membership, holidays and
templates through the abstract classes below. The static implementations
back tests, the CLI demo, and small deployments where this data fits in
memory.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional

from routineplanner.domain.models import Member, RoutineTemplate


class Permission(Enum):
    """Actions checked against the permission engine."""

    MANAGE_SCHEDULES = "manage_schedules"


class PermissionChecker(ABC):
    """Query contract of the permission engine."""

    @abstractmethod
    def has_permission(self, actor_id: str, organization_id: str, action: Permission) -> bool:
        """Check whether an actor may perform an action in an organization."""
        pass


class MembershipDirectory(ABC):
    """Query contract of the membership directory."""

    @abstractmethod
    def eligible_members(self, organization_id: str, stable_id: str) -> list[Member]:
        """Members who are active, shown in planning, and have stable access."""
        pass

    def is_eligible(self, member_id: str, organization_id: str, stable_id: str) -> bool:
        return any(m.id == member_id for m in self.eligible_members(organization_id, stable_id))

    def find_member(
        self, member_id: str, organization_id: str, stable_id: str
    ) -> Optional[Member]:
        for member in self.eligible_members(organization_id, stable_id):
            if member.id == member_id:
                return member
        return None


class HolidayCalendar(ABC):
    """Query contract of the holiday calendar."""

    @abstractmethod
    def is_holiday(self, d: date, locale: str) -> bool:
        """Check whether a date is a public holiday in a locale."""
        pass


class TemplateCatalog(ABC):
    """Lookup contract for routine templates."""

    @abstractmethod
    def get_template(self, template_id: str) -> Optional[RoutineTemplate]:
        pass


class HolidayPointsPolicy(ABC):
    """Decides what an instance on a given date is worth."""

    @abstractmethod
    def points_for(self, base_points: int, is_holiday: bool) -> int:
        """Points for one instance.

        Args:
            base_points: Template points value.
            is_holiday: Whether the instance falls on a holiday.
        """
        pass


# ============================================================================
# Default implementations
# ============================================================================


@dataclass
class StaticPermissionChecker(PermissionChecker):
    """Permission grants held in memory.

    Attributes:
        grants: Maps (actor_id, organization_id) to granted permissions.
    """

    grants: dict[tuple[str, str], set[Permission]] = field(default_factory=dict)

    def grant(self, actor_id: str, organization_id: str, *permissions: Permission) -> None:
        self.grants.setdefault((actor_id, organization_id), set()).update(permissions)

    def has_permission(self, actor_id: str, organization_id: str, action: Permission) -> bool:
        return action in self.grants.get((actor_id, organization_id), set())


@dataclass
class StaticMembershipDirectory(MembershipDirectory):
    """Eligible members per (organization, stable)."""

    members: dict[tuple[str, str], list[Member]] = field(default_factory=dict)

    def add(self, organization_id: str, stable_id: str, *members: Member) -> None:
        self.members.setdefault((organization_id, stable_id), []).extend(members)

    def eligible_members(self, organization_id: str, stable_id: str) -> list[Member]:
        return list(self.members.get((organization_id, stable_id), []))


@dataclass
class StaticHolidayCalendar(HolidayCalendar):
    """Holiday dates per locale."""

    holidays: dict[str, set[date]] = field(default_factory=dict)

    def add(self, locale: str, *dates: date) -> None:
        self.holidays.setdefault(locale, set()).update(dates)

    def is_holiday(self, d: date, locale: str) -> bool:
        return d in self.holidays.get(locale, set())


@dataclass
class StaticTemplateCatalog(TemplateCatalog):
    """Templates held in memory, keyed by ID."""

    templates: dict[str, RoutineTemplate] = field(default_factory=dict)

    def add(self, *templates: RoutineTemplate) -> None:
        for template in templates:
            self.templates[template.id] = template

    def get_template(self, template_id: str) -> Optional[RoutineTemplate]:
        return self.templates.get(template_id)


@dataclass
class DefaultHolidayPointsPolicy(HolidayPointsPolicy):
    """Multiply points on holidays, rounding half up.

    A multiplier of 1.0 (the default) leaves holiday points unchanged.
    """

    multiplier: float = 1.0

    def points_for(self, base_points: int, is_holiday: bool) -> int:
        if not is_holiday or self.multiplier == 1.0:
            return base_points
        return int(base_points * self.multiplier + 0.5)
