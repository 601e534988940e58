"""Configuration for the scheduling core.

All tunables live in small dataclasses with sensible defaults. A complete
configuration can be loaded from a plain dict (for example a JSON file) with
``SchedulerConfig.from_dict``.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class LookbackKind(Enum):
    """How far back completed instances count toward a fairness score."""

    ALL_TIME = "all_time"  # Every completed instance
    ROLLING_DAYS = "rolling_days"  # Completed within the last N days
    LAST_N_INSTANCES = "last_n_instances"  # Member's N most recent completions


@dataclass(frozen=True)
class LookbackWindow:
    """Window of history used for fairness scores.

    Attributes:
        kind: Window type.
        days: Window length for ROLLING_DAYS.
        count: Number of instances for LAST_N_INSTANCES.
    """

    kind: LookbackKind = LookbackKind.ROLLING_DAYS
    days: int = 90
    count: int = 20

    def __post_init__(self):
        if self.kind == LookbackKind.ROLLING_DAYS and self.days <= 0:
            raise ValueError("ROLLING_DAYS lookback needs a positive number of days")
        if self.kind == LookbackKind.LAST_N_INSTANCES and self.count <= 0:
            raise ValueError("LAST_N_INSTANCES lookback needs a positive count")

    @classmethod
    def all_time(cls) -> "LookbackWindow":
        return cls(kind=LookbackKind.ALL_TIME)

    @classmethod
    def rolling_days(cls, days: int) -> "LookbackWindow":
        return cls(kind=LookbackKind.ROLLING_DAYS, days=days)

    @classmethod
    def last_n_instances(cls, count: int) -> "LookbackWindow":
        return cls(kind=LookbackKind.LAST_N_INSTANCES, count=count)


@dataclass
class FairnessConfig:
    """Configuration for fairness scoring and auto-assignment.

    Attributes:
        lookback: History window for scores.
        holiday_multiplier: Points multiplier for instances on holidays.
        preference_bonus: Score adjustment when a date falls on one of the
            member's preferred weekdays (negative = more likely).
    """

    lookback: LookbackWindow = field(default_factory=LookbackWindow)
    holiday_multiplier: float = 1.0
    preference_bonus: int = 0


class PlannerStrategy(Enum):
    """Which planner produces auto-mode suggestions."""

    GREEDY = "greedy"  # Chronological running-score simulation
    BALANCED = "balanced"  # CP-SAT, minimizes the highest final score


@dataclass
class PlannerConfig:
    """Configuration for the assignment planner.

    Attributes:
        strategy: Planner used for auto mode.
        time_limit_seconds: CP-SAT time limit (BALANCED only).
        num_workers: CP-SAT workers. 1 keeps results reproducible.
        random_seed: CP-SAT random seed.
    """

    strategy: PlannerStrategy = PlannerStrategy.GREEDY
    time_limit_seconds: float = 10.0
    num_workers: int = 1
    random_seed: int = 0


# Fixed namespace so instance IDs are stable across processes and deployments
DEFAULT_ID_NAMESPACE = uuid.UUID("6f1d3b52-8c4e-5a27-9b0e-2d7c41e5a9f3")


@dataclass
class PublisherConfig:
    """Configuration for materializing plans.

    Attributes:
        max_workers: Parallel writes per publish (1 = sequential).
        id_namespace: UUID namespace for deterministic instance IDs.
    """

    max_workers: int = 1
    id_namespace: uuid.UUID = DEFAULT_ID_NAMESPACE


@dataclass
class SchedulerConfig:
    """Top-level configuration.

    Attributes:
        max_range_months: Longest allowed schedule range.
        fairness: Fairness configuration.
        planner: Planner configuration.
        publisher: Publisher configuration.
        audit_workers: Threads used for fire-and-forget audit records.
    """

    max_range_months: int = 12
    fairness: FairnessConfig = field(default_factory=FairnessConfig)
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    publisher: PublisherConfig = field(default_factory=PublisherConfig)
    audit_workers: int = 1

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SchedulerConfig":
        """Build a config from nested dicts, keeping defaults for missing keys."""
        data = data or {}

        fairness_data = data.get("fairness", {})
        lookback_data = fairness_data.get("lookback", {})
        lookback = LookbackWindow(
            kind=LookbackKind(lookback_data.get("kind", LookbackKind.ROLLING_DAYS.value)),
            days=lookback_data.get("days", 90),
            count=lookback_data.get("count", 20),
        )
        fairness = FairnessConfig(
            lookback=lookback,
            holiday_multiplier=fairness_data.get("holiday_multiplier", 1.0),
            preference_bonus=fairness_data.get("preference_bonus", 0),
        )

        planner_data = data.get("planner", {})
        planner = PlannerConfig(
            strategy=PlannerStrategy(planner_data.get("strategy", PlannerStrategy.GREEDY.value)),
            time_limit_seconds=planner_data.get("time_limit_seconds", 10.0),
            num_workers=planner_data.get("num_workers", 1),
            random_seed=planner_data.get("random_seed", 0),
        )

        publisher_data = data.get("publisher", {})
        namespace = publisher_data.get("id_namespace")
        publisher = PublisherConfig(
            max_workers=publisher_data.get("max_workers", 1),
            id_namespace=uuid.UUID(namespace) if namespace else DEFAULT_ID_NAMESPACE,
        )

        return cls(
            max_range_months=data.get("max_range_months", 12),
            fairness=fairness,
            planner=planner,
            publisher=publisher,
            audit_workers=data.get("audit_workers", 1),
        )
