"""Scheduling engine for recurring routines."""

from routineplanner.scheduling.recurrence import RecurrenceExpander, expand_dates
from routineplanner.scheduling.fairness import FairnessRanker
from routineplanner.scheduling.planner import AssignmentPlanner, SimulationState
from routineplanner.scheduling.cpsat_planner import BalancedPlanner, SolverResult
from routineplanner.scheduling.publisher import SchedulePublisher
from routineplanner.scheduling.lifecycle import (
    TRANSITIONS,
    InstanceLifecycleManager,
    LifecycleAction,
    sweep_missed,
)
from routineplanner.scheduling.scheduler import RoutineScheduler

__all__ = [
    # Facade
    "RoutineScheduler",
    # Pipeline stages
    "RecurrenceExpander",
    "expand_dates",
    "FairnessRanker",
    "AssignmentPlanner",
    "SimulationState",
    "BalancedPlanner",
    "SolverResult",
    "SchedulePublisher",
    # Lifecycle
    "InstanceLifecycleManager",
    "LifecycleAction",
    "TRANSITIONS",
    "sweep_missed",
]
