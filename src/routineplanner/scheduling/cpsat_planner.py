"""OR-Tools CP-SAT planner for balanced auto-assignment.

Instead of deciding date by date, this planner looks at the whole batch and
minimizes the highest final score (history plus planned points), then the
gap between the highest and lowest final score. Availability and per-week
and per-month limits are hard constraints.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from ortools.sat.python import cp_model

from routineplanner.domain.config import FairnessConfig, PlannerConfig
from routineplanner.domain.models import (
    AssignmentPlan,
    AssignmentRule,
    AutoAssignRule,
    FairnessScore,
    Member,
)
from routineplanner.domain.policies import HolidayPointsPolicy
from routineplanner.scheduling.planner import AssignmentPlanner, month_key, week_key

logger = logging.getLogger(__name__)


@dataclass
class SolverResult:
    """Result from the CP-SAT solver.

    Attributes:
        plan: The plan, or None if the solver found no solution.
        status: Solver status (OPTIMAL, FEASIBLE, etc.).
        objective_value: Final objective value.
        solve_time_seconds: Time taken to solve.
    """

    plan: Optional[AssignmentPlan]
    status: str
    objective_value: int = 0
    solve_time_seconds: float = 0.0

    @property
    def is_optimal(self) -> bool:
        return self.status == "OPTIMAL"

    @property
    def is_feasible(self) -> bool:
        return self.status in ("OPTIMAL", "FEASIBLE")


class BalancedPlanner:
    """Constraint programming planner using OR-Tools CP-SAT.

    Auto mode balances final scores over the whole range instead of folding
    date by date. A date may therefore go to a member
    whose running score is higher than another eligible member's, which the
    greedy ``AssignmentPlanner`` never does. Use the greedy planner when that
    rotation order matters.

    Non-auto modes and unsolvable models are delegated to the greedy
    ``AssignmentPlanner``, so ``plan`` always returns a plan.
    """

    def __init__(
        self,
        config: Optional[PlannerConfig] = None,
        fairness: Optional[FairnessConfig] = None,
        points_policy: Optional[HolidayPointsPolicy] = None,
    ):
        self.config = config or PlannerConfig()
        self.greedy = AssignmentPlanner(fairness, points_policy)

    def plan(
        self,
        dates: Iterable[date],
        assignment: AssignmentRule,
        ranked: list[FairnessScore],
        points_value: int,
        members: Optional[Iterable[Member]] = None,
        holiday_dates: Iterable[date] = (),
    ) -> AssignmentPlan:
        dates = sorted(set(dates))
        holiday_dates = set(holiday_dates)
        if not isinstance(assignment, AutoAssignRule) or not ranked:
            return self.greedy.plan(dates, assignment, ranked, points_value, members, holiday_dates)

        result = self.solve(dates, ranked, points_value, members, holiday_dates)
        if result.plan is None:
            logger.warning("CP-SAT returned %s, falling back to greedy planning", result.status)
            return self.greedy.plan(dates, assignment, ranked, points_value, members, holiday_dates)
        return result.plan

    def solve(
        self,
        dates: list[date],
        ranked: list[FairnessScore],
        points_value: int,
        members: Optional[Iterable[Member]] = None,
        holiday_dates: Iterable[date] = (),
    ) -> SolverResult:
        """Solve the auto-assignment problem for one batch.

        Args:
            dates: Chronological plan dates.
            ranked: Candidate scores from the fairness ranker.
            points_value: Base points of one instance.
            members: Member details for availability and limits.
            holiday_dates: Dates that count as holidays for points.

        Returns:
            SolverResult with the plan and solver statistics.
        """
        # Entries (dates, points, holiday flags) come from the greedy planner's
        # unassigned pass so both planners price dates identically
        template = self.greedy.plan(dates, AutoAssignRule(), [], points_value, None, holiday_dates)
        entries = template.entries

        details = {m.id: m for m in members or ()}
        candidates = [details.get(s.member_id) or Member(id=s.member_id) for s in ranked]
        baseline = {s.member_id: s.score for s in ranked}
        total_points = sum(e.points for e in entries)
        upper = max(baseline.values()) + total_points

        model = cp_model.CpModel()

        # Decision variables: x[i][m] = 1 if date i goes to member m
        x: dict[int, dict[str, cp_model.IntVar]] = {}
        for i, entry in enumerate(entries):
            x[i] = {}
            for member in candidates:
                if member.is_available_on(entry.date):
                    x[i][member.id] = model.NewBoolVar(f"x_{i}_{member.id}")

        # Each date goes to at most one member. Unfilled dates are penalized
        filled = []
        for i in x:
            if x[i]:
                model.AddAtMostOne(x[i].values())
                filled.extend(x[i].values())

        # Per-week and per-month limits
        for member in candidates:
            for limit, key_fn in ((member.max_per_week, week_key), (member.max_per_month, month_key)):
                if limit is None:
                    continue
                groups: dict[tuple[int, int], list[cp_model.IntVar]] = {}
                for i, entry in enumerate(entries):
                    if member.id in x[i]:
                        groups.setdefault(key_fn(entry.date), []).append(x[i][member.id])
                for group in groups.values():
                    model.Add(sum(group) <= limit)

        # Final score per member
        final: dict[str, cp_model.IntVar] = {}
        for member in candidates:
            var = model.NewIntVar(0, upper, f"final_{member.id}")
            planned = [
                entries[i].points * x[i][member.id] for i in x if member.id in x[i]
            ]
            model.Add(var == baseline[member.id] + sum(planned))
            final[member.id] = var

        max_score = model.NewIntVar(0, upper, "max_score")
        min_score = model.NewIntVar(0, upper, "min_score")
        model.AddMaxEquality(max_score, list(final.values()))
        model.AddMinEquality(min_score, list(final.values()))

        # Filling dates dominates, then the highest score, then the spread
        spread_weight = 1
        max_weight = upper + 1
        fill_weight = max_weight * (upper + 1) + upper + 1
        model.Minimize(
            -fill_weight * sum(filled)
            + max_weight * max_score
            + spread_weight * (max_score - min_score)
        )

        solver = cp_model.CpSolver()
        solver.parameters.max_time_in_seconds = self.config.time_limit_seconds
        if self.config.num_workers > 0:
            solver.parameters.num_workers = self.config.num_workers
        solver.parameters.random_seed = self.config.random_seed

        status = solver.Solve(model)

        status_map = {
            cp_model.OPTIMAL: "OPTIMAL",
            cp_model.FEASIBLE: "FEASIBLE",
            cp_model.INFEASIBLE: "INFEASIBLE",
            cp_model.MODEL_INVALID: "MODEL_INVALID",
            cp_model.UNKNOWN: "UNKNOWN",
        }
        status_str = status_map.get(status, "UNKNOWN")

        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            return SolverResult(
                plan=None,
                status=status_str,
                solve_time_seconds=solver.WallTime(),
            )

        plan = AssignmentPlan(
            mode=AutoAssignRule.mode,
            points_value=points_value,
            entries=entries,
            baseline_scores=dict(baseline),
        )
        for i, entry in enumerate(entries):
            for member_id in sorted(x[i]):
                if solver.Value(x[i][member_id]) == 1:
                    entry.suggested_assignee = member_id
                    break
        plan.simulated_scores = {m: solver.Value(v) for m, v in final.items()}

        logger.info(
            "CP-SAT %s: %d dates, max final score %d",
            status_str,
            len(entries),
            solver.Value(max_score),
        )
        return SolverResult(
            plan=plan,
            status=status_str,
            objective_value=int(solver.ObjectiveValue()),
            solve_time_seconds=solver.WallTime(),
        )
