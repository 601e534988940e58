"""Greedy assignment planner.

Produces the previewable date -> assignee plan. In auto mode dates are
processed chronologically and each goes to the eligible member with the
lowest simulated score, whose simulated score then grows by that date's
points. This spreads one batch across several members instead of handing
every date to whoever was historically lowest.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from routineplanner.domain.config import FairnessConfig
from routineplanner.domain.models import (
    AssignmentPlan,
    AssignmentRule,
    AutoAssignRule,
    FairnessScore,
    ManualAssignRule,
    Member,
    PlanEntry,
)
from routineplanner.domain.policies import DefaultHolidayPointsPolicy, HolidayPointsPolicy

logger = logging.getLogger(__name__)


def week_key(d: date) -> tuple[int, int]:
    iso = d.isocalendar()
    return (iso[0], iso[1])


def month_key(d: date) -> tuple[int, int]:
    return (d.year, d.month)


@dataclass
class SimulationState:
    """Running state threaded through one planning pass.

    Attributes:
        scores: Simulated score per member.
        week_counts: Dates assigned per (member, ISO week) in this pass.
        month_counts: Dates assigned per (member, month) in this pass.
    """

    scores: dict[str, int] = field(default_factory=dict)
    week_counts: dict[tuple[str, tuple[int, int]], int] = field(default_factory=dict)
    month_counts: dict[tuple[str, tuple[int, int]], int] = field(default_factory=dict)

    @classmethod
    def from_ranking(cls, ranked: Iterable[FairnessScore]) -> "SimulationState":
        return cls(scores={s.member_id: s.score for s in ranked})

    def within_limits(self, member: Member, d: date) -> bool:
        if member.max_per_week is not None:
            if self.week_counts.get((member.id, week_key(d)), 0) >= member.max_per_week:
                return False
        if member.max_per_month is not None:
            if self.month_counts.get((member.id, month_key(d)), 0) >= member.max_per_month:
                return False
        return True

    def record(self, member_id: str, d: date, points: int) -> None:
        """Charge one date to a member."""
        self.scores[member_id] = self.scores.get(member_id, 0) + points
        wk = (member_id, week_key(d))
        self.week_counts[wk] = self.week_counts.get(wk, 0) + 1
        mk = (member_id, month_key(d))
        self.month_counts[mk] = self.month_counts.get(mk, 0) + 1


class AssignmentPlanner:
    """One-shot greedy planner.

    Planning never re-runs reactively: overriding an entry of the returned
    plan leaves every other entry as it was.
    """

    def __init__(
        self,
        config: Optional[FairnessConfig] = None,
        points_policy: Optional[HolidayPointsPolicy] = None,
    ):
        self.config = config or FairnessConfig()
        self.points_policy = points_policy or DefaultHolidayPointsPolicy(
            self.config.holiday_multiplier
        )

    def plan(
        self,
        dates: Iterable[date],
        assignment: AssignmentRule,
        ranked: list[FairnessScore],
        points_value: int,
        members: Optional[Iterable[Member]] = None,
        holiday_dates: Iterable[date] = (),
    ) -> AssignmentPlan:
        """Suggest an assignee for every date.

        Args:
            dates: Qualifying dates from the recurrence expander.
            assignment: Schedule assignment rule.
            ranked: Candidate scores from the fairness ranker. Only these
                members are considered in auto mode.
            points_value: Base points of one instance.
            members: Member details for availability and limits. Ranked
                members without details are treated as always available.
            holiday_dates: Dates that count as holidays for points.

        Returns:
            The plan, entries in chronological order.
        """
        holidays = set(holiday_dates)
        ordered = sorted(set(dates))
        plan = AssignmentPlan(
            mode=assignment.mode,
            points_value=points_value,
            baseline_scores={s.member_id: s.score for s in ranked},
        )

        if not isinstance(assignment, AutoAssignRule):
            fixed = (
                assignment.default_assignee if isinstance(assignment, ManualAssignRule) else None
            )
            for d in ordered:
                plan.entries.append(self._entry(d, fixed, points_value, holidays))
            plan.simulated_scores = dict(plan.baseline_scores)
            return plan

        details = {m.id: m for m in members or ()}
        candidates = [details.get(s.member_id) or Member(id=s.member_id) for s in ranked]

        state = SimulationState.from_ranking(ranked)
        for d in ordered:
            entry = self._entry(d, None, points_value, holidays)
            winner = self._pick(d, candidates, state)
            if winner is not None:
                entry.suggested_assignee = winner
                state.record(winner, d, entry.points)
                logger.debug("%s -> %s (score now %d)", d, winner, state.scores[winner])
            else:
                logger.debug("%s -> nobody eligible", d)
            plan.entries.append(entry)

        plan.simulated_scores = dict(state.scores)
        return plan

    def _entry(
        self, d: date, assignee: Optional[str], points_value: int, holidays: set[date]
    ) -> PlanEntry:
        is_holiday = d in holidays
        return PlanEntry(
            date=d,
            suggested_assignee=assignee,
            points=self.points_policy.points_for(points_value, is_holiday),
            is_holiday=is_holiday,
        )

    def _pick(self, d: date, candidates: list[Member], state: SimulationState) -> Optional[str]:
        """Lowest effective score among eligible members, ties by ID."""
        best = None
        for member in candidates:
            if not member.is_available_on(d) or not state.within_limits(member, d):
                continue
            score = state.scores.get(member.id, 0)
            if self.config.preference_bonus and member.prefers(d):
                score += self.config.preference_bonus
            key = (score, member.id)
            if best is None or key < best:
                best = key
        return best[1] if best is not None else None
