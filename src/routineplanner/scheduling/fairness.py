"""Fairness ranking of candidate members.

A member's score is the sum of points of the completed instances credited to
them inside the configured lookback window. Lower scores are next in line.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable, Optional

from routineplanner.domain.config import FairnessConfig, LookbackKind, LookbackWindow
from routineplanner.domain.models import FairnessScore, InstanceStatus, RoutineInstance

logger = logging.getLogger(__name__)


class FairnessRanker:
    """Ranks candidates by historical workload.

    The ranker never queries membership. Candidates arrive already filtered
    by the membership directory.
    """

    def __init__(self, config: Optional[FairnessConfig] = None):
        self.config = config or FairnessConfig()

    @property
    def lookback(self) -> LookbackWindow:
        return self.config.lookback

    def scores(
        self,
        candidates: Iterable[str],
        history: Iterable[RoutineInstance],
        as_of: Optional[date] = None,
    ) -> dict[str, int]:
        """Score per candidate. Candidates without history score 0."""
        as_of = as_of or date.today()
        candidate_ids = list(dict.fromkeys(candidates))
        credited: dict[str, list[RoutineInstance]] = defaultdict(list)

        for instance in history:
            if instance.status != InstanceStatus.COMPLETED:
                continue
            member_id = instance.credited_member
            if member_id not in candidate_ids:
                continue
            if instance.scheduled_date > as_of:
                continue
            credited[member_id].append(instance)

        return {
            member_id: sum(i.credited_points for i in self._in_window(credited[member_id], as_of))
            for member_id in candidate_ids
        }

    def rank(
        self,
        candidates: Iterable[str],
        history: Iterable[RoutineInstance],
        as_of: Optional[date] = None,
    ) -> list[FairnessScore]:
        """Rank candidates by score ascending, ties by member ID.

        Args:
            candidates: Eligible member IDs.
            history: Instances to score from. Only completed ones count.
            as_of: Reference date for the lookback window (default today).

        Returns:
            Scores in assignment priority order.
        """
        scores = self.scores(candidates, history, as_of)
        ranked = sorted(
            (FairnessScore(member_id, score) for member_id, score in scores.items()),
            key=lambda s: (s.score, s.member_id),
        )
        logger.debug("Ranked %d candidates: %s", len(ranked), ranked)
        return ranked

    def _in_window(self, instances: list[RoutineInstance], as_of: date) -> list[RoutineInstance]:
        window = self.lookback
        if window.kind == LookbackKind.ALL_TIME:
            return instances
        if window.kind == LookbackKind.ROLLING_DAYS:
            cutoff = as_of - timedelta(days=window.days)
            return [i for i in instances if i.scheduled_date > cutoff]
        newest_first = sorted(instances, key=lambda i: (i.scheduled_date, i.id), reverse=True)
        return newest_first[: window.count]
