"""Tests for fairness ranking."""

import random
from datetime import date, time

import pytest

from routineplanner.domain.config import FairnessConfig, LookbackWindow
from routineplanner.domain.models import FairnessScore, InstanceStatus, RoutineInstance
from routineplanner.scheduling.fairness import FairnessRanker

AS_OF = date(2026, 3, 31)


def make_instance(
    instance_id: str,
    member: str,
    d: date,
    points: int = 5,
    status: InstanceStatus = InstanceStatus.COMPLETED,
    completed_by: str = None,
    points_awarded: int = None,
) -> RoutineInstance:
    return RoutineInstance(
        id=instance_id,
        template_id="tpl",
        stable_id="stable",
        organization_id="org",
        scheduled_date=d,
        scheduled_start_time=time(7, 0),
        assigned_to=member,
        status=status,
        points_value=points,
        completed_by=completed_by,
        points_awarded=points_awarded,
    )


class TestFairnessRanker:
    """Tests for FairnessRanker."""

    @pytest.fixture
    def ranker(self):
        return FairnessRanker(FairnessConfig(lookback=LookbackWindow.all_time()))

    @pytest.fixture
    def history(self):
        return [
            make_instance("i1", "B", date(2026, 3, 1), points=10),
            make_instance("i2", "C", date(2026, 3, 2), points=3),
            make_instance("i3", "C", date(2026, 3, 3), points=3),
        ]

    def test_ascending_with_ties_by_id(self, ranker, history):
        ranked = ranker.rank(["D", "C", "B", "A"], history, AS_OF)

        assert ranked == [
            FairnessScore("A", 0),
            FairnessScore("D", 0),
            FairnessScore("C", 6),
            FairnessScore("B", 10),
        ]

    def test_deterministic_for_fixed_snapshot(self, ranker, history):
        """Candidate and history order never change the result."""
        expected = ranker.rank(["A", "B", "C"], history, AS_OF)

        rng = random.Random(7)
        for _ in range(10):
            candidates = ["A", "B", "C"]
            shuffled = list(history)
            rng.shuffle(candidates)
            rng.shuffle(shuffled)
            assert ranker.rank(candidates, shuffled, AS_OF) == expected

    def test_only_completed_instances_count(self, ranker):
        history = [
            make_instance("i1", "A", date(2026, 3, 1), status=InstanceStatus.SCHEDULED),
            make_instance("i2", "A", date(2026, 3, 2), status=InstanceStatus.CANCELLED),
            make_instance("i3", "A", date(2026, 3, 3), status=InstanceStatus.MISSED),
            make_instance("i4", "A", date(2026, 3, 4)),
        ]
        assert ranker.scores(["A"], history, AS_OF) == {"A": 5}

    def test_non_candidates_ignored(self, ranker, history):
        ranked = ranker.rank(["A", "C"], history, AS_OF)
        assert [s.member_id for s in ranked] == ["A", "C"]

    def test_credits_completing_member(self, ranker):
        """A completion is credited to whoever completed it."""
        history = [make_instance("i1", "A", date(2026, 3, 1), completed_by="B")]
        assert ranker.scores(["A", "B"], history, AS_OF) == {"A": 0, "B": 5}

    def test_awarded_points_take_precedence(self, ranker):
        history = [make_instance("i1", "A", date(2026, 3, 1), points=5, points_awarded=8)]
        assert ranker.scores(["A"], history, AS_OF) == {"A": 8}

    def test_future_instances_ignored(self, ranker):
        history = [make_instance("i1", "A", date(2026, 4, 1))]
        assert ranker.scores(["A"], history, AS_OF) == {"A": 0}


class TestLookbackWindow:
    """Tests for the configurable lookback window."""

    @pytest.fixture
    def history(self):
        return [
            make_instance("i1", "A", date(2026, 1, 10), points=1),
            make_instance("i2", "A", date(2026, 3, 1), points=2),
            make_instance("i3", "A", date(2026, 3, 20), points=4),
        ]

    def test_all_time(self, history):
        ranker = FairnessRanker(FairnessConfig(lookback=LookbackWindow.all_time()))
        assert ranker.scores(["A"], history, AS_OF) == {"A": 7}

    def test_rolling_days(self, history):
        """Instances on or before the cutoff date drop out."""
        ranker = FairnessRanker(FairnessConfig(lookback=LookbackWindow.rolling_days(30)))
        # Cutoff is 2026-03-01, exclusive
        assert ranker.scores(["A"], history, AS_OF) == {"A": 4}

    def test_default_window_is_ninety_days(self, history):
        ranker = FairnessRanker()
        assert ranker.lookback == LookbackWindow.rolling_days(90)
        assert ranker.scores(["A"], history, AS_OF) == {"A": 7}

    def test_last_n_instances(self, history):
        ranker = FairnessRanker(FairnessConfig(lookback=LookbackWindow.last_n_instances(2)))
        assert ranker.scores(["A"], history, AS_OF) == {"A": 6}

    def test_invalid_window_rejected(self):
        with pytest.raises(ValueError):
            LookbackWindow.rolling_days(0)
        with pytest.raises(ValueError):
            LookbackWindow.last_n_instances(0)
