"""Tests for conflict resolvers."""

from datetime import timedelta

import pytest
from conftest import unit

from chayo_memory.domain.models import ConflictStrategy, MemorySegment, MemoryUpdate, ScoredSegment
from chayo_memory.domain.models.utils import utc_now
from chayo_memory.services.conflicts import CONFLICT_RESOLVERS, ResolutionAction, get_resolver


def _scored(score: float, age_seconds: int) -> ScoredSegment:
    segment = MemorySegment(
        organization_id="org1",
        text=f"fact {age_seconds}",
        embedding=unit(1.0),
        created_at=utc_now() - timedelta(seconds=age_seconds),
    )
    return ScoredSegment(segment=segment, score=score)


UPDATE = MemoryUpdate(text="We open at 10am")


def test_every_strategy_has_a_resolver():
    assert set(CONFLICT_RESOLVERS) == set(ConflictStrategy)


class TestAutoResolver:
    def test_supersedes_newest(self):
        old, new = _scored(0.99, 60), _scored(0.86, 5)

        resolution = get_resolver(ConflictStrategy.AUTO).resolve(UPDATE, [old, new])

        assert resolution.action is ResolutionAction.SUPERSEDE
        assert resolution.target == new
        assert resolution.conflicts == [old, new]

    def test_score_breaks_created_at_ties(self):
        low, high = _scored(0.86, 10), _scored(0.95, 10)
        high = ScoredSegment(
            segment=high.segment.model_copy(update={"created_at": low.segment.created_at}), score=high.score
        )

        resolution = get_resolver(ConflictStrategy.AUTO).resolve(UPDATE, [low, high])

        assert resolution.target == high


class TestOtherResolvers:
    @pytest.mark.parametrize(
        ("strategy", "action"),
        [
            (ConflictStrategy.KEEP_BOTH, ResolutionAction.KEEP_BOTH),
            (ConflictStrategy.MANUAL, ResolutionAction.DEFER),
        ],
    )
    def test_no_target(self, strategy, action):
        conflicts = [_scored(0.9, 30)]

        resolution = get_resolver(strategy).resolve(UPDATE, conflicts)

        assert resolution.action is action
        assert resolution.target is None
        assert resolution.conflicts == conflicts
        assert resolution.reason
