"""Tests for reputation and course proficiency scoring."""

from __future__ import annotations

import pytest

from peerwager.core.models import CourseProficiency, User, UserStats
from peerwager.core.reputation import (
    apply_reputation_penalty,
    compute_proficiency_score,
    compute_reputation,
    recalculate_proficiency,
    recalculate_reputation,
    reputation_penalty,
)


class TestComputeReputation:
    def test_fresh_user_is_zero(self):
        assert compute_reputation(UserStats()) == 0

    def test_weights(self):
        stats = UserStats(
            upvotes_received=2,
            downvotes_lost=1,
            downvotes_defended=1,
            quizzes_passed=3,
            tasks_completed=4,
        )
        # 20 - 15 + 5 + 9 + 8
        assert compute_reputation(stats) == 27

    def test_tokens_lost_divided_by_ten(self):
        assert compute_reputation(UserStats(upvotes_received=1, tokens_lost=25)) == 8  # round(7.5)

    def test_never_negative(self):
        assert compute_reputation(UserStats(downvotes_lost=3)) == 0

    def test_cumulative_penalty_subtracted(self):
        assert compute_reputation(UserStats(quizzes_passed=20, reputation_penalty=21)) == 39

    def test_downvotes_received_have_no_weight(self):
        assert compute_reputation(UserStats(upvotes_received=1, downvotes_received=5)) == 10


class TestReputationPenalty:
    @pytest.mark.parametrize(
        "rep,expected",
        [(0, 5), (1, 7), (4, 9), (60, 21), (100, 25), (-10, 5)],
    )
    def test_formula(self, rep, expected):
        assert reputation_penalty(rep) == expected

    def test_apply_uses_stored_reputation(self):
        user = User(id="bob", reputation=60, stats=UserStats(quizzes_passed=20, downvotes_lost=1))

        charged = apply_reputation_penalty(user)

        assert charged == 21
        assert user.stats.reputation_penalty == 21
        # 60 - 15 - 21
        assert user.reputation == 24

    def test_penalty_persists_across_recalculation(self):
        user = User(id="bob", reputation=60, stats=UserStats(quizzes_passed=20))
        apply_reputation_penalty(user)

        user.stats.upvotes_received += 1
        recalculate_reputation(user)

        assert user.reputation == 60 + 10 - 21


class TestProficiency:
    def test_score(self):
        assert compute_proficiency_score(2, 4, 1, 1) == 20 - 15 + 5

    def test_clamped_to_zero(self):
        assert compute_proficiency_score(0, 1, 2, 0) == 0

    def test_recalculate_stores_score(self):
        prof = CourseProficiency(user_id="bob", course_id="cs101", upvotes_received=1, downvotes_defended=2)

        assert recalculate_proficiency(prof) == 20
        assert prof.score == 20
