"""Reputation and course proficiency scoring.

All scores are pure functions of counters so they can be tuned without
touching the review engine.

Reputation:
    rep = 10·upvotes − 15·downvotes_lost + 5·downvotes_defended
        + 3·quizzes_passed + 2·tasks_completed − tokens_lost / 10
        − cumulative dispute penalties
    rounded, clamped to 0.

Dispute penalty (reviewee loses an arbitration):
    ceil(5 + 2·sqrt(rep))

Course proficiency:
    score = 10·upvotes − 15·downvotes_lost + 5·downvotes_defended
          + 0·downvotes_received
    clamped to 0.
"""

from __future__ import annotations

import math

from . import defaults
from .models import CourseProficiency, User, UserStats


def compute_reputation(stats: UserStats) -> int:
    """Reputation from aggregate stats, never negative."""
    raw = (
        stats.upvotes_received * defaults.REPUTATION_UPVOTE_WEIGHT
        - stats.downvotes_lost * defaults.REPUTATION_DOWNVOTE_LOST_WEIGHT
        + stats.downvotes_defended * defaults.REPUTATION_DOWNVOTE_DEFENDED_WEIGHT
        + stats.quizzes_passed * defaults.REPUTATION_QUIZ_PASSED_WEIGHT
        + stats.tasks_completed * defaults.REPUTATION_TASK_COMPLETED_WEIGHT
        - stats.tokens_lost / defaults.REPUTATION_TOKENS_LOST_DIVISOR
    )
    return max(0, round(raw) - stats.reputation_penalty)


def reputation_penalty(current_reputation: int) -> int:
    """Reputation lost when arbitration rules against a reviewee."""
    return math.ceil(5 + 2 * math.sqrt(max(0, current_reputation)))


def recalculate_reputation(user: User) -> int:
    """Recompute and store the user's reputation."""
    user.reputation = compute_reputation(user.stats)
    return user.reputation


def apply_reputation_penalty(user: User) -> int:
    """Charge the dispute penalty against the user's current reputation.

    The penalty is accumulated in ``stats.reputation_penalty`` so later
    recalculations keep it. Returns the penalty charged.
    """
    penalty = reputation_penalty(user.reputation)
    user.stats.reputation_penalty += penalty
    recalculate_reputation(user)
    return penalty


def compute_proficiency_score(
    upvotes_received: int,
    downvotes_received: int,
    downvotes_lost: int,
    downvotes_defended: int,
) -> int:
    return max(
        0,
        upvotes_received * defaults.PROFICIENCY_UPVOTE_WEIGHT
        - downvotes_lost * defaults.PROFICIENCY_DOWNVOTE_LOST_WEIGHT
        + downvotes_defended * defaults.PROFICIENCY_DOWNVOTE_DEFENDED_WEIGHT
        + downvotes_received * defaults.PROFICIENCY_DOWNVOTE_RECEIVED_WEIGHT,
    )


def recalculate_proficiency(prof: CourseProficiency) -> int:
    """Recompute and store the proficiency score."""
    prof.score = compute_proficiency_score(
        prof.upvotes_received,
        prof.downvotes_received,
        prof.downvotes_lost,
        prof.downvotes_defended,
    )
    return prof.score
