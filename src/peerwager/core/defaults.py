"""Centralized configurable defaults for PeerWager.

All tunable parameters in one place. ``EngineSettings.from_env`` reads the
environment overrides; everything else imports the constants directly.
"""

from __future__ import annotations

# Settlement
SPAM_PENALTY = 10  # extra tokens burned when a downvote remark is rejected
MIN_REMARK_LENGTH = 10
MIN_WAGER = 1
INITIAL_BALANCE = 100

# Reputation weights (per stat)
REPUTATION_UPVOTE_WEIGHT = 10
REPUTATION_DOWNVOTE_LOST_WEIGHT = 15
REPUTATION_DOWNVOTE_DEFENDED_WEIGHT = 5
REPUTATION_QUIZ_PASSED_WEIGHT = 3
REPUTATION_TASK_COMPLETED_WEIGHT = 2
REPUTATION_TOKENS_LOST_DIVISOR = 10

# Course proficiency weights
PROFICIENCY_UPVOTE_WEIGHT = 10
PROFICIENCY_DOWNVOTE_LOST_WEIGHT = 15
PROFICIENCY_DOWNVOTE_DEFENDED_WEIGHT = 5
PROFICIENCY_DOWNVOTE_RECEIVED_WEIGHT = 0  # an unresolved downvote is not a signal yet

# Oracles
ORACLE_TIMEOUT_SECONDS = 30.0
ORACLE_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
ORACLE_MODELS = ("gemini-2.0-flash-lite", "gemini-2.0-flash", "gemini-flash-latest")
FALLBACK_CONFIDENCE = 0.5  # used when the oracle reports confidence outside [0, 1]

# Listing
DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 50

# HTTP
RATE_LIMIT_RPM = 30
