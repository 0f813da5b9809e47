"""Data models for the peer review wager engine.

Reviews, users, course proficiency and ledger entries, plus the enums
that name their states. All records serialize with ``to_dict`` and
round-trip through ``from_dict``; the PostgreSQL store builds them with
``from_row``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4


def utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# =============================================================================
# ENUMS
# =============================================================================


class VoteType(StrEnum):
    """Vote cast by the reviewer."""

    PENDING = "pending"
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


class DisputeStatus(StrEnum):
    """Position of a review in the dispute flow."""

    NONE = "none"  # no dispute (pending or upvote)
    PENDING_RESPONSE = "pending_response"  # downvote passed the gate, awaiting reviewee
    REMARK_REJECTED = "remark_rejected"  # downvote remark classified as spam
    AGREED = "agreed"  # reviewee accepted the downvote
    AI_REVIEWING = "ai_reviewing"  # arbitration in flight
    RESOLVED_DOWNVOTER_WINS = "resolved_downvoter_wins"
    RESOLVED_REVIEWEE_WINS = "resolved_reviewee_wins"

    @property
    def is_terminal(self) -> bool:
        return self in (
            DisputeStatus.REMARK_REJECTED,
            DisputeStatus.AGREED,
            DisputeStatus.RESOLVED_DOWNVOTER_WINS,
            DisputeStatus.RESOLVED_REVIEWEE_WINS,
        )


class RemarkStatus(StrEnum):
    """Outcome of the remark quality check."""

    UNCHECKED = "unchecked"
    PASSED = "passed"
    REJECTED = "rejected"


class Decision(StrEnum):
    """Arbitration decision."""

    DOWNVOTER_CORRECT = "downvoter_correct"
    REVIEWEE_CORRECT = "reviewee_correct"


class RespondAction(StrEnum):
    """Reviewee response to a downvote."""

    AGREE = "agree"
    DISAGREE = "disagree"


class LedgerKind(StrEnum):
    """Kinds of balance-affecting events."""

    INITIAL_GRANT = "initial_grant"
    STAKE = "stake"
    REWARD = "reward"
    PENALTY = "penalty"
    BONUS = "bonus"
    PEER_WAGER = "peer_wager"
    PEER_REWARD = "peer_reward"
    PEER_PENALTY = "peer_penalty"


# =============================================================================
# REVIEW
# =============================================================================


@dataclass
class SubmissionRef:
    """Pointer to the reviewee's quiz attempt and submitted artifact.

    The theory questions are snapshotted at unlock time so arbitration
    judges the same questions the reviewer saw.
    """

    attempt_id: str
    artifact_ref: str
    questions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "artifact_ref": self.artifact_ref,
            "questions": list(self.questions),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubmissionRef:
        return cls(
            attempt_id=data["attempt_id"],
            artifact_ref=data["artifact_ref"],
            questions=list(data.get("questions") or []),
        )


@dataclass
class RemarkCheck:
    status: RemarkStatus = RemarkStatus.UNCHECKED
    reasoning: str = ""
    checked_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "reasoning": self.reasoning,
            "checked_at": _iso(self.checked_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemarkCheck:
        return cls(
            status=RemarkStatus(data.get("status", RemarkStatus.UNCHECKED)),
            reasoning=data.get("reasoning", ""),
            checked_at=_parse_dt(data.get("checked_at")),
        )


@dataclass
class AIVerdict:
    """Arbitration outcome as recorded on the review."""

    decision: Decision
    reasoning: str
    confidence: float
    reviewed_at: datetime = field(default_factory=utcnow)
    fallback: bool = False  # True when the benefit-of-doubt default was applied

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.value,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "reviewed_at": _iso(self.reviewed_at),
            "fallback": self.fallback,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AIVerdict:
        return cls(
            decision=Decision(data["decision"]),
            reasoning=data.get("reasoning", ""),
            confidence=float(data.get("confidence", 0.0)),
            reviewed_at=_parse_dt(data.get("reviewed_at")) or utcnow(),
            fallback=bool(data.get("fallback", False)),
        )


@dataclass
class PeerReview:
    """One reviewer's wager on one task submission."""

    reviewer_id: str
    reviewee_id: str
    task_id: str
    course_id: str
    submission_ref: SubmissionRef
    wager: int
    id: UUID = field(default_factory=uuid4)
    vote_type: VoteType = VoteType.PENDING
    reason: str = ""
    remark_check: RemarkCheck = field(default_factory=RemarkCheck)
    dispute_status: DisputeStatus = DisputeStatus.NONE
    ai_verdict: AIVerdict | None = None
    settled: bool = False
    tokens_transferred: int = 0
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    settled_at: datetime | None = None

    def settle(self, dispute_status: DisputeStatus, tokens_transferred: int = 0) -> None:
        """Move to a terminal state. The record is immutable afterwards."""
        now = utcnow()
        self.dispute_status = dispute_status
        self.tokens_transferred = tokens_transferred
        self.settled = True
        self.settled_at = now
        self.updated_at = now

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "reviewer_id": self.reviewer_id,
            "reviewee_id": self.reviewee_id,
            "task_id": self.task_id,
            "course_id": self.course_id,
            "submission_ref": self.submission_ref.to_dict(),
            "vote_type": self.vote_type.value,
            "wager": self.wager,
            "reason": self.reason,
            "remark_check": self.remark_check.to_dict(),
            "dispute_status": self.dispute_status.value,
            "ai_verdict": self.ai_verdict.to_dict() if self.ai_verdict else None,
            "settled": self.settled,
            "tokens_transferred": self.tokens_transferred,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "settled_at": _iso(self.settled_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PeerReview:
        review_id = data.get("id")
        if isinstance(review_id, str):
            review_id = UUID(review_id)
        remark = data.get("remark_check") or {}
        verdict = data.get("ai_verdict")
        return cls(
            id=review_id or uuid4(),
            reviewer_id=data["reviewer_id"],
            reviewee_id=data["reviewee_id"],
            task_id=data["task_id"],
            course_id=data["course_id"],
            submission_ref=SubmissionRef.from_dict(data["submission_ref"]),
            vote_type=VoteType(data.get("vote_type", VoteType.PENDING)),
            wager=int(data["wager"]),
            reason=data.get("reason") or "",
            remark_check=RemarkCheck.from_dict(remark),
            dispute_status=DisputeStatus(data.get("dispute_status", DisputeStatus.NONE)),
            ai_verdict=AIVerdict.from_dict(verdict) if verdict else None,
            settled=bool(data.get("settled", False)),
            tokens_transferred=int(data.get("tokens_transferred", 0)),
            version=int(data.get("version", 0)),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
            settled_at=_parse_dt(data.get("settled_at")),
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> PeerReview:
        """Build from a database row (JSONB columns already decoded)."""
        return cls.from_dict(dict(row))


# =============================================================================
# USERS & PROFICIENCY
# =============================================================================


@dataclass
class UserStats:
    reviews_given: int = 0
    upvotes_received: int = 0
    downvotes_received: int = 0
    downvotes_lost: int = 0
    downvotes_defended: int = 0
    tokens_lost: int = 0
    # Maintained by the quiz flow; read by the reputation formula
    quizzes_passed: int = 0
    tasks_completed: int = 0
    # Cumulative dispute penalties, subtracted on every recalculation
    reputation_penalty: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "reviews_given": self.reviews_given,
            "upvotes_received": self.upvotes_received,
            "downvotes_received": self.downvotes_received,
            "downvotes_lost": self.downvotes_lost,
            "downvotes_defended": self.downvotes_defended,
            "tokens_lost": self.tokens_lost,
            "quizzes_passed": self.quizzes_passed,
            "tasks_completed": self.tasks_completed,
            "reputation_penalty": self.reputation_penalty,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserStats:
        known = cls().to_dict().keys()
        return cls(**{k: int(v) for k, v in data.items() if k in known})


@dataclass
class User:
    """Token and reputation projection of a platform user."""

    id: str
    token_balance: int = 0
    reputation: int = 0
    stats: UserStats = field(default_factory=UserStats)
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "token_balance": self.token_balance,
            "reputation": self.reputation,
            "stats": self.stats.to_dict(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        return cls(
            id=data["id"],
            token_balance=int(data.get("token_balance", 0)),
            reputation=int(data.get("reputation", 0)),
            stats=UserStats.from_dict(data.get("stats") or {}),
            version=int(data.get("version", 0)),
        )


@dataclass
class CourseProficiency:
    """Per-user, per-course aggregate of peer review outcomes."""

    user_id: str
    course_id: str
    upvotes_received: int = 0
    downvotes_received: int = 0
    downvotes_lost: int = 0
    downvotes_defended: int = 0
    score: int = 0
    version: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.course_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "course_id": self.course_id,
            "upvotes_received": self.upvotes_received,
            "downvotes_received": self.downvotes_received,
            "downvotes_lost": self.downvotes_lost,
            "downvotes_defended": self.downvotes_defended,
            "score": self.score,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CourseProficiency:
        return cls(
            user_id=data["user_id"],
            course_id=data["course_id"],
            upvotes_received=int(data.get("upvotes_received", 0)),
            downvotes_received=int(data.get("downvotes_received", 0)),
            downvotes_lost=int(data.get("downvotes_lost", 0)),
            downvotes_defended=int(data.get("downvotes_defended", 0)),
            score=int(data.get("score", 0)),
            version=int(data.get("version", 0)),
        )


# =============================================================================
# LEDGER
# =============================================================================


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable balance-affecting event.

    ``amount`` is the delta actually applied; ``requested_amount`` is what the
    caller asked for before zero-clamping.
    """

    user_id: str
    kind: LedgerKind
    amount: int
    balance_after: int
    requested_amount: int
    note: str = ""
    task_id: str | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def clamped(self) -> bool:
        return self.amount != self.requested_amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "task_id": self.task_id,
            "kind": self.kind.value,
            "amount": self.amount,
            "requested_amount": self.requested_amount,
            "balance_after": self.balance_after,
            "note": self.note,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerEntry:
        entry_id = data.get("id")
        if isinstance(entry_id, str):
            entry_id = UUID(entry_id)
        return cls(
            id=entry_id or uuid4(),
            user_id=data["user_id"],
            task_id=data.get("task_id"),
            kind=LedgerKind(data["kind"]),
            amount=int(data["amount"]),
            requested_amount=int(data.get("requested_amount", data["amount"])),
            balance_after=int(data["balance_after"]),
            note=data.get("note") or "",
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
        )
