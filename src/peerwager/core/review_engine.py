"""Peer review state machine.

A reviewer pays a wager to unlock a classmate's submitted solution, then
upvotes it (wager refunded) or downvotes it with a remark. A downvote whose
remark passes the moderation oracle opens a dispute the reviewee can accept
or contest; contested disputes are settled by the judgment oracle.

States::

    pending ── upvote ──────────────────────────────────────> upvote
       └──── downvote ─┬─ remark rejected ──────────────────> remark_rejected
                       └─ pending_response ─ agree ─────────> agreed
                                   └──── disagree ─> ai_reviewing ─┬─> resolved_downvoter_wins
                                                                   └─> resolved_reviewee_wins

Every transition stages its writes in one ``Changeset`` and commits it once,
so a review, the ledger, user balances and proficiencies move together.
Transitions on one review are serialized by a per-review lock; balance
changes on one user by a per-user lock. Oracle calls happen while only the
review lock is held. Store calls block, so they run on the loop's default
executor and never stall unrelated handlers.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import UUID

from . import defaults
from .collaborators import Submission, SubmissionLookup, TaskCatalog, TaskInfo
from .config import EngineSettings, get_settings
from .exceptions import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    OracleUnavailableError,
    ValidationException,
)
from .ledger import ChainReport, TokenLedger, verify_chain
from .locks import KeyedLocks
from .models import (
    AIVerdict,
    CourseProficiency,
    Decision,
    DisputeStatus,
    LedgerEntry,
    LedgerKind,
    PeerReview,
    RemarkCheck,
    RemarkStatus,
    RespondAction,
    SubmissionRef,
    User,
    VoteType,
    utcnow,
)
from .reputation import apply_reputation_penalty, recalculate_proficiency, recalculate_reputation
from .store import Changeset, ReviewStore

if TYPE_CHECKING:
    from ..oracles.arbitrator import DisputeArbitrator
    from ..oracles.remark_gate import RemarkQualityGate

logger = logging.getLogger(__name__)

FALLBACK_ARBITRATION_REASONING = "AI arbitration failed. Benefit of the doubt goes to the student."

# Settlement after arbitration is retried when a user record changed underneath
# it. If every attempt fails the review goes back to pending_response.
_SETTLE_ATTEMPTS = 3

T = TypeVar("T")


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class UnlockResult:
    review_id: UUID
    artifact_ref: str
    artifact_name: str
    wager: int
    balance: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "review_id": str(self.review_id),
            "artifact_ref": self.artifact_ref,
            "artifact_name": self.artifact_name,
            "wager": self.wager,
            "balance": self.balance,
        }


@dataclass
class VoteResult:
    review: PeerReview
    tokens_returned: int | None = None
    total_lost: int | None = None
    remark_reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "review_id": str(self.review.id),
            "vote_type": self.review.vote_type.value,
            "dispute_status": self.review.dispute_status.value,
            "settled": self.review.settled,
        }
        if self.tokens_returned is not None:
            result["tokens_returned"] = self.tokens_returned
        if self.review.vote_type == VoteType.DOWNVOTE:
            result["remark_status"] = self.review.remark_check.status.value
            result["remark_reasoning"] = self.remark_reasoning
        if self.total_lost is not None:
            result["total_lost"] = self.total_lost
        return result


@dataclass
class RespondResult:
    review: PeerReview
    tokens_lost: int = 0

    def to_dict(self) -> dict[str, Any]:
        verdict = self.review.ai_verdict
        return {
            "review_id": str(self.review.id),
            "dispute_status": self.review.dispute_status.value,
            "ai_verdict": verdict.to_dict() if verdict else None,
            "tokens_transferred": self.review.tokens_transferred,
            "tokens_lost": self.tokens_lost,
        }


@dataclass
class SolutionView:
    """What a viewer sees of a classmate's solution before and after unlocking."""

    task: TaskInfo
    reviewee_id: str
    questions: list[str]
    artifact_name: str
    artifact_ref: str | None
    existing_review: PeerReview | None = None

    @property
    def locked(self) -> bool:
        return self.artifact_ref is None

    def to_dict(self) -> dict[str, Any]:
        artifact: dict[str, Any] = {"name": self.artifact_name, "locked": self.locked}
        if not self.locked:
            artifact["ref"] = self.artifact_ref
        return {
            "task": self.task.to_dict(),
            "reviewee_id": self.reviewee_id,
            "questions": [{"number": i + 1, "question": q} for i, q in enumerate(self.questions)],
            "artifact": artifact,
            "existing_review": self.existing_review.to_dict() if self.existing_review else None,
        }


@dataclass
class AccomplishedTask:
    """One entry of a user's public showcase of submitted work."""

    submission: Submission
    task: TaskInfo
    upvotes: int = 0
    downvotes: int = 0

    def to_dict(self) -> dict[str, Any]:
        submitted_at = self.submission.submitted_at
        return {
            "attempt_id": self.submission.attempt_id,
            "task": self.task.to_dict(),
            "question_count": len(self.submission.questions),
            "artifact_name": self.submission.artifact_name,
            "submitted_at": submitted_at.isoformat() if submitted_at else None,
            "peer_review": {"upvotes": self.upvotes, "downvotes": self.downvotes},
        }


@dataclass
class ReceivedReviews:
    reviews: list[PeerReview] = field(default_factory=list)
    pending_disputes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": len(self.reviews),
            "pending_disputes": self.pending_disputes,
            "reviews": [r.to_dict() for r in self.reviews],
        }


# =============================================================================
# ENGINE
# =============================================================================


class PeerReviewEngine:
    """Orchestrates unlock, vote, dispute and settlement.

    The engine is the only writer of reviews, ledger entries, user stats and
    course proficiency. Oracle failures never surface from here: the remark
    gate passes by default and a failed arbitration rules for the reviewee.
    """

    def __init__(
        self,
        store: ReviewStore,
        submissions: SubmissionLookup,
        tasks: TaskCatalog,
        remark_gate: RemarkQualityGate,
        arbitrator: DisputeArbitrator,
        settings: EngineSettings | None = None,
        ledger: TokenLedger | None = None,
    ) -> None:
        self.store = store
        self.submissions = submissions
        self.tasks = tasks
        self.remark_gate = remark_gate
        self.arbitrator = arbitrator
        self.settings = settings or get_settings()
        self.ledger = ledger or TokenLedger()
        self._review_locks = KeyedLocks("review")
        self._user_locks = KeyedLocks("user")

    # -------------------------------------------------------------------------
    # ACCOUNTS
    # -------------------------------------------------------------------------

    async def open_account(self, user_id: str, initial_balance: int | None = None) -> User:
        """Create a user with an initial token grant.

        Raises:
            ValidationException: If the initial balance is negative.
            ConflictError: If the user already exists.
        """
        balance = self.settings.initial_balance if initial_balance is None else initial_balance
        if isinstance(balance, bool) or not isinstance(balance, int) or balance < 0:
            raise ValidationException(
                "Initial balance must be a non-negative integer", field="initial_balance", value=balance
            )

        async with self._user_locks.hold([user_id]):
            if await self._db(self.store.get_user, user_id) is not None:
                raise ConflictError(f"User already exists: {user_id}", {"user_id": user_id})
            changeset = Changeset()
            user = self.ledger.open_account(changeset, user_id, balance)
            await self._db(self.store.commit, changeset)

        logger.info("Opened account %s with %d tokens", user_id, balance)
        return user

    # -------------------------------------------------------------------------
    # UNLOCK
    # -------------------------------------------------------------------------

    async def unlock(self, reviewer_id: str, task_id: str, reviewee_id: str, wager: int) -> UnlockResult:
        """Pay ``wager`` to unlock a classmate's submitted solution.

        Raises:
            ValidationException: Self-review or wager below 1.
            NotFoundError: No submitted attempt with an artifact, no task, or
                no reviewer record.
            ConflictError: The reviewer already holds a review for this task.
            InsufficientFundsError: Balance below the wager.
        """
        if reviewer_id == reviewee_id:
            raise ValidationException("Cannot review your own submission", field="reviewee_id", value=reviewee_id)
        if isinstance(wager, bool) or not isinstance(wager, int) or wager < defaults.MIN_WAGER:
            raise ValidationException(
                f"Wager must be an integer of at least {defaults.MIN_WAGER} token", field="wager", value=wager
            )

        submission = await self._load_submission(reviewee_id, task_id)
        task = await self._load_task(task_id)

        async with self._user_locks.hold([reviewer_id]):
            if await self._db(self.store.find_review, reviewer_id, task_id) is not None:
                raise ConflictError(
                    "You have already unlocked this task",
                    {"reviewer_id": reviewer_id, "task_id": task_id},
                )
            reviewer = await self._load_user(reviewer_id)
            if reviewer.token_balance < wager:
                raise InsufficientFundsError(required=wager, available=reviewer.token_balance)

            review = PeerReview(
                reviewer_id=reviewer_id,
                reviewee_id=reviewee_id,
                task_id=task_id,
                course_id=task.course_id,
                submission_ref=SubmissionRef(
                    attempt_id=submission.attempt_id,
                    artifact_ref=submission.artifact_ref,
                    questions=list(submission.questions),
                ),
                wager=wager,
            )
            changeset = Changeset()
            self.ledger.record(
                changeset,
                reviewer,
                task_id,
                LedgerKind.PEER_WAGER,
                -wager,
                note=f"Unlock wager: {wager} tokens to review {reviewee_id}'s solution",
            )
            changeset.touch_review(review)
            await self._db(self.store.commit, changeset)

        logger.info("Review %s unlocked by %s on task %s (wager %d)", review.id, reviewer_id, task_id, wager)
        return UnlockResult(
            review_id=review.id,
            artifact_ref=submission.artifact_ref,
            artifact_name=submission.artifact_name,
            wager=wager,
            balance=reviewer.token_balance,
        )

    # -------------------------------------------------------------------------
    # VOTE
    # -------------------------------------------------------------------------

    async def cast_vote(
        self,
        review_id: UUID | str,
        reviewer_id: str,
        vote_type: VoteType | str,
        reason: str | None = None,
    ) -> VoteResult:
        """Upvote or downvote an unlocked solution.

        Raises:
            ValidationException: Unknown vote type, or a downvote remark shorter
                than ``min_remark_length`` after trimming.
            NotFoundError: Unknown review.
            ConflictError: Not the reviewer, or the vote was already cast.
        """
        vote = _parse_choice(VoteType, vote_type, "type")
        if vote == VoteType.PENDING:
            raise ValidationException("Vote type must be upvote or downvote", field="type", value=vote.value)
        remark = reason.strip() if isinstance(reason, str) else ""
        if vote == VoteType.DOWNVOTE and len(remark) < self.settings.min_remark_length:
            raise ValidationException(
                f"Downvote remark must be at least {self.settings.min_remark_length} characters",
                field="reason",
                value=remark,
            )

        rid = _parse_review_id(review_id)
        async with self._review_locks.hold([str(rid)]):
            review = await self._load_review(rid)
            if review.reviewer_id != reviewer_id:
                raise ConflictError("Not your review", {"review_id": str(rid)})
            if review.settled or review.vote_type != VoteType.PENDING:
                raise ConflictError(
                    "Vote already cast",
                    {"review_id": str(rid), "vote_type": review.vote_type.value},
                )

            if vote == VoteType.UPVOTE:
                return await self._settle_upvote(review)

            task = await self._load_task(review.task_id)
            verdict = await self.remark_gate.check(remark, task.context())
            if verdict.fallback:
                logger.warning("Remark gate fell back to pass for review %s: %s", rid, verdict.reasoning)
            if verdict.passed:
                return await self._open_dispute(review, remark, verdict.reasoning)
            return await self._reject_remark(review, remark, verdict.reasoning)

    async def _settle_upvote(self, review: PeerReview) -> VoteResult:
        async with self._user_locks.hold([review.reviewer_id, review.reviewee_id]):
            reviewer = await self._load_user(review.reviewer_id)
            reviewee = await self._load_user(review.reviewee_id)
            changeset = Changeset()

            self.ledger.record(
                changeset,
                reviewer,
                review.task_id,
                LedgerKind.PEER_REWARD,
                review.wager,
                note=f"Upvote: wager of {review.wager} returned",
            )
            reviewer.stats.reviews_given += 1

            reviewee.stats.upvotes_received += 1
            recalculate_reputation(reviewee)
            changeset.touch_user(reviewee)

            prof = await self._load_proficiency(reviewee.id, review.course_id)
            prof.upvotes_received += 1
            recalculate_proficiency(prof)
            changeset.touch_proficiency(prof)

            review.vote_type = VoteType.UPVOTE
            review.settle(DisputeStatus.NONE, tokens_transferred=0)
            changeset.touch_review(review)
            await self._db(self.store.commit, changeset)

        logger.info("Review %s upvoted; wager %d returned to %s", review.id, review.wager, review.reviewer_id)
        return VoteResult(review=review, tokens_returned=review.wager)

    async def _reject_remark(self, review: PeerReview, remark: str, reasoning: str) -> VoteResult:
        async with self._user_locks.hold([review.reviewer_id]):
            reviewer = await self._load_user(review.reviewer_id)
            changeset = Changeset()

            penalty = self.settings.spam_penalty
            entry = self.ledger.record(
                changeset,
                reviewer,
                review.task_id,
                LedgerKind.PEER_PENALTY,
                -penalty,
                note=f"Remark rejected (spam/profanity): wager {review.wager} forfeited + {penalty} penalty",
            )
            total_lost = review.wager - entry.amount
            reviewer.stats.reviews_given += 1
            reviewer.stats.tokens_lost += total_lost
            recalculate_reputation(reviewer)

            review.vote_type = VoteType.DOWNVOTE
            review.reason = remark
            review.remark_check = RemarkCheck(status=RemarkStatus.REJECTED, reasoning=reasoning, checked_at=utcnow())
            review.settle(DisputeStatus.REMARK_REJECTED, tokens_transferred=0)
            changeset.touch_review(review)
            await self._db(self.store.commit, changeset)

        logger.info("Review %s remark rejected; %s lost %d tokens", review.id, review.reviewer_id, total_lost)
        return VoteResult(review=review, total_lost=total_lost, remark_reasoning=reasoning)

    async def _open_dispute(self, review: PeerReview, remark: str, reasoning: str) -> VoteResult:
        async with self._user_locks.hold([review.reviewer_id, review.reviewee_id]):
            reviewer = await self._load_user(review.reviewer_id)
            reviewee = await self._load_user(review.reviewee_id)
            changeset = Changeset()

            reviewer.stats.reviews_given += 1
            changeset.touch_user(reviewer)

            reviewee.stats.downvotes_received += 1
            recalculate_reputation(reviewee)
            changeset.touch_user(reviewee)

            prof = await self._load_proficiency(reviewee.id, review.course_id)
            prof.downvotes_received += 1
            recalculate_proficiency(prof)
            changeset.touch_proficiency(prof)

            review.vote_type = VoteType.DOWNVOTE
            review.reason = remark
            review.remark_check = RemarkCheck(status=RemarkStatus.PASSED, reasoning=reasoning, checked_at=utcnow())
            review.dispute_status = DisputeStatus.PENDING_RESPONSE
            review.updated_at = utcnow()
            changeset.touch_review(review)
            await self._db(self.store.commit, changeset)

        logger.info("Review %s downvoted; awaiting response from %s", review.id, review.reviewee_id)
        return VoteResult(review=review, remark_reasoning=reasoning)

    # -------------------------------------------------------------------------
    # RESPOND
    # -------------------------------------------------------------------------

    async def respond_to_downvote(
        self,
        review_id: UUID | str,
        reviewee_id: str,
        action: RespondAction | str,
    ) -> RespondResult:
        """Accept or contest a downvote.

        Raises:
            ValidationException: Action is not ``agree`` or ``disagree``.
            NotFoundError: Unknown review.
            ConflictError: Not the reviewee, or no response is pending.
        """
        act = _parse_choice(RespondAction, action, "action")
        rid = _parse_review_id(review_id)

        async with self._review_locks.hold([str(rid)]):
            review = await self._load_review(rid)
            if review.reviewee_id != reviewee_id:
                raise ConflictError("Only the reviewee can respond", {"review_id": str(rid)})
            if review.dispute_status != DisputeStatus.PENDING_RESPONSE:
                raise ConflictError(
                    f"Cannot respond. Status: {review.dispute_status.value}",
                    {"review_id": str(rid), "dispute_status": review.dispute_status.value},
                )

            task = await self._load_task(review.task_id)
            if act == RespondAction.AGREE:
                return await self._settle_agreed(review, task)
            return await self._arbitrate(review, task)

    async def _settle_agreed(self, review: PeerReview, task: TaskInfo) -> RespondResult:
        async with self._user_locks.hold([review.reviewer_id, review.reviewee_id]):
            reviewer = await self._load_user(review.reviewer_id)
            reviewee = await self._load_user(review.reviewee_id)
            changeset = Changeset()

            loss = self.ledger.record(
                changeset,
                reviewee,
                review.task_id,
                LedgerKind.PEER_PENALTY,
                -task.token_stake,
                note=f'Agreed to downvote: lost {task.token_stake} tokens (task value) for "{task.title}"',
            )
            reviewee.stats.downvotes_lost += 1
            reviewee.stats.tokens_lost += -loss.amount
            recalculate_reputation(reviewee)

            self.ledger.record(
                changeset,
                reviewer,
                review.task_id,
                LedgerKind.PEER_REWARD,
                review.wager,
                note=f"Downvote upheld (agreed): wager {review.wager} returned",
            )

            prof = await self._load_proficiency(reviewee.id, review.course_id)
            prof.downvotes_lost += 1
            recalculate_proficiency(prof)
            changeset.touch_proficiency(prof)

            review.settle(DisputeStatus.AGREED, tokens_transferred=task.token_stake)
            changeset.touch_review(review)
            await self._db(self.store.commit, changeset)

        logger.info("Review %s agreed; %s forfeited %d tokens", review.id, review.reviewee_id, -loss.amount)
        return RespondResult(review=review, tokens_lost=-loss.amount)

    async def _arbitrate(self, review: PeerReview, task: TaskInfo) -> RespondResult:
        review.dispute_status = DisputeStatus.AI_REVIEWING
        review.updated_at = utcnow()
        changeset = Changeset()
        changeset.touch_review(review)
        await self._db(self.store.commit, changeset)
        logger.info("Review %s contested by %s; arbitration started", review.id, review.reviewee_id)

        verdict = await self._run_arbitration(review, task)

        attempt = 1
        try:
            while True:
                current = await self._load_review(review.id)
                try:
                    return await self._settle_arbitration(current, task, verdict)
                except ConflictError:
                    if attempt >= _SETTLE_ATTEMPTS:
                        logger.error("Review %s could not settle after %d attempts", review.id, attempt)
                        raise
                    attempt += 1
                    logger.warning("Settlement of review %s hit a concurrent update, retrying", review.id)
        except Exception:
            await self._reopen_dispute(review.id)
            raise

    async def _reopen_dispute(self, review_id: UUID) -> None:
        """Put a review whose settlement failed back to pending_response."""
        try:
            review = await self._load_review(review_id)
            if review.dispute_status != DisputeStatus.AI_REVIEWING:
                return
            review.dispute_status = DisputeStatus.PENDING_RESPONSE
            review.updated_at = utcnow()
            changeset = Changeset()
            changeset.touch_review(review)
            await self._db(self.store.commit, changeset)
        except Exception:
            logger.exception("Review %s is stuck in ai_reviewing and needs operator attention", review_id)
            return
        logger.warning("Review %s returned to pending_response after failed settlement", review_id)

    async def _run_arbitration(self, review: PeerReview, task: TaskInfo) -> AIVerdict:
        try:
            result = await self.arbitrator.arbitrate(
                review.submission_ref.questions,
                review.submission_ref,
                review.reason,
                task.context(),
            )
        except OracleUnavailableError as e:
            logger.warning("Arbitration for review %s failed (%s), ruling for the reviewee", review.id, e.message)
            return self._fallback_verdict()
        except Exception as e:
            logger.warning("Arbitration for review %s raised %r, ruling for the reviewee", review.id, e)
            return self._fallback_verdict()
        return AIVerdict(decision=result.decision, reasoning=result.reasoning, confidence=result.confidence)

    @staticmethod
    def _fallback_verdict() -> AIVerdict:
        return AIVerdict(
            decision=Decision.REVIEWEE_CORRECT,
            reasoning=FALLBACK_ARBITRATION_REASONING,
            confidence=0.0,
            fallback=True,
        )

    async def _settle_arbitration(self, review: PeerReview, task: TaskInfo, verdict: AIVerdict) -> RespondResult:
        tokens_lost = 0
        async with self._user_locks.hold([review.reviewer_id, review.reviewee_id]):
            reviewer = await self._load_user(review.reviewer_id)
            reviewee = await self._load_user(review.reviewee_id)
            prof = await self._load_proficiency(reviewee.id, review.course_id)
            changeset = Changeset()

            if verdict.decision == Decision.DOWNVOTER_CORRECT:
                self.ledger.record(
                    changeset,
                    reviewer,
                    review.task_id,
                    LedgerKind.PEER_REWARD,
                    review.wager,
                    note=f"AI upheld downvote: wager {review.wager} returned",
                )
                reviewee.stats.downvotes_lost += 1
                # The penalty is charged against the reputation held before this loss.
                rep_loss = apply_reputation_penalty(reviewee)
                loss = self.ledger.record(
                    changeset,
                    reviewee,
                    review.task_id,
                    LedgerKind.PEER_PENALTY,
                    -task.reward,
                    note=(
                        f"AI ruled solution wrong: lost {task.reward} tokens (task reward) "
                        f'+ {rep_loss} reputation for "{task.title}"'
                    ),
                )
                tokens_lost = -loss.amount
                reviewee.stats.tokens_lost += tokens_lost
                recalculate_reputation(reviewee)
                prof.downvotes_lost += 1
                status = DisputeStatus.RESOLVED_DOWNVOTER_WINS
                transferred = task.reward
            else:
                self.ledger.record(
                    changeset,
                    reviewer,
                    review.task_id,
                    LedgerKind.PEER_PENALTY,
                    0,
                    note=f"AI ruled solution correct: wager of {review.wager} forfeited",
                )
                reviewer.stats.tokens_lost += review.wager
                recalculate_reputation(reviewer)
                reviewee.stats.downvotes_defended += 1
                recalculate_reputation(reviewee)
                changeset.touch_user(reviewee)
                prof.downvotes_defended += 1
                status = DisputeStatus.RESOLVED_REVIEWEE_WINS
                transferred = 0

            recalculate_proficiency(prof)
            changeset.touch_proficiency(prof)

            review.ai_verdict = verdict
            review.settle(status, tokens_transferred=transferred)
            changeset.touch_review(review)
            await self._db(self.store.commit, changeset)

        logger.info(
            "Review %s resolved as %s (confidence %.2f%s)",
            review.id,
            status,
            verdict.confidence,
            ", fallback" if verdict.fallback else "",
        )
        return RespondResult(review=review, tokens_lost=tokens_lost)

    # -------------------------------------------------------------------------
    # READS
    # -------------------------------------------------------------------------

    async def get_review(self, review_id: UUID | str) -> PeerReview:
        return await self._load_review(_parse_review_id(review_id))

    async def get_user(self, user_id: str) -> User:
        return await self._load_user(user_id)

    async def view_solution(self, viewer_id: str | None, task_id: str, reviewee_id: str) -> SolutionView:
        """Theory questions for a submission; the artifact only once the viewer unlocked it."""
        submission = await self._load_submission(reviewee_id, task_id)
        task = await self._load_task(task_id)

        existing = await self._db(self.store.find_review, viewer_id, task_id) if viewer_id else None
        return SolutionView(
            task=task,
            reviewee_id=reviewee_id,
            questions=list(submission.questions),
            artifact_name=submission.artifact_name,
            artifact_ref=submission.artifact_ref if existing else None,
            existing_review=existing,
        )

    async def list_reviews_given(self, user_id: str, limit: int | None = None) -> list[PeerReview]:
        return await self._db(self.store.list_reviews, reviewer_id=user_id, limit=_clamp_limit(limit))

    async def list_reviews_received(self, user_id: str, limit: int | None = None) -> ReceivedReviews:
        reviews = await self._db(self.store.list_reviews, reviewee_id=user_id, limit=_clamp_limit(limit))
        pending = await self._db(self.store.count_reviews, user_id, DisputeStatus.PENDING_RESPONSE)
        return ReceivedReviews(reviews=reviews, pending_disputes=pending)

    async def accomplished_tasks(self, user_id: str, limit: int | None = None) -> list[AccomplishedTask]:
        """A user's submitted work, newest first, with the votes each task drew."""
        submissions = await self.submissions.list_submitted_attempts(user_id, _clamp_limit(limit))
        submissions = [s for s in submissions if s.is_submitted]
        counts = await self._db(self.store.vote_counts, user_id, [s.task_id for s in submissions])

        results: list[AccomplishedTask] = []
        for submission in submissions:
            task = await self.tasks.get_task(submission.task_id)
            if task is None:
                logger.warning("Skipping attempt %s: task %s not found", submission.attempt_id, submission.task_id)
                continue
            upvotes, downvotes = counts.get(submission.task_id, (0, 0))
            results.append(AccomplishedTask(submission=submission, task=task, upvotes=upvotes, downvotes=downvotes))
        return results

    async def ledger_history(self, user_id: str) -> list[LedgerEntry]:
        return await self._db(self.store.ledger_entries, user_id)

    async def audit_ledger(self, user_id: str) -> ChainReport:
        """Verify the user's ledger running sum against the cached balance."""
        user = await self._load_user(user_id)
        entries = await self._db(self.store.ledger_entries, user_id)
        report = verify_chain(user_id, entries, user.token_balance)
        if not report.consistent:
            logger.error("Ledger chain for %s is inconsistent: %s", user_id, report.to_dict())
        return report

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    async def _db(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    async def _load_review(self, review_id: UUID) -> PeerReview:
        review = await self._db(self.store.get_review, review_id)
        if review is None:
            raise NotFoundError("PeerReview", str(review_id))
        return review

    async def _load_user(self, user_id: str) -> User:
        user = await self._db(self.store.get_user, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def _load_proficiency(self, user_id: str, course_id: str) -> CourseProficiency:
        prof = await self._db(self.store.get_proficiency, user_id, course_id)
        return prof or CourseProficiency(user_id=user_id, course_id=course_id)

    async def _load_submission(self, user_id: str, task_id: str) -> Submission:
        # Lookups are external; an unfinished attempt or a missing upload counts as nothing submitted.
        submission = await self.submissions.get_latest_submitted_attempt(user_id, task_id)
        if submission is None or not submission.is_submitted:
            raise NotFoundError("Submission", f"{user_id}/{task_id}")
        return submission

    async def _load_task(self, task_id: str) -> TaskInfo:
        task = await self.tasks.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task


def _parse_review_id(review_id: UUID | str) -> UUID:
    if isinstance(review_id, UUID):
        return review_id
    try:
        return UUID(str(review_id))
    except ValueError:
        raise NotFoundError("PeerReview", str(review_id)) from None


def _parse_choice(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationException(f"{field_name} must be one of: {allowed}", field=field_name, value=value) from None


def _clamp_limit(limit: int | None) -> int:
    if limit is None or limit < 1:
        return defaults.DEFAULT_LIST_LIMIT
    return min(limit, defaults.MAX_LIST_LIMIT)
