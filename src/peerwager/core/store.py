"""Record store protocol and in-memory implementation.

A transition loads copies of the records it needs, mutates them, and hands
every write to ``ReviewStore.commit`` as one ``Changeset``. Commit applies
all writes or none. Each record carries a ``version``: version 0 means
insert, anything else is an update that must match the stored version.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from .exceptions import ConflictError
from .models import CourseProficiency, DisputeStatus, LedgerEntry, PeerReview, User, VoteType


@dataclass
class Changeset:
    """All writes produced by one state transition."""

    reviews: dict[UUID, PeerReview] = field(default_factory=dict)
    users: dict[str, User] = field(default_factory=dict)
    proficiencies: dict[tuple[str, str], CourseProficiency] = field(default_factory=dict)
    ledger_entries: list[LedgerEntry] = field(default_factory=list)

    def touch_review(self, review: PeerReview) -> None:
        self.reviews[review.id] = review

    def touch_user(self, user: User) -> None:
        self.users[user.id] = user

    def touch_proficiency(self, proficiency: CourseProficiency) -> None:
        self.proficiencies[proficiency.key] = proficiency

    def is_empty(self) -> bool:
        return not (self.reviews or self.users or self.proficiencies or self.ledger_entries)


# =============================================================================
# STORE PROTOCOL
# =============================================================================


class ReviewStore(Protocol):
    """Protocol for review, user, proficiency and ledger persistence."""

    def get_review(self, review_id: UUID) -> PeerReview | None:
        """Get a review by ID."""
        ...

    def find_review(self, reviewer_id: str, task_id: str) -> PeerReview | None:
        """Get the review a reviewer holds for a task, if any."""
        ...

    def list_reviews(
        self,
        reviewer_id: str | None = None,
        reviewee_id: str | None = None,
        include_pending: bool = False,
        limit: int = 20,
    ) -> list[PeerReview]:
        """List reviews newest first."""
        ...

    def count_reviews(self, reviewee_id: str, dispute_status: DisputeStatus) -> int:
        """Count a reviewee's reviews in a dispute state."""
        ...

    def vote_counts(self, reviewee_id: str, task_ids: list[str]) -> dict[str, tuple[int, int]]:
        """Upvotes and downvotes a reviewee drew per task; tasks without votes are absent."""
        ...

    def get_user(self, user_id: str) -> User | None:
        """Get a user by ID."""
        ...

    def get_proficiency(self, user_id: str, course_id: str) -> CourseProficiency | None:
        """Get a user's proficiency record for a course."""
        ...

    def ledger_entries(self, user_id: str) -> list[LedgerEntry]:
        """All ledger entries for a user, oldest first."""
        ...

    def commit(self, changeset: Changeset) -> None:
        """Apply every write in the changeset atomically."""
        ...


# =============================================================================
# IN-MEMORY STORE
# =============================================================================


class InMemoryReviewStore:
    """In-memory store for testing and local use.

    Reads return deep copies so callers can never mutate stored state
    outside ``commit``. The engine calls the store from executor threads, so
    every method runs under one lock.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._reviews: dict[UUID, PeerReview] = {}
        self._review_index: dict[tuple[str, str], UUID] = {}
        self._users: dict[str, User] = {}
        self._proficiencies: dict[tuple[str, str], CourseProficiency] = {}
        self._ledger: dict[str, list[LedgerEntry]] = {}

    # -------------------------------------------------------------------------
    # READS
    # -------------------------------------------------------------------------

    def get_review(self, review_id: UUID) -> PeerReview | None:
        with self._lock:
            review = self._reviews.get(review_id)
            return copy.deepcopy(review) if review else None

    def find_review(self, reviewer_id: str, task_id: str) -> PeerReview | None:
        with self._lock:
            review_id = self._review_index.get((reviewer_id, task_id))
            return self.get_review(review_id) if review_id else None

    def list_reviews(
        self,
        reviewer_id: str | None = None,
        reviewee_id: str | None = None,
        include_pending: bool = False,
        limit: int = 20,
    ) -> list[PeerReview]:
        with self._lock:
            results = list(self._reviews.values())
            if reviewer_id is not None:
                results = [r for r in results if r.reviewer_id == reviewer_id]
            if reviewee_id is not None:
                results = [r for r in results if r.reviewee_id == reviewee_id]
            if not include_pending:
                results = [r for r in results if r.vote_type != VoteType.PENDING]
            results.sort(key=lambda r: r.created_at, reverse=True)
            return [copy.deepcopy(r) for r in results[:limit]]

    def count_reviews(self, reviewee_id: str, dispute_status: DisputeStatus) -> int:
        with self._lock:
            return sum(
                1
                for r in self._reviews.values()
                if r.reviewee_id == reviewee_id and r.dispute_status == dispute_status
            )

    def vote_counts(self, reviewee_id: str, task_ids: list[str]) -> dict[str, tuple[int, int]]:
        wanted = set(task_ids)
        counts: dict[str, tuple[int, int]] = {}
        with self._lock:
            for r in self._reviews.values():
                if r.reviewee_id != reviewee_id or r.task_id not in wanted or r.vote_type == VoteType.PENDING:
                    continue
                up, down = counts.get(r.task_id, (0, 0))
                if r.vote_type == VoteType.UPVOTE:
                    up += 1
                else:
                    down += 1
                counts[r.task_id] = (up, down)
        return counts

    def get_user(self, user_id: str) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return copy.deepcopy(user) if user else None

    def get_proficiency(self, user_id: str, course_id: str) -> CourseProficiency | None:
        with self._lock:
            prof = self._proficiencies.get((user_id, course_id))
            return copy.deepcopy(prof) if prof else None

    def ledger_entries(self, user_id: str) -> list[LedgerEntry]:
        with self._lock:
            return list(self._ledger.get(user_id, []))

    # -------------------------------------------------------------------------
    # WRITES
    # -------------------------------------------------------------------------

    def commit(self, changeset: Changeset) -> None:
        with self._lock:
            self._validate(changeset)
            for review in changeset.reviews.values():
                review.version += 1
                self._reviews[review.id] = copy.deepcopy(review)
                self._review_index[(review.reviewer_id, review.task_id)] = review.id
            for user in changeset.users.values():
                user.version += 1
                self._users[user.id] = copy.deepcopy(user)
            for key, prof in changeset.proficiencies.items():
                prof.version += 1
                self._proficiencies[key] = copy.deepcopy(prof)
            for entry in changeset.ledger_entries:
                self._ledger.setdefault(entry.user_id, []).append(entry)

    def _validate(self, changeset: Changeset) -> None:
        for review in changeset.reviews.values():
            self._check_version("PeerReview", str(review.id), self._reviews.get(review.id), review.version)
            if review.version == 0:
                existing = self._review_index.get((review.reviewer_id, review.task_id))
                if existing is not None and existing != review.id:
                    raise ConflictError(
                        "Review already exists for this reviewer and task",
                        {"reviewer_id": review.reviewer_id, "task_id": review.task_id},
                    )
        for user in changeset.users.values():
            self._check_version("User", user.id, self._users.get(user.id), user.version)
        for key, prof in changeset.proficiencies.items():
            self._check_version("CourseProficiency", "/".join(key), self._proficiencies.get(key), prof.version)

    @staticmethod
    def _check_version(kind: str, record_id: str, stored, version: int) -> None:
        if version == 0:
            if stored is not None:
                raise ConflictError(f"{kind} already exists: {record_id}", {"id": record_id})
            return
        if stored is None or stored.version != version:
            raise ConflictError(
                f"{kind} {record_id} was modified concurrently",
                {"id": record_id, "expected_version": version},
            )
