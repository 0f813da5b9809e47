"""Tests for the in-memory review store.

Tests cover:
1. Insert / update version semantics
2. Optimistic concurrency conflicts
3. All-or-nothing commits
4. Copy isolation of reads
5. Listing, filtering and counting
6. Commits from several threads
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from peerwager.core.exceptions import ConflictError
from peerwager.core.models import (
    CourseProficiency,
    DisputeStatus,
    LedgerEntry,
    LedgerKind,
    PeerReview,
    SubmissionRef,
    User,
    VoteType,
)
from peerwager.core.store import Changeset, InMemoryReviewStore


def _review(reviewer: str = "alice", reviewee: str = "bob", task: str = "task-1", **kwargs) -> PeerReview:
    return PeerReview(
        reviewer_id=reviewer,
        reviewee_id=reviewee,
        task_id=task,
        course_id="cs101",
        submission_ref=SubmissionRef(attempt_id="a1", artifact_ref="uploads/a1.pdf"),
        wager=5,
        **kwargs,
    )


def _entry(kind: LedgerKind, amount: int, balance_after: int) -> LedgerEntry:
    return LedgerEntry(
        user_id="alice",
        kind=kind,
        amount=amount,
        balance_after=balance_after,
        requested_amount=amount,
    )


def _commit(store: InMemoryReviewStore, *records) -> None:
    changeset = Changeset()
    for record in records:
        if isinstance(record, PeerReview):
            changeset.touch_review(record)
        elif isinstance(record, User):
            changeset.touch_user(record)
        elif isinstance(record, CourseProficiency):
            changeset.touch_proficiency(record)
        else:
            changeset.ledger_entries.append(record)
    store.commit(changeset)


class TestChangeset:
    def test_empty(self):
        assert Changeset().is_empty()

    def test_touch_is_idempotent(self):
        changeset = Changeset()
        user = User(id="alice")
        changeset.touch_user(user)
        changeset.touch_user(user)
        assert len(changeset.users) == 1
        assert not changeset.is_empty()


class TestVersions:
    def test_insert_sets_version_one(self):
        store = InMemoryReviewStore()
        user = User(id="alice", token_balance=10)

        _commit(store, user)

        assert user.version == 1
        assert store.get_user("alice").version == 1

    def test_update_bumps_version(self):
        store = InMemoryReviewStore()
        _commit(store, User(id="alice"))

        user = store.get_user("alice")
        user.token_balance = 50
        _commit(store, user)

        stored = store.get_user("alice")
        assert stored.version == 2
        assert stored.token_balance == 50

    def test_stale_update_conflicts(self):
        store = InMemoryReviewStore()
        _commit(store, User(id="alice"))
        first = store.get_user("alice")
        second = store.get_user("alice")
        _commit(store, first)

        with pytest.raises(ConflictError):
            _commit(store, second)

    def test_duplicate_insert_conflicts(self):
        store = InMemoryReviewStore()
        _commit(store, User(id="alice"))

        with pytest.raises(ConflictError):
            _commit(store, User(id="alice"))

    def test_update_of_missing_record_conflicts(self):
        with pytest.raises(ConflictError):
            _commit(InMemoryReviewStore(), User(id="ghost", version=3))

    def test_second_review_for_same_reviewer_and_task(self):
        store = InMemoryReviewStore()
        _commit(store, _review())

        with pytest.raises(ConflictError):
            _commit(store, _review())


class TestAtomicity:
    def test_failed_commit_writes_nothing(self):
        store = InMemoryReviewStore()
        _commit(store, User(id="bob"))
        stale = User(id="bob", version=7)
        entry = _entry(LedgerKind.INITIAL_GRANT, 10, 10)

        with pytest.raises(ConflictError):
            _commit(store, User(id="alice", token_balance=10), _review(), stale, entry)

        assert store.get_user("alice") is None
        assert store.find_review("alice", "task-1") is None
        assert store.ledger_entries("alice") == []
        assert store.get_user("bob").version == 1


class TestReads:
    def test_reads_are_copies(self):
        store = InMemoryReviewStore()
        _commit(store, User(id="alice", token_balance=10))

        user = store.get_user("alice")
        user.token_balance = 999

        assert store.get_user("alice").token_balance == 10

    def test_committed_objects_are_detached(self):
        store = InMemoryReviewStore()
        review = _review()
        _commit(store, review)

        review.reason = "mutated after commit"

        assert store.get_review(review.id).reason == ""

    def test_find_review(self):
        store = InMemoryReviewStore()
        review = _review()
        _commit(store, review)

        assert store.find_review("alice", "task-1").id == review.id
        assert store.find_review("alice", "task-2") is None

    def test_proficiency_round_trip(self):
        store = InMemoryReviewStore()
        _commit(store, CourseProficiency(user_id="bob", course_id="cs101", upvotes_received=2, score=20))

        prof = store.get_proficiency("bob", "cs101")

        assert prof.score == 20
        assert store.get_proficiency("bob", "cs999") is None

    def test_list_reviews_filters_and_orders(self):
        store = InMemoryReviewStore()
        older = _review(task="task-1", vote_type=VoteType.UPVOTE)
        newer = _review(task="task-2", vote_type=VoteType.DOWNVOTE)
        newer.created_at = older.created_at + timedelta(minutes=5)
        pending = _review(task="task-3")
        other = _review(reviewer="carol", reviewee="dave", task="task-1", vote_type=VoteType.UPVOTE)
        _commit(store, older, newer, pending, other)

        given = store.list_reviews(reviewer_id="alice")
        assert [r.task_id for r in given] == ["task-2", "task-1"]

        with_pending = store.list_reviews(reviewer_id="alice", include_pending=True)
        assert len(with_pending) == 3

        assert len(store.list_reviews(reviewee_id="dave")) == 1
        assert len(store.list_reviews(reviewer_id="alice", limit=1)) == 1

    def test_count_reviews(self):
        store = InMemoryReviewStore()
        _commit(
            store,
            _review(task="task-1", dispute_status=DisputeStatus.PENDING_RESPONSE),
            _review(task="task-2", dispute_status=DisputeStatus.PENDING_RESPONSE),
            _review(task="task-3", dispute_status=DisputeStatus.AGREED),
        )

        assert store.count_reviews("bob", DisputeStatus.PENDING_RESPONSE) == 2
        assert store.count_reviews("alice", DisputeStatus.PENDING_RESPONSE) == 0

    def test_ledger_entries_in_order(self):
        store = InMemoryReviewStore()
        first = _entry(LedgerKind.INITIAL_GRANT, 10, 10)
        second = _entry(LedgerKind.PEER_WAGER, -2, 8)
        _commit(store, first)
        _commit(store, second)

        assert store.ledger_entries("alice") == [first, second]

    def test_vote_counts(self):
        store = InMemoryReviewStore()
        _commit(
            store,
            _review(reviewer="alice", task="task-1", vote_type=VoteType.UPVOTE),
            _review(reviewer="carol", task="task-1", vote_type=VoteType.DOWNVOTE),
            _review(reviewer="dave", task="task-1", vote_type=VoteType.UPVOTE),
            _review(reviewer="erin", task="task-1"),
            _review(reviewer="alice", task="task-2", vote_type=VoteType.DOWNVOTE),
            _review(reviewer="alice", reviewee="zoe", task="task-3", vote_type=VoteType.UPVOTE),
        )

        counts = store.vote_counts("bob", ["task-1", "task-2", "task-3"])

        assert counts == {"task-1": (2, 1), "task-2": (0, 1)}
        assert store.vote_counts("bob", []) == {}


class TestThreads:
    def test_concurrent_commits_from_threads(self):
        store = InMemoryReviewStore()
        _commit(store, User(id="alice"))

        def _bump() -> bool:
            user = store.get_user("alice")
            user.token_balance += 1
            try:
                _commit(store, user)
            except ConflictError:
                return False
            return True

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: _bump(), range(200)))

        assert store.get_user("alice").token_balance == sum(results)
        assert store.get_user("alice").version == 1 + sum(results)
