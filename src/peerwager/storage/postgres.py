"""PostgreSQL implementation of ``ReviewStore`` on psycopg2.

Each ``commit`` runs in one database transaction. Inserts are records with
``version == 0``; updates use ``UPDATE ... WHERE version = %s`` and a row
count of zero means another writer got there first, which rolls the whole
transaction back with ``ConflictError``. Versions on the passed objects are
bumped only after the transaction commits.

The engine calls the store from executor threads, so connections come from
a ``ThreadedConnectionPool`` created on first use.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

import psycopg2
import psycopg2.errors
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..core.config import get_settings
from ..core.exceptions import ConfigException, ConflictError
from ..core.models import CourseProficiency, DisputeStatus, LedgerEntry, PeerReview, User, VoteType
from ..core.store import Changeset

logger = logging.getLogger(__name__)


class PostgresReviewStore:
    """ReviewStore backed by the schema in ``peerwager.migrations``.

    Pass ``connect`` to open a fresh connection per call instead of pooling;
    such connections are closed after each transaction.
    """

    def __init__(
        self,
        dsn: str | None = None,
        connect: Callable[[], Any] | None = None,
        min_connections: int = 1,
        max_connections: int = 10,
    ) -> None:
        self.dsn = dsn if dsn is not None else get_settings().database_url
        self._connect = connect
        self.min_connections = min_connections
        self.max_connections = max_connections
        self._pool: ThreadedConnectionPool | None = None
        self._pool_lock = threading.Lock()

    def _get_pool(self) -> ThreadedConnectionPool:
        with self._pool_lock:
            if self._pool is None:
                if not self.dsn:
                    raise ConfigException("PEERWAGER_DATABASE_URL is not set")
                self._pool = ThreadedConnectionPool(
                    self.min_connections,
                    self.max_connections,
                    self.dsn,
                    cursor_factory=RealDictCursor,
                )
                logger.info("Opened connection pool (max %d)", self.max_connections)
            return self._pool

    def _acquire(self):
        if self._connect is not None:
            return self._connect()
        return self._get_pool().getconn()

    def _release(self, conn) -> None:
        if self._connect is not None:
            conn.close()
        else:
            self._get_pool().putconn(conn)

    def close(self) -> None:
        """Close every pooled connection."""
        with self._pool_lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None

    @contextmanager
    def get_cursor(self) -> Iterator[Any]:
        """Yield a cursor inside a transaction; commit on success, roll back on error."""
        conn = self._acquire()
        try:
            cur = conn.cursor()
            try:
                yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cur.close()
        finally:
            self._release(conn)

    # -------------------------------------------------------------------------
    # READS
    # -------------------------------------------------------------------------

    def get_review(self, review_id: UUID) -> PeerReview | None:
        with self.get_cursor() as cur:
            cur.execute("SELECT * FROM peer_reviews WHERE id = %s", (str(review_id),))
            row = cur.fetchone()
        return PeerReview.from_row(row) if row else None

    def find_review(self, reviewer_id: str, task_id: str) -> PeerReview | None:
        with self.get_cursor() as cur:
            cur.execute(
                "SELECT * FROM peer_reviews WHERE reviewer_id = %s AND task_id = %s",
                (reviewer_id, task_id),
            )
            row = cur.fetchone()
        return PeerReview.from_row(row) if row else None

    def list_reviews(
        self,
        reviewer_id: str | None = None,
        reviewee_id: str | None = None,
        include_pending: bool = False,
        limit: int = 20,
    ) -> list[PeerReview]:
        conditions: list[str] = []
        params: list[Any] = []
        if reviewer_id is not None:
            conditions.append("reviewer_id = %s")
            params.append(reviewer_id)
        if reviewee_id is not None:
            conditions.append("reviewee_id = %s")
            params.append(reviewee_id)
        if not include_pending:
            conditions.append("vote_type <> %s")
            params.append(VoteType.PENDING.value)

        sql = "SELECT * FROM peer_reviews"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY created_at DESC LIMIT %s"
        params.append(limit)

        with self.get_cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [PeerReview.from_row(row) for row in rows]

    def count_reviews(self, reviewee_id: str, dispute_status: DisputeStatus) -> int:
        with self.get_cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) AS count FROM peer_reviews WHERE reviewee_id = %s AND dispute_status = %s",
                (reviewee_id, dispute_status.value),
            )
            row = cur.fetchone()
        return int(row["count"]) if row else 0

    def vote_counts(self, reviewee_id: str, task_ids: list[str]) -> dict[str, tuple[int, int]]:
        if not task_ids:
            return {}
        with self.get_cursor() as cur:
            cur.execute(
                """
                SELECT task_id,
                       COUNT(*) FILTER (WHERE vote_type = %s) AS upvotes,
                       COUNT(*) FILTER (WHERE vote_type = %s) AS downvotes
                FROM peer_reviews
                WHERE reviewee_id = %s AND task_id = ANY(%s)
                GROUP BY task_id
                """,
                (VoteType.UPVOTE.value, VoteType.DOWNVOTE.value, reviewee_id, list(task_ids)),
            )
            rows = cur.fetchall()
        return {row["task_id"]: (int(row["upvotes"]), int(row["downvotes"])) for row in rows}

    def get_user(self, user_id: str) -> User | None:
        with self.get_cursor() as cur:
            cur.execute("SELECT id, token_balance, reputation, stats, version FROM users WHERE id = %s", (user_id,))
            row = cur.fetchone()
        return User.from_dict(row) if row else None

    def get_proficiency(self, user_id: str, course_id: str) -> CourseProficiency | None:
        with self.get_cursor() as cur:
            cur.execute(
                "SELECT * FROM course_proficiency WHERE user_id = %s AND course_id = %s",
                (user_id, course_id),
            )
            row = cur.fetchone()
        return CourseProficiency.from_dict(row) if row else None

    def ledger_entries(self, user_id: str) -> list[LedgerEntry]:
        with self.get_cursor() as cur:
            cur.execute("SELECT * FROM token_ledger WHERE user_id = %s ORDER BY seq", (user_id,))
            rows = cur.fetchall()
        return [LedgerEntry.from_dict(row) for row in rows]

    # -------------------------------------------------------------------------
    # WRITES
    # -------------------------------------------------------------------------

    def commit(self, changeset: Changeset) -> None:
        if changeset.is_empty():
            return

        with self.get_cursor() as cur:
            try:
                # Users first: reviews and ledger rows reference them.
                for user in changeset.users.values():
                    self._write_user(cur, user)
                for prof in changeset.proficiencies.values():
                    self._write_proficiency(cur, prof)
                for review in changeset.reviews.values():
                    self._write_review(cur, review)
                for entry in changeset.ledger_entries:
                    self._insert_entry(cur, entry)
            except psycopg2.errors.UniqueViolation as e:
                constraint = getattr(getattr(e, "diag", None), "constraint_name", None)
                raise ConflictError("Record already exists", {"constraint": constraint}) from e

        for record in (*changeset.users.values(), *changeset.proficiencies.values(), *changeset.reviews.values()):
            record.version += 1
        logger.debug(
            "Committed %d users, %d proficiencies, %d reviews, %d ledger entries",
            len(changeset.users),
            len(changeset.proficiencies),
            len(changeset.reviews),
            len(changeset.ledger_entries),
        )

    @staticmethod
    def _check_updated(cur, kind: str, record_id: str, version: int) -> None:
        if cur.rowcount != 1:
            raise ConflictError(
                f"{kind} {record_id} was modified concurrently",
                {"id": record_id, "expected_version": version},
            )

    def _write_user(self, cur, user: User) -> None:
        if user.version == 0:
            cur.execute(
                """
                INSERT INTO users (id, token_balance, reputation, stats, version)
                VALUES (%s, %s, %s, %s, 1)
                """,
                (user.id, user.token_balance, user.reputation, Json(user.stats.to_dict())),
            )
            return
        cur.execute(
            """
            UPDATE users
            SET token_balance = %s, reputation = %s, stats = %s,
                version = version + 1, updated_at = NOW()
            WHERE id = %s AND version = %s
            """,
            (user.token_balance, user.reputation, Json(user.stats.to_dict()), user.id, user.version),
        )
        self._check_updated(cur, "User", user.id, user.version)

    def _write_proficiency(self, cur, prof: CourseProficiency) -> None:
        values = (
            prof.upvotes_received,
            prof.downvotes_received,
            prof.downvotes_lost,
            prof.downvotes_defended,
            prof.score,
        )
        if prof.version == 0:
            cur.execute(
                """
                INSERT INTO course_proficiency (
                    user_id, course_id, upvotes_received, downvotes_received,
                    downvotes_lost, downvotes_defended, score, version
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, 1)
                """,
                (prof.user_id, prof.course_id, *values),
            )
            return
        cur.execute(
            """
            UPDATE course_proficiency
            SET upvotes_received = %s, downvotes_received = %s, downvotes_lost = %s,
                downvotes_defended = %s, score = %s, version = version + 1
            WHERE user_id = %s AND course_id = %s AND version = %s
            """,
            (*values, prof.user_id, prof.course_id, prof.version),
        )
        self._check_updated(cur, "CourseProficiency", f"{prof.user_id}/{prof.course_id}", prof.version)

    def _write_review(self, cur, review: PeerReview) -> None:
        verdict = Json(review.ai_verdict.to_dict()) if review.ai_verdict else None
        if review.version == 0:
            cur.execute(
                """
                INSERT INTO peer_reviews (
                    id, reviewer_id, reviewee_id, task_id, course_id, submission_ref,
                    vote_type, wager, reason, remark_check, dispute_status, ai_verdict,
                    settled, tokens_transferred, version, created_at, updated_at, settled_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 1, %s, %s, %s)
                """,
                (
                    str(review.id),
                    review.reviewer_id,
                    review.reviewee_id,
                    review.task_id,
                    review.course_id,
                    Json(review.submission_ref.to_dict()),
                    review.vote_type.value,
                    review.wager,
                    review.reason,
                    Json(review.remark_check.to_dict()),
                    review.dispute_status.value,
                    verdict,
                    review.settled,
                    review.tokens_transferred,
                    review.created_at,
                    review.updated_at,
                    review.settled_at,
                ),
            )
            return
        cur.execute(
            """
            UPDATE peer_reviews
            SET vote_type = %s, reason = %s, remark_check = %s, dispute_status = %s,
                ai_verdict = %s, settled = %s, tokens_transferred = %s,
                updated_at = %s, settled_at = %s, version = version + 1
            WHERE id = %s AND version = %s
            """,
            (
                review.vote_type.value,
                review.reason,
                Json(review.remark_check.to_dict()),
                review.dispute_status.value,
                verdict,
                review.settled,
                review.tokens_transferred,
                review.updated_at,
                review.settled_at,
                str(review.id),
                review.version,
            ),
        )
        self._check_updated(cur, "PeerReview", str(review.id), review.version)

    @staticmethod
    def _insert_entry(cur, entry: LedgerEntry) -> None:
        cur.execute(
            """
            INSERT INTO token_ledger (
                id, user_id, task_id, kind, amount, requested_amount, balance_after, note, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                str(entry.id),
                entry.user_id,
                entry.task_id,
                entry.kind.value,
                entry.amount,
                entry.requested_amount,
                entry.balance_after,
                entry.note,
                entry.created_at,
            ),
        )
