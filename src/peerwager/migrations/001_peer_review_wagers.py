"""Migration 001: peer review wager schema.

Creates the user projection, per-course proficiency, peer reviews and the
append-only token ledger. Every mutable table carries a ``version`` column
for optimistic concurrency; the store updates rows with
``WHERE version = %s``.
"""

version = "001"
description = "peer_review_wagers"

# Individual SQL statements executed in order.
# Kept as a tuple of (description, sql) pairs so failures are easy to identify.
_STATEMENTS = [
    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    (
        "create table users",
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            token_balance INTEGER NOT NULL DEFAULT 0 CHECK (token_balance >= 0),
            reputation INTEGER NOT NULL DEFAULT 0 CHECK (reputation >= 0),
            stats JSONB NOT NULL DEFAULT '{}'::jsonb,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """,
    ),
    # ------------------------------------------------------------------
    # Course proficiency
    # ------------------------------------------------------------------
    (
        "create table course_proficiency",
        """
        CREATE TABLE IF NOT EXISTS course_proficiency (
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            course_id TEXT NOT NULL,
            upvotes_received INTEGER NOT NULL DEFAULT 0,
            downvotes_received INTEGER NOT NULL DEFAULT 0,
            downvotes_lost INTEGER NOT NULL DEFAULT 0,
            downvotes_defended INTEGER NOT NULL DEFAULT 0,
            score INTEGER NOT NULL DEFAULT 0 CHECK (score >= 0),
            version INTEGER NOT NULL DEFAULT 1,
            PRIMARY KEY (user_id, course_id)
        )
        """,
    ),
    # ------------------------------------------------------------------
    # Peer reviews
    # ------------------------------------------------------------------
    (
        "create table peer_reviews",
        """
        CREATE TABLE IF NOT EXISTS peer_reviews (
            id UUID PRIMARY KEY,
            reviewer_id TEXT NOT NULL REFERENCES users(id),
            reviewee_id TEXT NOT NULL,
            task_id TEXT NOT NULL,
            course_id TEXT NOT NULL,
            submission_ref JSONB NOT NULL,
            vote_type TEXT NOT NULL DEFAULT 'pending'
                CHECK (vote_type IN ('pending', 'upvote', 'downvote')),
            wager INTEGER NOT NULL CHECK (wager >= 1),
            reason TEXT NOT NULL DEFAULT '',
            remark_check JSONB NOT NULL DEFAULT '{"status": "unchecked"}'::jsonb,
            dispute_status TEXT NOT NULL DEFAULT 'none'
                CHECK (dispute_status IN (
                    'none', 'pending_response', 'remark_rejected', 'agreed',
                    'ai_reviewing', 'resolved_downvoter_wins', 'resolved_reviewee_wins'
                )),
            ai_verdict JSONB,
            settled BOOLEAN NOT NULL DEFAULT FALSE,
            tokens_transferred INTEGER NOT NULL DEFAULT 0,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            settled_at TIMESTAMPTZ,
            CONSTRAINT peer_reviews_not_self CHECK (reviewer_id <> reviewee_id),
            CONSTRAINT peer_reviews_reviewer_task_key UNIQUE (reviewer_id, task_id)
        )
        """,
    ),
    (
        "index peer_reviews by reviewer",
        "CREATE INDEX IF NOT EXISTS idx_peer_reviews_reviewer ON peer_reviews (reviewer_id, created_at DESC)",
    ),
    (
        "index peer_reviews by reviewee",
        "CREATE INDEX IF NOT EXISTS idx_peer_reviews_reviewee ON peer_reviews (reviewee_id, created_at DESC)",
    ),
    (
        "index peer_reviews by dispute status",
        "CREATE INDEX IF NOT EXISTS idx_peer_reviews_dispute ON peer_reviews (reviewee_id, dispute_status)",
    ),
    # ------------------------------------------------------------------
    # Token ledger (append-only)
    # ------------------------------------------------------------------
    (
        "create table token_ledger",
        """
        CREATE TABLE IF NOT EXISTS token_ledger (
            seq BIGSERIAL UNIQUE,
            id UUID PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id),
            task_id TEXT,
            kind TEXT NOT NULL CHECK (kind IN (
                'initial_grant', 'stake', 'reward', 'penalty', 'bonus',
                'peer_wager', 'peer_reward', 'peer_penalty'
            )),
            amount INTEGER NOT NULL,
            requested_amount INTEGER NOT NULL,
            balance_after INTEGER NOT NULL CHECK (balance_after >= 0),
            note TEXT NOT NULL DEFAULT '',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """,
    ),
    (
        "index token_ledger by user",
        "CREATE INDEX IF NOT EXISTS idx_token_ledger_user ON token_ledger (user_id, seq)",
    ),
    (
        "forbid token_ledger updates",
        """
        CREATE OR REPLACE RULE token_ledger_no_update AS
            ON UPDATE TO token_ledger DO INSTEAD NOTHING
        """,
    ),
    (
        "forbid token_ledger deletes",
        """
        CREATE OR REPLACE RULE token_ledger_no_delete AS
            ON DELETE TO token_ledger DO INSTEAD NOTHING
        """,
    ),
]


def up(conn) -> None:
    """Apply the peer review wager schema."""
    cur = conn.cursor()
    try:
        for description, sql in _STATEMENTS:
            try:
                cur.execute(sql)
            except Exception as exc:
                raise RuntimeError(f"Migration 001 step '{description}' failed: {exc}") from exc
    finally:
        cur.close()


def down(conn) -> None:
    """Drop the peer review wager schema. Destroys all ledger history."""
    cur = conn.cursor()
    try:
        cur.execute("DROP TABLE IF EXISTS token_ledger CASCADE")
        cur.execute("DROP TABLE IF EXISTS peer_reviews CASCADE")
        cur.execute("DROP TABLE IF EXISTS course_proficiency CASCADE")
        cur.execute("DROP TABLE IF EXISTS users CASCADE")
    finally:
        cur.close()
