"""Shared fixtures for PeerWager tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from peerwager.core.collaborators import InMemorySubmissionLookup, InMemoryTaskCatalog, Submission, TaskInfo
from peerwager.core.config import EngineSettings, clear_settings, set_settings
from peerwager.core.ledger import TokenLedger
from peerwager.core.models import User
from peerwager.core.reputation import recalculate_reputation
from peerwager.core.review_engine import PeerReviewEngine
from peerwager.core.store import Changeset, InMemoryReviewStore
from peerwager.oracles.arbitrator import DisputeArbitrator
from peerwager.oracles.remark_gate import RemarkQualityGate

ORACLE_TIMEOUT = 0.2


def oracle_reply(**payload) -> str:
    """Model output wrapping ``payload`` in a markdown fence, as models tend to."""
    return f"```json\n{json.dumps(payload)}\n```"


@pytest.fixture(autouse=True)
def engine_settings() -> EngineSettings:
    """Process-wide settings that never read the environment."""
    settings = EngineSettings(oracle_timeout_seconds=ORACLE_TIMEOUT, oracle_api_key="test-key")
    set_settings(settings)
    yield settings
    clear_settings()


@pytest.fixture
def store() -> InMemoryReviewStore:
    return InMemoryReviewStore()


@pytest.fixture
def make_user(store: InMemoryReviewStore) -> Callable[..., User]:
    """Open an account directly in the store, optionally with prior stats."""

    def _make(user_id: str, balance: int = 100, **stats: int) -> User:
        changeset = Changeset()
        user = TokenLedger().open_account(changeset, user_id, balance)
        for name, value in stats.items():
            setattr(user.stats, name, value)
        recalculate_reputation(user)
        store.commit(changeset)
        return store.get_user(user_id)

    return _make


@pytest.fixture
def task() -> TaskInfo:
    return TaskInfo(
        task_id="task-1",
        title="Linked Lists",
        topic="Data Structures",
        course_id="cs101",
        token_stake=8,
        reward=12,
        course_name="Intro to Computer Science",
    )


@pytest.fixture
def tasks(task: TaskInfo) -> InMemoryTaskCatalog:
    catalog = InMemoryTaskCatalog()
    catalog.add(task)
    return catalog


@pytest.fixture
def submissions() -> InMemorySubmissionLookup:
    lookup = InMemorySubmissionLookup()
    lookup.add(
        "bob",
        "task-1",
        Submission(
            attempt_id="attempt-bob-1",
            artifact_ref="uploads/bob/task-1.pdf",
            questions=[
                "Explain how to reverse a singly linked list in place.",
                "Compare arrays and linked lists for random access.",
            ],
            artifact_name="linked-lists.pdf",
        ),
    )
    return lookup


@pytest.fixture
def gate_client() -> MagicMock:
    """Moderation oracle client that passes every remark."""
    client = MagicMock()
    client.generate = AsyncMock(return_value=oracle_reply(verdict="pass", reasoning="Specific academic critique."))
    return client


@pytest.fixture
def judge_client() -> MagicMock:
    """Judgment oracle client that sides with the reviewee."""
    client = MagicMock()
    client.generate = AsyncMock(
        return_value=oracle_reply(
            decision="reviewee_correct",
            reasoning="The reversal is correct.",
            confidence=0.8,
        )
    )
    return client


@pytest.fixture
def engine(
    store: InMemoryReviewStore,
    submissions: InMemorySubmissionLookup,
    tasks: InMemoryTaskCatalog,
    gate_client: MagicMock,
    judge_client: MagicMock,
    engine_settings: EngineSettings,
) -> PeerReviewEngine:
    return PeerReviewEngine(
        store=store,
        submissions=submissions,
        tasks=tasks,
        remark_gate=RemarkQualityGate(gate_client, timeout_seconds=ORACLE_TIMEOUT),
        arbitrator=DisputeArbitrator(judge_client, timeout_seconds=ORACLE_TIMEOUT),
        settings=engine_settings,
    )
