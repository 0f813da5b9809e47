"""PeerWager Core - Review state machine, ledger and scoring."""

from .collaborators import (
    InMemorySubmissionLookup,
    InMemoryTaskCatalog,
    Submission,
    SubmissionLookup,
    TaskCatalog,
    TaskInfo,
)
from .config import EngineSettings, clear_settings, get_settings, set_settings
from .exceptions import (
    ConfigException,
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    OracleContractError,
    OracleUnavailableError,
    PeerWagerException,
    ValidationException,
)
from .ledger import ChainReport, TokenLedger, clamp_to_zero, verify_chain
from .logging import configure_logging, get_logger
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
    UserStats,
    VoteType,
)
from .reputation import (
    apply_reputation_penalty,
    compute_proficiency_score,
    compute_reputation,
    recalculate_proficiency,
    recalculate_reputation,
    reputation_penalty,
)
from .review_engine import (
    PeerReviewEngine,
    ReceivedReviews,
    RespondResult,
    SolutionView,
    UnlockResult,
    VoteResult,
)
from .store import Changeset, InMemoryReviewStore, ReviewStore

__all__ = [
    # Collaborators
    "InMemorySubmissionLookup",
    "InMemoryTaskCatalog",
    "Submission",
    "SubmissionLookup",
    "TaskCatalog",
    "TaskInfo",
    # Config
    "EngineSettings",
    "clear_settings",
    "get_settings",
    "set_settings",
    # Exceptions
    "ConfigException",
    "ConflictError",
    "InsufficientFundsError",
    "NotFoundError",
    "OracleContractError",
    "OracleUnavailableError",
    "PeerWagerException",
    "ValidationException",
    # Ledger
    "ChainReport",
    "TokenLedger",
    "clamp_to_zero",
    "verify_chain",
    # Logging
    "configure_logging",
    "get_logger",
    # Models
    "AIVerdict",
    "CourseProficiency",
    "Decision",
    "DisputeStatus",
    "LedgerEntry",
    "LedgerKind",
    "PeerReview",
    "RemarkCheck",
    "RemarkStatus",
    "RespondAction",
    "SubmissionRef",
    "User",
    "UserStats",
    "VoteType",
    # Reputation
    "apply_reputation_penalty",
    "compute_proficiency_score",
    "compute_reputation",
    "recalculate_proficiency",
    "recalculate_reputation",
    "reputation_penalty",
    # Engine
    "PeerReviewEngine",
    "ReceivedReviews",
    "RespondResult",
    "SolutionView",
    "UnlockResult",
    "VoteResult",
    # Store
    "Changeset",
    "InMemoryReviewStore",
    "ReviewStore",
]
