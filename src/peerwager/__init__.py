"""PeerWager - Peer review wagers and dispute resolution.

PeerWager provides:
- Wager-gated unlocking of classmates' submitted solutions
- Upvote / downvote with an AI remark quality gate
- Dispute settlement through AI arbitration
- An append-only token ledger with reputation and course proficiency
- A Starlette HTTP API and an admin CLI
"""

__version__ = "1.0.0"

from . import (
    core as core,
)
from . import (
    oracles as oracles,
)
