"""Token ledger: append-only balance history with a cached balance.

Every balance change goes through ``TokenLedger.record``, which computes the
applied delta, updates the user's cached balance and stages the entry in the
caller's changeset. Nothing is written until the changeset commits, so the
entry and the balance land together or not at all.

Deductions are never rejected here. A debit larger than the available
balance is truncated by the ``clamp_to_zero`` policy and the entry records
both the requested and the applied delta. This means penalties are not
strictly conservative: a user with 3 tokens who owes 10 loses 3.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from .models import LedgerEntry, LedgerKind, User
from .store import Changeset

logger = logging.getLogger(__name__)


def clamp_to_zero(balance: int, amount: int) -> int:
    """Return the delta that can be applied without taking ``balance`` below zero."""
    if balance + amount < 0:
        return -balance
    return amount


@dataclass
class ChainReport:
    """Result of auditing one user's ledger against the cached balance."""

    user_id: str
    entries: int
    ledger_balance: int
    cached_balance: int
    broken_at: list[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.broken_at and self.ledger_balance == self.cached_balance

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "entries": self.entries,
            "ledger_balance": self.ledger_balance,
            "cached_balance": self.cached_balance,
            "broken_at": list(self.broken_at),
            "consistent": self.consistent,
        }


def verify_chain(user_id: str, entries: Iterable[LedgerEntry], cached_balance: int) -> ChainReport:
    """Check ``balance_after[n] == balance_after[n-1] + amount[n]`` for every entry.

    Args:
        user_id: Owner of the entries.
        entries: Ledger entries in creation order.
        cached_balance: The balance stored on the user record.

    Returns:
        ChainReport listing the indices where the running sum breaks.
    """
    running = 0
    broken: list[int] = []
    count = 0
    for index, entry in enumerate(entries):
        count += 1
        running += entry.amount
        if entry.balance_after != running or entry.balance_after < 0:
            broken.append(index)
            running = entry.balance_after
    return ChainReport(
        user_id=user_id,
        entries=count,
        ledger_balance=running,
        cached_balance=cached_balance,
        broken_at=broken,
    )


class TokenLedger:
    """Stages balance changes into a changeset."""

    def open_account(self, changeset: Changeset, user_id: str, initial_balance: int) -> User:
        """Create a user whose first ledger entry is the initial grant."""
        user = User(id=user_id)
        changeset.touch_user(user)
        self.record(
            changeset,
            user,
            task_id=None,
            kind=LedgerKind.INITIAL_GRANT,
            amount=initial_balance,
            note=f"Initial grant: {initial_balance} tokens",
        )
        return user

    def record(
        self,
        changeset: Changeset,
        user: User,
        task_id: str | None,
        kind: LedgerKind,
        amount: int,
        note: str = "",
    ) -> LedgerEntry:
        """Apply ``amount`` to the user's cached balance and stage the entry.

        Args:
            changeset: The transition's pending writes.
            user: User record loaded inside the transition (mutated in place).
            task_id: Related task, if any.
            kind: Ledger event kind.
            amount: Signed delta requested. Zero is allowed (audit-only entry).
            note: Human-readable description.

        Returns:
            The staged LedgerEntry.
        """
        applied = clamp_to_zero(user.token_balance, amount)
        if applied != amount:
            logger.info(
                "Clamped %s for %s: requested %d, applied %d (balance %d)",
                kind,
                user.id,
                amount,
                applied,
                user.token_balance,
            )
        user.token_balance += applied

        entry = LedgerEntry(
            user_id=user.id,
            task_id=task_id,
            kind=kind,
            amount=applied,
            requested_amount=amount,
            balance_after=user.token_balance,
            note=note,
        )
        changeset.ledger_entries.append(entry)
        changeset.touch_user(user)
        return entry
