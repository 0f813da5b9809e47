"""PeerWager exception hierarchy.

Every error carries a message and a details dict so the HTTP layer can
serialize it without knowing the concrete type.
"""

from __future__ import annotations

from typing import Any


class PeerWagerException(Exception):
    """Base exception for all PeerWager errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(PeerWagerException):
    """Malformed argument (wager, reason, action, vote type)."""

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details: dict[str, Any] = {}
        if field is not None:
            details["field"] = field
        if value is not None:
            details["value"] = value
        self.field = field
        self.value = value
        super().__init__(message, details)


class NotFoundError(PeerWagerException):
    """A review, submission, task or user does not exist."""

    def __init__(self, resource_type: str, resource_id: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            {"resource_type": resource_type, "resource_id": resource_id},
        )


class ConflictError(PeerWagerException):
    """Duplicate review, wrong state for a transition, or caller does not own the record."""


class InsufficientFundsError(PeerWagerException):
    """Token balance is below the requested wager."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient tokens. Need {required}, have {available}",
            {"required": required, "available": available},
        )


class OracleUnavailableError(PeerWagerException):
    """An external oracle failed, timed out or returned unusable output.

    Internal only: the review engine always converts this into a default
    verdict and never surfaces it to callers.
    """


class OracleContractError(OracleUnavailableError):
    """The oracle answered, but outside its declared contract."""


class ConfigException(PeerWagerException):
    """Invalid configuration value."""
