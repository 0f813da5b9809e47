"""Persistent storage backends."""

from .postgres import PostgresReviewStore

__all__ = ["PostgresReviewStore"]
