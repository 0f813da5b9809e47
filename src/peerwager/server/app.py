"""Starlette HTTP API for the peer review engine.

Caller identity comes from the ``X-User-Id`` header set by the
authentication layer in front of this service. Engine exceptions map to
status codes in one place (``_error_response``); oracle failures never
reach this layer because the engine converts them into default verdicts.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .. import __version__
from ..core.config import EngineSettings, get_settings
from ..core.exceptions import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    PeerWagerException,
    ValidationException,
)
from ..core.review_engine import PeerReviewEngine
from .rate_limit import RateLimiter, rate_limit_response

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"

_STATUS_CODES: list[tuple[type[PeerWagerException], int]] = [
    (ValidationException, 400),
    (InsufficientFundsError, 402),
    (NotFoundError, 404),
    (ConflictError, 409),
]


def _error_response(exc: PeerWagerException) -> JSONResponse:
    for exc_type, status in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return JSONResponse(exc.to_dict(), status_code=status)
    logger.error("Unhandled engine error: %s", exc.message)
    return JSONResponse(exc.to_dict(), status_code=500)


class _Unauthenticated(Exception):
    pass


class ReviewAPI:
    """HTTP handlers bound to one engine instance."""

    def __init__(self, engine: PeerReviewEngine, settings: EngineSettings | None = None) -> None:
        self.engine = engine
        self.settings = settings or engine.settings or get_settings()
        self.limiter = RateLimiter(self.settings.rate_limit_rpm)
        self.app = Starlette(
            routes=[
                Route("/health", self._health, methods=["GET"]),
                Route("/reviews/unlock", self._unlock, methods=["POST"]),
                Route("/reviews/given", self._reviews_given, methods=["GET"]),
                Route("/reviews/received", self._reviews_received, methods=["GET"]),
                Route("/reviews/accomplished/{user_id}", self._accomplished, methods=["GET"]),
                Route("/reviews/{review_id}", self._get_review, methods=["GET"]),
                Route("/reviews/{review_id}/vote", self._vote, methods=["POST"]),
                Route("/reviews/{review_id}/respond", self._respond, methods=["POST"]),
                Route("/solutions/{task_id}/{user_id}", self._view_solution, methods=["GET"]),
                Route("/ledger", self._ledger, methods=["GET"]),
            ],
            exception_handlers={
                PeerWagerException: self._on_engine_error,
                _Unauthenticated: self._on_unauthenticated,
            },
        )
        self.app.state.engine = engine

    # -------------------------------------------------------------------------
    # PLUMBING
    # -------------------------------------------------------------------------

    async def _on_engine_error(self, request: Request, exc: Exception) -> JSONResponse:
        return _error_response(exc)  # type: ignore[arg-type]

    async def _on_unauthenticated(self, request: Request, exc: Exception) -> JSONResponse:
        logger.warning(
            "Rejected %s %s from %s: no caller identity",
            request.method,
            request.url.path,
            request.client.host if request.client else "unknown",
        )
        return JSONResponse(
            {"error": "Unauthorized", "message": f"Missing {USER_HEADER} header", "details": {}},
            status_code=401,
        )

    @staticmethod
    def _caller(request: Request) -> str:
        user_id = request.headers.get(USER_HEADER, "").strip()
        if not user_id:
            raise _Unauthenticated()
        return user_id

    @staticmethod
    async def _json_body(request: Request) -> dict[str, Any]:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ValidationException("Invalid JSON body") from None
        if not isinstance(body, dict):
            raise ValidationException("Request body must be a JSON object")
        return body

    @staticmethod
    def _required(body: dict[str, Any], name: str) -> Any:
        value = body.get(name)
        if value is None or value == "":
            raise ValidationException(f"Missing required field: {name}", field=name)
        return value

    @staticmethod
    def _limit(request: Request) -> int | None:
        raw = request.query_params.get("limit")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            raise ValidationException("limit must be an integer", field="limit", value=raw) from None

    def _rate_limited(self, user_id: str, endpoint: str) -> JSONResponse | None:
        result = self.limiter.check(user_id, endpoint)
        if not result.allowed:
            logger.warning("Rate limit exceeded for %s on %s", user_id, endpoint)
            return rate_limit_response(result)
        return None

    # -------------------------------------------------------------------------
    # WRITE ENDPOINTS
    # -------------------------------------------------------------------------

    async def _unlock(self, request: Request) -> JSONResponse:
        user_id = self._caller(request)
        if (limited := self._rate_limited(user_id, "unlock")) is not None:
            return limited
        body = await self._json_body(request)
        result = await self.engine.unlock(
            reviewer_id=user_id,
            task_id=str(self._required(body, "task_id")),
            reviewee_id=str(self._required(body, "reviewee_id")),
            wager=self._required(body, "wager"),
        )
        return JSONResponse(result.to_dict(), status_code=201)

    async def _vote(self, request: Request) -> JSONResponse:
        user_id = self._caller(request)
        if (limited := self._rate_limited(user_id, "vote")) is not None:
            return limited
        body = await self._json_body(request)
        result = await self.engine.cast_vote(
            review_id=request.path_params["review_id"],
            reviewer_id=user_id,
            vote_type=self._required(body, "type"),
            reason=body.get("reason"),
        )
        return JSONResponse(result.to_dict())

    async def _respond(self, request: Request) -> JSONResponse:
        user_id = self._caller(request)
        if (limited := self._rate_limited(user_id, "respond")) is not None:
            return limited
        body = await self._json_body(request)
        result = await self.engine.respond_to_downvote(
            review_id=request.path_params["review_id"],
            reviewee_id=user_id,
            action=self._required(body, "action"),
        )
        return JSONResponse(result.to_dict())

    # -------------------------------------------------------------------------
    # READ ENDPOINTS
    # -------------------------------------------------------------------------

    async def _health(self, request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "version": __version__})

    async def _get_review(self, request: Request) -> JSONResponse:
        user_id = self._caller(request)
        review = await self.engine.get_review(request.path_params["review_id"])
        if user_id not in (review.reviewer_id, review.reviewee_id):
            raise ConflictError("Not a party to this review", {"review_id": str(review.id)})
        return JSONResponse(review.to_dict())

    async def _reviews_given(self, request: Request) -> JSONResponse:
        user_id = self._caller(request)
        reviews = await self.engine.list_reviews_given(user_id, limit=self._limit(request))
        return JSONResponse({"count": len(reviews), "reviews": [r.to_dict() for r in reviews]})

    async def _reviews_received(self, request: Request) -> JSONResponse:
        user_id = self._caller(request)
        received = await self.engine.list_reviews_received(user_id, limit=self._limit(request))
        return JSONResponse(received.to_dict())

    async def _accomplished(self, request: Request) -> JSONResponse:
        self._caller(request)
        tasks = await self.engine.accomplished_tasks(request.path_params["user_id"], limit=self._limit(request))
        return JSONResponse({"count": len(tasks), "tasks": [t.to_dict() for t in tasks]})

    async def _view_solution(self, request: Request) -> JSONResponse:
        user_id = self._caller(request)
        view = await self.engine.view_solution(
            viewer_id=user_id,
            task_id=request.path_params["task_id"],
            reviewee_id=request.path_params["user_id"],
        )
        return JSONResponse(view.to_dict())

    async def _ledger(self, request: Request) -> JSONResponse:
        user_id = self._caller(request)
        report = await self.engine.audit_ledger(user_id)
        entries = await self.engine.ledger_history(user_id)
        return JSONResponse(
            {
                "balance": report.cached_balance,
                "entries": [e.to_dict() for e in entries],
                "audit": report.to_dict(),
            }
        )


def create_app(engine: PeerReviewEngine, settings: EngineSettings | None = None) -> Starlette:
    """Build the Starlette application for an engine."""
    return ReviewAPI(engine, settings).app
