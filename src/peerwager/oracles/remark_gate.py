"""Remark quality gate for downvotes.

Before a downvote can start a dispute, its remark is classified by the
moderation oracle as academic critique (``pass``) or spam/abuse
(``reject``). The gate writes no state.

Any failure (timeout, transport error, unparseable or out-of-contract
answer) yields ``pass`` with a reasoning string naming the fallback, so a
legitimate downvote is never discarded because the oracle was down.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..core.config import get_settings
from ..core.exceptions import OracleUnavailableError
from .client import OracleClient, parse_json_response

logger = logging.getLogger(__name__)


class RemarkVerdictKind(StrEnum):
    PASS = "pass"
    REJECT = "reject"


@dataclass
class RemarkVerdict:
    verdict: RemarkVerdictKind
    reasoning: str
    fallback: bool = False

    @property
    def passed(self) -> bool:
        return self.verdict == RemarkVerdictKind.PASS

    def to_dict(self) -> dict[str, Any]:
        return {"verdict": self.verdict.value, "reasoning": self.reasoning, "fallback": self.fallback}


def build_remark_prompt(remark: str, context: dict[str, str]) -> str:
    return f"""You are a moderator for a university peer review board.

CONTEXT:
- Course: {context.get("course_name", "unknown")}
- Topic: {context.get("task_topic", "unknown")}
- Task: {context.get("task_title", "unknown")}

A student left this remark when downvoting a classmate's written solution:
"{remark}"

YOUR TASK:
Decide whether the remark is a genuine academic critique of the solution
(even if short, harsh or mistaken) or spam, profanity, harassment or
content unrelated to the task.

RULES:
- Disagreeing with the solution is allowed. Only reject abuse or noise.
- Do not judge whether the critique is correct.

Output ONLY a JSON object:
{{
  "verdict": "pass" or "reject",
  "reasoning": "one sentence explanation"
}}"""


class RemarkQualityGate:
    """Moderation oracle adapter with a pass-by-default policy."""

    def __init__(self, client: OracleClient, timeout_seconds: float | None = None) -> None:
        self._client = client
        if timeout_seconds is None:
            timeout_seconds = get_settings().oracle_timeout_seconds
        self.timeout_seconds = timeout_seconds

    async def check(self, remark: str, context: dict[str, str]) -> RemarkVerdict:
        """Classify a downvote remark.

        Args:
            remark: The downvote reason, already trimmed.
            context: Task context (``task_title``, ``task_topic``, ``course_name``).

        Returns:
            RemarkVerdict; never raises for oracle problems.
        """
        prompt = build_remark_prompt(remark, context)
        try:
            raw = await asyncio.wait_for(
                self._client.generate(prompt, tag="RemarkCheck"),
                timeout=self.timeout_seconds,
            )
            data = parse_json_response(raw)
            return self._validate(data)
        except asyncio.TimeoutError:
            logger.warning("Remark check timed out after %.1fs, defaulting to pass", self.timeout_seconds)
            return self._fallback("Remark check timed out; defaulting to pass.")
        except OracleUnavailableError as e:
            logger.warning("Remark check failed (%s), defaulting to pass", e.message)
            return self._fallback("AI check failed; defaulting to pass.")
        except Exception as e:
            # Client implementations outside this package may raise anything.
            logger.warning("Remark check client error (%s), defaulting to pass", e)
            return self._fallback("AI check failed; defaulting to pass.")

    @staticmethod
    def _validate(data: dict[str, Any]) -> RemarkVerdict:
        raw_verdict = data.get("verdict")
        if not isinstance(raw_verdict, str) or raw_verdict.strip().lower() not in ("pass", "reject"):
            raise OracleUnavailableError(f"Invalid remark verdict: {raw_verdict!r}")
        reasoning = data.get("reasoning")
        return RemarkVerdict(
            verdict=RemarkVerdictKind(raw_verdict.strip().lower()),
            reasoning=reasoning if isinstance(reasoning, str) else "",
        )

    @staticmethod
    def _fallback(reasoning: str) -> RemarkVerdict:
        return RemarkVerdict(verdict=RemarkVerdictKind.PASS, reasoning=reasoning, fallback=True)
