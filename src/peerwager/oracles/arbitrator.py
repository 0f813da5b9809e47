"""Dispute arbitration through the judgment oracle.

When a reviewee disagrees with a downvote, the oracle is shown the theory
questions, a reference to the submitted solution and the downvoter's
remark, and decides who is right.

The arbitrator validates the answer strictly: a decision outside
``downvoter_correct | reviewee_correct`` raises ``OracleContractError``
rather than being coerced. A confidence outside ``[0, 1]`` is replaced
with 0.5. The arbitrator never picks a default verdict itself; the review
engine owns the benefit-of-doubt policy.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ..core import defaults
from ..core.config import get_settings
from ..core.exceptions import OracleContractError, OracleUnavailableError
from ..core.models import Decision, SubmissionRef
from .client import OracleClient, parse_json_response

logger = logging.getLogger(__name__)


@dataclass
class ArbitrationVerdict:
    decision: Decision
    reasoning: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.value,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
        }


def build_arbitration_prompt(
    questions: list[str],
    submission_ref: SubmissionRef,
    downvote_reason: str,
    context: dict[str, str],
) -> str:
    questions_block = "\n".join(f"Q{i + 1}: {q}" for i, q in enumerate(questions)) or "(no questions recorded)"
    return f"""You are an impartial academic judge resolving a peer review dispute.

CONTEXT:
- Course: {context.get("course_name", "unknown")}
- Topic: {context.get("task_topic", "unknown")}
- Task: {context.get("task_title", "unknown")}

THEORY QUESTIONS THAT WERE ASKED:
{questions_block}

STUDENT'S SOLUTIONS:
The student submitted their solutions as a document located at: {submission_ref.artifact_ref}
(Assume the solutions cover the above questions as written work.)

DOWNVOTER'S COMPLAINT:
"{downvote_reason}"

YOUR TASK:
1. Analyze whether the downvoter's complaint is legitimate and well-founded.
2. Consider whether the complaint points to genuine errors, insufficient answers, or incorrect solutions.
3. Consider whether the complaint is trivial, unfounded, or malicious.

RULES:
- Be fair. A student should not lose tokens for minor formatting issues.
- The complaint must identify a SUBSTANTIVE error in the solutions.
- Vague complaints without specifics should favor the student.
- Specific, accurate critiques of wrong methods or answers favor the downvoter.

Output ONLY a JSON object:
{{
  "decision": "downvoter_correct" or "reviewee_correct",
  "reasoning": "2-3 sentence explanation of your judgment",
  "confidence": 0.0 to 1.0
}}"""


def validate_verdict(data: dict[str, Any]) -> ArbitrationVerdict:
    """Check an oracle answer against the arbitration contract.

    Raises:
        OracleContractError: If ``decision`` is missing or not a known value.
    """
    raw_decision = data.get("decision")
    try:
        decision = Decision(raw_decision)
    except ValueError:
        raise OracleContractError(f"Invalid AI decision: {raw_decision!r}", {"decision": raw_decision}) from None

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, int | float) or not 0.0 <= confidence <= 1.0:
        logger.debug("Confidence %r outside [0, 1], using %.1f", confidence, defaults.FALLBACK_CONFIDENCE)
        confidence = defaults.FALLBACK_CONFIDENCE

    reasoning = data.get("reasoning")
    return ArbitrationVerdict(
        decision=decision,
        reasoning=reasoning if isinstance(reasoning, str) else "",
        confidence=float(confidence),
    )


class DisputeArbitrator:
    """Judgment oracle adapter."""

    def __init__(self, client: OracleClient, timeout_seconds: float | None = None) -> None:
        self._client = client
        if timeout_seconds is None:
            timeout_seconds = get_settings().oracle_timeout_seconds
        self.timeout_seconds = timeout_seconds

    async def arbitrate(
        self,
        questions: list[str],
        submission_ref: SubmissionRef,
        downvote_reason: str,
        context: dict[str, str],
    ) -> ArbitrationVerdict:
        """Ask the oracle who is right.

        Raises:
            OracleUnavailableError: Timeout, transport failure or malformed JSON.
            OracleContractError: The decision is not one of the two allowed values.
        """
        prompt = build_arbitration_prompt(questions, submission_ref, downvote_reason, context)
        try:
            raw = await asyncio.wait_for(
                self._client.generate(prompt, tag="Arbitration"),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise OracleUnavailableError(f"Arbitration timed out after {self.timeout_seconds:.1f}s") from e

        verdict = validate_verdict(parse_json_response(raw))
        logger.info("Arbitration decided %s (confidence %.2f)", verdict.decision, verdict.confidence)
        return verdict
