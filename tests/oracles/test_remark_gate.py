"""Tests for the remark quality gate.

Tests cover:
- pass / reject classification
- Pass-by-default on timeout, transport errors and malformed output
- Prompt contents
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from peerwager.core.exceptions import OracleUnavailableError
from peerwager.oracles.remark_gate import RemarkQualityGate, RemarkVerdictKind, build_remark_prompt

CONTEXT = {"task_title": "Linked Lists", "task_topic": "Data Structures", "course_name": "CS 101"}


def _gate(**generate_kwargs) -> tuple[RemarkQualityGate, MagicMock]:
    client = MagicMock()
    client.generate = AsyncMock(**generate_kwargs)
    return RemarkQualityGate(client, timeout_seconds=0.1), client


class TestClassification:
    @pytest.mark.asyncio
    async def test_pass(self):
        gate, client = _gate(return_value=json.dumps({"verdict": "pass", "reasoning": "Specific critique."}))

        verdict = await gate.check("The base case is missing for n = 0.", CONTEXT)

        assert verdict.passed
        assert verdict.fallback is False
        assert verdict.reasoning == "Specific critique."
        assert client.generate.call_args.kwargs["tag"] == "RemarkCheck"

    @pytest.mark.asyncio
    async def test_reject_is_case_insensitive(self):
        gate, _ = _gate(return_value='```json\n{"verdict": " REJECT ", "reasoning": "Profanity."}\n```')

        verdict = await gate.check("you are an idiot lol", CONTEXT)

        assert verdict.verdict == RemarkVerdictKind.REJECT
        assert not verdict.passed
        assert verdict.to_dict() == {"verdict": "reject", "reasoning": "Profanity.", "fallback": False}

    @pytest.mark.asyncio
    async def test_missing_reasoning(self):
        gate, _ = _gate(return_value='{"verdict": "pass"}')

        verdict = await gate.check("The base case is missing.", CONTEXT)

        assert verdict.reasoning == ""


class TestFallback:
    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow(*args, **kwargs):
            await asyncio.sleep(5)

        gate, _ = _gate(side_effect=slow)

        verdict = await gate.check("The base case is missing.", CONTEXT)

        assert verdict.passed
        assert verdict.fallback is True
        assert "timed out" in verdict.reasoning

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "generate_kwargs",
        [
            {"side_effect": OracleUnavailableError("quota")},
            {"side_effect": ConnectionResetError("reset")},
            {"return_value": "I think it is fine"},
            {"return_value": '{"verdict": "maybe"}'},
            {"return_value": '{"verdict": 1}'},
        ],
    )
    async def test_failures_default_to_pass(self, generate_kwargs):
        gate, _ = _gate(**generate_kwargs)

        verdict = await gate.check("The base case is missing.", CONTEXT)

        assert verdict.passed
        assert verdict.fallback is True
        assert verdict.reasoning == "AI check failed; defaulting to pass."


class TestPrompt:
    def test_includes_remark_and_context(self):
        prompt = build_remark_prompt("Wrong loop bound.", CONTEXT)

        assert '"Wrong loop bound."' in prompt
        assert "Linked Lists" in prompt
        assert "CS 101" in prompt
        assert '"verdict": "pass" or "reject"' in prompt

    def test_missing_context_keys(self):
        assert "Course: unknown" in build_remark_prompt("x", {})


class TestTimeoutSetting:
    def test_explicit_zero_is_kept(self):
        assert RemarkQualityGate(MagicMock(), timeout_seconds=0).timeout_seconds == 0

    def test_defaults_to_settings(self, engine_settings):
        assert RemarkQualityGate(MagicMock()).timeout_seconds == engine_settings.oracle_timeout_seconds
