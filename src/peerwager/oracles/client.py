"""HTTP client for the generative-language oracle.

Both oracles (remark moderation and dispute arbitration) send a prompt and
expect a JSON object back. The client walks a cascade of models: a quota
error (HTTP 429) on one model falls through to the next, any other failure
is raised immediately as ``OracleUnavailableError``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Protocol

import aiohttp

from ..core.config import EngineSettings, get_settings
from ..core.exceptions import OracleUnavailableError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class OracleClient(Protocol):
    """Anything that turns a prompt into model text."""

    async def generate(self, prompt: str, tag: str = "oracle") -> str:
        ...


def parse_json_response(raw: str) -> dict[str, Any]:
    """Extract the JSON object from model output.

    Models often wrap JSON in markdown fences or add a sentence around it;
    both are tolerated. Anything that still isn't a JSON object raises
    ``OracleUnavailableError``.
    """
    if not raw or not raw.strip():
        raise OracleUnavailableError("Oracle returned an empty response")

    text = _FENCE_RE.sub("", raw.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise OracleUnavailableError("Oracle response is not JSON", {"raw": raw[:200]}) from None
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError as e:
            raise OracleUnavailableError(f"Oracle response is not JSON: {e}", {"raw": raw[:200]}) from e

    if not isinstance(data, dict):
        raise OracleUnavailableError("Oracle response is not a JSON object", {"raw": raw[:200]})
    return data


class GeminiOracleClient:
    """Oracle client for the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        models: list[str] | None = None,
        base_url: str | None = None,
        request_timeout: float | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.api_key = api_key if api_key is not None else settings.oracle_api_key
        self.models = list(models or settings.oracle_models)
        self.base_url = (base_url or settings.oracle_base_url).rstrip("/")
        self.request_timeout = request_timeout or settings.oracle_timeout_seconds
        self._stats = {"requests": 0, "quota_fallbacks": 0, "failures": 0}

    def get_stats(self) -> dict[str, int]:
        return dict(self._stats)

    async def generate(self, prompt: str, tag: str = "oracle") -> str:
        """Send ``prompt`` through the model cascade and return the response text.

        Raises:
            OracleUnavailableError: Transport error, timeout, non-429 HTTP error,
                unexpected response shape, or every model quota-limited.
        """
        if not self.api_key:
            raise OracleUnavailableError("No oracle API key configured")

        last_error = ""
        for model in self.models:
            self._stats["requests"] += 1
            try:
                status, body = await self._post(model, prompt)
            except aiohttp.ClientError as e:
                self._stats["failures"] += 1
                raise OracleUnavailableError(f"{tag}: connection error: {e}") from e
            except asyncio.TimeoutError as e:
                self._stats["failures"] += 1
                raise OracleUnavailableError(f"{tag}: request timeout") from e

            if status == 429:
                self._stats["quota_fallbacks"] += 1
                last_error = f"{model} quota exceeded"
                logger.warning("%s: %s, falling back to next model", tag, last_error)
                continue
            if status != 200:
                self._stats["failures"] += 1
                raise OracleUnavailableError(f"{tag}: {model} returned HTTP {status}", {"model": model})

            logger.debug("%s answered by %s", tag, model)
            return self._extract_text(body, model)

        self._stats["failures"] += 1
        raise OracleUnavailableError(f"{tag}: all models quota-limited ({last_error})")

    async def _post(self, model: str, prompt: str) -> tuple[int, Any]:
        url = f"{self.base_url}/models/{model}:generateContent"
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                url,
                params={"key": self.api_key},
                json=payload,
                headers={"Content-Type": "application/json"},
            ) as resp:
                if resp.status != 200:
                    return resp.status, await resp.text()
                return resp.status, await resp.json()

    @staticmethod
    def _extract_text(body: Any, model: str) -> str:
        try:
            parts = body["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError) as e:
            raise OracleUnavailableError(f"Unexpected response shape from {model}") from e
