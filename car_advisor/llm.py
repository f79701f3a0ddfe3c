"""
Ollama client for the car advisor.

Streams chat completions from Ollama's /api/chat endpoint (newline-delimited
JSON, one object per produced fragment, the last one with "done": true).

Every call opens its own HTTP stream; nothing mutable is shared between calls
except the statistics counters.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Protocol

import httpx

from car_advisor.logger import logger
from car_advisor.settings import settings


class LLMError(RuntimeError):
    """Backend reported an error or produced output that cannot be parsed."""


class TextBackend(Protocol):
    """Streaming contract: one prompt in, text fragments out."""

    def stream_chat(self, prompt: str) -> AsyncIterator[str]:
        ...


@dataclass
class LLMStats:
    """Backend client statistics"""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    cancelled_requests: int = 0
    total_chunks: int = 0
    total_response_time_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        finished = self.successful_requests + self.failed_requests
        if finished == 0:
            return 100.0
        return (self.successful_requests / finished) * 100

    @property
    def average_response_time_ms(self) -> float:
        if self.successful_requests == 0:
            return 0.0
        return self.total_response_time_ms / self.successful_requests


class OllamaClient:
    """
    Streaming Ollama chat client.

    Args:
        model: Model name (settings.llm.model by default)
        base_url: Ollama URL (settings.llm.base_url by default)
        timeout: Per-request HTTP timeout in seconds
        temperature: Sampling temperature
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model or settings.llm.model
        self.base_url = (base_url or settings.llm.base_url).rstrip("/")
        self.timeout = timeout or settings.llm.timeout
        self.temperature = settings.llm.temperature if temperature is None else temperature
        self._transport = transport
        self._stats = LLMStats()

    @property
    def stats(self) -> LLMStats:
        return self._stats

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    def _payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": True,
            "options": {"temperature": self.temperature},
        }

    @staticmethod
    def _parse_line(line: str) -> Dict[str, Any]:
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            raise LLMError(f"unparseable stream line from backend: {line[:100]!r}") from exc
        if not isinstance(data, dict):
            raise LLMError("unexpected stream frame from backend")
        if data.get("error"):
            raise LLMError(str(data["error"]))
        return data

    async def stream_chat(self, prompt: str) -> AsyncIterator[str]:
        """
        Stream a chat completion.

        Yields:
            Text fragments in generation order

        Raises:
            LLMError: backend error frame or malformed output
            httpx.HTTPError: transport failure or non-2xx status
        """
        self._stats.total_requests += 1
        start_time = time.time()
        finished = False

        try:
            async with self._client() as client:
                async with client.stream("POST", "/api/chat", json=self._payload(prompt)) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        data = self._parse_line(line)
                        content = (data.get("message") or {}).get("content", "")
                        if content:
                            self._stats.total_chunks += 1
                            yield content
                        if data.get("done"):
                            finished = True
                            break

            if not finished:
                raise LLMError("backend stream ended without completion")

            elapsed_ms = (time.time() - start_time) * 1000
            self._stats.successful_requests += 1
            self._stats.total_response_time_ms += elapsed_ms
            logger.debug("LLM stream finished", elapsed_ms=round(elapsed_ms, 1))
        except (asyncio.CancelledError, GeneratorExit):
            self._stats.cancelled_requests += 1
            logger.info("LLM stream cancelled")
            raise
        except Exception:
            self._stats.failed_requests += 1
            raise

    async def health_check(self) -> bool:
        """True when Ollama answers and the configured model is pulled."""
        try:
            async with self._client(timeout=5) as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                models = [m.get("name", "") for m in response.json().get("models", [])]
        except (httpx.HTTPError, ValueError):
            return False
        model_base = self.model.split(":")[0]
        return any(name.split(":")[0] == model_base for name in models)

    def get_stats_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self._stats.total_requests,
            "successful_requests": self._stats.successful_requests,
            "failed_requests": self._stats.failed_requests,
            "cancelled_requests": self._stats.cancelled_requests,
            "total_chunks": self._stats.total_chunks,
            "success_rate": round(self._stats.success_rate, 1),
            "average_response_time_ms": round(self._stats.average_response_time_ms, 1),
        }
