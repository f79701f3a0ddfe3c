"""
Streaming Answer Service - relays backend fragments as StreamTokens.

ask() returns a lazy async sequence:

    {text} {text} ... {done}        on success
    {text} ... {error: reason}      on backend failure or inactivity timeout

Fragments are forwarded one by one, in order, as soon as they arrive. When
the consumer stops iterating (or its task is cancelled) the backend stream is
closed at the next suspension point. Failures are never retried here.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from car_advisor.llm import TextBackend
from car_advisor.logger import logger
from car_advisor.models import StreamToken
from car_advisor.prompts import build_prompt

DEFAULT_INACTIVITY_TIMEOUT = 30.0


class StreamingAnswerService:
    def __init__(self, backend: TextBackend, inactivity_timeout: Optional[float] = DEFAULT_INACTIVITY_TIMEOUT):
        self._backend = backend
        self._inactivity_timeout = inactivity_timeout

    async def _next_fragment(self, stream: AsyncIterator[str]) -> str:
        if self._inactivity_timeout:
            return await asyncio.wait_for(stream.__anext__(), timeout=self._inactivity_timeout)
        return await stream.__anext__()

    async def ask(self, product: str, question: str, spec_sheet: str) -> AsyncIterator[StreamToken]:
        prompt = build_prompt(product, spec_sheet, question)
        stream = self._backend.stream_chat(prompt)
        chunks = 0
        try:
            while True:
                try:
                    fragment = await self._next_fragment(stream)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    logger.warning(
                        "LLM stream inactivity timeout",
                        product=product,
                        timeout=self._inactivity_timeout,
                    )
                    yield StreamToken.error("Timed out waiting for the answer")
                    return
                except Exception as exc:
                    logger.error("LLM stream failed", product=product, error=str(exc)[:200])
                    yield StreamToken.error(str(exc) or type(exc).__name__)
                    return

                chunks += 1
                yield StreamToken.text(fragment)

            logger.metric("stream_chunks", chunks, product=product)
            yield StreamToken.done()
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
