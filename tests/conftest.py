"""
Shared pytest fixtures for car advisor tests.

Provides fixtures for:
- A two-product catalog (A: SUV, B: Sedan)
- A scripted fake text backend that records cancellation
- An advisor service wired with an in-memory session store
- A helper driving a session through the questionnaire
"""

import asyncio
import copy
from typing import List, Optional, Sequence

import pytest

from car_advisor.catalog import Catalog
from car_advisor.conversation import AdvisorService
from car_advisor.events import (
    AnswerDailyDistance,
    AnswerStyle,
    AnswerUsage,
    FinishFeatures,
    Start,
)
from car_advisor.session_store import SessionStore
from car_advisor.state_machine import AdvisorStateMachine
from car_advisor.streaming import StreamingAnswerService

SPEC_SHEET = """
A (electric SUV)
- Colours: Vapour Grey, Onyx Black

B (electric sedan)
- Range: 435 miles
"""

TWO_PRODUCT_CATALOG = {
    "products": {
        "A": {
            "daily_distance": [2, 4, 5],
            "usage": [2, 5, 4],
            "features": [5, 4, 5, 5, 5, 4],
            "style": "SUV",
        },
        "B": {
            "daily_distance": [1, 3, 5],
            "usage": [4, 2, 2],
            "features": [5, 4, 3, 3, 5, 3],
            "style": "Sedan",
        },
    }
}


# =============================================================================
# Fake backend
# =============================================================================

class FakeBackend:
    """
    Scripted TextBackend.

    Yields the given chunks, optionally raising fail_with once fail_after
    chunks were produced, optionally hanging after the last chunk. With
    slow_cleanup the generator awaits once while closing, like a client
    releasing its connection. Records whether the stream was stopped before
    running to completion.
    """

    def __init__(
        self,
        chunks: Sequence[str] = ("The EX90 ", "comes in ", "five colours."),
        fail_with: Optional[BaseException] = None,
        fail_after: int = 0,
        hang: bool = False,
        slow_cleanup: bool = False,
    ):
        self.chunks = list(chunks)
        self.fail_with = fail_with
        self.fail_after = fail_after
        self.hang = hang
        self.slow_cleanup = slow_cleanup
        self.prompts: List[str] = []
        self.cancelled = False
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def stream_chat(self, prompt: str):
        self.prompts.append(prompt)
        try:
            for i, chunk in enumerate(self.chunks):
                if self.fail_with is not None and i == self.fail_after:
                    raise self.fail_with
                await asyncio.sleep(0)
                yield chunk
            if self.fail_with is not None and self.fail_after >= len(self.chunks):
                raise self.fail_with
            if self.hang:
                await asyncio.sleep(3600)
        except (asyncio.CancelledError, GeneratorExit):
            self.cancelled = True
            raise
        finally:
            self.closed = True
            if self.slow_cleanup:
                await asyncio.sleep(0)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def catalog_data():
    return copy.deepcopy(TWO_PRODUCT_CATALOG)


@pytest.fixture
def catalog(catalog_data):
    return Catalog.from_dict(catalog_data)


@pytest.fixture
def spec_sheet():
    return SPEC_SHEET


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def make_advisor(catalog, spec_sheet):
    """Factory: advisor service over a given backend and quota."""
    def _create(backend=None, max_questions: int = 5, emphasis: float = 2,
                inactivity_timeout: float = 5.0) -> AdvisorService:
        backend = backend or FakeBackend()
        machine = AdvisorStateMachine(catalog, emphasis=emphasis, max_questions=max_questions)
        return AdvisorService(
            SessionStore(ttl_seconds=3600),
            machine,
            StreamingAnswerService(backend, inactivity_timeout=inactivity_timeout),
            spec_sheet,
        )
    return _create


@pytest.fixture
def advisor(make_advisor, fake_backend):
    return make_advisor(fake_backend)


@pytest.fixture
def complete_questionnaire():
    """Drive a session through all four questions (style 3 = any)."""
    def _run(advisor: AdvisorService, session_id: str, daily: int = 2, usage: int = 0,
             style: int = 3):
        advisor.handle(session_id, Start())
        advisor.handle(session_id, AnswerDailyDistance(daily))
        advisor.handle(session_id, AnswerUsage(usage))
        advisor.handle(session_id, FinishFeatures())
        return advisor.handle(session_id, AnswerStyle(style))
    return _run


async def collect(tokens) -> list:
    """Drain an async token stream into a list."""
    return [token async for token in tokens]


@pytest.fixture
def drain():
    return collect


@pytest.fixture
def make_backend():
    """FakeBackend factory for tests that script their own stream."""
    return FakeBackend
