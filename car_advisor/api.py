"""
REST API for the Volvo car advisor.

Web front-end:   POST /api/submit → ranked recommendation
                 GET  /api/ask    → SSE answer stream
Chat channel:    POST /api/v1/chat/{chat_id}/start|callback|message

Run: uvicorn car_advisor.api:app --host 127.0.0.1 --port 8000

The catalog and the spec sheet are loaded once in the lifespan; a failure
there aborts startup.
"""

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from car_advisor import __version__
from car_advisor.catalog import Catalog, load_catalog
from car_advisor.channel import ChatChannel, quota_exceeded_text
from car_advisor.conversation import AdvisorService
from car_advisor.llm import OllamaClient, TextBackend
from car_advisor.logger import logger
from car_advisor.models import Answers, Outcome, StreamToken
from car_advisor.prompts import load_spec_sheet
from car_advisor.scoring import NO_MATCH_MESSAGE, recommend
from car_advisor.session_store import SessionStore
from car_advisor.settings import settings
from car_advisor.state_machine import (
    EMPTY_QUESTION,
    FOLLOW_UP_IN_PROGRESS,
    AdvisorStateMachine,
)
from car_advisor.streaming import StreamingAnswerService

SUBMIT_PATH = "/api/submit"
INCOMPLETE_ANSWERS_MESSAGE = "Please answer all required questions"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


# ── Error helpers ──────────────────────────────────────

class APIError(Exception):
    """Structured API exception with HTTP status code."""

    def __init__(self, status_code: int, code: str, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(message)


def _error_payload(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}}


# ── Models ────────────────────────────────────────────

class SubmitRequest(BaseModel):
    Q1: int = Field(ge=0, le=2)
    Q2: int = Field(ge=0, le=2)
    Q3: List[int] = Field(default_factory=list)
    Q4: int = Field(ge=0, le=3)


class CallbackRequest(BaseModel):
    data: str


class MessageRequest(BaseModel):
    text: str


# ── Wiring ────────────────────────────────────────────

def _configured_path(env_var: str, configured: str) -> Optional[Path]:
    value = os.environ.get(env_var) or configured
    return Path(value) if value else None


def _sse(tokens: AsyncIterator[StreamToken]) -> AsyncIterator[str]:
    async def frames():
        try:
            async for token in tokens:
                yield token.to_sse()
        finally:
            await tokens.aclose()

    return frames()


def _event_stream(tokens: AsyncIterator[StreamToken]) -> StreamingResponse:
    return StreamingResponse(_sse(tokens), media_type="text/event-stream", headers=SSE_HEADERS)


async def _until_disconnected(request: Request, tokens: AsyncIterator[StreamToken]):
    """Stop pulling tokens once the client has gone away."""
    try:
        async for token in tokens:
            if await request.is_disconnected():
                logger.info("Client disconnected mid-stream", path=request.url.path)
                return
            yield token
    finally:
        await tokens.aclose()


def create_app(
    catalog: Optional[Catalog] = None,
    spec_sheet: Optional[str] = None,
    backend: Optional[TextBackend] = None,
    store: Optional[SessionStore] = None,
) -> FastAPI:
    """
    Build the API application.

    Components not passed in are created in the lifespan from settings (and
    the CATALOG_PATH, SPECS_PATH, LLM_MODEL, LLM_BASE_URL overrides).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state = app.state
        state.catalog = catalog or load_catalog(
            _configured_path("CATALOG_PATH", settings.catalog.path)
        )
        state.spec_sheet = spec_sheet if spec_sheet is not None else load_spec_sheet(
            _configured_path("SPECS_PATH", settings.specs.path)
        )
        state.backend = backend or OllamaClient(
            model=os.environ.get("LLM_MODEL") or None,
            base_url=os.environ.get("LLM_BASE_URL") or None,
        )
        state.answer_service = StreamingAnswerService(
            state.backend,
            inactivity_timeout=settings.llm.inactivity_timeout,
        )
        machine = AdvisorStateMachine(
            state.catalog,
            emphasis=settings.scoring.emphasis.chat,
            max_questions=settings.chat.max_questions,
        )
        state.advisor = AdvisorService(
            store or SessionStore(ttl_seconds=settings.sessions.ttl_seconds),
            machine,
            state.answer_service,
            state.spec_sheet,
        )
        state.channel = ChatChannel(state.advisor)
        logger.info("Car advisor API ready", products=len(state.catalog))
        yield
        logger.info("Car advisor API stopped", sessions=len(state.advisor.store))

    app = FastAPI(title="Volvo Car Advisor API", version=__version__, lifespan=lifespan)

    @app.exception_handler(APIError)
    async def api_error_handler(_: Request, exc: APIError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(exc.code, exc.message),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        if request.url.path == SUBMIT_PATH:
            message = INCOMPLETE_ANSWERS_MESSAGE
        else:
            errors = exc.errors()
            message = errors[0].get("msg") if errors else "Invalid request payload"
        return JSONResponse(
            status_code=400,
            content=_error_payload("BAD_REQUEST", message),
        )

    # ── Web front-end ─────────────────────────────────

    @app.get("/health")
    async def health(request: Request):
        state = request.app.state
        payload = {
            "status": "ok",
            "version": __version__,
            "products": len(state.catalog),
            "sessions": len(state.advisor.store),
        }
        check = getattr(state.backend, "health_check", None)
        if check is not None:
            payload["llm_available"] = await check()
            if not payload["llm_available"]:
                payload["status"] = "degraded"
        stats = getattr(state.backend, "get_stats_dict", None)
        if stats is not None:
            payload["llm"] = stats()
        return payload

    @app.post(SUBMIT_PATH)
    def submit(req: SubmitRequest, request: Request):
        """
        Score a complete web questionnaire.

        Returns the single best product (or null with a no-match message) and
        the top-N ranked list.
        """
        try:
            answers = Answers(
                daily_distance=req.Q1,
                usage=req.Q2,
                features=frozenset(req.Q3),
                style_preference=req.Q4,
            )
        except ValueError as err:
            raise APIError(400, "BAD_REQUEST", INCOMPLETE_ANSWERS_MESSAGE) from err

        try:
            result = recommend(answers, request.app.state.catalog, emphasis=settings.scoring.emphasis.web)
        except Exception as err:
            logger.exception("Error scoring answers")
            raise APIError(500, "INTERNAL", "Internal server error") from err

        ranked = result.to_dict(top_n=settings.scoring.top_n)
        logger.event("web_recommendation", best=ranked["best"], candidates=len(result.ranked))
        return {
            "message": "Recommendation calculated" if result.is_match else NO_MATCH_MESSAGE,
            "recommendation": ranked["best"],
            "ranked": ranked["ranked"],
            "answers": answers.to_dict(),
        }

    @app.get("/api/ask")
    async def ask(request: Request, model: str = Query(...), q: str = Query(...)):
        """Stateless streamed answer about one product (no quota)."""
        state = request.app.state
        product = state.catalog.find(model)
        if product is None:
            raise APIError(404, "NOT_FOUND", f"Unknown Volvo model: {model}")
        if not q.strip():
            raise APIError(400, "BAD_REQUEST", "q must not be empty")

        tokens = state.answer_service.ask(product, q, state.spec_sheet)
        return _event_stream(_until_disconnected(request, tokens))

    # ── Chat channel ──────────────────────────────────

    @app.post("/api/v1/chat/{chat_id}/start")
    def chat_start(chat_id: str, request: Request):
        return request.app.state.channel.start(chat_id).to_dict()

    @app.post("/api/v1/chat/{chat_id}/callback")
    def chat_callback(chat_id: str, req: CallbackRequest, request: Request):
        return request.app.state.channel.callback(chat_id, req.data).to_dict()

    @app.post("/api/v1/chat/{chat_id}/message")
    async def chat_message(chat_id: str, req: MessageRequest, request: Request):
        """
        Follow-up question about the recommended product, streamed as SSE.

        429 once the quota is used up, 409 while no recommendation exists or
        another answer for the same chat is still streaming.
        """
        if not req.text.strip():
            raise APIError(400, "BAD_REQUEST", "text must not be empty")

        channel = request.app.state.channel
        reply = channel.message(chat_id, req.text, is_disconnected=request.is_disconnected)
        if reply.outcome is Outcome.QUOTA_EXCEEDED:
            raise APIError(429, "QUOTA_EXCEEDED", quota_exceeded_text(channel.advisor.max_questions))
        if reply.outcome is Outcome.IGNORED:
            reason = reply.result.reason
            if reason == FOLLOW_UP_IN_PROGRESS:
                raise APIError(409, "FOLLOW_UP_IN_PROGRESS", "Previous question is still being answered")
            if reason == EMPTY_QUESTION:
                raise APIError(400, "BAD_REQUEST", "text must not be empty")
            raise APIError(409, "NOT_READY", channel.refusal(reply).text)

        return _event_stream(reply.tokens)

    @app.get("/api/v1/chat/{chat_id}")
    def chat_session(chat_id: str, request: Request):
        advisor = request.app.state.advisor
        session = advisor.get(chat_id)
        if session is None:
            raise APIError(404, "NOT_FOUND", f"No session for chat {chat_id}")
        payload = session.to_dict()
        payload["remaining_questions"] = advisor.state_machine.remaining_questions(session)
        return payload

    @app.delete("/api/v1/chat/{chat_id}")
    def chat_remove(chat_id: str, request: Request):
        if not request.app.state.advisor.remove(chat_id):
            raise APIError(404, "NOT_FOUND", f"No session for chat {chat_id}")
        return {"removed": chat_id}

    return app


app = create_app()
