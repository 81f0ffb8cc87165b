"""FastAPI app: blocking and NDJSON-streaming council rounds, plus read-only views.

Identity is whatever the caller puts in ``X-User-Id``; authenticating it is
left to whatever sits in front of this app.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from config.config_loader import AppConfig
from persona_council.council import run_council, stream_council
from persona_council.errors import (
    CouncilError,
    EmptyQueryError,
    InsufficientCreditsError,
    NoActivePersonasError,
)
from persona_council.events import encode_event
from persona_council.providers.base import AIProvider
from persona_council.providers.factory import build_provider
from persona_council.store import SQLiteCouncilStore

logger = logging.getLogger(__name__)


class AskRequest(BaseModel):
    """Request body for a council round."""
    query: str = Field("", description="The question put to the council")


def _error_response(exc: CouncilError) -> JSONResponse:
    if isinstance(exc, InsufficientCreditsError):
        return JSONResponse({"error": InsufficientCreditsError.code}, status_code=402)
    if isinstance(exc, (EmptyQueryError, NoActivePersonasError)):
        return JSONResponse({"error": str(exc)}, status_code=400)
    return JSONResponse({"error": str(exc) or "Internal server error"}, status_code=500)


def create_app(
    config: AppConfig,
    store: SQLiteCouncilStore | None = None,
    provider: AIProvider | None = None,
) -> FastAPI:
    """Build the API around one store and one provider.

    Raises:
        ProviderError: If no provider is given and the configured one cannot
            be built.
    """
    if store is None:
        store = SQLiteCouncilStore(
            config.defaults.database,
            starting_credits=config.defaults.starting_credits,
        )
        store.seed_personas(config.prompts.personas)
    if provider is None:
        provider = build_provider(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=== Persona Council API starting ===")
        logger.info("  provider : %s (%s)", provider.name(), provider.model_string())
        logger.info("  database : %s", store.db_path)
        yield
        logger.info("Persona Council API shutting down")

    app = FastAPI(
        title="Persona Council",
        description="Anonymous peer voting across a panel of AI personas",
        version="0.1.0",
        lifespan=lifespan,
    )

    def _user(x_user_id: str | None) -> str:
        return (x_user_id or "").strip() or config.defaults.user_id

    @app.post("/api/ask")
    async def ask(body: AskRequest, x_user_id: str | None = Header(default=None)):
        """Run a round and return the final aggregate."""
        try:
            result = await run_council(body.query, _user(x_user_id), store, provider, config.prompts)
        except CouncilError as exc:
            return _error_response(exc)
        return result.to_dict()

    @app.post("/api/ask/stream")
    async def ask_stream(body: AskRequest, x_user_id: str | None = Header(default=None)):
        """Run a round, streaming one JSON event per line.

        Pre-flight failures come back as plain error responses; once the
        stream is open every round ends with a ``complete`` or ``error``
        event. A client that disconnects early does not stop the round.
        """
        try:
            stream = await stream_council(body.query, _user(x_user_id), store, provider, config.prompts)
        except CouncilError as exc:
            return _error_response(exc)

        async def ndjson() -> AsyncIterator[str]:
            try:
                async for event in stream:
                    yield encode_event(event)
            finally:
                stream.detach()

        return StreamingResponse(
            ndjson(),
            media_type="application/x-ndjson",
            headers={"Cache-Control": "no-cache"},
        )

    @app.get("/api/me")
    def me(x_user_id: str | None = Header(default=None)):
        user_id = _user(x_user_id)
        return {"userId": user_id, "credits": store.get_credits(user_id)}

    @app.get("/api/personas")
    def personas():
        return [
            {
                "id": p.id,
                "name": p.name,
                "status": p.status,
                "runs": p.runs,
                "wins": p.wins,
                "voteScore": p.vote_score,
            }
            for p in store.list_personas()
        ]

    @app.get("/api/runs")
    def runs():
        return [
            {
                "id": r.id,
                "createdAt": r.created_at,
                "userQuery": r.user_query,
                "winnerAnswer": r.winner_answer,
            }
            for r in store.list_runs(25)
        ]

    @app.get("/api/runs/{run_id}")
    def run_detail(run_id: str):
        run = store.get_run(run_id)
        if run is None:
            return JSONResponse({"error": "Run not found"}, status_code=404)
        return {
            "id": run.id,
            "userQuery": run.user_query,
            "createdAt": run.created_at,
            "winnerId": run.winner_id,
            "winnerAnswer": run.winner_answer,
            "voteCounts": run.vote_counts,
            "personas": [
                {
                    "id": p.persona_id,
                    "name": p.name,
                    "answer": p.answer,
                    "vote": p.voted_for,
                    "vote_explanation": p.vote_explanation,
                }
                for p in run.personas
            ],
        }

    return app
