"""HTTP query service."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError as BodyValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .answer import AnswerComposer, answer_question
from .config import Settings, load_settings
from .embeddings import EmbeddingBatcher, batcher_from_settings
from .errors import RequestValidationError
from .retrieval import QueryRetriever
from .vector_store import create_client

logger = logging.getLogger(__name__)


class Services:
    """Lazily built collaborators shared by all requests."""

    def __init__(
        self,
        settings: Settings,
        batcher: EmbeddingBatcher | None = None,
        client: Any = None,
        composer: AnswerComposer | None = None,
    ):
        self.settings = settings
        self._batcher = batcher
        self._client = client
        self._composer = composer

    @property
    def batcher(self) -> EmbeddingBatcher:
        if self._batcher is None:
            self._batcher = batcher_from_settings(self.settings)
        return self._batcher

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = create_client(self.settings.qdrant_url)
        return self._client

    @property
    def composer(self) -> AnswerComposer:
        if self._composer is None:
            self._composer = AnswerComposer.from_settings(self.settings)
        return self._composer

    def retriever(self) -> QueryRetriever:
        return QueryRetriever.from_settings(self.settings, self.batcher, self.client)


# ── Request / response models ─────────────────────────────────────


class AskRequest(BaseModel):
    question: str = ""


class CitationOut(BaseModel):
    filename: str
    page: int


class UsedChunk(BaseModel):
    id: str
    doc_id: str
    filename: str
    page: int
    text: str
    score: float


class AskResponse(BaseModel):
    answer: str
    routed: str          # "retrieval" or "no_context"
    citations: list[CitationOut]
    used: list[UsedChunk]


class EmbedRequest(BaseModel):
    text: str = ""


class EmbedResponse(BaseModel):
    dim: int
    vector: list[float]


class ErrorResponse(BaseModel):
    error: str


_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(services: Services | None = None) -> FastAPI:
    """Build the FastAPI app. Without ``services``, settings come from the environment."""
    services = services or Services(load_settings())
    app = FastAPI(title="Manual RAG", description="Grounded answers over indexed manuals")
    app.state.services = services

    @app.exception_handler(BodyValidationError)
    async def invalid_body(request: Request, exc: BodyValidationError) -> JSONResponse:
        return _error(400, "invalid request body")

    @app.post("/ask", response_model=AskResponse, responses=_ERROR_RESPONSES)
    def ask(body: AskRequest | None = Body(default=None)):
        question = body.question if body is not None else ""
        try:
            result = answer_question(question, services.retriever(), services.composer)
        except RequestValidationError as e:
            return _error(400, str(e))
        except Exception as e:
            logger.exception("/ask failed")
            return _error(500, str(e))
        return AskResponse(**result.to_dict())

    @app.post("/debug/embed", response_model=EmbedResponse, responses=_ERROR_RESPONSES)
    def debug_embed(body: EmbedRequest | None = Body(default=None)):
        text = (body.text if body is not None else "").strip()
        if not text:
            return _error(400, "text required")
        try:
            vector = services.batcher.embed_one(text)
        except Exception as e:
            logger.exception("/debug/embed failed")
            return _error(500, str(e))
        return EmbedResponse(dim=len(vector), vector=vector)

    @app.get("/healthz")
    def healthz() -> dict[str, bool]:
        return {"ok": True}

    return app
