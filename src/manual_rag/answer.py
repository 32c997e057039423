"""Grounded answer composition and completion backends."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

import requests

from .errors import CompletionError, ConfigError, RequestValidationError
from .retrieval import Citation, QueryRetriever
from .vector_store import SearchHit

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a concise assistant for vehicle owner's and service manuals. "
    "If context is provided, answer ONLY from it and add bracketed citations "
    "like [filename p.X]. If no context is provided, say you have no supporting "
    "documents and avoid guessing."
)

NO_CONTEXT_NOTE = "(No context retrieved above threshold.)"


@dataclass
class ModelParams:
    """Generation parameters shared by both backends."""
    temperature: float = 0.2
    max_tokens: int = 512
    num_ctx: int = 8192


def format_context(hits: Sequence[SearchHit]) -> str:
    """Numbered excerpts, each labelled with its file and page."""
    return "\n\n".join(
        f"### {i} [{h.filename} p.{h.page}]\n{h.text}" for i, h in enumerate(hits, start=1)
    )


def build_messages(question: str, hits: Sequence[SearchHit]) -> list[dict[str, str]]:
    """Build the system + user messages for a question and its context."""
    if not hits:
        user = f"Question: {question}\n\n{NO_CONTEXT_NOTE}\nAnswer:"
    else:
        user = f"Question: {question}\n\nContext:\n{format_context(hits)}\n\nAnswer:"
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


# ── Completion backends ───────────────────────────────────────────


class CompletionBackend(Protocol):
    def complete(self, messages: list[dict[str, str]], params: ModelParams) -> str: ...


def _post_json(url: str, payload: dict[str, Any], timeout: float | None) -> dict[str, Any]:
    response = requests.post(url, json=payload, timeout=timeout)
    if not response.ok:
        raise CompletionError(response.status_code, response.text)
    return response.json()


class OllamaChatBackend:
    """Ollama's native /api/chat endpoint."""

    def __init__(self, url: str, model: str, timeout: float | None = 120.0):
        self.url = url
        self.model = model
        self.timeout = timeout

    def complete(self, messages: list[dict[str, str]], params: ModelParams) -> str:
        data = _post_json(
            self.url,
            {
                "model": self.model,
                "messages": messages,
                "options": {
                    "num_ctx": params.num_ctx,
                    "num_predict": params.max_tokens,
                    "temperature": params.temperature,
                },
                "stream": False,
            },
            self.timeout,
        )
        return (data.get("message") or {}).get("content") or ""


class OpenAICompatibleBackend:
    """An OpenAI-style /v1/chat/completions endpoint, e.g. llama.cpp's server."""

    def __init__(self, url: str, model: str, timeout: float | None = 120.0):
        self.url = url
        self.model = model
        self.timeout = timeout

    def complete(self, messages: list[dict[str, str]], params: ModelParams) -> str:
        data = _post_json(
            self.url,
            {
                "model": self.model,
                "messages": messages,
                "temperature": params.temperature,
                "max_tokens": params.max_tokens,
            },
            self.timeout,
        )
        choices = data.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""


def backend_from_settings(settings) -> CompletionBackend:
    """Pick the completion backend named by ``settings.llm_mode``."""
    mode = settings.llm_mode.upper()
    if mode == "OLLAMA":
        return OllamaChatBackend(settings.ollama_url, settings.ollama_model, settings.llm_timeout)
    if mode == "LLAMACPP":
        return OpenAICompatibleBackend(settings.llm_url, settings.llm_model, settings.llm_timeout)
    raise ConfigError(f"Unknown LLM mode: {settings.llm_mode!r}")


# ── Composition ───────────────────────────────────────────────────


class AnswerComposer:
    def __init__(self, backend: CompletionBackend, params: ModelParams | None = None):
        self.backend = backend
        self.params = params or ModelParams()

    @classmethod
    def from_settings(cls, settings) -> AnswerComposer:
        return cls(
            backend_from_settings(settings),
            ModelParams(
                temperature=settings.temperature,
                max_tokens=settings.max_tokens,
                num_ctx=settings.num_ctx,
            ),
        )

    def compose(self, question: str, hits: Sequence[SearchHit]) -> str:
        return self.backend.complete(build_messages(question, hits), self.params)


@dataclass
class AnswerResult:
    """The /ask response body."""
    answer: str
    routed: str
    citations: list[Citation] = field(default_factory=list)
    used: list[SearchHit] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "routed": self.routed,
            "citations": [c.to_dict() for c in self.citations],
            "used": [h.to_dict() for h in self.used],
        }


def answer_question(
    question: Any, retriever: QueryRetriever, composer: AnswerComposer
) -> AnswerResult:
    """Retrieve context for a question and generate a cited answer.

    Raises:
        RequestValidationError: If the question is missing or blank.
    """
    question = str(question or "").strip()
    if not question:
        raise RequestValidationError("question required")

    retrieval = retriever.retrieve(question)
    logger.info(
        "Question routed to %s with %d context hits", retrieval.routed, len(retrieval.hits)
    )
    answer = composer.compose(question, retrieval.hits)
    return AnswerResult(
        answer=answer,
        routed=retrieval.routed,
        citations=retrieval.citations,
        used=retrieval.hits,
    )
