"""FastAPI application exposing the retrieval-augmented chat proxy."""

from __future__ import annotations

import hmac
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from openai import AsyncOpenAI

from ..ai.client import AIClient, ClientSettings, CompletedChat, StreamingCompletion
from ..ai.memory.embeddings import DocumentIndex, EmbeddingStore, OpenAIEmbeddingProvider
from ..ai.orchestration.retrieval_gate import maybe_retrieve
from ..ai.orchestration.types import RagContext
from ..services.settings import Settings
from .errors import (
    AuthenticationError,
    ConfigurationError,
    InvalidRequestError,
    ProxyError,
    UnsupportedMediaError,
    error_payload,
    error_status,
)
from .sse import SSE_HEADERS, relay_stream

__all__ = ["create_app", "build_client", "build_index"]

LOGGER = logging.getLogger(__name__)

_RESERVED_BODY_KEYS = frozenset({"messages", "model", "stream"})


def build_client(settings: Settings) -> AIClient | None:
    """Return the upstream client, or ``None`` when no API key is configured."""

    if not settings.api_key:
        return None
    return AIClient(
        ClientSettings(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            debug_logging=settings.debug_logging,
        )
    )


def build_index(settings: Settings) -> DocumentIndex | None:
    if not settings.api_key:
        return None
    provider = OpenAIEmbeddingProvider(
        client=AsyncOpenAI(api_key=settings.api_key, base_url=settings.base_url),
        model=settings.embedding_model,
    )
    return DocumentIndex(
        store=EmbeddingStore(settings.index_path),
        provider=provider,
        max_length=settings.chunk_max_length,
        overlap=settings.chunk_overlap,
    )


def create_app(
    settings: Settings,
    *,
    client: AIClient | None = None,
    index: DocumentIndex | None = None,
) -> FastAPI:
    """Create the proxy app.

    ``client`` and ``index`` default to instances built from ``settings``;
    either may be absent when no API key is configured, in which case the
    affected routes answer with a configuration error.
    """

    owns_client = client is None
    owns_index = index is None
    if client is None:
        client = build_client(settings)
    if index is None:
        index = build_index(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if owns_client and client is not None:
            await client.aclose()
        if owns_index and index is not None:
            index.close()

    app = FastAPI(title="ragchat proxy", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.client = client
    app.state.index = index

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    async def chat(request: Request) -> Response:
        try:
            return await _handle_chat(request)
        except Exception as exc:
            return _error_response(exc)

    async def _handle_chat(request: Request) -> Response:
        _authorize(request, settings)
        if client is None:
            LOGGER.error("Server error: OPENAI_API_KEY not configured")
            raise ConfigurationError("OPENAI_API_KEY not configured")

        body = await _read_json_body(request)
        messages = body.get("messages")
        if not isinstance(messages, list) or not messages:
            raise InvalidRequestError("messages array is required", param="messages")
        if not all(isinstance(message, dict) for message in messages):
            raise InvalidRequestError("messages must be objects", param="messages")

        rag_enabled = request.query_params.get("ragEnabled") != "false"
        retriever = index.retriever_for(settings.study_id) if index is not None else None
        history, rag_context = await maybe_retrieve(
            messages,
            rag_enabled,
            retriever=retriever,
            limit=settings.retrieval_limit,
        )
        attached = rag_context if rag_context is not None and not rag_context.is_empty else None

        stream = bool(body.get("stream"))
        options = {key: value for key, value in body.items() if key not in _RESERVED_BODY_KEYS}
        completion = await client.create_chat(
            history,
            stream=stream,
            model=body.get("model") or None,
            **options,
        )

        if isinstance(completion, StreamingCompletion):
            LOGGER.info("Starting streaming response")
            return StreamingResponse(
                relay_stream(
                    completion,
                    rag_context=attached if settings.output_rag_context else None,
                ),
                media_type="text/event-stream",
                headers=dict(SSE_HEADERS),
            )
        return JSONResponse(_with_rag_metadata(completion, attached))

    app.add_api_route("/chat", chat, methods=["POST"])
    app.add_api_route("/v1/chat/completions", chat, methods=["POST"])

    # -------------------------------------------------------------------------
    # Document upload
    # -------------------------------------------------------------------------

    async def upload_document(study_id: str, file_name: str, request: Request) -> Response:
        try:
            _authorize(request, settings)
            if index is None:
                raise ConfigurationError("OPENAI_API_KEY not configured")
            content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
            if content_type != "application/pdf" or not file_name.lower().endswith(".pdf"):
                LOGGER.info("Skipping non-PDF upload %s (%s)", file_name, content_type or "unknown")
                raise UnsupportedMediaError("Only application/pdf uploads with a .pdf name are indexed")
            data = await request.body()
            LOGGER.info("Processing PDF %s for study %s", file_name, study_id)
            result = await index.index_document(study_id, file_name, data)
        except Exception as exc:
            return _error_response(exc)
        return JSONResponse(result.to_payload(), status_code=200 if result.success else 422)

    app.add_api_route(
        "/studies/{study_id}/rag_files/{file_name}",
        upload_document,
        methods=["PUT"],
    )

    return app


def _authorize(request: Request, settings: Settings) -> None:
    expected = settings.proxy_token
    if not expected:
        return
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Missing bearer token")
    if not hmac.compare_digest(token.strip().encode("utf-8"), expected.encode("utf-8")):
        raise AuthenticationError("Invalid bearer token")


async def _read_json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    try:
        body = json.loads(raw or b"null")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidRequestError(f"Invalid JSON body: {exc}") from exc
    if not isinstance(body, dict):
        raise InvalidRequestError("messages array is required", param="messages")
    return body


def _with_rag_metadata(completion: CompletedChat, rag_context: RagContext | None) -> dict[str, Any]:
    payload = dict(completion.response)
    payload["_ragContext"] = rag_context.to_metadata() if rag_context is not None else None
    return payload


def _error_response(exc: Exception) -> JSONResponse:
    status = error_status(exc)
    if isinstance(exc, ProxyError):
        LOGGER.warning("Rejected request (%s): %s", status, exc)
    else:
        LOGGER.exception("Error in chat endpoint")
    return JSONResponse(error_payload(exc), status_code=status)
