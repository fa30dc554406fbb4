"""Async AI client wrapper built around OpenAI-compatible endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, MutableMapping, Sequence, cast

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIStatusError, RateLimitError
from openai.types.chat import (
    ChatCompletionMessageParam,
    ChatCompletionToolChoiceOptionParam,
    ChatCompletionToolParam,
)
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

__all__ = [
    "AIClient",
    "AIStreamEvent",
    "ClientSettings",
    "CompletedChat",
    "StreamingCompletion",
    "chunk_to_mapping",
    "events_from_chunk",
]

LOGGER = logging.getLogger(__name__)

CONTENT_DELTA = "content.delta"
TOOL_CALL_DELTA = "tool_calls.function.delta"
FINISH_REASON = "finish_reason"
RAG_CONTEXT = "rag_context"
STREAM_ERROR = "error"


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    default_query: Mapping[str, str] | None = None
    debug_logging: bool = False


@dataclass(slots=True)
class AIStreamEvent:
    """Normalized representation of one streaming delta.

    ``type`` discriminates the variant: text delta, tool call delta,
    finish reason marker, the out-of-band ``rag_context`` marker, or an
    in-band error emitted by the proxy.
    """

    type: str
    content: str | None = None
    tool_index: int | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None
    arguments_delta: str | None = None
    finish_reason: str | None = None
    payload: Mapping[str, Any] | None = None


def chunk_to_mapping(chunk: Any) -> Dict[str, Any]:
    """Return a plain mapping for an SDK chunk/response object."""

    if isinstance(chunk, Mapping):
        return dict(chunk)
    dump = getattr(chunk, "model_dump", None)
    if callable(dump):
        data = cast(Dict[str, Any], dump(exclude_unset=True))
        extra = getattr(chunk, "model_extra", None)
        if isinstance(extra, Mapping):
            for key, value in extra.items():
                data.setdefault(key, value)
        return data
    return dict(vars(chunk))


def events_from_chunk(chunk: Mapping[str, Any]) -> list[AIStreamEvent]:
    """Split one ``chat.completion.chunk`` into ordered stream events."""

    if chunk.get("type") == RAG_CONTEXT:
        return [AIStreamEvent(type=RAG_CONTEXT, payload=dict(chunk))]
    error = chunk.get("error")
    if error:
        payload = error if isinstance(error, Mapping) else {"message": str(error)}
        return [AIStreamEvent(type=STREAM_ERROR, payload=dict(payload))]

    choices = chunk.get("choices") or ()
    if not choices:
        return []
    choice = choices[0] or {}
    delta = choice.get("delta") or {}
    events: list[AIStreamEvent] = []

    content = delta.get("content")
    if content:
        events.append(AIStreamEvent(type=CONTENT_DELTA, content=str(content)))

    for tool_delta in delta.get("tool_calls") or ():
        function = tool_delta.get("function") or {}
        events.append(
            AIStreamEvent(
                type=TOOL_CALL_DELTA,
                tool_index=tool_delta.get("index") or 0,
                tool_call_id=tool_delta.get("id") or None,
                tool_name=function.get("name") or None,
                arguments_delta=function.get("arguments") or None,
            )
        )

    finish_reason = choice.get("finish_reason")
    if finish_reason:
        events.append(AIStreamEvent(type=FINISH_REASON, finish_reason=str(finish_reason)))
    return events


class StreamingCompletion:
    """Streaming variant of a completion call.

    Wraps the SDK stream so the underlying HTTP response is released on
    every exit path; use it as an async context manager.
    """

    def __init__(self, stream: Any) -> None:
        self._stream = stream
        self._closed = False

    async def __aenter__(self) -> StreamingCompletion:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.aclose()
        return False

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[Dict[str, Any]]:
        async for chunk in self._stream:
            yield chunk_to_mapping(chunk)

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._stream, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


@dataclass(slots=True, frozen=True)
class CompletedChat:
    """Non-streaming variant of a completion call."""

    response: Dict[str, Any]

    @property
    def message(self) -> Dict[str, Any]:
        choices = self.response.get("choices") or [{}]
        return dict(choices[0].get("message") or {})


class AIClient:
    """Async client providing chat completion helpers with retry semantics."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def create_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        stream: bool,
        model: str | None = None,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None = None,
        temperature: float | None = None,
        extra_query: Mapping[str, str] | None = None,
        **extra_params: Any,
    ) -> StreamingCompletion | CompletedChat:
        """Open a chat completion and return its streaming or complete variant.

        Only the request itself is retried; once a stream is handed back no
        further retries happen, so consumers never see replayed deltas.
        """

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            stream=stream,
            model=model,
            tools=tools,
            tool_choice=tool_choice,
            temperature=temperature,
            extra_query=extra_query,
            extra_params=extra_params,
        )
        LOGGER.debug(
            "Starting %s chat completion via %s with %s message(s)",
            "streamed" if stream else "blocking",
            payload["model"],
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        response: Any = None
        async for attempt in self._retrying():
            with attempt:
                response = await self._client.chat.completions.create(**payload)
        if stream:
            return StreamingCompletion(response)
        return CompletedChat(chunk_to_mapping(response))

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None = None,
        temperature: float | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        """Stream chat completions for the provided messages."""

        completion = await self.create_chat(
            messages,
            stream=True,
            tools=tools,
            tool_choice=tool_choice,
            temperature=temperature,
            **extra_params,
        )
        if not isinstance(completion, StreamingCompletion):
            raise TypeError(f"Expected a streaming completion, got {type(completion).__name__}")
        async with completion:
            async for chunk in completion:
                for event in events_from_chunk(chunk):
                    yield event

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        query = dict(settings.default_query) if settings.default_query else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            default_query=query,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            )
            | retry_if_exception(_is_server_error),
        )

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            if isinstance(message, MutableMapping):
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            else:
                try:
                    normalized.append(cast(ChatCompletionMessageParam, dict(message)))
                except TypeError as exc:
                    raise TypeError("Messages must be mapping-like objects") from exc
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[ChatCompletionMessageParam],
        stream: bool,
        model: str | None,
        tools: Iterable[ChatCompletionToolParam] | None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None,
        temperature: float | None,
        extra_query: Mapping[str, str] | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model or self._settings.model,
            "messages": list(messages),
            "stream": bool(stream),
        }
        if tools:
            payload["tools"] = list(tools)
        if tool_choice:
            payload["tool_choice"] = tool_choice
        if temperature is not None:
            payload["temperature"] = temperature
        if extra_query:
            payload["extra_query"] = dict(extra_query)
        if extra_params:
            payload.update(extra_params)
        return payload

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


def _is_server_error(exc: BaseException) -> bool:
    if not isinstance(exc, APIStatusError):
        return False
    return exc.status_code >= 500
