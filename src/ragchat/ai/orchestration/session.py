"""Client-side chat session that talks to the proxy and runs tool rounds."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, Mapping, Sequence

from ..client import AIClient, ClientSettings
from ..tools.health_records import HEALTH_ASSISTANT_PROMPT, HealthRecordToolExecutor
from .tool_executor import ToolExecutor
from .tool_round import ModelClient, RoundConfig, ToolCallRound, ToolRoundLimitError
from .types import Message, RagContext

__all__ = ["ChatSession", "create_session", "run_comparison"]

LOGGER = logging.getLogger(__name__)

_FALLBACK_ERROR = "Failed to get response"


class ChatSession:
    """One conversation owned by its caller.

    Each session has its own client and history; nothing is shared between
    sessions, so several can run concurrently on one event loop.
    """

    def __init__(
        self,
        client: ModelClient,
        executor: ToolExecutor,
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        config: RoundConfig | None = None,
        name: str = "chat",
        on_update: Callable[[ChatSession], Any] | None = None,
    ) -> None:
        self._client = client
        self._executor = executor
        self._tools = tuple(tools) if tools else ()
        self._config = config or RoundConfig()
        self.name = name
        self._on_update = on_update
        self._messages: list[Message] = []
        self._current_response = ""
        self._rag_context: RagContext | None = None
        self._is_loading = False

    @property
    def client(self) -> ModelClient:
        return self._client

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def current_response(self) -> str:
        """Text streamed so far for the in-flight completion."""
        return self._current_response

    @property
    def rag_context(self) -> RagContext | None:
        return self._rag_context

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    def reset(self) -> None:
        self._messages = []
        self._current_response = ""
        self._rag_context = None
        self._is_loading = False
        self._notify()

    async def send_message(self, content: str) -> Message | None:
        """Send ``content`` and run tool rounds until the model answers.

        Blank input, or a send while a previous one is in flight, is ignored
        and returns ``None``. Failures are recorded as an ``Error:`` assistant
        turn instead of being raised.
        """

        if not content.strip() or self._is_loading:
            return None

        self._is_loading = True
        self._current_response = ""
        self._rag_context = None
        self._messages.append(Message.user(content))
        self._notify()

        round_ = ToolCallRound(self._client, self._executor, tools=self._tools, config=self._config)
        try:
            self._messages = await round_.run(
                self._messages,
                on_text=self._handle_text,
                on_rag_context=self._handle_rag_context,
            )
        except ToolRoundLimitError as exc:
            LOGGER.warning("%s: %s", self.name, exc)
            self._messages = exc.history
            self._messages.append(Message.assistant(f"Error: {exc}"))
        except Exception as exc:
            LOGGER.exception("%s: chat turn failed", self.name)
            self._messages.append(Message.assistant(f"Error: {str(exc) or _FALLBACK_ERROR}"))
        finally:
            self._is_loading = False
            self._current_response = ""
            self._notify()
        return self._messages[-1]

    def _handle_text(self, text: str) -> None:
        self._current_response = text
        self._notify()

    def _handle_rag_context(self, rag_context: RagContext) -> None:
        self._rag_context = rag_context
        self._notify()

    def _notify(self) -> None:
        if self._on_update is not None:
            self._on_update(self)


def create_session(
    *,
    proxy_url: str,
    model: str,
    rag_enabled: bool = True,
    proxy_token: str = "",
    max_iterations: int = 8,
    temperature: float | None = 0.0,
    request_timeout: float | None = 90.0,
    name: str | None = None,
    on_update: Callable[[ChatSession], Any] | None = None,
) -> ChatSession:
    """Build a health-assistant session that talks to the proxy at ``proxy_url``."""

    settings = ClientSettings(
        base_url=proxy_url,
        # The proxy holds the upstream key; the SDK only needs a non-empty value.
        api_key=proxy_token or "unused",
        model=model,
        request_timeout=request_timeout,
        default_query=None if rag_enabled else {"ragEnabled": "false"},
    )
    executor = HealthRecordToolExecutor()
    return ChatSession(
        AIClient(settings),
        executor,
        tools=executor.tools,
        config=RoundConfig(
            max_iterations=max_iterations,
            system_prompt=HEALTH_ASSISTANT_PROMPT,
            temperature=temperature,
        ),
        name=name or ("rag" if rag_enabled else "baseline"),
        on_update=on_update,
    )


async def run_comparison(sessions: Iterable[ChatSession], content: str) -> list[Message | None]:
    """Send ``content`` to every session concurrently."""

    targets = list(sessions)
    LOGGER.debug("Dispatching message to %d session(s)", len(targets))
    return list(await asyncio.gather(*(session.send_message(content) for session in targets)))
