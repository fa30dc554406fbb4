"""AI client, streaming events, and tool wiring."""

from .client import AIClient, AIStreamEvent, ClientSettings, CompletedChat, StreamingCompletion

__all__ = ["AIClient", "AIStreamEvent", "ClientSettings", "CompletedChat", "StreamingCompletion"]
