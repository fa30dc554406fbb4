"""Chat turn orchestration: projection, streaming reassembly and tool rounds."""

from .context_injector import inject_context
from .message_builder import project_history
from .retrieval_gate import maybe_retrieve
from .session import ChatSession, create_session, run_comparison
from .stream_accumulator import AccumulatorState, StreamAccumulator, StreamError
from .tool_executor import ToolExecutor, parse_tool_arguments
from .tool_round import RoundConfig, ToolCallRound, ToolRoundLimitError
from .types import Message, RagContext, StreamResult, ToolCallInvocation

__all__ = [
    "AccumulatorState",
    "ChatSession",
    "Message",
    "RagContext",
    "RoundConfig",
    "StreamAccumulator",
    "StreamError",
    "StreamResult",
    "ToolCallInvocation",
    "ToolCallRound",
    "ToolExecutor",
    "ToolRoundLimitError",
    "create_session",
    "inject_context",
    "maybe_retrieve",
    "parse_tool_arguments",
    "project_history",
    "run_comparison",
]
