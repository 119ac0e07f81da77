"""LLM subsystem -- provider adapters, stream normalization and tool-call accumulation."""

from switchboard.llm.accumulator import SlotState, ToolCallAccumulator
from switchboard.llm.normalizer import StreamNormalizer
from switchboard.llm.types import (
    ContentPart,
    ConversationTurn,
    ErrorDelta,
    Finish,
    FinishReason,
    GenerationParams,
    Message,
    ProviderRequest,
    StreamDelta,
    TextDelta,
    ToolCall,
    ToolCallDelta,
    ToolSpec,
    Usage,
)

__all__ = [
    "ContentPart",
    "ConversationTurn",
    "ErrorDelta",
    "Finish",
    "FinishReason",
    "GenerationParams",
    "Message",
    "ProviderRequest",
    "SlotState",
    "StreamDelta",
    "StreamNormalizer",
    "TextDelta",
    "ToolCall",
    "ToolCallAccumulator",
    "ToolCallDelta",
    "ToolSpec",
    "Usage",
]
