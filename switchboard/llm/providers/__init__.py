from switchboard.llm.providers.anthropic import AnthropicAdapter
from switchboard.llm.providers.base import (
    Credentials,
    ProviderAdapter,
    ProviderKind,
    StreamState,
)
from switchboard.llm.providers.gemini import GeminiAdapter
from switchboard.llm.providers.ollama import OllamaAdapter
from switchboard.llm.providers.openai_compat import OpenAICompatAdapter
from switchboard.llm.providers.registry import ProviderRegistry

__all__ = [
    "AnthropicAdapter",
    "Credentials",
    "GeminiAdapter",
    "OllamaAdapter",
    "OpenAICompatAdapter",
    "ProviderAdapter",
    "ProviderKind",
    "ProviderRegistry",
    "StreamState",
]
