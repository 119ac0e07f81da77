"""
Provider registry -- the single place a ``ProviderKind`` is resolved to an
adapter.

OpenAI-compatible services share ``OpenAICompatAdapter`` and differ only in
their default base URL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from switchboard.llm.providers.anthropic import AnthropicAdapter
from switchboard.llm.providers.base import ProviderAdapter, ProviderKind
from switchboard.llm.providers.gemini import GeminiAdapter
from switchboard.llm.providers.ollama import OllamaAdapter
from switchboard.llm.providers.openai_compat import OpenAICompatAdapter

if TYPE_CHECKING:
    from switchboard.config import ProviderConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderEntry:
    adapter_cls: type[ProviderAdapter]
    base_url: str | None = None

    @property
    def default_base_url(self) -> str:
        return self.base_url or self.adapter_cls.default_base_url


_OPENAI_COMPAT_URLS: dict[ProviderKind, str] = {
    ProviderKind.OPENAI: "https://api.openai.com/v1",
    ProviderKind.OPENROUTER: "https://openrouter.ai/api/v1",
    ProviderKind.DEEPSEEK: "https://api.deepseek.com/v1",
    ProviderKind.XAI: "https://api.x.ai/v1",
    ProviderKind.GROQ: "https://api.groq.com/openai/v1",
    ProviderKind.MISTRAL: "https://api.mistral.ai/v1",
    ProviderKind.TOGETHER: "https://api.together.xyz/v1",
    ProviderKind.LMSTUDIO: "http://localhost:1234/v1",
    ProviderKind.VLLM: "http://localhost:8000/v1",
}


class ProviderRegistry:
    """Maps each ``ProviderKind`` to the adapter class that serves it."""

    def __init__(self) -> None:
        self._entries: dict[ProviderKind, ProviderEntry] = {}

    @classmethod
    def default(cls) -> ProviderRegistry:
        reg = cls()
        for kind, url in _OPENAI_COMPAT_URLS.items():
            reg.register(kind, OpenAICompatAdapter, base_url=url)
        reg.register(ProviderKind.ANTHROPIC, AnthropicAdapter)
        reg.register(ProviderKind.GEMINI, GeminiAdapter)
        reg.register(ProviderKind.OLLAMA, OllamaAdapter)
        return reg

    def register(
        self,
        kind: ProviderKind,
        adapter_cls: type[ProviderAdapter],
        *,
        base_url: str | None = None,
        overwrite: bool = False,
    ) -> None:
        if kind in self._entries and not overwrite:
            raise ValueError(f"Provider already registered: {kind.value}")
        self._entries[kind] = ProviderEntry(adapter_cls, base_url)

    def get(self, kind: ProviderKind | str) -> ProviderEntry:
        """
        Return the entry for *kind*.

        Raises ``KeyError`` for kinds that are not registered, and
        ``ValueError`` for strings that are not a ``ProviderKind`` at all.
        """
        kind = ProviderKind(kind)
        if kind not in self._entries:
            raise KeyError(
                f"Unknown provider {kind.value!r}. "
                f"Registered: {[k.value for k in self._entries]}"
            )
        return self._entries[kind]

    def kinds(self) -> list[ProviderKind]:
        return sorted(self._entries, key=lambda k: k.value)

    def create(
        self,
        config: ProviderConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ProviderAdapter:
        """Build the adapter for *config*."""
        entry = self.get(config.kind)
        adapter = entry.adapter_cls.from_config(
            config, base_url=entry.default_base_url, transport=transport
        )
        logger.debug("Resolved provider %s -> %s", adapter.name, adapter.base_url)
        return adapter
