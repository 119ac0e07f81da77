from __future__ import annotations

import logging
from contextlib import contextmanager
from importlib.metadata import entry_points
from typing import TYPE_CHECKING, Iterable, Iterator

from switchboard.errors import RegistryLocked, UnknownToolError
from switchboard.llm.types import ToolSpec
from switchboard.tools.base import PluginDescriptor, Tool
from switchboard.tools.builtin import register_builtin_tools

if TYPE_CHECKING:
    from switchboard.config import SwitchboardConfig

logger = logging.getLogger(__name__)

PLUGIN_GROUP = "switchboard.plugins"


class PluginRegistry:
    """
    Name -> ``PluginDescriptor`` map shared by every running turn.

    Turns hold the registry open with ``reading()``; mutating it while any
    turn is reading raises ``RegistryLocked``.
    """

    def __init__(self):
        self._plugins: dict[str, PluginDescriptor] = {}
        self._readers = 0

    @classmethod
    def from_config(cls, config: SwitchboardConfig) -> PluginRegistry:
        """Builtins named in ``tools.builtin`` plus any allowed entry-point plugins."""
        registry = cls()
        register_builtin_tools(registry, config.tools.builtin)
        registry.load_plugins(
            enabled=config.plugins.enabled,
            allow_distributions=set(config.plugins.allow_distributions) or None,
            allow_tools=set(config.plugins.allow_tools) or None,
        )
        return registry

    def register(
        self, plugin: PluginDescriptor | Tool, *, overwrite: bool = False
    ) -> PluginDescriptor:
        self._check_writable()
        desc = plugin.to_descriptor() if isinstance(plugin, Tool) else plugin
        if desc.name in self._plugins and not overwrite:
            raise ValueError(f"Plugin already registered: {desc.name}")
        self._plugins[desc.name] = desc
        return desc

    def unregister(self, name: str) -> None:
        self._check_writable()
        self._plugins.pop(name, None)

    def get(self, name: str) -> PluginDescriptor | None:
        return self._plugins.get(name)

    def require(self, name: str) -> PluginDescriptor:
        p = self.get(name)
        if not p:
            raise UnknownToolError(f"Unknown tool: {name}")
        return p

    def list(self) -> list[PluginDescriptor]:
        return sorted(self._plugins.values(), key=lambda p: p.name)

    def __contains__(self, name: object) -> bool:
        return name in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)

    def specs(self, names: Iterable[str] | None = None) -> tuple[ToolSpec, ...]:
        """Tool declarations for *names* (all plugins when ``None``)."""
        if names is None:
            return tuple(p.to_spec() for p in self.list())
        return tuple(self.require(n).to_spec() for n in names)

    # ------------------------------------------------------------------
    # Read locking
    # ------------------------------------------------------------------

    @property
    def locked(self) -> bool:
        return self._readers > 0

    @contextmanager
    def reading(self) -> Iterator[PluginRegistry]:
        self._readers += 1
        try:
            yield self
        finally:
            self._readers -= 1

    def _check_writable(self) -> None:
        if self._readers:
            raise RegistryLocked(
                f"Plugin registry is in use by {self._readers} active turn(s)"
            )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def load_plugins(
        self,
        *,
        enabled: bool,
        group: str = PLUGIN_GROUP,
        allow_distributions: set[str] | None = None,
        allow_tools: set[str] | None = None,
    ) -> int:
        """Load plugins from entry points.

        An entry point may resolve to a ``PluginDescriptor``, a ``Tool``
        instance, or a ``Tool`` subclass constructed with no arguments.
        """
        if not enabled:
            return 0
        loaded = 0
        for ep in entry_points(group=group):
            dist = getattr(ep, "dist", None)
            dist_name = getattr(dist, "name", None)
            if allow_distributions and dist_name and dist_name not in allow_distributions:
                continue
            if allow_tools and ep.name not in allow_tools:
                continue
            obj = ep.load()
            if isinstance(obj, type) and issubclass(obj, Tool):
                obj = obj()
            if not isinstance(obj, (PluginDescriptor, Tool)):
                logger.warning(
                    "Entry point %s:%s is not a plugin (%r), skipping",
                    group, ep.name, type(obj).__name__,
                )
                continue
            self.register(obj)
            loaded += 1
        logger.info("Loaded %d plugin(s) from %s", loaded, group)
        return loaded
