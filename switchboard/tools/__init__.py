"""Tool plugins -- descriptors, registry, validation and the execution gateway."""

from switchboard.tools.base import (
    ExecutionContext,
    ExecutionMode,
    PluginDescriptor,
    PrivacyScope,
    Tool,
)
from switchboard.tools.gateway import PluginGateway
from switchboard.tools.registry import PluginRegistry

__all__ = [
    "ExecutionContext",
    "ExecutionMode",
    "PluginDescriptor",
    "PluginGateway",
    "PluginRegistry",
    "PrivacyScope",
    "Tool",
]
