"""
Plugin system: definitions, the context handed to plugins, and the manager.
"""

from .types import PluginDefinition, PluginInstance
from .context import PluginContext
from .manager import PluginManager

__all__ = [
    "PluginDefinition",
    "PluginInstance",
    "PluginContext",
    "PluginManager",
]
