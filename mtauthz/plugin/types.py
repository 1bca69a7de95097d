"""
Plugin definitions and runtime instances.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass
class PluginDefinition:
    """
    An installable extension.

    Lifecycle callables may be sync or async. ``install`` and ``on_init``
    receive the PluginContext; ``on_register`` and ``on_destroy`` take no
    arguments.
    """
    name: str
    version: str = "0.1.0"
    description: str = ""
    dependencies: List[str] = field(default_factory=list)
    install: Optional[Callable[[Any], Any]] = None
    on_register: Optional[Callable[[], Any]] = None
    on_init: Optional[Callable[[Any], Any]] = None
    on_destroy: Optional[Callable[[], Any]] = None
    state: Any = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'name': self.name,
            'version': self.version,
            'description': self.description,
            'dependencies': list(self.dependencies)
        }


@dataclass
class PluginInstance:
    definition: PluginDefinition
    installed: bool = False
    initialized: bool = False

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def state(self) -> Any:
        return self.definition.state

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data = self.definition.to_dict()
        data['installed'] = self.installed
        data['initialized'] = self.initialized
        return data
