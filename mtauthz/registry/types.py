"""
Resource definitions held by the registry.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from ..permission.types import PermissionScope


ResourceBeforeHook = Callable[[Any, str, Any], Any]
ResourceAfterHook = Callable[[Any, str, Any], Any]


@dataclass
class PermissionDefinition:
    """An action declared on a resource; compiled into a Permission on registration."""
    action: str
    scope: Union[PermissionScope, str] = PermissionScope.TENANT
    description: str = ""
    conditions: List[Any] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ResourceHooks:
    """
    Per-resource hooks run by MTAuthz.run_operation.

    ``before`` hooks receive (context, operation, input) and may block the
    operation the same way global before hooks do. ``after`` hooks receive
    (context, operation, result).
    """
    before: List[ResourceBeforeHook] = field(default_factory=list)
    after: List[ResourceAfterHook] = field(default_factory=list)

    def extend(self, other: 'ResourceHooks') -> None:
        self.before.extend(other.before)
        self.after.extend(other.after)


@dataclass
class ResourceDefinition:
    name: str
    permissions: List[PermissionDefinition] = field(default_factory=list)
    display_name: Optional[str] = None
    description: str = ""
    group: Optional[str] = None
    hooks: ResourceHooks = field(default_factory=ResourceHooks)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'name': self.name,
            'display_name': self.display_name or self.name,
            'description': self.description,
            'group': self.group,
            'actions': [p.action for p in self.permissions],
            'metadata': self.metadata
        }


def define_resource(name: str, actions: List[Union[str, PermissionDefinition]], **kwargs) -> ResourceDefinition:
    """Shorthand: actions may be plain action names."""
    permissions = [a if isinstance(a, PermissionDefinition) else PermissionDefinition(action=a)
                   for a in actions]
    return ResourceDefinition(name=name, permissions=permissions, **kwargs)
