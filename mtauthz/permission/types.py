"""
Permission data model.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple


class PermissionScope(Enum):
    """Breadth of a permission."""
    GLOBAL = "global"
    TENANT = "tenant"
    OWN = "own"


@dataclass(frozen=True)
class Permission:
    """
    A compiled permission.

    The code is derived from resource and action at compile time and the
    instance is frozen afterwards.
    """
    code: str
    resource: str
    action: str
    scope: PermissionScope = PermissionScope.TENANT
    conditions: Tuple[Any, ...] = field(default_factory=tuple)
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        conditions: List[Any] = []
        for condition in self.conditions:
            to_dict = getattr(condition, 'to_dict', None)
            conditions.append(to_dict() if callable(to_dict) else condition)
        return {
            'code': self.code,
            'resource': self.resource,
            'action': self.action,
            'scope': self.scope.value,
            'conditions': conditions,
            'metadata': dict(self.metadata)
        }
