"""
Resource and policy registry.
"""

from .types import (
    PermissionDefinition,
    ResourceHooks,
    ResourceDefinition,
    define_resource,
)
from .registry import Registry

__all__ = [
    "PermissionDefinition",
    "ResourceHooks",
    "ResourceDefinition",
    "define_resource",
    "Registry",
]
