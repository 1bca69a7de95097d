"""
mtauthz Python Package

Multi-tenant authorization core: permissions, policies and RBAC.
"""

__version__ = "0.1.0"

from .core.types import (
    SubjectType,
    TenantContext,
    SubjectContext,
    RequestContext,
    AuthzContext,
    PermissionCheckContext,
    PermissionCheckResult,
    anonymous_subject,
    system_subject,
    create_context,
)
from .core.config import Config, CheckStrategy
from .core.authz import MTAuthz, create_authz
from .errors import MTAuthzError, PermissionDeniedError
from .permission import PermissionScope, matches_pattern
from .policy import (
    PolicyDefinition,
    PolicyRule,
    PolicyEffect,
    PolicyPriority,
    PolicyEngine,
    PolicyBuilder,
)
from .rbac import RBAC, MemoryRBACStore, create_rbac_plugin
from .registry import ResourceDefinition, PermissionDefinition, define_resource
from .plugin import PluginDefinition
from .hooks import GlobalHooks

__all__ = [
    "MTAuthz",
    "create_authz",
    "Config",
    "CheckStrategy",
    "SubjectType",
    "TenantContext",
    "SubjectContext",
    "RequestContext",
    "AuthzContext",
    "PermissionCheckContext",
    "PermissionCheckResult",
    "anonymous_subject",
    "system_subject",
    "create_context",
    "MTAuthzError",
    "PermissionDeniedError",
    "PermissionScope",
    "matches_pattern",
    "PolicyDefinition",
    "PolicyRule",
    "PolicyEffect",
    "PolicyPriority",
    "PolicyEngine",
    "PolicyBuilder",
    "RBAC",
    "MemoryRBACStore",
    "create_rbac_plugin",
    "ResourceDefinition",
    "PermissionDefinition",
    "define_resource",
    "PluginDefinition",
    "GlobalHooks",
]
