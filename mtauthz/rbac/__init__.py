"""
Role-based access control: roles, bindings and effective permissions.
"""

from .types import (
    RoleStatus,
    BindingSubjectType,
    RoleDefinition,
    RoleBinding,
    EffectivePermissions,
    RBACCheckContext,
    RBACCheckResult,
)
from .store import RBACStore
from .memory import MemoryRBACStore
from .validation import is_valid_role_name, check_circular_inheritance
from .roles import (
    RoleManager,
    super_admin_role,
    tenant_admin_role,
    viewer_role,
    default_system_roles,
)
from .bindings import BindingManager
from .evaluator import RBACEvaluator
from .rbac import RBAC, create_permission_resolver, create_rbac_plugin

__all__ = [
    "RoleStatus",
    "BindingSubjectType",
    "RoleDefinition",
    "RoleBinding",
    "EffectivePermissions",
    "RBACCheckContext",
    "RBACCheckResult",
    "RBACStore",
    "MemoryRBACStore",
    "is_valid_role_name",
    "check_circular_inheritance",
    "RoleManager",
    "super_admin_role",
    "tenant_admin_role",
    "viewer_role",
    "default_system_roles",
    "BindingManager",
    "RBACEvaluator",
    "RBAC",
    "create_permission_resolver",
    "create_rbac_plugin",
]
