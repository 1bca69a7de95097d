"""
Core module initialization
"""

from .types import (
    SubjectType,
    TenantStatus,
    TenantContext,
    SubjectContext,
    RequestContext,
    AuthzContext,
    PermissionCheckContext,
    PermissionCheckResult,
    BatchPermissionCheckResult,
    anonymous_subject,
    system_subject,
    create_context,
    current_evaluation_time,
    evaluating_at,
)
from .config import Config, CheckStrategy
from .authz import MTAuthz, create_authz

__all__ = [
    "SubjectType",
    "TenantStatus",
    "TenantContext",
    "SubjectContext",
    "RequestContext",
    "AuthzContext",
    "PermissionCheckContext",
    "PermissionCheckResult",
    "BatchPermissionCheckResult",
    "anonymous_subject",
    "system_subject",
    "create_context",
    "current_evaluation_time",
    "evaluating_at",
    "Config",
    "CheckStrategy",
    "MTAuthz",
    "create_authz",
]
