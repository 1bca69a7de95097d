"""
Structured error handling for mtauthz.

Two regimes exist side by side:
  - Configuration errors (role, policy, plugin and registry mutation) are raised
    eagerly as subclasses of MTAuthzError.
  - The evaluation path (conditions, wildcard matching, RBAC checks) never raises
    these; failures there degrade to a deny decision.
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field


class ErrorCode(Enum):
    """Structured error codes."""

    # Authorization errors
    PERMISSION_DENIED = "permission_denied"
    INVALID_PERMISSION_CODE = "invalid_permission_code"
    MISSING_TENANT_CONTEXT = "missing_tenant_context"
    INVALID_TENANT = "invalid_tenant"

    # Validation errors
    VALIDATION_FAILED = "validation_failed"
    INVALID_POLICY = "invalid_policy"
    INVALID_BINDING = "invalid_binding"

    # Role errors
    ROLE_NOT_FOUND = "role_not_found"
    DUPLICATE_ROLE = "duplicate_role"
    SYSTEM_ROLE_IMMUTABLE = "system_role_immutable"
    CIRCULAR_INHERITANCE = "circular_inheritance"

    # Plugin errors
    PLUGIN_NOT_FOUND = "plugin_not_found"
    PLUGIN_ALREADY_REGISTERED = "plugin_already_registered"
    MISSING_DEPENDENCY = "missing_dependency"
    DEPENDENCY_CONFLICT = "dependency_conflict"
    CAPABILITY_UNAVAILABLE = "capability_unavailable"

    # Registry / hooks
    REGISTRY_FROZEN = "registry_frozen"
    DUPLICATE_RESOURCE = "duplicate_resource"
    RESOURCE_NOT_FOUND = "resource_not_found"
    HOOK_FAILED = "hook_failed"

    # Storage
    STORAGE_ERROR = "storage_error"


class ErrorSource(Enum):
    """Subsystems where errors can originate."""

    PERMISSION = "permission"
    POLICY = "policy"
    RBAC = "rbac"
    HOOKS = "hooks"
    PLUGIN = "plugin"
    REGISTRY = "registry"
    STORAGE = "storage"
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Additional context for errors."""

    tenant_id: Optional[str] = None
    subject_id: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)


class MTAuthzError(Exception):
    """
    Base exception class for all mtauthz errors.

    Carries an error code, the originating subsystem, a severity level and
    optional request context so callers can log or serialize failures uniformly.
    """

    default_code = ErrorCode.VALIDATION_FAILED
    default_source = ErrorSource.VALIDATION

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        source: Optional[ErrorSource] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        self.code = code or self.default_code
        self.message = message
        self.source = source or self.default_source
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause

        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        result = {
            "error": self.code.value,
            "error_description": self.message,
            "error_source": self.source.value,
            "error_severity": self.severity.value,
            "timestamp": self.context.timestamp.isoformat(),
        }

        if self.context.tenant_id:
            result["tenant_id"] = self.context.tenant_id

        if self.context.subject_id:
            result["subject_id"] = self.context.subject_id

        if self.context.request_id:
            result["request_id"] = self.context.request_id

        if self.context.metadata:
            result["metadata"] = self.context.metadata

        if self.cause:
            result["caused_by"] = str(self.cause)

        return result


class ValidationError(MTAuthzError):
    """Errors related to input validation."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext()
        if field:
            context.metadata["field"] = field
        super().__init__(message, context=context, **kwargs)


class InvalidPermissionCodeError(ValidationError):
    """Raised when a permission code or pattern is malformed."""

    default_code = ErrorCode.INVALID_PERMISSION_CODE
    default_source = ErrorSource.PERMISSION

    def __init__(self, code: str, reason: str):
        super().__init__(f'Invalid permission code "{code}": {reason}', field="code")
        self.context.metadata["permission_code"] = code


class PolicyValidationError(ValidationError):
    """Raised when a policy definition cannot be compiled."""

    default_code = ErrorCode.INVALID_POLICY
    default_source = ErrorSource.POLICY


class PermissionDeniedError(MTAuthzError):
    """Raised by require_permission when a check is not allowed."""

    default_code = ErrorCode.PERMISSION_DENIED
    default_source = ErrorSource.AUTHORIZATION

    def __init__(self, permission: str, reason: str = "",
                 tenant_id: Optional[str] = None, subject_id: Optional[str] = None):
        message = f"Permission denied: {permission}"
        if reason:
            message = f"{message} ({reason})"
        context = ErrorContext(
            tenant_id=tenant_id,
            subject_id=subject_id,
            metadata={"permission": permission, "reason": reason},
        )
        super().__init__(message, context=context)
        self.permission = permission
        self.reason = reason


class MissingTenantContextError(MTAuthzError):
    """Raised when a check is attempted without a tenant."""

    default_code = ErrorCode.MISSING_TENANT_CONTEXT
    default_source = ErrorSource.AUTHORIZATION

    def __init__(self, message: str = "Tenant context is required"):
        super().__init__(message)


class InvalidTenantError(MTAuthzError):
    """Raised when the tenant context is malformed."""

    default_code = ErrorCode.INVALID_TENANT
    default_source = ErrorSource.AUTHORIZATION


class RoleError(MTAuthzError):
    """Base class for role management errors."""

    default_source = ErrorSource.RBAC

    def __init__(self, message: str, tenant_id: Optional[str] = None,
                 role_id: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext(tenant_id=tenant_id)
        if role_id:
            context.metadata["role_id"] = role_id
        super().__init__(message, context=context, **kwargs)
        self.role_id = role_id


class RoleNotFoundError(RoleError):
    default_code = ErrorCode.ROLE_NOT_FOUND


class DuplicateRoleError(RoleError):
    default_code = ErrorCode.DUPLICATE_ROLE


class SystemRoleError(RoleError):
    """Raised on any attempt to modify or delete a system role."""

    default_code = ErrorCode.SYSTEM_ROLE_IMMUTABLE


class CircularInheritanceError(RoleError):
    """Raised when a role's inherits list would introduce a cycle."""

    default_code = ErrorCode.CIRCULAR_INHERITANCE

    def __init__(self, role_id: str, path: List[str], tenant_id: Optional[str] = None):
        chain = " -> ".join(path)
        super().__init__(
            f"Circular inheritance detected for role {role_id}: {chain}",
            tenant_id=tenant_id,
            role_id=role_id,
        )
        self.path = path


class BindingError(ValidationError):
    default_code = ErrorCode.INVALID_BINDING
    default_source = ErrorSource.RBAC


class PluginError(MTAuthzError):
    """Base class for plugin lifecycle errors."""

    default_source = ErrorSource.PLUGIN

    def __init__(self, message: str, plugin_name: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext()
        if plugin_name:
            context.metadata["plugin"] = plugin_name
        super().__init__(message, context=context, **kwargs)
        self.plugin_name = plugin_name


class PluginNotFoundError(PluginError):
    default_code = ErrorCode.PLUGIN_NOT_FOUND


class PluginAlreadyRegisteredError(PluginError):
    default_code = ErrorCode.PLUGIN_ALREADY_REGISTERED


class MissingDependencyError(PluginError):
    default_code = ErrorCode.MISSING_DEPENDENCY

    def __init__(self, plugin_name: str, dependency: str):
        super().__init__(
            f"Plugin {plugin_name} has a missing dependency: {dependency}",
            plugin_name=plugin_name,
        )
        self.dependency = dependency


class PluginDependencyError(PluginError):
    default_code = ErrorCode.DEPENDENCY_CONFLICT


class PluginCapabilityError(PluginError):
    """A plugin asked its context for something the host does not provide."""
    default_code = ErrorCode.CAPABILITY_UNAVAILABLE


class RegistryError(MTAuthzError):
    default_code = ErrorCode.DUPLICATE_RESOURCE
    default_source = ErrorSource.REGISTRY


class RegistryFrozenError(RegistryError):
    default_code = ErrorCode.REGISTRY_FROZEN

    def __init__(self, operation: str):
        super().__init__(f"Registry is frozen, cannot {operation} after init()")


class HookError(MTAuthzError):
    """Wraps an exception raised by an after_any hook."""

    default_code = ErrorCode.HOOK_FAILED
    default_source = ErrorSource.HOOKS


class StorageError(MTAuthzError):
    """Errors related to storage operations."""

    default_code = ErrorCode.STORAGE_ERROR
    default_source = ErrorSource.STORAGE

    def __init__(self, operation: str, key: str = "", message: str = "",
                 cause: Optional[Exception] = None):
        super().__init__(f"Storage error in {operation}: {message}", cause=cause)
        self.operation = operation
        self.key = key


def wrap_exception(exc: Exception, message: str,
                   code: ErrorCode = ErrorCode.HOOK_FAILED) -> MTAuthzError:
    """Wrap a generic exception as an mtauthz error."""
    if code is ErrorCode.HOOK_FAILED:
        return HookError(message, cause=exc)
    return MTAuthzError(message, code=code, cause=exc)


__all__ = [
    "ErrorCode",
    "ErrorSource",
    "ErrorSeverity",
    "ErrorContext",
    "MTAuthzError",
    "ValidationError",
    "InvalidPermissionCodeError",
    "PolicyValidationError",
    "PermissionDeniedError",
    "MissingTenantContextError",
    "InvalidTenantError",
    "RoleError",
    "RoleNotFoundError",
    "DuplicateRoleError",
    "SystemRoleError",
    "CircularInheritanceError",
    "BindingError",
    "PluginError",
    "PluginNotFoundError",
    "PluginAlreadyRegisteredError",
    "MissingDependencyError",
    "PluginDependencyError",
    "PluginCapabilityError",
    "RegistryError",
    "RegistryFrozenError",
    "HookError",
    "StorageError",
    "wrap_exception",
]
