"""
Validation helpers for role and binding input.
"""

import re
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from ..common.utils import ensure_utc
from ..errors import BindingError, CircularInheritanceError, ValidationError
from ..permission.utils import is_valid_permission_pattern
from .types import BindingSubjectType, RoleDefinition


ROLE_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")
ROLE_NAME_MIN_LENGTH = 2
ROLE_NAME_MAX_LENGTH = 50


def is_valid_role_name(name: Any) -> bool:
    return (isinstance(name, str)
            and ROLE_NAME_MIN_LENGTH <= len(name) <= ROLE_NAME_MAX_LENGTH
            and bool(ROLE_NAME_PATTERN.match(name)))


def validate_role_name(name: Any) -> None:
    if not isinstance(name, str):
        raise ValidationError("Role name must be a string", field="name")
    if not ROLE_NAME_MIN_LENGTH <= len(name) <= ROLE_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Role name must be between {ROLE_NAME_MIN_LENGTH} and {ROLE_NAME_MAX_LENGTH} characters",
            field="name",
        )
    if not ROLE_NAME_PATTERN.match(name):
        raise ValidationError(
            "Role name must start with a letter and contain only letters, digits, "
            "underscores and hyphens",
            field="name",
        )


def validate_permissions(permissions: Iterable[Any]) -> List[str]:
    if isinstance(permissions, str):
        raise ValidationError("Permissions must be a list of codes", field="permissions")
    result = []
    for permission in permissions:
        if not is_valid_permission_pattern(permission):
            raise ValidationError(f"Invalid permission code: {permission!r}", field="permissions")
        result.append(permission)
    return result


def validate_inherits(inherits: Iterable[Any]) -> List[str]:
    if isinstance(inherits, str):
        raise ValidationError("Inherits must be a list of role ids", field="inherits")
    result = []
    for role_id in inherits:
        if not isinstance(role_id, str) or not role_id:
            raise ValidationError("Inherited role ids must be non-empty strings", field="inherits")
        if role_id not in result:
            result.append(role_id)
    return result


def validate_tenant_id(tenant_id: Any) -> None:
    if not isinstance(tenant_id, str) or not tenant_id:
        raise ValidationError("Tenant ID must be a non-empty string", field="tenant_id")


def coerce_subject_type(subject_type: Any) -> BindingSubjectType:
    if isinstance(subject_type, BindingSubjectType):
        return subject_type
    try:
        return BindingSubjectType(subject_type)
    except ValueError:
        valid = ", ".join(t.value for t in BindingSubjectType)
        raise BindingError(f"Subject type must be one of: {valid}", field="subject_type")


def validate_binding_input(role_id: Any, subject_id: Any,
                           expires_at: Optional[datetime], now: datetime) -> None:
    if not isinstance(role_id, str) or not role_id:
        raise BindingError("Role ID is required", field="role_id")
    if not isinstance(subject_id, str) or not subject_id:
        raise BindingError("Subject ID is required", field="subject_id")
    if expires_at is not None:
        if not isinstance(expires_at, datetime):
            raise BindingError("Expiration must be a datetime", field="expires_at")
        if ensure_utc(expires_at) <= ensure_utc(now):
            raise BindingError("Expiration date must be in the future", field="expires_at")


async def check_circular_inheritance(
    get_role: Callable[[str], Awaitable[Optional[RoleDefinition]]],
    role_id: str,
    inherits: Iterable[str],
    tenant_id: Optional[str] = None,
) -> None:
    """
    Walk the proposed inherits edges, and each target's existing edges,
    depth first. Reaching ``role_id`` again means the change would close a
    cycle.

    Raises:
        CircularInheritanceError: With the offending path
    """
    stack = [(parent, [role_id, parent]) for parent in reversed(list(inherits))]
    visited = set()

    while stack:
        current, path = stack.pop()
        if current == role_id:
            raise CircularInheritanceError(role_id, path, tenant_id=tenant_id)
        if current in visited:
            continue
        visited.add(current)

        role = await get_role(current)
        if role is None:
            continue
        for parent in reversed(role.inherits):
            stack.append((parent, path + [parent]))
