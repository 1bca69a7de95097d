"""
Permission codes, wildcard matching and permission set helpers.

A permission code is ``resource:action``. Granted permissions may also be
wildcard patterns: ``*`` (everything), ``resource:*`` (any action on a
resource) or ``*:action`` (an action on any resource).
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from ..errors import InvalidPermissionCodeError
from .types import Permission, PermissionScope


SEPARATOR = ":"
WILDCARD = "*"

_IDENTIFIER = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")


def is_valid_identifier(value: Any) -> bool:
    return isinstance(value, str) and bool(_IDENTIFIER.match(value))


def create_permission_code(resource: str, action: str) -> str:
    """Format a permission code from its parts."""
    return f"{resource}{SEPARATOR}{action}"


def parse_permission_code(code: Any) -> Optional[Tuple[str, str]]:
    """
    Split a code into (resource, action).

    Returns None when the value is not a two-part code. Wildcard parts are
    returned as-is; use is_valid_permission_code to validate concrete codes.
    """
    if not isinstance(code, str) or not code:
        return None
    parts = code.split(SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


def is_valid_permission_code(code: Any) -> bool:
    """Check a concrete (non-wildcard) ``resource:action`` code."""
    parsed = parse_permission_code(code)
    if parsed is None:
        return False
    resource, action = parsed
    return is_valid_identifier(resource) and is_valid_identifier(action)


def is_valid_permission_pattern(pattern: Any) -> bool:
    """Check a code or one of the wildcard forms ``*``, ``resource:*``, ``*:action``."""
    if pattern == WILDCARD:
        return True
    parsed = parse_permission_code(pattern)
    if parsed is None:
        return False
    resource, action = parsed
    if resource == WILDCARD and action == WILDCARD:
        return False
    resource_ok = resource == WILDCARD or is_valid_identifier(resource)
    action_ok = action == WILDCARD or is_valid_identifier(action)
    return resource_ok and action_ok


def matches_pattern(code: str, pattern: str) -> bool:
    """
    Check whether a requested permission code is covered by a granted pattern.

    Args:
        code: The requested permission (``resource:action``)
        pattern: The granted permission or wildcard

    Returns:
        True if the pattern grants the code
    """
    if not isinstance(code, str) or not isinstance(pattern, str):
        return False

    if pattern == WILDCARD:
        return True

    if code == pattern:
        return True

    requested = parse_permission_code(code)
    granted = parse_permission_code(pattern)
    if requested is None or granted is None:
        return False

    granted_resource, granted_action = granted
    if granted_action == WILDCARD and granted_resource != WILDCARD:
        return requested[0] == granted_resource
    if granted_resource == WILDCARD and granted_action != WILDCARD:
        return requested[1] == granted_action
    return False


def matches_any(code: str, patterns: Iterable[str]) -> bool:
    return any(matches_pattern(code, pattern) for pattern in patterns)


def find_matching_pattern(code: str, patterns: Iterable[str]) -> Optional[str]:
    """Return the first pattern that grants the code, if any."""
    for pattern in patterns:
        if matches_pattern(code, pattern):
            return pattern
    return None


def compile_permission(resource: str,
                       action: str,
                       scope: Union[PermissionScope, str] = PermissionScope.TENANT,
                       conditions: Optional[Iterable[Any]] = None,
                       metadata: Optional[Dict[str, Any]] = None) -> Permission:
    """
    Validate resource and action identifiers and build an immutable Permission.

    Raises:
        InvalidPermissionCodeError: If either identifier is malformed
        ValueError: If the scope is unknown
    """
    code = create_permission_code(resource, action)
    if not is_valid_identifier(resource):
        raise InvalidPermissionCodeError(code, f"invalid resource name {resource!r}")
    if not is_valid_identifier(action):
        raise InvalidPermissionCodeError(code, f"invalid action name {action!r}")

    if not isinstance(scope, PermissionScope):
        scope = PermissionScope(scope)

    return Permission(
        code=code,
        resource=resource,
        action=action,
        scope=scope,
        conditions=tuple(conditions or ()),
        metadata=dict(metadata or {}),
    )


def expand_patterns(patterns: Iterable[str], all_codes: Iterable[str]) -> Set[str]:
    """
    Expand wildcard patterns into the concrete codes they cover.

    Concrete codes in ``patterns`` are kept even when absent from ``all_codes``.
    """
    known = list(all_codes)
    expanded: Set[str] = set()
    for pattern in patterns:
        if WILDCARD in pattern:
            expanded.update(code for code in known if matches_pattern(code, pattern))
        else:
            expanded.add(pattern)
    return expanded


def merge_permission_sets(*sets: Iterable[str]) -> Set[str]:
    merged: Set[str] = set()
    for permissions in sets:
        merged.update(permissions)
    return merged


def subtract_permission_sets(base: Iterable[str], to_remove: Iterable[str]) -> Set[str]:
    return set(base) - set(to_remove)


def intersect_permission_sets(*sets: Iterable[str]) -> Set[str]:
    if not sets:
        return set()
    first, *rest = [set(s) for s in sets]
    return first.intersection(*rest)


def group_by_resource(permissions: Iterable[Permission]) -> Dict[str, List[Permission]]:
    """Group permissions by resource, keeping input order within each group."""
    grouped: Dict[str, List[Permission]] = {}
    for permission in permissions:
        grouped.setdefault(permission.resource, []).append(permission)
    return grouped
