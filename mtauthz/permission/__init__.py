"""
Permission model: codes, wildcard matching and the resolver-backed checker.
"""

from .types import Permission, PermissionScope
from .utils import (
    SEPARATOR,
    WILDCARD,
    compile_permission,
    create_permission_code,
    parse_permission_code,
    is_valid_permission_code,
    is_valid_permission_pattern,
    matches_pattern,
    matches_any,
    find_matching_pattern,
    expand_patterns,
    merge_permission_sets,
    subtract_permission_sets,
    intersect_permission_sets,
    group_by_resource,
)
from .checker import (
    PermissionChecker,
    PermissionResolver,
    create_simple_checker,
    create_allow_all_checker,
    create_deny_all_checker,
)

__all__ = [
    "Permission",
    "PermissionScope",
    "SEPARATOR",
    "WILDCARD",
    "compile_permission",
    "create_permission_code",
    "parse_permission_code",
    "is_valid_permission_code",
    "is_valid_permission_pattern",
    "matches_pattern",
    "matches_any",
    "find_matching_pattern",
    "expand_patterns",
    "merge_permission_sets",
    "subtract_permission_sets",
    "intersect_permission_sets",
    "group_by_resource",
    "PermissionChecker",
    "PermissionResolver",
    "create_simple_checker",
    "create_allow_all_checker",
    "create_deny_all_checker",
]
