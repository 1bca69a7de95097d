"""
Effective permission resolution and RBAC checks.
"""

import logging
import threading
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from ..common.utils import ensure_utc
from ..permission.utils import matches_any
from .bindings import BindingManager
from .roles import RoleManager
from .types import BindingSubjectType, EffectivePermissions, RBACCheckContext, RBACCheckResult
from .validation import coerce_subject_type


logger = logging.getLogger(__name__)


CacheKey = Tuple[str, BindingSubjectType, str]


def binding_subject_type(subject: Any,
                         default: BindingSubjectType = BindingSubjectType.USER) -> Optional[BindingSubjectType]:
    """
    Map a SubjectContext's type to a binding subject type.

    ``user`` and ``service`` map directly. Anonymous and system subjects
    cannot hold bindings and map to None; anything else maps to ``default``.
    """
    kind = getattr(subject, 'type', None)
    value = getattr(kind, 'value', kind)
    if value in ('anonymous', 'system'):
        return None
    try:
        return BindingSubjectType(value)
    except ValueError:
        return default


class RBACEvaluator:
    """
    Resolves a subject's effective permissions (active bindings, bound roles,
    inherited roles, union of permissions) and answers checks against them.

    Results are cached per (tenant, subject type, subject id) for ``cache_ttl``
    and only reused for evaluation instants inside the window in which the
    same bindings are active. A zero TTL disables caching.
    """

    def __init__(self, roles: RoleManager, bindings: BindingManager,
                 cache_ttl: timedelta = timedelta(seconds=60),
                 clock: Callable[[], float] = time.monotonic,
                 default_subject_type: BindingSubjectType = BindingSubjectType.USER):
        self.roles = roles
        self.bindings = bindings
        self._ttl = cache_ttl.total_seconds()
        self._clock = clock
        self._default_subject_type = default_subject_type
        self._cache: Dict[CacheKey, Tuple[EffectivePermissions, float]] = {}
        self._lock = threading.RLock()

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    def _cached(self, key: CacheKey, at: Optional[datetime]) -> Optional[EffectivePermissions]:
        with self._lock:
            entry = self._cache.get(key)
        if entry is None:
            return None
        value, expires = entry
        if self._clock() >= expires:
            return None
        instant = ensure_utc(at) if at is not None else self.bindings.now()
        if value.valid_until is not None and instant >= value.valid_until:
            return None
        if value.valid_from is not None and instant < value.valid_from:
            return None
        return value

    async def get_effective_permissions(self, tenant_id: str,
                                        subject_type: Union[BindingSubjectType, str],
                                        subject_id: str,
                                        at: Optional[datetime] = None) -> EffectivePermissions:
        """
        Resolve the permissions granted to a subject through its active
        bindings and every role they inherit, breadth first.
        """
        subject_type = coerce_subject_type(subject_type)
        key = (tenant_id, subject_type, subject_id)

        if self._ttl > 0:
            cached = self._cached(key, at)
            if cached is not None:
                logger.debug(f"Effective permissions cache hit: {tenant_id}/{subject_type.value}:{subject_id}")
                return cached
            logger.debug(f"Effective permissions cache miss: {tenant_id}/{subject_type.value}:{subject_id}")

        bindings, expired = await self.bindings.split_subject_bindings(tenant_id, subject_type, subject_id, at=at)
        expiries = [ensure_utc(b.expires_at) for b in bindings if b.expires_at is not None]
        lapsed = [ensure_utc(b.expires_at) for b in expired]

        queue = deque(b.role_id for b in bindings)
        visited: Set[str] = set()
        roles: List[str] = []
        role_permissions: Dict[str, frozenset] = {}
        permissions: Set[str] = set()

        while queue:
            role_id = queue.popleft()
            if role_id in visited:
                continue
            visited.add(role_id)

            role = await self.roles.get_role(tenant_id, role_id)
            if role is None or not role.is_active:
                continue

            roles.append(role.id)
            role_permissions[role.id] = frozenset(role.permissions)
            permissions.update(role.permissions)
            queue.extend(role.inherits)

        effective = EffectivePermissions(
            tenant_id=tenant_id,
            subject_type=subject_type,
            subject_id=subject_id,
            permissions=frozenset(permissions),
            roles=tuple(roles),
            role_permissions=role_permissions,
            valid_until=min(expiries) if expiries else None,
            valid_from=max(lapsed) if lapsed else None,
        )

        if self._ttl > 0:
            with self._lock:
                self._cache[key] = (effective, self._clock() + self._ttl)
        return effective

    async def get_permissions(self, tenant_id: str, subject_type: Union[BindingSubjectType, str],
                              subject_id: str) -> List[str]:
        """Effective permissions as a sorted list."""
        effective = await self.get_effective_permissions(tenant_id, subject_type, subject_id)
        return sorted(effective.permissions)

    async def _effective_for(self, context: Any) -> Optional[EffectivePermissions]:
        subject_type = binding_subject_type(context.subject, self._default_subject_type)
        if subject_type is None:
            return None
        request = getattr(context, 'request', None)
        at = getattr(request, 'timestamp', None)
        return await self.get_effective_permissions(context.tenant.id, subject_type,
                                                    context.subject.id, at=at)

    async def check(self, context: RBACCheckContext) -> RBACCheckResult:
        """
        Check a permission against the subject's effective permissions.

        Only roles whose own permissions cover the requested code are
        reported in ``matched_roles``. Store failures deny.
        """
        try:
            effective = await self._effective_for(context)
        except Exception as e:
            logger.warning(f"RBAC check failed for {context.tenant.id}/{context.subject.id}: {e}")
            return RBACCheckResult(allowed=False, reason="Failed to resolve permissions")

        if effective is None:
            return RBACCheckResult(allowed=False, reason="Subject type cannot hold role bindings")

        matched = [
            role_id for role_id in effective.roles
            if matches_any(context.permission, effective.role_permissions.get(role_id, ()))
        ]
        if matched:
            return RBACCheckResult(allowed=True, reason=f"Granted by roles: {', '.join(matched)}",
                                   matched_roles=matched)
        return RBACCheckResult(allowed=False, reason="Permission not granted by any role")

    async def has_any_permission(self, context: Any, permissions: Iterable[str]) -> bool:
        try:
            effective = await self._effective_for(context)
        except Exception as e:
            logger.warning(f"RBAC lookup failed for {context.tenant.id}/{context.subject.id}: {e}")
            return False
        if effective is None:
            return False
        return any(matches_any(required, effective.permissions) for required in permissions)

    async def has_all_permissions(self, context: Any, permissions: Iterable[str]) -> bool:
        try:
            effective = await self._effective_for(context)
        except Exception as e:
            logger.warning(f"RBAC lookup failed for {context.tenant.id}/{context.subject.id}: {e}")
            return False
        if effective is None:
            return False
        return all(matches_any(required, effective.permissions) for required in permissions)

    def invalidate(self, tenant_id: str, subject_id: Optional[str] = None) -> None:
        """Drop cached entries of one subject, or of the whole tenant."""
        with self._lock:
            stale = [
                key for key in self._cache
                if key[0] == tenant_id and (subject_id is None or key[2] == subject_id)
            ]
            for key in stale:
                del self._cache[key]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached permission sets in {tenant_id}")

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
