"""
Resolver-backed permission checker.
"""

import asyncio
import logging
import threading
import time
from datetime import timedelta
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple, Union

from ..common.utils import maybe_await
from ..core.types import (
    BatchPermissionCheckResult,
    PermissionCheckContext,
    PermissionCheckResult,
)
from ..errors import InvalidTenantError, MissingTenantContextError, PermissionDeniedError
from .utils import WILDCARD, find_matching_pattern, parse_permission_code


logger = logging.getLogger(__name__)


PermissionResolver = Callable[[str, str], Union[Set[str], Awaitable[Set[str]]]]


def validate_tenant(context: PermissionCheckContext) -> None:
    """Reject checks that carry no usable tenant."""
    tenant = getattr(context, 'tenant', None)
    if tenant is None:
        raise MissingTenantContextError()
    tenant_id = getattr(tenant, 'id', None)
    if not isinstance(tenant_id, str) or not tenant_id:
        raise InvalidTenantError("Tenant ID must be a non-empty string")


def _describe_grant(pattern: str) -> str:
    if pattern == WILDCARD:
        return "Wildcard permission"
    if pattern.endswith(f":{WILDCARD}"):
        return "Resource wildcard permission"
    if pattern.startswith(f"{WILDCARD}:"):
        return "Action wildcard permission"
    return "Specific permission granted"


class PermissionChecker:
    """
    Answers permission checks from a subject's direct permissions and a
    pluggable permission resolver.

    Check order:
      1. system subjects are always allowed
      2. the subject's direct permissions (wildcards honoured)
      3. the resolver's permission set (wildcards honoured)
      4. deny

    A resolver that raises or returns something other than a set is treated
    as granting nothing.
    """

    def __init__(self, resolver: PermissionResolver,
                 cache_ttl: timedelta = timedelta(0),
                 clock: Callable[[], float] = time.monotonic):
        self._resolver = resolver
        self._cache_ttl = cache_ttl.total_seconds()
        self._clock = clock
        self._cache: Dict[Tuple[str, str], Tuple[Set[str], float]] = {}
        self._lock = threading.RLock()

    @property
    def resolver(self) -> PermissionResolver:
        return self._resolver

    def set_resolver(self, resolver: PermissionResolver) -> None:
        self._resolver = resolver
        self.clear_cache()

    async def resolve_permissions(self, tenant_id: str, subject_id: str) -> Set[str]:
        """Resolve a subject's permission set, failing closed on resolver errors."""
        key = (tenant_id, subject_id)
        if self._cache_ttl > 0:
            with self._lock:
                cached = self._cache.get(key)
            if cached and cached[1] > self._clock():
                return cached[0]

        try:
            permissions = await maybe_await(self._resolver(tenant_id, subject_id))
        except Exception as e:
            logger.warning(f"Permission resolver failed for {tenant_id}/{subject_id}: {e}")
            permissions = set()

        if not isinstance(permissions, (set, frozenset)):
            permissions = set()

        if self._cache_ttl > 0:
            with self._lock:
                self._cache[key] = (permissions, self._clock() + self._cache_ttl)
        return permissions

    async def check(self, context: PermissionCheckContext) -> PermissionCheckResult:
        """Check a single permission."""
        start = time.perf_counter()
        validate_tenant(context)
        code = context.permission_code

        def result(allowed: bool, reason: str) -> PermissionCheckResult:
            return PermissionCheckResult(
                allowed=allowed,
                permission=code,
                reason=reason,
                evaluation_time=time.perf_counter() - start,
            )

        if context.subject.is_system:
            return result(True, "System subject has full access")

        if find_matching_pattern(code, context.subject.permissions or ()):
            return result(True, "Direct permission on subject")

        permissions = await self.resolve_permissions(context.tenant.id, context.subject.id)
        # Sorted so the reported reason does not depend on set iteration order.
        granted = find_matching_pattern(code, sorted(permissions))
        if granted is not None:
            return result(True, _describe_grant(granted))

        return result(False, "Permission not granted")

    async def check_or_raise(self, context: PermissionCheckContext) -> None:
        """
        Raises:
            PermissionDeniedError: If the check is not allowed
        """
        outcome = await self.check(context)
        if not outcome.allowed:
            raise PermissionDeniedError(
                outcome.permission,
                reason=outcome.reason,
                tenant_id=context.tenant.id,
                subject_id=context.subject.id,
            )

    async def check_many(self, contexts: Iterable[PermissionCheckContext],
                         max_concurrency: Optional[int] = 10) -> BatchPermissionCheckResult:
        """Check several permissions, keyed by permission code."""
        contexts = list(contexts)
        batch = BatchPermissionCheckResult()
        if not contexts:
            return batch

        if not max_concurrency:
            for context in contexts:
                batch.results[context.permission_code] = await self.check(context)
            return batch

        semaphore = asyncio.Semaphore(max_concurrency)

        async def run(context: PermissionCheckContext) -> PermissionCheckResult:
            async with semaphore:
                return await self.check(context)

        outcomes = await asyncio.gather(*(run(c) for c in contexts))
        for context, outcome in zip(contexts, outcomes):
            batch.results[context.permission_code] = outcome
        return batch

    async def has_any(self, context: PermissionCheckContext, codes: Iterable[str]) -> bool:
        """True if any of the codes is allowed; malformed codes are skipped."""
        for code in codes:
            parsed = parse_permission_code(code)
            if parsed is None:
                continue
            if (await self.check(self._with_code(context, parsed))).allowed:
                return True
        return False

    async def has_all(self, context: PermissionCheckContext, codes: Iterable[str]) -> bool:
        """True if every code is allowed; a malformed code fails the check."""
        for code in codes:
            parsed = parse_permission_code(code)
            if parsed is None:
                return False
            if not (await self.check(self._with_code(context, parsed))).allowed:
                return False
        return True

    def invalidate(self, tenant_id: str, subject_id: Optional[str] = None) -> None:
        with self._lock:
            if subject_id is not None:
                self._cache.pop((tenant_id, subject_id), None)
                return
            for key in [k for k in self._cache if k[0] == tenant_id]:
                del self._cache[key]

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    @staticmethod
    def _with_code(context: PermissionCheckContext, parsed: Tuple[str, str]) -> PermissionCheckContext:
        return PermissionCheckContext(
            tenant=context.tenant,
            subject=context.subject,
            resource=parsed[0],
            action=parsed[1],
            request=context.request,
            resource_id=context.resource_id,
            resource_data=context.resource_data,
            environment=context.environment,
        )


def create_simple_checker(get_permissions: PermissionResolver) -> PermissionChecker:
    """Build a checker around a sync or async permission lookup."""
    return PermissionChecker(get_permissions)


def create_allow_all_checker() -> PermissionChecker:
    return PermissionChecker(lambda tenant_id, subject_id: {WILDCARD})


def create_deny_all_checker() -> PermissionChecker:
    return PermissionChecker(lambda tenant_id, subject_id: set())
