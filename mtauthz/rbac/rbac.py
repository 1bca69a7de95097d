"""
RBAC facade, permission resolver factory and plugin.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from ..common.utils import get_current_time
from ..core.types import RequestContext, SubjectContext, TenantContext, current_evaluation_time
from ..plugin.types import PluginDefinition
from .bindings import BindingManager
from .evaluator import RBACEvaluator
from .memory import MemoryRBACStore
from .roles import RoleManager
from .store import RBACStore
from .types import (
    BindingSubjectType,
    EffectivePermissions,
    RBACCheckContext,
    RBACCheckResult,
    RoleBinding,
    RoleDefinition,
    RoleStatus,
)


logger = logging.getLogger(__name__)


SubjectTypeLike = Union[BindingSubjectType, str]


class RBAC:
    """
    Role-based access control over a single store.

    Wires a RoleManager, a BindingManager and an RBACEvaluator together so
    that every role or binding mutation invalidates the affected cache
    entries.
    """

    def __init__(self, store: Optional[RBACStore] = None,
                 cache_ttl: timedelta = timedelta(seconds=60),
                 system_roles: Optional[Iterable[RoleDefinition]] = None,
                 register_system_roles: bool = True,
                 default_subject_type: BindingSubjectType = BindingSubjectType.USER,
                 clock: Callable[[], float] = time.monotonic,
                 now: Callable[[], datetime] = get_current_time):
        self.store = store or MemoryRBACStore()
        if not register_system_roles:
            system_roles = []
        self.roles = RoleManager(self.store, system_roles=system_roles)
        self.bindings = BindingManager(self.store, now=now)
        self.evaluator = RBACEvaluator(self.roles, self.bindings, cache_ttl=cache_ttl,
                                       clock=clock, default_subject_type=default_subject_type)
        self.default_subject_type = default_subject_type

        self.roles.set_change_listener(self.evaluator.invalidate)
        self.bindings.set_change_listener(self.evaluator.invalidate)

        logger.info(f"RBAC initialized with {len(self.roles.system_role_ids)} system roles")

    @classmethod
    def from_config(cls, config: Any, store: Optional[RBACStore] = None) -> 'RBAC':
        """Build from an mtauthz Config."""
        return cls(
            store=store,
            cache_ttl=config.rbac_cache_ttl,
            register_system_roles=config.register_system_roles,
            default_subject_type=BindingSubjectType(
                getattr(config.default_subject_type, 'value', config.default_subject_type)),
        )

    # Roles

    async def create_role(self, tenant_id: str, name: str, permissions: Optional[Iterable[str]] = None,
                          inherits: Optional[Iterable[str]] = None, **kwargs) -> RoleDefinition:
        return await self.roles.create_role(tenant_id, name, permissions, inherits, **kwargs)

    async def update_role(self, tenant_id: str, role_id: str, **changes) -> RoleDefinition:
        return await self.roles.update_role(tenant_id, role_id, **changes)

    async def delete_role(self, tenant_id: str, role_id: str) -> bool:
        return await self.roles.delete_role(tenant_id, role_id)

    async def get_role(self, tenant_id: str, role_id: str) -> Optional[RoleDefinition]:
        return await self.roles.get_role(tenant_id, role_id)

    async def list_roles(self, tenant_id: str, status: Optional[RoleStatus] = None) -> List[RoleDefinition]:
        return await self.roles.list_roles(tenant_id, status=status)

    # Bindings

    async def assign_role(self, tenant_id: str, role_id: str, subject_type: SubjectTypeLike,
                          subject_id: str, expires_at: Optional[datetime] = None,
                          created_by: Optional[str] = None) -> RoleBinding:
        return await self.bindings.assign_role(tenant_id, role_id, subject_type, subject_id,
                                               expires_at=expires_at, created_by=created_by)

    async def revoke_role(self, tenant_id: str, role_id: str, subject_type: SubjectTypeLike,
                          subject_id: str) -> bool:
        return await self.bindings.revoke_role(tenant_id, role_id, subject_type, subject_id)

    async def get_subject_roles(self, tenant_id: str, subject_type: SubjectTypeLike,
                                subject_id: str) -> List[RoleBinding]:
        return await self.bindings.get_subject_roles(tenant_id, subject_type, subject_id)

    async def has_role(self, tenant_id: str, role_id: str, subject_type: SubjectTypeLike,
                       subject_id: str) -> bool:
        return await self.bindings.has_role(tenant_id, role_id, subject_type, subject_id)

    # Evaluation

    async def check_permission(self, context: RBACCheckContext) -> RBACCheckResult:
        return await self.evaluator.check(context)

    async def check(self, tenant: TenantContext, subject: SubjectContext, permission: str,
                    request: Optional[RequestContext] = None) -> RBACCheckResult:
        return await self.evaluator.check(RBACCheckContext(
            tenant=tenant,
            subject=subject,
            permission=permission,
            request=request or RequestContext(),
        ))

    async def get_effective_permissions(self, tenant_id: str, subject_type: SubjectTypeLike,
                                        subject_id: str,
                                        at: Optional[datetime] = None) -> EffectivePermissions:
        return await self.evaluator.get_effective_permissions(tenant_id, subject_type, subject_id, at=at)

    async def get_permissions(self, tenant_id: str, subject_type: SubjectTypeLike,
                              subject_id: str) -> List[str]:
        return await self.evaluator.get_permissions(tenant_id, subject_type, subject_id)

    def create_permission_resolver(self, subject_type: Optional[SubjectTypeLike] = None):
        return create_permission_resolver(self.evaluator, subject_type or self.default_subject_type)

    def invalidate_cache(self, tenant_id: str, subject_id: Optional[str] = None) -> None:
        self.evaluator.invalidate(tenant_id, subject_id)

    def clear_cache(self) -> None:
        self.evaluator.clear_cache()


def create_permission_resolver(evaluator: RBACEvaluator,
                               subject_type: SubjectTypeLike = BindingSubjectType.USER):
    """
    Build a ``(tenant_id, subject_id) -> set`` resolver backed by an
    RBACEvaluator, for use as the orchestrator's permission resolver.

    Bindings are evaluated at the timestamp of the check in progress, falling
    back to the binding manager's clock outside MTAuthz.check_permission.
    """
    async def resolve(tenant_id: str, subject_id: str) -> Set[str]:
        effective = await evaluator.get_effective_permissions(tenant_id, subject_type, subject_id,
                                                              at=current_evaluation_time())
        return set(effective.permissions)
    return resolve


def create_rbac_plugin(rbac: Optional[RBAC] = None, use_as_resolver: bool = True,
                       **options) -> PluginDefinition:
    """
    Package an RBAC instance as a plugin.

    When neither ``rbac`` nor constructor ``options`` are given, the RBAC is
    built at install time from the orchestrator's Config. When installed with
    ``use_as_resolver`` the orchestrator's permission resolver is replaced by
    the RBAC resolver. The RBAC instance is exposed as the plugin's ``state``.
    """
    if rbac is None and options:
        rbac = RBAC(**options)

    def install(context) -> None:
        if plugin.state is None:
            config = context.config
            plugin.state = RBAC.from_config(config) if config is not None else RBAC()
        if use_as_resolver:
            context.set_permission_resolver(plugin.state.create_permission_resolver())

    def on_destroy() -> None:
        if plugin.state is not None:
            plugin.state.clear_cache()

    plugin = PluginDefinition(
        name="rbac",
        version="0.1.0",
        description="Role-based access control",
        install=install,
        on_init=lambda context: logger.info("RBAC plugin initialized"),
        on_destroy=on_destroy,
        state=rbac,
    )
    return plugin
