"""
MTAuthz: the orchestrator composing the registry, policy engine, permission
checker, global hooks and plugins.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from ..common.utils import maybe_await
from ..errors import PermissionDeniedError, RegistryFrozenError
from ..hooks.global_hooks import GlobalHooksManager, HookResult
from ..permission.checker import PermissionChecker, PermissionResolver, validate_tenant
from ..plugin.context import PluginContext
from ..plugin.manager import PluginManager
from ..plugin.types import PluginDefinition
from ..policy.engine import PolicyEngine
from ..policy.types import (
    PolicyDefinition,
    PolicyEffect,
    PolicyEvaluationContext,
    PolicyEvaluationResult,
    PolicyProvider,
)
from ..registry.registry import Registry
from ..registry.types import ResourceDefinition
from .config import CheckStrategy, Config
from .types import (
    AuthzContext,
    BatchPermissionCheckResult,
    PermissionCheckContext,
    PermissionCheckResult,
    RequestContext,
    SubjectContext,
    TenantContext,
    create_context,
    evaluating_at,
)


logger = logging.getLogger(__name__)


CHECK_PERMISSION = "checkPermission"


class MTAuthz:
    """
    Multi-tenant authorization core.

    Register resources, policies and plugins, call init() once, then check
    permissions. The registry is frozen by init().

    Example:
        authz = MTAuthz()
        authz.register_resource(define_resource("content", ["read", "write"]))
        authz.use(create_rbac_plugin())
        await authz.init()
        result = await authz.check_permission(PermissionCheckContext(
            tenant=TenantContext(id="t1"),
            subject=SubjectContext(id="u1"),
            resource="content",
            action="read",
        ))
    """

    def __init__(self, config: Optional[Config] = None,
                 permission_resolver: Optional[PermissionResolver] = None,
                 policy_provider: Optional[PolicyProvider] = None):
        self.config = config or Config()
        self.config.validate()

        self.registry = Registry()
        self.policy_engine: PolicyEngine = self.registry.policies
        self.global_hooks = GlobalHooksManager()
        self.permission_checker = PermissionChecker(
            permission_resolver or self._default_permission_resolver,
            cache_ttl=self.config.permission_cache_ttl,
        )
        self.policy_provider = policy_provider
        self.plugins = PluginManager(PluginContext(
            self.registry,
            self.global_hooks,
            set_permission_resolver=self.set_permission_resolver,
            config=self.config,
        ))
        self._initialized = False

    # Setup

    def use(self, plugin: PluginDefinition) -> 'MTAuthz':
        """Register a plugin; it is installed by init()."""
        if self._initialized:
            raise RegistryFrozenError("register plugin")
        self.plugins.register(plugin)
        return self

    def register_resource(self, resource: ResourceDefinition) -> 'MTAuthz':
        self.registry.register_resource(resource)
        return self

    def register_resources(self, resources: Iterable[ResourceDefinition]) -> 'MTAuthz':
        self.registry.register_resources(resources)
        return self

    def register_policy(self, policy: PolicyDefinition) -> 'MTAuthz':
        self.registry.register_policy(policy)
        return self

    def register_policies(self, policies: Iterable[PolicyDefinition]) -> 'MTAuthz':
        self.registry.register_policies(policies)
        return self

    def set_permission_resolver(self, resolver: PermissionResolver) -> None:
        self.permission_checker.set_resolver(resolver)
        logger.debug("Permission resolver replaced")

    def set_policy_provider(self, provider: Optional[PolicyProvider]) -> None:
        self.policy_provider = provider

    async def init(self) -> 'MTAuthz':
        """Install all plugins in dependency order and freeze the registry. Idempotent."""
        if self._initialized:
            return self
        await self.plugins.install_all()
        self.registry.freeze()
        self._initialized = True
        logger.info(f"MTAuthz initialized with {len(self.plugins)} plugins")
        return self

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # Contexts

    def create_context(self, tenant: TenantContext, subject: Optional[SubjectContext] = None,
                       request: Optional[RequestContext] = None, **request_kwargs) -> AuthzContext:
        return create_context(tenant, subject, request, **request_kwargs)

    # Evaluation

    async def evaluate_policy(self, context: PolicyEvaluationContext) -> PolicyEvaluationResult:
        """
        Run the policy engine, including any policies from the policy provider.

        A provider that fails yields a deny without consulting any policy.
        """
        extra = None
        if self.policy_provider is not None:
            try:
                extra = await self.policy_provider.get_policies(context.tenant.id, context.subject.id)
            except Exception as e:
                logger.error(f"Policy provider failed for {context.tenant.id}/{context.subject.id}: {e}")
                return PolicyEvaluationResult(effect=PolicyEffect.DENY, evaluation_path=["provider:error"])
        return await self.policy_engine.evaluate(context, extra_policies=extra)

    async def run_operation(self, context: Any, operation: str, resource_name: str,
                            handler: Callable[[], Awaitable[Any]], input: Any = None) -> Any:
        """
        Run ``handler`` wrapped in global and resource hooks.

        Before hooks run global-first and may block the operation, which raises
        PermissionDeniedError. If the handler raises, on_error hooks run and the
        error propagates; otherwise after hooks run, resource-level first.
        """
        blocked = await self._run_before_hooks(context, operation, resource_name, input)
        if blocked is not None:
            raise PermissionDeniedError(
                f"{resource_name}:{operation}",
                reason=blocked.reason or "Blocked by hook",
                tenant_id=getattr(getattr(context, 'tenant', None), 'id', None),
                subject_id=getattr(getattr(context, 'subject', None), 'id', None),
            )
        return await self._run_handler(context, operation, resource_name, handler)

    async def _run_before_hooks(self, context: Any, operation: str, resource_name: str,
                                input: Any) -> Optional[HookResult]:
        outcome = await self.global_hooks.execute_before_any(context, operation, resource_name)
        if not outcome.proceed:
            return outcome

        resource = self.registry.get_resource(resource_name)
        for hook in (resource.hooks.before if resource else ()):
            outcome = HookResult.coerce(await maybe_await(hook(context, operation, input)))
            if not outcome.proceed:
                return outcome
        return None

    async def _run_handler(self, context: Any, operation: str, resource_name: str,
                           handler: Callable[[], Awaitable[Any]]) -> Any:
        try:
            result = await handler()
        except Exception as e:
            await self.global_hooks.execute_on_error(context, operation, resource_name, e)
            raise

        resource = self.registry.get_resource(resource_name)
        for hook in (resource.hooks.after if resource else ()):
            await maybe_await(hook(context, operation, result))
        await self.global_hooks.execute_after_any(context, operation, resource_name, result)
        return result

    async def check_permission(self, context: PermissionCheckContext) -> PermissionCheckResult:
        """
        Check a permission according to the configured strategy.

        System subjects are always allowed. A before hook that blocks the
        check yields a denied result carrying the hook's reason. The request
        timestamp is published through current_evaluation_time() while the
        resolver and policies run.

        Raises:
            MissingTenantContextError: If the context has no tenant
            InvalidTenantError: If the tenant id is empty
        """
        validate_tenant(context)
        start = time.perf_counter()
        blocked = await self._run_before_hooks(context, CHECK_PERMISSION, context.resource, context)
        if blocked is not None:
            return PermissionCheckResult(
                allowed=False,
                permission=context.permission_code,
                reason=blocked.reason or "Blocked by hook",
                evaluation_time=time.perf_counter() - start,
            )

        async def handler() -> PermissionCheckResult:
            with evaluating_at(getattr(context.request, 'timestamp', None)):
                result = await self._check(context)
            result.evaluation_time = time.perf_counter() - start
            return result

        return await self._run_handler(context, CHECK_PERMISSION, context.resource, handler)

    async def _check(self, context: PermissionCheckContext) -> PermissionCheckResult:
        code = context.permission_code
        if context.subject.is_system:
            return PermissionCheckResult(allowed=True, permission=code,
                                         reason="System subject has full access")

        strategy = self.config.check_strategy
        if strategy is CheckStrategy.RESOLVER:
            return await self.permission_checker.check(context)

        policy_result = await self.evaluate_policy(self._policy_context(context))
        if strategy is CheckStrategy.POLICY:
            return self._from_policy(code, policy_result)

        checker_result = await self.permission_checker.check(context)
        if strategy is CheckStrategy.ALL:
            if not checker_result.allowed:
                return checker_result
            return self._from_policy(code, policy_result)

        # ANY: an explicit deny rule still wins over a resolver grant
        if policy_result.matched_policy is not None and not policy_result.allowed:
            return self._from_policy(code, policy_result)
        if checker_result.allowed:
            return checker_result
        return self._from_policy(code, policy_result)

    @staticmethod
    def _policy_context(context: PermissionCheckContext) -> PolicyEvaluationContext:
        resource = dict(context.resource_data or {})
        if context.resource_id is not None:
            resource.setdefault('id', context.resource_id)
        return PolicyEvaluationContext(
            tenant=context.tenant,
            subject=context.subject,
            permission=context.permission_code,
            request=context.request,
            resource=resource,
            environment=context.environment,
        )

    @staticmethod
    def _from_policy(code: str, result: PolicyEvaluationResult) -> PermissionCheckResult:
        if result.matched_policy is None:
            reason = "No matching policy"
        elif result.effect is PolicyEffect.ALLOW:
            reason = f"Allowed by policy {result.matched_policy}"
        else:
            reason = f"Denied by policy {result.matched_policy}"
        return PermissionCheckResult(
            allowed=result.allowed,
            permission=code,
            reason=reason,
            matched_policy=result.matched_policy,
            matched_rule=result.matched_rule,
        )

    async def require_permission(self, context: PermissionCheckContext) -> PermissionCheckResult:
        """
        Raises:
            PermissionDeniedError: If the check is not allowed
        """
        result = await self.check_permission(context)
        if not result.allowed:
            raise PermissionDeniedError(
                result.permission,
                reason=result.reason,
                tenant_id=context.tenant.id,
                subject_id=context.subject.id,
            )
        return result

    async def check_many(self, contexts: Iterable[PermissionCheckContext]) -> BatchPermissionCheckResult:
        """Check several permissions sequentially, keyed by permission code."""
        batch = BatchPermissionCheckResult()
        for context in contexts:
            batch.results[context.permission_code] = await self.check_permission(context)
        return batch

    def invalidate(self, tenant_id: str, subject_id: Optional[str] = None) -> None:
        """Drop cached resolver results for a tenant or one subject."""
        self.permission_checker.invalidate(tenant_id, subject_id)

    # Introspection

    def get_resource(self, name: str) -> Optional[ResourceDefinition]:
        return self.registry.get_resource(name)

    def get_resource_names(self) -> List[str]:
        return [r.name for r in self.registry.list_resources()]

    def get_permission_codes(self) -> List[str]:
        return self.registry.permission_codes()

    def get_summary(self) -> Dict[str, Any]:
        summary = {'initialized': self._initialized}
        summary.update(self.registry.get_summary())
        summary['plugins'] = len(self.plugins)
        return summary

    def export_metadata(self) -> Dict[str, Any]:
        return self.registry.export_metadata()

    def _default_permission_resolver(self, tenant_id: str, subject_id: str) -> set:
        # Every allow pattern of every policy applicable to the tenant.
        return self.policy_engine.collect_permissions(tenant_id)


def create_authz(config: Optional[Config] = None, **kwargs) -> MTAuthz:
    return MTAuthz(config, **kwargs)
