"""
Tests for the MTAuthz orchestrator.
"""

import pytest
from datetime import timedelta

from mtauthz import (
    CheckStrategy,
    Config,
    MTAuthz,
    PermissionCheckContext,
    PermissionDeniedError,
    RequestContext,
    SubjectContext,
    TenantContext,
    create_authz,
    create_rbac_plugin,
    define_resource,
)
from mtauthz.common.utils import get_current_time
from mtauthz.core.types import current_evaluation_time, system_subject
from mtauthz.errors import MissingTenantContextError, RegistryFrozenError
from mtauthz.hooks import HookResult
from mtauthz.metrics import create_metrics_plugin
from mtauthz.plugin import PluginDefinition
from mtauthz.policy import (
    PolicyDefinition,
    PolicyProvider,
    PolicyRule,
    allow_policy,
    deny_policy,
    policy,
)
from mtauthz.rbac import BindingSubjectType
from mtauthz.registry import ResourceHooks


def check_context(resource="content", action="read", subject_id="u1", tenant_id="t1", **kwargs):
    return PermissionCheckContext(
        tenant=TenantContext(id=tenant_id),
        subject=SubjectContext(id=subject_id),
        resource=resource,
        action=action,
        **kwargs
    )


class StaticPolicyProvider(PolicyProvider):
    """Serves a fixed list of policies."""

    def __init__(self, policies):
        self.policies = policies
        self.invalidated = []

    async def get_policies(self, tenant_id, subject_id):
        return list(self.policies)

    async def invalidate(self, tenant_id, subject_id=None):
        self.invalidated.append((tenant_id, subject_id))


@pytest.fixture
def authz():
    instance = MTAuthz()
    instance.register_resource(define_resource("content", ["read", "write", "delete"]))
    return instance


class TestSetup:
    """Test registration and initialization"""

    @pytest.mark.asyncio
    async def test_init_freezes_registry(self, authz):
        assert not authz.is_initialized
        await authz.init()
        await authz.init()
        assert authz.is_initialized

        with pytest.raises(RegistryFrozenError):
            authz.register_resource(define_resource("order", ["read"]))
        with pytest.raises(RegistryFrozenError):
            authz.register_policy(allow_policy("late", ["content:read"]))
        with pytest.raises(RegistryFrozenError):
            authz.use(PluginDefinition(name="late"))

    @pytest.mark.asyncio
    async def test_summary_and_metadata(self, authz):
        authz.register_policy(allow_policy("readers", ["content:read"]))
        authz.use(PluginDefinition(name="noop"))
        await authz.init()

        summary = authz.get_summary()
        assert summary == {
            'initialized': True,
            'resources': 1,
            'permissions': 3,
            'policies': 1,
            'frozen': True,
            'plugins': 1,
        }
        assert authz.get_resource_names() == ["content"]
        assert authz.get_permission_codes() == ["content:read", "content:write", "content:delete"]
        assert authz.export_metadata()["resources"][0]["permissions"] == authz.get_permission_codes()

    def test_invalid_config_is_rejected(self):
        with pytest.raises(ValueError):
            MTAuthz(Config(default_subject_type="robot"))

    def test_create_authz(self):
        authz = create_authz(Config(check_strategy="policy"))
        assert authz.config.check_strategy is CheckStrategy.POLICY

    def test_create_context(self, authz):
        context = authz.create_context(TenantContext(id="t1"), ip="10.0.0.1")
        assert context.subject.id == "anonymous"
        assert context.request.ip == "10.0.0.1"


class TestPermissionChecks:
    """Test check_permission with the default resolver strategy"""

    @pytest.mark.asyncio
    async def test_system_subject_always_allowed(self, authz):
        await authz.init()
        context = check_context(action="delete")
        context.subject = system_subject()
        result = await authz.check_permission(context)
        assert result.allowed
        assert result.reason == "System subject has full access"

    @pytest.mark.asyncio
    async def test_default_resolver_uses_policy_grants(self, authz):
        authz.register_policy(allow_policy("readers", ["content:read"]))
        await authz.init()
        assert (await authz.check_permission(check_context())).allowed
        assert not (await authz.check_permission(check_context(action="write"))).allowed

    @pytest.mark.asyncio
    async def test_missing_tenant(self, authz):
        context = check_context()
        context.tenant = None
        with pytest.raises(MissingTenantContextError):
            await authz.check_permission(context)

    @pytest.mark.asyncio
    async def test_rbac_plugin_is_the_resolver(self, authz):
        rbac_plugin = create_rbac_plugin()
        authz.use(rbac_plugin)
        await authz.init()

        rbac = rbac_plugin.state
        await rbac.create_role("t1", "editor", ["content:read", "content:write"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1")

        assert (await authz.check_permission(check_context(action="write"))).allowed
        assert not (await authz.check_permission(check_context(action="delete"))).allowed
        assert not (await authz.check_permission(check_context(tenant_id="t2"))).allowed

    @pytest.mark.asyncio
    async def test_rbac_bindings_expire_at_request_timestamp(self, authz):
        rbac_plugin = create_rbac_plugin()
        authz.use(rbac_plugin)
        await authz.init()

        now = get_current_time()
        rbac = rbac_plugin.state
        await rbac.create_role("t1", "editor", ["content:write"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1", expires_at=now + timedelta(hours=1))

        later = check_context(action="write", request=RequestContext(timestamp=now + timedelta(hours=2)))
        assert not (await authz.check_permission(later)).allowed

        earlier = check_context(action="write", request=RequestContext(timestamp=now + timedelta(minutes=30)))
        assert (await authz.check_permission(earlier)).allowed
        assert current_evaluation_time() is None

    @pytest.mark.asyncio
    async def test_rbac_plugin_follows_config(self):
        authz = MTAuthz(Config(rbac_cache_ttl=0, register_system_roles=False,
                               default_subject_type="service"))
        authz.register_resource(define_resource("content", ["read"]))
        rbac_plugin = create_rbac_plugin()
        authz.use(rbac_plugin)
        await authz.init()

        rbac = rbac_plugin.state
        assert rbac.default_subject_type is BindingSubjectType.SERVICE
        assert await rbac.list_roles("t1") == []

        await rbac.create_role("t1", "reader", ["content:read"], role_id="reader")
        await rbac.assign_role("t1", "reader", "service", "svc1")
        assert (await authz.check_permission(check_context(subject_id="svc1"))).allowed
        assert rbac.evaluator.cache_size == 0

    @pytest.mark.asyncio
    async def test_require_permission(self, authz):
        await authz.init()
        with pytest.raises(PermissionDeniedError) as exc_info:
            await authz.require_permission(check_context(action="delete"))
        assert exc_info.value.permission == "content:delete"
        assert exc_info.value.context.subject_id == "u1"

    @pytest.mark.asyncio
    async def test_check_many(self, authz):
        authz.set_permission_resolver(lambda tenant_id, subject_id: {"content:read"})
        await authz.init()
        batch = await authz.check_many([check_context(), check_context(action="write")])
        assert batch.any_allowed
        assert not batch.all_allowed
        assert batch.results["content:read"].evaluation_time >= 0


class TestCheckStrategies:
    """Test how resolver grants and policies are combined"""

    async def build(self, strategy, resolver_grants, policies):
        authz = MTAuthz(Config(check_strategy=strategy),
                        permission_resolver=lambda tenant_id, subject_id: set(resolver_grants))
        authz.register_resource(define_resource("content", ["read", "write"]))
        authz.register_policies(policies)
        return await authz.init()

    @pytest.mark.asyncio
    async def test_policy_strategy(self):
        authz = await self.build("policy", {"content:*"}, [allow_policy("readers", ["content:read"])])
        result = await authz.check_permission(check_context())
        assert result.allowed
        assert result.reason == "Allowed by policy readers"
        assert result.matched_policy == "readers"

        result = await authz.check_permission(check_context(action="write"))
        assert not result.allowed
        assert result.reason == "No matching policy"

    @pytest.mark.asyncio
    async def test_all_strategy_requires_both(self):
        authz = await self.build("all", {"content:read"}, [allow_policy("any", ["content:*"])])
        assert (await authz.check_permission(check_context())).allowed
        assert not (await authz.check_permission(check_context(action="write"))).allowed

    @pytest.mark.asyncio
    async def test_any_strategy_explicit_deny_wins(self):
        authz = await self.build("any", {"content:*"}, [deny_policy("no-writes", ["content:write"])])
        assert (await authz.check_permission(check_context())).allowed
        result = await authz.check_permission(check_context(action="write"))
        assert not result.allowed
        assert result.reason == "Denied by policy no-writes"

    @pytest.mark.asyncio
    async def test_any_strategy_policy_allow(self):
        authz = await self.build("any", set(), [allow_policy("readers", ["content:read"])])
        assert (await authz.check_permission(check_context())).allowed

    @pytest.mark.asyncio
    async def test_policy_conditions_see_resource_data(self):
        owner_only = (policy("owners")
                      .rule(lambda r: r.permissions("content:write").allow()
                            .where_equals("resource.owner_id", "u1"))
                      .build())
        authz = await self.build("policy", set(), [owner_only])
        assert (await authz.check_permission(
            check_context(action="write", resource_id="c1", resource_data={"owner_id": "u1"}))).allowed
        assert not (await authz.check_permission(
            check_context(action="write", resource_data={"owner_id": "u2"}))).allowed

    @pytest.mark.asyncio
    async def test_policy_provider(self):
        provider = StaticPolicyProvider([deny_policy("provided", ["content:read"])])
        authz = MTAuthz(Config(check_strategy="policy"), policy_provider=provider)
        authz.register_policy(allow_policy("readers", ["content:read"]))
        await authz.init()

        result = await authz.check_permission(check_context())
        assert not result.allowed
        assert result.matched_policy == "provided"

        authz.set_policy_provider(None)
        assert (await authz.check_permission(check_context())).allowed

    @pytest.mark.asyncio
    async def test_invalid_provided_policy_is_skipped(self):
        broken = PolicyDefinition(id="ext", rules=[PolicyRule(permissions=["not a code"])])
        authz = MTAuthz(Config(check_strategy="policy"), policy_provider=StaticPolicyProvider([broken]))
        authz.register_policy(allow_policy("readers", ["content:read"]))
        await authz.init()

        assert (await authz.check_permission(check_context())).allowed
        result = await authz.check_permission(check_context(action="write"))
        assert not result.allowed
        assert result.reason == "No matching policy"

    @pytest.mark.asyncio
    async def test_failing_provider_denies(self):
        class BrokenProvider(StaticPolicyProvider):
            async def get_policies(self, tenant_id, subject_id):
                raise ConnectionError("policy store unavailable")

        authz = MTAuthz(Config(check_strategy="policy"), policy_provider=BrokenProvider([]))
        authz.register_policy(allow_policy("readers", ["content:read"]))
        await authz.init()

        result = await authz.check_permission(check_context())
        assert not result.allowed
        assert result.reason == "No matching policy"


class TestOperationHooks:
    """Test hooks around checks and operations"""

    @pytest.mark.asyncio
    async def test_before_hook_blocks_check(self, authz):
        authz.set_permission_resolver(lambda tenant_id, subject_id: {"*"})
        authz.global_hooks.add_before_any(
            lambda ctx, op, res: HookResult(proceed=False, reason="Tenant suspended")
            if ctx.tenant.id == "t2" else None)
        await authz.init()

        assert (await authz.check_permission(check_context())).allowed
        result = await authz.check_permission(check_context(tenant_id="t2"))
        assert not result.allowed
        assert result.reason == "Tenant suspended"

    @pytest.mark.asyncio
    async def test_run_operation_hook_order(self):
        calls = []
        authz = MTAuthz()
        authz.register_resource(define_resource(
            "content", ["read"],
            hooks=ResourceHooks(
                before=[lambda ctx, op, payload: calls.append(("resource-before", payload))],
                after=[lambda ctx, op, result: calls.append(("resource-after", result))],
            ),
        ))
        authz.global_hooks.add_before_any(lambda ctx, op, res: calls.append(("before", op)))
        authz.global_hooks.add_after_any(lambda ctx, op, res, result: calls.append(("after", result)))
        await authz.init()

        async def handler():
            calls.append(("handler", None))
            return "done"

        result = await authz.run_operation(None, "publish", "content", handler, input={"id": 1})
        assert result == "done"
        assert calls == [
            ("before", "publish"),
            ("resource-before", {"id": 1}),
            ("handler", None),
            ("resource-after", "done"),
            ("after", "done"),
        ]

    @pytest.mark.asyncio
    async def test_run_operation_blocked(self, authz):
        authz.global_hooks.add_before_any(lambda ctx, op, res: False)
        await authz.init()

        async def handler():
            return "never"

        with pytest.raises(PermissionDeniedError) as exc_info:
            await authz.run_operation(None, "publish", "content", handler)
        assert exc_info.value.reason == "Blocked by hook"

    @pytest.mark.asyncio
    async def test_run_operation_error_hooks(self, authz):
        errors = []
        authz.global_hooks.add_on_error(lambda ctx, op, res, error: errors.append(type(error).__name__))
        await authz.init()

        async def handler():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await authz.run_operation(None, "publish", "content", handler)
        assert errors == ["KeyError"]


class TestMetricsPlugin:
    """Test Prometheus metrics recorded through hooks"""

    @pytest.mark.asyncio
    async def test_decisions_are_counted(self, authz):
        metrics = create_metrics_plugin()
        authz.use(metrics)
        authz.set_permission_resolver(lambda tenant_id, subject_id: {"content:read"})
        await authz.init()

        await authz.check_permission(check_context())
        await authz.check_permission(check_context())
        await authz.check_permission(check_context(action="write"))

        registry = metrics.state.registry
        assert registry.get_sample_value(
            'mtauthz_permission_checks_total', {'resource': 'content', 'allowed': 'true'}) == 2.0
        assert registry.get_sample_value(
            'mtauthz_permission_checks_total', {'resource': 'content', 'allowed': 'false'}) == 1.0
        assert registry.get_sample_value(
            'mtauthz_operations_total', {'operation': 'checkPermission', 'resource': 'content'}) == 3.0
        assert "mtauthz_permission_checks_total" in metrics.state.export_prometheus_metrics()

    @pytest.mark.asyncio
    async def test_errors_are_counted(self, authz):
        metrics = create_metrics_plugin()
        authz.use(metrics)
        await authz.init()

        async def handler():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await authz.run_operation(None, "import", "content", handler)

        assert metrics.state.registry.get_sample_value(
            'mtauthz_operation_errors_total',
            {'operation': 'import', 'resource': 'content', 'error': 'ValueError'}) == 1.0
        assert metrics.state.get_metrics_summary()['counters'] == {'errors_import_content': 1}
