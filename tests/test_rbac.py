"""
Tests for roles, bindings and effective permission resolution.
"""

import pytest
from datetime import datetime, timedelta, timezone

from mtauthz.core.types import (
    RequestContext,
    SubjectContext,
    SubjectType,
    TenantContext,
    anonymous_subject,
    create_context,
)
from mtauthz.errors import (
    BindingError,
    CircularInheritanceError,
    DuplicateRoleError,
    RoleNotFoundError,
    SystemRoleError,
    ValidationError,
)
from mtauthz.rbac import (
    RBAC,
    BindingSubjectType,
    MemoryRBACStore,
    RoleStatus,
    is_valid_role_name,
)


START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class MutableClock:
    """Wall clock the test can move forward."""

    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, delta):
        self.current = self.current + delta


@pytest.fixture
def store():
    return MemoryRBACStore()


@pytest.fixture
def rbac(store):
    return RBAC(store=store)


def user(subject_id="u1"):
    return SubjectContext(id=subject_id)


class TestRoleManagement:
    """Test role CRUD and validation"""

    def test_role_names(self):
        assert is_valid_role_name("editor")
        assert is_valid_role_name("Content_Editor-2")
        assert not is_valid_role_name("e")
        assert not is_valid_role_name("2editor")
        assert not is_valid_role_name("a" * 51)

    @pytest.mark.asyncio
    async def test_create_role_generates_id(self, rbac):
        role = await rbac.create_role("t1", "editor", ["content:read"])
        assert role.id.startswith("role_")
        assert role.tenant_id == "t1"
        assert (await rbac.get_role("t1", role.id)).name == "editor"
        assert await rbac.get_role("t2", role.id) is None

    @pytest.mark.asyncio
    async def test_create_role_validation(self, rbac):
        with pytest.raises(ValidationError):
            await rbac.create_role("t1", "x", ["content:read"])
        with pytest.raises(ValidationError):
            await rbac.create_role("t1", "editor", ["content"])
        with pytest.raises(ValidationError):
            await rbac.create_role("", "editor", ["content:read"])

    @pytest.mark.asyncio
    async def test_duplicate_roles(self, rbac):
        await rbac.create_role("t1", "editor", ["content:read"], role_id="editor")
        with pytest.raises(DuplicateRoleError):
            await rbac.create_role("t1", "editor2", [], role_id="editor")
        with pytest.raises(DuplicateRoleError):
            await rbac.create_role("t1", "editor", [])
        # names are tenant scoped
        await rbac.create_role("t2", "editor", [])

    @pytest.mark.asyncio
    async def test_update_and_delete(self, rbac):
        role = await rbac.create_role("t1", "editor", ["content:read"])
        updated = await rbac.update_role("t1", role.id, permissions=["content:read", "content:write"],
                                         description="Edits content")
        assert updated.permissions == ["content:read", "content:write"]
        assert updated.description == "Edits content"

        assert await rbac.delete_role("t1", role.id)
        assert not await rbac.delete_role("t1", role.id)
        with pytest.raises(RoleNotFoundError):
            await rbac.update_role("t1", role.id, permissions=[])

    @pytest.mark.asyncio
    async def test_system_roles_are_immutable(self, rbac):
        roles = await rbac.list_roles("t1")
        assert [r.id for r in roles[:3]] == ["super_admin", "tenant_admin", "viewer"]
        assert all(r.tenant_id == "t1" for r in roles)

        with pytest.raises(SystemRoleError):
            await rbac.update_role("t1", "viewer", permissions=["*"])
        with pytest.raises(SystemRoleError):
            await rbac.delete_role("t1", "super_admin")
        with pytest.raises(DuplicateRoleError):
            await rbac.create_role("t1", "viewer", [])

    @pytest.mark.asyncio
    async def test_without_system_roles(self, store):
        rbac = RBAC(store=store, register_system_roles=False)
        assert await rbac.list_roles("t1") == []

    @pytest.mark.asyncio
    async def test_clone_role(self, rbac):
        clone = await rbac.roles.clone_role("t1", "viewer", "auditor")
        assert not clone.is_system
        assert clone.permissions == ["*:read", "*:list"]
        assert clone.display_name == "Viewer (Copy)"


class TestRoleInheritance:
    """Test inheritance and cycle detection"""

    @pytest.mark.asyncio
    async def test_inherited_permissions_are_carried_unchanged(self, rbac):
        await rbac.create_role("t1", "reader", ["content:read", "report:*"], role_id="reader")
        await rbac.create_role("t1", "editor", ["content:write"], ["reader"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1")

        effective = await rbac.get_effective_permissions("t1", "user", "u1")
        assert effective.permissions == frozenset({"content:read", "content:write", "report:*"})
        assert effective.roles == ("editor", "reader")

    @pytest.mark.asyncio
    async def test_matched_roles_only_lists_granting_roles(self, rbac):
        await rbac.create_role("t1", "reader", ["content:read"], role_id="reader")
        await rbac.create_role("t1", "editor", ["content:write"], ["reader"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1")

        result = await rbac.check(TenantContext(id="t1"), user(), "content:read")
        assert result.allowed
        assert result.matched_roles == ["reader"]
        assert result.reason == "Granted by roles: reader"

    @pytest.mark.asyncio
    async def test_cycle_on_create(self, rbac):
        await rbac.create_role("t1", "alpha", [], ["beta"], role_id="alpha")
        with pytest.raises(CircularInheritanceError) as exc_info:
            await rbac.create_role("t1", "beta", [], ["alpha"], role_id="beta")
        assert exc_info.value.path == ["beta", "alpha", "beta"]

    @pytest.mark.asyncio
    async def test_self_inheritance(self, rbac):
        with pytest.raises(CircularInheritanceError):
            await rbac.create_role("t1", "loop", [], ["loop"], role_id="loop")

    @pytest.mark.asyncio
    async def test_cycle_on_update(self, rbac):
        await rbac.create_role("t1", "alpha", [], role_id="alpha")
        await rbac.create_role("t1", "beta", [], ["alpha"], role_id="beta")
        await rbac.create_role("t1", "gamma", [], ["beta"], role_id="gamma")
        with pytest.raises(CircularInheritanceError) as exc_info:
            await rbac.update_role("t1", "alpha", inherits=["gamma"])
        assert exc_info.value.path == ["alpha", "gamma", "beta", "alpha"]
        assert (await rbac.get_role("t1", "alpha")).inherits == []

    @pytest.mark.asyncio
    async def test_inactive_roles_contribute_nothing(self, rbac):
        await rbac.create_role("t1", "reader", ["content:read"], role_id="reader")
        await rbac.create_role("t1", "editor", ["content:write"], ["reader"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1")
        await rbac.update_role("t1", "reader", status=RoleStatus.INACTIVE)

        assert await rbac.get_permissions("t1", "user", "u1") == ["content:write"]


class TestRoleBindings:
    """Test role assignment and expiry"""

    @pytest.mark.asyncio
    async def test_editor_scenario(self, rbac):
        await rbac.create_role("t1", "editor", ["content:read", "content:write"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1")
        tenant = TenantContext(id="t1")

        assert (await rbac.check(tenant, user(), "content:write")).allowed
        result = await rbac.check(tenant, user(), "content:delete")
        assert not result.allowed
        assert result.reason == "Permission not granted by any role"

    @pytest.mark.asyncio
    async def test_bindings_are_tenant_scoped(self, rbac):
        await rbac.assign_role("t1", "viewer", "user", "u1")
        assert (await rbac.check(TenantContext(id="t1"), user(), "order:read")).allowed
        assert not (await rbac.check(TenantContext(id="t2"), user(), "order:read")).allowed

    @pytest.mark.asyncio
    async def test_reassign_is_idempotent(self, rbac, store):
        first = await rbac.assign_role("t1", "viewer", "user", "u1")
        second = await rbac.assign_role("t1", "viewer", BindingSubjectType.USER, "u1")
        assert first.id == second.id
        assert len(await store.list_bindings("t1")) == 1

    @pytest.mark.asyncio
    async def test_revoke(self, rbac):
        await rbac.assign_role("t1", "viewer", "user", "u1")
        assert await rbac.has_role("t1", "viewer", "user", "u1")
        assert await rbac.revoke_role("t1", "viewer", "user", "u1")
        assert not await rbac.revoke_role("t1", "viewer", "user", "u1")
        assert not (await rbac.check(TenantContext(id="t1"), user(), "order:read")).allowed

    @pytest.mark.asyncio
    async def test_binding_validation(self, store):
        clock = MutableClock(START)
        rbac = RBAC(store=store, now=clock)
        with pytest.raises(BindingError):
            await rbac.assign_role("t1", "viewer", "robot", "u1")
        with pytest.raises(BindingError):
            await rbac.assign_role("t1", "viewer", "user", "")
        with pytest.raises(BindingError):
            await rbac.assign_role("t1", "viewer", "user", "u1", expires_at=START)

    @pytest.mark.asyncio
    async def test_expired_binding_is_ignored_but_kept(self, store):
        clock = MutableClock(START)
        rbac = RBAC(store=store, now=clock)
        await rbac.create_role("t1", "editor", ["content:write"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1", expires_at=START + timedelta(hours=1))

        effective = await rbac.get_effective_permissions("t1", "user", "u1")
        assert "content:write" in effective.permissions
        assert effective.valid_until == START + timedelta(hours=1)

        clock.advance(timedelta(hours=1))
        assert await rbac.get_subject_roles("t1", "user", "u1") == []
        assert (await rbac.get_effective_permissions("t1", "user", "u1")).permissions == frozenset()
        assert len(await store.list_bindings("t1")) == 1

        assert await rbac.bindings.cleanup_expired("t1") == 1
        assert await store.list_bindings("t1") == []

    @pytest.mark.asyncio
    async def test_expired_binding_is_replaced_on_reassign(self, store):
        clock = MutableClock(START)
        rbac = RBAC(store=store, now=clock)
        first = await rbac.assign_role("t1", "viewer", "user", "u1", expires_at=START + timedelta(minutes=5))
        clock.advance(timedelta(minutes=10))
        second = await rbac.assign_role("t1", "viewer", "user", "u1")
        assert first.id != second.id
        assert [b.id for b in await store.list_bindings("t1")] == [second.id]

    @pytest.mark.asyncio
    async def test_subjects_without_bindings(self, rbac):
        tenant = TenantContext(id="t1")
        result = await rbac.check(tenant, anonymous_subject(), "content:read")
        assert not result.allowed
        assert result.reason == "Subject type cannot hold role bindings"

        service = SubjectContext(id="svc", type=SubjectType.SERVICE)
        await rbac.assign_role("t1", "viewer", "service", "svc")
        assert (await rbac.check(tenant, service, "content:read")).allowed


class TestEffectivePermissionCache:
    """Test caching of resolved permissions"""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_store(self, rbac, store):
        await rbac.create_role("t1", "editor", ["content:write"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1")

        await rbac.get_effective_permissions("t1", "user", "u1")
        count = store.operations_count
        await rbac.get_effective_permissions("t1", "user", "u1")
        assert store.operations_count == count

        rbac.invalidate_cache("t1", "u1")
        await rbac.get_effective_permissions("t1", "user", "u1")
        assert store.operations_count > count

    @pytest.mark.asyncio
    async def test_mutations_invalidate(self, rbac):
        await rbac.create_role("t1", "editor", ["content:write"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1")
        assert await rbac.get_permissions("t1", "user", "u1") == ["content:write"]

        await rbac.update_role("t1", "editor", permissions=["content:write", "content:publish"])
        assert await rbac.get_permissions("t1", "user", "u1") == ["content:publish", "content:write"]

        await rbac.revoke_role("t1", "editor", "user", "u1")
        assert await rbac.get_permissions("t1", "user", "u1") == []

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, store):
        ticks = [0.0]
        rbac = RBAC(store=store, cache_ttl=timedelta(seconds=10), clock=lambda: ticks[0])
        await rbac.assign_role("t1", "viewer", "user", "u1")
        await rbac.get_effective_permissions("t1", "user", "u1")
        count = store.operations_count

        ticks[0] = 5.0
        await rbac.get_effective_permissions("t1", "user", "u1")
        assert store.operations_count == count

        ticks[0] = 10.0
        await rbac.get_effective_permissions("t1", "user", "u1")
        assert store.operations_count > count

    @pytest.mark.asyncio
    async def test_zero_ttl_disables_cache(self, store):
        rbac = RBAC(store=store, cache_ttl=timedelta(0))
        await rbac.get_effective_permissions("t1", "user", "u1")
        assert rbac.evaluator.cache_size == 0

    @pytest.mark.asyncio
    async def test_permission_resolver(self, rbac):
        await rbac.assign_role("t1", "viewer", "user", "u1")
        resolver = rbac.create_permission_resolver()
        assert await resolver("t1", "u1") == {"*:read", "*:list"}
        assert await resolver("t1", "nobody") == set()


class TestRequestTimestamp:
    """Test that binding expiry follows the request timestamp"""

    @pytest.mark.asyncio
    async def test_check_uses_request_timestamp(self, store):
        clock = MutableClock(START)
        rbac = RBAC(store=store, now=clock)
        await rbac.create_role("t1", "editor", ["content:write"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1", expires_at=START + timedelta(hours=1))
        tenant = TenantContext(id="t1")

        late = RequestContext(timestamp=START + timedelta(hours=2))
        early = RequestContext(timestamp=START + timedelta(minutes=30))

        assert not (await rbac.check(tenant, user(), "content:write", late)).allowed
        assert (await rbac.check(tenant, user(), "content:write", early)).allowed
        assert not (await rbac.check(tenant, user(), "content:write", late)).allowed

    @pytest.mark.asyncio
    async def test_cached_result_bounds(self, store):
        clock = MutableClock(START)
        rbac = RBAC(store=store, now=clock)
        await rbac.assign_role("t1", "viewer", "user", "u1", expires_at=START + timedelta(hours=1))

        effective = await rbac.get_effective_permissions("t1", "user", "u1", at=START + timedelta(hours=2))
        assert effective.permissions == frozenset()
        assert effective.valid_from == START + timedelta(hours=1)
        assert effective.valid_until is None

        count = store.operations_count
        await rbac.get_effective_permissions("t1", "user", "u1", at=START + timedelta(hours=3))
        assert store.operations_count == count

        effective = await rbac.get_effective_permissions("t1", "user", "u1", at=START)
        assert effective.permissions == frozenset({"*:read", "*:list"})


class TestBindingMaintenance:
    """Test expiry changes, bulk revocation and role lookups"""

    @pytest.mark.asyncio
    async def test_set_expiration(self, store):
        clock = MutableClock(START)
        rbac = RBAC(store=store, now=clock)
        await rbac.create_role("t1", "editor", ["content:write"], role_id="editor")
        binding = await rbac.assign_role("t1", "editor", "user", "u1")
        assert await rbac.get_permissions("t1", "user", "u1") == ["content:write"]

        updated = await rbac.bindings.set_expiration("t1", binding.id, START + timedelta(minutes=30))
        assert updated.expires_at == START + timedelta(minutes=30)

        clock.advance(timedelta(hours=1))
        assert not await rbac.has_role("t1", "editor", "user", "u1")
        assert await rbac.get_permissions("t1", "user", "u1") == []

        await rbac.bindings.set_expiration("t1", binding.id, None)
        assert await rbac.has_role("t1", "editor", "user", "u1")
        assert await rbac.get_permissions("t1", "user", "u1") == ["content:write"]

        assert await rbac.bindings.set_expiration("t1", "missing", None) is None

    @pytest.mark.asyncio
    async def test_revoke_all_roles(self, rbac):
        await rbac.create_role("t1", "editor", ["content:write"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1")
        await rbac.assign_role("t1", "viewer", "user", "u1")
        await rbac.assign_role("t1", "viewer", "user", "u2")
        assert len(await rbac.get_permissions("t1", "user", "u1")) == 3

        assert await rbac.bindings.revoke_all_roles("t1", "user", "u1") == 2
        assert await rbac.get_subject_roles("t1", "user", "u1") == []
        assert await rbac.get_permissions("t1", "user", "u1") == []
        assert await rbac.has_role("t1", "viewer", "user", "u2")
        assert await rbac.bindings.revoke_all_roles("t1", "user", "u1") == 0

    @pytest.mark.asyncio
    async def test_get_role_subjects(self, store):
        clock = MutableClock(START)
        rbac = RBAC(store=store, now=clock)
        await rbac.assign_role("t1", "viewer", "user", "u1")
        await rbac.assign_role("t1", "viewer", "service", "svc", expires_at=START + timedelta(minutes=5))
        await rbac.assign_role("t2", "viewer", "user", "u3")

        subjects = await rbac.bindings.get_role_subjects("t1", "viewer")
        assert sorted(b.subject_id for b in subjects) == ["svc", "u1"]

        clock.advance(timedelta(minutes=5))
        subjects = await rbac.bindings.get_role_subjects("t1", "viewer")
        assert [b.subject_id for b in subjects] == ["u1"]


class TestPermissionSets:
    """Test any/all checks against effective permissions"""

    @pytest.mark.asyncio
    async def test_has_any_and_all(self, rbac):
        await rbac.create_role("t1", "editor", ["content:read", "content:write"], role_id="editor")
        await rbac.assign_role("t1", "editor", "user", "u1")
        context = create_context(TenantContext(id="t1"), user())

        assert await rbac.evaluator.has_any_permission(context, ["content:delete", "content:read"])
        assert not await rbac.evaluator.has_any_permission(context, ["content:delete"])
        assert await rbac.evaluator.has_all_permissions(context, ["content:read", "content:write"])
        assert not await rbac.evaluator.has_all_permissions(context, ["content:read", "content:delete"])

    @pytest.mark.asyncio
    async def test_subjects_without_bindings_have_nothing(self, rbac):
        context = create_context(TenantContext(id="t1"))
        assert not await rbac.evaluator.has_any_permission(context, ["content:read"])
        assert not await rbac.evaluator.has_all_permissions(context, [])
