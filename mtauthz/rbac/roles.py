"""
Role management: CRUD, validation, inheritance and built-in system roles.
"""

import logging
from collections import deque
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from ..common.utils import generate_id, get_current_time
from ..errors import (
    DuplicateRoleError,
    RoleNotFoundError,
    SystemRoleError,
    ValidationError,
)
from .store import RBACStore
from .types import RoleDefinition, RoleStatus
from .validation import (
    check_circular_inheritance,
    validate_inherits,
    validate_permissions,
    validate_role_name,
    validate_tenant_id,
)


logger = logging.getLogger(__name__)


ChangeListener = Callable[[str, Optional[str]], None]


def super_admin_role() -> RoleDefinition:
    return RoleDefinition(
        id="super_admin", tenant_id="", name="super_admin",
        display_name="Super Administrator", description="Full system access",
        permissions=["*"], is_system=True, metadata={"scope": "global"},
    )


def tenant_admin_role() -> RoleDefinition:
    return RoleDefinition(
        id="tenant_admin", tenant_id="", name="tenant_admin",
        display_name="Tenant Administrator", description="Full tenant access",
        permissions=["*"], is_system=True, metadata={"scope": "tenant"},
    )


def viewer_role() -> RoleDefinition:
    return RoleDefinition(
        id="viewer", tenant_id="", name="viewer",
        display_name="Viewer", description="Read-only access",
        permissions=["*:read", "*:list"], is_system=True,
    )


def default_system_roles() -> List[RoleDefinition]:
    return [super_admin_role(), tenant_admin_role(), viewer_role()]


class RoleManager:
    """
    Tenant-scoped role management on top of an RBACStore.

    System roles are held by the manager rather than the store and are
    visible in every tenant. They cannot be updated or deleted.

    Every mutation notifies the change listener with the affected tenant so
    cached permission sets can be dropped.
    """

    def __init__(self, store: RBACStore,
                 system_roles: Optional[Iterable[RoleDefinition]] = None,
                 on_change: Optional[ChangeListener] = None):
        self.store = store
        self._system_roles: Dict[str, RoleDefinition] = {}
        self._on_change = on_change

        for role in (default_system_roles() if system_roles is None else system_roles):
            self.register_system_role(role)

    def set_change_listener(self, listener: Optional[ChangeListener]) -> None:
        self._on_change = listener

    def _changed(self, tenant_id: str) -> None:
        if self._on_change is not None:
            self._on_change(tenant_id, None)

    def register_system_role(self, role: RoleDefinition) -> None:
        """
        Raises:
            ValidationError: If the role is not flagged as a system role
        """
        if not role.is_system:
            raise ValidationError("Only system roles can be registered", field="is_system")
        validate_role_name(role.name)
        self._system_roles[role.id] = role.copy()
        logger.debug(f"System role registered: {role.id}")

    @property
    def system_role_ids(self) -> List[str]:
        return list(self._system_roles)

    def _system_role(self, tenant_id: str, role_id: str) -> Optional[RoleDefinition]:
        role = self._system_roles.get(role_id)
        return role.copy(tenant_id=tenant_id) if role else None

    async def create_role(self, tenant_id: str, name: str,
                          permissions: Optional[Iterable[str]] = None,
                          inherits: Optional[Iterable[str]] = None,
                          role_id: Optional[str] = None,
                          display_name: Optional[str] = None,
                          description: Optional[str] = None,
                          metadata: Optional[Dict[str, Any]] = None,
                          created_by: Optional[str] = None) -> RoleDefinition:
        """
        Create a role.

        Raises:
            ValidationError: On an invalid tenant, name or permission code
            DuplicateRoleError: If the id or name is already taken in the tenant
            CircularInheritanceError: If ``inherits`` would close a cycle
        """
        validate_tenant_id(tenant_id)
        validate_role_name(name)
        permissions = validate_permissions(permissions or [])
        inherits = validate_inherits(inherits or [])

        role_id = role_id or generate_id("role_")
        if await self.get_role(tenant_id, role_id) is not None:
            raise DuplicateRoleError(f"Role with id {role_id} already exists",
                                     tenant_id=tenant_id, role_id=role_id)
        if await self.get_role_by_name(tenant_id, name) is not None:
            raise DuplicateRoleError(f'Role with name "{name}" already exists',
                                     tenant_id=tenant_id, role_id=role_id)

        await check_circular_inheritance(
            lambda rid: self.get_role(tenant_id, rid), role_id, inherits, tenant_id=tenant_id)

        now = get_current_time()
        role = RoleDefinition(
            id=role_id,
            tenant_id=tenant_id,
            name=name,
            permissions=permissions,
            inherits=inherits,
            display_name=display_name,
            description=description,
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        await self.store.save_role(role)
        self._changed(tenant_id)
        logger.debug(f"Role created: {tenant_id}/{role_id} ({name})")
        return role.copy()

    async def update_role(self, tenant_id: str, role_id: str,
                          permissions: Optional[Iterable[str]] = None,
                          inherits: Optional[Iterable[str]] = None,
                          display_name: Optional[str] = None,
                          description: Optional[str] = None,
                          status: Optional[RoleStatus] = None,
                          metadata: Optional[Dict[str, Any]] = None) -> RoleDefinition:
        """
        Update the given fields of a role; None leaves a field unchanged.

        Raises:
            RoleNotFoundError: If the role does not exist
            SystemRoleError: If the role is a system role
            CircularInheritanceError: If new ``inherits`` would close a cycle
        """
        role = await self.get_role(tenant_id, role_id)
        if role is None:
            raise RoleNotFoundError(f"Role not found: {role_id}", tenant_id=tenant_id, role_id=role_id)
        if role.is_system:
            raise SystemRoleError(f"Cannot modify system role {role_id}",
                                  tenant_id=tenant_id, role_id=role_id)

        if permissions is not None:
            role.permissions = validate_permissions(permissions)
        if inherits is not None:
            inherits = validate_inherits(inherits)
            await check_circular_inheritance(
                lambda rid: self.get_role(tenant_id, rid), role_id, inherits, tenant_id=tenant_id)
            role.inherits = inherits
        if display_name is not None:
            role.display_name = display_name
        if description is not None:
            role.description = description
        if status is not None:
            role.status = status if isinstance(status, RoleStatus) else RoleStatus(status)
        if metadata is not None:
            role.metadata = dict(metadata)
        role.updated_at = get_current_time()

        await self.store.save_role(role)
        self._changed(tenant_id)
        logger.debug(f"Role updated: {tenant_id}/{role_id}")
        return role.copy()

    async def delete_role(self, tenant_id: str, role_id: str) -> bool:
        """
        Raises:
            SystemRoleError: If the role is a system role
        """
        if role_id in self._system_roles:
            raise SystemRoleError(f"Cannot delete system role {role_id}",
                                  tenant_id=tenant_id, role_id=role_id)
        deleted = await self.store.delete_role(tenant_id, role_id)
        if deleted:
            self._changed(tenant_id)
            logger.debug(f"Role deleted: {tenant_id}/{role_id}")
        return deleted

    async def get_role(self, tenant_id: str, role_id: str) -> Optional[RoleDefinition]:
        system = self._system_role(tenant_id, role_id)
        if system is not None:
            return system
        return await self.store.get_role(tenant_id, role_id)

    async def get_role_by_name(self, tenant_id: str, name: str) -> Optional[RoleDefinition]:
        for role in self._system_roles.values():
            if role.name == name:
                return role.copy(tenant_id=tenant_id)
        for role in await self.store.list_roles(tenant_id):
            if role.name == name:
                return role
        return None

    async def list_roles(self, tenant_id: str, status: Optional[RoleStatus] = None,
                         include_system: bool = True) -> List[RoleDefinition]:
        """List system roles first, then the tenant's own roles."""
        roles: List[RoleDefinition] = []
        if include_system:
            roles.extend(r.copy(tenant_id=tenant_id) for r in self._system_roles.values())
        roles.extend(await self.store.list_roles(tenant_id))
        if status is not None:
            roles = [r for r in roles if r.status is status]
        return roles

    async def get_role_permissions(self, tenant_id: str, role_id: str) -> Set[str]:
        """
        Permissions of a role including everything it inherits. Inactive and
        unknown roles contribute nothing.
        """
        permissions: Set[str] = set()
        queue = deque([role_id])
        visited: Set[str] = set()
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            role = await self.get_role(tenant_id, current)
            if role is None or not role.is_active:
                continue
            permissions.update(role.permissions)
            queue.extend(role.inherits)
        return permissions

    async def add_permission(self, tenant_id: str, role_id: str, permission: str) -> RoleDefinition:
        role = await self.get_role(tenant_id, role_id)
        if role is None:
            raise RoleNotFoundError(f"Role not found: {role_id}", tenant_id=tenant_id, role_id=role_id)
        if permission in role.permissions:
            return role
        return await self.update_role(tenant_id, role_id, permissions=role.permissions + [permission])

    async def remove_permission(self, tenant_id: str, role_id: str, permission: str) -> RoleDefinition:
        role = await self.get_role(tenant_id, role_id)
        if role is None:
            raise RoleNotFoundError(f"Role not found: {role_id}", tenant_id=tenant_id, role_id=role_id)
        return await self.update_role(
            tenant_id, role_id, permissions=[p for p in role.permissions if p != permission])

    async def set_permissions(self, tenant_id: str, role_id: str,
                              permissions: Iterable[str]) -> RoleDefinition:
        return await self.update_role(tenant_id, role_id, permissions=list(permissions))

    async def clone_role(self, tenant_id: str, source_role_id: str, new_name: str,
                         created_by: Optional[str] = None) -> RoleDefinition:
        """Copy a role (system roles included) into a new, regular role."""
        source = await self.get_role(tenant_id, source_role_id)
        if source is None:
            raise RoleNotFoundError(f"Source role not found: {source_role_id}",
                                    tenant_id=tenant_id, role_id=source_role_id)
        return await self.create_role(
            tenant_id,
            new_name,
            permissions=list(source.permissions),
            inherits=list(source.inherits),
            display_name=f"{source.display_name or source.name} (Copy)",
            description=source.description,
            metadata=dict(source.metadata),
            created_by=created_by,
        )
