"""
Persistence contract for roles and bindings.

Implementations live outside this package (database adapters); an in-memory
reference implementation is provided in ``mtauthz.rbac.memory``. All methods
are asynchronous and tenant-scoped.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .types import BindingSubjectType, RoleBinding, RoleDefinition


class RBACStore(ABC):
    """Abstract base class for role and binding storage."""

    @abstractmethod
    async def get_role(self, tenant_id: str, role_id: str) -> Optional[RoleDefinition]:
        """Get a role by id, None if it does not exist in the tenant."""
        pass

    @abstractmethod
    async def list_roles(self, tenant_id: str) -> List[RoleDefinition]:
        """List every role of a tenant."""
        pass

    @abstractmethod
    async def save_role(self, role: RoleDefinition) -> None:
        """Insert or replace a role."""
        pass

    @abstractmethod
    async def delete_role(self, tenant_id: str, role_id: str) -> bool:
        """Delete a role. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def get_binding(self, tenant_id: str, binding_id: str) -> Optional[RoleBinding]:
        pass

    @abstractmethod
    async def list_bindings_for_subject(self, tenant_id: str,
                                        subject_type: BindingSubjectType,
                                        subject_id: str) -> List[RoleBinding]:
        """List every binding of a subject, expired ones included."""
        pass

    @abstractmethod
    async def list_bindings(self, tenant_id: str,
                            role_id: Optional[str] = None) -> List[RoleBinding]:
        """List the bindings of a tenant, optionally only those of one role."""
        pass

    @abstractmethod
    async def save_binding(self, binding: RoleBinding) -> None:
        """Insert or replace a binding."""
        pass

    @abstractmethod
    async def delete_binding(self, tenant_id: str, binding_id: str) -> bool:
        """Delete a binding. Returns False if it did not exist."""
        pass
