"""
In-memory RBAC store.
"""

from dataclasses import replace
from typing import Dict, List, Optional, Tuple
import threading

from ..errors import StorageError
from .store import RBACStore
from .types import BindingSubjectType, RoleBinding, RoleDefinition


def _copy_binding(binding: RoleBinding) -> RoleBinding:
    return replace(binding, metadata=dict(binding.metadata))


class MemoryRBACStore(RBACStore):
    """
    In-memory role and binding store.

    Suitable for development, testing and single-instance deployments. Values
    are copied on the way in and out so callers cannot mutate stored state.

    Note: All data is lost when the process terminates.
    """

    def __init__(self):
        # (tenant_id, role_id) -> RoleDefinition
        self._roles: Dict[Tuple[str, str], RoleDefinition] = {}

        # (tenant_id, binding_id) -> RoleBinding
        self._bindings: Dict[Tuple[str, str], RoleBinding] = {}

        self._lock = threading.RLock()
        self._operations_count = 0

    async def get_role(self, tenant_id: str, role_id: str) -> Optional[RoleDefinition]:
        with self._lock:
            self._operations_count += 1
            role = self._roles.get((tenant_id, role_id))
            return role.copy() if role else None

    async def list_roles(self, tenant_id: str) -> List[RoleDefinition]:
        with self._lock:
            self._operations_count += 1
            return [role.copy() for (tid, _), role in self._roles.items() if tid == tenant_id]

    async def save_role(self, role: RoleDefinition) -> None:
        if not role.tenant_id or not role.id:
            raise StorageError("save_role", role.id or "", "Role requires tenant_id and id")
        with self._lock:
            self._operations_count += 1
            self._roles[(role.tenant_id, role.id)] = role.copy()

    async def delete_role(self, tenant_id: str, role_id: str) -> bool:
        with self._lock:
            self._operations_count += 1
            return self._roles.pop((tenant_id, role_id), None) is not None

    async def get_binding(self, tenant_id: str, binding_id: str) -> Optional[RoleBinding]:
        with self._lock:
            self._operations_count += 1
            binding = self._bindings.get((tenant_id, binding_id))
            return _copy_binding(binding) if binding else None

    async def list_bindings_for_subject(self, tenant_id: str,
                                        subject_type: BindingSubjectType,
                                        subject_id: str) -> List[RoleBinding]:
        with self._lock:
            self._operations_count += 1
            return [
                _copy_binding(b) for (tid, _), b in self._bindings.items()
                if tid == tenant_id and b.subject_type is subject_type and b.subject_id == subject_id
            ]

    async def list_bindings(self, tenant_id: str,
                            role_id: Optional[str] = None) -> List[RoleBinding]:
        with self._lock:
            self._operations_count += 1
            return [
                _copy_binding(b) for (tid, _), b in self._bindings.items()
                if tid == tenant_id and (role_id is None or b.role_id == role_id)
            ]

    async def save_binding(self, binding: RoleBinding) -> None:
        if not binding.tenant_id or not binding.id:
            raise StorageError("save_binding", binding.id or "", "Binding requires tenant_id and id")
        with self._lock:
            self._operations_count += 1
            self._bindings[(binding.tenant_id, binding.id)] = _copy_binding(binding)

    async def delete_binding(self, tenant_id: str, binding_id: str) -> bool:
        with self._lock:
            self._operations_count += 1
            return self._bindings.pop((tenant_id, binding_id), None) is not None

    @property
    def operations_count(self) -> int:
        """Number of store calls served so far."""
        return self._operations_count

    def clear(self) -> None:
        with self._lock:
            self._roles.clear()
            self._bindings.clear()

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                'roles': len(self._roles),
                'bindings': len(self._bindings),
                'operations': self._operations_count
            }
