"""
Role binding management.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..common.utils import ensure_utc, generate_id, get_current_time
from .roles import ChangeListener
from .store import RBACStore
from .types import BindingSubjectType, RoleBinding
from .validation import coerce_subject_type, validate_binding_input, validate_tenant_id


logger = logging.getLogger(__name__)


SubjectTypeLike = Union[BindingSubjectType, str]


class BindingManager:
    """
    Assigns roles to subjects and answers binding queries.

    Expired bindings stay in the store until cleanup_expired runs but are
    treated as absent by every query. Queries take an optional ``at``
    instant (normally the request timestamp) and fall back to the clock.
    """

    def __init__(self, store: RBACStore,
                 on_change: Optional[ChangeListener] = None,
                 now: Callable[[], datetime] = get_current_time):
        self.store = store
        self._on_change = on_change
        self._now = now

    def set_change_listener(self, listener: Optional[ChangeListener]) -> None:
        self._on_change = listener

    def now(self) -> datetime:
        """Current instant according to the manager's clock, in UTC."""
        return ensure_utc(self._now())

    def _changed(self, tenant_id: str, subject_id: Optional[str]) -> None:
        if self._on_change is not None:
            self._on_change(tenant_id, subject_id)

    async def _find(self, tenant_id: str, role_id: str, subject_type: BindingSubjectType,
                    subject_id: str) -> List[RoleBinding]:
        bindings = await self.store.list_bindings_for_subject(tenant_id, subject_type, subject_id)
        return [b for b in bindings if b.role_id == role_id]

    async def assign_role(self, tenant_id: str, role_id: str, subject_type: SubjectTypeLike,
                          subject_id: str, expires_at: Optional[datetime] = None,
                          created_by: Optional[str] = None,
                          metadata: Optional[Dict[str, Any]] = None) -> RoleBinding:
        """
        Bind a role to a subject.

        An already active binding for the same role and subject is returned
        unchanged; expired ones are replaced.

        Raises:
            BindingError: On missing ids, an unknown subject type or an
                expiry that is not in the future
        """
        validate_tenant_id(tenant_id)
        subject_type = coerce_subject_type(subject_type)
        now = self.now()
        validate_binding_input(role_id, subject_id, expires_at, now)

        for existing in await self._find(tenant_id, role_id, subject_type, subject_id):
            if existing.is_active(now):
                return existing
            await self.store.delete_binding(tenant_id, existing.id)

        binding = RoleBinding(
            id=generate_id("binding_"),
            tenant_id=tenant_id,
            role_id=role_id,
            subject_type=subject_type,
            subject_id=subject_id,
            expires_at=expires_at,
            metadata=dict(metadata or {}),
            created_at=now,
            created_by=created_by,
        )
        await self.store.save_binding(binding)
        self._changed(tenant_id, subject_id)
        logger.debug(f"Role {role_id} assigned to {subject_type.value}:{subject_id} in {tenant_id}")
        return binding

    async def revoke_role(self, tenant_id: str, role_id: str, subject_type: SubjectTypeLike,
                          subject_id: str) -> bool:
        """Remove every binding of the role to the subject. False if there was none."""
        subject_type = coerce_subject_type(subject_type)
        revoked = False
        for binding in await self._find(tenant_id, role_id, subject_type, subject_id):
            revoked = await self.store.delete_binding(tenant_id, binding.id) or revoked
        if revoked:
            self._changed(tenant_id, subject_id)
            logger.debug(f"Role {role_id} revoked from {subject_type.value}:{subject_id} in {tenant_id}")
        return revoked

    async def revoke_all_roles(self, tenant_id: str, subject_type: SubjectTypeLike,
                               subject_id: str) -> int:
        subject_type = coerce_subject_type(subject_type)
        count = 0
        for binding in await self.store.list_bindings_for_subject(tenant_id, subject_type, subject_id):
            if await self.store.delete_binding(tenant_id, binding.id):
                count += 1
        if count:
            self._changed(tenant_id, subject_id)
        return count

    async def get_subject_roles(self, tenant_id: str, subject_type: SubjectTypeLike,
                                subject_id: str, at: Optional[datetime] = None) -> List[RoleBinding]:
        """Active bindings of a subject."""
        active, _ = await self.split_subject_bindings(tenant_id, subject_type, subject_id, at=at)
        return active

    async def split_subject_bindings(self, tenant_id: str, subject_type: SubjectTypeLike,
                                     subject_id: str, at: Optional[datetime] = None
                                     ) -> Tuple[List[RoleBinding], List[RoleBinding]]:
        """A subject's bindings as (active, expired) at the given instant."""
        subject_type = coerce_subject_type(subject_type)
        at = at or self.now()
        active, expired = [], []
        for binding in await self.store.list_bindings_for_subject(tenant_id, subject_type, subject_id):
            (active if binding.is_active(at) else expired).append(binding)
        return active, expired

    async def get_role_subjects(self, tenant_id: str, role_id: str,
                                at: Optional[datetime] = None) -> List[RoleBinding]:
        """Active bindings of a role."""
        at = at or self.now()
        return [b for b in await self.store.list_bindings(tenant_id, role_id=role_id) if b.is_active(at)]

    async def has_role(self, tenant_id: str, role_id: str, subject_type: SubjectTypeLike,
                       subject_id: str, at: Optional[datetime] = None) -> bool:
        subject_type = coerce_subject_type(subject_type)
        at = at or self.now()
        return any(b.is_active(at) for b in await self._find(tenant_id, role_id, subject_type, subject_id))

    async def set_expiration(self, tenant_id: str, binding_id: str,
                             expires_at: Optional[datetime]) -> Optional[RoleBinding]:
        """Change or clear a binding's expiry. None if the binding does not exist."""
        binding = await self.store.get_binding(tenant_id, binding_id)
        if binding is None:
            return None
        binding.expires_at = expires_at
        await self.store.save_binding(binding)
        self._changed(tenant_id, binding.subject_id)
        return binding

    async def cleanup_expired(self, tenant_id: str, at: Optional[datetime] = None) -> int:
        """Physically delete expired bindings. Returns how many were removed."""
        at = at or self.now()
        count = 0
        for binding in await self.store.list_bindings(tenant_id):
            if not binding.is_active(at) and await self.store.delete_binding(tenant_id, binding.id):
                count += 1
        if count:
            logger.debug(f"Removed {count} expired bindings in {tenant_id}")
        return count
