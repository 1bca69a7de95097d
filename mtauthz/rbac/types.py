"""
Data model for roles, bindings and effective permissions.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ..common.utils import ensure_utc, get_current_time, parse_iso_datetime
from ..core.types import RequestContext, SubjectContext, TenantContext


class RoleStatus(Enum):
    """Only active roles contribute permissions."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class BindingSubjectType(Enum):
    USER = "user"
    GROUP = "group"
    SERVICE = "service"


@dataclass
class RoleDefinition:
    """A named bundle of permissions, optionally inheriting other roles."""
    id: str
    tenant_id: str
    name: str
    permissions: List[str] = field(default_factory=list)
    inherits: List[str] = field(default_factory=list)
    is_system: bool = False
    status: RoleStatus = RoleStatus.ACTIVE
    display_name: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=get_current_time)
    updated_at: datetime = field(default_factory=get_current_time)
    created_by: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is RoleStatus.ACTIVE

    def copy(self, **changes) -> 'RoleDefinition':
        """Return a copy that shares no mutable state with this role."""
        role = replace(self, **changes)
        role.permissions = list(role.permissions)
        role.inherits = list(role.inherits)
        role.metadata = dict(role.metadata)
        return role

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'name': self.name,
            'display_name': self.display_name,
            'description': self.description,
            'permissions': list(self.permissions),
            'inherits': list(self.inherits),
            'is_system': self.is_system,
            'status': self.status.value,
            'metadata': self.metadata,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'created_by': self.created_by
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RoleDefinition':
        """Create from dictionary representation."""
        now = get_current_time()
        return cls(
            id=data['id'],
            tenant_id=data['tenant_id'],
            name=data['name'],
            display_name=data.get('display_name'),
            description=data.get('description'),
            permissions=list(data.get('permissions', [])),
            inherits=list(data.get('inherits', [])),
            is_system=data.get('is_system', False),
            status=RoleStatus(data.get('status', 'active')),
            metadata=data.get('metadata', {}),
            created_at=parse_iso_datetime(data.get('created_at')) or now,
            updated_at=parse_iso_datetime(data.get('updated_at')) or now,
            created_by=data.get('created_by')
        )


@dataclass
class RoleBinding:
    """Assignment of a role to a subject within a tenant."""
    id: str
    tenant_id: str
    role_id: str
    subject_type: BindingSubjectType
    subject_id: str
    expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=get_current_time)
    created_by: Optional[str] = None

    def is_active(self, at: Optional[datetime] = None) -> bool:
        """
        A binding is active when it has no expiry or expires strictly after
        the evaluation instant.
        """
        if self.expires_at is None:
            return True
        at = ensure_utc(at) if at is not None else get_current_time()
        return ensure_utc(self.expires_at) > at

    def matches(self, role_id: str, subject_type: BindingSubjectType, subject_id: str) -> bool:
        return (self.role_id == role_id and self.subject_type is subject_type
                and self.subject_id == subject_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'role_id': self.role_id,
            'subject_type': self.subject_type.value,
            'subject_id': self.subject_id,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'metadata': self.metadata,
            'created_at': self.created_at.isoformat(),
            'created_by': self.created_by
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RoleBinding':
        """Create from dictionary representation."""
        return cls(
            id=data['id'],
            tenant_id=data['tenant_id'],
            role_id=data['role_id'],
            subject_type=BindingSubjectType(data['subject_type']),
            subject_id=data['subject_id'],
            expires_at=parse_iso_datetime(data.get('expires_at')),
            metadata=data.get('metadata', {}),
            created_at=parse_iso_datetime(data.get('created_at')) or get_current_time(),
            created_by=data.get('created_by')
        )


@dataclass(frozen=True)
class EffectivePermissions:
    """
    Resolved permissions of a subject.

    ``roles`` lists every contributing role id, bound or inherited, in
    resolution order. ``valid_until`` is the earliest expiry among the
    bindings the result depends on; ``valid_from`` is the latest expiry among
    the bindings it excluded as expired. The result holds for any evaluation
    instant in ``[valid_from, valid_until)``.
    """
    tenant_id: str
    subject_type: BindingSubjectType
    subject_id: str
    permissions: FrozenSet[str]
    roles: Tuple[str, ...]
    role_permissions: Dict[str, FrozenSet[str]] = field(default_factory=dict, hash=False, compare=False)
    computed_at: datetime = field(default_factory=get_current_time)
    valid_until: Optional[datetime] = None
    valid_from: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'tenant_id': self.tenant_id,
            'subject_type': self.subject_type.value,
            'subject_id': self.subject_id,
            'permissions': sorted(self.permissions),
            'roles': list(self.roles),
            'computed_at': self.computed_at.isoformat(),
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'valid_from': self.valid_from.isoformat() if self.valid_from else None
        }


@dataclass
class RBACCheckContext:
    tenant: TenantContext
    subject: SubjectContext
    permission: str
    request: RequestContext = field(default_factory=RequestContext)
    resource_id: Optional[str] = None


@dataclass
class RBACCheckResult:
    allowed: bool
    reason: str
    matched_roles: List[str] = field(default_factory=list)
