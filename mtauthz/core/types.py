"""
Core context and result types shared by every mtauthz subsystem.

A caller builds an AuthzContext (tenant, subject, request metadata) per request;
permission checks add the requested resource/action on top of it.
"""

from dataclasses import dataclass, field
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from ..common.utils import generate_request_id, get_current_time, ensure_utc


# Evaluation instant of the permission check running in the current task
_evaluation_time: ContextVar[Optional[datetime]] = ContextVar('evaluation_time', default=None)


def current_evaluation_time() -> Optional[datetime]:
    """Request timestamp of the check in progress, or None outside a check."""
    return _evaluation_time.get()


class SubjectType(Enum):
    """Kind of entity being authorized."""
    USER = "user"
    SERVICE = "service"
    SYSTEM = "system"
    ANONYMOUS = "anonymous"


class TenantStatus(Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    PENDING = "pending"
    DELETED = "deleted"


@dataclass
class TenantContext:
    """Isolation boundary for roles, policies and bindings."""
    id: str
    status: TenantStatus = TenantStatus.ACTIVE
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'status': self.status.value,
            'metadata': self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TenantContext':
        """Create from dictionary representation."""
        return cls(
            id=data['id'],
            status=TenantStatus(data.get('status', 'active')),
            metadata=data.get('metadata', {})
        )


@dataclass
class SubjectContext:
    """The entity being authorized (user, service, system or anonymous)."""
    id: str
    type: SubjectType = SubjectType.USER
    roles: List[str] = field(default_factory=list)
    permissions: List[str] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_system(self) -> bool:
        return self.type is SubjectType.SYSTEM

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'type': self.type.value,
            'roles': list(self.roles),
            'permissions': list(self.permissions),
            'attributes': self.attributes
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SubjectContext':
        """Create from dictionary representation."""
        return cls(
            id=data['id'],
            type=SubjectType(data.get('type', 'user')),
            roles=data.get('roles', []),
            permissions=data.get('permissions', []),
            attributes=data.get('attributes', {})
        )


def anonymous_subject() -> SubjectContext:
    """Zero-value subject used when no caller identity is known."""
    return SubjectContext(id="anonymous", type=SubjectType.ANONYMOUS)


def system_subject() -> SubjectContext:
    """Internal subject that is always allowed."""
    return SubjectContext(id="system", type=SubjectType.SYSTEM, roles=["system"], permissions=["*"])


@dataclass
class RequestContext:
    """
    Per-request metadata.

    The timestamp is the evaluation instant for time conditions and binding
    expiry; it is fixed when the context is built so evaluation is reproducible.
    """
    request_id: str = field(default_factory=generate_request_id)
    timestamp: datetime = field(default_factory=get_current_time)
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    path: Optional[str] = None
    method: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.timestamp, datetime):
            self.timestamp = ensure_utc(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'request_id': self.request_id,
            'timestamp': self.timestamp.isoformat(),
            'ip': self.ip,
            'user_agent': self.user_agent,
            'path': self.path,
            'method': self.method,
            'headers': self.headers
        }


@dataclass
class AuthzContext:
    """Request-scoped context passed to hooks and permission checks."""
    tenant: TenantContext
    subject: SubjectContext = field(default_factory=anonymous_subject)
    request: RequestContext = field(default_factory=RequestContext)


def create_context(tenant: TenantContext,
                   subject: Optional[SubjectContext] = None,
                   request: Optional[RequestContext] = None,
                   **request_kwargs) -> AuthzContext:
    """
    Build an AuthzContext, filling in an anonymous subject and a generated
    request id/timestamp when they are omitted.
    """
    if request is None:
        request = RequestContext(**request_kwargs)
    return AuthzContext(
        tenant=tenant,
        subject=subject or anonymous_subject(),
        request=request,
    )


@dataclass
class PermissionCheckContext:
    """Input of a permission check: who wants to do what, where."""
    tenant: TenantContext
    subject: SubjectContext
    resource: str
    action: str
    request: RequestContext = field(default_factory=RequestContext)
    resource_id: Optional[str] = None
    resource_data: Optional[Dict[str, Any]] = None
    environment: Optional[Dict[str, Any]] = None

    @property
    def permission_code(self) -> str:
        return f"{self.resource}:{self.action}"

    @classmethod
    def from_context(cls, context: AuthzContext, resource: str, action: str,
                     **kwargs) -> 'PermissionCheckContext':
        """Create a check context from a request context."""
        return cls(
            tenant=context.tenant,
            subject=context.subject,
            resource=resource,
            action=action,
            request=context.request,
            **kwargs
        )

    def to_authz_context(self) -> AuthzContext:
        return AuthzContext(tenant=self.tenant, subject=self.subject, request=self.request)


@dataclass
class PermissionCheckResult:
    """Outcome of a permission check."""
    allowed: bool
    permission: str
    reason: str
    evaluation_time: float = 0.0
    matched_policy: Optional[str] = None
    matched_rule: Optional[int] = None
    matched_roles: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'allowed': self.allowed,
            'permission': self.permission,
            'reason': self.reason,
            'evaluation_time': self.evaluation_time,
            'matched_policy': self.matched_policy,
            'matched_rule': self.matched_rule,
            'matched_roles': self.matched_roles
        }


@dataclass
class BatchPermissionCheckResult:
    results: Dict[str, PermissionCheckResult] = field(default_factory=dict)

    @property
    def all_allowed(self) -> bool:
        return all(r.allowed for r in self.results.values())

    @property
    def any_allowed(self) -> bool:
        return any(r.allowed for r in self.results.values())


@contextmanager
def evaluating_at(timestamp: Optional[datetime]) -> Iterator[None]:
    """Expose ``timestamp`` through current_evaluation_time() for the block."""
    token = _evaluation_time.set(ensure_utc(timestamp) if timestamp is not None else None)
    try:
        yield
    finally:
        _evaluation_time.reset(token)
