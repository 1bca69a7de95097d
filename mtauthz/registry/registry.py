"""
Resource, permission and policy registry, frozen by MTAuthz.init().
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..errors import ErrorCode, RegistryError, RegistryFrozenError, ValidationError
from ..permission.types import Permission
from ..permission.utils import compile_permission, is_valid_identifier
from ..policy.engine import PolicyEngine
from ..policy.types import CompiledPolicy, PolicyDefinition
from .types import ResourceDefinition, ResourceHooks


logger = logging.getLogger(__name__)


ResourceListener = Callable[[ResourceDefinition], None]


class Registry:
    """
    Holds resource definitions, their compiled permissions and the policies
    registered through them.

    Mutable until freeze(); every mutation afterwards raises
    RegistryFrozenError.
    """

    def __init__(self, policy_engine: Optional[PolicyEngine] = None):
        self.policies = policy_engine or PolicyEngine()
        self._resources: Dict[str, ResourceDefinition] = {}
        self._permissions: Dict[str, Permission] = {}
        self._listeners: List[ResourceListener] = []
        self._frozen = False
        self._lock = threading.RLock()

    def _ensure_mutable(self, operation: str) -> None:
        if self._frozen:
            raise RegistryFrozenError(operation)

    def register_resource(self, resource: ResourceDefinition) -> None:
        """
        Register a resource and compile its permissions.

        Raises:
            RegistryFrozenError: After freeze()
            RegistryError: If a resource with the same name exists
            ValidationError: If the resource name is invalid
            InvalidPermissionCodeError: If an action name is invalid
        """
        with self._lock:
            self._ensure_mutable("register resource")
            if not is_valid_identifier(resource.name):
                raise ValidationError(f"Invalid resource name: {resource.name!r}", field="name")
            if resource.name in self._resources:
                raise RegistryError(f"Resource already registered: {resource.name}")

            compiled = [
                compile_permission(resource.name, p.action, p.scope, p.conditions, p.metadata)
                for p in resource.permissions
            ]
            self._resources[resource.name] = resource
            for permission in compiled:
                self._permissions[permission.code] = permission
            listeners = list(self._listeners)

        logger.debug(f"Resource registered: {resource.name} ({len(compiled)} permissions)")
        for listener in listeners:
            listener(resource)

    def register_resources(self, resources: Iterable[ResourceDefinition]) -> None:
        for resource in resources:
            self.register_resource(resource)

    def register_policy(self, policy: PolicyDefinition) -> CompiledPolicy:
        with self._lock:
            self._ensure_mutable("register policy")
            return self.policies.add_policy(policy)

    def register_policies(self, policies: Iterable[PolicyDefinition]) -> List[CompiledPolicy]:
        return [self.register_policy(policy) for policy in policies]

    def extend_resource_hooks(self, resource_name: str, hooks: ResourceHooks) -> None:
        with self._lock:
            self._ensure_mutable("extend resource hooks")
            self.get_resource_or_raise(resource_name).hooks.extend(hooks)

    def on_resource_registered(self, listener: ResourceListener) -> Callable[[], None]:
        """Subscribe to resource registrations. Returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def get_resource(self, name: str) -> Optional[ResourceDefinition]:
        return self._resources.get(name)

    def get_resource_or_raise(self, name: str) -> ResourceDefinition:
        resource = self._resources.get(name)
        if resource is None:
            raise RegistryError(f"Resource not found: {name}", code=ErrorCode.RESOURCE_NOT_FOUND)
        return resource

    def has_resource(self, name: str) -> bool:
        return name in self._resources

    def list_resources(self) -> List[ResourceDefinition]:
        return list(self._resources.values())

    def get_permission(self, code: str) -> Optional[Permission]:
        return self._permissions.get(code)

    def list_permissions(self, resource_name: Optional[str] = None) -> List[Permission]:
        permissions = list(self._permissions.values())
        if resource_name is not None:
            permissions = [p for p in permissions if p.resource == resource_name]
        return permissions

    def permission_codes(self) -> List[str]:
        return list(self._permissions)

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True
        logger.info(f"Registry frozen with {len(self._resources)} resources")

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def clear(self) -> None:
        with self._lock:
            self._ensure_mutable("clear")
            self._resources.clear()
            self._permissions.clear()
            self.policies.clear()

    def get_summary(self) -> Dict[str, Any]:
        return {
            'resources': len(self._resources),
            'permissions': len(self._permissions),
            'policies': len(self.policies),
            'frozen': self._frozen
        }

    def export_metadata(self) -> Dict[str, Any]:
        """Describe registered resources and their permission codes."""
        return {
            'resources': [
                {
                    'name': resource.name,
                    'display_name': resource.display_name or resource.name,
                    'group': resource.group,
                    'permissions': [p.code for p in self.list_permissions(resource.name)],
                    'metadata': resource.metadata,
                }
                for resource in self._resources.values()
            ]
        }
