"""
The surface exposed to plugins during installation.
"""

from typing import Any, Callable, List, Optional

from ..errors import PluginCapabilityError
from ..hooks.global_hooks import GlobalHooks, GlobalHooksManager
from ..policy.types import PolicyDefinition
from ..registry.registry import Registry
from ..registry.types import ResourceDefinition, ResourceHooks


class PluginContext:
    """
    Handle given to plugin ``install`` and ``on_init`` callables.

    Plugins only reach the orchestrator through this object; there is no
    module-level state to register against.
    """

    def __init__(self, registry: Registry, hooks: GlobalHooksManager,
                 set_permission_resolver: Optional[Callable[[Any], None]] = None,
                 config: Any = None):
        self._registry = registry
        self.config = config
        self._hooks = hooks
        self._set_permission_resolver = set_permission_resolver

    def register_resource(self, resource: ResourceDefinition) -> None:
        self._registry.register_resource(resource)

    def register_policy(self, policy: PolicyDefinition) -> None:
        self._registry.register_policy(policy)

    def register_global_hooks(self, hooks: GlobalHooks) -> None:
        self._hooks.register(hooks)

    def extend_resource_hooks(self, resource_name: str, hooks: ResourceHooks) -> None:
        self._registry.extend_resource_hooks(resource_name, hooks)

    def list_resources(self) -> List[ResourceDefinition]:
        return self._registry.list_resources()

    def get_resource(self, name: str) -> Optional[ResourceDefinition]:
        return self._registry.get_resource(name)

    def get_policy(self, policy_id: str) -> Optional[PolicyDefinition]:
        return self._registry.policies.get_policy(policy_id)

    def on_resource_registered(self, callback: Callable[[ResourceDefinition], None]) -> Callable[[], None]:
        """Subscribe to resource registrations. Returns an unsubscribe function."""
        return self._registry.on_resource_registered(callback)

    def set_permission_resolver(self, resolver: Any) -> None:
        if self._set_permission_resolver is None:
            raise PluginCapabilityError("This context does not accept a permission resolver")
        self._set_permission_resolver(resolver)
