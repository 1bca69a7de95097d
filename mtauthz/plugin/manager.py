"""
Plugin registration, dependency ordering and lifecycle.
"""

import logging
from typing import Any, Dict, List, Optional

from ..common.utils import maybe_await
from ..errors import (
    MissingDependencyError,
    PluginAlreadyRegisteredError,
    PluginDependencyError,
    PluginNotFoundError,
)
from .types import PluginDefinition, PluginInstance


logger = logging.getLogger(__name__)


class PluginManager:
    """
    Registers, installs and uninstalls plugins.

    Dependencies must be registered before their dependents. Installing a
    plugin installs its dependencies first; uninstalling is refused while an
    installed plugin still depends on it.
    """

    def __init__(self, context: Any):
        self.context = context
        self._plugins: Dict[str, PluginInstance] = {}

    def register(self, plugin: PluginDefinition) -> None:
        """
        Raises:
            PluginAlreadyRegisteredError: If the name is taken
            MissingDependencyError: If a dependency is not registered yet
        """
        if plugin.name in self._plugins:
            raise PluginAlreadyRegisteredError(f"Plugin already registered: {plugin.name}",
                                               plugin_name=plugin.name)
        for dependency in plugin.dependencies:
            if dependency not in self._plugins:
                raise MissingDependencyError(plugin.name, dependency)

        self._plugins[plugin.name] = PluginInstance(definition=plugin)
        logger.debug(f"Plugin registered: {plugin.name}@{plugin.version}")

        if plugin.on_register is not None:
            try:
                result = plugin.on_register()
                if hasattr(result, 'close') and hasattr(result, 'send'):
                    # on_register runs synchronously; a coroutine cannot be awaited here
                    result.close()
                    logger.warning(f"Plugin {plugin.name} on_register is async and was not run")
            except Exception as e:
                logger.warning(f"Plugin {plugin.name} on_register failed: {e}")

    def _get(self, name: str) -> PluginInstance:
        instance = self._plugins.get(name)
        if instance is None:
            raise PluginNotFoundError(f"Plugin not found: {name}", plugin_name=name)
        return instance

    async def install(self, name: str) -> None:
        """
        Install a plugin and, first, its dependencies. Already installed
        plugins are skipped.

        If ``on_init`` raises, the plugin is left neither installed nor
        initialized and the error propagates.
        """
        await self._install(name, [])

    async def _install(self, name: str, chain: List[str]) -> None:
        instance = self._get(name)
        if instance.installed:
            return
        if name in chain:
            raise PluginDependencyError(
                f"Circular plugin dependency: {' -> '.join(chain + [name])}", plugin_name=name)

        for dependency in instance.definition.dependencies:
            await self._install(dependency, chain + [name])

        plugin = instance.definition
        if plugin.install is not None:
            await maybe_await(plugin.install(self.context))
        instance.installed = True

        if plugin.on_init is not None:
            try:
                await maybe_await(plugin.on_init(self.context))
            except Exception:
                instance.installed = False
                instance.initialized = False
                raise
        instance.initialized = True
        logger.info(f"Plugin installed: {name}@{plugin.version}")

    async def install_all(self) -> None:
        for name in self.sort_by_dependencies():
            await self.install(name)

    async def uninstall(self, name: str) -> bool:
        """
        Returns False if the plugin was not installed.

        Raises:
            PluginNotFoundError: If the plugin is not registered
            PluginDependencyError: If an installed plugin depends on it
        """
        instance = self._get(name)
        if not instance.installed:
            return False

        for other in self._plugins.values():
            if other.installed and name in other.definition.dependencies:
                raise PluginDependencyError(
                    f"Cannot uninstall {name}: {other.name} depends on it", plugin_name=name)

        if instance.definition.on_destroy is not None:
            await maybe_await(instance.definition.on_destroy())
        instance.installed = False
        instance.initialized = False
        logger.info(f"Plugin uninstalled: {name}")
        return True

    def get(self, name: str) -> Optional[PluginInstance]:
        return self._plugins.get(name)

    def list(self) -> List[PluginInstance]:
        return list(self._plugins.values())

    def is_installed(self, name: str) -> bool:
        instance = self._plugins.get(name)
        return instance is not None and instance.installed

    def sort_by_dependencies(self) -> List[str]:
        """
        Registration order, with every plugin placed after its dependencies.

        Raises:
            PluginDependencyError: On a dependency cycle
        """
        ordered: List[str] = []
        visited = set()
        visiting = set()

        def visit(name: str) -> None:
            if name in visited:
                return
            if name in visiting:
                raise PluginDependencyError(f"Circular dependency detected involving: {name}",
                                            plugin_name=name)
            visiting.add(name)
            instance = self._plugins.get(name)
            for dependency in (instance.definition.dependencies if instance else ()):
                visit(dependency)
            visiting.discard(name)
            visited.add(name)
            ordered.append(name)

        for name in self._plugins:
            visit(name)
        return ordered

    def __len__(self) -> int:
        return len(self._plugins)
