"""
Cross-cutting hooks run around every authorization-relevant operation.
"""

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from ..common.utils import maybe_await
from ..errors import HookError


logger = logging.getLogger(__name__)


BeforeHook = Callable[[Any, str, str], Any]
AfterHook = Callable[[Any, str, str, Any], Any]
ErrorHook = Callable[[Any, str, str, BaseException], Any]


@dataclass
class HookResult:
    proceed: bool = True
    reason: Optional[str] = None

    @classmethod
    def coerce(cls, value: Any) -> 'HookResult':
        """
        Normalize a before hook's return value. None means proceed; a bool is
        the proceed flag; mappings use the ``proceed`` and ``reason`` keys.
        """
        if isinstance(value, HookResult):
            return value
        if value is None:
            return cls()
        if isinstance(value, bool):
            return cls(proceed=value)
        if isinstance(value, Mapping):
            return cls(proceed=bool(value.get('proceed', True)), reason=value.get('reason'))
        return cls(proceed=bool(value))


@dataclass
class GlobalHooks:
    """A bundle of hooks to register together, e.g. from a plugin."""
    before_any: List[BeforeHook] = field(default_factory=list)
    after_any: List[AfterHook] = field(default_factory=list)
    on_error: List[ErrorHook] = field(default_factory=list)


@dataclass(frozen=True)
class HooksSnapshot:
    """Read-only view of the registered hooks."""
    before_any: Tuple[BeforeHook, ...]
    after_any: Tuple[AfterHook, ...]
    on_error: Tuple[ErrorHook, ...]


class GlobalHooksManager:
    """
    Three ordered hook lists, executed in registration order.

    - before_any: the first hook that does not proceed short-circuits the rest
      and the operation itself. Exceptions propagate.
    - after_any: exceptions abort the remaining hooks and are re-raised
      wrapped in HookError.
    - on_error: exceptions are logged and swallowed so the original failure
      is never masked.

    Hooks may be plain functions or coroutines.
    """

    def __init__(self):
        self._before_any: List[BeforeHook] = []
        self._after_any: List[AfterHook] = []
        self._on_error: List[ErrorHook] = []
        self._lock = threading.RLock()

    def add_before_any(self, hook: BeforeHook) -> Callable[[], None]:
        """Register a before hook. Returns a function that removes it."""
        with self._lock:
            self._before_any.append(hook)
        logger.debug(f"before_any hook registered: {getattr(hook, '__name__', hook)}")
        return lambda: self._remove(self._before_any, hook)

    def add_after_any(self, hook: AfterHook) -> Callable[[], None]:
        with self._lock:
            self._after_any.append(hook)
        logger.debug(f"after_any hook registered: {getattr(hook, '__name__', hook)}")
        return lambda: self._remove(self._after_any, hook)

    def add_on_error(self, hook: ErrorHook) -> Callable[[], None]:
        with self._lock:
            self._on_error.append(hook)
        logger.debug(f"on_error hook registered: {getattr(hook, '__name__', hook)}")
        return lambda: self._remove(self._on_error, hook)

    def register(self, hooks: GlobalHooks) -> None:
        for hook in hooks.before_any:
            self.add_before_any(hook)
        for hook in hooks.after_any:
            self.add_after_any(hook)
        for hook in hooks.on_error:
            self.add_on_error(hook)

    def _remove(self, hooks: list, hook: Callable) -> None:
        with self._lock:
            if hook in hooks:
                hooks.remove(hook)

    async def execute_before_any(self, context: Any, operation: str, resource_name: str) -> HookResult:
        with self._lock:
            hooks = tuple(self._before_any)
        for hook in hooks:
            result = HookResult.coerce(await maybe_await(hook(context, operation, resource_name)))
            if not result.proceed:
                logger.debug(f"before_any hook blocked {operation} on {resource_name}: {result.reason}")
                return result
        return HookResult()

    async def execute_after_any(self, context: Any, operation: str, resource_name: str,
                                result: Any) -> None:
        """
        Raises:
            HookError: Wrapping the first exception raised by a hook
        """
        with self._lock:
            hooks = tuple(self._after_any)
        for hook in hooks:
            try:
                await maybe_await(hook(context, operation, resource_name, result))
            except Exception as e:
                raise HookError(f"after_any hook failed during {operation} on {resource_name}: {e}",
                                cause=e) from e

    async def execute_on_error(self, context: Any, operation: str, resource_name: str,
                               error: BaseException) -> None:
        with self._lock:
            hooks = tuple(self._on_error)
        for hook in hooks:
            try:
                await maybe_await(hook(context, operation, resource_name, error))
            except Exception as e:
                logger.error(f"on_error hook failed during {operation} on {resource_name}: {e}")

    def get_hooks(self) -> HooksSnapshot:
        with self._lock:
            return HooksSnapshot(
                before_any=tuple(self._before_any),
                after_any=tuple(self._after_any),
                on_error=tuple(self._on_error),
            )

    def clear(self) -> None:
        with self._lock:
            self._before_any.clear()
            self._after_any.clear()
            self._on_error.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._before_any) + len(self._after_any) + len(self._on_error)
