"""
Global hooks.
"""

from .global_hooks import (
    HookResult,
    GlobalHooks,
    HooksSnapshot,
    GlobalHooksManager,
)

__all__ = [
    "HookResult",
    "GlobalHooks",
    "HooksSnapshot",
    "GlobalHooksManager",
]
