"""Runtime module for supervising the launched command.

This module provides the lifecycle controller that owns the child process and
the helpers that signal its whole process tree.
"""

from __future__ import annotations

from .lifecycle import LifecycleController, LifecycleEvent, LifecycleState
from .process_tree import interrupt_process_tree, kill_process_tree

__all__ = [
    "LifecycleController",
    "LifecycleEvent",
    "LifecycleState",
    "interrupt_process_tree",
    "kill_process_tree",
]
