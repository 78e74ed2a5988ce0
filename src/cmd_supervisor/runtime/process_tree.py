"""Process-tree signalling helpers.

The supervised command runs through an intermediate shell that may spawn its
own children, so signals are delivered to the whole process group created at
spawn time rather than to the tracked pid alone.

- POSIX: the child is the leader of a new process group (pgid == pid);
  ``os.killpg`` reaches every member of the group.
- Windows: the child is spawned with CREATE_NEW_PROCESS_GROUP; the interrupt
  is a CTRL_BREAK_EVENT to that group and the forced kill walks the tree
  with ``taskkill /T``.

Delivery failures are logged, never raised: the escalation timer in the
lifecycle controller is the backstop.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys

__all__ = [
    "IS_WINDOWS",
    "interrupt_process_tree",
    "kill_process_tree",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"


def interrupt_process_tree(pgid: int, sig: int = signal.SIGINT) -> bool:
    """Deliver ``sig`` to every process in the group ``pgid``.

    Args:
        pgid: Process group id (the pid of the group leader)
        sig: Signal to deliver (ignored on Windows, where CTRL_BREAK_EVENT
            is the only signal a process group can receive)

    Returns:
        True if the signal was delivered, False if the group was already
        empty or delivery failed.
    """
    try:
        if IS_WINDOWS:
            os.kill(pgid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to process group pgid={pgid}")
        else:
            os.killpg(pgid, sig)
            logger.debug(
                f"Sent {signal.Signals(sig).name} to process group pgid={pgid}"
            )
        return True
    except ProcessLookupError:
        logger.debug(f"Process group already exited pgid={pgid}")
    except OSError as e:
        logger.warning(f"Failed to signal process group pgid={pgid}: {e}")
    return False


def kill_process_tree(process: asyncio.subprocess.Process) -> None:
    """Force-terminate the process and all of its descendants.

    Args:
        process: The group leader spawned by the lifecycle controller
    """
    pid = process.pid
    if IS_WINDOWS:
        _windows_kill_tree(process)
        return

    try:
        os.killpg(pid, signal.SIGKILL)
        logger.debug(f"Sent SIGKILL to process group pgid={pid}")
    except ProcessLookupError:
        logger.debug(f"Process group already exited pgid={pid}")
    except OSError as e:
        logger.debug(f"killpg failed, falling back to kill: {e}")
        _kill_leader(process)


def _windows_kill_tree(process: asyncio.subprocess.Process) -> None:
    """Kill the process tree on Windows via taskkill."""
    try:
        result = subprocess.run(
            ["taskkill", "/F", "/T", "/PID", str(process.pid)],
            capture_output=True,
        )
        if result.returncode == 0:
            logger.debug(f"taskkill /T succeeded pid={process.pid}")
            return
        logger.debug(
            f"taskkill failed pid={process.pid} returncode={result.returncode}"
        )
    except OSError as e:
        logger.debug(f"taskkill unavailable, falling back to kill: {e}")
    _kill_leader(process)


def _kill_leader(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
        logger.debug(f"Called kill() on pid={process.pid}")
    except ProcessLookupError:
        pass
