"""Lifecycle controller for the supervised command.

cmd-supervisor runtime module v0.1.0

The controller owns the child process for its whole lifetime and reconciles
three event sources into one outcome:

- the child exiting on its own
- the one-shot cancellation token fired by the signal bridge
- the escalation timer started after the process group was interrupted

State machine::

    starting -> running -> completed
                        -> cancelling -> completed_during_grace
                                      -> killed
    starting -> failed

Key design points:
- The child is spawned as leader of a new process group so the interrupt
  reaches the shell and everything it spawned
- stdout/stderr are inherited, never piped
- Both cancellation outcomes raise the same RunCancelled error, so callers
  can tell "asked to stop" apart from "the app failed"
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import anyio
from pydantic import BaseModel, ConfigDict, Field

from ..config import DEFAULT_GRACE_PERIOD, DEFAULT_KILL_TIMEOUT
from ..errors import RunCancelled, SpawnError, UnexpectedExitError
from ..launcher import CommandDescriptor, log_descriptor
from ..signal_bridge import CancellationToken
from .process_tree import IS_WINDOWS, interrupt_process_tree, kill_process_tree

__all__ = [
    "LifecycleController",
    "LifecycleEvent",
    "LifecycleState",
]

logger = logging.getLogger(__name__)

Interrupter = Callable[[int, int], bool]
Killer = Callable[[asyncio.subprocess.Process], None]


class LifecycleState(str, Enum):
    """States of a supervised run."""

    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLING = "cancelling"
    COMPLETED_DURING_GRACE = "completed_during_grace"
    KILLED = "killed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({
    LifecycleState.COMPLETED,
    LifecycleState.COMPLETED_DURING_GRACE,
    LifecycleState.KILLED,
    LifecycleState.FAILED,
})


class LifecycleEvent(BaseModel):
    """One state transition of the controller.

    Attributes:
        state: State entered
        pid: Child pid (None before spawn)
        returncode: Child return code, once reaped
        signal: Name of the host signal that requested cancellation
        message: Free-form detail
        timestamp: Unix time of the transition
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    state: LifecycleState
    pid: int | None = None
    returncode: int | None = None
    signal: str | None = None
    message: str = ""
    timestamp: float = Field(default_factory=time.time)


@dataclass
class LifecycleController:
    """Spawn one command and supervise it until it is reaped.

    Example:
        token = CancellationToken()
        controller = LifecycleController(token, grace_period=10.0)
        descriptor = build_descriptor("sleep 30")

        try:
            await controller.run(descriptor)
        except RunCancelled as e:
            print(f"stopped by {e.signal}")

    Attributes:
        token: Cancellation token fired by the signal bridge
        grace_period: Seconds between the SIGINT and the forced kill
        kill_timeout: Seconds to wait for reaping after the forced kill
        interrupter: Delivers a signal to a process group
        killer: Force-terminates the process tree
    """

    token: CancellationToken
    grace_period: float = DEFAULT_GRACE_PERIOD
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    interrupter: Interrupter = interrupt_process_tree
    killer: Killer = kill_process_tree
    state: LifecycleState = field(default=LifecycleState.STARTING, init=False)
    events: list[LifecycleEvent] = field(default_factory=list, init=False, repr=False)
    _process: asyncio.subprocess.Process | None = field(
        default=None, init=False, repr=False
    )

    @property
    def pid(self) -> int | None:
        """Pid (and process group id) of the child, once spawned."""
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    async def run(self, descriptor: CommandDescriptor) -> int:
        """Run the command to completion.

        Args:
            descriptor: Command to spawn

        Returns:
            The child's exit code (always 0)

        Raises:
            SpawnError: The child could not be started
            UnexpectedExitError: The child failed with no cancellation pending
            RunCancelled: A termination signal was received
        """
        if self.token.fired:
            logger.info("Cancellation requested before start, not spawning")
            raise RunCancelled(self.token.reason)

        process = await self._spawn(descriptor)
        wait_task = asyncio.create_task(process.wait(), name="app-wait")
        cancel_task = asyncio.create_task(self.token.wait(), name="cancel-watch")

        try:
            await asyncio.wait(
                {wait_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if not self.token.fired:
                return self._complete(process)
            return await self._cancel(process, wait_task)

        finally:
            if not cancel_task.done():
                cancel_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await cancel_task
            # run() itself was cancelled while the child is still alive
            if process.returncode is None:
                await self._safe_cleanup(process, wait_task)

    async def _spawn(self, descriptor: CommandDescriptor) -> asyncio.subprocess.Process:
        """Start the child in a new process group with inherited stdout/stderr."""
        log_descriptor(descriptor)
        try:
            process = await asyncio.create_subprocess_exec(
                *descriptor.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=None,
                stderr=None,
                env=dict(descriptor.env),
                **self._build_subprocess_kwargs(),
            )
        except OSError as e:
            self._transition(LifecycleState.FAILED, message=str(e))
            logger.error(f"Failed to start the app: {e} (cmd={descriptor.command!r})")
            raise SpawnError(descriptor.command, e) from e

        self._process = process
        self._transition(LifecycleState.RUNNING, pid=process.pid)
        logger.debug(f"Started app pid={process.pid} argv={descriptor.argv[0]}")
        return process

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific process group kwargs."""
        if IS_WINDOWS:
            return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
        # setpgid(0, 0) in the child: pgid == pid, same session and terminal
        return {"process_group": 0}

    def _complete(self, process: asyncio.subprocess.Process) -> int:
        """Translate a natural exit into the run outcome."""
        returncode = process.returncode
        self._transition(
            LifecycleState.COMPLETED, pid=process.pid, returncode=returncode
        )
        if returncode != 0:
            raise UnexpectedExitError(returncode)
        logger.debug("App exited successfully")
        return returncode

    async def _cancel(
        self,
        process: asyncio.subprocess.Process,
        wait_task: asyncio.Task[int],
    ) -> int:
        """Interrupt the process group, then escalate after the grace period."""
        reason = self.token.reason
        self._transition(
            LifecycleState.CANCELLING,
            pid=process.pid,
            signal=reason.name if reason is not None else None,
        )

        if wait_task.done():
            logger.debug(f"App already exited pid={process.pid}, skipping interrupt")
        else:
            self.interrupter(process.pid, signal.SIGINT)

        # The escalation timer only starts once the interrupt has been sent
        with anyio.move_on_after(self.grace_period) as scope:
            await asyncio.shield(wait_task)

        if not scope.cancelled_caught:
            self._transition(
                LifecycleState.COMPLETED_DURING_GRACE,
                pid=process.pid,
                returncode=process.returncode,
            )
            logger.debug(
                f"App exited during grace period pid={process.pid} "
                f"returncode={process.returncode}"
            )
            raise RunCancelled(reason, returncode=process.returncode)

        logger.warning(
            f"App did not exit within {self.grace_period}s of SIGINT, "
            f"killing process group pgid={process.pid}"
        )
        await self._force_kill(process, wait_task)
        self._transition(
            LifecycleState.KILLED,
            pid=process.pid,
            returncode=process.returncode,
        )
        raise RunCancelled(reason, returncode=process.returncode, killed=True)

    async def _force_kill(
        self,
        process: asyncio.subprocess.Process,
        wait_task: asyncio.Task[int],
    ) -> None:
        """Kill the process tree and wait up to kill_timeout for reaping."""
        self.killer(process)
        try:
            await asyncio.wait_for(asyncio.shield(wait_task), timeout=self.kill_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"App did not exit after kill pid={process.pid}")

    async def _safe_cleanup(
        self,
        process: asyncio.subprocess.Process,
        wait_task: asyncio.Task[int],
    ) -> None:
        """Kill and reap the child, shielded from cancellation."""
        try:
            await asyncio.shield(self._do_cleanup(process, wait_task))
        except asyncio.CancelledError:
            # If shield itself is cancelled, still try cleanup
            await self._do_cleanup(process, wait_task)

    async def _do_cleanup(
        self,
        process: asyncio.subprocess.Process,
        wait_task: asyncio.Task[int],
    ) -> None:
        if process.returncode is None and self.state is not LifecycleState.KILLED:
            logger.debug(f"Supervisor cancelled, killing app pid={process.pid}")
            await self._force_kill(process, wait_task)
            self._transition(
                LifecycleState.KILLED,
                pid=process.pid,
                returncode=process.returncode,
            )

        if not wait_task.done():
            wait_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await wait_task

    def _transition(self, state: LifecycleState, **details: Any) -> None:
        """Record a state transition."""
        event = LifecycleEvent(state=state, **details)
        self.state = state
        self.events.append(event)
        logger.debug("Lifecycle: %s", event)
