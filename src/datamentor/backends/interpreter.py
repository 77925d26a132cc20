"""
Host side of the pandas interpreter backend.

:class:`InterpreterBridge` supervises one long-lived worker subprocess (see
:mod:`datamentor.backends.worker`) and talks to it over newline-delimited
JSON on the worker's stdin/stdout.  The bridge is a small state machine::

    stopped -> booting -> ready -> busy -> ready ...
                  |                 |
                  +---> faulted <---+

The protocol carries no request identifier.  A response is matched to its
request only because at most one request is ever outstanding; the bridge
enforces this with a state guard in :meth:`InterpreterBridge.submit` rather
than trusting callers.  Supporting concurrent submissions would require
adding request IDs to the wire format and a map from ID to pending future.

Everything runs on the caller's asyncio event loop.  A single reader task
consumes the worker's stdout for the lifetime of the process.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Callable, List, Optional, Sequence, Type

from pydantic import ValidationError

from ..errors import InvariantViolation, NotReady, ProtocolFault, WorkerTimeout
from ..models import (
    ErrorMessage,
    InterpreterResult,
    ReadyMessage,
    ResultMessage,
    WorkerState,
    worker_message_adapter,
)


logger = logging.getLogger("datamentor.interpreter")

# Upper bound for a single protocol line; large DataFrames are sent whole.
MAX_MESSAGE_BYTES = 64 * 1024 * 1024

_USE_DEFAULT = object()


class InterpreterBridge:
    """Drives the interpreter worker subprocess.

    Parameters
    ----------
    command: sequence of str
        Command line launching the worker, e.g. ``Config.worker_command()``.
    default_timeout: float, optional
        Deadline applied to :meth:`submit` when the caller does not pass
        one.  ``None`` waits indefinitely.
    """

    def __init__(self, command: Sequence[str], default_timeout: Optional[float] = 30) -> None:
        self.command = list(command)
        self.default_timeout = default_timeout
        self.fault_reason: Optional[str] = None
        self._state = WorkerState.STOPPED
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.Future] = None
        self._settled: Optional[asyncio.Event] = None
        self._ready_callbacks: List[Callable[[], None]] = []

    @classmethod
    def from_config(cls, config) -> "InterpreterBridge":
        return cls(config.worker_command(), default_timeout=config.max_execution_seconds)

    @property
    def state(self) -> WorkerState:
        return self._state

    def is_ready(self) -> bool:
        return self._state is WorkerState.READY

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, on_ready: Optional[Callable[[], None]] = None) -> None:
        """Spawn the worker unless one is already booting or running.

        Returns as soon as the process exists; the boot handshake completes
        in the background.  ``on_ready`` fires on the transition into
        ``ready``, or immediately if the worker is already ready.  A faulted
        worker is left alone: use :meth:`restart`.
        """
        if self._state in (WorkerState.READY, WorkerState.BUSY):
            if on_ready is not None:
                on_ready()
            return
        if self._state is WorkerState.FAULTED:
            logger.warning("start() ignored: interpreter worker is faulted (%s)", self.fault_reason)
            return
        if on_ready is not None:
            self._ready_callbacks.append(on_ready)
        if self._state is WorkerState.STOPPED:
            await self._spawn()

    async def restart(self, on_ready: Optional[Callable[[], None]] = None) -> None:
        """Replace the current worker with a fresh one."""
        await self.close()
        await self.start(on_ready)

    async def close(self) -> None:
        """Terminate the worker and return to ``stopped``."""
        process, self._process = self._process, None
        reader, self._reader = self._reader, None
        pending, self._pending = self._pending, None
        self._state = WorkerState.STOPPED
        self._ready_callbacks.clear()
        if self._settled is not None:
            self._settled.set()
        if pending is not None and not pending.done():
            pending.set_exception(ProtocolFault("Interpreter worker was shut down"))
        if process is not None:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
            await process.wait()
            logger.info("Interpreter worker stopped (exit code %s)", process.returncode)
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

    async def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Suspend until the worker is ready or has faulted.

        Returns whether the worker finished booting successfully.  Returns
        ``False`` straight away if the bridge was never started.
        """
        if self._settled is None:
            return False
        try:
            await asyncio.wait_for(self._settled.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self._state in (WorkerState.READY, WorkerState.BUSY)

    async def _spawn(self) -> None:
        self._state = WorkerState.BOOTING
        self.fault_reason = None
        self._settled = asyncio.Event()
        logger.info("Spawning interpreter worker: %s", " ".join(self.command))
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                limit=MAX_MESSAGE_BYTES,
            )
        except OSError as exc:
            reason = f"Failed to spawn interpreter worker: {exc}"
            self._fault(reason)
            raise ProtocolFault(reason) from exc
        self._process = process
        self._reader = asyncio.create_task(self._read_loop(process))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def submit(self, code: str, timeout=_USE_DEFAULT) -> InterpreterResult:
        """Run ``code`` in the worker and wait for its terminal message.

        Raises
        ------
        InvariantViolation
            Another submission is still pending.  Nothing is sent.
        NotReady
            The worker is not ``ready``.  Nothing is sent.
        ProtocolFault
            The worker died, misbehaved or (as :class:`WorkerTimeout`) missed
            the deadline.  The bridge is ``faulted`` afterwards.
        """
        if self._state is WorkerState.BUSY or self._pending is not None:
            raise InvariantViolation(
                "submit() called while a previous submission is still pending"
            )
        if self._state is not WorkerState.READY:
            raise NotReady(self._not_ready_message())

        process = self._process
        assert process is not None and process.stdin is not None
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending = future
        self._state = WorkerState.BUSY

        payload = json.dumps({"code": code}) + "\n"
        try:
            process.stdin.write(payload.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            self._fault(f"Failed to send request to interpreter worker: {exc}")

        deadline = self.default_timeout if timeout is _USE_DEFAULT else timeout
        try:
            return await asyncio.wait_for(future, deadline)
        except asyncio.TimeoutError:
            reason = f"Execution did not finish within {deadline} seconds"
            self._fault(reason, WorkerTimeout)
            raise WorkerTimeout(reason) from None
        except asyncio.CancelledError:
            self._fault("Submission was cancelled before the worker answered")
            raise

    def _not_ready_message(self) -> str:
        if self._state is WorkerState.BOOTING:
            return "The Python environment is still loading. Wait a few seconds and try again."
        if self._state is WorkerState.FAULTED:
            return f"The Python environment has failed and must be restarted: {self.fault_reason}"
        return "The Python environment has not been started."

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    async def _read_loop(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        while True:
            try:
                line = await process.stdout.readline()
            except ValueError as exc:
                self._fault(f"Oversized message from interpreter worker: {exc}")
                return
            if not line:
                break
            if line.strip():
                self._dispatch(line.strip())
            if self._state is WorkerState.FAULTED:
                return
        returncode = await process.wait()
        if process is self._process and self._state is not WorkerState.STOPPED:
            self._fault(f"Interpreter worker exited unexpectedly (exit code {returncode})")

    def _dispatch(self, line: bytes) -> None:
        try:
            message = worker_message_adapter.validate_json(line)
        except ValidationError:
            self._fault(f"Unrecognised message from interpreter worker: {line[:200]!r}")
            return

        if self._state is WorkerState.BOOTING:
            if isinstance(message, ReadyMessage):
                self._mark_ready()
            elif isinstance(message, ErrorMessage):
                self._fault(f"Interpreter worker failed to boot: {message.error}")
            else:
                self._fault("Interpreter worker sent a result before it was ready")
            return

        if self._state is WorkerState.BUSY and self._pending is not None:
            if isinstance(message, ResultMessage):
                result = InterpreterResult(
                    output=message.output, result=message.result, table=message.table
                )
            elif isinstance(message, ErrorMessage):
                result = InterpreterResult(error=message.error)
            else:
                self._fault("Interpreter worker sent READY while a call was pending")
                return
            pending, self._pending = self._pending, None
            self._state = WorkerState.READY
            if not pending.done():
                pending.set_result(result)
            logger.info("Interpreter call settled (%s)", message.type)
            return

        self._fault(f"Unsolicited {message.type} message from interpreter worker")

    def _mark_ready(self) -> None:
        self._state = WorkerState.READY
        assert self._settled is not None
        self._settled.set()
        logger.info("Interpreter worker ready")
        callbacks, self._ready_callbacks = self._ready_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("on_ready callback failed")

    def _fault(self, reason: str, error_cls: Type[ProtocolFault] = ProtocolFault) -> None:
        if self._state is WorkerState.FAULTED:
            return
        logger.error("Interpreter worker faulted: %s", reason)
        self._state = WorkerState.FAULTED
        self.fault_reason = reason
        self._ready_callbacks.clear()
        if self._settled is not None:
            self._settled.set()
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.set_exception(error_cls(reason))
        process = self._process
        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
