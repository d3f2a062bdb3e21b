"""Handle around a spawned instrumentation child process.

The handle exposes what a supervising controller needs from the child:
  * `stdout`: an output channel that can be set to a text encoding and tapped
  * `on_close`: a one-shot notification fired after the child exited

A single reader task feeds both, so data listeners and close listeners never
run concurrently with each other.
"""

from __future__ import annotations

import asyncio
import codecs
import inspect
import logging
import signal
from typing import Any, Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)

DataListener = Callable[[Any], Any]
CloseListener = Callable[[], Any]

_READ_CHUNK_BYTES = 4096


class ProcessInterruptError(RuntimeError):
    """Raised when an instrumentation process cannot be stopped."""


class OutputChannel:
    """Readable side of the child's stdout.

    Until `set_encoding()` is called listeners receive raw `bytes`; afterwards
    they receive decoded `str` chunks. Decoding is incremental, so a multi-byte
    character split across two reads is delivered intact.
    """

    def __init__(self) -> None:
        self._encoding: Optional[str] = None
        self._decoder: Optional[codecs.IncrementalDecoder] = None
        self._listeners: List[DataListener] = []

    @property
    def encoding(self) -> Optional[str]:
        return self._encoding

    def set_encoding(self, encoding: str) -> None:
        codecs.lookup(encoding)
        self._encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def on_data(self, listener: DataListener) -> None:
        self._listeners.append(listener)

    async def feed(self, data: bytes, *, final: bool = False) -> None:
        if self._decoder is not None:
            payload: Any = self._decoder.decode(data, final=final)
        else:
            payload = data
        if not payload:
            return
        for listener in list(self._listeners):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # A broken tap must not stop the reader (and with it the close notification).
                logger.exception("instrumentation output listener failed")


class InstrumentationProcess:
    """Started `am instrument` child, as returned by `AdbClient.spawn_instrumentation`."""

    def __init__(self, proc: asyncio.subprocess.Process, *, args: Sequence[str]) -> None:
        self.proc = proc
        self.args = list(args)
        self.stdout = OutputChannel()
        self._close_listeners: List[CloseListener] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        return self.proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.returncode

    def on_close(self, listener: CloseListener) -> None:
        self._close_listeners.append(listener)

    def start(self) -> "InstrumentationProcess":
        """Start the reader task. Must be called from a running event loop."""

        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._pump())
            self._task.add_done_callback(self._report_failure)
        return self

    async def wait_closed(self) -> None:
        """Wait until close listeners ran; re-raises whatever a close listener raised."""

        if self._task is None:
            raise RuntimeError("instrumentation process handle was never started")
        await self._task

    async def _pump(self) -> None:
        reader = self.proc.stdout
        if reader is not None:
            while True:
                chunk = await reader.read(_READ_CHUNK_BYTES)
                if not chunk:
                    break
                await self.stdout.feed(chunk)
            await self.stdout.feed(b"", final=True)

        returncode = await self.proc.wait()
        logger.debug("instrumentation process exited (pid=%s rc=%s)", self.pid, returncode)

        for listener in list(self._close_listeners):
            result = listener()
            if inspect.isawaitable(result):
                await result

    def _report_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("instrumentation close handling failed (pid=%s)", self.pid, exc_info=exc)


async def interrupt_process(handle: InstrumentationProcess, *, timeout_s: float = 5.0) -> None:
    """Send SIGINT to the instrumentation child, escalating to SIGKILL.

    An already-exited child is left alone. Raises `ProcessInterruptError` when
    the child survives SIGKILL for `timeout_s`.
    """

    proc = handle.proc
    if proc.returncode is not None:
        return

    logger.debug("interrupting instrumentation process (pid=%s)", proc.pid)
    try:
        proc.send_signal(signal.SIGINT)
        try:
            await asyncio.wait_for(proc.wait(), timeout=timeout_s)
            return
        except asyncio.TimeoutError:
            logger.debug("SIGINT timed out after %.1fs; killing pid=%s", timeout_s, proc.pid)
            proc.kill()

        try:
            await asyncio.wait_for(proc.wait(), timeout=timeout_s)
        except asyncio.TimeoutError as e:
            raise ProcessInterruptError(
                f"instrumentation process did not exit after SIGKILL (pid={proc.pid})"
            ) from e
    except ProcessLookupError:
        return
