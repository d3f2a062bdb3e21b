"""Instrumentation run controller.

Launches `am instrument` on a device through a launcher (normally
`AdbClient`), taps its output, and tears it down exactly once.

Termination can be requested by the caller (`terminate()`) or happen on its
own (the child closes). Both paths funnel through `_detach()`, which reads and
clears the running handle without suspending, so whichever path gets there
first owns the single interrupt call. The user termination callback only fires
for the unplanned (child-initiated) path.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Optional, Sequence

from inst_harness.runtime.android.instrumentation_args import (
    PreparedArgs,
    prepare_instrumentation_args,
)
from inst_harness.runtime.android.process import interrupt_process

TerminationFn = Callable[[], Any]
LogListenFn = Callable[[str], Any]
PrepareArgsFn = Callable[[Optional[Mapping[str, Any]]], Any]
InterruptFn = Callable[[Any], Awaitable[None]]

OUTPUT_ENCODING = "utf-8"


class InstrumentationError(RuntimeError):
    """Raised on invalid use of the instrumentation controller."""


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Instrumentation:
    """Supervises a single instrumentation process at a time.

    `launcher` must provide `spawn_instrumentation(device_id, args, runner)`
    and may provide `get_instrumentation_runner(device_id, bundle_id)`.
    `prepare_args` and `interrupt` default to the real argument preparer and
    process interrupter.
    """

    def __init__(
        self,
        launcher: Any,
        logger: Optional[logging.Logger] = None,
        user_termination_fn: Optional[TerminationFn] = None,
        user_log_listen_fn: Optional[LogListenFn] = None,
        *,
        prepare_args: PrepareArgsFn = prepare_instrumentation_args,
        interrupt: InterruptFn = interrupt_process,
    ) -> None:
        self._launcher = launcher
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._prepare_args = prepare_args
        self._interrupt = interrupt
        self.termination_fn: Optional[TerminationFn] = user_termination_fn
        self.log_listen_fn: Optional[LogListenFn] = user_log_listen_fn
        self._instrumentation_process: Any = None
        self._launching = False

    async def launch(
        self,
        device_id: str,
        bundle_id: str,
        user_launch_args: Optional[Mapping[str, Any]],
    ) -> None:
        if self._launching or self._instrumentation_process is not None:
            raise InstrumentationError(
                f"instrumentation already running (device={device_id}); terminate() it first"
            )

        # Claimed before the first await so an overlapping launch cannot spawn a second child.
        self._launching = True
        try:
            runner = await self._get_instrumentation_runner(device_id, bundle_id)
            spawn_args = await self._get_spawn_args(user_launch_args)

            process = await self._launcher.spawn_instrumentation(device_id, spawn_args, runner)
            self._instrumentation_process = process
        finally:
            self._launching = False

        process.stdout.set_encoding(OUTPUT_ENCODING)
        process.stdout.on_data(self._on_log_data)
        process.on_close(lambda: self._on_unplanned_termination(process))

    async def terminate(self) -> None:
        process = self._detach()
        if process is not None:
            await self._interrupt(process)

    def is_running(self) -> bool:
        return self._instrumentation_process is not None

    def set_termination_fn(self, fn: Optional[TerminationFn]) -> None:
        self.termination_fn = fn

    def set_log_listen_fn(self, fn: Optional[LogListenFn]) -> None:
        self.log_listen_fn = fn

    async def _get_instrumentation_runner(self, device_id: str, bundle_id: str) -> Optional[str]:
        lookup = getattr(self._launcher, "get_instrumentation_runner", None)
        if lookup is None:
            return None
        runner = await _resolve(lookup(device_id, bundle_id))
        return runner or None

    async def _get_spawn_args(self, user_launch_args: Optional[Mapping[str, Any]]) -> list[str]:
        user_args: PreparedArgs = await _resolve(self._prepare_args(user_launch_args))
        debug_args: PreparedArgs = await _resolve(self._prepare_args({"debug": False}))

        if user_args.used_reserved_args:
            self._warn_reserved_args(user_args.used_reserved_args)
        return [*user_args.args, *debug_args.args]

    def _warn_reserved_args(self, used_reserved_args: Sequence[str]) -> None:
        self._logger.warning(
            "Arguments [%s] were passed in as launch args but are reserved to Android's "
            "test-instrumentation and have no effect: the harness owns these (e.g. 'debug' "
            "is always forced to false). Ignore this message if this is what you meant to do.",
            ",".join(used_reserved_args),
        )

    def _detach(self, expected: Any = None) -> Any:
        # Read-and-clear must not suspend: it is the only guard against double termination.
        process = self._instrumentation_process
        if process is None or (expected is not None and process is not expected):
            return None
        self._instrumentation_process = None
        return process

    async def _on_unplanned_termination(self, process: Any) -> None:
        if self._detach(process) is None:
            return
        await self._interrupt(process)

        termination_fn = self.termination_fn
        if termination_fn is not None:
            await _resolve(termination_fn())

    def _on_log_data(self, data: str) -> Any:
        log_listen_fn = self.log_listen_fn
        if log_listen_fn is not None:
            return log_listen_fn(data)
        return None
