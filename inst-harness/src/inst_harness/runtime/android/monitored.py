"""Instrumentation controller with crash monitoring.

Wraps `Instrumentation`, feeding every output chunk through an
`InstrumentationLogsParser` so that an unplanned termination can be reported
to whoever is waiting on `wait_for_crash()`, together with the native stack
trace the runner printed (if any).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Optional

from inst_harness.runtime.android.instrumentation import (
    Instrumentation,
    LogListenFn,
    TerminationFn,
)
from inst_harness.runtime.android.instrumentation_args import prepare_instrumentation_args
from inst_harness.runtime.android.logs_parser import InstrumentationLogsParser
from inst_harness.runtime.android.process import interrupt_process


class InstrumentationCrashError(RuntimeError):
    """Raised (through `wait_for_crash`) when instrumentation dies on its own."""

    def __init__(self, message: str, *, stack_trace: str = "") -> None:
        if stack_trace:
            message = f"{message}\nNative stacktrace dump:\n{stack_trace}"
        super().__init__(message)
        self.stack_trace = stack_trace


class MonitoredInstrumentation:
    def __init__(
        self,
        launcher: Any,
        logger: Optional[logging.Logger] = None,
        *,
        prepare_args: Any = prepare_instrumentation_args,
        interrupt: Any = interrupt_process,
    ) -> None:
        self._user_termination_fn: Optional[TerminationFn] = None
        self._user_log_listen_fn: Optional[LogListenFn] = None
        self._logs_parser = InstrumentationLogsParser()
        self._pending_crash: Optional[asyncio.Future] = None
        self._interrupt = interrupt
        self._terminating = False
        self.instrumentation = Instrumentation(
            launcher,
            logger,
            self._on_instrumentation_terminated,
            self._on_instrumentation_log_data,
            prepare_args=prepare_args,
            interrupt=self._interrupt_instrumentation,
        )

    @property
    def result_code(self) -> Optional[int]:
        return self._logs_parser.result_code

    @property
    def stack_trace(self) -> str:
        return self._logs_parser.get_stack_trace()

    async def launch(
        self,
        device_id: str,
        bundle_id: str,
        user_launch_args: Optional[Mapping[str, Any]],
    ) -> None:
        self._logs_parser = InstrumentationLogsParser()
        await self.instrumentation.launch(device_id, bundle_id, user_launch_args)

    async def terminate(self) -> None:
        self._terminating = True
        try:
            await self.instrumentation.terminate()
        finally:
            self._terminating = False

    def is_running(self) -> bool:
        return self.instrumentation.is_running()

    def set_termination_fn(self, fn: Optional[TerminationFn]) -> None:
        self._user_termination_fn = fn

    def set_log_listen_fn(self, fn: Optional[LogListenFn]) -> None:
        self._user_log_listen_fn = fn

    def wait_for_crash(self) -> asyncio.Future:
        """Future that fails with `InstrumentationCrashError` on unplanned termination.

        `abort_wait_for_crash()` resolves it with `None` instead. Raises
        `InstrumentationCrashError` right away when nothing is running.
        """

        if not self.instrumentation.is_running():
            raise self._crash_error()
        if self._pending_crash is None or self._pending_crash.done():
            self._pending_crash = asyncio.get_running_loop().create_future()
        return self._pending_crash

    def abort_wait_for_crash(self) -> None:
        pending = self._pending_crash
        if pending is not None and not pending.done():
            pending.set_result(None)

    async def _interrupt_instrumentation(self, process: Any) -> None:
        try:
            await self._interrupt(process)
        except Exception:
            # The termination callback is skipped when interruption fails; settle waiters anyway.
            if not self._terminating:
                self._logs_parser.flush()
                self._reject_pending_crash()
            raise

    def _on_instrumentation_terminated(self) -> Any:
        self._logs_parser.flush()
        self._reject_pending_crash()

        termination_fn = self._user_termination_fn
        if termination_fn is not None:
            return termination_fn()
        return None

    def _on_instrumentation_log_data(self, data: str) -> Any:
        self._logs_parser.parse(data)

        log_listen_fn = self._user_log_listen_fn
        if log_listen_fn is not None:
            return log_listen_fn(data)
        return None

    def _reject_pending_crash(self) -> None:
        pending = self._pending_crash
        if pending is None or pending.done():
            return
        pending.set_exception(self._crash_error())

    def _crash_error(self) -> InstrumentationCrashError:
        return InstrumentationCrashError(
            "Failed to run application on the device",
            stack_trace=self._logs_parser.get_stack_trace(),
        )
