"""Android runtime helpers for Inst-Harness.

This package intentionally keeps the adb transport *thin*:
  * `adb` spawns `am instrument` and resolves test runners
  * `process` wraps the spawned child (output stream, close notification,
    interruption)
  * `instrumentation` owns the launch/terminate state machine and only talks
    to the transport through narrow interfaces, so it can be driven by fakes.
"""

from __future__ import annotations

from inst_harness.runtime.android.adb import AdbClient, AdbError, AdbResult
from inst_harness.runtime.android.instrumentation import Instrumentation, InstrumentationError
from inst_harness.runtime.android.instrumentation_args import (
    RESERVED_INSTRUMENTATION_ARGS,
    PreparedArgs,
    prepare_instrumentation_args,
)
from inst_harness.runtime.android.logs_parser import InstrumentationLogsParser
from inst_harness.runtime.android.monitored import (
    InstrumentationCrashError,
    MonitoredInstrumentation,
)
from inst_harness.runtime.android.process import (
    InstrumentationProcess,
    ProcessInterruptError,
    interrupt_process,
)

__all__ = [
    "RESERVED_INSTRUMENTATION_ARGS",
    "AdbClient",
    "AdbError",
    "AdbResult",
    "Instrumentation",
    "InstrumentationCrashError",
    "InstrumentationError",
    "InstrumentationLogsParser",
    "InstrumentationProcess",
    "MonitoredInstrumentation",
    "PreparedArgs",
    "ProcessInterruptError",
    "interrupt_process",
    "prepare_instrumentation_args",
]
