"""Async adb transport for instrumentation runs.

This is a *minimal* wrapper around the adb binary. The goal is to standardize:
  * auditable adb commands (the `args` of every result are recorded)
  * test-runner lookup (`pm list instrumentation`)
  * spawning `am instrument` as a long-running, tappable child process

Notes
-----
* Device discovery and app installation are out of scope.
* All operations are intended for emulator/testbed use.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import shlex
from dataclasses import dataclass
from typing import Optional, Sequence

from inst_harness.runtime.android.process import InstrumentationProcess

logger = logging.getLogger(__name__)


class AdbError(RuntimeError):
    """Raised when an adb operation fails."""


@dataclass(frozen=True)
class AdbResult:
    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    def ok(self) -> bool:
        return self.returncode == 0


def _parse_instrumentation_runner(txt: str, bundle_id: str) -> Optional[str]:
    """Pick the runner component targeting `bundle_id` from `pm list instrumentation`.

    Lines look like:
        instrumentation:com.example.test/androidx.test.runner.AndroidJUnitRunner (target=com.example)
    """

    pattern = re.compile(rf"^instrumentation:(\S+)\s+\(target={re.escape(bundle_id)}\)\s*$")
    for raw_line in txt.splitlines():
        m = pattern.match(raw_line.strip())
        if m:
            return m.group(1)
    return None


class AdbClient:
    """Thin async wrapper around adb implementing the instrumentation launcher."""

    def __init__(self, *, adb_path: str = "adb", timeout_s: float = 30.0) -> None:
        self._adb_path = adb_path
        self._timeout_s = timeout_s

    def _base_cmd(self, device_id: Optional[str]) -> list[str]:
        cmd = [self._adb_path]
        if device_id:
            cmd += ["-s", device_id]
        return cmd

    async def adb(
        self,
        device_id: Optional[str],
        *args: str,
        timeout_s: float | None = None,
        check: bool = True,
    ) -> AdbResult:
        """Run an adb command to completion and return stdout/stderr/returncode."""

        cmd = self._base_cmd(device_id) + list(args)
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout_b, stderr_b = await asyncio.wait_for(
                proc.communicate(),
                timeout=self._timeout_s if timeout_s is None else float(timeout_s),
            )
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            raise
        result = AdbResult(
            args=cmd,
            stdout=stdout_b.decode("utf-8", errors="replace"),
            stderr=stderr_b.decode("utf-8", errors="replace"),
            returncode=proc.returncode,
        )
        if check and not result.ok():
            raise AdbError(
                f"adb command failed (rc={result.returncode}): {' '.join(cmd)}\n"
                f"stdout: {result.stdout}\n"
                f"stderr: {result.stderr}"
            )
        return result

    async def shell(
        self,
        device_id: Optional[str],
        command: str,
        *,
        timeout_s: float | None = None,
        check: bool = True,
    ) -> AdbResult:
        return await self.adb(device_id, "shell", command, timeout_s=timeout_s, check=check)

    async def get_instrumentation_runner(self, device_id: str, bundle_id: str) -> Optional[str]:
        res = await self.shell(device_id, "pm list instrumentation")
        return _parse_instrumentation_runner(res.stdout, bundle_id)

    async def spawn_instrumentation(
        self,
        device_id: str,
        args: Sequence[str],
        runner: Optional[str] = None,
    ) -> InstrumentationProcess:
        """Spawn `am instrument -w -r <args> <runner>` and start tapping its output."""

        if not runner:
            raise AdbError(f"no instrumentation runner to spawn on device {device_id}")

        remote = ["am", "instrument", "-w", "-r", *[str(a) for a in args], runner]
        cmd = self._base_cmd(device_id) + ["shell", " ".join(shlex.quote(p) for p in remote)]
        logger.debug("spawning instrumentation: %s", " ".join(cmd))
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        return InstrumentationProcess(proc, args=cmd).start()
