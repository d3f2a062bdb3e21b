from __future__ import annotations

import argparse
import asyncio
import functools
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Sequence, TextIO, Tuple

from inst_harness.config import InstrumentationSettings, SettingsError, load_settings
from inst_harness.runtime.android.adb import AdbClient
from inst_harness.runtime.android.monitored import (
    InstrumentationCrashError,
    MonitoredInstrumentation,
)
from inst_harness.runtime.android.process import interrupt_process

logger = logging.getLogger(__name__)

# android.app.Activity.RESULT_OK, reported by `am instrument` on success.
RESULT_OK = -1


def _parse_launch_arg(raw: str) -> Tuple[str, str]:
    key, sep, value = raw.partition("=")
    key = key.strip()
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {raw!r}")
    return key, value


async def run_instrumentation(
    settings: InstrumentationSettings,
    *,
    out: TextIO,
    launcher: Any = None,
) -> int:
    adb = launcher or AdbClient(adb_path=settings.adb_path, timeout_s=settings.adb_timeout_s)
    monitored = MonitoredInstrumentation(
        adb,
        logger,
        interrupt=functools.partial(interrupt_process, timeout_s=settings.interrupt_timeout_s),
    )

    def _echo(data: str) -> None:
        out.write(data)
        out.flush()

    monitored.set_log_listen_fn(_echo)
    await monitored.launch(
        str(settings.android_serial), str(settings.bundle_id), settings.launch_args
    )
    try:
        await monitored.wait_for_crash()
    except InstrumentationCrashError:
        # Any child-initiated exit lands here, including a normal end of the test run.
        pass
    finally:
        await monitored.terminate()

    if monitored.stack_trace:
        logger.error("instrumentation crashed:\n%s", monitored.stack_trace)
        return 1
    if monitored.result_code != RESULT_OK:
        logger.error("instrumentation finished with result code %s", monitored.result_code)
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run Android test instrumentation and stream its output."
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional YAML/JSON settings file (see InstrumentationSettings).",
    )
    parser.add_argument(
        "--serial", type=str, default=None, help="Device serial (default: $ANDROID_SERIAL)."
    )
    parser.add_argument("--bundle_id", type=str, default=None, help="Package under test.")
    parser.add_argument(
        "--adb_path", type=str, default=None, help="adb binary (default: $ADB_PATH or adb)."
    )
    parser.add_argument(
        "--arg",
        dest="launch_args",
        type=_parse_launch_arg,
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Launch argument passed to the app as an instrumentation extra (repeatable).",
    )
    parser.add_argument("--log_level", type=str, default=None)

    args = parser.parse_args(argv)

    try:
        settings = load_settings(
            args.config,
            android_serial=args.serial,
            bundle_id=args.bundle_id,
            adb_path=args.adb_path,
            log_level=args.log_level,
        )
    except (SettingsError, FileNotFoundError, ValueError) as e:
        raise SystemExit(f"failed to load settings: {e}")

    if args.launch_args:
        settings = settings.model_copy(
            update={"launch_args": {**settings.launch_args, **dict(args.launch_args)}}
        )
    if not settings.android_serial:
        parser.error("a device serial is required (--serial or $ANDROID_SERIAL)")
    if not settings.bundle_id:
        parser.error("--bundle_id is required")

    logging.basicConfig(
        level=settings.log_level.upper(), format="[%(levelname)s] %(name)s: %(message)s"
    )

    try:
        return asyncio.run(run_instrumentation(settings, out=sys.stdout))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
