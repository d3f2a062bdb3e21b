from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

# Options consumed by `am instrument` / AndroidJUnitRunner itself; values passed
# under these names never reach the app under test.
RESERVED_INSTRUMENTATION_ARGS = (
    "class",
    "package",
    "func",
    "unit",
    "size",
    "perf",
    "debug",
    "log",
    "emma",
    "coverageFile",
)


@dataclass(frozen=True)
class PreparedArgs:
    args: list[str] = field(default_factory=list)
    used_reserved_args: list[str] = field(default_factory=list)


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
    return str(value)


def prepare_instrumentation_args(config: Optional[Mapping[str, Any]]) -> PreparedArgs:
    """Turn a launch-args mapping into `-e <key> <value>` instrumentation extras.

    Keys with a `None` value are skipped. Every reserved key present in the
    mapping is reported in `used_reserved_args`, in mapping order.
    """

    if config is None:
        return PreparedArgs()
    if not isinstance(config, Mapping):
        raise ValueError(f"launch args must be a mapping, got {type(config).__name__}")

    args: list[str] = []
    used_reserved: list[str] = []
    for key, value in config.items():
        if not isinstance(key, str) or not key.strip():
            raise ValueError(f"invalid launch arg name: {key!r}")
        if key in RESERVED_INSTRUMENTATION_ARGS:
            used_reserved.append(key)
        if value is None:
            continue
        args += ["-e", key, _encode_value(value)]
    return PreparedArgs(args=args, used_reserved_args=used_reserved)
