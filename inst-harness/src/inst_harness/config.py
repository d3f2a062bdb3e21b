from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError


class SettingsError(RuntimeError):
    pass


class InstrumentationSettings(BaseModel):
    """Settings for one instrumentation run (file + CLI + environment)."""

    model_config = ConfigDict(extra="forbid")

    adb_path: str = "adb"
    android_serial: Optional[str] = None
    bundle_id: Optional[str] = None
    adb_timeout_s: float = Field(default=30, gt=0)
    interrupt_timeout_s: float = Field(default=5, gt=0)
    launch_args: Dict[str, Any] = Field(default_factory=dict)
    log_level: str = "INFO"


def load_yaml_or_json(path: Path) -> Dict[str, Any]:
    """Load a YAML/JSON file into a dict.

    This is intentionally strict: the top-level must be an object.
    """
    if not path.exists():
        raise FileNotFoundError(path)

    if path.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    elif path.suffix.lower() == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
    else:
        raise ValueError(f"Unsupported settings file extension: {path}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError(f"Top-level settings must be an object: {path}")
    return data


def _env_defaults() -> Dict[str, Any]:
    defaults: Dict[str, Any] = {}
    serial = (os.getenv("ANDROID_SERIAL") or "").strip()
    if serial:
        defaults["android_serial"] = serial
    adb_path = (os.getenv("ADB_PATH") or "").strip()
    if adb_path:
        defaults["adb_path"] = adb_path
    return defaults


def load_settings(path: Optional[Path] = None, **overrides: Any) -> InstrumentationSettings:
    """Resolve settings: environment < settings file < explicit (non-None) overrides."""

    raw: Dict[str, Any] = _env_defaults()
    if path is not None:
        raw.update(load_yaml_or_json(Path(path)))
    raw.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return InstrumentationSettings.model_validate(raw)
    except ValidationError as e:
        where = str(path) if path is not None else "<settings>"
        raise SettingsError(f"invalid settings ({where}):\n{e}") from e
