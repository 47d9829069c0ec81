from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional


# Central defaults (used as fallbacks when env vars and/or transport_tuning.json are absent).
DEFAULT_STEP_SECONDS = 5.0
DEFAULT_LOCK_TIMEOUT_S = 5.0
DEFAULT_POSITION_PUSH_INTERVAL_MS = 250
DEFAULT_BLOCK_FRAMES = 2048
DEFAULT_MAX_CONSECUTIVE_UNDERRUNS = 32
DEFAULT_STOP_TIMEOUT_S = 5.0
DEFAULT_LOADER_RETRIES = 2
DEFAULT_LOADER_RETRY_DELAY_MS = 50


@dataclass(frozen=True, slots=True)
class TransportTuning:
    """Resolved transport settings.

    Precedence: defaults < transport_tuning.json < TRANSPORT_* env vars.
    """

    # Transport
    step_seconds: float = DEFAULT_STEP_SECONDS
    lock_timeout_s: float = DEFAULT_LOCK_TIMEOUT_S

    # Position reporter
    position_push_interval_ms: int = DEFAULT_POSITION_PUSH_INTERVAL_MS

    # Output
    block_frames: int = DEFAULT_BLOCK_FRAMES
    output_device: Optional[str] = None
    max_consecutive_underruns: int = DEFAULT_MAX_CONSECUTIVE_UNDERRUNS

    # Engine
    stop_timeout_s: float = DEFAULT_STOP_TIMEOUT_S

    # Loader
    loader_retries: int = DEFAULT_LOADER_RETRIES
    loader_retry_delay_ms: int = DEFAULT_LOADER_RETRY_DELAY_MS


def _repo_root() -> Path:
    # engine/ is a direct child of repo root.
    return Path(__file__).resolve().parents[1]


def _is_frozen() -> bool:
    # PyInstaller sets sys.frozen.
    return bool(getattr(sys, "frozen", False))


def _exe_dir() -> Path | None:
    if not _is_frozen():
        return None
    try:
        return Path(sys.executable).resolve().parent
    except OSError:
        return None


def _base_dir_for_relative_paths() -> Path:
    # For a frozen app, relative paths resolve next to the executable.
    return _exe_dir() or _repo_root()


def _tuning_path() -> Path:
    env = (os.environ.get("TRANSPORT_TUNING_PATH") or "").strip()
    if env:
        p = Path(env)
        if not p.is_absolute():
            p = _base_dir_for_relative_paths() / p
        return p
    return _base_dir_for_relative_paths() / "transport_tuning.json"


def resolve_tuning_path() -> Path:
    """Return the resolved path to the active tuning file (for diagnostics)."""

    return _tuning_path()


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return data


def _get(obj: dict[str, Any], *keys: str) -> Any:
    cur: Any = obj
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return None
        cur = cur[k]
    return cur


def _as_int(value: Any, *, default: int, min_value: int, max_value: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(min_value, min(max_value, parsed))


def _as_float(value: Any, *, default: float, min_value: float, max_value: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError):
        return default
    if parsed != parsed:  # NaN
        return default
    return max(min_value, min(max_value, parsed))


def _as_device(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _merge(tuning: TransportTuning, source: dict[str, Any]) -> TransportTuning:
    """Overlay values from ``source`` (already flattened to field names)."""

    return TransportTuning(
        step_seconds=_as_float(source.get("step_seconds"), default=tuning.step_seconds, min_value=0.1, max_value=600.0),
        lock_timeout_s=_as_float(source.get("lock_timeout_s"), default=tuning.lock_timeout_s, min_value=0.1, max_value=120.0),
        position_push_interval_ms=_as_int(
            source.get("position_push_interval_ms"),
            default=tuning.position_push_interval_ms,
            min_value=10,
            max_value=10_000,
        ),
        block_frames=_as_int(source.get("block_frames"), default=tuning.block_frames, min_value=64, max_value=65_536),
        output_device=_as_device(source["output_device"]) if "output_device" in source else tuning.output_device,
        max_consecutive_underruns=_as_int(
            source.get("max_consecutive_underruns"),
            default=tuning.max_consecutive_underruns,
            min_value=1,
            max_value=100_000,
        ),
        stop_timeout_s=_as_float(source.get("stop_timeout_s"), default=tuning.stop_timeout_s, min_value=0.1, max_value=120.0),
        loader_retries=_as_int(source.get("loader_retries"), default=tuning.loader_retries, min_value=0, max_value=10),
        loader_retry_delay_ms=_as_int(
            source.get("loader_retry_delay_ms"),
            default=tuning.loader_retry_delay_ms,
            min_value=0,
            max_value=5_000,
        ),
    )


_JSON_KEYS = {
    "step_seconds": ("transport", "step_seconds"),
    "lock_timeout_s": ("transport", "lock_timeout_s"),
    "position_push_interval_ms": ("position", "push_interval_ms"),
    "block_frames": ("output", "block_frames"),
    "output_device": ("output", "device"),
    "max_consecutive_underruns": ("output", "max_consecutive_underruns"),
    "stop_timeout_s": ("engine", "stop_timeout_s"),
    "loader_retries": ("loader", "retries"),
    "loader_retry_delay_ms": ("loader", "retry_delay_ms"),
}

_ENV_KEYS = {
    "step_seconds": "TRANSPORT_STEP_SECONDS",
    "lock_timeout_s": "TRANSPORT_LOCK_TIMEOUT_S",
    "position_push_interval_ms": "TRANSPORT_POSITION_PUSH_MS",
    "block_frames": "TRANSPORT_BLOCK_FRAMES",
    "output_device": "TRANSPORT_OUTPUT_DEVICE",
    "max_consecutive_underruns": "TRANSPORT_MAX_UNDERRUNS",
    "stop_timeout_s": "TRANSPORT_STOP_TIMEOUT_S",
    "loader_retries": "TRANSPORT_LOADER_RETRIES",
    "loader_retry_delay_ms": "TRANSPORT_LOADER_RETRY_DELAY_MS",
}


def load_transport_tuning(path: str | Path | None = None) -> TransportTuning:
    tuning = TransportTuning()

    data = _read_json(Path(path) if path else _tuning_path())
    if data:
        from_json: dict[str, Any] = {}
        for name, keys in _JSON_KEYS.items():
            # output.device may legitimately be null; only overlay present keys
            parent = _get(data, *keys[:-1])
            if isinstance(parent, dict) and keys[-1] in parent:
                from_json[name] = parent[keys[-1]]
        tuning = _merge(tuning, from_json)

    from_env: dict[str, Any] = {}
    for name, env_key in _ENV_KEYS.items():
        raw = os.environ.get(env_key)
        if raw is not None and raw.strip() != "":
            from_env[name] = raw
    if from_env:
        tuning = _merge(tuning, from_env)

    return tuning


def with_overrides(tuning: TransportTuning, **overrides: Any) -> TransportTuning:
    """Return a copy of ``tuning`` with the given fields replaced (tests, embedding)."""

    unknown = set(overrides) - set(_JSON_KEYS)
    if unknown:
        raise TypeError(f"Unknown tuning fields: {sorted(unknown)}")
    return replace(tuning, **overrides)
