"""Configuration utilities for file-backed stores."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os


@dataclass(frozen=True)
class StoreSettings:
    """Environment-derived runtime configuration for stores opened by name."""

    state_dir: Path
    autosave_interval: float
    watch: bool
    watch_interval: float
    json_indent: int | None


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number of seconds, got {value!r}") from exc


def _indent_env(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    if value is None:
        return default
    if not value.strip():
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer or empty, got {value!r}") from exc


def load_settings() -> StoreSettings:
    state_dir = Path(os.getenv("FILESTATE_DIR", ".")).expanduser().resolve()
    state_dir.mkdir(parents=True, exist_ok=True)

    return StoreSettings(
        state_dir=state_dir,
        autosave_interval=_float_env("FILESTATE_AUTOSAVE_INTERVAL", 5.0),
        watch=_bool_env("FILESTATE_WATCH", False),
        watch_interval=_float_env("FILESTATE_WATCH_INTERVAL", 0.5),
        json_indent=_indent_env("FILESTATE_JSON_INDENT", 2),
    )


def state_path(name: str, settings: StoreSettings) -> Path:
    """Resolve a store name to a file under the state directory."""
    candidate = Path(name)
    if candidate.is_absolute():
        return candidate
    if not candidate.suffix:
        candidate = candidate.with_suffix(".json")
    return settings.state_dir / candidate
