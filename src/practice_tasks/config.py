"""Load optional task engine configuration from ``<state_dir>/config.yaml``."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from .io_utils import _load_data_with_error

CONFIG_FILE = "config.yaml"

DEFAULT_MAX_MANUAL_MINUTES = 24 * 60
DEFAULT_MAX_RETRIES = 3


def load_task_config(state_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional engine config file.

    Args:
        state_dir: Directory holding the task store and its config.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = state_dir / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_time_tracking_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the `time_tracking` block, or an empty dict if not present."""
    raw = _get_nested(config, "time_tracking")
    return raw if isinstance(raw, dict) else {}


def get_concurrency_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the `concurrency` block, or an empty dict if not present."""
    raw = _get_nested(config, "concurrency")
    return raw if isinstance(raw, dict) else {}


def get_defaults_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the `defaults` block used when a draft omits priority or status."""
    raw = _get_nested(config, "defaults")
    return raw if isinstance(raw, dict) else {}


def _positive_int(value: Any, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    if isinstance(value, int) and value > 0:
        return value
    return fallback


@dataclass(frozen=True)
class TaskEngineSettings:
    """Typed view over the engine config consumed by :class:`TaskEngine`."""

    max_manual_minutes: int = DEFAULT_MAX_MANUAL_MINUTES
    max_retries: int = DEFAULT_MAX_RETRIES
    default_priority: str = "medium"
    default_status: str = "todo"

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "TaskEngineSettings":
        time_cfg = get_time_tracking_config(config)
        conc_cfg = get_concurrency_config(config)
        defaults = get_defaults_config(config)
        return cls(
            max_manual_minutes=_positive_int(time_cfg.get("max_manual_minutes"), DEFAULT_MAX_MANUAL_MINUTES),
            max_retries=_positive_int(conc_cfg.get("max_retries"), DEFAULT_MAX_RETRIES),
            default_priority=str(defaults.get("priority") or "medium"),
            default_status=str(defaults.get("status") or "todo"),
        )

    @classmethod
    def load(cls, state_dir: Path) -> "TaskEngineSettings":
        config, err = load_task_config(state_dir)
        if err:
            logger.warning("Ignoring unreadable task config: {}", err)
        return cls.from_config(config)
