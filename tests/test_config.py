"""Tests for engine configuration loading (config.py)."""

from __future__ import annotations

from pathlib import Path

from practice_tasks.config import (
    DEFAULT_MAX_MANUAL_MINUTES,
    DEFAULT_MAX_RETRIES,
    TaskEngineSettings,
    load_task_config,
)


def test_missing_config_uses_defaults(state_dir: Path) -> None:
    config, err = load_task_config(state_dir)
    assert config == {}
    assert err is None

    settings = TaskEngineSettings.load(state_dir)
    assert settings.max_manual_minutes == DEFAULT_MAX_MANUAL_MINUTES
    assert settings.max_retries == DEFAULT_MAX_RETRIES


def test_sections_are_read(state_dir: Path) -> None:
    (state_dir / "config.yaml").write_text(
        "time_tracking:\n"
        "  max_manual_minutes: 480\n"
        "concurrency:\n"
        "  max_retries: 5\n"
        "defaults:\n"
        "  priority: urgent\n",
        encoding="utf-8",
    )
    settings = TaskEngineSettings.load(state_dir)
    assert settings.max_manual_minutes == 480
    assert settings.max_retries == 5
    assert settings.default_priority == "urgent"
    assert settings.default_status == "todo"


def test_invalid_values_fall_back(state_dir: Path) -> None:
    (state_dir / "config.yaml").write_text(
        "time_tracking:\n  max_manual_minutes: -3\nconcurrency:\n  max_retries: true\n",
        encoding="utf-8",
    )
    settings = TaskEngineSettings.load(state_dir)
    assert settings.max_manual_minutes == DEFAULT_MAX_MANUAL_MINUTES
    assert settings.max_retries == DEFAULT_MAX_RETRIES


def test_unreadable_config_is_reported(state_dir: Path) -> None:
    (state_dir / "config.yaml").write_text("- just\n- a list\n", encoding="utf-8")
    config, err = load_task_config(state_dir)
    assert config == {}
    assert err is not None and "expected object" in err
    assert TaskEngineSettings.load(state_dir) == TaskEngineSettings()
