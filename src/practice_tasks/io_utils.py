"""File helpers for the YAML task state: a process lock and safe load/save."""

from __future__ import annotations

import os
from pathlib import Path
from typing import IO, Any, Optional

import yaml

try:
    from yaml import CSafeDumper as SafeDumper
    from yaml import CSafeLoader as SafeLoader
except ImportError:  # libyaml bindings are optional
    from yaml import SafeDumper, SafeLoader  # type: ignore[assignment]

# msvcrt locks a byte range rather than the whole file.
WINDOWS_LOCK_BYTES = 4096


def _acquire(handle: IO[str]) -> None:
    if os.name == "nt":
        import msvcrt

        handle.seek(0)
        handle.truncate(WINDOWS_LOCK_BYTES)
        handle.flush()
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, WINDOWS_LOCK_BYTES)
        return
    import fcntl

    fcntl.flock(handle, fcntl.LOCK_EX)


def _release(handle: IO[str]) -> None:
    if os.name == "nt":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, WINDOWS_LOCK_BYTES)
        return
    import fcntl

    fcntl.flock(handle, fcntl.LOCK_UN)


class FileLock:
    """Exclusive lock on *lock_path*, held for the duration of a ``with`` block.

    Not re-entrant: nesting two ``with`` blocks on the same lock in one
    process deadlocks on platforms where the lock is per open file.
    """

    def __init__(self, lock_path: Path):
        self.lock_path = lock_path
        self.handle: Optional[IO[str]] = None

    def __enter__(self) -> "FileLock":
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_path, "a+")
        try:
            _acquire(handle)
        except BaseException:
            handle.close()
            raise
        self.handle = handle
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.handle is None:
            return
        try:
            _release(self.handle)
        finally:
            self.handle.close()
            self.handle = None


def _load_data_with_error(
    path: Path,
    default: dict[str, Any],
) -> tuple[dict[str, Any], str | None]:
    """
    Load a YAML mapping and return (data, error_message).

    Parse/IO failures are reported rather than swallowed so callers can avoid
    overwriting a corrupted durable state file.
    """
    if not path.exists():
        return default, None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.load(handle, Loader=SafeLoader)
        if data is None:
            return default, None
        if not isinstance(data, dict):
            return default, f"{path.name}: expected object, got {type(data).__name__}"
        return data, None
    except OSError as exc:
        return default, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except yaml.YAMLError as exc:
        return default, f"{path.name}: YAMLError: {exc}"


def _atomic_write_yaml(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as handle:
            yaml.dump(
                data,
                handle,
                Dumper=SafeDumper,
                sort_keys=False,
                default_flow_style=False,
                allow_unicode=True,
            )
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
