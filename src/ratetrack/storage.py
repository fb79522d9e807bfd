from __future__ import annotations

import contextlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Iterator, Protocol

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 5.0
STALE_LOCK_AGE = 30.0


class LockTimeout(RuntimeError):
    """Raised when another process holds the data-file lock for too long."""


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def load_json(path: Path) -> dict[str, Any]:
    """
    Safe load:
    - creates parent dirs
    - if missing/empty -> writes {}
    - if corrupt -> backs up raw text then resets to {}
    - if valid JSON but not an object -> {}
    Always returns a dict.
    """
    path = Path(path)
    _ensure_parent(path)

    if not path.exists():
        save_json(path, {})
        return {}

    txt = path.read_text(encoding="utf-8").strip()
    if not txt:
        save_json(path, {})
        return {}

    try:
        data = json.loads(txt)
    except json.JSONDecodeError:
        backup = path.with_suffix(f".corrupt-{int(time.time())}.json")
        backup.write_text(txt, encoding="utf-8")
        save_json(path, {})
        logger.warning("corrupt JSON in %s, backed up to %s and reset", path, backup)
        return {}

    if not isinstance(data, dict):
        logger.warning("ignoring %s: top-level JSON is %s, not an object", path, type(data).__name__)
        return {}
    return data


def read_json(path: Path) -> dict[str, Any]:
    """
    Read-only load: never creates, repairs or resets the file.
    Missing, empty, corrupt or non-object -> {}.
    Repairs happen in load_json, which writers call under the file lock.
    """
    path = Path(path)
    try:
        txt = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return {}
    if not txt:
        return {}

    try:
        data = json.loads(txt)
    except json.JSONDecodeError:
        logger.warning("corrupt JSON in %s, reading as empty", path)
        return {}
    return data if isinstance(data, dict) else {}


def save_json(path: Path, data: Any) -> None:
    """
    Atomic-ish save:
    - write to temp file in same directory
    - flush + fsync
    - os.replace to target
    - chmod 0600 best-effort
    """
    path = Path(path)
    _ensure_parent(path)

    tmp = path.with_name(path.name + ".tmp")

    payload = json.dumps(
        data,
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
    ) + "\n"

    with open(tmp, "w", encoding="utf-8") as f:
        f.write(payload)
        f.flush()
        os.fsync(f.fileno())

    os.replace(tmp, path)

    try:
        os.chmod(path, 0o600)
    except OSError:
        pass


@contextlib.contextmanager
def file_lock(path: Path, timeout: float = LOCK_TIMEOUT, stale_after: float = STALE_LOCK_AGE) -> Iterator[None]:
    """
    Exclusive lock on `path` via a sidecar `<name>.lock` file created with O_EXCL.
    A lock file older than `stale_after` seconds is assumed abandoned and removed.
    """
    path = Path(path)
    _ensure_parent(path)
    lock = path.with_name(path.name + ".lock")
    deadline = time.monotonic() + timeout

    while True:
        try:
            fd = os.open(lock, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            break
        except FileExistsError:
            try:
                age = time.time() - lock.stat().st_mtime
            except FileNotFoundError:
                continue
            if age > stale_after:
                logger.warning("breaking stale lock %s (%.0fs old)", lock, age)
                with contextlib.suppress(FileNotFoundError):
                    lock.unlink()
                continue
            if time.monotonic() >= deadline:
                raise LockTimeout(f"could not lock {path} within {timeout:.1f}s")
            time.sleep(0.05)

    try:
        os.write(fd, str(os.getpid()).encode("ascii"))
        os.close(fd)
        yield
    finally:
        with contextlib.suppress(FileNotFoundError):
            lock.unlink()


# -------------------------
# Key-value stores
# -------------------------

class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def entries(self) -> dict[str, Any]: ...

    def update(self, key: str, fn: Callable[[Any], Any]) -> Any: ...


class MemoryStore:
    """In-memory store. Used for snapshots and tests."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = json.loads(json.dumps(data)) if data else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def entries(self) -> dict[str, Any]:
        return dict(self._data)

    def update(self, key: str, fn: Callable[[Any], Any]) -> Any:
        value = fn(self._data.get(key))
        self._data[key] = value
        return value


class JsonFileStore:
    """
    A JSON object on disk, addressed by its top-level keys.

    Reads always go to disk and never write. `set` and `update` hold the file
    lock across reload + change + save, so concurrent writers never lose each
    other's keys, and only they repair a corrupt file.
    """

    def __init__(self, path: Path, lock_timeout: float = LOCK_TIMEOUT) -> None:
        self.path = Path(path)
        self.lock_timeout = lock_timeout

    def __repr__(self) -> str:
        return f"JsonFileStore({str(self.path)!r})"

    def get(self, key: str, default: Any = None) -> Any:
        return read_json(self.path).get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.update(key, lambda _old: value)

    def entries(self) -> dict[str, Any]:
        return read_json(self.path)

    def update(self, key: str, fn: Callable[[Any], Any]) -> Any:
        with file_lock(self.path, timeout=self.lock_timeout):
            data = load_json(self.path)
            value = fn(data.get(key))
            data[key] = value
            save_json(self.path, data)
            return value

    def ensure(self) -> None:
        """Create the file if missing and reset it if corrupt (backup kept)."""
        with file_lock(self.path, timeout=self.lock_timeout):
            load_json(self.path)
