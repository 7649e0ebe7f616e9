"""Key/value stores backing the session cache and the local database."""

import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import structlog

logger = structlog.get_logger()

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(ABC):
    """Synchronous JSON document storage keyed by name.

    Learn: Synchronous on purpose: the session predicates
    (is_authenticated / is_admin) run on every navigation and must not
    suspend. Writes replace the whole value atomically.
    """

    @abstractmethod
    def read_raw(self, key: str) -> Optional[str]:
        """Return the stored text for key, or None."""

    @abstractmethod
    def write_raw(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete key. Missing keys are ignored."""

    def read_json(self, key: str) -> Optional[Any]:
        """Parse the stored JSON value. Corrupt or missing -> None."""
        raw = self.read_raw(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (ValueError, TypeError):
            logger.warning("storage.corrupt_value", key=key)
            return None

    def write_json(self, key: str, value: Any) -> None:
        self.write_raw(key, json.dumps(value, default=str))


class MemoryKeyValueStore(KeyValueStore):
    """In-process store. Used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def read_raw(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def write_raw(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class FileKeyValueStore(KeyValueStore):
    """One file per key under a directory; survives process restarts.

    Writes go to a temp file in the same directory and are moved into
    place with os.replace, so a reader sees either the old or the new
    value, never a partial one.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def read_raw(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("storage.read_failed", key=key, error=str(e))
            return None

    def write_raw(self, key: str, value: str) -> None:
        path = self._path(key)
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
