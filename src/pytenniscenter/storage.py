"""Key/value storage used for the session token and the slot cache."""

from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from .exceptions import ValidationError


class KeyValueStore(ABC):
    """Storage backend; multi-key writes and removals apply as one unit."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the stored value or None."""

    @abstractmethod
    def update(self, values: Mapping[str, Any]) -> None:
        """Write all values at once."""

    @abstractmethod
    def remove(self, keys: Iterable[str]) -> None:
        """Remove all keys at once; missing keys are ignored."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Return the stored keys."""


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def update(self, values: Mapping[str, Any]) -> None:
        self._data.update(values)

    def remove(self, keys: Iterable[str]) -> None:
        for key in list(keys):
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore(KeyValueStore):
    """Durable store backed by a single JSON document replaced on every write."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        if not path:
            raise ValidationError("Storage path is required.")
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Any | None:
        return self._read().get(key)

    def update(self, values: Mapping[str, Any]) -> None:
        data = self._read()
        data.update(values)
        self._write(data)

    def remove(self, keys: Iterable[str]) -> None:
        data = self._read()
        removed = False
        for key in list(keys):
            if key in data:
                del data[key]
                removed = True
        if removed:
            self._write(data)

    def keys(self) -> list[str]:
        return list(self._read())

    def _read(self) -> dict[str, Any]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        if not isinstance(data, dict):
            return {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, ensure_ascii=False)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
