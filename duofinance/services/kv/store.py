"""
Local Key-Value Store

Device-local state (notification preferences, ids of reminders already
shown, dismissed admin notifications) goes through this small interface
and is injected into the notification services, instead of living in
ambient global state.

Values are strings, exactly like browser localStorage; callers
JSON-encode structured values themselves.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union


class KeyValueStoreInterface(ABC):
    """get/set/delete over string keys and string values."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class InMemoryKeyValueStore(KeyValueStoreInterface):

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyValueStore(KeyValueStoreInterface):
    """
    Key-value store persisted as one JSON object on disk.

    The file is rewritten on every ``set``/``delete``; this is meant for a
    handful of preference keys, not for bulk data.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)
