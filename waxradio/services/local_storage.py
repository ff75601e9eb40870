"""
Local key-value storage.
"""
import json
import os
from pathlib import Path
from typing import Dict, Optional

from waxradio.logger import get_logger
from waxradio.ports import KeyValueStore

logger = get_logger("local_storage")


class JsonFileKeyValueStore(KeyValueStore):
    """String values kept in one JSON object on disk."""

    def __init__(self, path: str):
        self._path = Path(path)

    def _read(self) -> Dict[str, str]:
        try:
            with self._path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring corrupt local storage file {self._path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self._path)

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


class InMemoryKeyValueStore(KeyValueStore):
    """Non-persistent storage, for embedding without a writable disk."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)
