from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Named run state (processed ids, stats) read at start, written at end."""

    def get_value(self, key: str, default: Any = None) -> Any:
        ...

    def set_value(self, key: str, value: Any) -> None:
        ...


class MemoryKeyValueStore:
    def __init__(self, initial: Dict[str, Any] | None = None) -> None:
        self.values: Dict[str, Any] = dict(initial or {})

    def get_value(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def set_value(self, key: str, value: Any) -> None:
        self.values[key] = value


class JsonKeyValueStore:
    """
    One ``<KEY>.json`` file per key under ``directory``.
    Writes go through a temp file and ``os.replace``.
    """

    _SAFE_KEY = re.compile(r"^[A-Za-z0-9_.\-]+$")

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not self._SAFE_KEY.match(key):
            raise ValueError(f"Invalid key-value store key: {key!r}")
        return self.directory / f"{key}.json"

    def get_value(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def set_value(self, key: str, value: Any) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(value, f, indent=2, ensure_ascii=False, default=str)
        os.replace(tmp, path)
        logger.debug("Saved %s to %s", key, path)
