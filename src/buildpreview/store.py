"""
Persisted parameter values, keyed by script path.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ParameterStore(Protocol):
    def get(self, path: str) -> dict[str, Any] | None: ...

    def set(self, path: str, values: dict[str, Any]) -> None: ...

    def update(self, path: str, name: str, value: Any) -> None: ...

    def clear(self, path: str) -> None: ...

    def clear_all(self) -> None: ...


def store_key(path: str | Path) -> str:
    """The key a script's values are stored under."""
    return str(Path(path).resolve())


class MemoryParameterStore:
    """
    Keeps parameter values for the lifetime of the process.

    Values are copied in and out, so callers can't modify the store by
    accident.
    """

    def __init__(self, init: dict[str, dict[str, Any]] | None = None):
        self._data: dict[str, dict[str, Any]] = {}
        if init:
            for k, v in init.items():
                self._data[k] = dict(v)

    def get(self, path: str) -> dict[str, Any] | None:
        res = self._data.get(path)
        return None if res is None else dict(res)

    def set(self, path: str, values: dict[str, Any]) -> None:
        self._put(path, dict(values))

    def update(self, path: str, name: str, value: Any) -> None:
        self._put(path, {**self._data.get(path, {}), name: value})

    def clear(self, path: str) -> None:
        if self._data.pop(path, None) is not None:
            self._changed()

    def clear_all(self) -> None:
        self._data.clear()
        self._changed()

    def __contains__(self, path: str) -> bool:
        return path in self._data

    def __len__(self) -> int:
        return len(self._data)

    def _put(self, path: str, values: dict[str, Any]) -> None:
        old = self._data.get(path)
        self._data[path] = values
        try:
            self._changed()
        except BaseException:
            # keep memory in step with what was last saved
            if old is None:
                del self._data[path]
            else:
                self._data[path] = old
            raise

    def _changed(self) -> None:
        pass


class JsonParameterStore(MemoryParameterStore):
    """
    Parameter values kept in a JSON file.

    The file is read once when the store is opened and rewritten after
    every change. A missing file is an empty store; an unreadable one is
    logged and treated as empty.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        super().__init__(self._read())

    def _read(self) -> dict[str, dict[str, Any]]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"Could not read parameter store {self.path}: {exc}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Parameter store {self.path} is not a JSON object, ignored")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, dict)}

    def _changed(self) -> None:
        # raises TypeError for values JSON cannot hold, before touching the file
        text = json.dumps(self._data, indent=2, sort_keys=True)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(text, encoding="utf-8")
        logger.debug(f"Saved parameter store to {self.path}")
