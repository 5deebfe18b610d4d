"""
Key-value persistence for profile, counter and credential data.

The stores above this layer only ever read and write a handful of fixed
string keys, so the medium can be swapped freely: a JSON file on disk for
the server, or a plain dictionary in tests.
"""
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

from errors import PersistenceError


class KeyValueStore(ABC):
    """The minimal key-value interface every store in the application depends on."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    @abstractmethod
    def update(self, key: str, fn: Callable[[Optional[str]], str]) -> str:
        """Replaces the value with fn(current value) as one atomic read-modify-write."""


class InMemoryStore(KeyValueStore):
    """A dictionary-backed store. Used in tests and for throwaway sessions."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def remove(self, key: str) -> None:
        self.values.pop(key, None)

    def update(self, key: str, fn: Callable[[Optional[str]], str]) -> str:
        self.values[key] = fn(self.values.get(key))
        return self.values[key]


class JsonFileStore(KeyValueStore):
    """
    Persists all keys in a single JSON object on disk.

    The file is re-read on every access so that a value written by another
    process (for example a second server instance) becomes visible. Reads of
    an unreadable file return nothing, but writes refuse to replace it: the
    other keys in it would otherwise be lost.
    """

    def __init__(self, path: str):
        self.path = path
        self.lock = threading.Lock()

    def _load(self, strict: bool = False) -> dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            if strict:
                raise PersistenceError(f"Refusing to overwrite unreadable storage file '{self.path}': {e}") from e
            logging.error(f"Could not read storage file '{self.path}': {e}")
            return {}
        if not isinstance(data, dict):
            if strict:
                raise PersistenceError(f"Refusing to overwrite storage file '{self.path}': top level is not an object.")
            return {}
        return data

    def _save(self, data: dict[str, str]) -> None:
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Could not write storage file '{self.path}': {e}") from e

    def get(self, key: str) -> Optional[str]:
        with self.lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self.lock:
            data = self._load(strict=True)
            data[key] = value
            self._save(data)

    def remove(self, key: str) -> None:
        with self.lock:
            data = self._load(strict=True)
            if key in data:
                del data[key]
                self._save(data)

    def update(self, key: str, fn: Callable[[Optional[str]], str]) -> str:
        with self.lock:
            data = self._load(strict=True)
            data[key] = fn(data.get(key))
            self._save(data)
            return data[key]
