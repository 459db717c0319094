from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import ContextManager, Dict, Iterator, Optional, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...

    def transaction(self) -> ContextManager[Dict[str, str]]:
        ...


class MemoryKeyValueStore:
    """Process-local store. Suitable for tests and single-process hosts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, str]]:
        with self._lock:
            yield self._items


class JsonFileKeyValueStore:
    """Durable string store backed by one JSON object file.

    Writes go through a temp file and ``os.replace``; read-modify-write cycles
    hold a thread lock plus an ``fcntl`` lock on a sibling ``.lock`` file so
    independent processes sharing the file do not lose updates.
    """

    _locks_guard = threading.Lock()
    _thread_locks: Dict[str, threading.Lock] = {}

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def get_item(self, key: str) -> Optional[str]:
        with self._locked_file():
            return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._locked_file():
            data = self._read()
            data[key] = value
            self._write(data)

    def remove_item(self, key: str) -> None:
        with self._locked_file():
            data = self._read()
            if key not in data:
                return
            data.pop(key)
            self._write(data)

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, str]]:
        """Yield the whole mapping under the file lock; changes are written back on exit."""
        with self._locked_file():
            data = self._read()
            yield data
            self._write(data)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable key-value store: %s", self.path, exc_info=True)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items() if isinstance(v, str)}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        tmp_path.write_text(json.dumps(data, ensure_ascii=False, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def _get_thread_lock(self) -> threading.Lock:
        key = str(self.path)
        with self._locks_guard:
            if key not in self._thread_locks:
                self._thread_locks[key] = threading.Lock()
            return self._thread_locks[key]

    @contextmanager
    def _locked_file(self) -> Iterator[None]:
        thread_lock = self._get_thread_lock()
        thread_lock.acquire()
        try:
            lock_path = self.path.with_name(f"{self.path.name}.lock")
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            with open(lock_path, "a+", encoding="utf-8") as lock_file:
                try:
                    import fcntl

                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                except (ImportError, OSError):
                    # Thread lock only on platforms without fcntl.
                    pass
                try:
                    yield
                finally:
                    try:
                        import fcntl

                        fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
                    except (ImportError, OSError):
                        pass
        finally:
            thread_lock.release()
