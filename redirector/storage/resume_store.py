from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import config
from .key_value import KeyValueStore


@dataclass(frozen=True)
class PendingResume:
    operation_id: Optional[str]
    callback_url: Optional[str]


class ResumeStore:
    """Single-tab storage for the same-page pending flag.

    Holds only "an operation is pending, identified by X" plus, once the
    callback context has seen it, the callback URL. Nothing else survives a
    reload.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._pending_key = config.REDIRECT.RESUME.PENDING_KEY
        self._operation_key = config.REDIRECT.RESUME.OPERATION_ID_KEY
        self._callback_key = config.REDIRECT.RESUME.CALLBACK_URL_KEY

    def mark_pending(self, operation_id: str) -> None:
        with self._store.transaction() as data:
            data[self._operation_key] = operation_id
            data.pop(self._callback_key, None)
            data[self._pending_key] = "true"

    def has_pending(self) -> bool:
        return self._store.get_item(self._pending_key) == "true"

    def store_callback_url(self, callback_url: str) -> bool:
        """Record the callback URL for a pending resume. No-op when nothing is pending."""
        with self._store.transaction() as data:
            if data.get(self._pending_key) != "true":
                return False
            data[self._callback_key] = callback_url
        return True

    def take(self) -> Optional[PendingResume]:
        """Read and clear the pending state in one step. ``None`` when nothing is pending."""
        with self._store.transaction() as data:
            if data.pop(self._pending_key, None) != "true":
                return None
            return PendingResume(
                operation_id=data.pop(self._operation_key, None) or None,
                callback_url=data.pop(self._callback_key, None) or None,
            )

    def clear(self) -> None:
        with self._store.transaction() as data:
            for key in (self._pending_key, self._operation_key, self._callback_key):
                data.pop(key, None)
