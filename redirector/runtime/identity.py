from __future__ import annotations

import logging
import secrets
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional

from ..config import config
from .contracts import Operation, RedirectOptions

logger = logging.getLogger(__name__)

_MIN_NONCE_LENGTH = 16


def generate_nonce(length: int | None = None) -> str:
    """Return a random operation id drawn from ``config.REDIRECT.NONCE_ALPHABET``.

    16 characters from a 36-symbol alphabet carry ~82 bits of entropy; shorter
    lengths are refused.
    """
    size = int(length if length is not None else config.REDIRECT.NONCE_LENGTH)
    if size < _MIN_NONCE_LENGTH:
        raise ValueError(f"Nonce length must be at least {_MIN_NONCE_LENGTH}")
    alphabet = config.REDIRECT.NONCE_ALPHABET
    return "".join(secrets.choice(alphabet) for _ in range(size))


class OperationRegistry:
    """Pending-operation table shared by every transport of one controller.

    Safe under concurrent insert/lookup/remove. Iteration order is
    registration order, which makes attribute lookups first-registered-first-
    matched.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._operations: Dict[str, Operation] = {}

    def new_operation(
        self,
        *,
        url: str,
        options: RedirectOptions,
        transport: str,
        attribute: Optional[str] = None,
    ) -> Operation:
        normalized_attribute = self._normalize_attribute(attribute)
        with self._lock:
            operation_id = generate_nonce()
            while operation_id in self._operations:
                logger.warning("Operation id collision, drawing a new nonce")
                operation_id = generate_nonce()
            operation = Operation(
                id=operation_id,
                url=url,
                options=options,
                transport=transport,
                attribute=normalized_attribute,
            )
            self._operations[operation_id] = operation
        return operation

    def lookup(self, operation_id: str) -> Optional[Operation]:
        with self._lock:
            return self._operations.get(operation_id)

    def lookup_by_attribute(self, attribute: str) -> Optional[Operation]:
        """First pending operation registered with ``attribute``.

        When several pending operations share the attribute the earliest one
        wins; callers must not rely on anything stronger.
        """
        matches = self.pending_by_attribute(attribute)
        return matches[0] if matches else None

    def pending_by_attribute(self, attribute: str) -> List[Operation]:
        normalized = self._normalize_attribute(attribute)
        if normalized is None:
            return []
        with self._lock:
            return [op for op in self._operations.values() if op.attribute == normalized]

    def remove(self, operation_id: str) -> Optional[Operation]:
        with self._lock:
            return self._operations.pop(operation_id, None)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._operations)

    def __contains__(self, operation_id: object) -> bool:
        with self._lock:
            return operation_id in self._operations

    def __len__(self) -> int:
        with self._lock:
            return len(self._operations)

    def __iter__(self) -> Iterator[Operation]:
        with self._lock:
            snapshot = list(self._operations.values())
        return iter(snapshot)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "operations": {
                    op_id: {
                        "id": op.id,
                        "transport": op.transport,
                        "attribute": op.attribute,
                        "status": op.status.value,
                        "created_at": op.created_at.isoformat(),
                        "deadline": op.deadline.isoformat() if op.deadline else None,
                    }
                    for op_id, op in self._operations.items()
                }
            }

    @staticmethod
    def _normalize_attribute(attribute: Optional[str]) -> Optional[str]:
        if attribute is None:
            return None
        value = attribute.strip().lower()
        return value or None
