from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, List, Mapping, Optional, Union
from urllib.parse import parse_qs, urlsplit

from ..models import CancelReason, FailureKind, OperationStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedirectSuccess:
    uri: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    status = OperationStatus.SUCCEEDED

    @property
    def query(self) -> dict[str, str]:
        """First value of every query parameter of the callback URI."""
        parsed = parse_qs(urlsplit(self.uri).query, keep_blank_values=True)
        return {key: values[0] for key, values in parsed.items() if values}


@dataclass(frozen=True)
class RedirectCancelled:
    reason: CancelReason = CancelReason.CALLER
    metadata: Mapping[str, Any] = field(default_factory=dict)

    status = OperationStatus.CANCELLED


@dataclass(frozen=True)
class RedirectFailure:
    kind: FailureKind
    error: BaseException
    metadata: Mapping[str, Any] = field(default_factory=dict)

    status = OperationStatus.FAILED

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


@dataclass(frozen=True)
class RedirectPending:
    """Result arrives after a page reload; see ``resume_if_pending``."""

    metadata: Mapping[str, Any] = field(default_factory=dict)

    status = OperationStatus.AWAITING_RESUME


Resolution = Union[RedirectSuccess, RedirectCancelled, RedirectFailure, RedirectPending]


def is_terminal(resolution: Resolution) -> bool:
    return resolution.status is not OperationStatus.AWAITING_RESUME


class ResolutionSink:
    """Single-assignment slot for an operation's outcome.

    ``try_resolve`` compares and writes under one lock acquisition, so exactly
    one writer wins no matter how callback delivery, cancel and the deadline
    timer interleave. Later writes return ``False`` and change nothing.

    Done-callbacks run in the winning writer's thread before waiters are
    released, so anyone observing the outcome also observes its cleanup.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._resolution: Optional[Resolution] = None
        self._callbacks: List[Callable[[Resolution], None]] = []
        self._future: Future[Resolution] = Future()
        # RUNNING futures refuse cancel(), so awaiting callers cannot tear it down.
        self._future.set_running_or_notify_cancel()

    def try_resolve(self, resolution: Resolution) -> bool:
        with self._lock:
            if self._resolution is not None:
                return False
            self._resolution = resolution
            callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            self._invoke(fn, resolution)
        self._future.set_result(resolution)
        return True

    def done(self) -> bool:
        return self._resolution is not None

    @property
    def resolution(self) -> Optional[Resolution]:
        return self._resolution

    def wait(self, timeout: float | None = None) -> Resolution:
        return self._future.result(timeout=timeout)

    async def wait_async(self) -> Resolution:
        return await asyncio.shield(asyncio.wrap_future(self._future))

    def add_done_callback(self, fn: Callable[[Resolution], None]) -> None:
        with self._lock:
            resolution = self._resolution
            if resolution is None:
                self._callbacks.append(fn)
                return
        self._invoke(fn, resolution)

    @staticmethod
    def _invoke(fn: Callable[[Resolution], None], resolution: Resolution) -> None:
        try:
            fn(resolution)
        except Exception:
            logger.exception("Resolution callback failed")
