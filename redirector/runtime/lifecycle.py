from __future__ import annotations

import asyncio
import logging
from threading import Lock, Timer
from typing import Any, Iterable, Mapping, Optional

from ..config import config
from ..errors import LaunchError, ValidatorError, failure_kind_of
from ..models import CancelReason, OperationStatus
from .contracts import Operation, RedirectOptions, ReturnTransport
from .identity import OperationRegistry
from .matcher import CallbackMatcher
from .resolution import (
    RedirectCancelled,
    RedirectFailure,
    RedirectSuccess,
    Resolution,
)
from .statechart import OperationEvent, next_status

logger = logging.getLogger(__name__)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _on_loop_thread(loop: Optional[asyncio.AbstractEventLoop]) -> bool:
    return loop is not None and _running_loop() is loop


class OperationHandle:
    """Caller-facing view of one redirect operation.

    Returned synchronously by :meth:`RedirectController.begin`; the outcome is
    read with ``await handle.result()`` or ``handle.wait()``.
    """

    def __init__(self, controller: "RedirectController", operation: Operation) -> None:
        self._controller = controller
        self._operation = operation

    @property
    def id(self) -> str:
        return self._operation.id

    @property
    def url(self) -> str:
        return self._operation.url

    @property
    def options(self) -> RedirectOptions:
        return self._operation.options

    @property
    def status(self) -> OperationStatus:
        return self._operation.status

    @property
    def resolution(self) -> Optional[Resolution]:
        return self._operation.resolution

    def done(self) -> bool:
        return self._operation.sink.done()

    async def result(self) -> Resolution:
        return await self._operation.sink.wait_async()

    def wait(self, timeout: float | None = None) -> Resolution:
        return self._operation.sink.wait(timeout=timeout)

    def cancel(self) -> bool:
        """Cancel if still pending. Safe to call any number of times."""
        return self._controller.cancel(self._operation)

    def __repr__(self) -> str:
        return f"OperationHandle(id={self.id!r}, status={self.status.value!r})"


class RedirectController:
    """Owns the begin/cancel surface and every operation's lifecycle.

    Transports are looked up by name. Every exit path (accepted callback,
    cancel, deadline, transport fault) writes the operation's sink; the
    sink's done-callback performs cleanup exactly once.
    """

    def __init__(
        self,
        *,
        registry: OperationRegistry | None = None,
        transports: Iterable[ReturnTransport] = (),
        default_transport: str | None = None,
        matcher: CallbackMatcher | None = None,
    ) -> None:
        self._registry = registry if registry is not None else OperationRegistry()
        self._transports: dict[str, ReturnTransport] = {}
        self._default_transport = self._normalize_name(
            default_transport or config.REDIRECT.DEFAULT_TRANSPORT
        )
        self._matcher = matcher or CallbackMatcher()
        self._state_lock = Lock()
        self._background_tasks: set[asyncio.Task[bool]] = set()
        for transport in transports:
            self.register_transport(transport)

    @staticmethod
    def _normalize_name(name: str) -> str:
        value = name.strip().lower()
        if not value:
            raise ValueError("Redirect transport name is required")
        return value

    @property
    def registry(self) -> OperationRegistry:
        return self._registry

    @property
    def transports(self) -> Mapping[str, ReturnTransport]:
        return dict(self._transports)

    def register_transport(self, transport: ReturnTransport) -> None:
        self._transports[self._normalize_name(transport.name)] = transport

    def transport(self, name: str) -> ReturnTransport:
        transport = self._transports.get(self._normalize_name(name))
        if transport is None:
            raise ValueError(f"Redirect transport not registered: {name}")
        return transport

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    def begin(self, url: str, options: RedirectOptions | None = None) -> OperationHandle:
        effective = options or RedirectOptions()
        transport = self.transport(effective.transport or self._default_transport)
        operation = self._registry.new_operation(
            url=url,
            options=effective,
            transport=self._normalize_name(transport.name),
            attribute=transport.attribute_for(effective),
        )
        operation.loop = _running_loop()
        timeout = effective.timeout_seconds(float(config.REDIRECT.DEFAULT_TIMEOUT_SEC))
        operation.arm_deadline(timeout)
        operation.sink.add_done_callback(lambda resolution: self._finalize(operation, resolution))
        handle = OperationHandle(self, operation)
        logger.info(
            "Redirect operation %s started: transport=%s timeout=%s",
            operation.id,
            operation.transport,
            timeout,
        )

        try:
            channel = transport.open(operation, lambda candidate: self.deliver(operation, candidate))
        except Exception as exc:
            logger.warning("Operation %s: return channel failed to open: %s", operation.id, exc)
            self.fail(operation, exc, event=OperationEvent.CHANNEL_FAULT)
            return handle
        self._attach_channel(operation, channel)

        try:
            pending = transport.launch(operation, channel)
        except Exception as exc:
            logger.warning("Operation %s: launch failed: %s", operation.id, exc)
            self.fail(
                operation,
                exc,
                event=OperationEvent.LAUNCH_FAILED if isinstance(exc, LaunchError) else OperationEvent.CHANNEL_FAULT,
            )
            return handle
        if pending is not None:
            self._resolve(operation, OperationEvent.NAVIGATED_AWAY, pending)
            return handle

        if timeout is not None:
            self._arm_timer(operation, timeout)
        return handle

    def cancel(self, operation: Operation, reason: CancelReason = CancelReason.CALLER) -> bool:
        event = OperationEvent.CANCEL_REQUESTED
        if reason is CancelReason.TIMEOUT:
            event = OperationEvent.DEADLINE_ELAPSED
        elif reason is CancelReason.DISMISSED:
            event = OperationEvent.SURFACE_DISMISSED
        return self._resolve(operation, event, RedirectCancelled(reason=reason))

    def cancel_all(self, reason: CancelReason = CancelReason.SHUTDOWN) -> int:
        cancelled = 0
        for operation in self._registry:
            if self.cancel(operation, reason):
                cancelled += 1
        return cancelled

    def get(self, operation_id: str) -> Optional[OperationHandle]:
        operation = self._registry.lookup(operation_id)
        if operation is None:
            return None
        return OperationHandle(self, operation)

    def pending_count(self) -> int:
        return len(self._registry)

    # ------------------------------------------------------------------
    # Transport-facing
    # ------------------------------------------------------------------

    def deliver(self, operation: Operation, candidate: Any) -> Optional[bool]:
        """Offer a candidate callback to ``operation``.

        Returns ``True`` when it resolved the operation, ``False`` on a soft
        reject or when another path already won, ``None`` when an async
        validator verdict was scheduled on the operation's loop. A raising
        validator fails the operation and re-raises :class:`ValidatorError`.
        """
        if operation.sink.done():
            return False
        if self._matcher.needs_loop(operation) and _on_loop_thread(operation.loop):
            assert operation.loop is not None
            task = operation.loop.create_task(self._deliver_async(operation, candidate))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)
            return None
        try:
            accepted = self._matcher.match(candidate, operation)
        except ValidatorError as exc:
            self.fail(operation, exc, event=OperationEvent.VALIDATOR_RAISED)
            raise
        if not accepted:
            return False
        return self._resolve(
            operation,
            OperationEvent.CALLBACK_ACCEPTED,
            RedirectSuccess(uri=candidate.strip()),
        )

    async def _deliver_async(self, operation: Operation, candidate: Any) -> bool:
        try:
            accepted = await self._matcher.match_async(candidate, operation)
        except ValidatorError as exc:
            self.fail(operation, exc, event=OperationEvent.VALIDATOR_RAISED)
            return False
        if not accepted:
            return False
        return self._resolve(
            operation,
            OperationEvent.CALLBACK_ACCEPTED,
            RedirectSuccess(uri=candidate.strip()),
        )

    def fail(
        self,
        operation: Operation,
        error: BaseException,
        *,
        event: str = OperationEvent.CHANNEL_FAULT,
    ) -> bool:
        return self._resolve(
            operation,
            event,
            RedirectFailure(kind=failure_kind_of(error), error=error),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, operation: Operation, event: str, resolution: Resolution) -> bool:
        expected = next_status(OperationStatus.PENDING, event)
        if expected is not resolution.status:
            raise ValueError(f"Event {event} cannot resolve to {resolution.status.value}")
        won = operation.sink.try_resolve(resolution)
        if won:
            logger.info("Redirect operation %s resolved: %s (%s)", operation.id, resolution.status.value, event)
        else:
            logger.debug("Redirect operation %s: late %s ignored", operation.id, event)
        return won

    def _attach_channel(self, operation: Operation, channel: Any) -> None:
        with self._state_lock:
            if not operation.finalized:
                operation.channel = channel
                return
        # Resolved while the channel was opening; nobody else will close it.
        self._close_channel(operation, channel)

    def _arm_timer(self, operation: Operation, timeout: float) -> None:
        timer = Timer(timeout, self.cancel, args=(operation, CancelReason.TIMEOUT))
        timer.daemon = True
        timer.name = f"redirect-deadline-{operation.id}"
        with self._state_lock:
            if operation.finalized:
                return
            operation.timer = timer
        timer.start()

    def _finalize(self, operation: Operation, resolution: Resolution) -> None:
        with self._state_lock:
            if operation.finalized:
                return
            operation.finalized = True
            channel, operation.channel = operation.channel, None
            timer, operation.timer = operation.timer, None
        self._registry.remove(operation.id)
        if timer is not None:
            timer.cancel()
        if channel is not None:
            self._close_channel(operation, channel)

    def _close_channel(self, operation: Operation, channel: Any) -> None:
        transport = self._transports.get(operation.transport)
        if transport is None:
            return
        try:
            transport.close(channel)
        except Exception:
            logger.warning("Operation %s: closing return channel failed", operation.id, exc_info=True)
