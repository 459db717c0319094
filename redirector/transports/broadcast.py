from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

from ..config import config
from ..errors import CallbackRejectedError, LaunchError, MalformedResumeStateError, ValidatorError
from ..models import CancelReason, FailureKind, OperationStatus, PresentationMode
from ..runtime.contracts import (
    BroadcastOptions,
    CallbackValidator,
    DeliverFn,
    Operation,
    RedirectOptions,
    SurfaceHost,
    SurfaceRef,
)
from ..runtime.matcher import CallbackMatcher, parse_candidate
from ..runtime.resolution import (
    RedirectCancelled,
    RedirectFailure,
    RedirectPending,
    RedirectSuccess,
    Resolution,
)
from ..runtime.statechart import OperationEvent, next_status
from ..storage.channel_directory import ChannelDirectory
from ..storage.key_value import MemoryKeyValueStore
from ..storage.resume_store import PendingResume, ResumeStore
from .launchers import HeadlessSurfaceHost

logger = logging.getLogger(__name__)

DEFAULT_POPUP_FEATURES = "toolbar=no,menubar=no,scrollbars=yes,resizable=yes"

MessageCallback = Callable[[Any], Optional[bool]]


class Subscription:
    def __init__(self, hub: "BroadcastHub", name: str, callback: MessageCallback) -> None:
        self._hub = hub
        self.name = name
        self.callback = callback
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._hub._unsubscribe(self)


class BroadcastHub:
    """Named in-process channels with any number of writers and readers."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._subscribers: Dict[str, List[Subscription]] = {}

    def subscribe(self, name: str, callback: MessageCallback) -> Subscription:
        if not name:
            raise ValueError("Channel name is required")
        subscription = Subscription(self, name, callback)
        with self._lock:
            self._subscribers.setdefault(name, []).append(subscription)
        return subscription

    def post(self, name: str, message: Any) -> int:
        """Deliver ``message`` to every current subscriber of ``name``; returns how many were reached."""
        with self._lock:
            targets = list(self._subscribers.get(name, ()))
        reached = 0
        for subscription in targets:
            if subscription.closed:
                continue
            try:
                subscription.callback(message)
            except Exception:
                logger.exception("Broadcast subscriber on %s failed", name)
            reached += 1
        return reached

    def offer(self, name: str, message: Any) -> Optional[bool]:
        """Hand ``message`` to subscribers of ``name`` in order until one takes it.

        Returns ``True`` once a subscriber accepted it, ``None`` when a
        subscriber took it for a deferred verdict, ``False`` otherwise.
        """
        with self._lock:
            targets = list(self._subscribers.get(name, ()))
        for subscription in targets:
            if subscription.closed:
                continue
            try:
                verdict = subscription.callback(message)
            except Exception:
                logger.exception("Broadcast subscriber on %s failed", name)
                continue
            if verdict is None or verdict:
                return verdict
        return False

    def subscriber_count(self, name: str) -> int:
        with self._lock:
            return len(self._subscribers.get(name, ()))

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.name)
            if not subscribers:
                return
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.name, None)


class BroadcastChannel:
    """Per-operation state: the subscription, the opened surface and its close watcher."""

    def __init__(self, operation: Operation, name: str, partition: str) -> None:
        self.operation = operation
        self.name = name
        self.partition = partition
        self.subscription: Optional[Subscription] = None
        self.surface: Optional[SurfaceRef] = None
        self.watcher: Optional[Callable[[], None]] = None
        self.closed = False
        self.lock = Lock()


class BroadcastTransport:
    """Return channel over a named broadcast channel.

    The external agent is presented as a popup, new tab, embedded frame or a
    same-page navigation. An independent callback context (see
    :class:`CallbackRelay`) posts the callback URI to the operation's channel.
    """

    name = "broadcast"

    def __init__(
        self,
        *,
        host: Optional[SurfaceHost] = None,
        hub: Optional[BroadcastHub] = None,
        directory: Optional[ChannelDirectory] = None,
        resume_store: Optional[ResumeStore] = None,
        matcher: Optional[CallbackMatcher] = None,
    ) -> None:
        self._host = host or HeadlessSurfaceHost()
        self._hub = hub or BroadcastHub()
        self._directory = directory or ChannelDirectory(MemoryKeyValueStore())
        self._resume_store = resume_store or ResumeStore(MemoryKeyValueStore())
        self._matcher = matcher or CallbackMatcher()

    @property
    def hub(self) -> BroadcastHub:
        return self._hub

    @property
    def directory(self) -> ChannelDirectory:
        return self._directory

    @property
    def resume_store(self) -> ResumeStore:
        return self._resume_store

    def relay(self) -> "CallbackRelay":
        return CallbackRelay(self._hub, self._directory, self._resume_store)

    def attribute_for(self, options: RedirectOptions) -> Optional[str]:
        return self._partition(options.broadcast)

    @staticmethod
    def _partition(options: BroadcastOptions) -> str:
        value = (options.partition or config.REDIRECT.BROADCAST.DEFAULT_PARTITION).strip().lower()
        if not value:
            raise ValueError("Broadcast partition is required")
        return value

    def open(self, operation: Operation, deliver: DeliverFn) -> BroadcastChannel:
        opts = operation.options.broadcast
        name = opts.channel_name or f"{config.REDIRECT.BROADCAST.CHANNEL_PREFIX}{operation.id}"
        channel = BroadcastChannel(operation, name, self._partition(opts))

        def on_message(message: Any) -> Optional[bool]:
            if not isinstance(message, str):
                logger.debug("Operation %s: ignoring non-string message on %s", operation.id, name)
                return False
            try:
                return deliver(message)
            except ValidatorError:
                # The operation is already failed by the controller.
                return False

        self._directory.register(name, channel.partition)
        channel.subscription = self._hub.subscribe(name, on_message)
        logger.info("Broadcast channel %s opened for %s", name, operation.id)
        return channel

    def launch(self, operation: Operation, channel: BroadcastChannel) -> Optional[RedirectPending]:
        opts = operation.options.broadcast
        mode = PresentationMode(opts.mode)
        if mode is PresentationMode.SAME_PAGE:
            return self._navigate_away(operation)

        if mode is PresentationMode.POPUP:
            surface = self._host.open_window(operation.url, opts.popup.window_name, self._popup_features(opts))
        elif mode is PresentationMode.NEW_TAB:
            surface = self._host.open_window(
                operation.url, opts.new_tab.window_name, opts.new_tab.window_features or ""
            )
        else:
            surface = self._host.embed_frame(operation.url, opts.iframe)
        if surface is None:
            raise LaunchError(
                f"Failed to open {mode.value} surface. URL: {operation.url}",
                url=operation.url,
                mode=mode.value,
            )
        self._watch(channel, surface)
        return None

    def close(self, channel: BroadcastChannel) -> None:
        with channel.lock:
            if channel.closed:
                return
            channel.closed = True
            subscription, channel.subscription = channel.subscription, None
            surface, channel.surface = channel.surface, None
            watcher, channel.watcher = channel.watcher, None
        if watcher is not None:
            self._host.remove_visibility_listener(watcher)
        if subscription is not None:
            subscription.close()
        self._directory.unregister(channel.name, channel.partition)
        if surface is not None and not surface.closed:
            surface.close()
        logger.info("Broadcast channel %s closed", channel.name)

    def _popup_features(self, opts: BroadcastOptions) -> str:
        popup = opts.popup
        screen_width, screen_height = self._host.screen_size()
        left = popup.left if popup.left is not None else max(0, (screen_width - popup.width) // 2)
        top = popup.top if popup.top is not None else max(0, (screen_height - popup.height) // 2)
        features = popup.window_features or DEFAULT_POPUP_FEATURES
        return f"width={popup.width},height={popup.height},left={left},top={top},{features}"

    def _watch(self, channel: BroadcastChannel, surface: SurfaceRef) -> None:
        operation = channel.operation

        def check_closed() -> None:
            if not surface.closed or operation.sink.done():
                return
            if operation.sink.try_resolve(RedirectCancelled(reason=CancelReason.DISMISSED)):
                logger.info("Redirect operation %s resolved: cancelled (surface dismissed)", operation.id)

        with channel.lock:
            if not channel.closed:
                channel.surface = surface
                channel.watcher = check_closed
                self._host.add_visibility_listener(check_closed)
                return
        # Resolved while the surface was opening.
        if not surface.closed:
            surface.close()

    # ------------------------------------------------------------------
    # Same-page mode
    # ------------------------------------------------------------------

    def _navigate_away(self, operation: Operation) -> RedirectPending:
        self._resume_store.mark_pending(operation.id)
        try:
            self._host.navigate(operation.url)
        except Exception:
            self._resume_store.clear()
            raise
        return RedirectPending(metadata={"operation_id": operation.id})

    def has_pending_resume(self) -> bool:
        return self._resume_store.has_pending()

    def clear_pending_resume(self) -> None:
        self._resume_store.clear()

    def resume_if_pending(
        self,
        location: Optional[str] = None,
        validator: Optional[CallbackValidator] = None,
    ) -> Optional[Resolution]:
        """Finish a same-page operation after the page reloaded.

        Returns ``None`` when nothing is pending. The pending state is cleared
        on every other path, so a second call returns ``None``.
        """
        pending = self._resume_store.take()
        if pending is None:
            return None
        operation = self._resume_operation(pending, location, validator)
        if isinstance(operation, RedirectFailure):
            return operation
        try:
            accepted = self._matcher.match(operation.url, operation)
        except ValidatorError as exc:
            return self._resumed(operation.id, RedirectFailure(kind=FailureKind.VALIDATOR_THREW, error=exc))
        return self._settle_resume(operation, accepted)

    async def resume_if_pending_async(
        self,
        location: Optional[str] = None,
        validator: Optional[CallbackValidator] = None,
    ) -> Optional[Resolution]:
        pending = self._resume_store.take()
        if pending is None:
            return None
        operation = self._resume_operation(pending, location, validator)
        if isinstance(operation, RedirectFailure):
            return operation
        try:
            accepted = await self._matcher.match_async(operation.url, operation)
        except ValidatorError as exc:
            return self._resumed(operation.id, RedirectFailure(kind=FailureKind.VALIDATOR_THREW, error=exc))
        return self._settle_resume(operation, accepted)

    def _resume_operation(
        self,
        pending: PendingResume,
        location: Optional[str],
        validator: Optional[CallbackValidator],
    ) -> Operation | RedirectFailure:
        if not pending.operation_id:
            return self._resumed(
                None,
                RedirectFailure(
                    kind=FailureKind.MALFORMED_RESUME_STATE,
                    error=MalformedResumeStateError("Pending redirect has no operation id"),
                ),
            )
        candidate = pending.callback_url or location or self._host.current_location()
        if parse_candidate(candidate) is None:
            return self._resumed(
                pending.operation_id,
                RedirectFailure(
                    kind=FailureKind.MALFORMED_RESUME_STATE,
                    error=MalformedResumeStateError(
                        "Pending redirect has no usable callback URI",
                        operation_id=pending.operation_id,
                    ),
                ),
            )
        assert candidate is not None
        return Operation(
            id=pending.operation_id,
            url=candidate.strip(),
            options=RedirectOptions(callback_validator=validator, transport=self.name),
            transport=self.name,
        )

    def _settle_resume(self, operation: Operation, accepted: bool) -> Resolution:
        if not accepted:
            return self._resumed(
                operation.id,
                RedirectFailure(
                    kind=FailureKind.CALLBACK_REJECTED,
                    error=CallbackRejectedError(
                        "Callback URI rejected by validator",
                        operation_id=operation.id,
                    ),
                ),
            )
        return self._resumed(operation.id, RedirectSuccess(uri=operation.url))

    @staticmethod
    def _resumed(operation_id: Optional[str], resolution: RedirectSuccess | RedirectFailure) -> Resolution:
        event = (
            OperationEvent.RESUME_ACCEPTED
            if isinstance(resolution, RedirectSuccess)
            else OperationEvent.RESUME_REJECTED
        )
        next_status(OperationStatus.AWAITING_RESUME, event)
        metadata = dict(resolution.metadata)
        if operation_id:
            metadata["operation_id"] = operation_id
        if isinstance(resolution, RedirectSuccess):
            resumed: Resolution = RedirectSuccess(uri=resolution.uri, metadata=metadata)
        else:
            resumed = RedirectFailure(kind=resolution.kind, error=resolution.error, metadata=metadata)
        logger.info("Pending redirect %s resumed: %s", operation_id, resumed.status.value)
        return resumed


class CallbackRelay:
    """The independent callback context.

    Runs where the external agent lands (a popup, tab, frame or the reloaded
    page) and forwards the callback URI to whoever is listening.
    """

    def __init__(
        self,
        hub: BroadcastHub,
        directory: ChannelDirectory,
        resume_store: Optional[ResumeStore] = None,
    ) -> None:
        self._hub = hub
        self._directory = directory
        self._resume_store = resume_store

    def resume_pending(self) -> bool:
        return self._resume_store is not None and self._resume_store.has_pending()

    def handle_callback(self, uri: str, channel_name: Optional[str] = None) -> int:
        """Forward ``uri`` to the operation waiting for it.

        With ``channel_name`` the URI is posted to that channel and the number
        of listeners reached is returned. Otherwise the channels listed for the
        URI's scheme are offered the URI in registration order and the first
        one to take it wins; the return value is 1 when one did, else 0.
        """
        if self._resume_store is not None and self._resume_store.store_callback_url(uri):
            logger.info("Stored callback URI for pending same-page redirect")
        if channel_name:
            reached = self._hub.post(channel_name, uri)
            logger.info("Relayed callback to %d listener(s) on %s", reached, channel_name)
            return reached
        scheme = urlsplit(uri).scheme if parse_candidate(uri) is not None else ""
        names = self._directory.channels(scheme or None)
        for name in names:
            if self._hub.offer(name, uri) is not False:
                logger.info("Relayed callback to channel %s", name)
                return 1
        logger.info("No listener took the callback on %d channel(s)", len(names))
        return 0
