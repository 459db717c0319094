from __future__ import annotations

import logging
from threading import Lock
from typing import Dict, Optional
from urllib.parse import urlsplit

from ..errors import ValidatorError
from ..runtime.contracts import DeliverFn, Launcher, Operation, RedirectOptions
from ..runtime.identity import OperationRegistry
from .launchers import SystemBrowserLauncher

logger = logging.getLogger(__name__)


class UrlEventChannel:
    def __init__(self, operation: Operation, deliver: DeliverFn) -> None:
        self.operation = operation
        self.deliver = deliver
        self.closed = False


class UrlEventTransport:
    """Return channel for callbacks the host hands over as URL events.

    Mobile and desktop hosts register a custom scheme and forward every URL
    opened with it to :meth:`dispatch_url`. Operations are matched by scheme;
    when several are pending on one scheme the earliest registered is offered
    the URL first.
    """

    name = "url_event"

    def __init__(self, registry: OperationRegistry, launcher: Optional[Launcher] = None) -> None:
        self._registry = registry
        self._launcher = launcher or SystemBrowserLauncher()
        self._channels: Dict[str, UrlEventChannel] = {}
        self._lock = Lock()

    def attribute_for(self, options: RedirectOptions) -> Optional[str]:
        if options.url_event is None:
            raise ValueError("url_event options with a callback scheme are required")
        return options.url_event.scheme.strip().lower()

    def open(self, operation: Operation, deliver: DeliverFn) -> UrlEventChannel:
        channel = UrlEventChannel(operation, deliver)
        with self._lock:
            self._channels[operation.id] = channel
        return channel

    def launch(self, operation: Operation, channel: UrlEventChannel) -> None:
        self._launcher.launch(operation.url)
        return None

    def close(self, channel: UrlEventChannel) -> None:
        with self._lock:
            channel.closed = True
            if self._channels.get(channel.operation.id) is channel:
                self._channels.pop(channel.operation.id, None)

    def dispatch_url(self, uri: str) -> bool:
        """Offer ``uri`` to pending operations registered for its scheme.

        Returns ``True`` once an operation accepted it, or an async validator
        took it for a verdict on its event loop.
        """
        try:
            scheme = urlsplit(uri.strip()).scheme.lower()
        except (AttributeError, ValueError):
            logger.debug("Ignoring malformed URL event %r", uri)
            return False
        if not scheme:
            return False
        for operation in self._registry.pending_by_attribute(scheme):
            with self._lock:
                channel = self._channels.get(operation.id)
            if channel is None or channel.closed:
                continue
            try:
                accepted = channel.deliver(uri)
            except ValidatorError:
                continue
            if accepted is None or accepted:
                return True
        logger.debug("No pending operation accepted URL event for scheme %s", scheme)
        return False
