"""Process-wide default wiring.

One controller with all three transports registered, sharing a single
operation registry. The broadcast directory and the same-page resume flag
live in JSON files under the state directory, so a callback context served by
another process can find the channels and a restarted host can resume.
"""

from __future__ import annotations

from functools import lru_cache

from ..config import config
from ..storage.channel_directory import ChannelDirectory
from ..storage.key_value import JsonFileKeyValueStore
from ..storage.resume_store import ResumeStore
from ..transports.broadcast import BroadcastHub, BroadcastTransport, CallbackRelay
from ..transports.loopback import LoopbackTransport
from ..transports.url_events import UrlEventTransport
from .identity import OperationRegistry
from .lifecycle import RedirectController


@lru_cache(maxsize=1)
def default_broadcast_transport() -> BroadcastTransport:
    return BroadcastTransport(
        hub=BroadcastHub(),
        directory=ChannelDirectory(JsonFileKeyValueStore(config.REDIRECT.BROADCAST.DIRECTORY_FILE)),
        resume_store=ResumeStore(JsonFileKeyValueStore(config.REDIRECT.RESUME.FILE)),
    )


@lru_cache(maxsize=1)
def default_controller() -> RedirectController:
    registry = OperationRegistry()
    return RedirectController(
        registry=registry,
        transports=(
            LoopbackTransport(),
            default_broadcast_transport(),
            UrlEventTransport(registry),
        ),
    )


def default_relay() -> CallbackRelay:
    return default_broadcast_transport().relay()
