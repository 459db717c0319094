from .broadcast import BroadcastHub, BroadcastTransport, CallbackRelay
from .launchers import HeadlessSurfaceHost, SystemBrowserLauncher
from .loopback import LoopbackTransport
from .url_events import UrlEventTransport

__all__ = [
    "BroadcastHub",
    "BroadcastTransport",
    "CallbackRelay",
    "HeadlessSurfaceHost",
    "LoopbackTransport",
    "SystemBrowserLauncher",
    "UrlEventTransport",
]
