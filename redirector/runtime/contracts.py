from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from ..models import (
    HttpCallbackRequest,
    HttpCallbackResponse,
    IframeOptions,
    NewTabOptions,
    OperationStatus,
    PopupOptions,
    PortRange,
    PresentationMode,
)
from .resolution import RedirectPending, Resolution, ResolutionSink

CallbackValidator = Callable[[str], Union[bool, Awaitable[bool]]]
ResponseBuilder = Callable[[HttpCallbackRequest], HttpCallbackResponse]
# True: accepted. False: soft reject or lost the race. None: verdict deferred to the event loop.
DeliverFn = Callable[[str], Optional[bool]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LoopbackOptions:
    host: Optional[str] = None
    bind_address: Optional[str] = None
    port: int = 0
    port_range: Optional[PortRange] = None
    callback_path: Optional[str] = None
    response_builder: Optional[ResponseBuilder] = None
    on_port_bound: Optional[Callable[[int], None]] = None
    url_builder: Optional[Callable[[int], str]] = None
    open_browser: Optional[bool] = None

    def __post_init__(self) -> None:
        if self.port and self.port_range is not None:
            raise ValueError("Cannot specify both port and port_range")
        if self.port < 0 or self.port > 65535:
            raise ValueError(f"Invalid port: {self.port}")
        if self.callback_path is not None and not self.callback_path.startswith("/"):
            raise ValueError("callback_path must start with '/'")


@dataclass(frozen=True)
class BroadcastOptions:
    mode: PresentationMode = PresentationMode.POPUP
    popup: PopupOptions = field(default_factory=PopupOptions)
    new_tab: NewTabOptions = field(default_factory=NewTabOptions)
    iframe: IframeOptions = field(default_factory=IframeOptions)
    channel_name: Optional[str] = None
    partition: Optional[str] = None


@dataclass(frozen=True)
class UrlEventOptions:
    scheme: str

    def __post_init__(self) -> None:
        if not self.scheme.strip():
            raise ValueError("Callback scheme is required")


@dataclass(frozen=True)
class RedirectOptions:
    timeout: Union[float, timedelta, None] = None
    callback_validator: Optional[CallbackValidator] = None
    transport: Optional[str] = None
    loopback: LoopbackOptions = field(default_factory=LoopbackOptions)
    broadcast: BroadcastOptions = field(default_factory=BroadcastOptions)
    url_event: Optional[UrlEventOptions] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def timeout_seconds(self, default: float = 0.0) -> Optional[float]:
        value = self.timeout
        if isinstance(value, timedelta):
            value = value.total_seconds()
        if value is None:
            value = default
        if value is None or value <= 0:
            return None
        return float(value)


@dataclass
class Operation:
    id: str
    url: str
    options: RedirectOptions
    transport: str
    attribute: Optional[str] = None
    created_at: datetime = field(default_factory=_utc_now)
    deadline: Optional[datetime] = None
    loop: Optional[asyncio.AbstractEventLoop] = None
    sink: ResolutionSink = field(default_factory=ResolutionSink)
    # Owned by the lifecycle controller; guarded by its state lock.
    channel: Any = field(default=None, repr=False)
    timer: Any = field(default=None, repr=False)
    finalized: bool = field(default=False, repr=False)

    @property
    def validator(self) -> Optional[CallbackValidator]:
        return self.options.callback_validator

    @property
    def status(self) -> OperationStatus:
        resolution = self.sink.resolution
        if resolution is None:
            return OperationStatus.PENDING
        return resolution.status

    @property
    def resolution(self) -> Optional[Resolution]:
        return self.sink.resolution

    def arm_deadline(self, seconds: Optional[float]) -> None:
        if seconds is not None:
            self.deadline = self.created_at + timedelta(seconds=seconds)


class ReturnTransport(Protocol):
    name: str

    def attribute_for(self, options: RedirectOptions) -> Optional[str]:
        ...

    def open(self, operation: Operation, deliver: DeliverFn) -> Any:
        ...

    def launch(self, operation: Operation, channel: Any) -> Optional[RedirectPending]:
        ...

    def close(self, channel: Any) -> None:
        ...


class Launcher(Protocol):
    def launch(self, url: str) -> None:
        ...


class SurfaceRef(Protocol):
    @property
    def closed(self) -> bool:
        ...

    def close(self) -> None:
        ...


class SurfaceHost(Protocol):
    def open_window(self, url: str, name: str, features: str) -> Optional[SurfaceRef]:
        ...

    def embed_frame(self, url: str, options: IframeOptions) -> Optional[SurfaceRef]:
        ...

    def navigate(self, url: str) -> None:
        ...

    def current_location(self) -> Optional[str]:
        ...

    def screen_size(self) -> tuple[int, int]:
        ...

    def add_visibility_listener(self, listener: Callable[[], None]) -> None:
        ...

    def remove_visibility_listener(self, listener: Callable[[], None]) -> None:
        ...
