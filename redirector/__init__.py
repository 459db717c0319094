"""Redirect correlation runtime.

Open an external agent at a URL and resolve the single callback URI it
produces into one of four outcomes: succeeded, cancelled, failed, or
awaiting resume after a same-page navigation.

Usage:
    from redirector import RedirectOptions, default_controller

    handle = default_controller().begin(authorize_url, RedirectOptions(timeout=120))
    resolution = await handle.result()
"""

from .errors import (
    CallbackRejectedError,
    ChannelOpenError,
    LaunchError,
    MalformedResumeStateError,
    NoPortAvailableError,
    RedirectError,
    ValidatorError,
)
from .models import (
    CancelReason,
    FailureKind,
    HttpCallbackRequest,
    HttpCallbackResponse,
    IframeOptions,
    NewTabOptions,
    OperationStatus,
    PopupOptions,
    PortRange,
    PresentationMode,
)
from .runtime import (
    BroadcastOptions,
    LoopbackOptions,
    OperationHandle,
    RedirectCancelled,
    RedirectController,
    RedirectFailure,
    RedirectOptions,
    RedirectPending,
    RedirectSuccess,
    Resolution,
    UrlEventOptions,
)
from .runtime.defaults import default_controller

__all__ = [
    "BroadcastOptions",
    "CallbackRejectedError",
    "CancelReason",
    "ChannelOpenError",
    "FailureKind",
    "HttpCallbackRequest",
    "HttpCallbackResponse",
    "IframeOptions",
    "LaunchError",
    "LoopbackOptions",
    "MalformedResumeStateError",
    "NewTabOptions",
    "NoPortAvailableError",
    "OperationHandle",
    "OperationStatus",
    "PopupOptions",
    "PortRange",
    "PresentationMode",
    "RedirectCancelled",
    "RedirectController",
    "RedirectError",
    "RedirectFailure",
    "RedirectOptions",
    "RedirectPending",
    "RedirectSuccess",
    "Resolution",
    "UrlEventOptions",
    "ValidatorError",
    "default_controller",
]
