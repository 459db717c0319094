from .contracts import (
    BroadcastOptions,
    CallbackValidator,
    LoopbackOptions,
    Operation,
    RedirectOptions,
    ReturnTransport,
    UrlEventOptions,
)
from .identity import OperationRegistry, generate_nonce
from .lifecycle import OperationHandle, RedirectController
from .matcher import CallbackMatcher
from .resolution import (
    RedirectCancelled,
    RedirectFailure,
    RedirectPending,
    RedirectSuccess,
    Resolution,
    ResolutionSink,
)

__all__ = [
    "BroadcastOptions",
    "CallbackMatcher",
    "CallbackValidator",
    "LoopbackOptions",
    "Operation",
    "OperationHandle",
    "OperationRegistry",
    "RedirectCancelled",
    "RedirectController",
    "RedirectFailure",
    "RedirectOptions",
    "RedirectPending",
    "RedirectSuccess",
    "Resolution",
    "ResolutionSink",
    "ReturnTransport",
    "UrlEventOptions",
    "generate_nonce",
]
