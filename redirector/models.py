"""
Data Models for the redirect runtime.

This module defines the enums and Pydantic models shared across the package:
- Operation lifecycle states (OperationStatus)
- Failure and cancellation codes (FailureKind, CancelReason)
- Broadcast presentation modes and their surface options
- Loopback HTTP request/response snapshots and port ranges
"""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator


class OperationStatus(str, Enum):
    """
    Enum representing the lifecycle state of a redirect operation.
    """
    PENDING = "pending"                  # Waiting for a callback, cancel or timeout
    SUCCEEDED = "succeeded"              # Callback received and accepted
    CANCELLED = "cancelled"              # Cancelled by caller, timeout or user dismissal
    FAILED = "failed"                    # Could not reach a channel-delivered outcome
    AWAITING_RESUME = "awaiting_resume"  # Same-page navigation, result arrives after reload


class FailureKind(str, Enum):
    """Stable error codes carried by failed resolutions."""
    NO_PORT_AVAILABLE = "no_port_available"
    LAUNCH_ERROR = "launch_error"
    VALIDATOR_THREW = "validator_threw"
    MALFORMED_RESUME_STATE = "malformed_resume_state"
    CHANNEL_OPEN_ERROR = "channel_open_error"
    CALLBACK_REJECTED = "callback_rejected"
    OTHER = "other"


class CancelReason(str, Enum):
    """Why an operation ended cancelled."""
    CALLER = "caller"
    TIMEOUT = "timeout"
    DISMISSED = "dismissed"
    SHUTDOWN = "shutdown"


class PresentationMode(str, Enum):
    """How a broadcast-hosted operation presents the external agent."""
    POPUP = "popup"
    NEW_TAB = "new_tab"
    IFRAME = "iframe"
    SAME_PAGE = "same_page"


class PortRange(BaseModel):
    """Inclusive port range probed in ascending order."""
    start: int = Field(ge=1, le=65535)
    end: int = Field(ge=1, le=65535)

    @model_validator(mode="after")
    def _check_order(self) -> "PortRange":
        if self.start > self.end:
            raise ValueError(f"Port range start {self.start} is greater than end {self.end}")
        return self

    def ports(self) -> range:
        return range(self.start, self.end + 1)


class HttpCallbackRequest(BaseModel):
    """Snapshot of a request received by the loopback listener."""
    uri: str
    method: str
    headers: Dict[str, str] = Field(default_factory=dict)


class HttpCallbackResponse(BaseModel):
    """Response written back to the browser once a callback is accepted."""
    status_code: int = Field(default=200, ge=100, le=599)
    body: str = ""
    headers: Dict[str, str] = Field(
        default_factory=lambda: {"Content-Type": "text/html; charset=utf-8"}
    )


class PopupOptions(BaseModel):
    """Sized secondary surface. Position is centred on the host screen when unset."""
    width: int = Field(default=500, ge=1)
    height: int = Field(default=700, ge=1)
    left: Optional[int] = None
    top: Optional[int] = None
    window_name: str = "redirect_popup"
    window_features: Optional[str] = None


class NewTabOptions(BaseModel):
    """Full secondary surface."""
    window_name: str = "_blank"
    window_features: Optional[str] = None


class IframeOptions(BaseModel):
    """Embedded surface, hidden by default."""
    id: str = "redirect_iframe"
    hidden: bool = True
    width: Optional[int] = Field(default=None, ge=1)
    height: Optional[int] = Field(default=None, ge=1)
    sandbox: Optional[str] = "allow-same-origin allow-scripts allow-forms"
    allow: Optional[str] = None
    style: Optional[str] = None
    parent_selector: str = "body"
