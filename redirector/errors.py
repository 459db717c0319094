from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .models import FailureKind


@dataclass(eq=False)
class RedirectError(Exception):
    kind: FailureKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": False, "error": {"kind": self.kind.value, "message": self.message}}
        if self.details:
            payload["error"]["details"] = self.details
        return payload


class NoPortAvailableError(RedirectError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(FailureKind.NO_PORT_AVAILABLE, message, dict(details))


class LaunchError(RedirectError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(FailureKind.LAUNCH_ERROR, message, dict(details))


class ValidatorError(RedirectError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(FailureKind.VALIDATOR_THREW, message, dict(details))


class MalformedResumeStateError(RedirectError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(FailureKind.MALFORMED_RESUME_STATE, message, dict(details))


class CallbackRejectedError(RedirectError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(FailureKind.CALLBACK_REJECTED, message, dict(details))


class ChannelOpenError(RedirectError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(FailureKind.CHANNEL_OPEN_ERROR, message, dict(details))


def failure_kind_of(error: BaseException) -> FailureKind:
    if isinstance(error, RedirectError):
        return error.kind
    return FailureKind.OTHER
