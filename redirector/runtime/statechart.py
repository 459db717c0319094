from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable

from ..models import OperationStatus


class OperationEvent:
    CALLBACK_ACCEPTED = "callback.accepted"
    CANCEL_REQUESTED = "cancel.requested"
    DEADLINE_ELAPSED = "deadline.elapsed"
    SURFACE_DISMISSED = "surface.dismissed"
    CHANNEL_FAULT = "channel.fault"
    LAUNCH_FAILED = "launch.failed"
    VALIDATOR_RAISED = "validator.raised"
    NAVIGATED_AWAY = "navigation.started"
    RESUME_ACCEPTED = "resume.accepted"
    RESUME_REJECTED = "resume.rejected"


TERMINAL_STATES = {
    OperationStatus.SUCCEEDED.value,
    OperationStatus.CANCELLED.value,
    OperationStatus.FAILED.value,
}


@dataclass(frozen=True)
class Transition:
    source: str
    event: str
    target: str
    action: str = "cleanup"


_PENDING = OperationStatus.PENDING.value
_AWAITING = OperationStatus.AWAITING_RESUME.value

TRANSITIONS: tuple[Transition, ...] = (
    Transition(_PENDING, OperationEvent.CALLBACK_ACCEPTED, OperationStatus.SUCCEEDED.value),
    Transition(_PENDING, OperationEvent.CANCEL_REQUESTED, OperationStatus.CANCELLED.value),
    Transition(_PENDING, OperationEvent.DEADLINE_ELAPSED, OperationStatus.CANCELLED.value),
    Transition(_PENDING, OperationEvent.SURFACE_DISMISSED, OperationStatus.CANCELLED.value),
    Transition(_PENDING, OperationEvent.CHANNEL_FAULT, OperationStatus.FAILED.value),
    Transition(_PENDING, OperationEvent.LAUNCH_FAILED, OperationStatus.FAILED.value),
    Transition(_PENDING, OperationEvent.VALIDATOR_RAISED, OperationStatus.FAILED.value),
    Transition(_PENDING, OperationEvent.NAVIGATED_AWAY, _AWAITING, action="persist_pending_flag"),
    Transition(_AWAITING, OperationEvent.RESUME_ACCEPTED, OperationStatus.SUCCEEDED.value, action="clear_pending_flag"),
    Transition(_AWAITING, OperationEvent.RESUME_REJECTED, OperationStatus.FAILED.value, action="clear_pending_flag"),
)


def transition_rows() -> Iterable[Transition]:
    return TRANSITIONS


def build_transition_index() -> Dict[tuple[str, str], Transition]:
    return {(row.source, row.event): row for row in TRANSITIONS}


_INDEX = build_transition_index()


def next_status(source: OperationStatus, event: str) -> OperationStatus:
    """Target status for ``event`` fired in ``source``; raises ``ValueError`` if not allowed."""
    row = _INDEX.get((source.value, event))
    if row is None:
        raise ValueError(f"Transition not allowed: {source.value} --{event}-->")
    return OperationStatus(row.target)


def is_terminal_status(status: OperationStatus) -> bool:
    return status.value in TERMINAL_STATES
