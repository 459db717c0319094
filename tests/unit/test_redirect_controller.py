import asyncio
import threading
from datetime import timedelta

import pytest

from redirector.errors import ChannelOpenError, LaunchError, ValidatorError
from redirector.models import CancelReason, FailureKind, OperationStatus
from redirector.runtime.contracts import RedirectOptions
from redirector.runtime.lifecycle import RedirectController
from redirector.runtime.resolution import (
    RedirectCancelled,
    RedirectFailure,
    RedirectPending,
    RedirectSuccess,
)


class _FakeTransport:
    name = "fake"

    def __init__(self, *, open_error=None, launch_error=None, navigate_away=False) -> None:
        self.open_error = open_error
        self.launch_error = launch_error
        self.navigate_away = navigate_away
        self.deliver_fns = {}
        self.launched = []
        self.closed = []

    def attribute_for(self, options):  # noqa: ARG002
        return None

    def open(self, operation, deliver):
        if self.open_error is not None:
            raise self.open_error
        self.deliver_fns[operation.id] = deliver
        return {"operation_id": operation.id}

    def launch(self, operation, channel):  # noqa: ARG002
        if self.launch_error is not None:
            raise self.launch_error
        self.launched.append(operation.url)
        if self.navigate_away:
            return RedirectPending()
        return None

    def close(self, channel):
        self.closed.append(channel["operation_id"])


def _controller(transport):
    return RedirectController(transports=[transport], default_transport="fake")


def test_begin_launches_and_resolves_on_delivered_callback():
    transport = _FakeTransport()
    controller = _controller(transport)

    handle = controller.begin("https://provider.test/authorize")
    assert handle.status is OperationStatus.PENDING
    assert transport.launched == ["https://provider.test/authorize"]

    assert transport.deliver_fns[handle.id]("  https://app.test/cb?code=abc123 ") is True

    resolution = handle.wait(timeout=1.0)
    assert isinstance(resolution, RedirectSuccess)
    assert resolution.uri == "https://app.test/cb?code=abc123"
    assert transport.closed == [handle.id]
    assert controller.pending_count() == 0
    assert controller.get(handle.id) is None


def test_late_callbacks_after_resolution_are_ignored():
    transport = _FakeTransport()
    controller = _controller(transport)
    handle = controller.begin("https://provider.test/authorize")
    deliver = transport.deliver_fns[handle.id]

    assert deliver("https://app.test/cb?code=first") is True
    assert deliver("https://app.test/cb?code=second") is False
    assert handle.resolution.uri == "https://app.test/cb?code=first"
    assert transport.closed == [handle.id]


def test_cancel_is_idempotent():
    transport = _FakeTransport()
    controller = _controller(transport)
    handle = controller.begin("https://provider.test/authorize")

    assert handle.cancel() is True
    assert handle.cancel() is False
    assert handle.cancel() is False

    resolution = handle.wait(timeout=1.0)
    assert isinstance(resolution, RedirectCancelled)
    assert resolution.reason is CancelReason.CALLER
    assert transport.deliver_fns[handle.id]("https://app.test/cb?code=late") is False
    assert transport.closed == [handle.id]


def test_timeout_cancels_pending_operation():
    transport = _FakeTransport()
    controller = _controller(transport)

    handle = controller.begin("https://provider.test/authorize", RedirectOptions(timeout=timedelta(milliseconds=50)))
    resolution = handle.wait(timeout=2.0)

    assert isinstance(resolution, RedirectCancelled)
    assert resolution.reason is CancelReason.TIMEOUT
    assert transport.closed == [handle.id]
    assert handle.cancel() is False


def test_callback_racing_the_deadline_resolves_once():
    transport = _FakeTransport()
    controller = _controller(transport)

    for _ in range(20):
        handle = controller.begin("https://provider.test/authorize", RedirectOptions(timeout=0.01))
        deliver = transport.deliver_fns[handle.id]
        racer = threading.Timer(0.01, deliver, args=("https://app.test/cb?code=x",))
        racer.start()
        resolution = handle.wait(timeout=2.0)
        racer.join()
        assert handle.resolution is resolution
        assert isinstance(resolution, (RedirectSuccess, RedirectCancelled))

    assert sorted(transport.closed) == sorted(transport.deliver_fns)
    assert controller.pending_count() == 0


def test_operations_are_isolated():
    transport = _FakeTransport()
    controller = _controller(transport)
    first = controller.begin("https://provider.test/a")
    second = controller.begin("https://provider.test/b")

    assert first.id != second.id
    first.cancel()
    transport.deliver_fns[second.id]("https://app.test/cb?code=b")

    assert isinstance(first.wait(timeout=1.0), RedirectCancelled)
    assert second.wait(timeout=1.0).uri == "https://app.test/cb?code=b"


def test_open_failure_fails_without_launch():
    transport = _FakeTransport(open_error=ChannelOpenError("listener refused"))
    controller = _controller(transport)

    handle = controller.begin("https://provider.test/authorize")

    resolution = handle.resolution
    assert isinstance(resolution, RedirectFailure)
    assert resolution.kind is FailureKind.CHANNEL_OPEN_ERROR
    assert transport.launched == []
    assert controller.pending_count() == 0


def test_launch_failure_fails_and_closes_channel():
    transport = _FakeTransport(launch_error=LaunchError("no browser"))
    controller = _controller(transport)

    handle = controller.begin("https://provider.test/authorize", RedirectOptions(timeout=5))

    resolution = handle.resolution
    assert isinstance(resolution, RedirectFailure)
    assert resolution.kind is FailureKind.LAUNCH_ERROR
    assert resolution.message == "no browser"
    assert transport.closed == [handle.id]


def test_unexpected_launch_error_is_reported_as_other():
    transport = _FakeTransport(launch_error=RuntimeError("surface crashed"))
    handle = _controller(transport).begin("https://provider.test/authorize")

    assert handle.resolution.kind is FailureKind.OTHER


def test_navigating_away_resolves_to_awaiting_resume():
    transport = _FakeTransport(navigate_away=True)
    controller = _controller(transport)

    handle = controller.begin("https://provider.test/authorize", RedirectOptions(timeout=5))

    assert handle.status is OperationStatus.AWAITING_RESUME
    assert handle.done() is True
    assert transport.closed == [handle.id]


def test_raising_validator_fails_operation():
    def _validator(_uri):
        raise RuntimeError("bad state")

    transport = _FakeTransport()
    handle = _controller(transport).begin(
        "https://provider.test/authorize",
        RedirectOptions(callback_validator=_validator),
    )

    with pytest.raises(ValidatorError):
        transport.deliver_fns[handle.id]("https://app.test/cb?code=1")

    assert handle.resolution.kind is FailureKind.VALIDATOR_THREW
    assert transport.closed == [handle.id]


def test_unknown_transport_is_a_programming_error():
    controller = _controller(_FakeTransport())
    with pytest.raises(ValueError, match="not registered"):
        controller.begin("https://provider.test/authorize", RedirectOptions(transport="carrier-pigeon"))
    assert controller.pending_count() == 0


def test_cancel_all_cancels_every_pending_operation():
    transport = _FakeTransport()
    controller = _controller(transport)
    handles = [controller.begin(f"https://provider.test/{i}") for i in range(3)]

    assert controller.cancel_all() == 3
    for handle in handles:
        resolution = handle.wait(timeout=1.0)
        assert resolution.reason is CancelReason.SHUTDOWN
    assert controller.cancel_all() == 0


@pytest.mark.asyncio
async def test_async_validator_runs_on_the_callers_loop():
    seen_loops = []

    async def _validator(uri):
        seen_loops.append(asyncio.get_running_loop())
        return "code=" in uri

    transport = _FakeTransport()
    controller = _controller(transport)
    handle = controller.begin(
        "https://provider.test/authorize",
        RedirectOptions(callback_validator=_validator),
    )
    deliver = transport.deliver_fns[handle.id]

    assert deliver("https://app.test/cb?error=denied") is None
    await asyncio.sleep(0)
    assert handle.done() is False

    assert deliver("https://app.test/cb?code=ok") is None
    resolution = await asyncio.wait_for(handle.result(), timeout=1.0)

    assert resolution.uri == "https://app.test/cb?code=ok"
    assert seen_loops == [asyncio.get_running_loop()] * 2


@pytest.mark.asyncio
async def test_scheduled_validator_task_is_held_until_done():
    release = asyncio.Event()

    async def _validator(uri):
        await release.wait()
        return True

    transport = _FakeTransport()
    controller = _controller(transport)
    handle = controller.begin(
        "https://provider.test/authorize",
        RedirectOptions(callback_validator=_validator),
    )

    assert transport.deliver_fns[handle.id]("https://app.test/cb?code=ok") is None
    (task,) = controller._background_tasks

    release.set()
    assert await asyncio.wait_for(task, timeout=1.0) is True
    resolution = await handle.result()

    assert resolution.uri == "https://app.test/cb?code=ok"
    assert controller._background_tasks == set()


@pytest.mark.asyncio
async def test_async_validator_from_another_thread():
    async def _validator(uri):
        await asyncio.sleep(0)
        return uri.endswith("ok")

    transport = _FakeTransport()
    controller = _controller(transport)
    handle = controller.begin(
        "https://provider.test/authorize",
        RedirectOptions(callback_validator=_validator),
    )
    deliver = transport.deliver_fns[handle.id]

    assert await asyncio.to_thread(deliver, "https://app.test/cb?state=no") is False
    assert await asyncio.to_thread(deliver, "https://app.test/cb?state=ok") is True
    resolution = await handle.result()
    assert resolution.uri == "https://app.test/cb?state=ok"
