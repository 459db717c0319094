import threading

import pytest

from redirector.models import CancelReason, FailureKind, OperationStatus
from redirector.runtime.resolution import (
    RedirectCancelled,
    RedirectFailure,
    RedirectPending,
    RedirectSuccess,
    ResolutionSink,
    is_terminal,
)


def test_sink_accepts_exactly_one_writer_under_contention():
    sink = ResolutionSink()
    barrier = threading.Barrier(16)
    wins = []
    lock = threading.Lock()

    def _writer(index):
        barrier.wait()
        won = sink.try_resolve(RedirectSuccess(uri=f"https://example.test/cb?i={index}"))
        with lock:
            wins.append(won)

    threads = [threading.Thread(target=_writer, args=(i,)) for i in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert wins.count(True) == 1
    assert sink.done() is True
    assert sink.wait(timeout=1.0) is sink.resolution


def test_sink_ignores_late_writes():
    sink = ResolutionSink()
    assert sink.try_resolve(RedirectCancelled(reason=CancelReason.TIMEOUT)) is True
    assert sink.try_resolve(RedirectSuccess(uri="https://example.test/cb")) is False
    assert isinstance(sink.resolution, RedirectCancelled)
    assert sink.resolution.reason is CancelReason.TIMEOUT


def test_sink_runs_done_callbacks_once_and_survives_their_errors():
    sink = ResolutionSink()
    seen = []

    def _boom(_resolution):
        raise RuntimeError("boom")

    sink.add_done_callback(_boom)
    sink.add_done_callback(seen.append)
    sink.try_resolve(RedirectPending())
    sink.try_resolve(RedirectPending())

    assert len(seen) == 1
    assert seen[0].status is OperationStatus.AWAITING_RESUME


@pytest.mark.asyncio
async def test_sink_wait_async_returns_resolution_written_from_thread():
    sink = ResolutionSink()
    failure = RedirectFailure(kind=FailureKind.OTHER, error=RuntimeError("listener died"))
    threading.Timer(0.01, sink.try_resolve, args=(failure,)).start()

    resolution = await sink.wait_async()

    assert resolution is failure
    assert resolution.message == "listener died"


def test_success_exposes_query_parameters():
    success = RedirectSuccess(uri="http://127.0.0.1:8080/callback?code=abc123&state=xyz&empty=")
    assert success.query == {"code": "abc123", "state": "xyz", "empty": ""}
    assert success.status is OperationStatus.SUCCEEDED


def test_only_awaiting_resume_is_not_terminal():
    assert is_terminal(RedirectSuccess(uri="x")) is True
    assert is_terminal(RedirectCancelled()) is True
    assert is_terminal(RedirectFailure(kind=FailureKind.OTHER, error=RuntimeError())) is True
    assert is_terminal(RedirectPending()) is False
