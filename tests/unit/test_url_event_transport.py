import pytest

from redirector.errors import LaunchError
from redirector.models import FailureKind
from redirector.runtime.contracts import RedirectOptions, UrlEventOptions
from redirector.runtime.identity import OperationRegistry
from redirector.runtime.lifecycle import RedirectController
from redirector.runtime.resolution import RedirectSuccess
from redirector.transports.url_events import UrlEventTransport


class _RecordingLauncher:
    def __init__(self, error=None) -> None:
        self.error = error
        self.urls = []

    def launch(self, url: str) -> None:
        if self.error is not None:
            raise self.error
        self.urls.append(url)


def _setup(launcher=None):
    registry = OperationRegistry()
    transport = UrlEventTransport(registry, launcher=launcher or _RecordingLauncher())
    controller = RedirectController(registry=registry, transports=[transport], default_transport="url_event")
    return controller, transport


def _options(scheme: str, validator=None) -> RedirectOptions:
    return RedirectOptions(url_event=UrlEventOptions(scheme=scheme), callback_validator=validator)


def test_url_event_resolves_first_registered_operation_for_scheme():
    launcher = _RecordingLauncher()
    controller, transport = _setup(launcher)
    first = controller.begin("https://provider.test/a", _options("MyApp"))
    second = controller.begin("https://provider.test/b", _options("myapp"))
    other = controller.begin("https://provider.test/c", _options("otherapp"))

    assert launcher.urls == ["https://provider.test/a", "https://provider.test/b", "https://provider.test/c"]
    assert transport.dispatch_url("myapp://callback?code=1") is True

    assert isinstance(first.wait(timeout=1.0), RedirectSuccess)
    assert second.done() is False
    assert other.done() is False

    assert transport.dispatch_url("myapp://callback?code=2") is True
    assert second.wait(timeout=1.0).uri == "myapp://callback?code=2"


def test_url_event_skips_operations_whose_validator_rejects():
    controller, transport = _setup()
    picky = controller.begin("https://provider.test/a", _options("myapp", lambda uri: "state=a" in uri))
    relaxed = controller.begin("https://provider.test/b", _options("myapp"))

    assert transport.dispatch_url("myapp://callback?state=b") is True

    assert picky.done() is False
    assert relaxed.wait(timeout=1.0).uri == "myapp://callback?state=b"


def test_url_event_ignores_unknown_schemes_and_garbage():
    controller, transport = _setup()
    handle = controller.begin("https://provider.test/a", _options("myapp"))

    assert transport.dispatch_url("otherapp://callback") is False
    assert transport.dispatch_url("no-scheme") is False
    assert transport.dispatch_url(None) is False
    assert handle.done() is False


def test_url_event_requires_scheme_options():
    controller, _transport = _setup()
    with pytest.raises(ValueError, match="callback scheme"):
        controller.begin("https://provider.test/a")
    with pytest.raises(ValueError):
        UrlEventOptions(scheme="  ")


def test_url_event_launch_failure():
    controller, transport = _setup(_RecordingLauncher(error=LaunchError("no handler for url")))
    handle = controller.begin("https://provider.test/a", _options("myapp"))

    assert handle.resolution.kind is FailureKind.LAUNCH_ERROR
    assert transport.dispatch_url("myapp://callback") is False
