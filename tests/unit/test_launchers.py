import webbrowser

import pytest

from redirector.errors import LaunchError
from redirector.models import IframeOptions
from redirector.transports.launchers import HeadlessSurfaceHost, SystemBrowserLauncher


def test_system_browser_launcher_opens_new_tab(monkeypatch):
    opened = []
    monkeypatch.setattr(webbrowser, "open_new_tab", lambda url: opened.append(url) or True)

    SystemBrowserLauncher().launch("https://provider.test/authorize")

    assert opened == ["https://provider.test/authorize"]


def test_system_browser_launcher_raises_when_no_browser(monkeypatch):
    monkeypatch.setattr(webbrowser, "open_new", lambda url: False)

    with pytest.raises(LaunchError) as exc_info:
        SystemBrowserLauncher(new_tab=False).launch("https://provider.test/authorize")

    assert exc_info.value.details == {"url": "https://provider.test/authorize"}


def test_system_browser_launcher_wraps_webbrowser_errors(monkeypatch):
    def _raise(_url):
        raise webbrowser.Error("could not locate runnable browser")

    monkeypatch.setattr(webbrowser, "open_new_tab", _raise)

    with pytest.raises(LaunchError):
        SystemBrowserLauncher().launch("https://provider.test/authorize")


class _FakeLauncher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.urls = []

    def launch(self, url: str) -> None:
        if self.fail:
            raise LaunchError("no browser")
        self.urls.append(url)


def test_headless_host_opens_windows_through_launcher():
    launcher = _FakeLauncher()
    host = HeadlessSurfaceHost(launcher=launcher)

    surface = host.open_window("https://provider.test/authorize", "redirect_popup", "")

    assert surface is not None
    assert surface.closed is False
    assert launcher.urls == ["https://provider.test/authorize"]
    assert HeadlessSurfaceHost(launcher=_FakeLauncher(fail=True)).open_window("u", "n", "") is None


def test_headless_host_cannot_embed_frames_but_navigates():
    launcher = _FakeLauncher()
    host = HeadlessSurfaceHost(launcher=launcher, location="https://app.test/")

    assert host.embed_frame("https://provider.test/authorize", IframeOptions()) is None
    assert host.current_location() == "https://app.test/"

    host.navigate("https://provider.test/authorize")

    assert host.current_location() == "https://provider.test/authorize"
    assert host.screen_size() == (1920, 1080)
