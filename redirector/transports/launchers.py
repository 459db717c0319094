from __future__ import annotations

import logging
import webbrowser
from typing import Callable, List, Optional

from ..errors import LaunchError
from ..models import IframeOptions

logger = logging.getLogger(__name__)


class SystemBrowserLauncher:
    """Open URLs in the user's default browser."""

    def __init__(self, *, new_tab: bool = True) -> None:
        self._new_tab = new_tab

    def launch(self, url: str) -> None:
        try:
            opened = webbrowser.open_new_tab(url) if self._new_tab else webbrowser.open_new(url)
        except webbrowser.Error as exc:
            raise LaunchError(f"Failed to launch browser. URL: {url}", url=url) from exc
        if not opened:
            raise LaunchError(f"Failed to launch browser. URL: {url}", url=url)
        logger.info("Launched system browser for %s", url)


class _DetachedSurface:
    """A surface the host cannot observe; it never reports itself closed."""

    def __init__(self, url: str) -> None:
        self.url = url

    @property
    def closed(self) -> bool:
        return False

    def close(self) -> None:
        return


class HeadlessSurfaceHost:
    """``SurfaceHost`` for hosts without a UI event model.

    Windows and tabs go to the system browser; there are no focus or
    visibility notifications, so dismissal is only ever observed through the
    operation's timeout. Frames cannot be embedded.
    """

    def __init__(self, launcher: Optional[SystemBrowserLauncher] = None, location: Optional[str] = None) -> None:
        self._launcher = launcher or SystemBrowserLauncher()
        self._location = location
        self._listeners: List[Callable[[], None]] = []

    def open_window(self, url: str, name: str, features: str) -> Optional[_DetachedSurface]:
        try:
            self._launcher.launch(url)
        except LaunchError:
            logger.warning("Headless host could not open %s", url)
            return None
        return _DetachedSurface(url)

    def embed_frame(self, url: str, options: IframeOptions) -> Optional[_DetachedSurface]:
        logger.warning("Headless host cannot embed frame %s for %s", options.id, url)
        return None

    def navigate(self, url: str) -> None:
        self._launcher.launch(url)
        self._location = url

    def current_location(self) -> Optional[str]:
        return self._location

    def screen_size(self) -> tuple[int, int]:
        return (1920, 1080)

    def add_visibility_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_visibility_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
