"""Browser launch strategies for the authorization URL.

The session never opens a browser itself; it is handed a
:class:`BrowserLauncher`. Launching is best-effort and fire-and-forget: a
launcher must not block the flow and must never raise into it.

* :class:`SystemBrowserLauncher` -- :mod:`webbrowser` in a daemon thread,
  falling back to the platform's "open" command and finally to asking the
  user to open the URL by hand.
* :class:`ManualBrowserLauncher` -- only reports the URL (``--no-browser``).
"""

from __future__ import annotations

import logging
import subprocess
import sys
import threading
import webbrowser
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)

UrlCallback = Callable[[str], None]


class BrowserLauncher(ABC):
    """Strategy that presents the authorization URL to the user."""

    @abstractmethod
    def open(self, url: str) -> None:
        """Open *url* without blocking. Implementations must not raise."""
        ...


def _platform_command(url: str) -> Optional[list[str]]:
    """Return the OS command that opens *url*, or ``None`` if unknown."""
    if sys.platform.startswith("win"):
        # ``start`` treats ``&`` as a command separator unless escaped.
        return ["cmd", "/c", "start", url.replace("&", "^&")]
    if sys.platform == "darwin":
        return ["open", url]
    if sys.platform.startswith("linux") or "bsd" in sys.platform:
        return ["xdg-open", url]
    return None


class SystemBrowserLauncher(BrowserLauncher):
    """Open the URL in the user's default browser.

    Args:
        on_manual: Called with the URL when no strategy succeeded, so the
            host can ask the user to open it manually.
        background: Run the launch in a daemon thread (disable in tests to
            launch synchronously).
    """

    def __init__(
        self,
        on_manual: Optional[UrlCallback] = None,
        background: bool = True,
    ) -> None:
        self._on_manual = on_manual
        self._background = background

    def open(self, url: str) -> None:
        if self._background:
            thread = threading.Thread(
                target=self._launch, args=(url,), name="loopauth-browser", daemon=True
            )
            thread.start()
        else:
            self._launch(url)

    def _launch(self, url: str) -> None:
        try:
            if self._try_webbrowser(url) or self._try_command(url):
                return
            if self._on_manual is not None:
                self._on_manual(url)
        except Exception:
            logger.warning("Browser launch failed", exc_info=True)

    @staticmethod
    def _try_webbrowser(url: str) -> bool:
        try:
            return bool(webbrowser.open(url))
        except webbrowser.Error as exc:
            logger.debug("webbrowser could not open the URL: %s", exc)
            return False

    @staticmethod
    def _try_command(url: str) -> bool:
        command = _platform_command(url)
        if command is None:
            return False
        try:
            subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.debug("%s failed: %s", command[0], exc)
            return False
        return True


class ManualBrowserLauncher(BrowserLauncher):
    """Hand the URL to *notify* instead of opening a browser."""

    def __init__(self, notify: UrlCallback) -> None:
        self._notify = notify

    def open(self, url: str) -> None:
        try:
            self._notify(url)
        except Exception:
            logger.warning("Could not display the authorization URL", exc_info=True)
