"""Tests for loopauth.browser -- launch strategies and fallbacks."""

from __future__ import annotations

import threading
import webbrowser
from unittest.mock import MagicMock

import pytest

from loopauth.browser import ManualBrowserLauncher, SystemBrowserLauncher, _platform_command

URL = "https://idp.example.com/authorize?client_id=c&state=s"


@pytest.fixture
def popen(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    mock = MagicMock()
    monkeypatch.setattr("loopauth.browser.subprocess.Popen", mock)
    return mock


class TestSystemBrowserLauncher:
    def test_uses_webbrowser_first(self, monkeypatch: pytest.MonkeyPatch, popen: MagicMock) -> None:
        opened = MagicMock(return_value=True)
        monkeypatch.setattr("loopauth.browser.webbrowser.open", opened)

        SystemBrowserLauncher(background=False).open(URL)

        opened.assert_called_once_with(URL)
        popen.assert_not_called()

    def test_falls_back_to_platform_command(
        self, monkeypatch: pytest.MonkeyPatch, popen: MagicMock
    ) -> None:
        monkeypatch.setattr("loopauth.browser.webbrowser.open", lambda url: False)
        monkeypatch.setattr("loopauth.browser.sys.platform", "linux")

        SystemBrowserLauncher(background=False).open(URL)

        assert popen.call_args[0][0] == ["xdg-open", URL]

    def test_manual_fallback_when_nothing_works(
        self, monkeypatch: pytest.MonkeyPatch, popen: MagicMock
    ) -> None:
        def _raise(url: str) -> bool:
            raise webbrowser.Error("no browser")

        monkeypatch.setattr("loopauth.browser.webbrowser.open", _raise)
        popen.side_effect = FileNotFoundError("xdg-open")
        manual: list[str] = []

        SystemBrowserLauncher(on_manual=manual.append, background=False).open(URL)

        assert manual == [URL]

    def test_never_raises(self, monkeypatch: pytest.MonkeyPatch, popen: MagicMock) -> None:
        monkeypatch.setattr("loopauth.browser.webbrowser.open", lambda url: False)
        popen.side_effect = FileNotFoundError("xdg-open")

        def _broken(url: str) -> None:
            raise RuntimeError("callback bug")

        SystemBrowserLauncher(on_manual=_broken, background=False).open(URL)

    def test_background_launch_runs_in_thread(self, monkeypatch: pytest.MonkeyPatch) -> None:
        opened = threading.Event()
        callers: list[str] = []

        def _open(url: str) -> bool:
            callers.append(threading.current_thread().name)
            opened.set()
            return True

        monkeypatch.setattr("loopauth.browser.webbrowser.open", _open)
        SystemBrowserLauncher().open(URL)

        assert opened.wait(5)
        assert callers == ["loopauth-browser"]


class TestPlatformCommand:
    @pytest.mark.parametrize(
        ("platform", "expected"),
        [
            ("darwin", ["open", URL]),
            ("linux", ["xdg-open", URL]),
            ("freebsd13", ["xdg-open", URL]),
            ("win32", ["cmd", "/c", "start", URL.replace("&", "^&")]),
        ],
    )
    def test_commands(
        self, monkeypatch: pytest.MonkeyPatch, platform: str, expected: list[str]
    ) -> None:
        monkeypatch.setattr("loopauth.browser.sys.platform", platform)
        assert _platform_command(URL) == expected

    def test_unknown_platform(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("loopauth.browser.sys.platform", "plan9")
        assert _platform_command(URL) is None


class TestManualBrowserLauncher:
    def test_notifies(self) -> None:
        seen: list[str] = []
        ManualBrowserLauncher(seen.append).open(URL)
        assert seen == [URL]

    def test_swallows_notify_errors(self) -> None:
        def _broken(url: str) -> None:
            raise RuntimeError("closed stream")

        ManualBrowserLauncher(_broken).open(URL)
