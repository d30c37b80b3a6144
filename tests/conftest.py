"""Shared test fixtures for loopauth.

Provides isolated config environments, output state management, scripted
redirect receivers and browser launchers, and token endpoint helpers.
These fixtures are automatically discovered by pytest and available to
all test modules without explicit imports.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Callable, Optional, Union

import httpx
import pytest

from loopauth.browser import BrowserLauncher
from loopauth.config import ENV_OVERRIDES
from loopauth.exceptions import CallbackError
from loopauth.models import DEFAULT_MESSAGES, FlowError, OAuthSettings
from loopauth.output import OutputFormat, OutputManager, reset_output, set_output
from loopauth.receiver import CallbackParams, RedirectReceiver


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    Resetting forces a fresh manager to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path,
    forces the XDG layout, clears all LOOPAUTH_* environment variables and
    changes the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("loopauth.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in [*ENV_OVERRIDES, "LOOPAUTH_REFRESH_TOKEN"]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Flow doubles
# ---------------------------------------------------------------------------


class FakeReceiver(RedirectReceiver):
    """Scripted receiver: each ``receive_once`` pops the next outcome.

    An outcome is either :class:`CallbackParams`, a :class:`FlowError`
    (raised as a :class:`CallbackError`), or a callable taking the state
    nonce the session generated and returning params.
    """

    def __init__(self, port: int = 49152) -> None:
        self._port = port
        self.outcomes: list[Any] = []
        self.started = 0
        self.stopped = 0
        self.launched_url: Optional[str] = None

    @property
    def port(self) -> int:
        return self._port

    def start(self) -> None:
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def receive_once(self) -> CallbackParams:
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, FlowError):
            raise CallbackError(outcome, DEFAULT_MESSAGES[outcome])
        if callable(outcome):
            return outcome(_state_from(self.launched_url))
        return outcome


def _state_from(url: Optional[str]) -> str:
    assert url is not None, "launcher was never called"
    query = url.split("?", 1)[1]
    return dict(p.split("=", 1) for p in query.split("&"))["state"]


class RecordingLauncher(BrowserLauncher):
    """Launcher that records URLs and forwards them to a :class:`FakeReceiver`."""

    def __init__(self, receiver: Optional[FakeReceiver] = None) -> None:
        self.urls: list[str] = []
        self._receiver = receiver

    def open(self, url: str) -> None:
        self.urls.append(url)
        if self._receiver is not None:
            self._receiver.launched_url = url


def _echo_state(code: str = "auth-code-123") -> Callable[[str], CallbackParams]:
    """Outcome that answers the redirect with *code* and the session's own state."""
    return lambda state: CallbackParams(code=code, state=state)


@pytest.fixture
def echo_state() -> Callable[..., Callable[[str], CallbackParams]]:
    """Factory for receiver outcomes that echo the session state back."""
    return _echo_state


@pytest.fixture
def fake_receiver() -> FakeReceiver:
    return FakeReceiver()


@pytest.fixture
def launcher(fake_receiver: FakeReceiver) -> RecordingLauncher:
    return RecordingLauncher(fake_receiver)


@pytest.fixture
def settings() -> OAuthSettings:
    return OAuthSettings(
        client_id="test-client",
        authorize_url="https://idp.example.com/oauth2/authorize",
        token_url="https://idp.example.com/oauth2/token",
        scope="openid profile",
    )


# ---------------------------------------------------------------------------
# Token endpoint helpers
# ---------------------------------------------------------------------------


def _token_payload(
    access_token: str = "access-abc",
    refresh_token: Optional[str] = "refresh-xyz",
    expires_in: Any = 600,
    refresh_token_expires_in: Any = 3600,
) -> dict[str, Any]:
    """Build a token endpoint JSON body."""
    data: dict[str, Any] = {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": expires_in,
        "refresh_token_expires_in": refresh_token_expires_in,
    }
    if refresh_token is not None:
        data["refresh_token"] = refresh_token
    return data


class TokenEndpoint:
    """Scripted token endpoint backed by :class:`httpx.MockTransport`.

    Each request pops the next scripted reply: a JSON-able dict (200), an
    ``(status, body)`` tuple, or an exception instance to raise. The last
    reply repeats once the script runs out. Requests are recorded with
    their decoded form bodies.
    """

    def __init__(self, *replies: Union[dict[str, Any], tuple[int, Any], Exception]) -> None:
        self._replies = list(replies) or [_token_payload()]
        self.requests: list[httpx.Request] = []
        self._lock = threading.Lock()

    def reply_with(self, *replies: Union[dict[str, Any], tuple[int, Any], Exception]) -> None:
        """Replace the remaining script."""
        with self._lock:
            self._replies = list(replies)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def form(self, index: int = -1) -> dict[str, str]:
        body = self.requests[index].content.decode("ascii")
        return dict(httpx.QueryParams(body))

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, tuple):
            status, body = reply
        else:
            status, body = 200, reply
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=str(body))

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def token_payload() -> Callable[..., dict[str, Any]]:
    """Factory for token endpoint JSON bodies."""
    return _token_payload


@pytest.fixture
def token_endpoint() -> Callable[..., TokenEndpoint]:
    """Factory for scripted token endpoints: ``token_endpoint(reply, ...)``."""
    return TokenEndpoint
