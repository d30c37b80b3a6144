"""Login commands -- run the loopback authorization flow from the terminal.

Provides three commands:

* ``loopauth login`` -- one authorization attempt followed by the code
  exchange.
* ``loopauth refresh`` -- a refresh grant using a refresh token read from a
  credential source (``env:VAR``, ``file:/path``, ``prompt``).
* ``loopauth console`` -- a small prompt loop that keeps the credential in
  memory and lets the user authorize, refresh, and inspect it repeatedly.

Each authorization attempt runs on a worker thread while the main thread
shows a spinner. Interrupting the command stops the session, which makes the
blocked receiver give up.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import NoReturn, Optional

import typer

from loopauth.browser import BrowserLauncher, ManualBrowserLauncher, SystemBrowserLauncher
from loopauth.credentials import CredentialHolder
from loopauth.exceptions import (
    AuthorizationFailed,
    ConfigError,
    LoopauthError,
    SessionStateError,
    TokenRequestError,
)
from loopauth.models import AuthorizationResult, Credential, OAuthSettings
from loopauth.output import OutputManager, get_output
from loopauth.session import AuthorizationSession


def _fail(exc: LoopauthError) -> NoReturn:
    """Print *exc* and exit with its exit code."""
    get_output().error(str(exc))
    raise typer.Exit(code=exc.exit_code)


def _resolve(**overrides: object) -> OAuthSettings:
    from loopauth.config import resolve_settings

    settings = resolve_settings(overrides)
    if not settings.client_id:
        raise ConfigError(
            "No client_id configured. Set one with "
            "'loopauth config set client_id <id>' or --client-id."
        )
    return settings


def _make_launcher(output: OutputManager, no_browser: bool) -> BrowserLauncher:
    def _manual(url: str) -> None:
        output.warning("Could not open a browser. Please open this URL manually:")
        output.show_url(url)

    def _print_only(url: str) -> None:
        output.info("Open this URL in your browser to continue:")
        output.show_url(url)

    if no_browser:
        return ManualBrowserLauncher(_print_only)
    return SystemBrowserLauncher(on_manual=_manual)


def _stop_quietly(session: AuthorizationSession) -> None:
    try:
        session.stop()
    except SessionStateError:
        pass  # already stopped


def _authorize(
    session: AuthorizationSession,
    output: OutputManager,
    callback_timeout: Optional[float] = None,
) -> AuthorizationResult:
    """Run one attempt on a worker thread, stopping the session on timeout or interrupt."""
    timer: Optional[threading.Timer] = None
    if callback_timeout:
        timer = threading.Timer(callback_timeout, _stop_quietly, args=(session,))
        timer.daemon = True
        timer.start()
    try:
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="loopauth-auth") as pool:
            future = pool.submit(session.begin_authorization)
            try:
                with output.status("Waiting for the browser redirect..."):
                    return future.result()
            except BaseException:
                _stop_quietly(session)
                raise
    finally:
        if timer is not None:
            timer.cancel()


def _login_once(
    session: AuthorizationSession,
    output: OutputManager,
    callback_timeout: Optional[float] = None,
) -> Credential:
    """Authorize and exchange; raises on either failure."""
    output.info("Opening browser for authorization...")
    result = _authorize(session, output, callback_timeout)
    if result.is_error:
        raise AuthorizationFailed(f"Authorization failed: {result.error_message}")
    output.print_authorization(result)

    with output.status("Exchanging authorization code..."):
        credential = session.exchange_code(result)
    if credential.is_error:
        raise TokenRequestError(f"Token exchange failed: {credential.error_message}")
    return credential


def _initialize(session: AuthorizationSession, settings: OAuthSettings) -> None:
    try:
        assert settings.client_id is not None
        session.initialize(settings.client_id, settings.redirect_path)
    except OSError as exc:
        raise LoopauthError(f"Cannot start the redirect listener: {exc}") from exc
    get_output().debug(f"Redirect URI: {session.redirect_uri}")


def _start_session(settings: OAuthSettings, launcher: BrowserLauncher) -> AuthorizationSession:
    session = AuthorizationSession(settings, launcher=launcher)
    _initialize(session, settings)
    return session


def login_command(
    client_id: Optional[str] = typer.Option(
        None, "--client-id", "-c", help="OAuth client id (overrides config)."
    ),
    redirect_path: Optional[str] = typer.Option(
        None, "--redirect-path", help="Redirect URI path (default /oauth/redirect)."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the authorization URL instead of opening it."
    ),
    callback_timeout: Optional[float] = typer.Option(
        None, "--callback-timeout", help="Seconds to wait for the browser redirect."
    ),
    reveal: bool = typer.Option(
        False, "--reveal", help="Print full tokens instead of masked ones."
    ),
) -> None:
    """Authorize in the browser and exchange the code for tokens.

    Example::

        loopauth login --client-id my-desktop-app
        loopauth --json login --reveal
    """
    output = get_output()
    try:
        settings = _resolve(
            client_id=client_id,
            redirect_path=redirect_path,
            callback_timeout=callback_timeout,
        )
        with _start_session(settings, _make_launcher(output, no_browser)) as session:
            credential = _login_once(session, output, settings.callback_timeout)
    except LoopauthError as exc:
        _fail(exc)

    output.success("Access token obtained!")
    output.print_credential(credential, reveal=reveal)


def refresh_command(
    client_id: Optional[str] = typer.Option(
        None, "--client-id", "-c", help="OAuth client id (overrides config)."
    ),
    refresh_token_source: str = typer.Option(
        "env:LOOPAUTH_REFRESH_TOKEN",
        "--refresh-token-source",
        "-s",
        help="Where to read the refresh token: env:VAR, file:/path, prompt.",
    ),
    reveal: bool = typer.Option(
        False, "--reveal", help="Print full tokens instead of masked ones."
    ),
) -> None:
    """Exchange a refresh token for a new credential.

    Example::

        LOOPAUTH_REFRESH_TOKEN=... loopauth refresh
        loopauth refresh --refresh-token-source file:~/.secrets/refresh
    """
    from loopauth.config import resolve_credential
    from loopauth.exchange import TokenExchange

    output = get_output()
    try:
        settings = _resolve(client_id=client_id)
        refresh_token = resolve_credential(refresh_token_source)
        assert settings.client_id is not None
        with TokenExchange(
            settings.token_url,
            settings.client_id,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
        ) as exchange:
            with output.status("Refreshing the access token..."):
                credential = exchange.refresh(refresh_token.strip())
        if credential.is_error:
            raise TokenRequestError(f"Token refresh failed: {credential.error_message}")
    except LoopauthError as exc:
        _fail(exc)

    output.success("Access token refreshed!")
    output.print_credential(credential, reveal=reveal)


_CONSOLE_PROMPT = "[a]uthorize, [r]efresh, [s]how, [q]uit"


def console_command(
    client_id: Optional[str] = typer.Option(
        None, "--client-id", "-c", help="OAuth client id (overrides config)."
    ),
    redirect_path: Optional[str] = typer.Option(
        None, "--redirect-path", help="Redirect URI path (default /oauth/redirect)."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the authorization URL instead of opening it."
    ),
    callback_timeout: Optional[float] = typer.Option(
        None, "--callback-timeout", help="Seconds to wait for each browser redirect."
    ),
    reveal: bool = typer.Option(
        False, "--reveal", help="Print full tokens instead of masked ones."
    ),
) -> None:
    """Interactive loop: authorize, refresh and inspect an in-memory credential.

    The credential lives only as long as the command; nothing is written to
    disk. Refresh is refused once the refresh token has expired. When an
    attempt runs out of callback time the listener is restarted on a new
    port for the next attempt.
    """
    output = get_output()
    holder = CredentialHolder()
    try:
        settings = _resolve(
            client_id=client_id,
            redirect_path=redirect_path,
            callback_timeout=callback_timeout,
        )
        session = _start_session(settings, _make_launcher(output, no_browser))
    except LoopauthError as exc:
        _fail(exc)

    with session:
        while True:
            choice = typer.prompt(_CONSOLE_PROMPT, default="a").strip().lower()[:1]
            if choice == "q":
                break
            if not session.is_initialized:
                # a callback timeout stops the whole session
                _initialize(session, settings)
            try:
                if choice == "a":
                    holder.publish(_login_once(session, output, settings.callback_timeout))
                    output.success("Access token obtained!")
                elif choice == "r":
                    _console_refresh(session, holder, output)
                elif choice == "s":
                    current = holder.get()
                    if current.is_empty:
                        output.info("No credential yet. Authorize first.")
                    else:
                        output.print_credential(current, reveal=reveal)
                else:
                    output.warning(f"Unknown choice: {choice!r}")
            except (AuthorizationFailed, TokenRequestError) as exc:
                output.error(str(exc))


def _console_refresh(
    session: AuthorizationSession,
    holder: CredentialHolder,
    output: OutputManager,
) -> None:
    current = holder.get()
    if not current.can_refresh():
        if current.refresh_token and current.refresh_expires_at is not None:
            output.error(
                "Refresh token expired. Was valid until "
                f"{current.refresh_expires_at.astimezone():%H:%M:%S}."
            )
        else:
            output.error("No refresh token available. Authorize first.")
        return
    with output.status("Refreshing the access token..."):
        credential = session.refresh(current.refresh_token)
    if credential.is_error:
        raise TokenRequestError(f"Token refresh failed: {credential.error_message}")
    holder.publish(credential)
    output.success("Access token refreshed!")
