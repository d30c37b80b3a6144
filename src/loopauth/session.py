"""Authorization session: one client, one loopback redirect, one PKCE pair.

:class:`AuthorizationSession` orchestrates the Authorization Code + PKCE
flow (:rfc:`7636`, :rfc:`8252` loopback redirect):

1. :meth:`~AuthorizationSession.initialize` starts the redirect receiver,
   derives the redirect URI from its port, and generates the PKCE pair.
2. :meth:`~AuthorizationSession.begin_authorization` opens the authorize
   URL through the injected launcher, blocks for the single callback, and
   validates the returned state against this attempt's nonce.
3. :meth:`~AuthorizationSession.exchange_code` and
   :meth:`~AuthorizationSession.refresh` hand over to
   :class:`~loopauth.exchange.TokenExchange`.

Misuse (operations before ``initialize``, double initialization, two
concurrent attempts) raises :class:`~loopauth.exceptions.SessionStateError`.
Everything else is returned as a tagged result.

See Also:
    :mod:`loopauth.receiver` for the callback parsing rules.
"""

from __future__ import annotations

import logging
import secrets
import threading
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import quote, urlencode

import httpx

from loopauth.browser import BrowserLauncher, SystemBrowserLauncher
from loopauth.exceptions import CallbackError, SessionStateError
from loopauth.exchange import TokenExchange
from loopauth.models import AuthorizationResult, Credential, FlowError, OAuthSettings
from loopauth.pkce import CHALLENGE_METHOD, generate_challenge, generate_verifier
from loopauth.receiver import CallbackParams, LoopbackReceiver, RedirectReceiver

logger = logging.getLogger(__name__)


class AuthorizationSession:
    """Owns the state of the loopback authorization flow for one client.

    Only one authorization attempt may be in flight at a time: the state
    nonce and the PKCE pair are single-attempt values owned by the session.
    Run :meth:`begin_authorization` on a worker thread when a UI must stay
    responsive; :meth:`stop` may be called from another thread and makes a
    blocked attempt end with ``RECEIVER_STOPPED``.

    Args:
        settings: Endpoints, scope, loopback host and HTTP behaviour.
        receiver: Redirect receiver; defaults to a
            :class:`~loopauth.receiver.LoopbackReceiver` on
            ``settings.loopback_host``.
        launcher: Browser strategy; defaults to
            :class:`~loopauth.browser.SystemBrowserLauncher`.
        http_client: Optional :class:`httpx.Client` for the token exchange.
        clock: Time source for credential expiries.

    Example::

        with AuthorizationSession(settings) as session:
            session.initialize("my-cli", "/oauth/redirect")
            result = session.begin_authorization()
            credential = session.exchange_code(result)
    """

    def __init__(
        self,
        settings: OAuthSettings,
        receiver: Optional[RedirectReceiver] = None,
        launcher: Optional[BrowserLauncher] = None,
        http_client: Optional[httpx.Client] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings
        self._receiver = receiver or LoopbackReceiver(settings.loopback_host)
        self._launcher = launcher or SystemBrowserLauncher()
        self._http_client = http_client
        self._clock = clock

        self._client_id: Optional[str] = None
        self._redirect_uri: Optional[str] = None
        self._code_verifier: Optional[str] = None
        self._code_challenge: Optional[str] = None
        self._exchange: Optional[TokenExchange] = None
        self._state: Optional[str] = None
        self._initialized = False
        self._attempt_lock = threading.Lock()

    def __enter__(self) -> AuthorizationSession:
        return self

    def __exit__(self, *args: object) -> None:
        if self._initialized:
            self.stop()

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def redirect_uri(self) -> str:
        self._require_initialized()
        assert self._redirect_uri is not None
        return self._redirect_uri

    @property
    def code_challenge(self) -> str:
        self._require_initialized()
        assert self._code_challenge is not None
        return self._code_challenge

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def initialize(self, client_id: str, redirect_path: str) -> None:
        """Start the receiver and prepare the client identity and PKCE pair.

        Args:
            client_id: Public OAuth client identifier.
            redirect_path: Path of the redirect URI; a leading ``/`` is added
                when missing.

        Raises:
            SessionStateError: If the session was already initialized.
            OSError: If the loopback listener cannot be bound.
        """
        if self._initialized:
            raise SessionStateError("Session is already initialized")

        self._receiver.start()
        path = redirect_path if redirect_path.startswith("/") else "/" + redirect_path
        self._redirect_uri = f"http://{self._settings.loopback_host}:{self._receiver.port}{path}"
        self._client_id = client_id
        self._code_verifier = generate_verifier()
        self._code_challenge = generate_challenge(self._code_verifier)
        self._exchange = TokenExchange(
            self._settings.token_url,
            client_id,
            client=self._http_client,
            timeout=self._settings.timeout,
            max_retries=self._settings.max_retries,
            clock=self._clock,
        )
        self._initialized = True
        logger.debug("Session initialized with redirect URI %s", self._redirect_uri)

    def stop(self) -> None:
        """Stop the receiver and end the session.

        Raises:
            SessionStateError: If the session is not initialized.
        """
        self._require_initialized()
        self._initialized = False
        self._receiver.stop()
        if self._exchange is not None:
            self._exchange.close()

    # ------------------------------------------------------------------ #
    # Authorization
    # ------------------------------------------------------------------ #

    def authorization_url(self, state: str) -> str:
        """Build the authorize URL for an attempt identified by *state*."""
        self._require_initialized()
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "code_challenge": self._code_challenge,
            "code_challenge_method": CHALLENGE_METHOD,
            "state": state,
            "scope": self._settings.scope,
        }
        return f"{self._settings.authorize_url}?{urlencode(params, quote_via=quote)}"

    def begin_authorization(self) -> AuthorizationResult:
        """Run one authorization attempt and return its result.

        Generates a fresh state nonce, launches the browser, and blocks until
        the receiver delivers one callback.

        Returns:
            A success result carrying the authorization code, or a failure
            tagged with the receiver error, ``STATE_MISMATCH``,
            ``CODE_NOT_FOUND`` or ``UNEXPECTED``.

        Raises:
            SessionStateError: If the session is not initialized or another
                attempt is already in flight.
        """
        self._require_initialized()
        if not self._attempt_lock.acquire(blocking=False):
            raise SessionStateError("An authorization attempt is already in progress")
        try:
            self._state = secrets.token_hex(16)
            return self._run_attempt(self._state)
        except Exception:
            logger.exception("Authorization attempt failed unexpectedly")
            return AuthorizationResult.failure(FlowError.UNEXPECTED)
        finally:
            self._state = None
            self._attempt_lock.release()

    def _run_attempt(self, state: str) -> AuthorizationResult:
        self._launch(self.authorization_url(state))
        try:
            params = self._receiver.receive_once()
        except CallbackError as exc:
            logger.warning("Redirect callback rejected: %s", exc)
            return AuthorizationResult.failure(exc.kind, str(exc))
        return self._validate(params, state)

    def _launch(self, url: str) -> None:
        try:
            self._launcher.open(url)
        except Exception:
            logger.warning("Browser launcher raised; continuing to wait", exc_info=True)

    @staticmethod
    def _validate(params: CallbackParams, state: str) -> AuthorizationResult:
        if params.state != state:
            return AuthorizationResult.failure(FlowError.STATE_MISMATCH)
        if not params.code:
            if params.error:
                return AuthorizationResult.failure(
                    FlowError.CODE_NOT_FOUND,
                    f"Code not found (provider returned error: {params.error})",
                )
            return AuthorizationResult.failure(FlowError.CODE_NOT_FOUND)
        return AuthorizationResult.success(params.code)

    # ------------------------------------------------------------------ #
    # Tokens
    # ------------------------------------------------------------------ #

    def exchange_code(self, result: AuthorizationResult) -> Credential:
        """Exchange a successful authorization *result* for a credential."""
        self._require_initialized()
        assert self._exchange is not None
        assert self._redirect_uri is not None and self._code_verifier is not None
        return self._exchange.exchange_code(result, self._redirect_uri, self._code_verifier)

    def refresh(self, refresh_token: str) -> Credential:
        """Refresh using *refresh_token* (independent of any authorization code)."""
        self._require_initialized()
        assert self._exchange is not None
        return self._exchange.refresh(refresh_token)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise SessionStateError("Session is not initialized")
