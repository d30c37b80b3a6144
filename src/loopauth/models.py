"""Canonical Pydantic models shared across loopauth.

The models fall into two groups:

**Flow values** -- immutable results handed from the core to its callers:
    :class:`FlowError`, :class:`AuthorizationResult`, and :class:`Credential`.
    Both result types are frozen; a new value is produced for every attempt,
    exchange, or refresh and is never patched in place.

**Configuration** -- :class:`OAuthSettings`, serialised as JSON in the
user's config directory and in the optional project-local ``loopauth.json``.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Flow errors ---


class FlowError(str, enum.Enum):
    """Recoverable failures surfaced as data rather than raised.

    Callback-level kinds come from the redirect receiver, the token kinds from
    :class:`~loopauth.exchange.TokenExchange`. ``UNEXPECTED`` is produced by
    the catch-all boundaries for faults nobody anticipated.
    """

    UNREADABLE_REQUEST = "unreadable_request"
    EMPTY_REQUEST = "empty_request"
    MALFORMED_REQUEST_LINE = "malformed_request_line"
    MISSING_QUERY = "missing_query"
    STATE_MISMATCH = "state_mismatch"
    CODE_NOT_FOUND = "code_not_found"
    RECEIVER_STOPPED = "receiver_stopped"
    AUTHORIZATION_FAILED = "authorization_failed"
    NO_REFRESH_TOKEN = "no_refresh_token"
    TOKEN_REQUEST_FAILED = "token_request_failed"
    TOKEN_PARSE_FAILED = "token_parse_failed"
    UNEXPECTED = "unexpected"


DEFAULT_MESSAGES: dict[FlowError, str] = {
    FlowError.UNREADABLE_REQUEST: "Could not read request",
    FlowError.EMPTY_REQUEST: "Empty request",
    FlowError.MALFORMED_REQUEST_LINE: "Invalid request",
    FlowError.MISSING_QUERY: "No query parameters",
    FlowError.STATE_MISMATCH: "State mismatch",
    FlowError.CODE_NOT_FOUND: "Code not found",
    FlowError.RECEIVER_STOPPED: "Redirect receiver was stopped",
    FlowError.AUTHORIZATION_FAILED: "Cannot obtain tokens from an erroneous authorization result",
    FlowError.NO_REFRESH_TOKEN: "No refresh token",
    FlowError.TOKEN_REQUEST_FAILED: "Failed to obtain tokens",
    FlowError.TOKEN_PARSE_FAILED: "Failed to parse the token response",
    FlowError.UNEXPECTED: "Authorization failed unexpectedly",
}
"""Human-readable default message for each :class:`FlowError`."""


def utcnow() -> datetime:
    """Return the current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# --- Authorization result ---


class AuthorizationResult(BaseModel):
    """Outcome of a single authorization attempt.

    A successful result carries the literal authorization code taken from the
    redirect. A failed result has an empty ``code`` and a tagged ``error``.

    Example::

        result = session.begin_authorization()
        if result.is_error:
            print(result.error, result.error_message)
    """

    model_config = ConfigDict(frozen=True)

    code: str = ""
    error: Optional[FlowError] = None
    error_message: str = ""

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def success(cls, code: str) -> AuthorizationResult:
        return cls(code=code)

    @classmethod
    def failure(cls, kind: FlowError, message: Optional[str] = None) -> AuthorizationResult:
        return cls(error=kind, error_message=message or DEFAULT_MESSAGES[kind])


# --- Credential ---


class Credential(BaseModel):
    """Token record produced by a code exchange or a refresh.

    The default instance is the *empty* credential a caller holds before any
    exchange. Expiry timestamps are absolute, timezone-aware UTC values
    computed from the ``expires_in`` / ``refresh_token_expires_in`` second
    counts of the token response.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = ""
    refresh_token: str = ""
    expires_at: Optional[datetime] = None
    refresh_expires_at: Optional[datetime] = None
    error: Optional[FlowError] = None
    error_message: str = ""

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def is_empty(self) -> bool:
        """True for the default credential that no exchange has produced yet."""
        return not self.is_error and not self.access_token

    @classmethod
    def failure(cls, kind: FlowError, message: Optional[str] = None) -> Credential:
        return cls(error=kind, error_message=message or DEFAULT_MESSAGES[kind])

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Return True when the access token is absent or past its expiry."""
        if not self.access_token or self.expires_at is None:
            return True
        return (now or utcnow()) >= self.expires_at

    def can_refresh(self, now: Optional[datetime] = None) -> bool:
        """Return True while the refresh token may still be used.

        Refresh is permitted only when a refresh token is present and the
        current time is strictly before ``refresh_expires_at``.
        """
        if not self.refresh_token or self.refresh_expires_at is None:
            return False
        return (now or utcnow()) < self.refresh_expires_at


# --- Configuration ---


class OAuthSettings(BaseModel):
    """OAuth client settings persisted at ``~/.config/loopauth/config.json``.

    Loaded and merged by :func:`~loopauth.config.resolve_settings`. Every
    field has a default except ``client_id``, which must be supplied by one of
    the configuration layers before an authorization attempt.
    """

    model_config = ConfigDict(extra="forbid")

    client_id: Optional[str] = Field(
        default=None, description="Public OAuth client identifier"
    )
    redirect_path: str = Field(
        default="/oauth/redirect",
        description="Path component of the loopback redirect URI",
    )
    authorize_url: str = Field(
        default="https://oauth.iracing.com/oauth2/authorize",
        description="Authorization endpoint opened in the browser",
    )
    token_url: str = Field(
        default="https://oauth.iracing.com/oauth2/token",
        description="Token endpoint for code exchange and refresh",
    )
    scope: str = Field(default="iracing.auth", description="Requested scope string")
    loopback_host: str = Field(
        default="127.0.0.1", description="Interface the redirect receiver binds to"
    )
    timeout: Optional[float] = Field(
        default=30.0, description="Token request timeout in seconds (null disables)"
    )
    max_retries: int = Field(
        default=2, ge=0, description="Retries on network errors and 5xx responses"
    )
    callback_timeout: Optional[float] = Field(
        default=None,
        description="Seconds to wait for the browser callback before giving up",
    )
