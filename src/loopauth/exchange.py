"""Token endpoint client for the authorization-code and refresh grants.

:class:`TokenExchange` turns an :class:`~loopauth.models.AuthorizationResult`
or a refresh token into a :class:`~loopauth.models.Credential`. Both grants
share one response handler:

* non-2xx status -> ``TOKEN_REQUEST_FAILED``. The response body is only
  logged at debug level, never copied into the credential, so callers get a
  coarse message without provider detail.
* body that is not a JSON object -> ``TOKEN_PARSE_FAILED``.
* missing or non-string ``access_token`` -> ``TOKEN_PARSE_FAILED``.
* ``refresh_token`` defaults to ``""``; ``expires_in`` and
  ``refresh_token_expires_in`` default to ``0`` when absent or not
  integer-shaped, and an expiry too large to represent collapses to "now".
  These numeric defaults never fail the exchange.

Transport errors and 5xx responses are retried with exponential backoff
(1 s, 2 s, 4 s, ...) up to ``max_retries`` times.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import httpx

from loopauth.models import AuthorizationResult, Credential, FlowError, utcnow

logger = logging.getLogger(__name__)

_BODY_LOG_LIMIT = 500


def _int_field(payload: dict[str, Any], key: str) -> int:
    """Return ``payload[key]`` when it is integer-shaped, otherwise 0."""
    value = payload.get(key)
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return 0


def _expiry(now: datetime, seconds: int) -> datetime:
    """Return *now* plus *seconds*, or *now* when the sum is out of range."""
    try:
        return now + timedelta(seconds=seconds)
    except OverflowError:
        logger.debug("Ignoring out-of-range expiry of %d seconds", seconds)
        return now


class TokenExchange:
    """Perform OAuth2 token requests against a single token endpoint.

    Args:
        token_url: The token endpoint.
        client_id: Public client identifier sent with every grant.
        client: Optional pre-configured :class:`httpx.Client` (e.g. with a
            mock transport). An injected client is not closed by
            :meth:`close`.
        timeout: Per-request timeout in seconds; ``None`` disables it.
        max_retries: Retries on transport errors and 5xx responses.
        clock: Returns the current aware datetime; expiries are relative to it.
        sleep: Backoff sleep function.

    Example::

        with TokenExchange("https://idp.example.com/token", "my-cli") as tx:
            credential = tx.refresh(old.refresh_token)
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client: Optional[httpx.Client] = None,
        timeout: Optional[float] = 30.0,
        max_retries: int = 2,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._token_url = token_url
        self._client_id = client_id
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)
        self._timeout = timeout
        self._max_retries = max_retries
        self._clock = clock or utcnow
        self._sleep = sleep

    def __enter__(self) -> TokenExchange:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------ #
    # Grants
    # ------------------------------------------------------------------ #

    def exchange_code(
        self,
        result: AuthorizationResult,
        redirect_uri: str,
        code_verifier: str,
    ) -> Credential:
        """Exchange an authorization code for tokens.

        An error *result* short-circuits to an ``AUTHORIZATION_FAILED``
        credential without any network traffic.

        Args:
            result: Outcome of the authorization attempt.
            redirect_uri: The exact redirect URI used in the authorize request.
            code_verifier: The PKCE verifier whose challenge was sent.

        Returns:
            A populated credential or an error credential.
        """
        if result.is_error:
            return Credential.failure(FlowError.AUTHORIZATION_FAILED)
        return self._request_tokens(
            {
                "grant_type": "authorization_code",
                "client_id": self._client_id,
                "code": result.code,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
            }
        )

    def refresh(self, refresh_token: str) -> Credential:
        """Obtain a new credential with *refresh_token*.

        An empty refresh token short-circuits to ``NO_REFRESH_TOKEN``
        without any network traffic.
        """
        if not refresh_token:
            return Credential.failure(FlowError.NO_REFRESH_TOKEN)
        return self._request_tokens(
            {
                "grant_type": "refresh_token",
                "client_id": self._client_id,
                "refresh_token": refresh_token,
            }
        )

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _request_tokens(self, form: dict[str, str]) -> Credential:
        grant = form["grant_type"]
        try:
            response = self._post_with_retry(form)
            if response is None:
                return Credential.failure(FlowError.TOKEN_REQUEST_FAILED)
            return self._parse_response(response)
        except Exception:
            logger.exception("Unexpected failure during %s grant", grant)
            return Credential.failure(FlowError.UNEXPECTED)

    def _post_with_retry(self, form: dict[str, str]) -> Optional[httpx.Response]:
        """POST *form*, retrying transport errors and 5xx. ``None`` if unreachable."""
        for attempt in range(self._max_retries + 1):
            try:
                response = self._client.post(
                    self._token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                    timeout=self._timeout,
                )
            except httpx.TransportError as exc:
                if attempt < self._max_retries:
                    delay = 2**attempt
                    logger.debug(
                        "Token request error: %s, retrying in %ss (attempt %d/%d)",
                        exc, delay, attempt + 1, self._max_retries,
                    )
                    self._sleep(delay)
                    continue
                logger.warning(
                    "Token request failed after %d attempts: %s",
                    self._max_retries + 1, exc,
                )
                return None

            if response.status_code >= 500 and attempt < self._max_retries:
                delay = 2**attempt
                logger.debug(
                    "Token endpoint returned %d, retrying in %ss (attempt %d/%d)",
                    response.status_code, delay, attempt + 1, self._max_retries,
                )
                self._sleep(delay)
                continue
            return response
        return None  # pragma: no cover

    def _parse_response(self, response: httpx.Response) -> Credential:
        if not response.is_success:
            logger.debug(
                "Token endpoint returned %d: %s",
                response.status_code, response.text[:_BODY_LOG_LIMIT],
            )
            return Credential.failure(FlowError.TOKEN_REQUEST_FAILED)

        try:
            payload = response.json()
        except ValueError:
            return Credential.failure(FlowError.TOKEN_PARSE_FAILED)
        if not isinstance(payload, dict):
            return Credential.failure(FlowError.TOKEN_PARSE_FAILED)

        access_token = payload.get("access_token")
        if not isinstance(access_token, str):
            return Credential.failure(
                FlowError.TOKEN_PARSE_FAILED, "Failed to parse access token"
            )

        refresh_token = payload.get("refresh_token")
        if not isinstance(refresh_token, str):
            refresh_token = ""

        now = self._clock()
        return Credential(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_expiry(now, _int_field(payload, "expires_in")),
            refresh_expires_at=_expiry(now, _int_field(payload, "refresh_token_expires_in")),
        )
