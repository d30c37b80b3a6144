"""Exception hierarchy for loopauth.

Only two kinds of failure are ever *raised* by the library:

* precondition violations (:class:`SessionStateError`) -- programmer
  misuse such as calling an operation on a session that was never
  initialized. These are meant to fail loudly and are not retried.
* :class:`CallbackError` -- the internal signal a
  :class:`~loopauth.receiver.RedirectReceiver` uses to report a bad
  callback. The session converts it into a tagged
  :class:`~loopauth.models.AuthorizationResult` before it can escape.

Every other flow failure is returned as data (see
:class:`~loopauth.models.FlowError`). The CLI host raises
:class:`AuthorizationFailed` / :class:`TokenRequestError` to map failed
results onto process exit codes.

Subclass hierarchy::

    LoopauthError (exit 1)
    +-- ConfigError          (exit 2)
    +-- SessionStateError    (exit 1)
    +-- CallbackError        (exit 3)
    +-- AuthorizationFailed  (exit 3)
    +-- TokenRequestError    (exit 4)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loopauth.exit_codes import (
    EXIT_AUTHORIZATION_FAILED,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_TOKEN_FAILURE,
)

if TYPE_CHECKING:
    from loopauth.models import FlowError


class LoopauthError(Exception):
    """Base exception for all loopauth errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(LoopauthError):
    """Raised for configuration problems (invalid JSON, missing client id, bad credential sources)."""

    exit_code = EXIT_INVALID_USAGE


class SessionStateError(LoopauthError):
    """Raised when a session operation is invoked in the wrong lifecycle state.

    Examples are using a session before :meth:`initialize`, initializing it
    twice, or starting a second authorization attempt while one is in flight.
    """


class CallbackError(LoopauthError):
    """Raised by a redirect receiver when the browser callback is unusable.

    Args:
        kind: The :class:`~loopauth.models.FlowError` describing the failure.
        message: Human-readable description.
    """

    exit_code = EXIT_AUTHORIZATION_FAILED

    def __init__(self, kind: FlowError, message: str):
        super().__init__(message)
        self.kind = kind


class AuthorizationFailed(LoopauthError):
    """Raised by the CLI when an authorization attempt returns an error result."""

    exit_code = EXIT_AUTHORIZATION_FAILED


class TokenRequestError(LoopauthError):
    """Raised by the CLI when an exchange or refresh returns an error credential."""

    exit_code = EXIT_TOKEN_FAILURE
