"""Numeric process exit codes for the ``loopauth`` command line.

Each constant maps to a failure category and is referenced by the
corresponding :class:`~loopauth.exceptions.LoopauthError` subclass. Shell
wrappers can branch on the exit code without parsing stderr.

Example::

    $ loopauth login
    $ echo $?
    3   # EXIT_AUTHORIZATION_FAILED -- the browser callback was rejected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""Invalid arguments or an incomplete/invalid configuration."""

EXIT_AUTHORIZATION_FAILED = 3
"""The authorization attempt (browser redirect) did not yield a code."""

EXIT_TOKEN_FAILURE = 4
"""The token endpoint rejected the request or returned an unusable response."""

EXIT_CANCELLED = 130
"""The user interrupted the command (Ctrl-C)."""
