"""Single-shot loopback receiver for the OAuth2 redirect.

The identity provider redirects the browser to
``http://127.0.0.1:{port}{path}?code=...&state=...``. This module accepts
that one request, extracts the query parameters, and answers with a fixed
completion page. It is *not* an HTTP server: the request line
is parsed literally, headers are drained and ignored, and no body is read.

The module exposes three layers:

1. :class:`RedirectReceiver` -- the abstract ``start`` / ``receive_once`` /
   ``stop`` capability the session depends on, so tests can substitute a fake.
2. :func:`read_callback` -- request parsing over any pair of binary streams.
3. :class:`LoopbackReceiver` -- the socket-backed implementation bound to an
   OS-assigned ephemeral port.

Query values are **not** percent-decoded. A provider that sends an encoded
``state`` or ``code`` will therefore not match; no encoding contract exists,
so the literal value is what gets compared and exchanged.
"""

from __future__ import annotations

import logging
import socket
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Optional

from loopauth.exceptions import CallbackError, SessionStateError
from loopauth.models import DEFAULT_MESSAGES, FlowError

logger = logging.getLogger(__name__)

_MAX_LINE = 65536
_MAX_HEADERS = 100
_CALLBACK_KEYS = ("code", "state", "error")

SUCCESS_PAGE = (
    "<html>"
    "<body style='font-family:sans-serif;'>"
    "<h1>Authorization Successful</h1>"
    "<p>You can close the browser window</p>"
    "</body>"
    "</html>"
)


def _response_bytes() -> bytes:
    body = SUCCESS_PAGE.encode("utf-8")
    head = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: text/html\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    return head.encode("ascii") + body


RESPONSE = _response_bytes()


@dataclass(frozen=True)
class CallbackParams:
    """Literal query values taken from the redirect (``None`` when absent)."""

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None


def _fail(kind: FlowError) -> CallbackError:
    return CallbackError(kind, DEFAULT_MESSAGES[kind])


def parse_query(query: str) -> CallbackParams:
    """Extract ``code``, ``state`` and ``error`` from a raw query string.

    Parameters are split on ``&`` and then on ``=``; a parameter is only
    considered when it splits into exactly a key and a value. When a key
    repeats, the first occurrence wins.

    Args:
        query: Everything after the ``?`` of the request target.

    Returns:
        The literal (undecoded) values found.
    """
    values: dict[str, str] = {}
    for param in query.split("&"):
        pair = param.split("=")
        if len(pair) != 2:
            continue
        key, value = pair
        if key in _CALLBACK_KEYS and key not in values:
            values[key] = value
    return CallbackParams(**values)


def _read_line(rfile: BinaryIO) -> Optional[bytes]:
    """Read one line, returning ``None`` on EOF, timeout, or I/O error."""
    try:
        line = rfile.readline(_MAX_LINE + 1)
    except OSError as exc:
        logger.debug("Callback read failed: %s", exc)
        return None
    return line or None


def _drain_headers(rfile: BinaryIO) -> None:
    for _ in range(_MAX_HEADERS):
        line = _read_line(rfile)
        if line is None or line in (b"\r\n", b"\n"):
            return


def _write_page(wfile: BinaryIO) -> None:
    try:
        wfile.write(RESPONSE)
        wfile.flush()
    except OSError as exc:
        # The browser may already have gone away; the parse outcome stands.
        logger.debug("Could not write callback page: %s", exc)


def read_callback(rfile: BinaryIO, wfile: BinaryIO) -> CallbackParams:
    """Parse one redirect request from *rfile* and answer on *wfile*.

    The fixed completion page is written for every request that got past the
    request line, including the malformed-line and missing-query failures, so
    the browser always shows a readable page. Nothing is written when the
    request line is unreadable or empty.

    Args:
        rfile: Binary stream positioned at the start of the request.
        wfile: Binary stream the response is written to.

    Returns:
        The literal callback parameters.

    Raises:
        CallbackError: With kind ``UNREADABLE_REQUEST``, ``EMPTY_REQUEST``,
            ``MALFORMED_REQUEST_LINE`` or ``MISSING_QUERY``.
    """
    raw = _read_line(rfile)
    if raw is None:
        raise _fail(FlowError.UNREADABLE_REQUEST)

    request_line = raw.decode("iso-8859-1").rstrip("\r\n")
    _drain_headers(rfile)
    if not request_line:
        raise _fail(FlowError.EMPTY_REQUEST)

    _write_page(wfile)

    if len(raw) > _MAX_LINE:
        raise _fail(FlowError.MALFORMED_REQUEST_LINE)
    parts = request_line.split(" ")
    if len(parts) < 2:
        raise _fail(FlowError.MALFORMED_REQUEST_LINE)

    target = parts[1]
    if "?" not in target:
        raise _fail(FlowError.MISSING_QUERY)

    return parse_query(target.split("?", 1)[1])


class RedirectReceiver(ABC):
    """Abstract single-shot receiver for the authorization redirect.

    Implementations must:

    1. Start listening in :meth:`start` and expose the chosen :attr:`port`,
       which becomes part of the advertised redirect URI.
    2. Consume exactly one callback per :meth:`receive_once` call.
    3. Make a :meth:`receive_once` that is blocked when :meth:`stop` is
       called fail with a ``RECEIVER_STOPPED`` :class:`CallbackError`
       rather than hang.
    """

    @property
    @abstractmethod
    def port(self) -> int:
        """The port the receiver listens on (valid after :meth:`start`)."""
        ...

    @abstractmethod
    def start(self) -> None:
        """Begin listening for the redirect."""
        ...

    @abstractmethod
    def receive_once(self) -> CallbackParams:
        """Block for one callback and return its parameters.

        Raises:
            CallbackError: If the request is unusable or the receiver stopped.
        """
        ...

    @abstractmethod
    def stop(self) -> None:
        """Release the listener. Safe to call more than once."""
        ...


class LoopbackReceiver(RedirectReceiver):
    """Socket-backed receiver bound to an ephemeral loopback port.

    ``accept`` waits in short slices of *poll_interval* seconds so that a
    concurrent :meth:`stop` is noticed promptly on every platform. Extra
    connections (browser retries, prefetches, favicon requests) stay queued in
    the listen backlog until the next :meth:`receive_once` or until the
    receiver is stopped.

    Args:
        host: Loopback address to bind to.
        backlog: Listen backlog size.
        read_timeout: Seconds to wait for the request bytes once a
            connection is accepted.
        poll_interval: Granularity of the stop check while accepting.

    Example::

        receiver = LoopbackReceiver()
        receiver.start()
        print(f"http://127.0.0.1:{receiver.port}/callback")
        params = receiver.receive_once()
        receiver.stop()
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        backlog: int = 5,
        read_timeout: Optional[float] = 10.0,
        poll_interval: float = 0.25,
    ) -> None:
        self._host = host
        self._backlog = backlog
        self._read_timeout = read_timeout
        self._poll_interval = poll_interval
        self._sock: Optional[socket.socket] = None
        self._port = 0
        self._stopped = threading.Event()

    @property
    def port(self) -> int:
        return self._port

    @property
    def is_listening(self) -> bool:
        return self._sock is not None

    def start(self) -> None:
        if self._sock is not None:
            raise SessionStateError("Redirect receiver is already listening")
        family = socket.AF_INET6 if ":" in self._host else socket.AF_INET
        sock = socket.create_server(
            (self._host, 0), family=family, backlog=self._backlog
        )
        sock.settimeout(self._poll_interval)
        self._sock = sock
        self._port = sock.getsockname()[1]
        self._stopped.clear()
        logger.debug("Redirect receiver listening on %s:%d", self._host, self._port)

    def receive_once(self) -> CallbackParams:
        conn = self._accept()
        with conn:
            conn.settimeout(self._read_timeout)
            with conn.makefile("rb") as rfile, conn.makefile("wb") as wfile:
                return read_callback(rfile, wfile)

    def stop(self) -> None:
        self._stopped.set()
        sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()
            logger.debug("Redirect receiver on port %d stopped", self._port)

    def _accept(self) -> socket.socket:
        while True:
            sock = self._sock
            if sock is None or self._stopped.is_set():
                raise _fail(FlowError.RECEIVER_STOPPED)
            try:
                conn, addr = sock.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self._stopped.is_set():
                    raise _fail(FlowError.RECEIVER_STOPPED) from exc
                raise
            logger.debug("Accepted callback connection from %s", addr[0])
            return conn
