"""Tests for loopauth.receiver -- query parsing, request handling, loopback socket."""

from __future__ import annotations

import io
import socket
import threading
import time
from typing import Optional

import pytest

from loopauth.exceptions import CallbackError, SessionStateError
from loopauth.models import FlowError
from loopauth.receiver import (
    RESPONSE,
    SUCCESS_PAGE,
    CallbackParams,
    LoopbackReceiver,
    parse_query,
    read_callback,
)


def _run(raw: bytes) -> tuple[Optional[CallbackParams], Optional[CallbackError], bytes]:
    """Feed *raw* to read_callback and return (params, error, written bytes)."""
    wfile = io.BytesIO()
    try:
        params = read_callback(io.BytesIO(raw), wfile)
    except CallbackError as exc:
        return None, exc, wfile.getvalue()
    return params, None, wfile.getvalue()


def _request(target: str) -> bytes:
    return (
        f"GET {target} HTTP/1.1\r\n"
        "Host: 127.0.0.1\r\n"
        "User-Agent: test\r\n"
        "\r\n"
    ).encode("ascii")


# ---------------------------------------------------------------------------
# parse_query
# ---------------------------------------------------------------------------


class TestParseQuery:
    def test_code_and_state(self) -> None:
        params = parse_query("code=abc&state=xyz")
        assert params == CallbackParams(code="abc", state="xyz")

    def test_param_with_two_equals_is_ignored(self) -> None:
        params = parse_query("code=a=b&state=s")
        assert params.code is None
        assert params.state == "s"

    def test_param_without_equals_is_ignored(self) -> None:
        params = parse_query("code&state=s")
        assert params.code is None

    def test_first_occurrence_wins(self) -> None:
        params = parse_query("state=first&code=c&state=second")
        assert params.state == "first"

    def test_values_are_not_percent_decoded(self) -> None:
        params = parse_query("code=a%2Fb&state=x+y")
        assert params.code == "a%2Fb"
        assert params.state == "x+y"

    def test_unrelated_keys_ignored(self) -> None:
        params = parse_query("session_state=zzz&foo=bar")
        assert params == CallbackParams()

    def test_error_param_captured(self) -> None:
        params = parse_query("error=access_denied&state=s")
        assert params.error == "access_denied"
        assert params.code is None

    def test_empty_value_kept(self) -> None:
        assert parse_query("code=&state=s").code == ""


# ---------------------------------------------------------------------------
# read_callback
# ---------------------------------------------------------------------------


class TestReadCallback:
    def test_valid_redirect(self) -> None:
        params, err, written = _run(_request("/oauth/redirect?code=abc&state=xyz"))
        assert err is None
        assert params == CallbackParams(code="abc", state="xyz")
        assert written == RESPONSE

    def test_response_is_fixed_page(self) -> None:
        _, _, written = _run(_request("/oauth/redirect?code=abc&state=xyz"))
        assert written.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"Content-Type: text/html\r\n" in written
        assert written.endswith(SUCCESS_PAGE.encode("utf-8"))

    def test_unreadable_when_stream_empty(self) -> None:
        params, err, written = _run(b"")
        assert params is None
        assert err is not None and err.kind == FlowError.UNREADABLE_REQUEST
        assert written == b""

    def test_empty_request_line(self) -> None:
        _, err, written = _run(b"\r\n\r\n")
        assert err is not None and err.kind == FlowError.EMPTY_REQUEST
        assert str(err) == "Empty request"
        assert written == b""

    def test_single_token_line_is_malformed(self) -> None:
        _, err, written = _run(b"GARBAGE\r\n\r\n")
        assert err is not None and err.kind == FlowError.MALFORMED_REQUEST_LINE
        assert str(err) == "Invalid request"
        assert written == RESPONSE

    def test_target_without_query(self) -> None:
        _, err, written = _run(_request("/oauth/redirect"))
        assert err is not None and err.kind == FlowError.MISSING_QUERY
        assert str(err) == "No query parameters"
        assert written == RESPONSE

    def test_oversized_request_line_is_malformed(self) -> None:
        raw = b"GET /cb?code=" + b"a" * 70000 + b" HTTP/1.1\r\n\r\n"
        _, err, _ = _run(raw)
        assert err is not None and err.kind == FlowError.MALFORMED_REQUEST_LINE

    def test_bare_newlines_accepted(self) -> None:
        params, err, _ = _run(b"GET /cb?code=c&state=s HTTP/1.1\nHost: x\n\n")
        assert err is None
        assert params == CallbackParams(code="c", state="s")

    def test_request_without_headers(self) -> None:
        params, err, _ = _run(b"GET /cb?code=c&state=s HTTP/1.1\r\n")
        assert err is None
        assert params is not None and params.code == "c"

    def test_write_failure_does_not_change_outcome(self) -> None:
        class _Broken(io.BytesIO):
            def write(self, data: bytes) -> int:  # type: ignore[override]
                raise BrokenPipeError("browser went away")

        params = read_callback(io.BytesIO(_request("/cb?code=c&state=s")), _Broken())
        assert params.code == "c"


# ---------------------------------------------------------------------------
# LoopbackReceiver (real sockets)
# ---------------------------------------------------------------------------


@pytest.fixture
def receiver() -> LoopbackReceiver:
    recv = LoopbackReceiver(read_timeout=5.0, poll_interval=0.05)
    recv.start()
    yield recv
    recv.stop()


def _recv_all(sock: socket.socket) -> bytes:
    chunks = []
    while True:
        data = sock.recv(4096)
        if not data:
            return b"".join(chunks)
        chunks.append(data)


class TestLoopbackReceiver:
    def test_binds_ephemeral_port(self, receiver: LoopbackReceiver) -> None:
        assert receiver.is_listening
        assert 0 < receiver.port < 65536

    def test_receives_one_redirect(self, receiver: LoopbackReceiver) -> None:
        with socket.create_connection(("127.0.0.1", receiver.port), timeout=5) as client:
            client.sendall(_request("/oauth/redirect?code=abc&state=xyz"))
            params = receiver.receive_once()
            response = _recv_all(client)

        assert params == CallbackParams(code="abc", state="xyz")
        assert response == RESPONSE

    def test_second_start_raises(self, receiver: LoopbackReceiver) -> None:
        with pytest.raises(SessionStateError):
            receiver.start()

    def test_stop_unblocks_pending_receive(self, receiver: LoopbackReceiver) -> None:
        outcome: dict[str, object] = {}

        def _wait() -> None:
            try:
                outcome["params"] = receiver.receive_once()
            except CallbackError as exc:
                outcome["error"] = exc

        thread = threading.Thread(target=_wait)
        thread.start()
        time.sleep(0.2)
        receiver.stop()
        thread.join(timeout=5)

        assert not thread.is_alive()
        err = outcome.get("error")
        assert isinstance(err, CallbackError)
        assert err.kind == FlowError.RECEIVER_STOPPED

    def test_receive_after_stop_fails_fast(self, receiver: LoopbackReceiver) -> None:
        receiver.stop()
        assert not receiver.is_listening
        with pytest.raises(CallbackError) as exc_info:
            receiver.receive_once()
        assert exc_info.value.kind == FlowError.RECEIVER_STOPPED

    def test_stop_is_idempotent(self, receiver: LoopbackReceiver) -> None:
        receiver.stop()
        receiver.stop()

    def test_restart_after_stop(self, receiver: LoopbackReceiver) -> None:
        receiver.stop()
        receiver.start()
        assert receiver.is_listening
