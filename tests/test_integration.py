"""Socket-level integration tests for the static video server."""

import errno
import random
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from server import HTTPServer

LARGE_SIZE = 3 * 1024 * 1024 + 17


def _build_tree(base: Path) -> tuple[Path, bytes]:
    root = base / "videos"
    (root / "series" / "s01").mkdir(parents=True)
    payload = random.Random(1234).randbytes(LARGE_SIZE)
    (root / "series" / "s01" / "pilot.mp4").write_bytes(payload)
    (root / "trailer.webm").write_bytes(b"trailer-bytes")
    (root / "empty.mkv").write_bytes(b"")
    (base / "passwd").write_text("root:x:0:0")
    return root, payload


def _start_server(root: Path, **kwargs: object) -> tuple[HTTPServer, threading.Thread]:
    server = HTTPServer(assets_root=root, host="127.0.0.1", port=0, **kwargs)
    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()

    deadline = time.time() + 3
    while server.port == 0 and time.time() < deadline:
        time.sleep(0.01)

    if server.port == 0:
        raise RuntimeError("Server did not bind to a port")
    return server, thread


def _stop_server(server: HTTPServer, thread: threading.Thread) -> None:
    server.stop()
    thread.join(timeout=3.0)


def _request(
    server: HTTPServer,
    target: str,
    *,
    method: str = "GET",
    headers: dict[str, str] | None = None,
) -> tuple[int, dict[str, str], bytes]:
    lines = [f"{method} {target} HTTP/1.1", "Host: localhost", "Connection: close"]
    for name, value in (headers or {}).items():
        lines.append(f"{name}: {value}")
    payload = ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")

    buffer = bytearray()
    with socket.create_connection((server.host, server.port), timeout=5.0) as client:
        client.sendall(payload)
        while True:
            chunk = client.recv(65536)
            if not chunk:
                break
            buffer.extend(chunk)
    return _parse_response(bytes(buffer))


def _parse_response(raw: bytes) -> tuple[int, dict[str, str], bytes]:
    head, body = raw.split(b"\r\n\r\n", 1)
    lines = head.decode("iso-8859-1").split("\r\n")
    status_code = int(lines[0].split(" ")[1])
    headers: dict[str, str] = {}
    for line in lines[1:]:
        key, value = line.split(": ", 1)
        headers[key.lower()] = value
    return status_code, headers, body


@pytest.fixture
def video_server(tmp_path: Path):
    root, payload = _build_tree(tmp_path)
    server, thread = _start_server(root)
    try:
        yield server, payload
    finally:
        _stop_server(server, thread)


def test_root_returns_top_level_index(video_server) -> None:
    server, _payload = video_server

    status, headers, body = _request(server, "/")

    assert status == 200
    assert headers["content-type"] == "text/html; charset=utf-8"
    assert body.count(b"<a href=") == 3
    assert b'href="/series/"' in body
    assert b">..</a>" not in body


def test_nested_index_is_reachable_by_navigation(video_server) -> None:
    server, _payload = video_server

    status, _headers, body = _request(server, "/series/s01/")

    assert status == 200
    assert body.count(b"<a href=") == 2
    assert b'href="/series/"' in body
    assert b'href="/series/s01/pilot.mp4"' in body


def test_full_file_round_trips_exact_bytes(video_server) -> None:
    server, payload = video_server

    status, headers, body = _request(server, "/series/s01/pilot.mp4")

    assert status == 200
    assert headers["accept-ranges"] == "bytes"
    assert headers["content-type"] == "video/mp4"
    assert int(headers["content-length"]) == len(payload)
    assert body == payload


def test_range_returns_exact_span(video_server) -> None:
    server, payload = video_server

    status, headers, body = _request(
        server,
        "/series/s01/pilot.mp4",
        headers={"Range": "bytes=0-99"},
    )

    assert status == 206
    assert headers["content-range"] == f"bytes 0-99/{len(payload)}"
    assert headers["content-length"] == "100"
    assert body == payload[:100]


def test_open_and_suffix_ranges(video_server) -> None:
    server, payload = video_server

    _status, _headers, tail = _request(
        server,
        "/series/s01/pilot.mp4",
        headers={"Range": f"bytes={len(payload) - 50}-"},
    )
    status, headers, suffix = _request(
        server,
        "/series/s01/pilot.mp4",
        headers={"Range": "bytes=-25"},
    )

    assert tail == payload[-50:]
    assert status == 206
    assert headers["content-range"] == f"bytes {len(payload) - 25}-{len(payload) - 1}/{len(payload)}"
    assert suffix == payload[-25:]


def test_range_starting_at_size_is_416(video_server) -> None:
    server, payload = video_server

    status, headers, _body = _request(
        server,
        "/series/s01/pilot.mp4",
        headers={"Range": f"bytes={len(payload)}-"},
    )

    assert status == 416
    assert headers["content-range"] == f"bytes */{len(payload)}"


def test_empty_file_serves_zero_bytes(video_server) -> None:
    server, _payload = video_server

    status, headers, body = _request(server, "/empty.mkv")

    assert status == 200
    assert headers["content-length"] == "0"
    assert body == b""


def test_missing_path_is_404(video_server) -> None:
    server, _payload = video_server

    status, _headers, _body = _request(server, "/series/s02/")

    assert status == 404


def test_double_slash_target_serves_the_named_file(tmp_path: Path) -> None:
    root, _payload = _build_tree(tmp_path)
    (root / "dir").mkdir()
    (root / "dir" / "a.mp4").write_bytes(b"AAAA")
    (root / "a.mp4").write_bytes(b"ROOT")
    server, thread = _start_server(root)
    try:
        status, _headers, body = _request(server, "//dir/a.mp4")
        missing_status, _missing_headers, _missing = _request(server, "//secret")
    finally:
        _stop_server(server, thread)

    assert status == 200
    assert body == b"AAAA"
    assert missing_status == 404


def test_unreadable_file_is_403_before_any_bytes(
    video_server,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    server, _payload = video_server
    real_open = Path.open

    def guarded_open(self: Path, *args, **kwargs):
        if self.name == "trailer.webm":
            raise PermissionError(errno.EACCES, "Permission denied")
        return real_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", guarded_open)

    status, headers, body = _request(server, "/trailer.webm")

    assert status == 403
    assert headers["content-length"] == str(len(body))
    assert body == b"Forbidden"


def test_request_body_is_rejected_with_413(video_server) -> None:
    server, _payload = video_server
    payload = (
        b"POST /trailer.webm HTTP/1.1\r\n"
        b"Host: localhost\r\n"
        b"Content-Length: 4\r\n"
        b"\r\n"
        b"data"
    )

    with socket.create_connection((server.host, server.port), timeout=2.0) as client:
        client.sendall(payload)
        response = client.recv(8192)

    assert response.startswith(b"HTTP/1.1 413 Payload Too Large")


@pytest.mark.parametrize(
    "target",
    [
        "/../passwd",
        "/../../../../etc/passwd",
        "/series/../../passwd",
        "/%2e%2e/passwd",
        "/%2E%2E%2Fpasswd",
        "/series/s01/..%2f..%2f..%2fpasswd",
        "/.%2e/passwd",
        "/..%5cpasswd",
        "/series/%00/../passwd",
    ],
)
def test_traversal_never_exposes_outside_files(video_server, target: str) -> None:
    server, _payload = video_server

    status, _headers, body = _request(server, target)

    assert status in (400, 403)
    assert b"root:x" not in body


def test_symlink_escape_is_forbidden(tmp_path: Path) -> None:
    root, _payload = _build_tree(tmp_path)
    (root / "escape").symlink_to(tmp_path)
    server, thread = _start_server(root)
    try:
        status, _headers, body = _request(server, "/escape/passwd")
        _index_status, _index_headers, index = _request(server, "/")
    finally:
        _stop_server(server, thread)

    assert status == 403
    assert b"root:x" not in body
    assert b"escape" not in index


def test_head_returns_length_without_body(video_server) -> None:
    server, payload = video_server

    status, headers, body = _request(server, "/series/s01/pilot.mp4", method="HEAD")

    assert status == 200
    assert headers["content-length"] == str(len(payload))
    assert body == b""


def test_delete_is_method_not_allowed(video_server) -> None:
    server, _payload = video_server

    status, headers, _body = _request(server, "/", method="DELETE")

    assert status == 405
    assert headers["allow"] == "GET, HEAD"


def test_malformed_request_returns_400(video_server) -> None:
    server, _payload = video_server

    with socket.create_connection((server.host, server.port), timeout=2.0) as client:
        client.sendall(b"BROKEN\r\n\r\n")
        response = client.recv(8192)

    assert response.startswith(b"HTTP/1.1 400 Bad Request")


def test_concurrent_overlapping_ranges_are_independent(video_server) -> None:
    server, payload = video_server
    spans = [(offset * 131_071, offset * 131_071 + 700_000) for offset in range(12)]

    def fetch(span: tuple[int, int]) -> tuple[tuple[int, int], int, bytes]:
        start, end = span
        status, _headers, body = _request(
            server,
            "/series/s01/pilot.mp4",
            headers={"Range": f"bytes={start}-{end}"},
        )
        return span, status, body

    with ThreadPoolExecutor(max_workers=12) as executor:
        results = list(executor.map(fetch, spans))

    for (start, end), status, body in results:
        assert status == 206
        assert body == payload[start : end + 1]


def test_chunked_fallback_without_sendfile(tmp_path: Path) -> None:
    root, payload = _build_tree(tmp_path)
    server, thread = _start_server(root, use_sendfile=False)
    try:
        status, _headers, body = _request(
            server,
            "/series/s01/pilot.mp4",
            headers={"Range": "bytes=1000-1999999"},
        )
    finally:
        _stop_server(server, thread)

    assert status == 206
    assert body == payload[1000:2_000_000]


def test_client_disconnect_mid_stream_does_not_affect_others(video_server) -> None:
    server, payload = video_server

    for _ in range(3):
        with socket.create_connection((server.host, server.port), timeout=2.0) as client:
            client.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, 4096)
            client.sendall(
                b"GET /series/s01/pilot.mp4 HTTP/1.1\r\n"
                b"Host: localhost\r\n"
                b"Connection: close\r\n"
                b"\r\n"
            )
            assert client.recv(1024).startswith(b"HTTP/1.1 200 OK")

    status, _headers, body = _request(server, "/series/s01/pilot.mp4")

    assert status == 200
    assert body == payload
