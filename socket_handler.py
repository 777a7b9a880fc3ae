"""Low-level socket read/write utilities."""

from __future__ import annotations

import socket

from config import (
    BUFFER_SIZE,
    ENABLE_SENDFILE,
    MAX_HEADER_BYTES,
    MAX_REQUEST_BYTES,
    READ_CHUNK_SIZE,
    WRITE_CHUNK_SIZE,
)
from response import FileSpan, HTTPResponse, iter_file_span, prepare_response


class HTTPReadError(Exception):
    """Raised when a client request cannot be safely read from the socket."""


class MalformedRequestError(HTTPReadError):
    """Raised when socket bytes do not form a complete HTTP request."""


class HeaderTooLargeError(HTTPReadError):
    """Raised when HTTP headers exceed configured maximum size."""


class SocketTimeoutError(HTTPReadError):
    """Raised when a client times out while sending request bytes."""


class TruncatedBodyError(Exception):
    """Raised when a file shrank while its declared length was being sent."""


def find_request_head_end(buffer: bytes) -> int | None:
    """Return the index just past the request head, or None if it is incomplete.

    Request bodies are never read here; any bytes after the head stay in the
    buffer and are rejected by the request parser.
    """
    if len(buffer) > MAX_REQUEST_BYTES:
        raise HeaderTooLargeError("Request exceeded MAX_REQUEST_BYTES")

    header_end_index = buffer.find(b"\r\n\r\n")
    if header_end_index == -1:
        if len(buffer) > MAX_HEADER_BYTES:
            raise HeaderTooLargeError("Headers exceeded MAX_HEADER_BYTES")
        return None

    head_length = header_end_index + 4
    if head_length > MAX_HEADER_BYTES:
        raise HeaderTooLargeError("Headers exceeded MAX_HEADER_BYTES")
    return head_length


def read_http_request_message(
    client_socket: socket.socket,
    initial_buffer: bytes = b"",
) -> tuple[bytes, bytes]:
    """Read one HTTP/1.1 request head and return (head_bytes, leftover_bytes)."""
    buffer = bytearray(initial_buffer)

    while True:
        head_length = find_request_head_end(bytes(buffer))
        if head_length is not None:
            return bytes(buffer[:head_length]), bytes(buffer[head_length:])

        try:
            chunk = client_socket.recv(max(BUFFER_SIZE, READ_CHUNK_SIZE))
        except socket.timeout as exc:
            raise SocketTimeoutError("Timed out waiting for request bytes") from exc

        if not chunk:
            if not buffer:
                return b"", b""
            raise MalformedRequestError("Connection closed before request completed")

        buffer.extend(chunk)


def _write_file_span(
    client_socket: socket.socket,
    span: FileSpan,
    *,
    write_chunk_size: int,
    use_sendfile: bool,
) -> int:
    if span.length <= 0:
        span.close()
        return 0

    if use_sendfile:
        with span.open() as file_obj:
            return client_socket.sendfile(file_obj, offset=span.start, count=span.length)

    bytes_sent = 0
    for chunk in iter_file_span(span, chunk_size=write_chunk_size):
        client_socket.sendall(chunk)
        bytes_sent += len(chunk)
    return bytes_sent


def write_http_response_message(
    client_socket: socket.socket,
    response: HTTPResponse,
    *,
    write_chunk_size: int = WRITE_CHUNK_SIZE,
    use_sendfile: bool = ENABLE_SENDFILE,
) -> int:
    """Write an HTTPResponse, streaming file spans without buffering them whole.

    A client that disconnects mid-transfer surfaces as ``OSError``; the file
    handle is closed before the error propagates.
    """
    try:
        prepared = prepare_response(response)
        client_socket.sendall(prepared.head)
        bytes_sent = len(prepared.head)

        if prepared.body is not None:
            if prepared.body:
                client_socket.sendall(prepared.body)
                bytes_sent += len(prepared.body)
            return bytes_sent

        if prepared.file_span is not None:
            span = prepared.file_span
            body_sent = _write_file_span(
                client_socket,
                span,
                write_chunk_size=write_chunk_size,
                use_sendfile=use_sendfile,
            )
            bytes_sent += body_sent
            if body_sent < span.length:
                raise TruncatedBodyError(
                    f"Sent {body_sent} of {span.length} bytes from {span.path}"
                )

        return bytes_sent
    finally:
        response.close()
