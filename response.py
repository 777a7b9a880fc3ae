"""HTTP response model and serializer."""

from collections.abc import Iterator
from dataclasses import dataclass, field
from email.utils import formatdate
from pathlib import Path
from typing import BinaryIO

from config import SERVER_NAME, WRITE_CHUNK_SIZE

REASON_PHRASES: dict[int, str] = {
    200: "OK",
    206: "Partial Content",
    304: "Not Modified",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    408: "Request Timeout",
    413: "Payload Too Large",
    414: "URI Too Long",
    416: "Range Not Satisfiable",
    431: "Request Header Fields Too Large",
    500: "Internal Server Error",
    501: "Not Implemented",
    503: "Service Unavailable",
    505: "HTTP Version Not Supported",
}


@dataclass(slots=True, frozen=True)
class FileSpan:
    """A byte window of a file on disk, read lazily when the response is written.

    ``file_obj`` is a handle the responder already opened. The span then owns
    it and it is closed once the span has been written or discarded. Without
    a handle the file is opened by path on each iteration.
    """

    path: Path
    start: int
    length: int
    file_obj: BinaryIO | None = None

    def open(self) -> BinaryIO:
        if self.file_obj is not None:
            return self.file_obj
        return self.path.open("rb")

    def close(self) -> None:
        if self.file_obj is not None:
            self.file_obj.close()


def iter_file_span(span: FileSpan, chunk_size: int = WRITE_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield the bytes of ``span`` in chunks, never more than ``span.length``."""
    remaining = span.length
    with span.open() as file_obj:
        file_obj.seek(span.start)
        while remaining > 0:
            chunk = file_obj.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


@dataclass(slots=True)
class PreparedResponse:
    head: bytes
    body: bytes | None = None
    file_span: FileSpan | None = None


@dataclass(slots=True)
class HTTPResponse:
    status_code: int
    reason_phrase: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | str = b""
    file_span: FileSpan | None = None
    should_close: bool = False
    content_length_override: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        if self.file_span is not None and self.body:
            raise ValueError("Response cannot set both body and file_span")

    def close(self) -> None:
        """Release the file handle of a span that will not be written."""
        if self.file_span is not None:
            self.file_span.close()


def prepare_response(response: HTTPResponse) -> PreparedResponse:
    reason = response.reason_phrase or REASON_PHRASES.get(response.status_code, "Unknown")
    normalized_headers = dict(response.headers)
    normalized_headers.setdefault(
        "Date",
        formatdate(timeval=None, localtime=False, usegmt=True),
    )
    normalized_headers.setdefault("Server", SERVER_NAME)
    normalized_headers.setdefault("Content-Type", "text/plain; charset=utf-8")
    if response.should_close:
        normalized_headers["Connection"] = "close"

    body: bytes | None = None
    file_span: FileSpan | None = None
    if response.file_span is not None:
        file_span = response.file_span
        content_length = response.content_length_override
        if content_length is None:
            content_length = file_span.length
        normalized_headers["Content-Length"] = str(content_length)
    else:
        body = response.body
        content_length = response.content_length_override
        if content_length is None:
            content_length = len(body)
        normalized_headers["Content-Length"] = str(content_length)

    header_lines = [f"HTTP/1.1 {response.status_code} {reason}"]
    header_lines.extend(f"{key}: {value}" for key, value in normalized_headers.items())
    head = "\r\n".join(header_lines).encode("iso-8859-1") + b"\r\n\r\n"
    return PreparedResponse(head=head, body=body, file_span=file_span)
