"""Route handler serving directory indexes and video files from the assets root."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from email.utils import formatdate, parsedate_to_datetime
from pathlib import Path
from typing import BinaryIO

from byte_range import ByteRange, parse_range_header
from errors import UnsatisfiableRange, VideoServerError, from_os_error
from listing import list_directory, render_index
from path_resolver import ResolvedTarget, resolve_target
from request import HTTPRequest
from response import REASON_PHRASES, FileSpan, HTTPResponse
from utils import get_content_type

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class VideoIndexHandler:
    """Router-compatible callable bound to one assets root."""

    assets_root: Path
    videos_only: bool = False

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        return serve_path(request, self.assets_root, videos_only=self.videos_only)


def serve_path(
    request: HTTPRequest,
    assets_root: Path,
    *,
    videos_only: bool = False,
) -> HTTPResponse:
    try:
        target = resolve_target(assets_root, request.path)
        if target.is_directory:
            return serve_index(target, assets_root, videos_only=videos_only)
        return serve_file(request, target)
    except VideoServerError as exc:
        return error_response(exc, path=request.path)


def serve_index(
    target: ResolvedTarget,
    assets_root: Path,
    *,
    videos_only: bool = False,
) -> HTTPResponse:
    entries = list_directory(target, assets_root, videos_only=videos_only)
    return HTTPResponse(
        status_code=200,
        headers={
            "Content-Type": "text/html; charset=utf-8",
            "Cache-Control": "no-cache",
        },
        body=render_index(target, entries),
    )


def serve_file(request: HTTPRequest, target: ResolvedTarget) -> HTTPResponse:
    """Open the file before any status is chosen so open failures map to a status.

    The open handle travels in the response's :class:`FileSpan`, and the
    headers describe that handle rather than a later lookup by path.
    """
    try:
        file_obj = target.path.open("rb")
    except OSError as exc:
        raise from_os_error(exc, "/" + target.relative_path) from exc

    try:
        return _file_response(request, target, file_obj)
    except BaseException:
        file_obj.close()
        raise


def _file_response(
    request: HTTPRequest,
    target: ResolvedTarget,
    file_obj: BinaryIO,
) -> HTTPResponse:
    file_stat = os.fstat(file_obj.fileno())
    etag = f'"{file_stat.st_mtime_ns:x}-{file_stat.st_size:x}"'
    last_modified = formatdate(file_stat.st_mtime, usegmt=True)
    headers = {
        "Content-Type": get_content_type(Path(target.name)),
        "Accept-Ranges": "bytes",
        "ETag": etag,
        "Last-Modified": last_modified,
    }

    if _is_not_modified(request, etag, file_stat.st_mtime):
        file_obj.close()
        return HTTPResponse(status_code=304, headers=headers, body=b"")

    byte_range = ByteRange.whole(file_stat.st_size)
    status_code = 200
    range_header = request.headers.get("range")
    if range_header is not None and _range_applies(request, etag, last_modified):
        byte_range = parse_range_header(range_header, file_stat.st_size)
        headers["Content-Range"] = byte_range.content_range
        status_code = 206

    return HTTPResponse(
        status_code=status_code,
        headers=headers,
        file_span=FileSpan(
            path=target.path,
            start=byte_range.start,
            length=byte_range.length,
            file_obj=file_obj,
        ),
    )


def error_response(exc: VideoServerError, *, path: str) -> HTTPResponse:
    status_code = exc.status_code
    if status_code >= 500:
        logger.error("Failed to serve %s: %s", path, exc)
    else:
        logger.debug("Rejected %s with %s: %s", path, status_code, exc)

    headers: dict[str, str] = {}
    if isinstance(exc, UnsatisfiableRange):
        headers["Content-Range"] = f"bytes */{exc.total}"
    return HTTPResponse(
        status_code=status_code,
        headers=headers,
        body=REASON_PHRASES.get(status_code, "Error"),
    )


def _etag_matches(header_value: str, etag: str) -> bool:
    candidates = [token.strip() for token in header_value.split(",")]
    for candidate in candidates:
        if candidate == "*":
            return True
        if candidate.removeprefix("W/") == etag:
            return True
    return False


def _is_not_modified(request: HTTPRequest, etag: str, mtime: float) -> bool:
    if_none_match = request.headers.get("if-none-match")
    if if_none_match is not None:
        return _etag_matches(if_none_match, etag)

    if_modified_since = request.headers.get("if-modified-since")
    if if_modified_since is None:
        return False
    try:
        since_ts = parsedate_to_datetime(if_modified_since).timestamp()
    except (TypeError, ValueError, OverflowError):
        return False
    return int(mtime) <= int(since_ts)


def _range_applies(request: HTTPRequest, etag: str, last_modified: str) -> bool:
    """A stale ``If-Range`` validator turns a range request into a full one."""
    if_range = request.headers.get("if-range")
    if if_range is None:
        return True
    if_range = if_range.strip()
    if if_range.startswith('"'):
        return if_range == etag
    return if_range == last_modified
