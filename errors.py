"""Error taxonomy mapping filesystem and request failures to HTTP statuses."""

import errno


class VideoServerError(Exception):
    """Base error carrying the HTTP status code it resolves to."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class InvalidPath(VideoServerError):
    """Malformed request path (NUL bytes, backslashes, bad encoding)."""

    status_code = 400


class ForbiddenPath(VideoServerError):
    """Path would leave the assets root, lexically or through a symlink."""

    status_code = 403


class NotFound(VideoServerError):
    status_code = 404


class PermissionDenied(VideoServerError):
    status_code = 403


class UnsatisfiableRange(VideoServerError):
    """Range header is malformed, unsupported, or outside the file."""

    status_code = 416

    def __init__(self, message: str, *, total: int) -> None:
        super().__init__(message)
        self.total = total


class InternalIO(VideoServerError):
    status_code = 500


class ConfigurationError(Exception):
    """Startup configuration cannot be used (e.g. missing assets root)."""


def from_os_error(exc: OSError, path: str) -> VideoServerError:
    """Translate an OSError raised while touching ``path`` into a server error."""
    if isinstance(exc, (FileNotFoundError, NotADirectoryError)) or exc.errno == errno.ELOOP:
        return NotFound(f"No such entry: {path}")
    if isinstance(exc, PermissionError):
        return PermissionDenied(f"Permission denied: {path}")
    if exc.errno in (errno.ENAMETOOLONG, errno.EILSEQ):
        return InvalidPath(f"Path not valid on this filesystem: {path}")
    return InternalIO(f"I/O error on {path}: {exc.strerror or exc}")
