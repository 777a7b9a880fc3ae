"""Map request paths onto the assets root without letting them escape it.

Normalization works on the decoded segment list before anything is joined
with the root: ``.`` and empty segments are dropped and ``..`` pops the
previous segment. A ``..`` with nothing left to pop is a traversal attempt.

Symlinks are resolved and confined: a link whose real target stays inside the
root is served, a link that points outside it is rejected with 403.
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote

from errors import (
    ConfigurationError,
    ForbiddenPath,
    InvalidPath,
    NotFound,
    from_os_error,
)

DIRECTORY = "directory"
FILE = "file"


@dataclass(slots=True, frozen=True)
class ResolvedTarget:
    path: Path
    kind: str
    relative_path: str
    stat: os.stat_result

    @property
    def is_root(self) -> bool:
        return self.relative_path == ""

    @property
    def name(self) -> str:
        """Last URL segment, which may differ from ``path.name`` behind a symlink."""
        return self.relative_path.rpartition("/")[2]

    @property
    def is_directory(self) -> bool:
        return self.kind == DIRECTORY


def load_assets_root(raw_root: str | os.PathLike[str]) -> Path:
    """Validate the configured assets root once at startup."""
    candidate = Path(raw_root).expanduser()
    try:
        resolved = candidate.resolve(strict=True)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Assets root does not exist: {candidate}") from exc
    except (OSError, RuntimeError) as exc:
        raise ConfigurationError(f"Assets root is not usable: {candidate} ({exc})") from exc

    if not resolved.is_dir():
        raise ConfigurationError(f"Assets root is not a directory: {resolved}")
    if not os.access(resolved, os.R_OK | os.X_OK):
        raise ConfigurationError(f"Assets root is not readable: {resolved}")
    return resolved


def normalize_segments(url_path: str) -> list[str]:
    """Decode ``url_path`` and collapse dot segments, refusing to climb above the root."""
    try:
        decoded = unquote(url_path, errors="strict")
    except UnicodeDecodeError as exc:
        raise InvalidPath("Path is not valid UTF-8") from exc

    if "\x00" in decoded or "\\" in decoded:
        raise InvalidPath("Path contains characters not allowed in file names")

    segments: list[str] = []
    for segment in decoded.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not segments:
                raise ForbiddenPath("Path escapes the assets root")
            segments.pop()
            continue
        segments.append(segment)
    return segments


def is_within_root(assets_root: Path, candidate: Path) -> bool:
    try:
        candidate.relative_to(assets_root)
    except ValueError:
        return False
    return True


def resolve_target(assets_root: Path, url_path: str) -> ResolvedTarget:
    """Resolve a raw request path to a directory or regular file under ``assets_root``.

    ``assets_root`` must already be absolute and symlink-free, as returned by
    :func:`load_assets_root`.
    """
    segments = normalize_segments(url_path)
    relative_path = "/".join(segments)
    candidate = assets_root.joinpath(*segments)

    try:
        real_path = candidate.resolve(strict=True)
    except OSError as exc:
        raise from_os_error(exc, "/" + relative_path) from exc
    except RuntimeError as exc:
        raise NotFound(f"Symlink loop at /{relative_path}") from exc

    if not is_within_root(assets_root, real_path):
        raise ForbiddenPath(f"/{relative_path} resolves outside the assets root")

    try:
        file_stat = real_path.stat()
    except OSError as exc:
        raise from_os_error(exc, "/" + relative_path) from exc

    if stat.S_ISDIR(file_stat.st_mode):
        kind = DIRECTORY
    elif stat.S_ISREG(file_stat.st_mode):
        kind = FILE
    else:
        raise NotFound(f"/{relative_path} is not a regular file or directory")

    return ResolvedTarget(
        path=real_path,
        kind=kind,
        relative_path=relative_path,
        stat=file_stat,
    )
