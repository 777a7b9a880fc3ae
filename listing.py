"""One-level directory listings and the HTML index page rendered from them.

Only the immediate children of a directory are read. Deeper levels are reached
by following the directory links, each of which is its own index request.
Directories are listed before files; each group is ordered case-insensitively
by name.
"""

from __future__ import annotations

import html
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from errors import from_os_error
from path_resolver import DIRECTORY, FILE, ResolvedTarget, is_within_root
from utils import format_size, is_video_file

logger = logging.getLogger(__name__)

PAGE_STYLE = (
    "body{font-family:sans-serif;margin:2em}"
    "li{line-height:1.8}"
    "li.directory a{font-weight:bold}"
    "li.video a{color:#0a58ca}"
    ".size{color:#777;margin-left:1em}"
)


@dataclass(slots=True, frozen=True)
class ListingEntry:
    name: str
    kind: str
    relative_path: str
    size: int = 0
    is_video: bool = False

    @property
    def is_directory(self) -> bool:
        return self.kind == DIRECTORY

    @property
    def href(self) -> str:
        return url_for(self.relative_path, directory=self.is_directory)


def url_for(relative_path: str, *, directory: bool) -> str:
    """Absolute, percent-encoded URL for a path relative to the assets root."""
    if not relative_path:
        return "/"
    url = "/" + quote(relative_path)
    return url + "/" if directory else url


def sort_key(entry: ListingEntry) -> tuple[int, str, str]:
    return (0 if entry.is_directory else 1, entry.name.casefold(), entry.name)


def list_directory(
    target: ResolvedTarget,
    assets_root: Path,
    *,
    videos_only: bool = False,
) -> list[ListingEntry]:
    """Read the immediate children of ``target`` in display order."""
    entries: list[ListingEntry] = []
    try:
        with os.scandir(target.path) as iterator:
            for dir_entry in iterator:
                entry = _build_entry(dir_entry, target, assets_root)
                if entry is None:
                    continue
                if videos_only and not entry.is_directory and not entry.is_video:
                    continue
                entries.append(entry)
    except OSError as exc:
        raise from_os_error(exc, "/" + target.relative_path) from exc

    entries.sort(key=sort_key)
    return entries


def _build_entry(
    dir_entry: os.DirEntry[str],
    target: ResolvedTarget,
    assets_root: Path,
) -> ListingEntry | None:
    name = dir_entry.name
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        logger.debug("Skipping entry with undecodable name in %s", target.path)
        return None

    entry_path = Path(dir_entry.path)
    try:
        if dir_entry.is_symlink():
            real_path = entry_path.resolve(strict=True)
            if not is_within_root(assets_root, real_path):
                logger.debug("Hiding symlink that leaves the assets root: %s", entry_path)
                return None
        entry_stat = dir_entry.stat()
        is_directory = dir_entry.is_dir()
        is_file = dir_entry.is_file()
    except (OSError, RuntimeError) as exc:
        logger.debug("Skipping unreadable entry %s: %s", entry_path, exc)
        return None

    if not is_directory and not is_file:
        return None

    if target.relative_path:
        relative_path = f"{target.relative_path}/{name}"
    else:
        relative_path = name

    if is_directory:
        return ListingEntry(name=name, kind=DIRECTORY, relative_path=relative_path)
    return ListingEntry(
        name=name,
        kind=FILE,
        relative_path=relative_path,
        size=entry_stat.st_size,
        is_video=is_video_file(entry_path),
    )


def render_index(target: ResolvedTarget, entries: list[ListingEntry]) -> str:
    """Render the HTML index page for one directory level."""
    display_path = url_for(target.relative_path, directory=True)
    title = html.escape(f"Index of {display_path}")

    lines = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{title}</title>",
        f"<style>{PAGE_STYLE}</style>",
        "</head>",
        "<body>",
        f"<h1>{title}</h1>",
        "<ul>",
    ]
    if not target.is_root:
        parent_path = target.relative_path.rpartition("/")[0]
        parent_href = html.escape(url_for(parent_path, directory=True))
        lines.append(f'<li class="parent"><a href="{parent_href}">..</a></li>')

    for entry in entries:
        href = html.escape(entry.href)
        label = html.escape(entry.name)
        if entry.is_directory:
            lines.append(f'<li class="directory"><a href="{href}">{label}/</a></li>')
            continue
        css_class = "file video" if entry.is_video else "file"
        lines.append(
            f'<li class="{css_class}"><a href="{href}">{label}</a>'
            f'<span class="size">{format_size(entry.size)}</span></li>'
        )

    lines.extend(["</ul>", "</body>", "</html>", ""])
    return "\n".join(lines)
