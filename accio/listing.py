import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

from markupsafe import escape

from .paths import build_href_for_path, is_within_base
from .policy import AccessPolicy

SIZE_UNITS = ("KB", "MB", "GB", "TB")
DIRECTORY_ICON = "\U0001F4C1"
PARENT_LINK_TEXT = "↩ ../"


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    is_directory: bool
    size: int = 0


def escape_for_html(text: str) -> str:
    return str(escape(text))


def format_file_size(num_bytes: int) -> str:
    """Render *num_bytes* with binary units, trimming decimals as values grow."""

    if num_bytes < 1024:
        return f"{num_bytes} B"

    value = float(num_bytes)
    unit = SIZE_UNITS[0]
    for unit in SIZE_UNITS:
        value /= 1024.0
        if value < 1024.0:
            break

    if value < 10:
        return f"{value:.2f} {unit}"
    if value < 100:
        return f"{value:.1f} {unit}"
    return f"{value:.0f} {unit}"


def sort_entries(entries: Iterable[DirectoryEntry]) -> List[DirectoryEntry]:
    return sorted(
        entries,
        key=lambda entry: (not entry.is_directory, entry.name.lower(), entry.name),
    )


def _entry_size(entry: os.DirEntry) -> int:
    try:
        return entry.stat().st_size
    except OSError:
        return 0


def list_directory(directory: Path, base_dir: Path, policy: AccessPolicy) -> List[DirectoryEntry]:
    """Return the visible children of *directory*, sorted for display.

    Children that cannot be resolved or whose canonical location lies outside
    *base_dir* are skipped, as are children the policy hides.
    """

    entries = []
    with os.scandir(directory) as iterator:
        for child in iterator:
            try:
                resolved = Path(child.path).resolve(strict=True)
            except (OSError, RuntimeError):
                continue
            if not is_within_base(resolved, base_dir):
                continue

            is_directory = resolved.is_dir()
            if not policy.is_visible(resolved, is_directory):
                continue

            size = 0 if is_directory else _entry_size(child)
            entries.append(DirectoryEntry(child.name, is_directory, size))
    return sort_entries(entries)


def render_listing(relative_path: str, entries: Iterable[DirectoryEntry]) -> str:
    lines = ["<ul>"]
    if relative_path:
        parent_href = build_href_for_path(posixpath.dirname(relative_path))
        lines.append(f'<li><a href="{parent_href}">{PARENT_LINK_TEXT}</a></li>')

    for entry in entries:
        child_path = f"{relative_path}/{entry.name}" if relative_path else entry.name
        href = build_href_for_path(child_path)
        if entry.is_directory:
            display = escape_for_html(f"{DIRECTORY_ICON} {entry.name}/")
            lines.append(f'<li><a href="{href}">{display}</a></li>')
        else:
            display = escape_for_html(entry.name)
            size = format_file_size(entry.size)
            lines.append(
                f'<li><a href="{href}">{display}</a> <span class="size">{size}</span></li>'
            )
    lines.append("</ul>")
    return "\n".join(lines) + "\n"
