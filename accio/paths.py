"""Request path normalization and containment checks.

Every request path is treated as untrusted. ``contains_parent_traversal`` is
checked against the decoded path before ``normalize_relative_path`` collapses
it, and ``resolve_target`` is the only way a relative path becomes a
filesystem location.
"""

import posixpath
import re
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

from .errors import EntryNotFound, PathTraversalAttempt

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:(?=/|$)")


def normalize_relative_path(path: str) -> str:
    """Collapse *path* into a relative, slash-separated form.

    ``""`` denotes the base directory itself.
    """

    sanitized = (path or "").replace("\\", "/")
    sanitized = _DRIVE_PREFIX.sub("", sanitized)
    if not sanitized:
        return ""

    normalized = posixpath.normpath(sanitized).lstrip("/")
    if normalized in {"", "."}:
        return ""
    return normalized


def _has_parent_segment(path: str) -> bool:
    return any(part == ".." for part in path.replace("\\", "/").split("/"))


def contains_parent_traversal(path: str) -> bool:
    """Return True when *path*, or its once-more decoded form, has a ``..`` segment."""

    if not path:
        return False
    if _has_parent_segment(path):
        return True
    return _has_parent_segment(unquote(path))


def extract_request_path(url_path: str, query_path: Optional[str] = None) -> str:
    """Pick the decoded request path, letting a ``path`` query argument override it."""

    return (query_path if query_path else url_path) or ""


def checked_relative_path(raw_path: str) -> str:
    if contains_parent_traversal(raw_path):
        raise PathTraversalAttempt()
    return normalize_relative_path(raw_path)


def is_within_base(candidate: Path, base: Path) -> bool:
    return candidate == base or base in candidate.parents


def resolve_target(base_dir: Path, relative_path: str) -> Path:
    """Resolve *relative_path* under *base_dir*, following symlinks.

    Raises ``EntryNotFound`` when the target does not exist, cannot be
    resolved, or lands outside *base_dir*.
    """

    target = base_dir / relative_path if relative_path else base_dir
    try:
        resolved = target.resolve(strict=True)
    except (OSError, RuntimeError):
        raise EntryNotFound()

    if not is_within_base(resolved, base_dir):
        raise EntryNotFound()
    return resolved


def url_encode(text: str) -> str:
    return quote(text, safe="")


def build_href_for_path(relative_path: str) -> str:
    segments = [segment for segment in (relative_path or "").split("/") if segment]
    if not segments:
        return "/"
    return "/" + "/".join(url_encode(segment) for segment in segments)
