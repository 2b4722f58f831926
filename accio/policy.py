"""Visibility rules combining extension filters with allowed and denied paths."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Iterable, Optional, Set

from .paths import is_within_base

logger = logging.getLogger("accio.config")


def normalize_extensions(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Lower-case extensions and strip leading dots, dropping blanks."""

    if not values:
        return frozenset()
    return frozenset(
        entry.strip().lower().lstrip(".")
        for entry in values
        if entry and entry.strip().lstrip(".")
    )


def file_extension(path: Path) -> str:
    return path.suffix.lower().lstrip(".")


def _chain(path: Path) -> Iterable[Path]:
    yield path
    yield from path.parents


@dataclass(frozen=True)
class AccessPolicy:
    """Visibility rules for entries under the base directory.

    All paths are canonical. Deny rules win over allow rules; configuring any
    allowed file or directory switches files to allow-list mode.
    """

    allowed_extensions: FrozenSet[str] = field(default_factory=frozenset)
    denied_extensions: FrozenSet[str] = field(default_factory=frozenset)
    allowed_files: FrozenSet[Path] = field(default_factory=frozenset)
    denied_files: FrozenSet[Path] = field(default_factory=frozenset)
    allowed_dirs: FrozenSet[Path] = field(default_factory=frozenset)
    denied_dirs: FrozenSet[Path] = field(default_factory=frozenset)
    allowed_ancestors: FrozenSet[Path] = field(default_factory=frozenset)

    @property
    def allow_list_mode(self) -> bool:
        return bool(self.allowed_files or self.allowed_dirs)

    def is_denied(self, path: Path, is_directory: bool) -> bool:
        if not is_directory and path in self.denied_files:
            return True
        if self.denied_dirs and any(entry in self.denied_dirs for entry in _chain(path)):
            return True
        if not is_directory and self.denied_extensions:
            return file_extension(path) in self.denied_extensions
        return False

    def _under_allowed_dir(self, path: Path) -> bool:
        return any(entry in self.allowed_dirs for entry in _chain(path))

    def _extension_allowed(self, path: Path) -> bool:
        if not self.allowed_extensions:
            return True
        return file_extension(path) in self.allowed_extensions

    def is_visible(self, path: Path, is_directory: bool) -> bool:
        if self.is_denied(path, is_directory):
            return False

        if self.allow_list_mode:
            if is_directory:
                return path in self.allowed_ancestors or self._under_allowed_dir(path)
            if path in self.allowed_files:
                return True
            return self._under_allowed_dir(path) and self._extension_allowed(path)

        if is_directory:
            return True
        return self._extension_allowed(path)

    @classmethod
    def from_config(
        cls,
        base_dir: Path,
        allowed_extensions: Optional[Iterable[str]] = None,
        denied_extensions: Optional[Iterable[str]] = None,
        allowed_paths: Optional[Iterable[str]] = None,
        denied_paths: Optional[Iterable[str]] = None,
    ) -> "AccessPolicy":
        allowed_files, allowed_dirs = _classify_paths(base_dir, allowed_paths, "allowed")
        denied_files, denied_dirs = _classify_paths(base_dir, denied_paths, "denied")

        ancestors: Set[Path] = set()
        for entry in allowed_files | allowed_dirs:
            for parent in entry.parents:
                if not is_within_base(parent, base_dir):
                    break
                ancestors.add(parent)

        return cls(
            allowed_extensions=normalize_extensions(allowed_extensions),
            denied_extensions=normalize_extensions(denied_extensions),
            allowed_files=frozenset(allowed_files),
            denied_files=frozenset(denied_files),
            allowed_dirs=frozenset(allowed_dirs),
            denied_dirs=frozenset(denied_dirs),
            allowed_ancestors=frozenset(ancestors),
        )


def _classify_paths(base_dir: Path, raw_paths: Optional[Iterable[str]], kind: str):
    files: Set[Path] = set()
    dirs: Set[Path] = set()
    for raw in raw_paths or ():
        if not raw or not str(raw).strip():
            continue
        candidate = Path(str(raw).strip()).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        try:
            resolved = candidate.resolve(strict=True)
        except (OSError, RuntimeError):
            logger.warning("policy_path_missing kind=%s path=%s", kind, raw)
            continue
        if not is_within_base(resolved, base_dir):
            logger.warning("policy_path_outside_base kind=%s path=%s", kind, resolved)
            continue
        if resolved.is_dir():
            dirs.add(resolved)
        else:
            files.add(resolved)
    return files, dirs
