import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Tuple

from .auth import generate_password
from .errors import StartupConfigurationError
from .hostinfo import UPLOADS_FOLDER_NAME, default_uploads_directory

logger = logging.getLogger("accio.config")

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
BYTES_PER_MB = 1024 * 1024


def _safe_int_env(key: str, default: int, min_value: int = 0) -> int:
    """Safely parse integer environment variable with error handling."""
    try:
        return max(min_value, int(os.environ.get(key, str(default))))
    except (TypeError, ValueError):
        logger.warning(
            "Invalid value for %s: %s. Using default: %d",
            key, os.environ.get(key), default
        )
        return default


def _get_optional_bool_env(env_key: str) -> Optional[bool]:
    raw_value = os.environ.get(env_key)
    if raw_value is None:
        return None
    normalized = raw_value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return None


def _split_list(raw_value: Optional[str], *, paths: bool = False) -> Tuple[str, ...]:
    if not raw_value:
        return ()
    separators = "," + (re.escape(os.pathsep) if paths else "")
    return tuple(entry.strip() for entry in re.split(f"[{separators}]", raw_value) if entry.strip())


def _env_path(env_key: str) -> Optional[Path]:
    value = os.environ.get(env_key)
    if value:
        return Path(value).expanduser()
    return None


@dataclass(frozen=True)
class ServerConfig:
    base_dir: Path
    uploads_dir: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    uploads_enabled: bool = True
    password_enabled: bool = False
    password: Optional[str] = None
    password_generated: bool = False
    allowed_extensions: Tuple[str, ...] = ()
    denied_extensions: Tuple[str, ...] = ()
    allowed_paths: Tuple[str, ...] = ()
    denied_paths: Tuple[str, ...] = ()
    max_upload_mb: int = 0
    max_concurrent_uploads: int = 10
    download_rate_limit_per_minute: int = 600
    upload_rate_limit_per_hour: int = 100
    rate_limits_enabled: bool = True
    log_dir: Optional[Path] = None

    @property
    def max_content_length(self) -> Optional[int]:
        if self.max_upload_mb <= 0:
            return None
        return self.max_upload_mb * BYTES_PER_MB


def resolve_base_directory(path: Optional[Path]) -> Path:
    candidate = Path(path).expanduser() if path else Path.cwd()
    if not candidate.is_absolute():
        candidate = Path.cwd() / candidate
    try:
        resolved = candidate.resolve(strict=True)
    except (OSError, RuntimeError):
        raise StartupConfigurationError(f"invalid base directory: {candidate}")
    if not resolved.is_dir():
        raise StartupConfigurationError(f"invalid base directory: {candidate}")
    return resolved


def _prepare_directory(candidate: Path) -> Path:
    if not candidate.is_absolute():
        candidate = Path.cwd() / candidate
    candidate.mkdir(parents=True, exist_ok=True)
    if not candidate.is_dir():
        raise NotADirectoryError(f"path exists and is not a directory: {candidate}")
    return candidate.resolve()


def resolve_uploads_directory(candidate: Optional[Path], base_dir: Path) -> Path:
    """Create and canonicalize the uploads directory.

    Falls back to ``<base>/accio`` when the primary location cannot be used.
    """

    primary = Path(candidate).expanduser() if candidate else default_uploads_directory(base_dir)
    try:
        return _prepare_directory(primary)
    except OSError as primary_error:
        fallback = base_dir / UPLOADS_FOLDER_NAME
        logger.warning("uploads_dir_unusable path=%s error=%s fallback=%s", primary, primary_error, fallback)
        try:
            return _prepare_directory(fallback)
        except OSError as fallback_error:
            raise StartupConfigurationError(
                f"failed to prepare uploads directory. primary '{primary}' ({primary_error}); "
                f"fallback '{fallback}' ({fallback_error})"
            )


def load_config(**overrides: Any) -> ServerConfig:
    """Build the server configuration from ``ACCIO_*`` variables plus *overrides*.

    Overrides whose value is ``None`` are ignored so CLI defaults do not mask
    the environment.
    """

    settings = {
        "base_dir": _env_path("ACCIO_BASE_DIR"),
        "uploads_dir": _env_path("ACCIO_UPLOADS_DIR"),
        "host": os.environ.get("ACCIO_HOST") or DEFAULT_HOST,
        "port": _safe_int_env("ACCIO_PORT", DEFAULT_PORT),
        "uploads_enabled": _get_optional_bool_env("ACCIO_UPLOADS_ENABLED"),
        "password_enabled": _get_optional_bool_env("ACCIO_PASSWORD_ENABLED"),
        "password": os.environ.get("ACCIO_PASSWORD") or None,
        "allowed_extensions": _split_list(os.environ.get("ACCIO_ALLOWED_EXTENSIONS")),
        "denied_extensions": _split_list(os.environ.get("ACCIO_DENIED_EXTENSIONS")),
        "allowed_paths": _split_list(os.environ.get("ACCIO_ALLOWED_PATHS"), paths=True),
        "denied_paths": _split_list(os.environ.get("ACCIO_DENIED_PATHS"), paths=True),
        "max_upload_mb": _safe_int_env("ACCIO_MAX_UPLOAD_MB", 0),
        "max_concurrent_uploads": _safe_int_env("ACCIO_MAX_CONCURRENT_UPLOADS", 10, min_value=1),
        "download_rate_limit_per_minute": _safe_int_env(
            "ACCIO_RATE_LIMIT_DOWNLOADS_PER_MINUTE", 600, min_value=1
        ),
        "upload_rate_limit_per_hour": _safe_int_env("ACCIO_RATE_LIMIT_UPLOADS_PER_HOUR", 100, min_value=1),
        "rate_limits_enabled": _get_optional_bool_env("ACCIO_RATE_LIMITS_ENABLED"),
        "log_dir": _env_path("ACCIO_LOG_DIR"),
    }
    for key, value in overrides.items():
        if key not in settings:
            raise TypeError(f"unknown configuration option: {key}")
        if value is not None:
            settings[key] = value

    if settings["password_enabled"] is None:
        settings["password_enabled"] = bool(settings["password"])
    for key in ("uploads_enabled", "rate_limits_enabled"):
        if settings[key] is None:
            settings[key] = True
    for key in ("allowed_extensions", "denied_extensions", "allowed_paths", "denied_paths"):
        settings[key] = tuple(str(entry) for entry in settings[key])

    if settings["password_enabled"] and not settings["password"]:
        settings["password"] = generate_password()
        settings["password_generated"] = True

    if not 0 < int(settings["port"]) < 65536:
        raise StartupConfigurationError(f"invalid port: {settings['port']}")

    base_dir = resolve_base_directory(settings.pop("base_dir"))
    uploads_dir = resolve_uploads_directory(settings.pop("uploads_dir"), base_dir)
    return ServerConfig(base_dir=base_dir, uploads_dir=uploads_dir, **settings)

