import uuid
from dataclasses import dataclass
from typing import Optional

from flask import Flask, Response, g, render_template, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from markupsafe import Markup
from werkzeug.exceptions import HTTPException
from werkzeug.http import parse_options_header

from .auth import AuthDecision, AuthorizationGate
from .config import ServerConfig
from .errors import (
    AccioError,
    AuthorizationFailed,
    AuthorizationRequired,
    EntryNotFound,
    InvalidUploadRequest,
    PathTraversalAttempt,
    UploadsDisabled,
)
from .listing import list_directory, render_listing
from .log import configure_logging, lifecycle_logger, sanitize_log_value, security_logger
from .paths import checked_relative_path, extract_request_path, resolve_target
from .policy import AccessPolicy
from .streaming import build_file_response
from .uploads import UploadConcurrencyLimiter, receive_multipart_upload

AUTH_REALM = "accio"

HTTP_ERROR_MESSAGES = {
    404: "Entry not found",
    405: "Method not allowed",
    413: "Payload too large",
    429: "Too many requests",
}


@dataclass(frozen=True)
class AccioState:
    """Objects shared by every request of one application instance."""

    config: ServerConfig
    policy: AccessPolicy
    gate: AuthorizationGate
    upload_limiter: UploadConcurrencyLimiter
    rate_limiter: Limiter


def plain_text_response(status: int, body: str) -> Response:
    return Response(body, status=status, mimetype="text/plain")


def _client_ip() -> str:
    return request.remote_addr or "unknown"


def _supplied_password() -> Optional[str]:
    credentials = request.authorization
    if credentials is None or (credentials.type or "").lower() != "basic":
        return None
    return credentials.password


def create_app(
    config: ServerConfig,
    policy: Optional[AccessPolicy] = None,
    gate: Optional[AuthorizationGate] = None,
) -> Flask:
    """Build the file-serving application for *config*."""

    configure_logging(log_dir=config.log_dir)

    app = Flask(__name__)
    app.url_map.merge_slashes = False
    app.config["MAX_CONTENT_LENGTH"] = config.max_content_length
    app.config["RATELIMIT_ENABLED"] = config.rate_limits_enabled

    if policy is None:
        policy = AccessPolicy.from_config(
            config.base_dir,
            allowed_extensions=config.allowed_extensions,
            denied_extensions=config.denied_extensions,
            allowed_paths=config.allowed_paths,
            denied_paths=config.denied_paths,
        )
    if gate is None:
        gate = AuthorizationGate(config.password, config.password_enabled)

    # Owned by the app state; limit decorators only keep a weak reference.
    limiter = Limiter(
        key_func=get_remote_address,
        app=app,
        storage_uri="memory://",
    )
    state = AccioState(
        config=config,
        policy=policy,
        gate=gate,
        upload_limiter=UploadConcurrencyLimiter(config.max_concurrent_uploads),
        rate_limiter=limiter,
    )
    app.extensions["accio"] = state

    @app.before_request
    def add_request_id() -> None:
        """Assign a request identifier for downstream logging."""

        g.request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)

    @app.before_request
    def require_authorization() -> None:
        decision = state.gate.admit(_client_ip(), _supplied_password())
        if decision is AuthDecision.REQUIRED:
            raise AuthorizationRequired()
        if decision is AuthDecision.FAILED:
            security_logger.warning("auth_rejected ip=%s path=%s", _client_ip(), sanitize_log_value(request.path))
            raise AuthorizationFailed()

    @app.after_request
    def log_request_completion(response: Response):
        """Emit lifecycle logs for every completed request."""

        lifecycle_logger.info(
            "request_completed method=%s path=%s status=%d size=%s",
            request.method,
            sanitize_log_value(request.path),
            response.status_code,
            response.content_length or 0,
        )
        return response

    @app.after_request
    def add_security_headers(response: Response):
        """Attach security-focused response headers."""

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; style-src 'self' 'unsafe-inline'; img-src 'self' data:;"
        )
        return response

    @app.after_request
    def add_request_id_header(response: Response):
        """Expose the current request identifier to clients."""

        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id
        return response

    @app.errorhandler(AccioError)
    def handle_accio_error(error: AccioError):
        response = plain_text_response(error.status_code, error.message)
        if isinstance(error, AuthorizationRequired):
            response.headers["WWW-Authenticate"] = f'Basic realm="{AUTH_REALM}", charset="UTF-8"'
        return response

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        status = error.code or 500
        if status < 400:
            return error
        response = plain_text_response(status, HTTP_ERROR_MESSAGES.get(status, error.name))
        valid_methods = getattr(error, "valid_methods", None)
        if status == 405 and valid_methods:
            response.headers["Allow"] = ", ".join(valid_methods)
        return response

    def download_rate_limit_string() -> str:
        return f"{state.config.download_rate_limit_per_minute} per minute"

    def upload_rate_limit_string() -> str:
        return f"{state.config.upload_rate_limit_per_hour} per hour"

    @app.route("/", defaults={"req_path": ""}, methods=["GET"])
    @app.route("/<path:req_path>", methods=["GET"], strict_slashes=False)
    @limiter.limit(download_rate_limit_string)
    def browse(req_path: str):
        raw_path = extract_request_path(req_path, request.args.get("path"))
        try:
            relative_path = checked_relative_path(raw_path)
        except PathTraversalAttempt:
            security_logger.warning(
                "path_traversal_attempt path=%s ip=%s",
                sanitize_log_value(raw_path),
                _client_ip(),
            )
            raise

        base_dir = state.config.base_dir
        target = resolve_target(base_dir, relative_path)
        is_directory = target.is_dir()
        if not state.policy.is_visible(target, is_directory):
            lifecycle_logger.info("entry_hidden path=%s", sanitize_log_value(relative_path))
            raise EntryNotFound()

        if target.is_file():
            try:
                response = build_file_response(target, request.range)
            except OSError as error:
                lifecycle_logger.warning(
                    "file_download_unreadable path=%s error=%s",
                    sanitize_log_value(relative_path),
                    error,
                )
                raise EntryNotFound()
            lifecycle_logger.info(
                "file_downloaded path=%s status=%d", sanitize_log_value(relative_path), response.status_code
            )
            return response

        if not is_directory:
            raise EntryNotFound()

        try:
            entries = list_directory(target, base_dir, state.policy)
        except OSError as error:
            lifecycle_logger.warning(
                "directory_unreadable path=%s error=%s", sanitize_log_value(relative_path), error
            )
            raise EntryNotFound()

        listing = render_listing(relative_path, entries)
        return render_template("index.html", files=Markup(listing))

    @app.route("/upload", methods=["POST"])
    @limiter.limit(upload_rate_limit_string)
    def upload():
        if not state.config.uploads_enabled:
            raise UploadsDisabled()

        mimetype, options = parse_options_header(request.headers.get("Content-Type", ""))
        if mimetype != "multipart/form-data":
            raise InvalidUploadRequest("Invalid multipart payload")

        with state.upload_limiter.slot():
            saved = receive_multipart_upload(request.stream, options.get("boundary"), state.config.uploads_dir)

        lifecycle_logger.info("upload_completed count=%d ip=%s", len(saved), _client_ip())
        body = "Uploaded files:\n" + "".join(f"{name}\n" for name in saved)
        return plain_text_response(200, body)

    return app
