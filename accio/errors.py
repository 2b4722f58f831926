from typing import Optional


class AccioError(Exception):
    """Base class for errors that map onto a short plain-text HTTP response."""

    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class StartupConfigurationError(AccioError):
    """Raised when the base or uploads directory cannot be used."""


class PathTraversalAttempt(AccioError):
    """Raised when a decoded request path contains a ``..`` segment."""

    status_code = 403
    message = "Forbidden path"


class EntryNotFound(AccioError):
    """Raised for missing, escaping, or policy-denied entries alike."""

    status_code = 404
    message = "Entry not found"


class InvalidUploadRequest(AccioError):
    status_code = 400
    message = "Invalid multipart payload"


class UploadIOFailure(AccioError):
    status_code = 500
    message = "Failed to save file"


class UploadsDisabled(AccioError):
    status_code = 403
    message = "Uploads are disabled"


class UploadCapacityExceeded(AccioError):
    status_code = 503
    message = "Too many concurrent uploads"


class AuthorizationRequired(AccioError):
    status_code = 401
    message = "Authentication required"


class AuthorizationFailed(AuthorizationRequired):
    message = "Invalid password"


class FileStreamError(OSError):
    """Raised mid-stream so the transport drops the connection."""
