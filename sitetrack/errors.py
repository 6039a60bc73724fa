"""
Domain exceptions raised by the service layer.

Each subclass carries the HTTP status the API answers with; the handler
registered in ``sitetrack.main`` turns them into ``{"detail": ...}``
responses.  Scripts catch ``SiteTrackError`` directly.
"""


class SiteTrackError(Exception):
    """Base exception for the application."""

    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFoundError(SiteTrackError):
    """Raised when a referenced row does not exist."""

    status_code = 404


class PermissionDeniedError(SiteTrackError):
    """Raised when the caller's role does not allow the operation."""

    status_code = 403


class ValidationError(SiteTrackError):
    """Raised when input is well-formed JSON but violates a business rule."""

    status_code = 422


class ConflictError(SiteTrackError):
    """Raised when the operation clashes with existing state."""

    status_code = 409
