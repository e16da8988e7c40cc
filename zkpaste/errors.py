"""Error taxonomy shared by the services and the HTTP layer.

Every error here is a per-request outcome. The HTTP layer renders each one as
``{"error": <reason>}`` with the attached status code.
"""


class PasteError(Exception):
    reason: str = "error"
    status_code: int = 500

    def __init__(self, reason: str | None = None, message: str | None = None):
        if reason is not None:
            self.reason = reason
        super().__init__(message or self.reason)


class ClientRejection(PasteError):
    """The request was refused. Never retried by the server."""

    status_code = 400

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(reason, message)
        if reason == "rate_limited":
            self.status_code = 429


class PasteNotFound(PasteError):
    """Absent, expired and exhausted pastes all look the same."""

    reason = "not_found"
    status_code = 404


class DeletionForbidden(PasteError):
    reason = "invalid_token"
    status_code = 403


class StorageUnavailableError(PasteError):
    """The backing store failed or timed out. Safe to retry the whole request."""

    reason = "storage_error"
    status_code = 500
