class DocDeskError(Exception):
    """Base class for errors that are safe to surface to API callers."""

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(DocDeskError):
    status_code = 400
    code = "BAD_REQUEST"
    default_message = "Bad request"


class ForbiddenError(DocDeskError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Forbidden"


class NotFoundError(DocDeskError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(DocDeskError):
    status_code = 409
    code = "CONFLICT"
    default_message = "Conflict"


class StorageError(DocDeskError):
    status_code = 502
    code = "STORAGE_ERROR"
    default_message = "Object storage request failed"
