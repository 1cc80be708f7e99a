"""Error taxonomy shared by services and routers.

Every error carries the HTTP status it maps to; ``app.main`` registers a
single handler that renders them as ``{"detail": ..., "error": ...}``.
"""


class ApiError(Exception):
    status_code = 500
    code = "internal_error"
    default_detail = "Internal error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFoundError(ApiError):
    status_code = 404
    code = "not_found"
    default_detail = "Resource not found"


class ForbiddenError(ApiError):
    status_code = 403
    code = "forbidden"
    default_detail = "Not authorized to perform this action"


class InvalidInputError(ApiError):
    status_code = 400
    code = "invalid_input"
    default_detail = "Invalid input"


class InvalidOrExpiredError(ApiError):
    status_code = 400
    code = "invalid_or_expired"
    default_detail = "Invalid or expired QR code"


class ConflictError(ApiError):
    status_code = 409
    code = "conflict"
    default_detail = "Resource already exists"


class RenderError(ApiError):
    status_code = 502
    code = "render_failed"
    default_detail = "Failed to render QR code"
