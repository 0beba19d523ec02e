"""
Error taxonomy for the marketplace API.

Every error carries an HTTP status and a stable code; the app registers a
single handler that turns them into ``{"detail": ..., "code": ...}`` bodies.
"""


class MarketplaceError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "", code: str = None):
        self.message = message or self.__class__.__name__
        if code:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(MarketplaceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthError(MarketplaceError):
    status_code = 401
    code = "NOT_AUTHENTICATED"


class ForbiddenError(MarketplaceError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(MarketplaceError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found", code=f"{resource.upper()}_NOT_FOUND")


class ConflictError(MarketplaceError):
    status_code = 409
    code = "VERSION_CONFLICT"


def from_pydantic(exc, prefix: str = "") -> ValidationError:
    """Turn the first error of a pydantic ``ValidationError`` into a 400."""
    first = exc.errors()[0]
    where = ".".join(str(part) for part in first["loc"]) or "body"
    return ValidationError(f"{prefix}{where}: {first['msg']}")
