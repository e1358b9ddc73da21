from typing import Optional


class ApiError(Exception):
    """Base class for errors rendered as a JSON ``{"message": ...}`` body."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {"message": self.message}


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid request."


class Unauthenticated(ApiError):
    status_code = 401
    default_message = "No token provided"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Not authorized"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class UserNotFound(NotFound):
    # Login reports an unknown email as a bad request, not a missing resource.
    status_code = 400
    default_message = "User not found"


class DuplicateEmail(ValidationError):
    default_message = "Email already registered"


class InvalidCredentials(ValidationError):
    default_message = "Incorrect password"


class InternalError(ApiError):
    pass
