class AuthError(Exception):
    """Base class for failures surfaced by the OTP login flow."""

    message = "Authentication failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class BadRequest(AuthError):
    message = "Bad request"


class Forbidden(AuthError):
    message = "Email not authorized"


class InvalidCode(AuthError):
    message = "Invalid code"


class CodeExpired(InvalidCode):
    message = "Code expired"


class RateLimited(AuthError):
    message = "Too many requests, please try again later"

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class DeliveryFailed(AuthError):
    message = "Failed to send OTP email"


class Unavailable(AuthError):
    message = "Authentication service unavailable"
