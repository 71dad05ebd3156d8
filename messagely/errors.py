"""API error definitions.

Data-access functions raise these; the exception handler in main.py turns
them into JSON responses with the mapped HTTP status.
"""

from enum import Enum

class ApiErrorCode(str, Enum):
    """Standardized error codes for the API."""

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_INVALID_CREDENTIALS = "E_INVALID_CREDENTIALS"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_USER_NOT_FOUND = "E_USER_NOT_FOUND"
    E_MESSAGE_NOT_FOUND = "E_MESSAGE_NOT_FOUND"

    # Conflict errors (409)
    E_USERNAME_TAKEN = "E_USERNAME_TAKEN"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"

ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_INVALID_CREDENTIALS: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_USER_NOT_FOUND: 404,
    ApiErrorCode.E_MESSAGE_NOT_FOUND: 404,
    ApiErrorCode.E_USERNAME_TAKEN: 409,
    ApiErrorCode.E_INVALID_REQUEST: 400,
}

class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)

class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)

class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)

class UnauthorizedError(ApiError):
    """Missing or invalid credentials."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_UNAUTHENTICATED, message: str = "Unauthorized"
    ):
        super().__init__(code, message)

class ConflictError(ApiError):
    """Uniqueness violation error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_USERNAME_TAKEN, message: str = "Conflict"):
        super().__init__(code, message)

class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)
