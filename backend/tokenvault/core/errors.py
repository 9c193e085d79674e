"""Typed application errors and the handlers that turn them into responses.

Domain code (refresh token manager, token signer, user store) raises one of
the :class:`AppError` variants below. Each variant belongs to exactly one
:class:`ErrorKind`, and :func:`register_exception_handlers` maps every kind
to a single HTTP status and a safe message. Error bodies have the shape
``{"status": ..., "message": ...}`` with an extra ``cause`` outside
production.
"""

from enum import Enum
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tokenvault.core.logging import logger


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    DUPLICATE_KEY = "duplicate_key"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


STATUS_BY_KIND = {
    ErrorKind.VALIDATION: HTTPStatus.BAD_REQUEST,
    ErrorKind.DUPLICATE_KEY: HTTPStatus.CONFLICT,
    ErrorKind.UNAUTHORIZED: HTTPStatus.UNAUTHORIZED,
    ErrorKind.FORBIDDEN: HTTPStatus.FORBIDDEN,
    ErrorKind.NOT_FOUND: HTTPStatus.NOT_FOUND,
    ErrorKind.INTERNAL: HTTPStatus.INTERNAL_SERVER_ERROR,
}

# NOTE: 401 and 500 never echo the specific reason to the client.
GENERIC_MESSAGES = {
    ErrorKind.UNAUTHORIZED: "Invalid or missing credentials.",
    ErrorKind.INTERNAL: "An unexpected condition was encountered.",
}


class AppError(Exception):
    """Base class for every error the API knows how to report.

    Attributes:
        kind: The error category, which fixes the HTTP status.
        message: Human-readable message (may be replaced at the boundary).
        details: Optional structured details (e.g. field messages).
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    default_message = "An unexpected condition was encountered."

    def __init__(self, message: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def status(self) -> int:
        return int(STATUS_BY_KIND[self.kind])


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION
    default_message = "The request data is invalid."


class DuplicateKeyError(AppError):
    kind = ErrorKind.DUPLICATE_KEY
    default_message = "The username and/or email address is already registered."


class Unauthorized(AppError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Invalid credentials."


class Forbidden(AppError):
    kind = ErrorKind.FORBIDDEN
    default_message = "Permission to the requested resource was denied."


class NotFound(AppError):
    kind = ErrorKind.NOT_FOUND
    default_message = "The requested resource was not found."


class InternalError(AppError):
    kind = ErrorKind.INTERNAL


class TokenMissing(Unauthorized):
    default_message = "No refresh token was supplied or it does not exist."


class TokenInactive(Unauthorized):
    default_message = "Refresh token is revoked or expired."


class TokenExpired(Unauthorized):
    default_message = "Access token has expired."


class SignatureInvalid(Unauthorized):
    default_message = "Access token is malformed or its signature is invalid."


class StorageError(InternalError):
    default_message = "The credential store rejected the write."


class SigningError(InternalError):
    default_message = "Access token could not be signed."


def error_body(
    status: int, message: str, cause: dict | None = None, details: dict | None = None
) -> dict:
    body = {"status": status, "message": message}
    if details:
        body["details"] = details
    if cause:
        body["cause"] = cause
    return body


def _describe(exc: BaseException) -> dict:
    cause = {"type": exc.__class__.__name__, "message": str(exc)}
    if exc.__cause__ is not None:
        cause["cause"] = {
            "type": exc.__cause__.__class__.__name__,
            "message": str(exc.__cause__),
        }
    return cause


def to_response(exc: AppError, expose_cause: bool) -> JSONResponse:
    """Render an :class:`AppError` as a JSON response.

    Args:
        exc: The raised application error.
        expose_cause: Include the specific cause in the body.

    Returns:
        JSONResponse: ``{status, message}`` with optional ``details``/``cause``.
    """
    status = exc.status
    message = GENERIC_MESSAGES.get(exc.kind, exc.message)
    cause = _describe(exc) if expose_cause else None
    headers = None
    if exc.kind is ErrorKind.UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=status,
        content=jsonable_encoder(error_body(status, message, cause, exc.details)),
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers producing the uniform error envelope.

    Whether error causes are exposed is decided from ``app.state.settings``
    at request time.
    """

    def _expose_cause(request: Request) -> bool:
        settings = getattr(request.app.state, "settings", None)
        return settings is not None and not settings.is_production

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if exc.kind is ErrorKind.INTERNAL:
            logger.opt(exception=exc).error(
                "{} {} failed: {}", request.method, request.url.path, exc.message
            )
        else:
            logger.info(
                "{} {} -> {} ({}: {})",
                request.method,
                request.url.path,
                exc.status,
                exc.__class__.__name__,
                exc.message,
            )
        return to_response(exc, _expose_cause(request))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        fields = {}
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            fields[loc or "body"] = err.get("msg", "Invalid value")
        message = "; ".join(f"{k}: {v}" for k, v in fields.items()) or "Invalid input"
        return to_response(
            ValidationError(message, details=fields), _expose_cause(request)
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.status_code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.opt(exception=exc).error(
            "Unhandled exception on {} {}", request.method, request.url.path
        )
        cause = _describe(exc) if _expose_cause(request) else None
        status = int(HTTPStatus.INTERNAL_SERVER_ERROR)
        return JSONResponse(
            status_code=status,
            content=error_body(status, GENERIC_MESSAGES[ErrorKind.INTERNAL], cause),
        )
