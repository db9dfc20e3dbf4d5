import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(ApiError):
    status_code = 400
    default_message = "Bad request"


class AuthorizationError(ApiError):
    status_code = 401
    default_message = "Authorization header missing"


class TokenMissing(AuthorizationError):
    default_message = "Token missing from Authorization header"


class ForbiddenError(ApiError):
    status_code = 403
    default_message = "You do not have permission"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not Found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Conflict"


class InvalidTransitionError(ConflictError):
    """A reservation was asked to move along an edge its state machine does not have."""

    def __init__(self, entity: str, current, requested):
        self.entity = entity
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move {entity} from {_name(current)} to {_name(requested)}"
        )


def _name(status) -> str:
    return getattr(status, "value", str(status))


def _error_body(message: str) -> dict:
    return {"status": "error", "message": message}


def _format_validation_error(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        # loc is ("body"|"query"|"path", field, ...)
        field = ".".join(str(p) for p in error.get("loc", ())[1:]) or "request"
        parts.append(f"{field}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts) or "Invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content=_error_body(_format_validation_error(exc)))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=_error_body("Internal server error"))
