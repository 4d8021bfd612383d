"""
Application errors and the FastAPI handlers that turn them into responses.

Services raise AppException subclasses; the handlers registered in
localchat.main render every error body as {"detail": <message>}, the same
shape FastAPI uses for its own HTTPException.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import logging

logger = logging.getLogger(__name__)


class AppException(Exception):
    """An error with an HTTP status attached."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(AppException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class BadRequestError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Invalid request"):
        super().__init__(message)


class LLMConnectionError(AppException):
    """The model provider was unreachable, refused the request or answered garbage."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Failed to reach the LLM server"):
        super().__init__(message)


class PersistenceError(AppException):
    """A durable read or write did not succeed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Failed to reach the chat store"):
        super().__init__(message)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Flatten pydantic errors into "field.path: message" strings."""
    errors = [
        f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Invalid input", "errors": errors},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )
