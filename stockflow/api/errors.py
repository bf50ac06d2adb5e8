"""
API Error Handlers
Maps engine exceptions onto HTTP responses
"""
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from stockflow.core.config import settings
from stockflow.core.exceptions import (
    DetailError, DocumentNotFound, InsufficientStock, LinkageError,
    ModelNotFound, StockflowException, TransitionError, ValidationError,
)
from stockflow.core.logging import get_logger

logger = get_logger("api")

RETRY_AFTER_SECONDS = 1


def status_for(exc: StockflowException) -> int:
    """HTTP status for an engine error"""
    if exc.retryable:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, (DocumentNotFound, ModelNotFound)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (ValidationError, DetailError)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, (TransitionError, LinkageError, InsufficientStock)):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def stockflow_exception_handler(request: Request, exc: StockflowException):
    """
    Engine exception handler

    Args:
        request: FastAPI request object
        exc: Engine exception that occurred

    Returns:
        JSON error response with detail, code and context
    """
    code = status_for(exc)
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
    if code >= 500 and not exc.retryable:
        logger.error(f"{request.method} {request.url.path}: {exc.code} {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path}: {code} {exc.code}")
    return JSONResponse(status_code=code, content=exc.to_dict(), headers=headers)


async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors
    """
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
            "code": "SERVER_ERROR",
            "context": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StockflowException, stockflow_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
