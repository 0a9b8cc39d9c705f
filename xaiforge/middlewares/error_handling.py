"""
Exception handlers mapping application errors to JSON responses.
"""
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict
import logging

from xaiforge.core.exceptions import XaiForgeError

logger = logging.getLogger(__name__)


def error_body(request: Request, error: str, detail: Any) -> Dict[str, Any]:
    return {
        "error": error,
        "detail": detail,
        "request_id": getattr(request.state, "request_id", None),
    }


async def xaiforge_exception_handler(request: Request, exc: XaiForgeError):
    """Handler for application errors."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_type} in {request.url.path}: {exc.detail}")
    else:
        logger.info(f"{exc.error_type} in {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.error_type, exc.detail),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handler for HTTP exceptions."""
    logger.warning(f"HTTP exception in {request.url.path}: {exc.status_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, "http_error", exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled exceptions."""
    logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content=error_body(request, "internal_error", "An unexpected error occurred. Please try again later."),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(XaiForgeError, xaiforge_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
