"""
Skirmish Engine - Error Handler
Turns engine errors and request problems into structured JSON responses.
"""
import traceback
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from skirmish.core.errors import ErrorCode, GameError

logger = logging.getLogger("skirmish.errors")

# Map plain HTTP status codes to error codes
HTTP_ERROR_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.VALIDATION_ERROR,
    409: ErrorCode.CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
    500: ErrorCode.UNKNOWN,
}


def _generate_error_id() -> str:
    """Generate a short error ID for tracking."""
    return str(uuid.uuid4())[:8]


def _envelope(
    error_id: str,
    kind: str,
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    recoverable: bool = True,
    recovery_hint: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "error": {
            "kind": kind,
            "code": code.value,
            "message": message,
            "details": details or {},
            "recoverable": recoverable,
            "recovery_hint": recovery_hint,
            "error_id": error_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }


def setup_error_handlers(app: FastAPI, debug: bool = False):
    """
    Setup all error handlers for the FastAPI application.

    Call this function after creating the FastAPI app to register
    exception handlers for GameError and standard exceptions.
    """

    @app.exception_handler(GameError)
    async def game_error_handler(request: Request, exc: GameError):
        """Handle engine errors: not found, validation, conflict, rule violation."""
        error_id = _generate_error_id()

        logger.warning(
            f"[{error_id}] {exc.kind()}: {exc.code.value} - {exc.message}",
            extra={
                "error_id": error_id,
                "error_code": exc.code.value,
                "path": str(request.url.path),
            }
        )

        response_data = exc.to_dict()
        response_data["error"]["error_id"] = error_id
        response_data["error"]["timestamp"] = datetime.now(timezone.utc).isoformat()

        return JSONResponse(
            status_code=exc.http_status,
            content=response_data
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors from request parsing."""
        errors = []
        for error in exc.errors():
            field = " -> ".join(str(loc) for loc in error.get("loc", []))
            errors.append({
                "field": field,
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type", "validation_error")
            })

        error_id = _generate_error_id()
        logger.warning(f"[{error_id}] Request validation failed on {request.url.path}: {len(errors)} errors")

        return JSONResponse(
            status_code=400,
            content=_envelope(
                error_id,
                "ValidationError",
                ErrorCode.VALIDATION_ERROR,
                "Request validation failed",
                {"errors": errors},
                recovery_hint="Check the request data and correct any invalid fields",
            )
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle standard HTTP exceptions (unknown routes, wrong methods)."""
        error_code = HTTP_ERROR_CODES.get(exc.status_code, ErrorCode.UNKNOWN)

        return JSONResponse(
            status_code=exc.status_code,
            content=_envelope(
                _generate_error_id(),
                "NotFoundError" if exc.status_code == 404 else "HTTPError",
                error_code,
                str(exc.detail) if exc.detail else "An error occurred",
                recoverable=exc.status_code < 500,
            )
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions."""
        error_id = _generate_error_id()

        logger.error(
            f"[{error_id}] Unhandled exception: {type(exc).__name__}: {exc}",
            extra={
                "error_id": error_id,
                "path": str(request.url.path),
                "method": request.method,
            },
            exc_info=True
        )

        content = _envelope(
            error_id,
            "InternalError",
            ErrorCode.UNKNOWN,
            "An unexpected error occurred",
            recoverable=False,
            recovery_hint="Please try again or report the error id",
        )

        # Add debug info if in debug mode
        if debug:
            content["error"]["debug"] = {
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
                "traceback": traceback.format_exc().split("\n")
            }

        return JSONResponse(
            status_code=500,
            content=content
        )

    return app
