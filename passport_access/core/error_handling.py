"""
Error Handling & Sanitization
Access-control error taxonomy plus the middleware that keeps unexpected
failures from leaking internals to clients.

Every engine failure is an AccessControlError carrying an HTTP status and a
short error kind; the FastAPI handler renders it as
{"success": false, "message": ..., "error": ...}.
"""

import logging
import uuid
from typing import Optional, Dict, Any
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from passport_access.core.logging import log_error

logger = logging.getLogger(__name__)


class AccessControlError(Exception):
    """Base class for access-control decisions that end in a refusal"""
    status_code = 500
    error_type = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AccessValidationError(AccessControlError):
    status_code = 400
    error_type = "validation_error"


class InvalidCodeError(AccessControlError):
    """Submitted digits match no stored code"""
    status_code = 400
    error_type = "invalid_code"


class TooManyAttemptsError(AccessControlError):
    """Code dropped after too many wrong guesses; a new one must be requested"""
    status_code = 429
    error_type = "too_many_attempts"


class NotFoundError(AccessControlError):
    status_code = 404
    error_type = "not_found"


class NoCodeError(NotFoundError):
    """No code has been requested for this patient"""
    error_type = "no_code"


class ForbiddenError(AccessControlError):
    status_code = 403
    error_type = "forbidden"


class EditLockedError(ForbiddenError):
    """Synced observation is past its edit window and the clinician is not on its allow-list"""
    error_type = "edit_locked"


class RequestAlreadyProcessedError(AccessControlError):
    status_code = 409
    error_type = "already_processed"


class ExpiredError(AccessControlError):
    status_code = 410
    error_type = "expired"


class ErrorSanitizer:
    """Sanitizes errors to prevent information leakage"""

    SENSITIVE_PATTERNS = [
        'password', 'secret', 'token', 'key', 'credential',
        'database', 'connection', 'sql', 'query', 'stack',
        'traceback', 'file', 'path', 'internal', 'server'
    ]

    @staticmethod
    def sanitize_error(error: Exception) -> Dict[str, Any]:
        """
        Sanitize error for client response

        Args:
            error: Exception instance

        Returns:
            Sanitized error dictionary
        """
        if isinstance(error, AccessControlError):
            return {
                "success": False,
                "message": error.message,
                "error": error.error_type,
                "status_code": error.status_code,
            }

        if isinstance(error, HTTPException):
            return {
                "success": False,
                "message": str(error.detail),
                "error": "http_exception",
                "status_code": error.status_code,
            }

        error_lower = str(error).lower()
        if any(pattern in error_lower for pattern in ErrorSanitizer.SENSITIVE_PATTERNS):
            return ErrorSanitizer._generic()

        if type(error).__name__ in ["ValidationError", "ValueError"]:
            return {
                "success": False,
                "message": "Validation error",
                "error": "validation_error",
                "status_code": 400,
            }

        return ErrorSanitizer._generic()

    @staticmethod
    def _generic() -> Dict[str, Any]:
        return {
            "success": False,
            "message": "An error occurred processing your request",
            "error": "internal_error",
            "status_code": 500,
            "error_id": ErrorSanitizer._generate_error_id(),
        }

    @staticmethod
    def _generate_error_id() -> str:
        """Generate a unique error ID for tracking"""
        return str(uuid.uuid4())[:8]


def access_control_error_handler(request: Request, exc: AccessControlError) -> JSONResponse:
    """FastAPI exception handler for refusals raised by the engines"""
    logger.info(f"{request.method} {request.url.path} refused: {exc.error_type} ({exc.status_code})")
    content = {
        "success": False,
        "message": exc.message,
        "error": exc.error_type,
    }
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to catch and sanitize unexpected errors
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            error_id = ErrorSanitizer._generate_error_id()
            log_error(
                f"Unhandled exception [{error_id}]: {type(e).__name__}: {str(e)}",
                logger_name="error_handler",
                exc_info=True
            )

            sanitized = ErrorSanitizer.sanitize_error(e)
            sanitized["error_id"] = error_id
            status_code = sanitized.pop("status_code")

            return JSONResponse(
                status_code=status_code,
                content=sanitized
            )
