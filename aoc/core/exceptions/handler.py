"""
Centralized error handling for the AOC API.
Provides consistent error responses, logging, and HTTP status codes across all services.
"""

import math
import traceback
from typing import Dict, Any, Optional
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from datetime import datetime

from aoc.core.logger.logger import get_logger
from aoc.infra.config.settings import get_settings

logger = get_logger(__name__)
settings = get_settings()


class ServiceErrorCode:
    """Standard error codes for services"""

    # Validation
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_INVITE_CODE = "INVALID_INVITE_CODE"

    # Lookup
    NOT_FOUND = "NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"

    # Business Logic
    USER_ALREADY_EXISTS = "USER_ALREADY_EXISTS"
    TASK_ALREADY_COMPLETED = "TASK_ALREADY_COMPLETED"
    DUPLICATE_SIGNATURE = "DUPLICATE_SIGNATURE"
    TIER_SOLD_OUT = "TIER_SOLD_OUT"
    USER_TIER_LIMIT_REACHED = "USER_TIER_LIMIT_REACHED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"

    # External services
    PRICE_UNAVAILABLE = "PRICE_UNAVAILABLE"
    RPC_ERROR = "RPC_ERROR"

    # System
    INTERNAL_ERROR = "INTERNAL_ERROR"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class ServiceError(Exception):
    """
    Standardized service error for internal use.
    Gets converted to proper HTTP response by error handler.

    `expected` marks business-rule outcomes (caps, duplicates, failed
    verification). They are logged as warnings without a traceback.
    """

    expected = False

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.context = context or {}
        super().__init__(message)


class ErrorResponseBuilder:
    """Builds standardized error responses"""

    @staticmethod
    def build_error_response(
        error_code: str,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Build standardized error response"""

        response = {
            "success": False,
            "error": {
                "code": error_code,
                "message": message,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        }

        if details:
            response["error"]["details"] = jsonable_encoder(details)

        if request_id:
            response["error"]["request_id"] = request_id

        return response

    @staticmethod
    def build_validation_error_response(
        validation_errors: list,
        request_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Build validation error response"""

        return ErrorResponseBuilder.build_error_response(
            error_code=ServiceErrorCode.INVALID_INPUT,
            message="Validation failed",
            status_code=422,
            details={
                "validation_errors": validation_errors
            },
            request_id=request_id
        )


def _request_id(request: Request) -> str:
    # Set by RequestLoggingMiddleware, which also generates missing ids
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID", "unknown")


def _json_safe(value: Any) -> Any:
    # JSONResponse refuses NaN and Infinity
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    return value


def _request_context(request: Request, **fields) -> Dict[str, Any]:
    fields.update({
        "request_id": _request_id(request),
        "path": request.url.path,
        "method": request.method
    })
    return fields


class GlobalErrorHandler:
    """Global error handler for all application errors"""

    @staticmethod
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        """Handle ServiceError exceptions"""

        log_context = _request_context(
            request,
            error_code=exc.code,
            error_message=exc.message,
            status_code=exc.status_code,
            details=exc.details,
            context=exc.context
        )
        if exc.expected:
            logger.warning(f"Request rejected: {exc.code}", extra=log_context)
        else:
            logger.error(f"Service error: {exc.code}", extra=log_context)

        response = ErrorResponseBuilder.build_error_response(
            error_code=exc.code,
            message=exc.message,
            status_code=exc.status_code,
            details=exc.details,
            request_id=log_context["request_id"]
        )

        return JSONResponse(
            status_code=exc.status_code,
            content=response
        )

    @staticmethod
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle Pydantic validation errors"""

        validation_errors = []
        for error in exc.errors():
            field = '.'.join(str(loc) for loc in error['loc'])
            validation_errors.append({
                'field': field,
                'message': error['msg'],
                'input': _json_safe(error.get('input'))
            })

        logger.warning(
            f"Validation error: {len(validation_errors)} errors",
            extra=_request_context(request, validation_errors=validation_errors)
        )

        response = ErrorResponseBuilder.build_validation_error_response(
            validation_errors=validation_errors,
            request_id=_request_id(request)
        )

        return JSONResponse(
            status_code=422,
            content=response
        )

    @staticmethod
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions"""

        log_context = _request_context(request, error_type=type(exc).__name__, error_message=str(exc))

        # Log full traceback for debugging
        logger.error(
            f"Unexpected error: {type(exc).__name__}",
            extra=log_context,
            exc_info=True
        )

        # Never expose internal errors in production
        if settings.DEBUG:
            message = f"Internal error: {str(exc)}"
            details = {"traceback": traceback.format_exc()}
        else:
            message = "An unexpected error occurred. Please try again."
            details = {}

        response = ErrorResponseBuilder.build_error_response(
            error_code=ServiceErrorCode.INTERNAL_ERROR,
            message=message,
            status_code=500,
            details=details,
            request_id=log_context["request_id"]
        )

        return JSONResponse(
            status_code=500,
            content=response
        )
