"""
Global exception handling and request timing middleware
"""
import time
import traceback
import uuid
from datetime import datetime
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from resume_analyzer.utils.exceptions import ResumeAnalyzerError, map_to_http_exception
from resume_analyzer.utils.logging_config import get_logger

logger = get_logger(__name__)

QUIET_PATHS = ("/", "/health")


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """Turns every escaping exception into the standard JSON error body"""

    async def dispatch(self, request: Request, call_next):
        # Generate request ID for tracking
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        except ResumeAnalyzerError as exc:
            logger.error(
                f"{exc.__class__.__name__} in {request.method} {request.url.path}: {exc.message}",
                extra={
                    "request_id": request_id,
                    "error_code": exc.error_code,
                    "details": exc.details,
                }
            )
            http_exc = map_to_http_exception(exc)
            return self._create_error_response(request_id, http_exc.status_code, http_exc.detail)

        except RequestValidationError as exc:
            logger.error(
                f"Validation error in {request.method} {request.url.path}: {exc}",
                extra={"request_id": request_id, "validation_errors": exc.errors()}
            )
            return self._create_error_response(request_id, 422, {
                "error": "Validation failed",
                "message": "Request data validation failed",
                "validation_errors": exc.errors(),
            })

        except PydanticValidationError as exc:
            logger.error(
                f"Pydantic validation error in {request.method} {request.url.path}: {exc}",
                extra={"request_id": request_id}
            )
            return self._create_error_response(request_id, 400, {
                "error": "Data validation failed",
                "message": "Invalid data format or values",
                "validation_errors": exc.errors(include_url=False),
            })

        except HTTPException as exc:
            logger.warning(
                f"HTTP exception in {request.method} {request.url.path}: {exc.detail}",
                extra={"request_id": request_id, "status_code": exc.status_code}
            )
            return self._create_error_response(request_id, exc.status_code, exc.detail)

        except Exception as exc:
            logger.error(
                f"Unhandled exception in {request.method} {request.url.path}: {exc}",
                extra={
                    "request_id": request_id,
                    "exception_type": exc.__class__.__name__,
                    "traceback": traceback.format_exc(),
                },
                exc_info=True
            )
            # Don't expose internal errors
            return self._create_error_response(request_id, 500, {
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            })

    def _create_error_response(self, request_id: str, status_code: int, detail: Any) -> JSONResponse:
        """Create standardized error response"""
        if isinstance(detail, str):
            detail = {"message": detail}
        elif not isinstance(detail, dict):
            detail = {"message": str(detail)}

        error_response = {
            "success": False,
            "timestamp": datetime.utcnow().isoformat(),
            "request_id": request_id,
            "status_code": status_code,
            **detail
        }
        return JSONResponse(status_code=status_code, content=error_response, headers={"X-Request-ID": request_id})


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Logs each request with its duration and flags slow ones"""

    def __init__(self, app, slow_request_threshold: float = 2.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        request_id = getattr(request.state, "request_id", None)

        response = await call_next(request)
        processing_time = time.perf_counter() - start_time
        response.headers["X-Processing-Time"] = f"{processing_time:.3f}"

        if request.url.path in QUIET_PATHS:
            return response

        message = f"{request.method} {request.url.path} - {response.status_code} in {processing_time:.3f}s"
        if processing_time > self.slow_request_threshold:
            logger.warning(
                f"Slow request: {message}",
                extra={"request_id": request_id, "threshold": self.slow_request_threshold}
            )
        else:
            logger.info(message, extra={"request_id": request_id})
        return response
