"""
Exception hierarchy for the resume analysis service
"""
import asyncio
import functools
import inspect
import time
from random import uniform
from typing import Any, Dict

from fastapi import HTTPException


class ResumeAnalyzerError(Exception):
    """Base exception for the resume analysis service"""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None,
        cause: Exception = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/response"""
        result = {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }
        if self.cause:
            result["cause"] = str(self.cause)
        return result


class StageError(ResumeAnalyzerError):
    """A pipeline stage could not produce its output.

    ``stage`` names the step that failed; the orchestrator turns the message
    into the per-document ``error`` string.
    """

    stage = "stage"

    def __init__(self, message: str, document_id: str = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        details["stage"] = self.stage
        if document_id:
            details["document_id"] = document_id
        self.document_id = document_id
        super().__init__(message, error_code=kwargs.pop("error_code", None), details=details, **kwargs)


class AcquisitionError(StageError):
    """Raised when a source document is unreadable or unsupported"""

    stage = "acquisition"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="ACQUISITION_ERROR", **kwargs)


class NormalizationError(StageError):
    """Raised when the text fixer fails; the pipeline may continue with raw text"""

    stage = "normalization"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="NORMALIZATION_ERROR", **kwargs)


class ExtractionError(StageError):
    """Raised when structured extraction fails or returns an incomplete schema"""

    stage = "extraction"

    def __init__(self, message: str, missing_fields=None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if missing_fields:
            details["missing_fields"] = list(missing_fields)
        super().__init__(message, error_code="EXTRACTION_ERROR", details=details, **kwargs)


class ValidationError(ResumeAnalyzerError):
    """Raised when data validation fails"""

    def __init__(self, message: str, field: str = None, value: Any = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        if value is not None:
            details["invalid_value"] = str(value)
        super().__init__(message, error_code="VALIDATION_ERROR", details=details, **kwargs)


class DatabaseError(ResumeAnalyzerError):
    """Raised when the record or artifact store cannot be reached or written"""

    def __init__(self, message: str, operation: str = None, collection: str = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if operation:
            details["operation"] = operation
        if collection:
            details["collection"] = collection
        super().__init__(message, error_code="DATABASE_ERROR", details=details, **kwargs)


class DocumentNotFoundError(ResumeAnalyzerError):
    """Raised when a document id has no record"""

    def __init__(self, document_id: str, **kwargs):
        self.document_id = document_id
        super().__init__(
            f"Document {document_id} not found",
            error_code="DOCUMENT_NOT_FOUND",
            details={"document_id": document_id},
            **kwargs
        )


class ExternalServiceError(ResumeAnalyzerError):
    """Raised when an external service call (LLM, remote URL) fails"""

    def __init__(self, message: str, service_name: str = None, status_code: int = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if service_name:
            details["service_name"] = service_name
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, error_code="EXTERNAL_SERVICE_ERROR", details=details, **kwargs)


class ConfigurationError(ResumeAnalyzerError):
    """Raised when configuration is invalid or missing"""

    def __init__(self, message: str, config_key: str = None, config_value: Any = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = str(config_value)
        super().__init__(message, error_code="CONFIGURATION_ERROR", details=details, **kwargs)


STATUS_CODES = {
    ValidationError: 400,
    ConfigurationError: 400,
    DocumentNotFoundError: 404,
    AcquisitionError: 422,
    NormalizationError: 422,
    ExtractionError: 422,
    ExternalServiceError: 502,
    DatabaseError: 503,
}


def map_to_http_exception(exc: ResumeAnalyzerError) -> HTTPException:
    """Map service exceptions to HTTP exceptions"""
    status_code = 500
    for exc_type in type(exc).__mro__:
        if exc_type in STATUS_CODES:
            status_code = STATUS_CODES[exc_type]
            break

    detail = {
        "error": exc.to_dict(),
        "message": exc.message
    }
    return HTTPException(status_code=status_code, detail=detail)


class ExceptionContext:
    """Context manager that logs an operation and folds foreign errors into the hierarchy"""

    def __init__(self, operation: str, logger=None, **context):
        self.operation = operation
        self.logger = logger
        self.context = context

    def __enter__(self):
        if self.logger:
            self.logger.debug(f"Starting operation: {self.operation}", extra=self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            if self.logger:
                self.logger.debug(f"Operation completed: {self.operation}", extra=self.context)
            return False

        if self.logger:
            self.logger.error(
                f"Operation failed: {self.operation} - {exc_val}",
                extra={**self.context, "exception_type": exc_type.__name__}
            )

        if isinstance(exc_val, (ResumeAnalyzerError, HTTPException)) or not isinstance(exc_val, Exception):
            return False

        if isinstance(exc_val, (KeyError, ValueError, TypeError)):
            raise ValidationError(
                f"Validation error in {self.operation}: {exc_val}",
                details=dict(self.context),
                cause=exc_val
            ) from exc_val

        raise DatabaseError(
            f"Store error in {self.operation}: {exc_val}",
            operation=self.operation,
            details=dict(self.context),
            cause=exc_val
        ) from exc_val


def retry_with_logging(
    max_attempts: int = 3,
    backoff_factor: float = 1.0,
    exceptions: tuple = (Exception,),
    logger=None
):
    """Retry a sync or async callable with exponential backoff and jitter"""

    def _delay(attempt: int) -> float:
        return backoff_factor * (2 ** attempt) + uniform(0, backoff_factor)

    def _log_failure(func, attempt, exc):
        if logger:
            name = getattr(func, "__name__", repr(func))
            logger.warning(f"Attempt {attempt + 1}/{max_attempts} failed for {name}: {exc}")
            if attempt == max_attempts - 1:
                logger.error(f"All {max_attempts} attempts failed for {name}")

    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    _log_failure(func, attempt, e)
                    if attempt == max_attempts - 1:
                        raise
                    await asyncio.sleep(_delay(attempt))

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    _log_failure(func, attempt, e)
                    if attempt == max_attempts - 1:
                        raise
                    time.sleep(_delay(attempt))

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
