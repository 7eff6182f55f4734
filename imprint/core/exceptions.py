"""
Global Exception Handling

Provides the error taxonomy, structured error responses and a circuit
breaker for the storage collaborator.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from imprint.core.logging import get_logger, upload_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class ImprintError(Exception):
    """Base exception for Imprint."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        upload_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.upload_id = upload_id or upload_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(ImprintError):
    """Raised when template parameters or request input are malformed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class InvalidRegionError(ValidationError):
    """Raised when a crop rectangle falls outside the source image."""

    def __init__(self, message: str, region: Dict[str, int], bounds: Dict[str, int], **kwargs):
        super().__init__(message, stage="geometry", **kwargs)
        self.details["region"] = region
        self.details["bounds"] = bounds


class NotFoundError(ImprintError):
    """Raised when a template or upload does not exist."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=404, **kwargs)


class ConflictError(ImprintError):
    """Raised when a write would break a uniqueness or reference constraint."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=409, **kwargs)


class DecodeError(ImprintError):
    """Raised when input bytes are not a decodable image."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=422, stage="decode", **kwargs)


class PipelineStageError(ImprintError):
    """Raised when a structural pipeline stage fails."""

    def __init__(self, message: str, stage: str, **kwargs):
        super().__init__(message, code=500, stage=stage, **kwargs)


class StorageError(ImprintError):
    """Raised when storage operations fail."""

    def __init__(self, message: str, backend: Optional[str] = None, **kwargs):
        kwargs.setdefault("stage", "storage")
        super().__init__(message, code=502, **kwargs)
        if backend:
            self.details["backend"] = backend


class CircuitBreakerOpenError(StorageError):
    """Raised when circuit breaker is open."""

    def __init__(self, service: str, **kwargs):
        super().__init__(
            f"Service '{service}' is temporarily unavailable (circuit breaker open)",
            **kwargs
        )
        self.code = 503
        self.details["service"] = service


class InvalidTransitionError(ImprintError):
    """Raised when an upload is moved along an edge the state machine lacks."""

    def __init__(self, current: str, target: str, **kwargs):
        super().__init__(
            f"Cannot transition upload from '{current}' to '{target}'",
            code=409,
            **kwargs
        )
        self.details["current"] = current
        self.details["target"] = target


class DecorationWarning(UserWarning):
    """A cosmetic stage (frame, watermark) failed and was skipped."""

    def __init__(self, stage: str, error: Exception):
        self.stage = stage
        self.error = error
        super().__init__(f"{stage} stage skipped: {error}")


# =============================================================================
# Circuit Breaker Implementation
# =============================================================================

class CircuitBreaker:
    """
    Circuit Breaker pattern for graceful failure handling.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Too many failures, requests fail fast
    - HALF_OPEN: Testing if service is recovered
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 3
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls

        self._failure_count = 0
        self._last_failure_time: Optional[datetime] = None
        self._state = "CLOSED"
        self._half_open_calls = 0

    @property
    def state(self) -> str:
        """Get current circuit breaker state."""
        if self._state == "OPEN" and self._last_failure_time:
            elapsed = (datetime.now(timezone.utc) - self._last_failure_time).total_seconds()
            if elapsed >= self.recovery_timeout:
                self._state = "HALF_OPEN"
                self._half_open_calls = 0
        return self._state

    def can_execute(self) -> bool:
        """Check if request can proceed."""
        state = self.state

        if state == "CLOSED":
            return True
        if state == "HALF_OPEN":
            return self._half_open_calls < self.half_open_max_calls
        return False

    def record_success(self):
        """Record a successful call."""
        if self._state == "HALF_OPEN":
            self._half_open_calls += 1
            if self._half_open_calls >= self.half_open_max_calls:
                self._state = "CLOSED"
                self._failure_count = 0
                logger.info("circuit_breaker_closed", circuit=self.name)
        elif self._state == "CLOSED":
            self._failure_count = 0

    def record_failure(self, error: Optional[Exception] = None):
        """Record a failed call."""
        self._failure_count += 1
        self._last_failure_time = datetime.now(timezone.utc)

        if self._state == "HALF_OPEN":
            self._state = "OPEN"
            logger.warning(
                "circuit_breaker_reopened",
                circuit=self.name,
                error=str(error) if error else None
            )
        elif self._failure_count >= self.failure_threshold:
            self._state = "OPEN"
            logger.warning(
                "circuit_breaker_opened",
                circuit=self.name,
                failure_count=self._failure_count,
                error=str(error) if error else None
            )

    def reset(self):
        """Reset the circuit breaker."""
        self._state = "CLOSED"
        self._failure_count = 0
        self._last_failure_time = None
        self._half_open_calls = 0


circuit_breakers: Dict[str, CircuitBreaker] = {
    "storage": CircuitBreaker("storage", failure_threshold=5, recovery_timeout=60),
}


def get_circuit_breaker(name: str) -> CircuitBreaker:
    """Get or create a circuit breaker for a service."""
    if name not in circuit_breakers:
        circuit_breakers[name] = CircuitBreaker(name)
    return circuit_breakers[name]


# =============================================================================
# Exception Handlers
# =============================================================================

def error_payload(exc: ImprintError) -> Dict[str, Any]:
    """Structured JSON body for an ImprintError."""
    return {
        "error": exc.message,
        "upload_id": exc.upload_id or upload_id_var.get(),
        "code": exc.code,
        "stage": exc.stage,
        "details": exc.details,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(ImprintError)
    async def imprint_exception_handler(request: Request, exc: ImprintError):
        log = logger.warning if exc.code < 500 else logger.error
        log(
            "imprint_exception",
            error=exc.message,
            code=exc.code,
            stage=exc.stage,
            details=exc.details,
            path=str(request.url.path)
        )

        return JSONResponse(status_code=exc.code, content=error_payload(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        logger.warning(
            "request_validation_failed",
            path=str(request.url.path),
            errors=len(errors)
        )

        return JSONResponse(
            status_code=400,
            content={
                "error": "Validation failed",
                "upload_id": upload_id_var.get(),
                "code": 400,
                "stage": None,
                "details": {"errors": errors},
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "upload_id": upload_id_var.get(),
                "code": 500,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )
