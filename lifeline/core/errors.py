"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors

Propagation rules:
    • ArtifactLoadError / VocabularyError never leave the triage combiner
    • AlertStoreError never leaves the submission pipeline (→ queued)
    • RateLimitError is the only error meant to change user-visible flow

Usage:
    from lifeline.core.errors import ArtifactLoadError

    raise ArtifactLoadError("urgency_model", path="models/urgency_nb.json")
"""

from __future__ import annotations

import logging
import math
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lifeline.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class LifelineError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ArtifactLoadError(LifelineError):
    """A classifier artifact is missing or malformed (503)."""

    def __init__(self, artifact: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Artifact '{artifact}' could not be loaded: {message}",
            status_code=503,
            error_code="ARTIFACT_LOAD_ERROR",
            details={"artifact": artifact, **details},
        )
        self.artifact = artifact


class VocabularyError(LifelineError):
    """Vector / vocabulary contract violation that could not be repaired."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=500,
            error_code="VOCABULARY_ERROR",
            details=details,
        )


class LocationUnavailableError(LifelineError):
    """A location fix was denied or failed (503)."""

    def __init__(self, message: str = "Location unavailable", **details: Any):
        super().__init__(
            message=message,
            status_code=503,
            error_code="LOCATION_UNAVAILABLE",
            details=details,
        )


class AlertStoreError(LifelineError):
    """The remote alert store was unreachable or rejected a record (502)."""

    def __init__(self, message: str = "", **details: Any):
        super().__init__(
            message=f"Alert store append failed: {message}",
            status_code=502,
            error_code="ALERT_STORE_ERROR",
            details=details,
        )


class RateLimitError(LifelineError):
    """Send rate limit or cooldown exceeded (429)."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: float = 60):
        super().__init__(
            message=message,
            status_code=429,
            error_code="RATE_LIMIT_EXCEEDED",
            details={"retry_after_seconds": round(retry_after, 1)},
        )
        self.retry_after = retry_after


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(LifelineError)
    async def handle_lifeline_error(request: Request, exc: LifelineError):
        if exc.status_code < 500:
            logger.warning("API Error [%s]: %s", exc.error_code, exc.message)
        else:
            logger.error(
                "API Error [%s]: %s | details=%s",
                exc.error_code, exc.message, exc.details,
            )
        response = _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )
        if isinstance(exc, RateLimitError):
            response.headers["Retry-After"] = str(math.ceil(exc.retry_after))
        return response

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _build_error_response(500, "INTERNAL_ERROR", message, request=request)
