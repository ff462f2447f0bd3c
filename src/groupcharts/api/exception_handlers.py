"""Custom exception handlers for the FastAPI application.

Converts domain exceptions and validation errors into JSON responses with proper status
codes. Every response body is ``{"detail": ...}``.

Hey future me - FastAPI picks the handler by walking the exception's MRO, so
UnsupportedChartTypeError / UnsupportedRecordTypeError land in the ValidationException
handler (422) without needing their own.
"""

import json
import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from groupcharts.domain.exceptions import (
    AuthorizationError,
    BusinessRuleViolation,
    DomainException,
    DuplicateEntityException,
    EntityNotFoundException,
    InvalidStateException,
    ValidationException,
)

logger = logging.getLogger(__name__)

# starlette renamed the 422 constant; the number never changes
HTTP_422 = 422


# Hey future me - exc.errors() can carry the raw body as bytes in 'input', which JSONResponse
# can't serialize. Walk the structure and decode any bytes before responding.
def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    def _sanitize_value(value: Any) -> Any:
        if isinstance(value, bytes):
            try:
                return value.decode("utf-8")
            except UnicodeDecodeError:
                return value.decode("latin-1")
        if isinstance(value, dict):
            return {k: _sanitize_value(v) for k, v in value.items()}
        if isinstance(value, list | tuple):
            return [_sanitize_value(item) for item in value]
        return value

    return [_sanitize_value(error) for error in errors]


def _domain_response(
    request: Request,
    exc: DomainException,
    status_code: int,
    label: str,
    level: int = logging.WARNING,
) -> JSONResponse:
    logger.log(
        level,
        "%s at %s: %s",
        label,
        request.url.path,
        exc.message,
        extra={"path": request.url.path, "error": exc.message},
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers for domain exceptions, request validation and DB errors.

    Must run during app setup, before any request arrives.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(ValidationException)
    async def validation_exception_handler(
        request: Request, exc: ValidationException
    ) -> JSONResponse:
        """Domain validation (bad chart type, record type, chart size...) -> 422."""
        return _domain_response(request, exc, HTTP_422, "Validation error")

    @app.exception_handler(EntityNotFoundException)
    async def entity_not_found_exception_handler(
        request: Request, exc: EntityNotFoundException
    ) -> JSONResponse:
        logger.info(
            "Entity not found at %s: %s %s",
            request.url.path,
            exc.entity_type,
            exc.entity_id,
            extra={
                "path": request.url.path,
                "entity_type": exc.entity_type,
                "entity_id": str(exc.entity_id),
            },
        )
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": exc.message},
        )

    @app.exception_handler(DuplicateEntityException)
    async def duplicate_entity_exception_handler(
        request: Request, exc: DuplicateEntityException
    ) -> JSONResponse:
        return _domain_response(request, exc, status.HTTP_409_CONFLICT, "Duplicate entity")

    @app.exception_handler(InvalidStateException)
    async def invalid_state_exception_handler(
        request: Request, exc: InvalidStateException
    ) -> JSONResponse:
        return _domain_response(request, exc, status.HTTP_409_CONFLICT, "Invalid state")

    @app.exception_handler(BusinessRuleViolation)
    async def business_rule_violation_handler(
        request: Request, exc: BusinessRuleViolation
    ) -> JSONResponse:
        return _domain_response(
            request, exc, status.HTTP_400_BAD_REQUEST, "Business rule violation"
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(
        request: Request, exc: AuthorizationError
    ) -> JSONResponse:
        return _domain_response(request, exc, status.HTTP_403_FORBIDDEN, "Authorization error")

    @app.exception_handler(DomainException)
    async def domain_exception_handler(
        request: Request, exc: DomainException
    ) -> JSONResponse:
        """Anything else from the domain is our bug -> 500."""
        return _domain_response(
            request,
            exc,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Unhandled domain error",
            logging.ERROR,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        sanitized_errors = _sanitize_validation_errors(list(exc.errors()))
        logger.warning(
            "Request validation error at %s: %s",
            request.url.path,
            sanitized_errors,
            extra={"path": request.url.path, "errors": sanitized_errors},
        )
        return JSONResponse(status_code=HTTP_422, content={"detail": sanitized_errors})

    @app.exception_handler(json.JSONDecodeError)
    async def json_decode_error_handler(
        request: Request, exc: json.JSONDecodeError
    ) -> JSONResponse:
        logger.warning(
            "Malformed JSON at %s: %s",
            request.url.path,
            str(exc),
            extra={"path": request.url.path, "error": str(exc)},
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": f"Malformed JSON: {exc.msg}"},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "HTTP error %d at %s: %s",
            exc.status_code,
            request.url.path,
            exc.detail,
            extra={"path": request.url.path, "status_code": exc.status_code},
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(OperationalError)
    async def database_operational_error_handler(
        request: Request, exc: OperationalError
    ) -> JSONResponse:
        """DB locked/busy -> 503 with Retry-After, anything else -> 500."""
        error_msg = str(exc).lower()
        if "locked" in error_msg or "busy" in error_msg:
            logger.warning(
                "Database busy at %s",
                request.url.path,
                extra={"path": request.url.path, "error": str(exc)[:200]},
            )
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"detail": "Database is busy, please retry"},
                headers={"Retry-After": "3"},
            )
        logger.error(
            "Database error at %s: %s",
            request.url.path,
            str(exc)[:500],
            extra={"path": request.url.path, "error": str(exc)[:500]},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Database error occurred. Please try again."},
        )
