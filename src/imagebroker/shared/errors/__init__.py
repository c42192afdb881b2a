"""Global exception handlers — map domain errors to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
import structlog

from imagebroker.domain.exceptions import (
    AuthenticationError,
    AuthorisationError,
    DomainError,
    GenerationNotFoundError,
    InvalidStatusTransitionError,
    ProviderNotFoundError,
    UserNotFoundError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def _error(status_code: int, exc: DomainError) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code,
        content={"code": exc.code, "message": exc.message},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain→HTTP exception mappings."""

    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError) -> ORJSONResponse:
        return _error(422, exc)

    @app.exception_handler(GenerationNotFoundError)
    @app.exception_handler(ProviderNotFoundError)
    @app.exception_handler(UserNotFoundError)
    async def handle_not_found(request: Request, exc: DomainError) -> ORJSONResponse:
        return _error(404, exc)

    @app.exception_handler(InvalidStatusTransitionError)
    async def handle_conflict(
        request: Request, exc: InvalidStatusTransitionError
    ) -> ORJSONResponse:
        logger.info("status_conflict_http", message=exc.message)
        return _error(409, exc)

    @app.exception_handler(AuthenticationError)
    async def handle_authn(request: Request, exc: AuthenticationError) -> ORJSONResponse:
        return _error(401, exc)

    @app.exception_handler(AuthorisationError)
    async def handle_authz(request: Request, exc: AuthorisationError) -> ORJSONResponse:
        return _error(403, exc)

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> ORJSONResponse:
        return _error(400, exc)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc))
        return ORJSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )
