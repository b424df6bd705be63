"""
Error taxonomy for the quota engine and the HTTP handlers that render it.

Exceeding a quota is never an error: admission returns a decision with
``allowed=False``. Only infrastructure failures and invalid state machine
requests are raised.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException


logger = logging.getLogger(__name__)


class QuotaEngineError(Exception):
    """Base class for every error raised by the engine."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TenantNotFound(QuotaEngineError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, tenant_id) -> None:
        super().__init__(f"Tenant {tenant_id} not found")
        self.tenant_id = tenant_id


class InvalidTransition(QuotaEngineError):
    """The requested transition is not allowed from the tenant's current status."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, tenant_id, current_status: str, target_status: str) -> None:
        super().__init__(
            f"Cannot move subscription from '{current_status}' to '{target_status}'"
        )
        self.tenant_id = tenant_id
        self.current_status = current_status
        self.target_status = target_status


class ConcurrentModification(QuotaEngineError):
    """An optimistic update lost its race twice in a row."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, tenant_id, expected_status: str) -> None:
        super().__init__(
            f"Subscription for tenant {tenant_id} changed while it was being updated"
        )
        self.tenant_id = tenant_id
        self.expected_status = expected_status


class GatewayError(QuotaEngineError):
    """Base class for failures talking to the external payment provider."""

    status_code = status.HTTP_502_BAD_GATEWAY


class GatewayUnavailable(GatewayError):
    """The provider did not answer (timeout, transport error, 5xx)."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class GatewayRejected(GatewayError):
    """The provider answered with a business-level rejection."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, provider_status: int | None = None) -> None:
        super().__init__(message)
        self.provider_status = provider_status


class UnknownResourceKind(LookupError):
    """Programming error: a plan table was asked about a kind it does not define."""


class UnknownPlanTier(LookupError):
    """Programming error: no plan definition exists for the tier."""


async def _engine_error_handler(request: Request, exc: QuotaEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"message": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as ``{"message": ...}`` JSON."""

    app.add_exception_handler(QuotaEngineError, _engine_error_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
