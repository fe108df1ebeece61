"""Parcelflow exceptions and their HTTP mapping."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fastapi_parcelflow.errors import classify_api_error


class ParcelflowError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(ParcelflowError):
    """Missing credentials or shipper address."""


class ValidationError(ParcelflowError):
    """Incomplete address, non-positive dimensions or weight."""


class ApiError(ParcelflowError):
    """Carrier API failure: HTTP error, transport error or failure envelope."""

    def __init__(self, raw_message: str, status_code: int | None = None):
        self.raw_message = raw_message
        self.status_code = status_code
        self.category = classify_api_error(raw_message)
        super().__init__(raw_message)


class SignatureError(ParcelflowError):
    """Webhook authentication failure."""


class NotFoundError(ParcelflowError):
    """Unknown shipment, order or service reference."""


class ShipmentNotFoundError(NotFoundError):
    def __init__(self, shipment_id: str):
        self.shipment_id = shipment_id
        super().__init__(f"Shipment {shipment_id} not found")


def _error_response(status_code: int, exc: Exception, code: str):
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register parcelflow exception handlers on a FastAPI app.

    More specific handlers must be registered first so FastAPI
    matches them before the generic ParcelflowError handler.

    Handler order (most specific first):
    1. NotFoundError → 404
    2. ApiError → 502
    3. SignatureError → 401
    4. ConfigurationError → 503
    5. ValidationError → 422
    6. ParcelflowError → 400 (catch-all)
    """

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(404, exc, "not_found")

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=502,
            content={
                "detail": str(exc),
                "code": "api_error",
                "category": exc.category,
            },
        )

    @app.exception_handler(SignatureError)
    async def _signature(
        request: Request, exc: SignatureError
    ) -> JSONResponse:
        return _error_response(401, exc, "invalid_signature")

    @app.exception_handler(ConfigurationError)
    async def _configuration(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        return _error_response(503, exc, "not_configured")

    @app.exception_handler(ValidationError)
    async def _validation(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        return _error_response(422, exc, "validation_error")

    @app.exception_handler(ParcelflowError)
    async def _parcelflow_error(
        request: Request, exc: ParcelflowError
    ) -> JSONResponse:
        return _error_response(400, exc, "shipment_error")
