"""Shipment lifecycle orchestration for FastAPI."""

from typing import TYPE_CHECKING

__version__ = "0.1.0"

__all__ = [
    "BookingOrchestrator",
    "HttpShippingApiClient",
    "ParcelflowConfig",
    "ShipmentNotFoundError",
    "ShipmentStatus",
    "StatusStateMachine",
    "TrackingSynchronizer",
    "WebhookIngestor",
    "__version__",
    "create_parcelflow_router",
    "register_exception_handlers",
]

if TYPE_CHECKING:
    from fastapi_parcelflow.booking import BookingOrchestrator
    from fastapi_parcelflow.client import HttpShippingApiClient
    from fastapi_parcelflow.config import ParcelflowConfig
    from fastapi_parcelflow.exceptions import (
        ShipmentNotFoundError,
        register_exception_handlers,
    )
    from fastapi_parcelflow.router import create_parcelflow_router
    from fastapi_parcelflow.status import StatusStateMachine
    from fastapi_parcelflow.tracking import TrackingSynchronizer
    from fastapi_parcelflow.types import ShipmentStatus
    from fastapi_parcelflow.webhooks import WebhookIngestor


def __getattr__(name: str):
    # Lazy imports to avoid loading all submodules on package import.
    if name == "ParcelflowConfig":
        from fastapi_parcelflow.config import ParcelflowConfig

        return ParcelflowConfig
    if name == "create_parcelflow_router":
        from fastapi_parcelflow.router import create_parcelflow_router

        return create_parcelflow_router
    if name in ("ShipmentNotFoundError", "register_exception_handlers"):
        from fastapi_parcelflow import exceptions

        return getattr(exceptions, name)
    if name == "ShipmentStatus":
        from fastapi_parcelflow.types import ShipmentStatus

        return ShipmentStatus
    if name == "HttpShippingApiClient":
        from fastapi_parcelflow.client import HttpShippingApiClient

        return HttpShippingApiClient
    if name == "BookingOrchestrator":
        from fastapi_parcelflow.booking import BookingOrchestrator

        return BookingOrchestrator
    if name == "StatusStateMachine":
        from fastapi_parcelflow.status import StatusStateMachine

        return StatusStateMachine
    if name == "TrackingSynchronizer":
        from fastapi_parcelflow.tracking import TrackingSynchronizer

        return TrackingSynchronizer
    if name == "WebhookIngestor":
        from fastapi_parcelflow.webhooks import WebhookIngestor

        return WebhookIngestor
    raise AttributeError(
        f"module 'fastapi_parcelflow' has no attribute {name!r}"
    )
