"""Router factory for fastapi-parcelflow."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import APIRouter, FastAPI

from fastapi_parcelflow.client import HttpShippingApiClient
from fastapi_parcelflow.config import ParcelflowConfig
from fastapi_parcelflow.exceptions import register_exception_handlers
from fastapi_parcelflow.parcels import DefaultParcelSizer
from fastapi_parcelflow.protocols import (
    CartResolver,
    Mailer,
    ParcelSizer,
    QuoteRepository,
    ShipmentLocker,
    ShipmentRepository,
    ShippingApiClient,
    WebhookEventStore,
)
from fastapi_parcelflow.routes.quotes import router as quotes_router
from fastapi_parcelflow.routes.shipments import router as shipments_router
from fastapi_parcelflow.routes.webhooks import router as webhooks_router
from fastapi_parcelflow.status import utcnow


def create_parcelflow_router(
    *,
    config: ParcelflowConfig,
    repository: ShipmentRepository,
    quote_repository: QuoteRepository,
    event_store: WebhookEventStore,
    api_client: ShippingApiClient | None = None,
    cart_resolver: CartResolver | None = None,
    parcel_sizer: ParcelSizer | None = None,
    mailer: Mailer | None = None,
    locker: ShipmentLocker | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> APIRouter:
    """Create a configured API router."""
    actual_client = api_client or HttpShippingApiClient(config)
    actual_sizer = parcel_sizer or DefaultParcelSizer(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        app.state.parcelflow_config = config
        app.state.parcelflow_repository = repository
        app.state.parcelflow_quote_repository = quote_repository
        app.state.parcelflow_event_store = event_store
        app.state.parcelflow_api_client = actual_client
        app.state.parcelflow_cart_resolver = cart_resolver
        app.state.parcelflow_parcel_sizer = actual_sizer
        app.state.parcelflow_mailer = mailer
        app.state.parcelflow_locker = locker
        app.state.parcelflow_clock = clock
        register_exception_handlers(app)
        yield

    router = APIRouter(lifespan=lifespan)
    router.include_router(shipments_router)
    router.include_router(quotes_router)
    router.include_router(webhooks_router)
    return router
