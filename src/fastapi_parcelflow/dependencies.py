"""Dependency providers for request handlers."""

from __future__ import annotations

from fastapi import Request

from fastapi_parcelflow.booking import BookingOrchestrator
from fastapi_parcelflow.config import ParcelflowConfig
from fastapi_parcelflow.exceptions import ConfigurationError
from fastapi_parcelflow.notifications import NotificationTrigger
from fastapi_parcelflow.offers import OfferSelector
from fastapi_parcelflow.protocols import (
    QuoteRepository,
    ShipmentRepository,
    ShippingApiClient,
    WebhookEventStore,
)
from fastapi_parcelflow.quotes import QuoteCache
from fastapi_parcelflow.status import StatusStateMachine
from fastapi_parcelflow.tracking import TrackingSynchronizer
from fastapi_parcelflow.webhooks import WebhookIngestor


def get_config(request: Request) -> ParcelflowConfig:
    """Read config from FastAPI app state."""
    return request.app.state.parcelflow_config


def get_repository(request: Request) -> ShipmentRepository:
    """Read shipment repository from FastAPI app state."""
    return request.app.state.parcelflow_repository


def get_quote_repository(request: Request) -> QuoteRepository:
    return request.app.state.parcelflow_quote_repository


def get_event_store(request: Request) -> WebhookEventStore:
    return request.app.state.parcelflow_event_store


def get_api_client(request: Request) -> ShippingApiClient:
    return request.app.state.parcelflow_api_client


def get_state_machine(request: Request) -> StatusStateMachine:
    """Create the state machine for the current request."""
    state = request.app.state
    return StatusStateMachine(
        repository=get_repository(request),
        notifier=NotificationTrigger(
            get_config(request), getattr(state, "parcelflow_mailer", None)
        ),
        api_client=get_api_client(request),
        locker=getattr(state, "parcelflow_locker", None),
        clock=state.parcelflow_clock,
    )


def get_offer_selector(request: Request) -> OfferSelector:
    return OfferSelector(
        config=get_config(request),
        quote_repository=get_quote_repository(request),
        api_client=get_api_client(request),
    )


def get_booking(request: Request) -> BookingOrchestrator:
    return BookingOrchestrator(
        config=get_config(request),
        repository=get_repository(request),
        api_client=get_api_client(request),
        offer_selector=get_offer_selector(request),
        state_machine=get_state_machine(request),
        parcel_sizer=request.app.state.parcelflow_parcel_sizer,
        clock=request.app.state.parcelflow_clock,
    )


def get_ingestor(request: Request) -> WebhookIngestor:
    return WebhookIngestor(
        config=get_config(request),
        repository=get_repository(request),
        state_machine=get_state_machine(request),
        event_store=get_event_store(request),
    )


def get_synchronizer(request: Request) -> TrackingSynchronizer:
    return TrackingSynchronizer(
        repository=get_repository(request),
        api_client=get_api_client(request),
        state_machine=get_state_machine(request),
        quote_repository=get_quote_repository(request),
    )


def get_quote_cache(request: Request) -> QuoteCache:
    """Create the quote cache; requires a cart resolver."""
    state = request.app.state
    cart_resolver = getattr(state, "parcelflow_cart_resolver", None)
    if cart_resolver is None:
        raise ConfigurationError("Cart resolver not configured")
    return QuoteCache(
        config=get_config(request),
        repository=get_quote_repository(request),
        api_client=get_api_client(request),
        parcel_sizer=state.parcelflow_parcel_sizer,
        cart_resolver=cart_resolver,
        clock=state.parcelflow_clock,
    )
