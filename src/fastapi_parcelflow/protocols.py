"""Protocols for the collaborators the engine consumes."""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from fastapi_parcelflow.types import Address, ParcelSpec


class Shipment(Protocol):
    id: str
    order_id: str
    order_ref: str
    service_id: str | None
    external_quote_id: str | None
    external_offer_id: str | None
    external_order_id: str | None
    status: str
    is_return: bool
    shipper_name: str
    shipper_company: str
    shipper_street: str
    shipper_city: str
    shipper_postal_code: str
    shipper_country: str
    shipper_phone: str
    shipper_email: str
    recipient_name: str
    recipient_company: str
    recipient_street: str
    recipient_city: str
    recipient_postal_code: str
    recipient_country: str
    recipient_phone: str
    recipient_email: str
    relay_code: str | None
    relay_name: str
    relay_street: str
    relay_city: str
    relay_postal_code: str
    relay_country: str
    collection_date: Any
    booked_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None


class Parcel(Protocol):
    id: str
    shipment_id: str
    length: int
    width: int
    height: int
    weight: float
    value: int
    currency: str
    description: str
    shipper_reference: str
    tracking_number: str
    label_url: str


class ShipmentEvent(Protocol):
    shipment_id: str
    code: str
    label: str
    occurred_at: datetime | None
    location: str
    parcel_id: str | None


class Quote(Protocol):
    id: str
    cart_id: str
    address_id: str | None
    external_id: str | None
    created_at: datetime


class Offer(Protocol):
    id: str
    quote_id: str
    service_id: str
    external_id: str | None
    product_code: str
    base_price: int
    total_price: int
    insurance_price: int
    currency: str
    delivery_days: str | None


class Service(Protocol):
    id: str
    code: str
    carrier_code: str
    name: str
    relay_delivery: bool
    tracking_url: str | None
    active: bool


@runtime_checkable
class ShipmentRepository(Protocol):
    """Storage for shipments, their parcels and their event history."""

    async def get_by_id(self, shipment_id: str) -> Shipment: ...

    async def get_by_external_order_id(
        self, external_order_id: str
    ) -> Shipment | None: ...

    async def create(self, **fields: Any) -> Shipment: ...

    async def save(self, shipment: Shipment) -> Shipment: ...

    async def list_parcels(self, shipment_id: str) -> list[Parcel]: ...

    async def add_parcel(self, shipment_id: str, **fields: Any) -> Parcel: ...

    async def save_parcel(self, parcel: Parcel) -> Parcel: ...

    async def list_events(self, shipment_id: str) -> list[ShipmentEvent]: ...

    async def add_event(
        self,
        shipment_id: str,
        *,
        code: str,
        label: str,
        occurred_at: datetime | None,
        location: str = "",
        parcel_id: str | None = None,
    ) -> bool:
        """Append an event; return False if (shipment, code, time) exists."""
        ...

    async def list_syncable(
        self,
        *,
        statuses: Sequence[str],
        created_after: datetime | None = None,
        order_id: str | None = None,
    ) -> list[Shipment]: ...


@runtime_checkable
class QuoteRepository(Protocol):
    """Storage for quotes, their offers and the service catalogue."""

    async def latest_quote(
        self, cart_id: str, address_id: str | None
    ) -> Quote | None: ...

    async def create_quote(
        self,
        *,
        cart_id: str,
        address_id: str | None,
        external_id: str | None,
        created_at: datetime,
    ) -> Quote: ...

    async def add_offer(self, quote_id: str, **fields: Any) -> Offer: ...

    async def list_offers(self, quote_id: str) -> list[Offer]: ...

    async def delete_quotes_for_cart(self, cart_id: str) -> int: ...

    async def get_service(self, service_id: str) -> Service | None: ...

    async def get_service_by_code(self, code: str) -> Service | None: ...

    async def create_service(self, **fields: Any) -> Service: ...

    async def list_active_service_codes(self) -> list[str]: ...


@runtime_checkable
class WebhookEventStore(Protocol):
    """Log of webhook event ids that were already applied."""

    async def is_processed(self, event_id: str) -> bool: ...

    async def mark_processed(
        self,
        event_id: str,
        *,
        shipment_id: str | None,
        changed: bool,
    ) -> bool: ...


@runtime_checkable
class ShipmentLocker(Protocol):
    """Exclusive per-shipment lock supplied by the storage layer."""

    def lock(self, shipment_id: str) -> AbstractAsyncContextManager[None]: ...


@runtime_checkable
class ShippingApiClient(Protocol):
    """Carrier aggregation API."""

    async def request_quote(self, params: dict) -> dict: ...

    async def place_order(self, params: dict) -> dict: ...

    async def get_order(self, external_id: str) -> dict: ...

    async def get_order_tracking(self, external_id: str) -> dict: ...

    async def cancel_order(self, external_id: str) -> dict: ...

    async def get_delivery_locations(
        self, offer_id: str, params: dict
    ) -> dict: ...

    def get_label_url(self, external_id: str, fmt: str = "pdf") -> str: ...


@runtime_checkable
class ParcelSizer(Protocol):
    def parcels_for_weight(self, total_weight: float) -> list[ParcelSpec]: ...

    def dimensions_for_weight(self, weight: float) -> tuple[int, int, int]: ...


class Cart(Protocol):
    id: str

    def get_total_weight(self) -> Decimal: ...

    def get_default_address(self) -> Address | None:
        """Default address of the cart's customer, if any."""
        ...


@runtime_checkable
class CartResolver(Protocol):
    """Resolves cart and address ids to objects."""

    async def resolve(self, cart_id: str) -> Cart: ...

    async def resolve_address(self, address_id: str) -> Address | None: ...


class OrderLine(Protocol):
    title: str
    quantity: int
    unit_weight: Decimal
    unit_price: Decimal


class Order(Protocol):
    id: str
    ref: str

    def get_lines(self) -> list[OrderLine]: ...

    def get_delivery_address(self) -> Address | None: ...


@runtime_checkable
class Mailer(Protocol):
    """Builds and sends the customer status email."""

    async def send_status_notification(
        self,
        shipment: Shipment,
        previous_status: str,
        new_status: str,
    ) -> None: ...
