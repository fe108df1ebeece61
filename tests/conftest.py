"""Shared fixtures for fastapi-parcelflow tests."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

import pytest

from fastapi_parcelflow.config import ParcelflowConfig
from fastapi_parcelflow.exceptions import ShipmentNotFoundError
from fastapi_parcelflow.notifications import NotificationTrigger
from fastapi_parcelflow.parcels import DefaultParcelSizer
from fastapi_parcelflow.status import StatusStateMachine
from fastapi_parcelflow.types import Address

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


@dataclass
class DemoShipment:
    id: str
    order_id: str = "order-1"
    order_ref: str = "REF1"
    service_id: str | None = None
    external_quote_id: str | None = None
    external_offer_id: str | None = None
    external_order_id: str | None = None
    status: str = "pending"
    is_return: bool = False
    shipper_name: str = ""
    shipper_company: str = ""
    shipper_street: str = ""
    shipper_city: str = ""
    shipper_postal_code: str = ""
    shipper_country: str = ""
    shipper_phone: str = ""
    shipper_email: str = ""
    recipient_name: str = "Jean Dupont"
    recipient_company: str = ""
    recipient_street: str = "1 rue de la Paix"
    recipient_city: str = "Lyon"
    recipient_postal_code: str = "69001"
    recipient_country: str = "FR"
    recipient_phone: str = "0612345678"
    recipient_email: str = "jean@example.org"
    relay_code: str | None = None
    relay_name: str = ""
    relay_street: str = ""
    relay_city: str = ""
    relay_postal_code: str = ""
    relay_country: str = ""
    collection_date: date | None = None
    booked_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class DemoParcel:
    id: str
    shipment_id: str
    length: int = 20
    width: int = 20
    height: int = 20
    weight: float = 1.0
    value: int = 0
    currency: str = "EUR"
    description: str = ""
    shipper_reference: str = ""
    tracking_number: str = ""
    label_url: str = ""


@dataclass
class DemoEvent:
    shipment_id: str
    code: str
    label: str = ""
    occurred_at: datetime | None = None
    location: str = ""
    parcel_id: str | None = None


@dataclass
class DemoQuote:
    id: str
    cart_id: str
    address_id: str | None
    external_id: str | None
    created_at: datetime


@dataclass
class DemoOffer:
    id: str
    quote_id: str
    service_id: str
    external_id: str | None = None
    product_code: str = ""
    base_price: int = 0
    total_price: int = 0
    insurance_price: int = 0
    currency: str = "EUR"
    delivery_days: str | None = None


@dataclass
class DemoService:
    id: str
    code: str
    carrier_code: str = ""
    name: str = ""
    pickup_available: bool = False
    dropoff_available: bool = False
    relay_delivery: bool = False
    tracking_url: str | None = None
    active: bool = True


class InMemoryShipmentRepo:
    def __init__(self) -> None:
        self.items: dict[str, DemoShipment] = {}
        self.parcels: dict[str, list[DemoParcel]] = {}
        self.events: list[DemoEvent] = []
        self.saves = 0

    async def get_by_id(self, shipment_id: str) -> DemoShipment:
        try:
            return self.items[shipment_id]
        except KeyError as e:
            raise ShipmentNotFoundError(shipment_id) from e

    async def get_by_external_order_id(
        self, external_order_id: str
    ) -> DemoShipment | None:
        for shipment in self.items.values():
            if shipment.external_order_id == external_order_id:
                return shipment
        return None

    async def create(self, **fields: Any) -> DemoShipment:
        fields.setdefault("id", f"s-{len(self.items) + 1}")
        fields["status"] = str(fields.get("status", "pending"))
        shipment = DemoShipment(**fields)
        self.items[shipment.id] = shipment
        return shipment

    async def save(self, shipment: DemoShipment) -> DemoShipment:
        self.saves += 1
        self.items[shipment.id] = shipment
        return shipment

    async def list_parcels(self, shipment_id: str) -> list[DemoParcel]:
        return list(self.parcels.get(shipment_id, []))

    async def add_parcel(self, shipment_id: str, **fields: Any) -> DemoParcel:
        parcels = self.parcels.setdefault(shipment_id, [])
        fields.setdefault("id", f"{shipment_id}-p{len(parcels) + 1}")
        parcel = DemoParcel(shipment_id=shipment_id, **fields)
        parcels.append(parcel)
        return parcel

    async def save_parcel(self, parcel: DemoParcel) -> DemoParcel:
        return parcel

    async def list_events(self, shipment_id: str) -> list[DemoEvent]:
        return [e for e in self.events if e.shipment_id == shipment_id]

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
        for event in self.events:
            if (
                event.shipment_id == shipment_id
                and event.code == code
                and event.occurred_at == occurred_at
            ):
                return False
        self.events.append(
            DemoEvent(
                shipment_id=shipment_id,
                code=code,
                label=label,
                occurred_at=occurred_at,
                location=location,
                parcel_id=parcel_id,
            )
        )
        return True

    async def list_syncable(
        self,
        *,
        statuses,
        created_after: datetime | None = None,
        order_id: str | None = None,
    ) -> list[DemoShipment]:
        result = []
        for shipment in self.items.values():
            if shipment.status not in statuses:
                continue
            if (
                created_after is not None
                and shipment.created_at is not None
                and shipment.created_at < created_after
            ):
                continue
            if order_id is not None and shipment.order_id != order_id:
                continue
            result.append(shipment)
        return result

    def codes(self, shipment_id: str) -> list[str]:
        return [e.code for e in self.events if e.shipment_id == shipment_id]


class InMemoryQuoteRepo:
    def __init__(self) -> None:
        self.quotes: list[DemoQuote] = []
        self.offers: list[DemoOffer] = []
        self.services: dict[str, DemoService] = {}

    async def latest_quote(
        self, cart_id: str, address_id: str | None
    ) -> DemoQuote | None:
        matching = [
            q
            for q in self.quotes
            if q.cart_id == cart_id and q.address_id == address_id
        ]
        if not matching:
            return None
        return max(matching, key=lambda q: q.created_at)

    async def create_quote(self, **fields: Any) -> DemoQuote:
        quote = DemoQuote(id=f"q-{len(self.quotes) + 1}", **fields)
        self.quotes.append(quote)
        return quote

    async def add_offer(self, quote_id: str, **fields: Any) -> DemoOffer:
        offer = DemoOffer(
            id=f"o-{len(self.offers) + 1}", quote_id=quote_id, **fields
        )
        self.offers.append(offer)
        return offer

    async def list_offers(self, quote_id: str) -> list[DemoOffer]:
        return [o for o in self.offers if o.quote_id == quote_id]

    async def delete_quotes_for_cart(self, cart_id: str) -> int:
        removed = {q.id for q in self.quotes if q.cart_id == cart_id}
        self.quotes = [q for q in self.quotes if q.id not in removed]
        self.offers = [o for o in self.offers if o.quote_id not in removed]
        return len(removed)

    async def get_service(self, service_id: str) -> DemoService | None:
        return self.services.get(service_id)

    async def get_service_by_code(self, code: str) -> DemoService | None:
        for service in self.services.values():
            if service.code == code:
                return service
        return None

    async def create_service(self, **fields: Any) -> DemoService:
        service = DemoService(id=str(uuid.uuid4()), **fields)
        self.services[service.id] = service
        return service

    async def list_active_service_codes(self) -> list[str]:
        return sorted(s.code for s in self.services.values() if s.active)

    def add_service(self, service_id: str, code: str, **fields) -> DemoService:
        service = DemoService(id=service_id, code=code, **fields)
        self.services[service_id] = service
        return service


class InMemoryEventStore:
    def __init__(self) -> None:
        self.processed: dict[str, dict] = {}

    async def is_processed(self, event_id: str) -> bool:
        return event_id in self.processed

    async def mark_processed(
        self, event_id: str, *, shipment_id: str | None, changed: bool
    ) -> bool:
        if event_id in self.processed:
            return False
        self.processed[event_id] = {
            "shipment_id": shipment_id,
            "changed": changed,
        }
        return True


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send_status_notification(
        self, shipment, previous_status: str, new_status: str
    ) -> None:
        self.sent.append((shipment.id, previous_status, new_status))


@dataclass
class DemoCart:
    id: str
    weight: Decimal = Decimal("2.5")
    default_address: Address | None = None

    def get_total_weight(self) -> Decimal:
        return self.weight

    def get_default_address(self) -> Address | None:
        return self.default_address


class CartResolver:
    def __init__(self) -> None:
        self.carts: dict[str, DemoCart] = {}
        self.addresses: dict[str, Address] = {}

    async def resolve(self, cart_id: str) -> DemoCart:
        return self.carts.setdefault(cart_id, DemoCart(id=cart_id))

    async def resolve_address(self, address_id: str) -> Address | None:
        return self.addresses.get(address_id)


@dataclass
class DemoOrderLine:
    title: str
    quantity: int = 1
    unit_weight: Decimal = Decimal("0.5")
    unit_price: Decimal = Decimal("10.00")


@dataclass
class DemoOrder:
    id: str = "order-1"
    ref: str = "REF1"
    lines: list[DemoOrderLine] = field(default_factory=list)
    address: Address | None = None

    def get_lines(self) -> list[DemoOrderLine]:
        return self.lines

    def get_delivery_address(self) -> Address | None:
        return self.address


class FakeApiClient:
    """Deterministic carrier API; responses and errors set per test."""

    def __init__(self) -> None:
        self.quote_response: dict = {"data": {"id": "ext-q", "offers": []}}
        self.order_response: dict = {"data": {"id": "ext-order-1"}}
        self.order_detail: dict = {}
        self.tracking_response: dict = {}
        self.locations_response: dict = {"data": []}
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, Any]] = []

    def _call(self, name: str, arg: Any) -> None:
        self.calls.append((name, arg))
        if name in self.errors:
            raise self.errors[name]

    def called(self, name: str) -> list[Any]:
        return [arg for call, arg in self.calls if call == name]

    async def request_quote(self, params: dict) -> dict:
        self._call("request_quote", params)
        return self.quote_response

    async def place_order(self, params: dict) -> dict:
        self._call("place_order", params)
        return self.order_response

    async def get_order(self, external_id: str) -> dict:
        self._call("get_order", external_id)
        return self.order_detail

    async def get_order_tracking(self, external_id: str) -> dict:
        self._call("get_order_tracking", external_id)
        return self.tracking_response

    async def cancel_order(self, external_id: str) -> dict:
        self._call("cancel_order", external_id)
        return {"status": "success"}

    async def get_delivery_locations(
        self, offer_id: str, params: dict
    ) -> dict:
        self._call("get_delivery_locations", (offer_id, params))
        return self.locations_response

    def get_label_url(self, external_id: str, fmt: str = "pdf") -> str:
        return f"https://api.test/orders/{external_id}/labels?format={fmt}"


def api_offer(
    offer_id: str,
    code: str,
    amount: str = "10.00",
    *,
    relay: bool = False,
    name: str = "",
) -> dict:
    """Offer as returned by the quote endpoint."""
    return {
        "id": offer_id,
        "product": {
            "code": code,
            "carrier_code": code.split("_")[0],
            "name": name or code,
            "preset_delivery_location": relay,
            "delay": "2",
        },
        "price": {"amount": amount, "currency": "EUR"},
        "total_price": {"amount": amount, "currency": "EUR"},
    }


class Clock:
    """Settable clock."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def config() -> ParcelflowConfig:
    return ParcelflowConfig(
        api_login="login",
        api_password="secret",
        shipper_name="Boutique",
        shipper_street="10 avenue des Champs",
        shipper_city="Paris",
        shipper_postal_code="75008",
        shipper_country="FR",
        shipper_phone="0145678901",
        shipper_email="shop@example.com",
        webhook_enabled=True,
    )


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def repository() -> InMemoryShipmentRepo:
    return InMemoryShipmentRepo()


@pytest.fixture()
def quote_repository() -> InMemoryQuoteRepo:
    return InMemoryQuoteRepo()


@pytest.fixture()
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture()
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture()
def cart_resolver() -> CartResolver:
    return CartResolver()


@pytest.fixture()
def api_client() -> FakeApiClient:
    return FakeApiClient()


@pytest.fixture()
def parcel_sizer(config) -> DefaultParcelSizer:
    return DefaultParcelSizer(config)


@pytest.fixture()
def state_machine(
    config, repository, api_client, mailer, clock
) -> StatusStateMachine:
    return StatusStateMachine(
        repository=repository,
        notifier=NotificationTrigger(config, mailer),
        api_client=api_client,
        clock=clock,
    )


@pytest.fixture()
async def async_engine():
    """Create an in-memory aiosqlite async engine."""
    pytest.importorskip("sqlalchemy")
    from sqlalchemy.ext.asyncio import create_async_engine

    from fastapi_parcelflow.contrib.sqlalchemy.models import Base

    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def async_session_factory(async_engine):
    """Create an async session factory bound to the in-memory engine."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    factory = async_sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False
    )
    yield factory
