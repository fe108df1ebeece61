"""Shipment creation and booking tests."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal

import pytest
from conftest import (
    DemoOrder,
    DemoOrderLine,
    DemoParcel,
    DemoShipment,
    api_offer,
)

from fastapi_parcelflow.booking import (
    BookingOrchestrator,
    is_valid_email,
    normalize_phone,
    parcel_label_url,
    shipper_email_for,
)
from fastapi_parcelflow.config import ParcelflowConfig
from fastapi_parcelflow.exceptions import ApiError
from fastapi_parcelflow.notifications import NotificationTrigger
from fastapi_parcelflow.offers import OfferSelector
from fastapi_parcelflow.status import StatusStateMachine
from fastapi_parcelflow.types import Address, RelayPoint


def _orchestrator(
    config,
    repository,
    quote_repository,
    api_client,
    parcel_sizer,
    clock,
    *,
    state_machine=None,
) -> BookingOrchestrator:
    return BookingOrchestrator(
        config=config,
        repository=repository,
        api_client=api_client,
        offer_selector=OfferSelector(
            config=config,
            quote_repository=quote_repository,
            api_client=api_client,
        ),
        state_machine=state_machine
        or StatusStateMachine(
            repository=repository,
            notifier=NotificationTrigger(config),
            api_client=api_client,
            clock=clock,
        ),
        parcel_sizer=parcel_sizer,
        clock=clock,
    )


@pytest.fixture()
def booking(
    config, repository, quote_repository, api_client, parcel_sizer, clock
) -> BookingOrchestrator:
    return _orchestrator(
        config, repository, quote_repository, api_client, parcel_sizer, clock
    )


@pytest.fixture()
async def pending(repository, quote_repository, api_client):
    quote_repository.add_service("svc-home", "colissimo_home")
    shipment = await repository.create(
        id="s-1",
        service_id="svc-home",
        shipper_name="Boutique",
        shipper_street="10 avenue des Champs",
        shipper_city="Paris",
        shipper_postal_code="75008",
        shipper_country="FR",
        shipper_phone="01 45 67 89 01",
        shipper_email="shop@example.com",
    )
    await repository.add_parcel(
        "s-1", weight=2.0, shipper_reference="REF1", description="Mug"
    )
    api_client.quote_response = {
        "status": "success",
        "data": {
            "id": "fresh-q",
            "offers": [
                api_offer("off-relay", "colissimo_home_relay", relay=True),
                api_offer("off-home", "colissimo_home"),
            ],
        },
    }
    api_client.order_response = {
        "status": "success",
        "data": {
            "id": "ORD-42",
            "parcels": [
                {
                    "tracking_number": "TRK1",
                    "label": {"url": "https://labels/1.pdf"},
                }
            ],
        },
    }
    return shipment


class TestPhone:
    @pytest.mark.parametrize(
        ("phone", "country", "expected"),
        [
            ("06 12 34 56 78", "FR", "+33612345678"),
            ("+33 6 12 34 56 78", "FR", "+33612345678"),
            ("0470123456", "BE", "+32470123456"),
            ("612345678", "FR", "+33612345678"),
            ("0612345678", "XX", "+33612345678"),
            ("123", "DE", "+49612345678"),
            ("", "DE", "+33612345678"),
            (None, "FR", "+33612345678"),
        ],
    )
    def test_normalize_phone(self, phone, country, expected) -> None:
        assert normalize_phone(phone, country) == expected


class TestEmail:
    @pytest.mark.parametrize(
        ("email", "valid"),
        [
            ("shop@example.com", True),
            ("shop@example", False),
            ("not an email", False),
            ("a@b..com", False),
            ("a@.b.com", False),
            ("a@b.c.", False),
            ("a@-b.com", False),
            ("", False),
            (None, False),
        ],
    )
    def test_is_valid_email(self, email, valid) -> None:
        assert is_valid_email(email) is valid

    def test_shipper_email_fallbacks(self) -> None:
        assert (
            shipper_email_for(DemoShipment(id="s", shipper_email="bad"))
            == "jean@example.org"
        )
        assert (
            shipper_email_for(
                DemoShipment(id="s", shipper_email="", recipient_email="")
            )
            == "noreply@example.com"
        )


def test_parcel_label_url_shapes() -> None:
    assert parcel_label_url({"label": "https://a"}) == "https://a"
    assert parcel_label_url({"label": {"pdf": "https://b"}}) == "https://b"
    assert parcel_label_url({"labels": {"pdf": "https://c"}}) == "https://c"
    assert parcel_label_url({"label": ["https://d"]}) == "https://d"
    assert parcel_label_url({"label": []}) is None
    assert parcel_label_url({}) is None


class TestBook:
    async def test_books_non_relay_offer(
        self, booking, pending, repository, api_client, clock
    ) -> None:
        result = await booking.book(pending)

        assert result.success
        assert result.external_order_id == "ORD-42"
        assert pending.status == "booked"
        assert pending.booked_at == clock.now
        assert pending.external_order_id == "ORD-42"
        assert repository.codes("s-1") == ["BOOKED"]
        order = api_client.called("place_order")[0]
        assert order["offer_id"] == "off-home"
        parcel = (await repository.list_parcels("s-1"))[0]
        assert parcel.tracking_number == "TRK1"
        assert parcel.label_url == "https://labels/1.pdf"

    async def test_order_params(
        self, booking, pending, api_client
    ) -> None:
        pending.relay_code = "REL-9"

        await booking.book(pending, date(2026, 3, 5))

        order = api_client.called("place_order")[0]
        assert order["shipper"]["phone"] == "+33145678901"
        assert order["shipper"]["email"] == "shop@example.com"
        assert order["recipient"]["phone"] == "+33612345678"
        assert order["delivery_location_code"] == "REL-9"
        assert order["collection_date"] == "2026-03-05"
        assert order["parcels"][0]["shipper_reference"] == "REF1"
        assert pending.collection_date == date(2026, 3, 5)

    async def test_booked_price_may_differ_from_cached_quote(
        self, booking, pending, api_client, quote_repository
    ) -> None:
        pending.external_offer_id = "stale-offer"

        await booking.book(pending)

        assert api_client.called("place_order")[0]["offer_id"] == "off-home"
        assert pending.external_quote_id == "fresh-q"

    async def test_requires_pending(self, booking, pending) -> None:
        pending.status = "booked"

        result = await booking.book(pending)

        assert not result.success
        assert result.error_category == "order_state"

    async def test_requires_parcels(self, booking, repository) -> None:
        shipment = await repository.create(id="s-2")

        result = await booking.book(shipment)

        assert not result.success
        assert result.error == "No parcels defined for this shipment."

    async def test_invalid_parcel(
        self, booking, pending, repository, api_client
    ) -> None:
        repository.parcels["s-1"].append(
            DemoParcel(id="bad", shipment_id="s-1", weight=0)
        )

        result = await booking.book(pending)

        assert not result.success
        assert result.error_category == "validation_error"
        assert api_client.called("place_order") == []

    async def test_unconfigured_api(
        self,
        repository,
        quote_repository,
        api_client,
        parcel_sizer,
        clock,
        pending,
    ) -> None:
        booking = _orchestrator(
            ParcelflowConfig(),
            repository,
            quote_repository,
            api_client,
            parcel_sizer,
            clock,
        )

        result = await booking.book(pending)

        assert not result.success
        assert result.error_category == "configuration_error"
        assert pending.status == "pending"

    async def test_no_offer(self, booking, pending, api_client) -> None:
        api_client.quote_response = {"data": {"id": "q", "offers": []}}

        result = await booking.book(pending)

        assert not result.success
        assert result.error_category == "no_offers_available"
        assert "No shipping offers available" in result.error

    async def test_api_failure_is_a_result(
        self, booking, pending, api_client
    ) -> None:
        api_client.errors["place_order"] = ApiError(
            "API error: Invalid address"
        )

        result = await booking.book(pending)

        assert not result.success
        assert result.error_category == "invalid_address"
        assert pending.status == "pending"

    async def test_unexpected_error_is_a_result(
        self, booking, pending, api_client
    ) -> None:
        api_client.errors["place_order"] = RuntimeError("kaboom")

        result = await booking.book(pending)

        assert not result.success
        assert result.error == "kaboom"

    async def test_response_without_order_id(
        self, booking, pending, api_client
    ) -> None:
        api_client.order_response = {"status": "success", "data": {}}

        result = await booking.book(pending)

        assert not result.success
        assert "no order ID" in result.error
        assert pending.status == "pending"

    async def test_parcel_storage_failure_keeps_booking(
        self, booking, pending, repository, api_client
    ) -> None:
        async def broken_save_parcel(parcel):
            raise RuntimeError("disk full")

        repository.save_parcel = broken_save_parcel

        result = await booking.book(pending)
        retry = await booking.book(repository.items["s-1"])

        assert result.success
        assert repository.items["s-1"].status == "booked"
        assert repository.items["s-1"].external_order_id == "ORD-42"
        assert repository.codes("s-1") == ["BOOKED"]
        assert not retry.success
        assert retry.error_category == "order_state"
        assert len(api_client.called("place_order")) == 1

    async def test_locked_booking_uses_fresh_row(
        self,
        config,
        repository,
        quote_repository,
        api_client,
        parcel_sizer,
        clock,
        pending,
    ) -> None:
        class Locker:
            @asynccontextmanager
            async def lock(self, shipment_id):
                repository.items[shipment_id].status = "cancelled"
                yield

        machine = StatusStateMachine(
            repository=repository,
            notifier=NotificationTrigger(config),
            locker=Locker(),
            clock=clock,
        )
        booking = _orchestrator(
            config,
            repository,
            quote_repository,
            api_client,
            parcel_sizer,
            clock,
            state_machine=machine,
        )

        result = await booking.book(pending)

        assert not result.success
        assert api_client.called("place_order") == []


class TestCreateShipment:
    async def test_creates_pending_with_default_parcel(
        self, booking, repository, clock
    ) -> None:
        order = DemoOrder(
            lines=[
                DemoOrderLine("Mug", 2, Decimal("0.4"), Decimal("12.50")),
                DemoOrderLine("Tea", 1, Decimal("0.25"), Decimal("5.10")),
            ],
            address=Address(
                name="Jean Dupont",
                street="1 rue de la Paix",
                city="Lyon",
                postal_code="69001",
                country="FR",
                phone="0612345678",
                email="jean@example.org",
            ),
        )

        shipment = await booking.create_shipment(order, service_id="svc-1")

        assert shipment.status == "pending"
        assert shipment.service_id == "svc-1"
        assert shipment.shipper_city == "Paris"
        assert shipment.recipient_city == "Lyon"
        assert shipment.created_at == clock.now
        parcels = await repository.list_parcels(shipment.id)
        assert len(parcels) == 1
        assert parcels[0].weight == pytest.approx(1.05)
        assert parcels[0].value == 3010
        assert parcels[0].description == "Mug, Tea"
        assert (parcels[0].length, parcels[0].width) == (18, 18)
        assert repository.codes(shipment.id) == ["CREATED"]

    async def test_relay_overrides_recipient_address(
        self, booking
    ) -> None:
        order = DemoOrder(
            lines=[DemoOrderLine("Mug")],
            address=Address(name="Jean", city="Lyon", postal_code="69001"),
        )
        relay = RelayPoint(
            code="R1",
            name="Tabac",
            street="2 place",
            city="Villeurbanne",
            postal_code="69100",
            country="FR",
        )

        shipment = await booking.create_shipment(order, relay=relay)

        assert shipment.relay_code == "R1"
        assert shipment.recipient_city == "Villeurbanne"
        assert shipment.recipient_name == "Jean"

    async def test_weightless_order_uses_default_weight(
        self, booking, repository
    ) -> None:
        order = DemoOrder(
            lines=[DemoOrderLine("Ebook", unit_weight=Decimal(0))],
            address=Address(city="Lyon", postal_code="69001"),
        )

        shipment = await booking.create_shipment(order)

        parcel = (await repository.list_parcels(shipment.id))[0]
        assert parcel.weight == 1.0

    async def test_no_delivery_address(self, booking, repository) -> None:
        assert await booking.create_shipment(DemoOrder()) is None
        assert repository.items == {}


class TestReturnShipment:
    async def test_swaps_addresses_and_copies_parcels(
        self, booking, pending, repository
    ) -> None:
        pending.status = "delivered"

        ret = await booking.create_return_shipment(pending)

        assert ret.is_return
        assert ret.status == "pending"
        assert ret.shipper_city == "Lyon"
        assert ret.shipper_name == "Jean Dupont"
        assert ret.recipient_city == "Paris"
        assert ret.recipient_name == "Boutique"
        parcels = await repository.list_parcels(ret.id)
        assert parcels[0].description == "Retour - Mug"
        assert parcels[0].shipper_reference == "RET-REF1"
        assert parcels[0].tracking_number == ""

    async def test_only_after_shipping(self, booking, pending) -> None:
        assert await booking.create_return_shipment(pending) is None


class TestLabels:
    async def test_existing_labels(self, booking, pending, repository):
        parcel = (await repository.list_parcels("s-1"))[0]
        parcel.label_url = "https://labels/x.pdf"

        labels = await booking.get_labels(pending)

        assert labels == [
            {
                "parcel_id": parcel.id,
                "tracking_number": "",
                "label_url": "https://labels/x.pdf",
            }
        ]

    async def test_refreshes_from_order_detail(
        self, booking, pending, api_client
    ) -> None:
        pending.external_order_id = "ORD-42"
        api_client.order_detail = {
            "data": {"parcels": [{"label_url": "https://labels/o.pdf"}]}
        }

        labels = await booking.get_labels(pending)

        assert labels[0]["label_url"] == "https://labels/o.pdf"

    async def test_falls_back_to_direct_url(
        self, booking, pending, api_client
    ) -> None:
        pending.external_order_id = "ORD-42"
        api_client.order_detail = {"data": {"parcels": []}}

        labels = await booking.get_labels(pending)

        assert labels[0]["label_url"] == (
            "https://api.test/orders/ORD-42/labels?format=pdf"
        )

    async def test_api_failure_returns_what_is_known(
        self, booking, pending, api_client
    ) -> None:
        pending.external_order_id = "ORD-42"
        api_client.errors["get_order"] = ApiError("API error: down")

        assert await booking.get_labels(pending) == []

    async def test_unbooked_without_labels(self, booking, pending) -> None:
        assert await booking.get_labels(pending) == []
