"""Offer ranking for display and fresh offer selection for booking."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from fastapi_parcelflow.config import ParcelflowConfig
from fastapi_parcelflow.exceptions import ParcelflowError
from fastapi_parcelflow.protocols import (
    Parcel,
    Quote,
    QuoteRepository,
    Service,
    Shipment,
    ShippingApiClient,
)
from fastapi_parcelflow.quotes import quote_payload
from fastapi_parcelflow.types import Address, OfferSelection, RelayPoint

logger = logging.getLogger(__name__)

RETURN_CODE_MARKER = "retour"
DEFAULT_QUOTE_DIMENSION = 20
DEFAULT_QUOTE_WEIGHT = 1.0


def is_relay_offer(offer: dict) -> bool:
    return bool((offer.get("product") or {}).get("preset_delivery_location"))


def is_return_offer(offer: dict) -> bool:
    code = (offer.get("product") or {}).get("code") or ""
    return RETURN_CODE_MARKER in code.lower()


def offer_product_code(offer: dict) -> str:
    return (offer.get("product") or {}).get("code") or ""


def filter_offers(
    offers: Sequence[dict], *, has_relay_code: bool, is_return: bool
) -> list[dict]:
    """Drop relay offers without a relay code and return offers for
    outbound shipments."""
    eligible = []
    for offer in offers:
        if not has_relay_code and is_relay_offer(offer):
            logger.debug("Excluded relay offer %s", offer.get("id"))
            continue
        if not is_return and is_return_offer(offer):
            logger.debug("Excluded return offer %s", offer.get("id"))
            continue
        eligible.append(offer)
    return eligible


def quote_parcels(parcels: Sequence[Parcel]) -> list[dict[str, Any]]:
    return [
        {
            "length": parcel.length or DEFAULT_QUOTE_DIMENSION,
            "width": parcel.width or DEFAULT_QUOTE_DIMENSION,
            "height": parcel.height or DEFAULT_QUOTE_DIMENSION,
            "weight": parcel.weight or DEFAULT_QUOTE_WEIGHT,
        }
        for parcel in parcels
    ]


def normalize_location(raw: dict) -> RelayPoint:
    address = raw.get("address") or {}
    return RelayPoint(
        code=str(raw.get("code") or ""),
        name=raw.get("company") or raw.get("name") or "",
        street=address.get("street") or raw.get("street") or "",
        city=address.get("city") or raw.get("city") or "",
        postal_code=address.get("postal_code") or raw.get("postal_code") or "",
        country=address.get("country") or raw.get("country") or "",
    )


class OfferSelector:
    def __init__(
        self,
        *,
        config: ParcelflowConfig,
        quote_repository: QuoteRepository,
        api_client: ShippingApiClient,
    ) -> None:
        self.config = config
        self.quote_repository = quote_repository
        self.api_client = api_client

    async def best_price(self, quote: Quote) -> int | None:
        """Lowest total price among the quote's offers, in minor units."""
        offers = await self.quote_repository.list_offers(quote.id)
        if not offers:
            return None
        return min(offer.total_price for offer in offers)

    def _backfill_shipper(self, shipment: Shipment) -> None:
        defaults = self.config.shipper_address()
        for field in (
            "name",
            "company",
            "street",
            "city",
            "postal_code",
            "country",
            "phone",
            "email",
        ):
            attr = f"shipper_{field}"
            if not getattr(shipment, attr):
                setattr(shipment, attr, getattr(defaults, field))

    async def _assigned_service(self, shipment: Shipment) -> Service | None:
        if not shipment.service_id:
            return None
        return await self.quote_repository.get_service(shipment.service_id)

    async def select_for_booking(
        self, shipment: Shipment, parcels: Sequence[Parcel]
    ) -> OfferSelection:
        """Request a fresh quote and pick the offer to book.

        Cached offers are never reused: the carrier may have repriced or
        withdrawn them. Blank shipper fields are filled from config on
        ``shipment``; the caller persists it.
        """
        self._backfill_shipper(shipment)
        if not shipment.shipper_city or not shipment.shipper_postal_code:
            return OfferSelection(
                offer_id=None,
                error=(
                    "Shipper address incomplete: city "
                    f"('{shipment.shipper_city}') and postal code "
                    f"('{shipment.shipper_postal_code}') are required."
                ),
            )
        if not shipment.recipient_city or not shipment.recipient_postal_code:
            return OfferSelection(
                offer_id=None,
                error=(
                    "Recipient address incomplete: city and postal code "
                    "are required."
                ),
            )

        params: dict[str, Any] = {
            "shipper": {
                "city": shipment.shipper_city,
                "postal_code": shipment.shipper_postal_code,
                "country": shipment.shipper_country or "FR",
            },
            "recipient": {
                "city": shipment.recipient_city,
                "postal_code": shipment.recipient_postal_code,
                "country": shipment.recipient_country or "FR",
                "is_a_company": bool(shipment.recipient_company),
            },
            "parcels": quote_parcels(parcels),
        }

        try:
            service = await self._assigned_service(shipment)
            if service is not None:
                params["product_codes"] = [service.code]
            response = await self.api_client.request_quote(params)
        except ParcelflowError as exc:
            logger.error("Failed to get offer from quote: %s", exc)
            return OfferSelection(
                offer_id=None, error=f"Quote API error: {exc}"
            )

        quote_data = quote_payload(response) or {}
        offers = [
            o for o in quote_data.get("offers") or [] if isinstance(o, dict)
        ]
        route = (
            f"{shipment.shipper_city} ({shipment.shipper_country}) -> "
            f"{shipment.recipient_city} ({shipment.recipient_country})"
        )

        if not offers:
            service_name = f" ({service.name})" if service else ""
            logger.error("No offers in quote response for route %s", route)
            return OfferSelection(
                offer_id=None,
                error=(
                    f"No shipping offers available for route {route}"
                    f"{service_name}. Check if the service supports "
                    "this route."
                ),
            )

        eligible = filter_offers(
            offers,
            has_relay_code=bool((shipment.relay_code or "").strip()),
            is_return=bool(shipment.is_return),
        )
        logger.info(
            "Quote for shipment %s: %d offers received, %d eligible",
            shipment.id,
            len(offers),
            len(eligible),
        )

        selected = None
        if service is not None:
            selected = next(
                (o for o in eligible if offer_product_code(o) == service.code),
                None,
            )
        if selected is None and eligible:
            selected = eligible[0]

        if selected is None or not selected.get("id"):
            service_name = f" for service '{service.name}'" if service else ""
            logger.error(
                "No valid offer found for shipment %s on route %s",
                shipment.id,
                route,
            )
            return OfferSelection(
                offer_id=None,
                error=(
                    f"No valid offer found{service_name}. {len(offers)} "
                    "offers received but all were filtered out "
                    "(relay/return services excluded)."
                ),
                received_count=len(offers),
                eligible_count=len(eligible),
            )

        shipment.external_offer_id = selected["id"]
        shipment.external_quote_id = quote_data.get("id")
        logger.info(
            "Selected offer %s (%s) for shipment %s",
            selected["id"],
            offer_product_code(selected) or "unknown",
            shipment.id,
        )
        return OfferSelection(
            offer_id=selected["id"],
            quote_id=quote_data.get("id"),
            product_code=offer_product_code(selected) or None,
            received_count=len(offers),
            eligible_count=len(eligible),
        )

    async def delivery_locations(
        self, offer_id: str, address: Address
    ) -> list[RelayPoint]:
        """Relay points near ``address`` for a relay-capable offer."""
        response = await self.api_client.get_delivery_locations(
            offer_id,
            {
                "street": address.street,
                "city": address.city,
                "postal_code": address.postal_code,
                "country": address.country,
            },
        )
        raw = response.get("data") or response.get("locations") or []
        return [
            normalize_location(item) for item in raw if isinstance(item, dict)
        ]
