"""TTL-based quote cache."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from fastapi_parcelflow.config import ParcelflowConfig
from fastapi_parcelflow.exceptions import ParcelflowError
from fastapi_parcelflow.protocols import (
    Cart,
    CartResolver,
    Offer,
    ParcelSizer,
    Quote,
    QuoteRepository,
    Service,
    ShippingApiClient,
)
from fastapi_parcelflow.status import utcnow
from fastapi_parcelflow.types import Address

logger = logging.getLogger(__name__)

# Placeholder destinations used to estimate international quotes before the
# customer has entered an address; the API requires a city and postal code.
CAPITAL_PLACEHOLDERS: dict[str, tuple[str, str]] = {
    "FR": ("Paris", "75001"),
    "BE": ("Bruxelles", "1000"),
    "DE": ("Berlin", "10115"),
    "ES": ("Madrid", "28001"),
    "IT": ("Roma", "00100"),
    "GB": ("London", "SW1A 1AA"),
    "NL": ("Amsterdam", "1011"),
    "PT": ("Lisboa", "1100-001"),
    "CH": ("Zurich", "8001"),
    "LU": ("Luxembourg", "1111"),
}
DEFAULT_PLACEHOLDER = CAPITAL_PLACEHOLDERS["FR"]


def to_minor_units(amount: Any) -> int:
    """Convert a decimal major-unit amount to integer minor units."""
    try:
        value = Decimal(str(amount if amount is not None else 0))
    except InvalidOperation:
        return 0
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def quote_payload(response: dict) -> dict | None:
    data = response.get("data") or response.get("quote")
    return data if isinstance(data, dict) else None


def as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class QuoteCache:
    """Reuses the latest quote per (cart, address) until it expires."""

    def __init__(
        self,
        *,
        config: ParcelflowConfig,
        repository: QuoteRepository,
        api_client: ShippingApiClient,
        parcel_sizer: ParcelSizer,
        cart_resolver: CartResolver,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.repository = repository
        self.api_client = api_client
        self.parcel_sizer = parcel_sizer
        self.cart_resolver = cart_resolver
        self.clock = clock

    def is_fresh(self, quote: Quote) -> bool:
        if quote.created_at is None:
            return False
        age = self.clock() - as_aware(quote.created_at)
        return age.total_seconds() < self.config.quote_ttl_seconds

    async def get_or_create(
        self,
        cart_id: str,
        address_id: str | None = None,
        fallback_country: str | None = None,
    ) -> Quote | None:
        """Return the cached quote if still fresh, else request a new one."""
        if not self.config.is_api_configured:
            logger.warning(
                "Carrier API not configured, no quote for %s", cart_id
            )
            return None

        try:
            existing = await self.repository.latest_quote(cart_id, address_id)
        except Exception:
            logger.exception("Quote lookup failed for cart %s", cart_id)
            existing = None

        if existing is not None and self.is_fresh(existing):
            return existing
        return await self.create(cart_id, address_id, fallback_country)

    async def create(
        self,
        cart_id: str,
        address_id: str | None = None,
        fallback_country: str | None = None,
    ) -> Quote | None:
        try:
            shipper = self.config.shipper_address()
            if not self.config.is_shipper_address_complete:
                logger.warning("Shipper address not configured")
                return None

            cart = await self.cart_resolver.resolve(cart_id)
            recipient = await self.resolve_recipient(
                cart, address_id, fallback_country
            )
            if recipient is None or not recipient.country:
                logger.warning("No recipient address for cart %s", cart_id)
                return None

            parcels = self.parcel_sizer.parcels_for_weight(
                float(cart.get_total_weight())
            )
            params: dict[str, Any] = {
                "shipper": {
                    "city": shipper.city,
                    "postal_code": shipper.postal_code,
                    "country": shipper.country,
                },
                "recipient": {
                    "city": recipient.city,
                    "postal_code": recipient.postal_code,
                    "country": recipient.country,
                },
                "parcels": [parcel.as_dict() for parcel in parcels],
            }
            product_codes = await self.repository.list_active_service_codes()
            if product_codes:
                params["product_codes"] = product_codes

            response = await self.api_client.request_quote(params)
            quote_data = quote_payload(response)
            if quote_data is None:
                logger.warning("Empty quote response for cart %s", cart_id)
                return None

            quote = await self.repository.create_quote(
                cart_id=cart_id,
                address_id=address_id,
                external_id=quote_data.get("id"),
                created_at=self.clock(),
            )
            offers = quote_data.get("offers") or []
            for offer_data in offers:
                if isinstance(offer_data, dict):
                    await self._store_offer(quote, offer_data)

            logger.info(
                "Quote %s created for cart %s with %d offers",
                quote.id,
                cart_id,
                len(offers),
            )
            return quote
        except ParcelflowError as exc:
            logger.error(
                "Failed to create quote for cart %s: %s", cart_id, exc
            )
            return None

    async def resolve_recipient(
        self,
        cart: Cart,
        address_id: str | None,
        fallback_country: str | None,
    ) -> Address | None:
        """Explicit address, then customer default, then a country guess."""
        if address_id is not None:
            address = await self.cart_resolver.resolve_address(address_id)
            if address is not None:
                return Address(
                    city=address.city,
                    postal_code=address.postal_code,
                    country=address.country or self.config.shipper_country,
                )

        default = cart.get_default_address()
        if default is not None:
            return Address(
                city=default.city,
                postal_code=default.postal_code,
                country=default.country or self.config.shipper_country,
            )

        if not fallback_country:
            return None
        country = fallback_country.upper()
        if country == self.config.shipper_country.upper():
            return Address(
                city=self.config.shipper_city,
                postal_code=self.config.shipper_postal_code,
                country=country,
            )
        city, postal_code = CAPITAL_PLACEHOLDERS.get(
            country, DEFAULT_PLACEHOLDER
        )
        return Address(city=city, postal_code=postal_code, country=country)

    async def _store_offer(self, quote: Quote, offer_data: dict) -> None:
        product = offer_data.get("product") or {}
        service = await self.materialize_service(product)
        if service is None:
            return
        price = offer_data.get("price") or {}
        total_price = offer_data.get("total_price") or price
        insurance = offer_data.get("insurance_price") or {}
        delay = product.get("delay")
        await self.repository.add_offer(
            quote.id,
            service_id=service.id,
            external_id=offer_data.get("id"),
            product_code=service.code,
            base_price=to_minor_units(price.get("amount")),
            total_price=to_minor_units(total_price.get("amount")),
            insurance_price=to_minor_units(insurance.get("amount")),
            currency=price.get("currency") or self.config.default_currency,
            delivery_days=str(delay) if delay is not None else None,
        )

    async def materialize_service(self, product: dict) -> Service | None:
        """Find the service for a product code, creating it on first sight."""
        code = product.get("code") or ""
        if not code:
            return None
        service = await self.repository.get_service_by_code(code)
        if service is not None:
            return service
        logger.info("Registering new carrier service %s", code)
        return await self.repository.create_service(
            code=code,
            carrier_code=product.get("carrier_code") or "unknown",
            name=product.get("name") or "Unknown Service",
            pickup_available=bool(product.get("pick_up")),
            dropoff_available=bool(product.get("drop_off")),
            relay_delivery=bool(product.get("preset_delivery_location")),
            tracking_url=product.get("tracking_url"),
            active=True,
        )

    async def offers_for(self, quote: Quote) -> list[Offer]:
        offers = await self.repository.list_offers(quote.id)
        return sorted(offers, key=lambda offer: offer.total_price)

    async def invalidate(self, cart_id: str) -> None:
        """Drop cached quotes after the cart contents changed.

        Best-effort: quotes are recreated on the next request anyway.
        """
        try:
            deleted = await self.repository.delete_quotes_for_cart(cart_id)
        except Exception as exc:
            logger.warning(
                "Quote invalidation failed for %s: %s", cart_id, exc
            )
            return
        logger.debug("Invalidated %d quotes for cart %s", deleted, cart_id)
