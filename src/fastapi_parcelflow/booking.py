"""Shipment creation and booking with the carrier."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from fastapi_parcelflow.config import ParcelflowConfig
from fastapi_parcelflow.exceptions import (
    ApiError,
    ConfigurationError,
    ParcelflowError,
    ValidationError,
)
from fastapi_parcelflow.offers import OfferSelector
from fastapi_parcelflow.parcels import validate_parcel
from fastapi_parcelflow.protocols import (
    Order,
    Parcel,
    ParcelSizer,
    Shipment,
    ShipmentRepository,
    ShippingApiClient,
)
from fastapi_parcelflow.quotes import to_minor_units
from fastapi_parcelflow.status import StatusStateMachine, utcnow
from fastapi_parcelflow.types import (
    BookingResult,
    ParcelSpec,
    RelayPoint,
    ShipmentStatus,
)

logger = logging.getLogger(__name__)

PHONE_PREFIXES: dict[str, str] = {
    "FR": "33",
    "BE": "32",
    "CH": "41",
    "DE": "49",
    "ES": "34",
    "IT": "39",
    "GB": "44",
    "NL": "31",
    "PT": "351",
    "LU": "352",
}
DEFAULT_PHONE_PREFIX = "33"
PLACEHOLDER_MOBILE = "612345678"
MIN_PHONE_DIGITS = 9
PLACEHOLDER_EMAIL = "noreply@example.com"

SHIPPER_FALLBACKS = {
    "name": "Expéditeur",
    "street": "Adresse",
    "city": "Paris",
    "postal_code": "75001",
    "country": "FR",
}

RETURNABLE_STATUSES = frozenset(
    {ShipmentStatus.SHIPPED, ShipmentStatus.DELIVERED}
)
RETURN_DESCRIPTION_PREFIX = "Retour - "
RETURN_REFERENCE_PREFIX = "RET-"
MAX_DESCRIPTION_ITEMS = 3

_email_adapter = TypeAdapter(EmailStr)


def normalize_phone(phone: str | None, country: str = "FR") -> str:
    """Coerce a phone number into ``+<prefix><digits>`` form.

    Numbers too short to be plausible are replaced by a placeholder mobile
    number; the carrier API rejects bookings without a valid phone.
    """
    prefix = PHONE_PREFIXES.get((country or "").upper(), DEFAULT_PHONE_PREFIX)
    if not phone:
        return f"+{DEFAULT_PHONE_PREFIX}{PLACEHOLDER_MOBILE}"
    digits = re.sub(r"\D", "", phone)
    if len(digits) < MIN_PHONE_DIGITS:
        logger.warning(
            "Phone number %r too short for %s, using default", phone, country
        )
        return f"+{prefix}{PLACEHOLDER_MOBILE}"
    if digits.startswith(prefix):
        return f"+{digits}"
    if digits.startswith("0"):
        return f"+{prefix}{digits[1:]}"
    return f"+{prefix}{digits}"


def is_valid_email(email: str | None) -> bool:
    if not email:
        return False
    try:
        _email_adapter.validate_python(email)
    except PydanticValidationError:
        return False
    return True


def shipper_email_for(shipment: Shipment) -> str:
    if is_valid_email(shipment.shipper_email):
        return shipment.shipper_email
    return shipment.recipient_email or PLACEHOLDER_EMAIL


def parcel_tracking_number(data: dict) -> str | None:
    return (
        data.get("tracking_number")
        or data.get("tracking")
        or data.get("parcel_tracking_number")
    )


def parcel_label_url(data: dict) -> str | None:
    labels = data.get("labels")
    label = (
        data.get("label")
        or data.get("label_url")
        or (labels.get("pdf") if isinstance(labels, dict) else None)
    )
    if isinstance(label, dict):
        label = label.get("url") or label.get("pdf")
    elif isinstance(label, list):
        label = label[0] if label else None
    return label if isinstance(label, str) and label else None


def error_category(exc: ParcelflowError) -> str:
    if isinstance(exc, ApiError):
        return exc.category
    if isinstance(exc, ConfigurationError):
        return "configuration_error"
    if isinstance(exc, ValidationError):
        return "validation_error"
    return "shipment_error"


class BookingOrchestrator:
    """Creates shipments and moves them from pending to booked."""

    def __init__(
        self,
        *,
        config: ParcelflowConfig,
        repository: ShipmentRepository,
        api_client: ShippingApiClient,
        offer_selector: OfferSelector,
        state_machine: StatusStateMachine,
        parcel_sizer: ParcelSizer,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.repository = repository
        self.api_client = api_client
        self.offer_selector = offer_selector
        self.state_machine = state_machine
        self.parcel_sizer = parcel_sizer
        self.clock = clock

    async def create_shipment(
        self,
        order: Order,
        *,
        service_id: str | None = None,
        relay: RelayPoint | None = None,
        external_quote_id: str | None = None,
        external_offer_id: str | None = None,
    ) -> Shipment | None:
        """Create a pending shipment for ``order`` with one default parcel."""
        address = order.get_delivery_address()
        if address is None:
            logger.error("No delivery address for order %s", order.id)
            return None

        now = self.clock()
        shipper = self.config.shipper_address()
        fields: dict[str, Any] = {
            "order_id": order.id,
            "order_ref": order.ref,
            "service_id": service_id,
            "external_quote_id": external_quote_id,
            "external_offer_id": external_offer_id,
            "status": ShipmentStatus.PENDING,
            "is_return": False,
            "recipient_name": address.name,
            "recipient_company": address.company,
            "recipient_phone": address.phone,
            "recipient_email": address.email,
            "created_at": now,
            "updated_at": now,
        }
        for key, value in shipper.as_dict().items():
            fields[f"shipper_{key}"] = value

        if relay is not None and relay.code:
            # Carriers deliver to the relay, so it doubles as the recipient.
            fields.update(
                relay_code=relay.code,
                relay_name=relay.name,
                relay_street=relay.street,
                relay_city=relay.city,
                relay_postal_code=relay.postal_code,
                relay_country=relay.country,
                recipient_street=relay.street,
                recipient_city=relay.city,
                recipient_postal_code=relay.postal_code,
                recipient_country=relay.country,
            )
        else:
            fields.update(
                recipient_street=address.street,
                recipient_city=address.city,
                recipient_postal_code=address.postal_code,
                recipient_country=address.country or "FR",
            )

        shipment = await self.repository.create(**fields)
        await self._add_default_parcel(shipment, order)
        await self.repository.add_event(
            shipment.id,
            code="CREATED",
            label=f"Shipment created for order #{order.ref}",
            occurred_at=now,
        )
        logger.info("Shipment %s created for order %s", shipment.id, order.id)
        return shipment

    async def _add_default_parcel(self, shipment: Shipment, order: Order):
        total_weight = Decimal(0)
        total_value = Decimal(0)
        titles = []
        for line in order.get_lines():
            total_weight += Decimal(line.unit_weight or 0) * line.quantity
            total_value += Decimal(line.unit_price or 0) * line.quantity
            titles.append(line.title)

        weight = float(total_weight)
        if weight <= 0:
            weight = self.config.default_parcel_weight
        length, width, height = self.parcel_sizer.dimensions_for_weight(weight)
        return await self.repository.add_parcel(
            shipment.id,
            length=length,
            width=width,
            height=height,
            weight=weight,
            value=to_minor_units(total_value),
            currency=self.config.default_currency,
            description=", ".join(titles[:MAX_DESCRIPTION_ITEMS]),
            shipper_reference=order.ref,
        )

    async def create_return_shipment(
        self, original: Shipment, *, service_id: str | None = None
    ) -> Shipment | None:
        """Create a pending return with shipper and recipient swapped."""
        if original.status not in RETURNABLE_STATUSES:
            logger.warning(
                "Cannot create return for shipment %s in status %s",
                original.id,
                original.status,
            )
            return None

        now = self.clock()
        store = self.config.shipper_address()
        fields: dict[str, Any] = {
            "order_id": original.order_id,
            "order_ref": original.order_ref,
            "service_id": service_id or original.service_id,
            "status": ShipmentStatus.PENDING,
            "is_return": True,
            "created_at": now,
            "updated_at": now,
        }
        for key in store.as_dict():
            fields[f"shipper_{key}"] = getattr(original, f"recipient_{key}")
            fields[f"recipient_{key}"] = getattr(store, key) or getattr(
                original, f"shipper_{key}"
            )

        shipment = await self.repository.create(**fields)
        for parcel in await self.repository.list_parcels(original.id):
            await self.repository.add_parcel(
                shipment.id,
                length=parcel.length,
                width=parcel.width,
                height=parcel.height,
                weight=parcel.weight,
                value=parcel.value,
                currency=parcel.currency,
                description=f"{RETURN_DESCRIPTION_PREFIX}{parcel.description}",
                shipper_reference=(
                    f"{RETURN_REFERENCE_PREFIX}{original.order_ref}"
                ),
            )
        await self.repository.add_event(
            shipment.id,
            code="CREATED",
            label=f"Return created for shipment {original.id}",
            occurred_at=now,
        )
        logger.info(
            "Return shipment %s created for shipment %s",
            shipment.id,
            original.id,
        )
        return shipment

    async def book(
        self, shipment: Shipment, collection_date: date | None = None
    ) -> BookingResult:
        """Book ``shipment`` with the carrier.

        Never raises: every failure comes back as an unsuccessful
        BookingResult carrying the message and an error category.
        """
        try:
            async with self.state_machine.locked(shipment.id):
                if self.state_machine.locker is not None:
                    shipment = await self.repository.get_by_id(shipment.id)
                return await self._book(shipment, collection_date)
        except ParcelflowError as exc:
            logger.error("Failed to book shipment %s: %s", shipment.id, exc)
            return BookingResult(
                success=False,
                error=str(exc),
                error_category=error_category(exc),
            )
        except Exception as exc:
            logger.exception(
                "Unexpected error booking shipment %s", shipment.id
            )
            return BookingResult(success=False, error=str(exc))

    async def _book(
        self, shipment: Shipment, collection_date: date | None
    ) -> BookingResult:
        if not self.config.is_api_configured:
            raise ConfigurationError(
                "API credentials not configured. "
                "Please configure API login and password."
            )
        if shipment.status != ShipmentStatus.PENDING:
            return BookingResult(
                success=False,
                error=(
                    f"Shipment in status '{shipment.status}' "
                    "cannot be booked."
                ),
                error_category="order_state",
            )

        parcels = await self.repository.list_parcels(shipment.id)
        if not parcels:
            return BookingResult(
                success=False,
                error="No parcels defined for this shipment.",
                error_category="validation_error",
            )
        for parcel in parcels:
            validate_parcel(
                ParcelSpec(
                    length=parcel.length,
                    width=parcel.width,
                    height=parcel.height,
                    weight=parcel.weight,
                )
            )

        selection = await self.offer_selector.select_for_booking(
            shipment, parcels
        )
        if not selection.ok:
            logger.error(
                "No offer for shipment %s: %s", shipment.id, selection.error
            )
            return BookingResult(
                success=False,
                error=selection.error
                or "No shipping offer available for this route.",
                error_category="no_offers_available",
            )

        params = self.order_params(shipment, parcels, selection.offer_id)
        if collection_date is not None:
            params["collection_date"] = collection_date.isoformat()
            shipment.collection_date = collection_date

        response = await self.api_client.place_order(params)
        order_data = response.get("data") or response.get("order") or {}
        if not isinstance(order_data, dict) or not order_data.get("id"):
            logger.error("Order response without id for %s", shipment.id)
            return BookingResult(
                success=False,
                error="Invalid API response: no order ID returned.",
                error_category="unknown",
            )

        # The remote order exists now: persist its id and status before
        # anything else can fail.
        shipment.external_order_id = str(order_data["id"])
        await self.state_machine.apply(
            shipment,
            ShipmentStatus.BOOKED,
            code="BOOKED",
            label="Shipment booked with the carrier",
            source="booking",
        )

        api_parcels = order_data.get("parcels")
        if isinstance(api_parcels, list):
            try:
                await self.apply_parcel_data(parcels, api_parcels)
            except Exception:
                logger.exception(
                    "Could not store parcel data for shipment %s",
                    shipment.id,
                )
        logger.info(
            "Shipment %s booked as order %s",
            shipment.id,
            shipment.external_order_id,
        )
        return BookingResult(
            success=True, external_order_id=shipment.external_order_id
        )

    def order_params(
        self, shipment: Shipment, parcels: Sequence[Parcel], offer_id: str
    ) -> dict[str, Any]:
        shipper_country = (
            shipment.shipper_country or SHIPPER_FALLBACKS["country"]
        )
        recipient_country = shipment.recipient_country or "FR"
        params: dict[str, Any] = {
            "offer_id": offer_id,
            "shipper": {
                "name": shipment.shipper_name or SHIPPER_FALLBACKS["name"],
                "company": shipment.shipper_company,
                "street": shipment.shipper_street
                or SHIPPER_FALLBACKS["street"],
                "city": shipment.shipper_city or SHIPPER_FALLBACKS["city"],
                "postal_code": shipment.shipper_postal_code
                or SHIPPER_FALLBACKS["postal_code"],
                "country": shipper_country,
                "phone": normalize_phone(
                    shipment.shipper_phone, shipper_country
                ),
                "email": shipper_email_for(shipment),
            },
            "recipient": {
                "name": shipment.recipient_name,
                "company": shipment.recipient_company,
                "street": shipment.recipient_street,
                "city": shipment.recipient_city,
                "postal_code": shipment.recipient_postal_code,
                "country": recipient_country,
                "phone": normalize_phone(
                    shipment.recipient_phone, recipient_country
                ),
                "email": shipment.recipient_email,
            },
            "parcels": [
                {
                    "length": parcel.length,
                    "width": parcel.width,
                    "height": parcel.height,
                    "weight": parcel.weight,
                    "shipper_reference": parcel.shipper_reference,
                    "description": parcel.description,
                    "value": parcel.value,
                    "currency": parcel.currency,
                }
                for parcel in parcels
            ],
        }
        relay_code = (shipment.relay_code or "").strip()
        if relay_code:
            params["delivery_location_code"] = relay_code
        return params

    async def apply_parcel_data(
        self, parcels: Sequence[Parcel], api_parcels: Sequence[Any]
    ) -> None:
        """Copy tracking numbers and label URLs returned by the API.

        API parcels are matched to local parcels by position.
        """
        for parcel, data in zip(parcels, api_parcels, strict=False):
            if not isinstance(data, dict):
                continue
            changed = False
            tracking_number = parcel_tracking_number(data)
            if tracking_number:
                parcel.tracking_number = str(tracking_number)
                changed = True
            label_url = parcel_label_url(data)
            if label_url:
                parcel.label_url = label_url
                changed = True
            if changed:
                await self.repository.save_parcel(parcel)

    async def get_labels(self, shipment: Shipment) -> list[dict[str, Any]]:
        """Label URL per parcel, fetched from the API when missing."""
        parcels = await self.repository.list_parcels(shipment.id)
        missing = any(not parcel.label_url for parcel in parcels)
        if missing and shipment.external_order_id:
            try:
                await self._fetch_labels(shipment, parcels)
            except ParcelflowError as exc:
                logger.error(
                    "Failed to fetch labels for shipment %s: %s",
                    shipment.id,
                    exc,
                )
        return [
            {
                "parcel_id": parcel.id,
                "tracking_number": parcel.tracking_number,
                "label_url": parcel.label_url,
            }
            for parcel in parcels
            if parcel.label_url
        ]

    async def _fetch_labels(
        self, shipment: Shipment, parcels: Sequence[Parcel]
    ) -> None:
        response = await self.api_client.get_order(shipment.external_order_id)
        order_data = response.get("data") or response.get("order") or response
        api_parcels = order_data.get("parcels")
        if isinstance(api_parcels, list) and api_parcels:
            await self.apply_parcel_data(parcels, api_parcels)

        without_label = [parcel for parcel in parcels if not parcel.label_url]
        if not without_label:
            return
        # The labels endpoint serves one combined PDF for the whole order.
        label_url = self.api_client.get_label_url(shipment.external_order_id)
        logger.info(
            "Using direct label URL for %d parcels of shipment %s",
            len(without_label),
            shipment.id,
        )
        for parcel in without_label:
            parcel.label_url = label_url
            await self.repository.save_parcel(parcel)
