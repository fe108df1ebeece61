"""Polling-based tracking synchronization."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from fastapi_parcelflow.exceptions import ParcelflowError
from fastapi_parcelflow.normalize import map_carrier_status, normalize_events
from fastapi_parcelflow.protocols import (
    QuoteRepository,
    Shipment,
    ShipmentEvent,
    ShipmentRepository,
    ShippingApiClient,
)
from fastapi_parcelflow.status import StatusStateMachine
from fastapi_parcelflow.types import TrackingEvent

logger = logging.getLogger(__name__)

TRACKING_NUMBER_PLACEHOLDER = "{tracking_number}"


def order_state(response: dict | None) -> str | None:
    """Carrier state of an order detail or tracking response.

    The root ``status`` key of an API response is the request envelope
    status, so only the order body is inspected.
    """
    if not response:
        return None
    if "data" in response or "order" in response:
        data = response.get("data") or response.get("order")
    else:
        data = response
    if not isinstance(data, dict):
        return None
    state = data.get("state") or data.get("status")
    return state if isinstance(state, str) and state else None


def tracking_url(template: str | None, tracking_number: str) -> str | None:
    if not template or not tracking_number:
        return None
    return template.replace(TRACKING_NUMBER_PLACEHOLDER, tracking_number)


def _newest_first(events: Sequence[ShipmentEvent]) -> list[ShipmentEvent]:
    oldest = datetime.min.replace(tzinfo=UTC)

    def key(event: ShipmentEvent) -> datetime:
        occurred_at = event.occurred_at
        if occurred_at is None:
            return oldest
        if occurred_at.tzinfo is None:
            return occurred_at.replace(tzinfo=UTC)
        return occurred_at

    return sorted(events, key=key, reverse=True)


def event_as_dict(event: ShipmentEvent) -> dict[str, Any]:
    return {
        "code": event.code,
        "label": event.label,
        "occurred_at": (
            event.occurred_at.isoformat() if event.occurred_at else None
        ),
        "location": event.location,
    }


class TrackingSynchronizer:
    """Pulls events and status from the API as a fallback to webhooks."""

    def __init__(
        self,
        *,
        repository: ShipmentRepository,
        api_client: ShippingApiClient,
        state_machine: StatusStateMachine,
        quote_repository: QuoteRepository | None = None,
    ) -> None:
        self.repository = repository
        self.api_client = api_client
        self.state_machine = state_machine
        self.quote_repository = quote_repository

    async def sync_status(self, shipment_id: str) -> bool:
        """Store new carrier events and apply the carrier status.

        Returns whether anything changed. Raises the last API error when
        neither the tracking nor the order endpoint could be reached.
        """
        shipment = await self.repository.get_by_id(shipment_id)
        external_id = shipment.external_order_id
        if not external_id:
            logger.debug("Shipment %s has no external order id", shipment_id)
            return False

        last_error: ParcelflowError | None = None
        tracking_response: dict | None = None
        order_response: dict | None = None
        events: list[TrackingEvent] = []

        try:
            tracking_response = await self.api_client.get_order_tracking(
                external_id
            )
            events = normalize_events(tracking_response)
        except ParcelflowError as exc:
            logger.debug(
                "Tracking endpoint failed for %s: %s", external_id, exc
            )
            last_error = exc

        # The order detail carries the authoritative state, and events when
        # the tracking endpoint had none.
        try:
            order_response = await self.api_client.get_order(external_id)
        except ParcelflowError as exc:
            logger.debug("Order endpoint failed for %s: %s", external_id, exc)
            last_error = exc
        else:
            if not events:
                events = normalize_events(order_response)

        if tracking_response is None and order_response is None:
            raise last_error

        added = await self.store_events(shipment, events)

        carrier_status = order_state(order_response) or order_state(
            tracking_response
        )
        proposed = map_carrier_status(carrier_status)
        changed = False
        if proposed is not None:
            result = await self.state_machine.apply(
                shipment, proposed, source="sync"
            )
            changed = result.changed
        elif carrier_status:
            logger.debug(
                "Unmapped carrier status %r for shipment %s",
                carrier_status,
                shipment_id,
            )

        return changed or added > 0

    async def store_events(
        self, shipment: Shipment, events: Sequence[TrackingEvent]
    ) -> int:
        if not events:
            return 0
        parcels = await self.repository.list_parcels(shipment.id)
        parcel_id = parcels[0].id if parcels else None
        added = 0
        for event in events:
            stored = await self.repository.add_event(
                shipment.id,
                code=event.code,
                label=event.label,
                occurred_at=event.occurred_at,
                location=event.location,
                parcel_id=parcel_id,
            )
            if stored:
                added += 1
        if added:
            logger.info(
                "Stored %d tracking events for shipment %s",
                added,
                shipment.id,
            )
        return added

    async def tracking_for(self, shipment: Shipment) -> dict[str, Any]:
        """Tracking view of a shipment: parcels with links, newest events."""
        service = None
        if shipment.service_id and self.quote_repository is not None:
            service = await self.quote_repository.get_service(
                shipment.service_id
            )
        template = service.tracking_url if service is not None else None

        parcels = await self.repository.list_parcels(shipment.id)
        events = _newest_first(await self.repository.list_events(shipment.id))
        return {
            "shipment_id": shipment.id,
            "status": str(shipment.status),
            "is_return": bool(shipment.is_return),
            "service_name": service.name if service is not None else "",
            "parcels": [
                {
                    "parcel_id": parcel.id,
                    "tracking_number": parcel.tracking_number,
                    "tracking_url": tracking_url(
                        template, parcel.tracking_number
                    ),
                    "events": [
                        event_as_dict(event)
                        for event in events
                        if event.parcel_id == parcel.id
                    ],
                }
                for parcel in parcels
            ],
            "events": [
                event_as_dict(event)
                for event in events
                if event.parcel_id is None
            ],
        }
