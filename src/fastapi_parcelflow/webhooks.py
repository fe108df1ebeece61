"""Idempotent ingestion of carrier tracking webhooks."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from fastapi_parcelflow.config import ParcelflowConfig
from fastapi_parcelflow.normalize import (
    extract_event_type,
    extract_order_id,
    extract_status,
    extract_tracking_number,
    last_event_timestamp,
    map_carrier_status,
    normalize_events,
)
from fastapi_parcelflow.protocols import (
    Shipment,
    ShipmentRepository,
    WebhookEventStore,
)
from fastapi_parcelflow.status import StatusStateMachine

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-webhook-signature", "x-mfb-signature", "x-signature")
EVENT_ID_HEADERS = ("x-event-id", "x-webhook-id", "x-request-id")
MAX_EVENT_ID_LENGTH = 128

STATUS_PROCESSED = "processed"
STATUS_NO_ACTION = "no_action"
STATUS_ALREADY_PROCESSED = "already_processed"
STATUS_ERROR = "error"


@dataclass
class WebhookOutcome:
    status_code: int
    status: str
    webhook_id: str
    message: str | None = None
    event_id: str | None = None

    def body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "status": self.status,
            "webhook_id": self.webhook_id,
        }
        if self.message:
            body["message"] = self.message
        return body


def generate_webhook_id() -> str:
    return f"wh_{secrets.token_hex(8)}"


def strip_signature_prefix(signature: str) -> str:
    """``sha256=abc`` and ``v1=abc`` both become ``abc``."""
    if "=" in signature:
        return signature.split("=", 1)[1]
    return signature


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(
        secret.encode("utf-8"), raw_body, hashlib.sha256
    ).hexdigest()


def validate_signature(
    raw_body: bytes, header_value: str | None, secret: str
) -> bool:
    """HMAC-SHA256 check of the exact raw body.

    With no secret configured every request is trusted.
    """
    if not secret:
        return True
    if not header_value:
        return False
    expected = compute_signature(secret, raw_body)
    received = strip_signature_prefix(header_value.strip())
    return hmac.compare_digest(expected, received)


def _lowered(headers: Mapping[str, str]) -> dict[str, str]:
    return {key.lower(): value for key, value in headers.items()}


def signature_from_headers(headers: Mapping[str, str]) -> str | None:
    lowered = _lowered(headers)
    for name in SIGNATURE_HEADERS:
        if lowered.get(name):
            return lowered[name]
    return None


def _bounded_id(value: str) -> str:
    """Hash ids too long to be stored as-is."""
    if len(value) <= MAX_EVENT_ID_LENGTH:
        return value
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def resolve_event_id(headers: Mapping[str, str], payload: dict) -> str:
    """Header id, then payload id, then a hash of the event content."""
    lowered = _lowered(headers)
    for name in EVENT_ID_HEADERS:
        if lowered.get(name):
            return _bounded_id(lowered[name])

    for key in ("event_id", "id"):
        value = payload.get(key)
        if value not in (None, ""):
            return _bounded_id(str(value))

    content = "|".join(
        (
            extract_order_id(payload) or "",
            extract_event_type(payload),
            last_event_timestamp(payload),
        )
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def parse_payload(raw_body: bytes) -> dict | None:
    if not raw_body or not raw_body.strip():
        return None
    try:
        payload = json.loads(raw_body)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


class WebhookIngestor:
    """Validates, deduplicates and applies carrier push notifications."""

    def __init__(
        self,
        *,
        config: ParcelflowConfig,
        repository: ShipmentRepository,
        state_machine: StatusStateMachine,
        event_store: WebhookEventStore,
    ) -> None:
        self.config = config
        self.repository = repository
        self.state_machine = state_machine
        self.event_store = event_store

    def validate_signature(
        self, raw_body: bytes, header_value: str | None
    ) -> bool:
        return validate_signature(
            raw_body, header_value, self.config.webhook_secret
        )

    def resolve_event_id(
        self, headers: Mapping[str, str], payload: dict
    ) -> str:
        return resolve_event_id(headers, payload)

    async def handle(self, payload: dict, event_id: str) -> bool:
        """Apply a parsed payload; return whether anything changed."""
        _, changed = await self._handle(payload, event_id)
        return changed

    async def _handle(
        self, payload: dict, event_id: str
    ) -> tuple[Shipment | None, bool]:
        order_id = extract_order_id(payload)
        if not order_id:
            logger.warning("Webhook %s carries no order id", event_id)
            return None, False

        shipment = await self.repository.get_by_external_order_id(order_id)
        if shipment is None:
            # May belong to another system or a purged shipment.
            logger.info(
                "No shipment for order %s (event %s)", order_id, event_id
            )
            return None, False

        status_changed = await self._apply_status(shipment, payload)
        events_added = await self._record_events(shipment, payload)
        tracking_updated = await self._update_tracking_number(
            shipment, payload
        )
        return shipment, status_changed or events_added > 0 or tracking_updated

    async def _apply_status(self, shipment: Shipment, payload: dict) -> bool:
        carrier_status = extract_status(payload)
        if not carrier_status:
            return False
        proposed = map_carrier_status(carrier_status)
        if proposed is None:
            logger.debug(
                "Unmapped carrier status %r for shipment %s",
                carrier_status,
                shipment.id,
            )
            return False
        result = await self.state_machine.apply(
            shipment, proposed, source="webhook"
        )
        return result.changed

    async def _record_events(self, shipment: Shipment, payload: dict) -> int:
        events = normalize_events(payload)
        if not events:
            return 0
        parcels = await self.repository.list_parcels(shipment.id)
        parcel_id = parcels[0].id if parcels else None

        added = 0
        for event in events:
            if await self.repository.add_event(
                shipment.id,
                code=event.code,
                label=event.label,
                occurred_at=event.occurred_at,
                location=event.location,
                parcel_id=parcel_id,
            ):
                added += 1
        if added:
            logger.info(
                "Added %d tracking events to shipment %s", added, shipment.id
            )
        return added

    async def _update_tracking_number(
        self, shipment: Shipment, payload: dict
    ) -> bool:
        tracking_number = extract_tracking_number(payload)
        if not tracking_number:
            return False
        parcels = await self.repository.list_parcels(shipment.id)
        if not parcels or parcels[0].tracking_number == tracking_number:
            return False
        parcel = parcels[0]
        parcel.tracking_number = tracking_number
        await self.repository.save_parcel(parcel)
        logger.info(
            "Tracking number of shipment %s set to %s",
            shipment.id,
            tracking_number,
        )
        return True

    async def ingest(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> WebhookOutcome:
        """Run one delivery end to end and map it to an HTTP outcome.

        200 processed / no_action / already_processed, 401 bad signature,
        400 unparseable body, 500 internal fault, 503 disabled.
        """
        webhook_id = generate_webhook_id()

        if not self.config.webhook_enabled:
            logger.warning("Webhook %s received while disabled", webhook_id)
            return WebhookOutcome(
                503, STATUS_ERROR, webhook_id, "Webhooks are disabled"
            )

        if not self.validate_signature(
            raw_body, signature_from_headers(headers)
        ):
            logger.warning("Webhook %s signature invalid", webhook_id)
            return WebhookOutcome(
                401, STATUS_ERROR, webhook_id, "Unauthorized"
            )

        payload = parse_payload(raw_body)
        if payload is None:
            logger.warning("Webhook %s payload unparseable", webhook_id)
            return WebhookOutcome(
                400, STATUS_ERROR, webhook_id, "Invalid payload"
            )

        event_id = self.resolve_event_id(headers, payload)
        try:
            if await self.event_store.is_processed(event_id):
                logger.info(
                    "Webhook %s event %s already processed",
                    webhook_id,
                    event_id,
                )
                return WebhookOutcome(
                    200,
                    STATUS_ALREADY_PROCESSED,
                    webhook_id,
                    event_id=event_id,
                )

            shipment, changed = await self._handle(payload, event_id)
            await self.event_store.mark_processed(
                event_id,
                shipment_id=shipment.id if shipment is not None else None,
                changed=changed,
            )
        except Exception:
            # Unrecorded, so the sender's retry is processed again.
            logger.exception(
                "Webhook %s event %s processing failed", webhook_id, event_id
            )
            return WebhookOutcome(
                500, STATUS_ERROR, webhook_id, "Internal error", event_id
            )

        logger.info(
            "Webhook %s event %s processed (changed=%s)",
            webhook_id,
            event_id,
            changed,
        )
        return WebhookOutcome(
            200,
            STATUS_PROCESSED if changed else STATUS_NO_ACTION,
            webhook_id,
            event_id=event_id,
        )
