"""Normalization of carrier payloads into canonical records.

Webhook bodies and tracking/order responses arrive in several shapes.
Everything in here is tolerant: unrecognized shapes normalize to empty
values rather than raising.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from fastapi_parcelflow.types import ShipmentStatus, TrackingEvent

logger = logging.getLogger(__name__)

CARRIER_STATUS_MAP: dict[str, ShipmentStatus] = {
    "created": ShipmentStatus.BOOKED,
    "booked": ShipmentStatus.BOOKED,
    "picked_up": ShipmentStatus.SHIPPED,
    "in_transit": ShipmentStatus.SHIPPED,
    "out_for_delivery": ShipmentStatus.SHIPPED,
    "delivered": ShipmentStatus.DELIVERED,
    "cancelled": ShipmentStatus.CANCELLED,
    "returned": ShipmentStatus.CANCELLED,
    # Kept as shipped; the exception detail lives in the event history.
    "exception": ShipmentStatus.SHIPPED,
}

DEFAULT_LABEL_LOCALES = ("fr", "en")
LOCATION_DELIMITER = ", "

_ORDER_ID_KEYS = ("order_id", "lce_order_id", "api_order_uuid", "order_uuid")
_EVENT_CODE_KEYS = ("code", "status", "event")
_EVENT_DATE_KEYS = ("happened_at", "date", "datetime", "timestamp")
_EVENT_TEXT_KEYS = ("message", "description")


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _first_str(data: dict, keys: Sequence[str]) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            text = str(value).strip()
            if text:
                return text
    return None


def map_carrier_status(value: str | None) -> ShipmentStatus | None:
    if not value:
        return None
    return CARRIER_STATUS_MAP.get(value.strip().lower())


def extract_order_id(payload: dict) -> str | None:
    order_id = _first_str(payload, _ORDER_ID_KEYS)
    if order_id:
        return order_id
    for envelope in ("data", "order"):
        nested = _first_str(_as_dict(payload.get(envelope)), ("id",))
        if nested:
            return nested
    return None


def extract_status(payload: dict) -> str | None:
    """Carrier status from the root, a data envelope or an order envelope."""
    status = _first_str(payload, ("status", "state"))
    if status:
        return status
    for envelope in ("data", "order"):
        nested = _first_str(
            _as_dict(payload.get(envelope)), ("state", "status")
        )
        if nested:
            return nested
    return None


def extract_tracking_number(payload: dict) -> str | None:
    return _first_str(payload, ("tracking_number",)) or _first_str(
        _as_dict(payload.get("data")), ("tracking_number",)
    )


def extract_event_type(payload: dict) -> str:
    return _first_str(payload, ("event", "type")) or ""


def _parcel_events(parcels: Any) -> list:
    events: list = []
    for parcel in _as_list(parcels):
        events.extend(_as_list(_as_dict(parcel).get("events")))
    return events


def _from_data_list(payload: dict) -> list:
    events: list = []
    for item in _as_list(payload.get("data")):
        item = _as_dict(item)
        events.extend(_as_list(item.get("events")))
        events.extend(_parcel_events(item.get("parcels")))
    return events


def _from_data_events(payload: dict) -> list:
    return _as_list(_as_dict(payload.get("data")).get("events"))


def _from_data_parcels(payload: dict) -> list:
    return _parcel_events(_as_dict(payload.get("data")).get("parcels"))


def _from_root_tracking(payload: dict) -> list:
    return _as_list(payload.get("tracking"))


def _from_root_events(payload: dict) -> list:
    return _as_list(payload.get("events"))


def _from_root_parcels(payload: dict) -> list:
    return _parcel_events(payload.get("parcels"))


# First shape yielding events wins.
EVENT_SHAPES: tuple[Callable[[dict], list], ...] = (
    _from_data_list,
    _from_data_events,
    _from_data_parcels,
    _from_root_tracking,
    _from_root_events,
    _from_root_parcels,
)


def extract_raw_events(payload: Any) -> list[dict]:
    if not isinstance(payload, dict):
        return []
    for shape in EVENT_SHAPES:
        events = [event for event in shape(payload) if isinstance(event, dict)]
        if events:
            return events
    return []


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or epoch seconds into aware UTC datetimes."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=UTC)
        parsed = datetime.fromisoformat(str(value).strip())
    except (TypeError, ValueError, OverflowError, OSError):
        logger.debug("Unparseable event timestamp: %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def pick_label(
    value: Any, locales: Sequence[str] = DEFAULT_LABEL_LOCALES
) -> str:
    """Label may be plain text or a mapping keyed by locale."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for locale in locales:
            text = value.get(locale)
            if isinstance(text, str) and text:
                return text
    return ""


def format_location(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        parts = [
            str(value[key]) for key in ("city", "country") if value.get(key)
        ]
        return LOCATION_DELIMITER.join(parts)
    return ""


def normalize_event(
    raw: Any, locales: Sequence[str] = DEFAULT_LABEL_LOCALES
) -> TrackingEvent | None:
    if not isinstance(raw, dict):
        return None
    code = _first_str(raw, _EVENT_CODE_KEYS) or "unknown"
    occurred_at = None
    for key in _EVENT_DATE_KEYS:
        if raw.get(key) is not None:
            occurred_at = parse_timestamp(raw[key])
            break
    if "label" in raw:
        label = pick_label(raw["label"], locales)
    else:
        label = _first_str(raw, _EVENT_TEXT_KEYS) or ""
    return TrackingEvent(
        code=code,
        label=label,
        occurred_at=occurred_at,
        location=format_location(raw.get("location")),
    )


def normalize_events(
    payload: Any, locales: Sequence[str] = DEFAULT_LABEL_LOCALES
) -> list[TrackingEvent]:
    """Flatten any recognized payload shape into canonical events."""
    events = []
    for raw in extract_raw_events(payload):
        event = normalize_event(raw, locales)
        if event is not None:
            events.append(event)
    return events


def last_event_timestamp(payload: dict) -> str:
    """Raw timestamp of the last root-level event, used for id derivation."""
    events = _as_list(payload.get("events"))
    if not events:
        return ""
    last = _as_dict(events[-1])
    return _first_str(last, ("date", "happened_at")) or ""
