"""Translation of raw carrier API error text into user-facing categories.

Best-effort only: the table is matched in order against the lowercased
message and the first substring hit wins, so more specific patterns must
stay above the generic ones. The raw text is always preserved.
"""

from __future__ import annotations

from typing import TypedDict

UNKNOWN = "unknown"

API_ERROR_PATTERNS: tuple[tuple[str, str], ...] = (
    # Order state
    ("order not booked", "order_not_booked"),
    ("not booked", "order_not_booked"),
    ("already cancelled", "order_already_cancelled"),
    ("cancelled", "order_already_cancelled"),
    ("already shipped", "order_already_shipped"),
    ("already delivered", "order_already_delivered"),
    # Address
    ("invalid address", "invalid_address"),
    ("postal code", "invalid_address"),
    ("city required", "invalid_address"),
    # Authentication
    ("unauthorized", "authentication_failed"),
    ("(401)", "authentication_failed"),
    ("invalid credentials", "authentication_failed"),
    ("authentication", "authentication_failed"),
    # Offers
    ("no offer", "no_offers_available"),
    ("no service", "no_offers_available"),
    ("not available", "no_offers_available"),
    # Parcels
    ("invalid parcel", "invalid_parcel"),
    ("weight", "invalid_parcel"),
    ("dimension", "invalid_parcel"),
    # Availability
    ("timeout", "service_unavailable"),
    ("connection", "service_unavailable"),
    ("(503)", "service_unavailable"),
    ("(500)", "service_unavailable"),
    ("(502)", "service_unavailable"),
)

CATEGORY_MESSAGES: dict[str, str] = {
    "order_not_booked": "The order has not been booked with the carrier yet.",
    "order_already_cancelled": "The order has already been cancelled.",
    "order_already_shipped": "The order has already been shipped.",
    "order_already_delivered": "The order has already been delivered.",
    "invalid_address": "The address was rejected by the carrier.",
    "authentication_failed": "Carrier API credentials were rejected.",
    "no_offers_available": "No shipping offer is available for this route.",
    "invalid_parcel": "Parcel weight or dimensions were rejected.",
    "service_unavailable": "The carrier API is temporarily unavailable.",
    UNKNOWN: "The carrier API reported an unexpected error.",
}


class TranslatedError(TypedDict):
    category: str
    message: str
    original: str


def classify_api_error(raw_message: str) -> str:
    lowered = raw_message.lower()
    for pattern, category in API_ERROR_PATTERNS:
        if pattern in lowered:
            return category
    return UNKNOWN


def translate_api_error(raw_message: str) -> TranslatedError:
    """Map raw API error text to a category and a readable message."""
    category = classify_api_error(raw_message)
    return {
        "category": category,
        "message": CATEGORY_MESSAGES[category],
        "original": raw_message,
    }
