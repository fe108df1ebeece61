"""Value types shared by the orchestration engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum


class ShipmentStatus(StrEnum):
    PENDING = "pending"
    BOOKED = "booked"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


@dataclass
class Address:
    """Address and contact snapshot sent to the carrier API."""

    name: str = ""
    company: str = ""
    street: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""
    phone: str = ""
    email: str = ""

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass
class RelayPoint:
    code: str
    name: str = ""
    street: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""


@dataclass
class ParcelSpec:
    """Dimensions in cm, weight in kg."""

    length: int
    width: int
    height: int
    weight: float

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class TrackingEvent:
    """Canonical carrier event, whatever shape the payload used."""

    code: str
    label: str = ""
    occurred_at: datetime | None = None
    location: str = ""


@dataclass
class OfferSelection:
    offer_id: str | None
    error: str | None = None
    quote_id: str | None = None
    product_code: str | None = None
    received_count: int = 0
    eligible_count: int = 0

    @property
    def ok(self) -> bool:
        return self.offer_id is not None


@dataclass
class BookingResult:
    success: bool
    error: str | None = None
    error_category: str | None = None
    external_order_id: str | None = None


@dataclass
class CancelResult:
    success: bool
    error: str | None = None
    remote_outcome: str | None = None


@dataclass
class TransitionResult:
    accepted: bool
    changed: bool
    previous: str
    current: str


@dataclass
class SyncSummary:
    checked: int = 0
    changed: int = 0
    failed: int = 0
    failures: dict[str, str] = field(default_factory=dict)
    shipment_ids: list[str] = field(default_factory=list)
