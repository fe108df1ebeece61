"""Pydantic request and response schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from fastapi_parcelflow.types import BookingResult, CancelResult


class BookShipmentRequest(BaseModel):
    collection_date: date | None = None


class BookingResponse(BaseModel):
    shipment_id: str
    success: bool
    status: str
    external_order_id: str | None = None
    error: str | None = None
    error_category: str | None = None

    @classmethod
    def from_result(
        cls, shipment: Any, result: BookingResult
    ) -> BookingResponse:
        return cls(
            shipment_id=str(shipment.id),
            success=result.success,
            status=str(shipment.status),
            external_order_id=result.external_order_id,
            error=result.error,
            error_category=result.error_category,
        )


class CancelResponse(BaseModel):
    shipment_id: str
    success: bool
    status: str
    error: str | None = None
    remote_outcome: str | None = None

    @classmethod
    def from_result(
        cls, shipment: Any, result: CancelResult
    ) -> CancelResponse:
        return cls(
            shipment_id=str(shipment.id),
            success=result.success,
            status=str(shipment.status),
            error=result.error,
            remote_outcome=result.remote_outcome,
        )


class SyncResponse(BaseModel):
    shipment_id: str
    changed: bool
    status: str


class TrackingEventSchema(BaseModel):
    code: str
    label: str = ""
    occurred_at: str | None = None
    location: str = ""


class ParcelTrackingSchema(BaseModel):
    parcel_id: str
    tracking_number: str = ""
    tracking_url: str | None = None
    events: list[TrackingEventSchema] = Field(default_factory=list)


class ShipmentResponse(BaseModel):
    id: str
    order_id: str
    status: str
    is_return: bool = False
    external_order_id: str | None = None
    service_name: str = ""
    parcels: list[ParcelTrackingSchema] = Field(default_factory=list)
    events: list[TrackingEventSchema] = Field(default_factory=list)

    @classmethod
    def from_tracking(
        cls, shipment: Any, tracking: dict[str, Any]
    ) -> ShipmentResponse:
        return cls(
            id=str(shipment.id),
            order_id=str(shipment.order_id),
            status=str(shipment.status),
            is_return=bool(shipment.is_return),
            external_order_id=shipment.external_order_id,
            service_name=tracking.get("service_name", ""),
            parcels=tracking.get("parcels", []),
            events=tracking.get("events", []),
        )


class LabelSchema(BaseModel):
    parcel_id: str
    tracking_number: str = ""
    label_url: str


class LabelsResponse(BaseModel):
    shipment_id: str
    labels: list[LabelSchema]


class OfferSchema(BaseModel):
    id: str
    service_id: str
    product_code: str
    total_price: int
    base_price: int
    insurance_price: int = 0
    currency: str
    delivery_days: str | None = None

    @classmethod
    def from_offer(cls, offer: Any) -> OfferSchema:
        return cls(
            id=str(offer.id),
            service_id=str(offer.service_id),
            product_code=offer.product_code,
            total_price=offer.total_price,
            base_price=offer.base_price,
            insurance_price=offer.insurance_price or 0,
            currency=offer.currency,
            delivery_days=offer.delivery_days,
        )


class QuoteResponse(BaseModel):
    id: str
    cart_id: str
    address_id: str | None = None
    external_id: str | None = None
    created_at: datetime
    best_price: int | None = None
    offers: list[OfferSchema] = Field(default_factory=list)


class WebhookResponse(BaseModel):
    status: str
    webhook_id: str
    message: str | None = None
