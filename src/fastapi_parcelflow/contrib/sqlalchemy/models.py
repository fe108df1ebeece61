"""SQLAlchemy shipment, quote and webhook models."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""


class ShipmentModel(Base):
    """Shipment with shipper, recipient and relay snapshots."""

    __tablename__ = "parcelflow_shipments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), index=True)
    order_ref: Mapped[str] = mapped_column(String(64), default="")
    service_id: Mapped[str | None] = mapped_column(String(64), default=None)
    external_quote_id: Mapped[str | None] = mapped_column(
        String(128), default=None
    )
    external_offer_id: Mapped[str | None] = mapped_column(
        String(128), default=None
    )
    external_order_id: Mapped[str | None] = mapped_column(
        String(128), default=None, index=True
    )
    status: Mapped[str] = mapped_column(String(32), default="pending")
    is_return: Mapped[bool] = mapped_column(Boolean, default=False)

    shipper_name: Mapped[str] = mapped_column(String(255), default="")
    shipper_company: Mapped[str] = mapped_column(String(255), default="")
    shipper_street: Mapped[str] = mapped_column(String(512), default="")
    shipper_city: Mapped[str] = mapped_column(String(128), default="")
    shipper_postal_code: Mapped[str] = mapped_column(String(32), default="")
    shipper_country: Mapped[str] = mapped_column(String(2), default="FR")
    shipper_phone: Mapped[str] = mapped_column(String(64), default="")
    shipper_email: Mapped[str] = mapped_column(String(255), default="")

    recipient_name: Mapped[str] = mapped_column(String(255), default="")
    recipient_company: Mapped[str] = mapped_column(String(255), default="")
    recipient_street: Mapped[str] = mapped_column(String(512), default="")
    recipient_city: Mapped[str] = mapped_column(String(128), default="")
    recipient_postal_code: Mapped[str] = mapped_column(
        String(32), default=""
    )
    recipient_country: Mapped[str] = mapped_column(String(2), default="FR")
    recipient_phone: Mapped[str] = mapped_column(String(64), default="")
    recipient_email: Mapped[str] = mapped_column(String(255), default="")

    relay_code: Mapped[str | None] = mapped_column(String(64), default=None)
    relay_name: Mapped[str] = mapped_column(String(255), default="")
    relay_street: Mapped[str] = mapped_column(String(512), default="")
    relay_city: Mapped[str] = mapped_column(String(128), default="")
    relay_postal_code: Mapped[str] = mapped_column(String(32), default="")
    relay_country: Mapped[str] = mapped_column(String(2), default="")

    collection_date: Mapped[date | None] = mapped_column(Date, default=None)
    booked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None, index=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )


class ParcelModel(Base):
    __tablename__ = "parcelflow_parcels"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    shipment_id: Mapped[str] = mapped_column(
        ForeignKey("parcelflow_shipments.id", ondelete="CASCADE"),
        index=True,
    )
    # Order of creation; API responses list parcels in this order.
    position: Mapped[int] = mapped_column(Integer, default=0)
    length: Mapped[int] = mapped_column(Integer, default=0)
    width: Mapped[int] = mapped_column(Integer, default=0)
    height: Mapped[int] = mapped_column(Integer, default=0)
    weight: Mapped[float] = mapped_column(Float, default=0.0)
    value: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    description: Mapped[str] = mapped_column(String(255), default="")
    shipper_reference: Mapped[str] = mapped_column(String(64), default="")
    tracking_number: Mapped[str] = mapped_column(String(128), default="")
    label_url: Mapped[str] = mapped_column(String(512), default="")


class ShipmentEventModel(Base):
    """Append-only shipment history row."""

    __tablename__ = "parcelflow_shipment_events"
    __table_args__ = (
        UniqueConstraint(
            "shipment_id",
            "code",
            "occurred_at",
            name="uq_parcelflow_event_shipment_code_time",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shipment_id: Mapped[str] = mapped_column(
        ForeignKey("parcelflow_shipments.id", ondelete="CASCADE"),
        index=True,
    )
    code: Mapped[str] = mapped_column(String(64))
    label: Mapped[str] = mapped_column(String(255), default="")
    occurred_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    location: Mapped[str] = mapped_column(String(255), default="")
    parcel_id: Mapped[str | None] = mapped_column(String(64), default=None)


class ServiceModel(Base):
    """Carrier product, registered the first time the API offers it."""

    __tablename__ = "parcelflow_services"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(128), unique=True)
    carrier_code: Mapped[str] = mapped_column(String(64), default="")
    name: Mapped[str] = mapped_column(String(255), default="")
    pickup_available: Mapped[bool] = mapped_column(Boolean, default=False)
    dropoff_available: Mapped[bool] = mapped_column(Boolean, default=False)
    relay_delivery: Mapped[bool] = mapped_column(Boolean, default=False)
    tracking_url: Mapped[str | None] = mapped_column(
        String(512), default=None
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True)


class QuoteModel(Base):
    __tablename__ = "parcelflow_quotes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    cart_id: Mapped[str] = mapped_column(String(64), index=True)
    address_id: Mapped[str | None] = mapped_column(String(64), default=None)
    external_id: Mapped[str | None] = mapped_column(String(128), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class OfferModel(Base):
    """Offer snapshot; prices in minor currency units."""

    __tablename__ = "parcelflow_offers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    quote_id: Mapped[str] = mapped_column(
        ForeignKey("parcelflow_quotes.id", ondelete="CASCADE"),
        index=True,
    )
    service_id: Mapped[str] = mapped_column(
        ForeignKey("parcelflow_services.id")
    )
    external_id: Mapped[str | None] = mapped_column(String(128), default=None)
    product_code: Mapped[str] = mapped_column(String(128), default="")
    base_price: Mapped[int] = mapped_column(Integer, default=0)
    total_price: Mapped[int] = mapped_column(Integer, default=0)
    insurance_price: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    delivery_days: Mapped[str | None] = mapped_column(
        String(32), default=None
    )


class WebhookEventModel(Base):
    """Processed webhook event id."""

    __tablename__ = "parcelflow_webhook_events"

    event_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    shipment_id: Mapped[str | None] = mapped_column(String(64), default=None)
    changed: Mapped[bool] = mapped_column(Boolean, default=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
