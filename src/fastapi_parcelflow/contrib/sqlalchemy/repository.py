"""SQLAlchemy shipment repository implementation."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fastapi_parcelflow.contrib.sqlalchemy.models import (
    ParcelModel,
    ShipmentEventModel,
    ShipmentModel,
)
from fastapi_parcelflow.exceptions import ShipmentNotFoundError


def _model_fields(model: type, fields: dict) -> dict:
    columns = model.__table__.columns.keys()
    return {key: value for key, value in fields.items() if key in columns}


class SQLAlchemyShipmentRepository:
    """Shipment repository backed by SQLAlchemy async sessions."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self.session_factory = session_factory

    async def get_by_id(self, shipment_id: str) -> ShipmentModel:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ShipmentModel).where(ShipmentModel.id == shipment_id)
            )
            try:
                return result.scalar_one()
            except NoResultFound as e:
                raise ShipmentNotFoundError(shipment_id) from e

    async def get_by_external_order_id(
        self, external_order_id: str
    ) -> ShipmentModel | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ShipmentModel).where(
                    ShipmentModel.external_order_id == external_order_id
                )
            )
            return result.scalars().first()

    async def create(self, **kwargs) -> ShipmentModel:
        fields = _model_fields(ShipmentModel, kwargs)
        fields["id"] = fields.get("id") or str(uuid.uuid4())
        fields["status"] = str(fields.get("status", "pending"))
        shipment = ShipmentModel(**fields)
        async with self.session_factory() as session:
            session.add(shipment)
            await session.commit()
            await session.refresh(shipment)
        return shipment

    async def save(self, shipment: ShipmentModel) -> ShipmentModel:
        shipment.status = str(shipment.status)
        async with self.session_factory() as session:
            merged = await session.merge(shipment)
            await session.commit()
            await session.refresh(merged)
            return merged

    async def list_parcels(self, shipment_id: str) -> list[ParcelModel]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ParcelModel)
                .where(ParcelModel.shipment_id == shipment_id)
                .order_by(ParcelModel.position)
            )
            return list(result.scalars().all())

    async def add_parcel(self, shipment_id: str, **kwargs) -> ParcelModel:
        fields = _model_fields(ParcelModel, kwargs)
        fields["id"] = fields.get("id") or str(uuid.uuid4())
        async with self.session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(ParcelModel)
                .where(ParcelModel.shipment_id == shipment_id)
            )
            parcel = ParcelModel(
                shipment_id=shipment_id, position=count or 0, **fields
            )
            session.add(parcel)
            await session.commit()
            await session.refresh(parcel)
        return parcel

    async def save_parcel(self, parcel: ParcelModel) -> ParcelModel:
        async with self.session_factory() as session:
            merged = await session.merge(parcel)
            await session.commit()
            await session.refresh(merged)
            return merged

    async def list_events(
        self, shipment_id: str
    ) -> list[ShipmentEventModel]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ShipmentEventModel)
                .where(ShipmentEventModel.shipment_id == shipment_id)
                .order_by(ShipmentEventModel.id)
            )
            return list(result.scalars().all())

    async def add_event(
        self,
        shipment_id: str,
        *,
        code: str,
        label: str,
        occurred_at: datetime | None,
        location: str = "",
        parcel_id: str | None = None,
    ) -> bool:
        """Insert an event unless (shipment, code, time) is already stored.

        The unique constraint treats NULL timestamps as distinct, so the
        existence check covers events without a timestamp.
        """
        if occurred_at is None:
            time_clause = ShipmentEventModel.occurred_at.is_(None)
        else:
            time_clause = ShipmentEventModel.occurred_at == occurred_at
        async with self.session_factory() as session:
            existing = await session.scalar(
                select(ShipmentEventModel.id).where(
                    ShipmentEventModel.shipment_id == shipment_id,
                    ShipmentEventModel.code == code,
                    time_clause,
                )
            )
            if existing is not None:
                return False
            session.add(
                ShipmentEventModel(
                    shipment_id=shipment_id,
                    code=code,
                    label=label,
                    occurred_at=occurred_at,
                    location=location,
                    parcel_id=parcel_id,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def list_syncable(
        self,
        *,
        statuses: Sequence[str],
        created_after: datetime | None = None,
        order_id: str | None = None,
    ) -> list[ShipmentModel]:
        """Shipments booked with the carrier, newest first."""
        stmt = select(ShipmentModel).where(
            ShipmentModel.status.in_([str(s) for s in statuses]),
            ShipmentModel.external_order_id.is_not(None),
            ShipmentModel.external_order_id != "",
        )
        if created_after is not None:
            stmt = stmt.where(ShipmentModel.created_at >= created_after)
        if order_id is not None:
            stmt = stmt.where(ShipmentModel.order_id == order_id)
        stmt = stmt.order_by(ShipmentModel.created_at.desc())
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
