"""SQLAlchemy quote, offer and service repository."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fastapi_parcelflow.contrib.sqlalchemy.models import (
    OfferModel,
    QuoteModel,
    ServiceModel,
)


class SQLAlchemyQuoteRepository:
    """Quote cache storage backed by SQLAlchemy async sessions."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self.session_factory = session_factory

    async def latest_quote(
        self, cart_id: str, address_id: str | None
    ) -> QuoteModel | None:
        if address_id is None:
            address_clause = QuoteModel.address_id.is_(None)
        else:
            address_clause = QuoteModel.address_id == address_id
        async with self.session_factory() as session:
            result = await session.execute(
                select(QuoteModel)
                .where(QuoteModel.cart_id == cart_id, address_clause)
                .order_by(QuoteModel.created_at.desc())
                .limit(1)
            )
            return result.scalars().first()

    async def create_quote(
        self,
        *,
        cart_id: str,
        address_id: str | None,
        external_id: str | None,
        created_at: datetime,
    ) -> QuoteModel:
        quote = QuoteModel(
            id=str(uuid.uuid4()),
            cart_id=cart_id,
            address_id=address_id,
            external_id=external_id,
            created_at=created_at,
        )
        async with self.session_factory() as session:
            session.add(quote)
            await session.commit()
            await session.refresh(quote)
        return quote

    async def add_offer(self, quote_id: str, **kwargs) -> OfferModel:
        offer = OfferModel(
            id=kwargs.pop("id", None) or str(uuid.uuid4()),
            quote_id=quote_id,
            **kwargs,
        )
        async with self.session_factory() as session:
            session.add(offer)
            await session.commit()
            await session.refresh(offer)
        return offer

    async def list_offers(self, quote_id: str) -> list[OfferModel]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(OfferModel)
                .where(OfferModel.quote_id == quote_id)
                .order_by(OfferModel.total_price)
            )
            return list(result.scalars().all())

    async def delete_quotes_for_cart(self, cart_id: str) -> int:
        """Delete a cart's quotes and their offers; return quotes deleted."""
        async with self.session_factory() as session:
            quote_ids = select(QuoteModel.id).where(
                QuoteModel.cart_id == cart_id
            )
            await session.execute(
                delete(OfferModel).where(OfferModel.quote_id.in_(quote_ids))
            )
            result = await session.execute(
                delete(QuoteModel).where(QuoteModel.cart_id == cart_id)
            )
            await session.commit()
            return result.rowcount or 0

    async def get_service(self, service_id: str) -> ServiceModel | None:
        async with self.session_factory() as session:
            return await session.get(ServiceModel, service_id)

    async def get_service_by_code(self, code: str) -> ServiceModel | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ServiceModel).where(ServiceModel.code == code)
            )
            return result.scalars().first()

    async def create_service(self, **kwargs) -> ServiceModel:
        service = ServiceModel(
            id=kwargs.pop("id", None) or str(uuid.uuid4()), **kwargs
        )
        async with self.session_factory() as session:
            session.add(service)
            await session.commit()
            await session.refresh(service)
        return service

    async def list_active_service_codes(self) -> list[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ServiceModel.code)
                .where(ServiceModel.active.is_(True))
                .order_by(ServiceModel.code)
            )
            return list(result.scalars().all())
