"""SQLAlchemy log of processed webhook events."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fastapi_parcelflow.contrib.sqlalchemy.models import WebhookEventModel
from fastapi_parcelflow.status import utcnow


class SQLAlchemyWebhookEventStore:
    """Persist processed webhook event ids in SQLAlchemy table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock

    async def is_processed(self, event_id: str) -> bool:
        async with self.session_factory() as session:
            return await session.get(WebhookEventModel, event_id) is not None

    async def mark_processed(
        self,
        event_id: str,
        *,
        shipment_id: str | None,
        changed: bool,
    ) -> bool:
        """Record ``event_id``; False when a concurrent delivery won."""
        async with self.session_factory() as session:
            session.add(
                WebhookEventModel(
                    event_id=event_id,
                    shipment_id=shipment_id,
                    changed=changed,
                    processed_at=self.clock(),
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True
