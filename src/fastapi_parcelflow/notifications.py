"""Customer notification fan-out on status transitions."""

from __future__ import annotations

import asyncio
import logging

from fastapi_parcelflow.config import ParcelflowConfig
from fastapi_parcelflow.protocols import Mailer, Shipment
from fastapi_parcelflow.types import ShipmentStatus

logger = logging.getLogger(__name__)

NOTIFIABLE_STATUSES = frozenset(
    {ShipmentStatus.SHIPPED, ShipmentStatus.DELIVERED}
)


class NotificationTrigger:
    """Fire-and-isolate bridge to the mailer.

    A failing or slow mailer never fails the transition that triggered it.
    """

    def __init__(
        self, config: ParcelflowConfig, mailer: Mailer | None = None
    ) -> None:
        self.config = config
        self.mailer = mailer

    def should_notify(
        self, shipment: Shipment, previous_status: str, new_status: str
    ) -> bool:
        if self.mailer is None or not self.config.notifications_enabled:
            return False
        if new_status not in NOTIFIABLE_STATUSES:
            return False
        if previous_status == new_status:
            return False
        return not shipment.is_return

    async def notify(
        self, shipment: Shipment, previous_status: str, new_status: str
    ) -> bool:
        """Send the status email; return whether it went out."""
        if not self.should_notify(shipment, previous_status, new_status):
            return False
        try:
            await asyncio.wait_for(
                self.mailer.send_status_notification(
                    shipment, previous_status, new_status
                ),
                timeout=self.config.notification_timeout_seconds,
            )
        except Exception:
            logger.exception(
                "Status notification failed for shipment %s (%s -> %s)",
                shipment.id,
                previous_status,
                new_status,
            )
            return False
        logger.info(
            "Status notification sent for shipment %s: %s",
            shipment.id,
            new_status,
        )
        return True
