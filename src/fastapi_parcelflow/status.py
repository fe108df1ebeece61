"""Monotonic shipment status state machine."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager, nullcontext
from datetime import UTC, datetime

from fastapi_parcelflow.exceptions import ParcelflowError
from fastapi_parcelflow.notifications import NotificationTrigger
from fastapi_parcelflow.protocols import (
    Shipment,
    ShipmentLocker,
    ShipmentRepository,
    ShippingApiClient,
)
from fastapi_parcelflow.types import (
    CancelResult,
    ShipmentStatus,
    TransitionResult,
)

logger = logging.getLogger(__name__)

STATUS_RANK: dict[str, int] = {
    ShipmentStatus.PENDING: 1,
    ShipmentStatus.BOOKED: 2,
    ShipmentStatus.SHIPPED: 3,
    ShipmentStatus.DELIVERED: 4,
}

STATUS_LABELS: dict[str, str] = {
    ShipmentStatus.PENDING: "Pending",
    ShipmentStatus.BOOKED: "Booked with the carrier",
    ShipmentStatus.SHIPPED: "Shipped",
    ShipmentStatus.DELIVERED: "Delivered",
    ShipmentStatus.CANCELLED: "Shipment cancelled",
}

CANCELLABLE_STATUSES = frozenset(
    {ShipmentStatus.PENDING, ShipmentStatus.BOOKED}
)

REMOTE_ALREADY_SHIPPED = "already_shipped"
REMOTE_ALREADY_CANCELLED = "already_cancelled"
REMOTE_UNRECOGNIZED = "unrecognized"

# Ordered, first match wins. Shipped patterns go first so a message such as
# "cannot be cancelled: already shipped" aborts the cancellation.
CANCEL_ERROR_PATTERNS: tuple[tuple[str, str], ...] = (
    ("shipped", REMOTE_ALREADY_SHIPPED),
    ("delivered", REMOTE_ALREADY_SHIPPED),
    ("expedi", REMOTE_ALREADY_SHIPPED),
    ("livr", REMOTE_ALREADY_SHIPPED),
    ("cancelled", REMOTE_ALREADY_CANCELLED),
    ("annul", REMOTE_ALREADY_CANCELLED),
    ("not found", REMOTE_ALREADY_CANCELLED),
    ("404", REMOTE_ALREADY_CANCELLED),
)


def status_rank(status: str) -> int:
    return STATUS_RANK.get(status, 0)


def can_transition(current: str, proposed: str) -> bool:
    """Forward-only rule; cancelled is reachable but never left."""
    if current == ShipmentStatus.CANCELLED:
        return False
    if proposed == ShipmentStatus.CANCELLED:
        return True
    if proposed not in STATUS_RANK:
        return False
    return status_rank(proposed) >= status_rank(current)


def classify_cancel_error(message: str) -> str:
    lowered = message.lower()
    for pattern, outcome in CANCEL_ERROR_PATTERNS:
        if pattern in lowered:
            return outcome
    return REMOTE_UNRECOGNIZED


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class StatusStateMachine:
    """Applies proposed statuses and records every accepted change."""

    def __init__(
        self,
        *,
        repository: ShipmentRepository,
        notifier: NotificationTrigger,
        api_client: ShippingApiClient | None = None,
        locker: ShipmentLocker | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.api_client = api_client
        self.locker = locker
        self.clock = clock

    def locked(self, shipment_id: str) -> AbstractAsyncContextManager:
        if self.locker is None:
            return nullcontext()
        return self.locker.lock(shipment_id)

    async def apply(
        self,
        shipment: Shipment,
        proposed: str,
        *,
        code: str | None = None,
        label: str | None = None,
        source: str = "",
    ) -> TransitionResult:
        """Move ``shipment`` to ``proposed`` if the rule allows it.

        Same-status proposals are accepted but change nothing, so
        duplicate signals stay harmless. Downgrades are ignored.
        """
        previous = str(shipment.status)
        proposed = str(proposed)

        if not can_transition(previous, proposed):
            logger.info(
                "Ignoring status %s for shipment %s (current %s, source %s)",
                proposed,
                shipment.id,
                previous,
                source or "unknown",
            )
            return TransitionResult(
                accepted=False,
                changed=False,
                previous=previous,
                current=previous,
            )

        if proposed == previous:
            return TransitionResult(
                accepted=True,
                changed=False,
                previous=previous,
                current=previous,
            )

        now = self.clock()
        shipment.status = proposed
        shipment.updated_at = now
        if proposed == ShipmentStatus.BOOKED and shipment.booked_at is None:
            shipment.booked_at = now
        await self.repository.save(shipment)

        await self.repository.add_event(
            shipment.id,
            code=code or proposed.upper(),
            label=label or STATUS_LABELS.get(proposed, proposed),
            occurred_at=now,
        )
        logger.info(
            "Shipment %s status %s -> %s (source %s)",
            shipment.id,
            previous,
            proposed,
            source or "unknown",
        )

        await self.notifier.notify(shipment, previous, proposed)
        return TransitionResult(
            accepted=True,
            changed=True,
            previous=previous,
            current=proposed,
        )

    async def cancel(self, shipment: Shipment) -> CancelResult:
        """Cancel remotely when booked, then locally.

        Remote failures are classified: already cancelled or unknown order
        proceeds, already shipped aborts, anything else is logged and the
        local cancellation goes ahead.
        """
        async with self.locked(shipment.id):
            if self.locker is not None:
                shipment = await self.repository.get_by_id(shipment.id)

            if shipment.status not in CANCELLABLE_STATUSES:
                logger.warning(
                    "Cannot cancel shipment %s in status %s",
                    shipment.id,
                    shipment.status,
                )
                return CancelResult(
                    success=False,
                    error=(
                        f"Shipment in status '{shipment.status}' "
                        "cannot be cancelled."
                    ),
                )

            remote_outcome = None
            if shipment.external_order_id and self.api_client is not None:
                remote_outcome = await self._cancel_remote(shipment)
                if remote_outcome == REMOTE_ALREADY_SHIPPED:
                    return CancelResult(
                        success=False,
                        error=(
                            "The carrier reports this shipment as already "
                            "shipped or delivered."
                        ),
                        remote_outcome=remote_outcome,
                    )
            else:
                logger.info(
                    "Cancelling shipment %s locally (not booked)", shipment.id
                )

            await self.apply(
                shipment,
                ShipmentStatus.CANCELLED,
                code="CANCELLED",
                label=STATUS_LABELS[ShipmentStatus.CANCELLED],
                source="cancel",
            )
            return CancelResult(success=True, remote_outcome=remote_outcome)

    async def _cancel_remote(self, shipment: Shipment) -> str:
        try:
            await self.api_client.cancel_order(shipment.external_order_id)
        except ParcelflowError as exc:
            outcome = classify_cancel_error(str(exc))
            if outcome == REMOTE_UNRECOGNIZED:
                logger.error(
                    "Remote cancellation of %s failed, cancelling locally: %s",
                    shipment.external_order_id,
                    exc,
                )
            else:
                logger.warning(
                    "Remote cancellation of %s returned %s: %s",
                    shipment.external_order_id,
                    outcome,
                    exc,
                )
            return outcome
        logger.info(
            "Remote order %s cancelled for shipment %s",
            shipment.external_order_id,
            shipment.id,
        )
        return "cancelled"
