"""Batch reconciliation of open shipments against the carrier API."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from fastapi_parcelflow.exceptions import ValidationError
from fastapi_parcelflow.protocols import ShipmentRepository
from fastapi_parcelflow.status import utcnow
from fastapi_parcelflow.tracking import TrackingSynchronizer
from fastapi_parcelflow.types import ShipmentStatus, SyncSummary

logger = logging.getLogger(__name__)

SYNCABLE_STATUSES = (
    ShipmentStatus.PENDING,
    ShipmentStatus.BOOKED,
    ShipmentStatus.SHIPPED,
)
DEFAULT_SYNC_DAYS = 7


async def sync_open_shipments(
    synchronizer: TrackingSynchronizer,
    repository: ShipmentRepository,
    *,
    status: str | None = None,
    days: int = DEFAULT_SYNC_DAYS,
    order_id: str | None = None,
    dry_run: bool = False,
    clock: Callable[[], datetime] = utcnow,
) -> SyncSummary:
    """Sync every open shipment booked with the carrier.

    A failure on one shipment is recorded in the summary and the batch
    carries on. With ``dry_run`` the selection is reported but nothing
    is fetched.
    """
    if status is not None and status not in SYNCABLE_STATUSES:
        raise ValidationError(
            f"Invalid status {status!r}. Valid statuses are: "
            + ", ".join(SYNCABLE_STATUSES)
        )

    created_after = None
    if order_id is None:
        created_after = clock() - timedelta(days=days)
    shipments = await repository.list_syncable(
        statuses=[status] if status else list(SYNCABLE_STATUSES),
        created_after=created_after,
        order_id=order_id,
    )
    shipments = [s for s in shipments if s.external_order_id]

    summary = SyncSummary(
        checked=len(shipments),
        shipment_ids=[shipment.id for shipment in shipments],
    )
    if dry_run:
        logger.info("Dry run: %d shipments would be synced", len(shipments))
        return summary

    for shipment in shipments:
        try:
            changed = await synchronizer.sync_status(shipment.id)
        except Exception as exc:
            logger.error("Sync failed for shipment %s: %s", shipment.id, exc)
            summary.failed += 1
            summary.failures[shipment.id] = str(exc)
            continue
        if changed:
            summary.changed += 1

    logger.info(
        "Synced %d shipments: %d changed, %d failed",
        summary.checked,
        summary.changed,
        summary.failed,
    )
    return summary
