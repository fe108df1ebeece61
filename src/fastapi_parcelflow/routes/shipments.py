"""Shipment endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from fastapi_parcelflow.booking import BookingOrchestrator
from fastapi_parcelflow.dependencies import (
    get_booking,
    get_repository,
    get_state_machine,
    get_synchronizer,
)
from fastapi_parcelflow.protocols import ShipmentRepository
from fastapi_parcelflow.schemas import (
    BookingResponse,
    BookShipmentRequest,
    CancelResponse,
    LabelSchema,
    LabelsResponse,
    ShipmentResponse,
    SyncResponse,
)
from fastapi_parcelflow.status import StatusStateMachine
from fastapi_parcelflow.tracking import TrackingSynchronizer

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Healthcheck endpoint."""
    return {"status": "ok"}


@router.get("/shipments/{shipment_id}", response_model=ShipmentResponse)
async def get_shipment(
    shipment_id: str,
    repository: ShipmentRepository = Depends(get_repository),
    synchronizer: TrackingSynchronizer = Depends(get_synchronizer),
) -> ShipmentResponse:
    """Shipment with its parcels and event history."""
    shipment = await repository.get_by_id(shipment_id)
    tracking = await synchronizer.tracking_for(shipment)
    return ShipmentResponse.from_tracking(shipment, tracking)


@router.post("/shipments/{shipment_id}/book", response_model=BookingResponse)
async def book_shipment(
    shipment_id: str,
    response: Response,
    body: BookShipmentRequest | None = None,
    repository: ShipmentRepository = Depends(get_repository),
    booking: BookingOrchestrator = Depends(get_booking),
) -> BookingResponse:
    """Book a pending shipment with the carrier."""
    shipment = await repository.get_by_id(shipment_id)
    collection_date = body.collection_date if body is not None else None
    result = await booking.book(shipment, collection_date)
    if not result.success:
        response.status_code = 422
    shipment = await repository.get_by_id(shipment_id)
    return BookingResponse.from_result(shipment, result)


@router.post("/shipments/{shipment_id}/cancel", response_model=CancelResponse)
async def cancel_shipment(
    shipment_id: str,
    response: Response,
    repository: ShipmentRepository = Depends(get_repository),
    state_machine: StatusStateMachine = Depends(get_state_machine),
) -> CancelResponse:
    """Cancel remotely when booked, then locally."""
    shipment = await repository.get_by_id(shipment_id)
    result = await state_machine.cancel(shipment)
    if not result.success:
        response.status_code = 409
    shipment = await repository.get_by_id(shipment_id)
    return CancelResponse.from_result(shipment, result)


@router.post("/shipments/{shipment_id}/sync", response_model=SyncResponse)
async def sync_shipment(
    shipment_id: str,
    repository: ShipmentRepository = Depends(get_repository),
    synchronizer: TrackingSynchronizer = Depends(get_synchronizer),
) -> SyncResponse:
    """Pull tracking events and status from the carrier."""
    changed = await synchronizer.sync_status(shipment_id)
    shipment = await repository.get_by_id(shipment_id)
    return SyncResponse(
        shipment_id=str(shipment.id),
        changed=changed,
        status=str(shipment.status),
    )


@router.get("/shipments/{shipment_id}/labels", response_model=LabelsResponse)
async def get_labels(
    shipment_id: str,
    repository: ShipmentRepository = Depends(get_repository),
    booking: BookingOrchestrator = Depends(get_booking),
) -> LabelsResponse:
    """Label URL per parcel."""
    shipment = await repository.get_by_id(shipment_id)
    labels = await booking.get_labels(shipment)
    return LabelsResponse(
        shipment_id=str(shipment.id),
        labels=[LabelSchema(**label) for label in labels],
    )
