"""Carrier webhook endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from fastapi_parcelflow.dependencies import get_ingestor
from fastapi_parcelflow.schemas import WebhookResponse
from fastapi_parcelflow.webhooks import WebhookIngestor

router = APIRouter()


@router.post("/webhooks/tracking", response_model=WebhookResponse)
async def tracking_webhook(
    request: Request,
    ingestor: WebhookIngestor = Depends(get_ingestor),
) -> JSONResponse:
    """Ingest a tracking push notification.

    The signature is computed over the exact raw body, so the body is
    read as bytes and never re-serialized.
    """
    raw_body = await request.body()
    outcome = await ingestor.ingest(raw_body, request.headers)
    return JSONResponse(
        content=outcome.body(), status_code=outcome.status_code
    )
