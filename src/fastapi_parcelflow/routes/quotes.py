"""Quote endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from fastapi_parcelflow.dependencies import get_offer_selector, get_quote_cache
from fastapi_parcelflow.exceptions import NotFoundError
from fastapi_parcelflow.offers import OfferSelector
from fastapi_parcelflow.quotes import QuoteCache
from fastapi_parcelflow.schemas import OfferSchema, QuoteResponse

router = APIRouter()


@router.get("/quotes", response_model=QuoteResponse)
async def get_quote(
    cart_id: str,
    address_id: str | None = None,
    country: str | None = None,
    cache: QuoteCache = Depends(get_quote_cache),
    selector: OfferSelector = Depends(get_offer_selector),
) -> QuoteResponse:
    """Return the cached quote for a cart, requesting one when stale."""
    quote = await cache.get_or_create(cart_id, address_id, country)
    if quote is None:
        raise NotFoundError(f"No quote available for cart {cart_id}")
    offers = await cache.offers_for(quote)
    return QuoteResponse(
        id=str(quote.id),
        cart_id=quote.cart_id,
        address_id=quote.address_id,
        external_id=quote.external_id,
        created_at=quote.created_at,
        best_price=await selector.best_price(quote),
        offers=[OfferSchema.from_offer(offer) for offer in offers],
    )


@router.delete("/quotes/{cart_id}", status_code=204)
async def invalidate_quotes(
    cart_id: str,
    cache: QuoteCache = Depends(get_quote_cache),
) -> Response:
    """Drop cached quotes after the cart contents changed."""
    await cache.invalidate(cart_id)
    return Response(status_code=204)
