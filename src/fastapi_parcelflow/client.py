"""HTTP client for the carrier aggregation API."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from fastapi_parcelflow import __version__
from fastapi_parcelflow.config import ParcelflowConfig
from fastapi_parcelflow.exceptions import ApiError, ConfigurationError

logger = logging.getLogger(__name__)

USER_AGENT = f"fastapi-parcelflow/{__version__}"
LABEL_TIMEOUT = httpx.Timeout(60.0, connect=15.0)


def extract_error_message(decoded: Any) -> str:
    """Pull the most specific message out of an API error body.

    Errors look like ``{"error": {"type", "message", "details": [...]}}``;
    the first detail is usually more specific than the generic message.
    """
    if not isinstance(decoded, dict):
        return "Unknown API error"
    error = decoded.get("error")
    if error is None:
        return str(decoded.get("message") or "Unknown API error")
    if not isinstance(error, dict):
        return str(error)
    details = error.get("details")
    if isinstance(details, list) and details:
        return str(details[0])
    return str(error.get("message") or error.get("type") or "Unknown error")


class HttpShippingApiClient:
    """Basic-auth JSON client with connect and overall timeouts.

    No retries happen here; retry policy belongs to the caller.
    """

    def __init__(
        self,
        config: ParcelflowConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.transport = transport

    @property
    def base_url(self) -> str:
        return self.config.api_base_url

    def _client(
        self, timeout: httpx.Timeout | None = None
    ) -> httpx.AsyncClient:
        if not self.config.is_api_configured:
            raise ConfigurationError("API credentials not configured")
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.config.api_login, self.config.api_password),
            timeout=timeout
            or httpx.Timeout(
                self.config.api_timeout,
                connect=self.config.api_connect_timeout,
            ),
            headers={"User-Agent": USER_AGENT},
            transport=self.transport,
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        async with self._client() as client:
            try:
                response = await client.request(
                    method,
                    endpoint,
                    json=json,
                    params=params,
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as exc:
                logger.error("API %s %s failed: %s", method, endpoint, exc)
                raise ApiError(f"API request failed: {exc}") from exc

        logger.debug(
            "API %s %s -> %d", method, endpoint, response.status_code
        )
        try:
            decoded = response.json()
        except ValueError:
            decoded = None

        # Failures may come back as HTTP 200 with a failure envelope.
        if isinstance(decoded, dict) and decoded.get("status") == "failure":
            message = extract_error_message(decoded)
            logger.error("API reported failure: %s", message)
            raise ApiError(
                f"API error: {message}", status_code=response.status_code
            )

        if response.status_code >= 400:
            message = extract_error_message(decoded)
            logger.error(
                "API HTTP error %d: %s", response.status_code, message
            )
            raise ApiError(
                f"API error ({response.status_code}): {message}",
                status_code=response.status_code,
            )

        return decoded if isinstance(decoded, dict) else {}

    async def test_connection(self) -> bool:
        await self._request("GET", "/products")
        return True

    async def get_products(self) -> dict:
        return await self._request("GET", "/products")

    async def request_quote(self, params: dict) -> dict:
        recipient = dict(params.get("recipient", {}))
        recipient.setdefault("is_a_company", False)
        params = {**params, "recipient": recipient}
        logger.info(
            "Requesting quote %s -> %s (%d parcels)",
            params.get("shipper", {}).get("country", "unknown"),
            recipient.get("country", "unknown"),
            len(params.get("parcels", [])),
        )
        return await self._request("POST", "/quotes", json={"quote": params})

    async def get_quote(self, external_id: str) -> dict:
        return await self._request("GET", f"/quotes/{quote(external_id)}")

    async def place_order(self, params: dict) -> dict:
        logger.info("Placing order for offer %s", params.get("offer_id"))
        return await self._request("POST", "/orders", json={"order": params})

    async def get_order(self, external_id: str) -> dict:
        return await self._request("GET", f"/orders/{quote(external_id)}")

    async def get_order_tracking(self, external_id: str) -> dict:
        return await self._request(
            "GET", f"/orders/{quote(external_id)}/tracking"
        )

    async def cancel_order(self, external_id: str) -> dict:
        return await self._request("DELETE", f"/orders/{quote(external_id)}")

    async def get_delivery_locations(
        self, offer_id: str, params: dict
    ) -> dict:
        query = {f"location[{key}]": value for key, value in params.items()}
        return await self._request(
            "GET",
            f"/offers/{quote(offer_id)}/available_delivery_locations",
            params=query,
        )

    def get_label_url(self, external_id: str, fmt: str = "pdf") -> str:
        return (
            f"{self.base_url}/orders/{quote(external_id)}/labels?format={fmt}"
        )

    async def download_label(
        self, external_id: str, fmt: str = "pdf"
    ) -> bytes:
        """Fetch the raw label document for an order."""
        async with self._client(timeout=LABEL_TIMEOUT) as client:
            try:
                response = await client.get(
                    f"/orders/{quote(external_id)}/labels",
                    params={"format": fmt},
                    headers={"Accept": "application/pdf"},
                    follow_redirects=True,
                )
            except httpx.HTTPError as exc:
                raise ApiError(f"Failed to download label: {exc}") from exc

        if response.status_code >= 400:
            try:
                decoded = response.json()
            except ValueError:
                decoded = None
            message = extract_error_message(decoded)
            raise ApiError(
                f"Label download failed ({response.status_code}): {message}",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        is_pdf = "application/pdf" in content_type
        if not is_pdf and not response.content.startswith(b"%PDF"):
            raise ApiError("Label response is not a valid PDF")
        return response.content
