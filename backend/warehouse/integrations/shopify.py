"""
Shopify Admin API integration.
Catalog and order reads, outbound fulfillment notifications and inbound
webhook verification.
"""
import asyncio
import base64
import hashlib
import hmac
from typing import Any, Optional

import httpx

from warehouse.core.config import Settings, settings as default_settings
from warehouse.core.errors import ShopifyNotConfigured, UpstreamError, UpstreamNotifyError
from warehouse.core.logging import shopify_logger

CARRIER_COMPANY_NAMES = {"UPS": "UPS", "FEDEX": "FedEx"}
OPEN_FULFILLMENT_STATUSES = ("open", "in_progress")
ORDER_LIST_STATUSES = ("open", "closed", "cancelled", "any")
PAGE_LIMIT = 250
# REST Admin API allows 2 requests/second
PAGE_DELAY_SECONDS = 0.5


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """Base64 HMAC-SHA256 of the raw body, compared in constant time."""
    if not secret or not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature.strip())


def next_page_info(response: httpx.Response) -> Optional[str]:
    """Cursor of the rel="next" Link, if any."""
    url = response.links.get("next", {}).get("url")
    if not url:
        return None
    return httpx.URL(url).params.get("page_info")


class ShopifyClient:
    def __init__(
        self,
        store_domain: str,
        access_token: str,
        api_version: str = "2024-10",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        page_delay: float = PAGE_DELAY_SECONDS,
    ):
        self.store_domain = store_domain
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self.page_delay = page_delay
        self._transport = transport

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None, transport=None) -> "ShopifyClient":
        cfg = cfg or default_settings
        return cls(
            store_domain=cfg.SHOPIFY_STORE_DOMAIN,
            access_token=cfg.SHOPIFY_ACCESS_TOKEN,
            api_version=cfg.SHOPIFY_API_VERSION,
            timeout=cfg.UPSTREAM_TIMEOUT_SECONDS,
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.store_domain and self.access_token)

    @property
    def base_url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}"

    def _client(self) -> httpx.AsyncClient:
        if not self.is_configured():
            raise ShopifyNotConfigured()
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "X-Shopify-Access-Token": self.access_token,
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        payload: Any = None,
        params: Optional[dict] = None,
        error: type[UpstreamError] = UpstreamError,
    ) -> httpx.Response:
        try:
            response = await client.request(method, path, json=payload, params=params)
        except httpx.TimeoutException as e:
            raise error(f"Shopify timeout on {path}") from e
        except httpx.RequestError as e:
            raise error(f"Shopify request error on {path}: {e}") from e

        if response.status_code >= 400:
            shopify_logger.error(f"[Shopify] API error {response.status_code} on {path}")
            raise error(
                f"Shopify API error {response.status_code} on {path}",
                {"status": response.status_code, "body": response.text[:500]},
            )
        return response

    @staticmethod
    def _json(response: httpx.Response, path: str, error: type[UpstreamError] = UpstreamError) -> dict:
        try:
            return response.json()
        except ValueError as e:
            raise error(f"Malformed Shopify response on {path}") from e

    async def _call(self, client: httpx.AsyncClient, method: str, path: str, payload: Any = None,
                    error: type[UpstreamError] = UpstreamError) -> dict:
        response = await self._send(client, method, path, payload, error=error)
        return self._json(response, path, error)

    async def _fetch_all(self, resource: str, params: Optional[dict] = None) -> list[dict]:
        """Every record of a paginated list endpoint, following Link cursors."""
        path = f"/{resource}.json"
        query = {"limit": PAGE_LIMIT, **(params or {})}
        records: list[dict] = []
        pages = 0
        async with self._client() as client:
            while True:
                pages += 1
                response = await self._send(client, "GET", path, params=query)
                records.extend(self._json(response, path).get(resource, []))
                cursor = next_page_info(response)
                if not cursor:
                    break
                # Filters may not be repeated alongside a cursor
                query = {"limit": PAGE_LIMIT, "page_info": cursor}
                await asyncio.sleep(self.page_delay)

        shopify_logger.info(f"[Shopify] Fetched {len(records)} {resource} in {pages} page(s)")
        return records

    async def fetch_products(self) -> list[dict]:
        return await self._fetch_all("products")

    async def fetch_orders(self, status: str = "open") -> list[dict]:
        if status not in ORDER_LIST_STATUSES:
            raise ValueError(f"Unknown order status filter {status!r}")
        return await self._fetch_all("orders", {"status": status})

    async def test_connection(self) -> dict[str, Any]:
        if not self.is_configured():
            return {"configured": False, "connected": False, "shop_name": None,
                    "error": "Shopify credentials not configured"}
        try:
            async with self._client() as client:
                data = await self._call(client, "GET", "/shop.json")
        except UpstreamError as e:
            return {"configured": True, "connected": False, "shop_name": None, "error": e.message}
        shop_name = (data.get("shop") or {}).get("name")
        shopify_logger.info(f"[Shopify] Connected to shop: {shop_name}")
        return {"configured": True, "connected": True, "shop_name": shop_name, "error": None}

    async def notify_fulfilled(
        self,
        shopify_order_id: str,
        tracking_number: str,
        carrier: str,
        tracking_url: Optional[str] = None,
    ) -> dict:
        """
        Mark every open fulfillment order of the Shopify order as fulfilled.

        Raises:
            UpstreamNotifyError: on any failure, including no open fulfillment orders
        """
        if not self.is_configured():
            raise UpstreamNotifyError("Shopify store domain or access token not set")

        async with self._client() as client:
            data = await self._call(
                client, "GET", f"/orders/{shopify_order_id}/fulfillment_orders.json",
                error=UpstreamNotifyError,
            )
            open_orders = [
                fo for fo in data.get("fulfillment_orders", [])
                if fo.get("status") in OPEN_FULFILLMENT_STATUSES
            ]
            if not open_orders:
                raise UpstreamNotifyError(
                    f"No open fulfillment orders for Shopify order {shopify_order_id}"
                )

            payload = {
                "fulfillment": {
                    "line_items_by_fulfillment_order": [
                        {
                            "fulfillment_order_id": fo["id"],
                            "fulfillment_order_line_items": [
                                {"id": li["id"], "quantity": li["fulfillable_quantity"]}
                                for li in fo.get("line_items", [])
                                if li.get("fulfillable_quantity", 0) > 0
                            ],
                        }
                        for fo in open_orders
                    ],
                    "tracking_info": {
                        "number": tracking_number,
                        "company": CARRIER_COMPANY_NAMES.get(carrier, carrier),
                        "url": tracking_url,
                    },
                    "notify_customer": True,
                }
            }
            result = await self._call(client, "POST", "/fulfillments.json", payload, error=UpstreamNotifyError)

        fulfillment = result.get("fulfillment", {})
        shopify_logger.info(
            f"[Shopify] Created fulfillment {fulfillment.get('id')} for order {shopify_order_id}"
        )
        return fulfillment
