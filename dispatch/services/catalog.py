"""
Store catalog client.

The catalog owns stores, products and prices; dispatch only asks it to
quote an order (validated lines, totals, the store's location and owner).
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx

from dispatch.config import get_settings
from dispatch.exceptions import NotFound, PricingUnavailable, ValidationError
from dispatch.schemas.schemas import OrderLine, OrderLineRequest

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class OrderQuote:
    store_id: str
    store_name: str
    owner_id: str
    store_lat: float
    store_lng: float
    lines: list[OrderLine]
    order_total: Decimal


class CatalogClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.catalog_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self._transport = transport

    async def quote(self, store_id: str, items: list[OrderLineRequest]) -> OrderQuote:
        payload = {"items": [item.model_dump() for item in items]}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/v1/stores/{store_id}/quote", json=payload)
        except httpx.HTTPError as exc:
            logger.error("Catalog unreachable for store=%s: %s", store_id, exc)
            raise PricingUnavailable("Catalog unavailable") from exc

        if resp.status_code == 404:
            raise NotFound(f"Store {store_id} not found")
        if resp.status_code in (400, 409, 422):
            raise ValidationError(resp.json().get("detail", "Order cannot be fulfilled"))
        if resp.status_code >= 400:
            logger.error("Catalog error %s for store=%s: %s", resp.status_code, store_id, resp.text)
            raise PricingUnavailable("Catalog unavailable")

        data = resp.json()
        store = data["store"]
        lines = [OrderLine.model_validate(line) for line in data["lines"]]
        if not lines:
            raise ValidationError("Order has no available items")
        return OrderQuote(
            store_id=store["id"],
            store_name=store["name"],
            owner_id=store["owner_id"],
            store_lat=store["lat"],
            store_lng=store["lng"],
            lines=lines,
            order_total=Decimal(str(data["order_total"])),
        )
