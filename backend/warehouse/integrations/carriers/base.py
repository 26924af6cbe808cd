"""
Carrier client foundation.

Each carrier adapter subclasses CarrierClient and normalises its API to
RateOffer / LabelPurchase. Bearer tokens come from a per-client TokenCache.
"""
import abc
import asyncio
import base64
import time
from dataclasses import dataclass, asdict, field
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Optional

import httpx

from warehouse.core.errors import CarrierError, CarrierNotConfigured
from warehouse.core.logging import carriers_logger

TOKEN_REFRESH_MARGIN_SECONDS = 60
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


@dataclass
class Address:
    name: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "US"
    phone: str = ""

    @property
    def street_lines(self) -> list[str]:
        return [line for line in (self.address1, self.address2) if line]

    def is_rateable(self) -> bool:
        return bool(self.city and self.state and self.postal_code)

    def is_shippable(self) -> bool:
        return bool(self.address1) and self.is_rateable()


@dataclass
class Package:
    weight: float  # lb
    length: float  # in
    width: float
    height: float


@dataclass
class RateOffer:
    carrier: str
    service_code: str
    service_name: str
    price: float
    currency: str = "USD"
    estimated_days: Optional[int] = None
    estimated_delivery_date: Optional[str] = None

    @property
    def id(self) -> str:
        return f"{self.carrier.lower()}-{self.service_code}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["id"] = self.id
        return data


@dataclass
class LabelPurchase:
    """A label the carrier has already billed for."""
    carrier: str
    service_code: str
    service_name: str
    tracking_number: str
    label_data: bytes = field(repr=False)
    label_format: str
    cost: float
    currency: str = "USD"
    sandbox: bool = False

    def summary(self) -> dict[str, Any]:
        return {
            "carrier": self.carrier,
            "service_code": self.service_code,
            "tracking_number": self.tracking_number,
            "cost": self.cost,
            "currency": self.currency,
        }


def add_business_days(start: date, days: int) -> date:
    current = start
    added = 0
    while added < days:
        current += timedelta(days=1)
        if current.weekday() < 5:
            added += 1
    return current


class TokenCache:
    """
    Single-slot bearer token cache.

    A cached token is returned without waiting while it is more than
    ``margin`` seconds from expiry. Otherwise callers share one in-flight
    refresh: the first caller starts it and everyone else awaits the same
    task, so a burst of requests produces a single token request.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[tuple[str, Optional[int]]]],
        margin: int = TOKEN_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self._margin = margin
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._inflight: Optional[asyncio.Task] = None

    @property
    def valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get(self) -> str:
        if self.valid:
            return self._token
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh())
        # A cancelled waiter must not cancel the shared refresh
        return await asyncio.shield(self._inflight)

    async def _refresh(self) -> str:
        try:
            token, expires_in = await self._fetch()
            lifetime = expires_in or DEFAULT_TOKEN_LIFETIME_SECONDS
            self._token = token
            self._expires_at = self._clock() + max(lifetime - self._margin, 0)
            return token
        finally:
            self._inflight = None

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


class CarrierClient(abc.ABC):
    """Rates, labels and tracking links for one carrier."""

    name: str = ""
    services: dict[str, str] = {}
    transit_days: dict[str, int] = {}
    default_transit_days = 5

    def __init__(
        self,
        base_url: str,
        ship_from: Address,
        timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.ship_from = ship_from
        self.timeout = timeout
        self._transport = transport
        self.tokens = TokenCache(self._fetch_token)

    # ------------------ capability set ------------------
    @abc.abstractmethod
    def is_configured(self) -> bool:
        ...

    @abc.abstractmethod
    async def get_rates(self, destination: Address, packages: list[Package]) -> list[RateOffer]:
        ...

    @abc.abstractmethod
    async def create_shipment(
        self,
        service_code: str,
        destination: Address,
        packages: list[Package],
        label_format: str = "PNG",
    ) -> LabelPurchase:
        ...

    @abc.abstractmethod
    def tracking_url(self, tracking_number: str) -> str:
        ...

    @abc.abstractmethod
    async def _fetch_token(self) -> tuple[str, Optional[int]]:
        ...

    # ------------------ shared plumbing ------------------
    def service_name(self, code: str) -> str:
        return self.services.get(code, code)

    def estimate_days(self, code: str) -> int:
        return self.transit_days.get(code, self.default_transit_days)

    def make_offer(
        self,
        code: str,
        name: str,
        price: float,
        currency: str,
        days: Optional[int],
        delivery: Optional[str],
    ) -> RateOffer:
        estimated = days or self.estimate_days(code)
        if not delivery:
            delivery = add_business_days(date.today(), estimated).isoformat()
        return RateOffer(
            carrier=self.name,
            service_code=code,
            service_name=name,
            price=round(float(price), 2),
            currency=currency or "USD",
            estimated_days=estimated,
            estimated_delivery_date=delivery,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    def _ensure_configured(self) -> None:
        if not self.is_configured():
            raise CarrierNotConfigured(self.name)

    def _require_ship_from(self, for_label: bool) -> None:
        ok = self.ship_from.is_shippable() if for_label else self.ship_from.is_rateable()
        if not ok:
            raise CarrierError(self.name, "Warehouse address not configured")

    @staticmethod
    def _error_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _post_token(self, **kwargs) -> tuple[str, Optional[int]]:
        async with self._client() as client:
            try:
                response = await client.post(**kwargs)
            except httpx.HTTPError as e:
                raise CarrierError(self.name, f"OAuth request failed: {e!r}") from e
        if response.status_code >= 400:
            body = self._error_body(response)
            carriers_logger.error(f"[{self.name}] OAuth token request failed", status=response.status_code)
            raise CarrierError(self.name, f"OAuth failed: {response.status_code}", response.status_code, body)
        try:
            data = response.json()
            access_token = data["access_token"]
        except (ValueError, KeyError) as e:
            raise CarrierError(self.name, "Malformed OAuth response", response.status_code, response.text) from e
        expires_in = data.get("expires_in")
        carriers_logger.info(f"[{self.name}] OAuth token obtained", expires_in=expires_in)
        return access_token, int(expires_in) if expires_in else None

    def _headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, payload: Optional[dict] = None, purchase: bool = False) -> dict:
        """
        Authenticated JSON call. Any failure becomes a CarrierError.

        A purchase that times out after the request was sent may have been
        billed; its error carries ``outcome_unknown``.
        """
        self._ensure_configured()
        token = await self.tokens.get()
        async with self._client() as client:
            try:
                response = await client.request(method, path, json=payload, headers=self._headers(token))
            except httpx.ConnectTimeout as e:
                raise CarrierError(self.name, f"Could not connect to {path}") from e
            except httpx.TimeoutException as e:
                if purchase:
                    carriers_logger.critical(
                        f"[{self.name}] Label purchase timed out, outcome unknown",
                        path=path,
                    )
                    err = CarrierError(self.name, f"Label purchase timed out; check the {self.name} account before retrying")
                    err.details["outcome_unknown"] = True
                    raise err from e
                raise CarrierError(self.name, f"Request to {path} timed out") from e
            except httpx.HTTPError as e:
                raise CarrierError(self.name, f"Request to {path} failed: {e!r}") from e

        if response.status_code == 401:
            self.tokens.invalidate()
        if response.status_code >= 400:
            body = self._error_body(response)
            carriers_logger.error(
                f"[{self.name}] API error {response.status_code} on {path}",
                body=body,
            )
            raise CarrierError(self.name, f"API error {response.status_code}", response.status_code, body)

        try:
            return response.json()
        except ValueError as e:
            raise CarrierError(self.name, "Malformed response", response.status_code, response.text) from e

    @staticmethod
    def decode_label(encoded: str) -> bytes:
        return base64.b64decode(encoded)

    async def test_connection(self) -> dict[str, Any]:
        if not self.is_configured():
            return {"carrier": self.name, "configured": False, "connected": False,
                    "error": f"{self.name} credentials not configured"}
        try:
            await self.tokens.get()
        except CarrierError as e:
            return {"carrier": self.name, "configured": True, "connected": False, "error": e.message}
        return {"carrier": self.name, "configured": True, "connected": True, "error": None}
