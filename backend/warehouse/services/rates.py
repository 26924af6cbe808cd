"""
Rate aggregation across carriers.

All configured carriers are asked concurrently and every call is allowed to
settle before the results are merged. A carrier that is unconfigured, fails
or times out adds an advisory string instead of failing the whole quote.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from warehouse.core.config import settings
from warehouse.core.errors import CarrierError, NoRatesAvailable
from warehouse.core.logging import rates_logger
from warehouse.integrations.carriers import CarrierRegistry
from warehouse.integrations.carriers.base import (
    Address,
    CarrierClient,
    Package,
    RateOffer,
    add_business_days,
)
from warehouse.services.orders import get_order
from warehouse.services.packages import destination_for, estimate_package

# (carrier, service code, service name, base price, transit days)
PLACEHOLDER_TABLE = (
    ("UPS", "03", "UPS Ground", 8.99, 5),
    ("UPS", "02", "UPS 2nd Day Air", 24.99, 2),
    ("FEDEX", "FEDEX_GROUND", "FedEx Ground", 9.49, 5),
    ("FEDEX", "FEDEX_2_DAY", "FedEx 2Day", 22.99, 2),
)
PLACEHOLDER_ADVISORY = "No carriers configured - placeholder rates, not live"


@dataclass
class RateQuote:
    rates: list[RateOffer]
    errors: list[str] = field(default_factory=list)
    live: bool = True
    package: Optional[Package] = None

    @property
    def cheapest(self) -> Optional[RateOffer]:
        return self.rates[0] if self.rates else None

    def to_dict(self) -> dict:
        return {
            "rates": [r.to_dict() for r in self.rates],
            "cheapest_rate": self.cheapest.to_dict() if self.cheapest else None,
            "errors": self.errors,
            "live": self.live,
            "package": vars(self.package) if self.package else None,
        }


def placeholder_rates(weight: float, today: Optional[date] = None) -> list[RateOffer]:
    """Deterministic price table scaled by weight. For environments with no carrier credentials."""
    today = today or date.today()
    multiplier = max(1.0, weight / 2)
    offers = [
        RateOffer(
            carrier=carrier,
            service_code=code,
            service_name=name,
            price=round(base * multiplier, 2),
            currency="USD",
            estimated_days=days,
            estimated_delivery_date=add_business_days(today, days).isoformat(),
        )
        for carrier, code, name, base, days in PLACEHOLDER_TABLE
    ]
    return sorted(offers, key=lambda o: o.price)


async def _rates_with_timeout(
    client: CarrierClient,
    destination: Address,
    packages: list[Package],
    timeout: float,
) -> list[RateOffer]:
    try:
        return await asyncio.wait_for(client.get_rates(destination, packages), timeout)
    except asyncio.TimeoutError:
        raise CarrierError(client.name, f"timed out after {timeout:g}s")


def _advisory(client: CarrierClient, error: BaseException) -> str:
    if isinstance(error, CarrierError):
        return error.message
    return f"{client.name} error: {error!r}"


async def quote_rates(
    registry: CarrierRegistry,
    destination: Address,
    package: Package,
    timeout: Optional[float] = None,
) -> RateQuote:
    """
    Ask every carrier for rates and merge the answers.

    Raises:
        NoRatesAvailable: at least one carrier is configured and none returned a rate
    """
    timeout = timeout or settings.CARRIER_TIMEOUT_SECONDS
    packages = [package]
    errors: list[str] = []

    configured = []
    for client in registry:
        if client.is_configured():
            configured.append(client)
        else:
            errors.append(f"{client.name} is not configured")

    if not configured:
        rates_logger.info("[Rates] No carriers configured, returning placeholder rates")
        return RateQuote(
            rates=placeholder_rates(package.weight),
            errors=errors + [PLACEHOLDER_ADVISORY],
            live=False,
            package=package,
        )

    results = await asyncio.gather(
        *(_rates_with_timeout(c, destination, packages, timeout) for c in configured),
        return_exceptions=True,
    )

    offers: list[RateOffer] = []
    for client, result in zip(configured, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            rates_logger.warning(f"[Rates] {client.name} returned no rates", error=repr(result))
            errors.append(_advisory(client, result))
            continue
        offers.extend(result)

    if not offers:
        raise NoRatesAvailable(errors)

    offers.sort(key=lambda o: o.price)
    rates_logger.info(
        f"[Rates] Got {len(offers)} rates",
        carriers=sorted({o.carrier for o in offers}),
        advisories=len(errors),
    )
    return RateQuote(rates=offers, errors=errors, live=True, package=package)


async def get_rates(session: AsyncSession, order_id: int, registry: CarrierRegistry) -> RateQuote:
    order = await get_order(session, order_id, with_products=True)
    package = estimate_package(order.items)
    rates_logger.info(
        f"[Rates] Quoting order {order.order_number}",
        weight=package.weight,
        box=f"{package.length}x{package.width}x{package.height}",
    )
    return await quote_rates(registry, destination_for(order), package)
