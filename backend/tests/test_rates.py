import asyncio
from datetime import date

import httpx
import pytest
from httpx import AsyncClient

from warehouse.core.errors import NoRatesAvailable
from warehouse.integrations.carriers import CarrierRegistry
from warehouse.integrations.carriers.base import Address, Package, add_business_days
from warehouse.main import app
from warehouse.services.packages import DEFAULT_BOX_IN, MIN_WEIGHT_LB, estimate_package
from warehouse.services.rates import PLACEHOLDER_ADVISORY, placeholder_rates, quote_rates

DESTINATION = Address(name="Ada", address1="10 Main St", city="Springfield", state="IL", postal_code="62701")
PACKAGE = Package(weight=3.0, length=8, width=6, height=4)


class _Item:
    def __init__(self, product, quantity):
        self.product = product
        self.quantity = quantity


class _Product:
    def __init__(self, weight=None, length=None, width=None, height=None):
        self.weight, self.length, self.width, self.height = weight, length, width, height


class TestEstimatePackage:

    def test_weight_sums_and_box_takes_largest_axis(self):
        pkg = estimate_package([
            _Item(_Product(1.25, 10, 4, 2), 2),
            _Item(_Product(0.5, 6, 8, 3), 1),
        ])
        assert pkg == Package(weight=3.0, length=10, width=8, height=3)

    def test_unknown_dimensions_fall_back_per_axis(self):
        pkg = estimate_package([_Item(_Product(0.1, length=20), 1)])
        assert pkg.weight == MIN_WEIGHT_LB
        assert (pkg.length, pkg.width, pkg.height) == (20, DEFAULT_BOX_IN[1], DEFAULT_BOX_IN[2])

    def test_unlinked_items_are_ignored(self):
        pkg = estimate_package([_Item(None, 4)])
        assert pkg == Package(MIN_WEIGHT_LB, *DEFAULT_BOX_IN)


class TestPlaceholderRates:

    def test_sorted_and_scaled_by_weight(self):
        light = placeholder_rates(1.0, today=date(2026, 10, 16))
        heavy = placeholder_rates(10.0, today=date(2026, 10, 16))

        assert [r.price for r in light] == sorted(r.price for r in light)
        assert light[0].service_code == "03" and light[0].price == 8.99
        assert heavy[0].price == round(8.99 * 5, 2)

    def test_delivery_date_skips_weekends(self):
        # Friday + 2 business days = Tuesday
        assert add_business_days(date(2026, 10, 16), 2) == date(2026, 10, 20)
        rates = placeholder_rates(1.0, today=date(2026, 10, 16))
        two_day = next(r for r in rates if r.service_code == "02")
        assert two_day.estimated_delivery_date == "2026-10-20"


@pytest.mark.anyio
async def test_no_configured_carriers_returns_placeholders(unconfigured_carriers):
    quote = await quote_rates(unconfigured_carriers, DESTINATION, PACKAGE)

    assert quote.live is False
    assert len(quote.rates) == 4
    assert "UPS is not configured" in quote.errors
    assert "FEDEX is not configured" in quote.errors
    assert PLACEHOLDER_ADVISORY in quote.errors


@pytest.mark.anyio
async def test_rates_merge_across_carriers_cheapest_first(make_ups, make_fedex, ups_api, fedex_api):
    registry = CarrierRegistry([make_ups(ups_api), make_fedex(fedex_api)])
    quote = await quote_rates(registry, DESTINATION, PACKAGE)

    assert quote.live is True
    assert quote.errors == []
    assert [(r.carrier, r.service_code, r.price) for r in quote.rates] == [
        ("FEDEX", "FEDEX_GROUND", 11.25),
        ("UPS", "03", 12.50),
        ("UPS", "02", 27.10),
        ("FEDEX", "PRIORITY_OVERNIGHT", 48.40),
    ]
    assert quote.cheapest.id == "fedex-FEDEX_GROUND"
    ground = quote.rates[0]
    assert ground.estimated_days == 3
    assert quote.rates[2].estimated_days == 2  # UPS 2nd Day Air from the transit table


@pytest.mark.anyio
async def test_one_failing_carrier_still_returns_the_other(make_ups, make_fedex, ups_api, fedex_api):
    fedex_api.routes["/rate/v1/rates/quotes"] = (503, {"errors": [{"code": "SERVICE.UNAVAILABLE"}]})
    registry = CarrierRegistry([make_ups(ups_api), make_fedex(fedex_api)])

    quote = await quote_rates(registry, DESTINATION, PACKAGE)

    assert {r.carrier for r in quote.rates} == {"UPS"}
    assert len(quote.errors) == 1
    assert "FEDEX" in quote.errors[0] and "503" in quote.errors[0]


@pytest.mark.anyio
async def test_slow_carrier_times_out_without_blocking_others(make_ups, make_fedex, ups_api, fedex_api):
    async def slow(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json={"output": {"rateReplyDetails": []}})

    fedex_api.routes["/rate/v1/rates/quotes"] = slow
    registry = CarrierRegistry([make_ups(ups_api), make_fedex(fedex_api)])

    quote = await quote_rates(registry, DESTINATION, PACKAGE, timeout=0.1)

    assert {r.carrier for r in quote.rates} == {"UPS"}
    assert quote.errors == ["FEDEX error: timed out after 0.1s"]


@pytest.mark.anyio
async def test_all_configured_carriers_failing_raises(make_ups, make_fedex, ups_api):
    ups_api.routes["/api/rating/v2403/Rate"] = (500, {"response": {"errors": [{"message": "boom"}]}})
    registry = CarrierRegistry([make_ups(ups_api), make_fedex(configured=False)])

    with pytest.raises(NoRatesAvailable) as exc:
        await quote_rates(registry, DESTINATION, PACKAGE)

    assert "FEDEX is not configured" in exc.value.errors
    assert any("UPS" in e for e in exc.value.errors)


@pytest.mark.anyio
async def test_rates_endpoint(client: AsyncClient, auth_headers, make_product, make_order, live_carriers, monkeypatch):
    monkeypatch.setattr(app.state, 'carriers', live_carriers)
    widget = await make_product("WIDGET-1", stock=5, weight=1.0)
    order = await make_order([(widget, 3)])

    r = await client.post('/api/shipping/rates', json={'order_id': order.id}, headers=auth_headers)
    assert r.status_code == 200
    body = r.json()
    assert body['live'] is True
    assert body['cheapest_rate']['id'] == 'ups-03'
    assert body['package']['weight'] == 3.0
    assert body['errors'] == ['FEDEX is not configured']


@pytest.mark.anyio
async def test_rates_endpoint_no_rates_is_502(client: AsyncClient, auth_headers, make_product, make_order,
                                              live_carriers, ups_api, monkeypatch):
    monkeypatch.setattr(app.state, 'carriers', live_carriers)
    ups_api.routes["/api/rating/v2403/Rate"] = (500, {"error": "down"})
    widget = await make_product("WIDGET-1", stock=5)
    order = await make_order([(widget, 1)])

    r = await client.post('/api/shipping/rates', json={'order_id': order.id}, headers=auth_headers)
    assert r.status_code == 502
    assert r.json()['code'] == 'no_rates_available'
