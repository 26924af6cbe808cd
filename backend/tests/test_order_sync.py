import base64
import copy
import hashlib
import hmac
import json

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from warehouse.core.config import settings
from warehouse.core.errors import ValidationFailed
from warehouse.db.enums import OrderStatus
from warehouse.db.models import Order, OrderItem
from warehouse.integrations.shopify import verify_webhook_signature
from warehouse.services.order_sync import map_upstream_status, order_fields, upsert_order

pytestmark = pytest.mark.integration

SECRET = "whsec_test"

SHOPIFY_ORDER = {
    "id": 820982911946154500,
    "name": "#1001",
    "email": "ada@example.com",
    "created_at": "2026-10-15T09:30:00-04:00",
    "total_price": "29.97",
    "currency": "USD",
    "financial_status": "paid",
    "fulfillment_status": None,
    "cancelled_at": None,
    "customer": {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"},
    "shipping_address": {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "address1": "10 Main St",
        "address2": "Apt 4",
        "city": "Springfield",
        "province": "Illinois",
        "province_code": "IL",
        "zip": "62701",
        "country": "United States",
        "country_code": "US",
    },
    "line_items": [
        {"id": 466157049, "sku": "widget-1", "title": "Widget", "quantity": 3, "price": "9.99"},
        {"id": 466157050, "sku": "NOT-STOCKED", "title": "Mystery", "quantity": 1, "price": "0.00"},
    ],
}


def _sign(body: bytes, secret: str = SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def _payload(**changes) -> dict:
    payload = copy.deepcopy(SHOPIFY_ORDER)
    payload.update(changes)
    return payload


class TestMapping:

    @pytest.mark.parametrize("fulfillment_status, cancelled, expected", [
        (None, False, OrderStatus.PENDING),
        ("unfulfilled", False, OrderStatus.PENDING),
        ("partial", False, OrderStatus.PROCESSING),
        ("fulfilled", False, OrderStatus.SHIPPED),
        ("fulfilled", True, OrderStatus.CANCELLED),
    ])
    def test_map_upstream_status(self, fulfillment_status, cancelled, expected):
        assert map_upstream_status(fulfillment_status, cancelled) == expected

    def test_order_fields(self):
        fields = order_fields(SHOPIFY_ORDER)
        assert fields["shopify_order_id"] == "820982911946154500"
        assert fields["customer_name"] == "Ada Lovelace"
        assert fields["shipping_state"] == "IL"
        assert fields["shipping_country"] == "US"
        assert str(fields["total_price"]) == "29.97"

    def test_customer_name_falls_back_to_address_then_unknown(self):
        assert order_fields(_payload(customer=None))["customer_name"] == "Ada Lovelace"
        assert order_fields(_payload(customer=None, shipping_address=None))["customer_name"] == "Unknown"

    def test_missing_id_is_rejected(self):
        with pytest.raises(ValidationFailed):
            order_fields(_payload(id=None))


def test_verify_webhook_signature():
    body = json.dumps(SHOPIFY_ORDER).encode()
    assert verify_webhook_signature(body, _sign(body), SECRET)
    assert not verify_webhook_signature(body + b" ", _sign(body), SECRET)
    assert not verify_webhook_signature(body, _sign(body, "other"), SECRET)
    assert not verify_webhook_signature(body, None, SECRET)
    assert not verify_webhook_signature(body, _sign(body), "")


@pytest.mark.anyio
async def test_upsert_links_items_by_sku(test_session, make_product):
    widget = await make_product("WIDGET-1", stock=5)

    result = await upsert_order(test_session, _payload())

    assert result.created
    order = result.order
    assert order.status == OrderStatus.PENDING
    items = {i.sku: i for i in order.items}
    assert items["widget-1"].product_id == widget.id
    assert items["NOT-STOCKED"].product_id is None


@pytest.mark.anyio
async def test_replay_updates_in_place(test_session):
    first = await upsert_order(test_session, _payload())
    changed = _payload(email="ada@new.example.com")
    changed["line_items"][0]["quantity"] = 4
    second = await upsert_order(test_session, changed)

    assert not second.created
    assert second.order.id == first.order.id
    assert await test_session.scalar(select(func.count(Order.id))) == 1
    assert await test_session.scalar(select(func.count(OrderItem.id))) == 2
    quantities = (await test_session.execute(
        select(OrderItem.quantity).order_by(OrderItem.shopify_line_item_id)
    )).scalars().all()
    assert quantities == [4, 1]
    assert second.order.customer_email == "ada@new.example.com"


@pytest.mark.anyio
async def test_new_orders_take_upstream_status(test_session):
    cancelled = await upsert_order(test_session, _payload(id=1, name="#2001", cancelled_at="2026-10-16T10:00:00Z"))
    partial = await upsert_order(test_session, _payload(id=2, name="#2002", fulfillment_status="partial"))
    voided = await upsert_order(test_session, _payload(id=3, name="#2003", financial_status="voided"))

    assert cancelled.order.status == OrderStatus.CANCELLED
    assert partial.order.status == OrderStatus.PROCESSING
    assert voided.order.status == OrderStatus.CANCELLED


@pytest.mark.anyio
async def test_sync_follows_allowed_transitions_only(test_session, make_order, status_of):
    pending = await make_order([], number="#3001", shopify_order_id="3001")
    result = await upsert_order(test_session, _payload(id=3001, name="#3001", fulfillment_status="partial"))
    assert result.status_changed
    assert await status_of(pending.id) == OrderStatus.PROCESSING

    result = await upsert_order(test_session, _payload(id=3001, name="#3001", cancelled_at="2026-10-16T10:00:00Z"))
    assert result.status_changed
    assert await status_of(pending.id) == OrderStatus.CANCELLED


@pytest.mark.anyio
@pytest.mark.parametrize("local", [OrderStatus.SHIPPED, OrderStatus.ON_HOLD, OrderStatus.CANCELLED])
async def test_sync_never_regresses_local_status(test_session, make_order, status_of, local):
    order = await make_order([], number="#4001", shopify_order_id="4001", status=local)

    result = await upsert_order(test_session, _payload(id=4001, name="#4001", fulfillment_status="partial"))

    assert not result.status_changed
    assert await status_of(order.id) == local


@pytest.mark.anyio
async def test_upstream_fulfilled_does_not_mark_local_order_shipped(test_session, make_order, status_of):
    order = await make_order([], number="#5001", shopify_order_id="5001")
    result = await upsert_order(test_session, _payload(id=5001, name="#5001", fulfillment_status="fulfilled"))
    assert not result.status_changed
    assert await status_of(order.id) == OrderStatus.PENDING


# ------------------ webhook endpoint ------------------

async def _deliver(client: AsyncClient, payload, topic="orders/create", signature=None):
    body = json.dumps(payload).encode() if not isinstance(payload, bytes) else payload
    headers = {
        'Content-Type': 'application/json',
        'X-Shopify-Topic': topic,
        'X-Shopify-Hmac-Sha256': signature if signature is not None else _sign(body),
    }
    return await client.post('/api/webhooks/shopify/orders', content=body, headers=headers)


@pytest.mark.anyio
async def test_webhook_creates_then_updates(client: AsyncClient, monkeypatch, test_session):
    monkeypatch.setattr(settings, 'SHOPIFY_WEBHOOK_SECRET', SECRET)

    r = await _deliver(client, SHOPIFY_ORDER)
    assert r.status_code == 200
    assert r.json()['created'] is True
    order_id = r.json()['order_id']

    r = await _deliver(client, SHOPIFY_ORDER, topic='orders/updated')
    assert r.status_code == 200
    assert r.json()['created'] is False
    assert r.json()['order_id'] == order_id

    r = await _deliver(client, _payload(cancelled_at='2026-10-16T10:00:00Z'), topic='orders/cancelled')
    assert r.json()['order_status'] == 'CANCELLED'
    assert r.json()['status_changed'] is True
    assert await test_session.scalar(select(func.count(Order.id))) == 1


@pytest.mark.anyio
async def test_webhook_rejects_bad_signature(client: AsyncClient, monkeypatch, test_session):
    monkeypatch.setattr(settings, 'SHOPIFY_WEBHOOK_SECRET', SECRET)

    r = await _deliver(client, SHOPIFY_ORDER, signature=_sign(b'something else'))
    assert r.status_code == 401
    assert r.json()['code'] == 'unauthorized'

    r = await _deliver(client, SHOPIFY_ORDER, signature='')
    assert r.status_code == 401
    assert await test_session.scalar(select(func.count(Order.id))) == 0


@pytest.mark.anyio
async def test_webhook_without_configured_secret_is_rejected(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, 'SHOPIFY_WEBHOOK_SECRET', '')
    r = await _deliver(client, SHOPIFY_ORDER)
    assert r.status_code == 401


@pytest.mark.anyio
async def test_webhook_ignores_other_topics(client: AsyncClient, monkeypatch, test_session):
    monkeypatch.setattr(settings, 'SHOPIFY_WEBHOOK_SECRET', SECRET)
    r = await _deliver(client, {'id': 1}, topic='products/update')
    assert r.status_code == 200
    assert r.json()['status'] == 'ignored'
    assert await test_session.scalar(select(func.count(Order.id))) == 0


@pytest.mark.anyio
async def test_webhook_malformed_body(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, 'SHOPIFY_WEBHOOK_SECRET', SECRET)
    r = await _deliver(client, b'{not json')
    assert r.status_code == 400

    r = await _deliver(client, {'id': 5})
    assert r.status_code == 400
