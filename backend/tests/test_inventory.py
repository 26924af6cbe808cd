import pytest
from httpx import AsyncClient
from sqlalchemy import select, update

from warehouse.core.errors import ProductNotFound, ValidationFailed
from warehouse.db.enums import TransactionType
from warehouse.db.models import InventoryTransaction, Product
from warehouse.services import inventory as inventory_service

pytestmark = pytest.mark.integration


@pytest.mark.anyio
async def test_initial_stock_is_booked_in_ledger(test_session, make_product):
    product = await make_product("BOLT-9", stock=12)

    entries = await inventory_service.list_transactions(test_session, product_id=product.id)
    assert [(e.type, e.quantity, e.notes) for e in entries] == [
        (TransactionType.RECEIVED, 12, "Initial stock")
    ]
    result = await inventory_service.reconcile_product(test_session, product.id)
    assert result.consistent


@pytest.mark.anyio
async def test_zero_initial_stock_writes_no_entry(test_session, make_product):
    product = await make_product("EMPTY-1", stock=0)
    assert await inventory_service.list_transactions(test_session, product_id=product.id) == []


@pytest.mark.anyio
async def test_duplicate_sku_is_rejected_case_insensitively(test_session, make_product):
    await make_product("WIDGET-1")
    with pytest.raises(ValidationFailed):
        await make_product("widget-1")


@pytest.mark.anyio
async def test_movements_keep_stock_equal_to_ledger(test_session, make_product, user, stock_of):
    product = await make_product("WIDGET-1", stock=5)

    await inventory_service.receive_stock(test_session, product.id, 10, user.id)
    await inventory_service.return_stock(test_session, product.id, 2, user.id, "Damaged box, resellable")
    _, adjustment = await inventory_service.adjust_stock(test_session, product.id, 15, user.id, "Cycle count")

    assert adjustment.quantity == -2
    assert adjustment.type == TransactionType.ADJUSTED
    assert await stock_of(product.id) == 15
    assert await inventory_service.ledger_total(test_session, product.id) == 15


@pytest.mark.anyio
async def test_adjust_to_same_count_writes_nothing(test_session, make_product, user):
    product = await make_product("WIDGET-1", stock=5)
    _, entry = await inventory_service.adjust_stock(test_session, product.id, 5, user.id, "Recount")
    assert entry is None
    assert len(await inventory_service.list_transactions(test_session, product_id=product.id)) == 1


@pytest.mark.anyio
@pytest.mark.parametrize("quantity", [0, -3])
async def test_receive_requires_positive_quantity(test_session, make_product, user, quantity):
    product = await make_product("WIDGET-1", stock=5)
    with pytest.raises(ValidationFailed):
        await inventory_service.receive_stock(test_session, product.id, quantity, user.id)


@pytest.mark.anyio
async def test_adjust_requires_notes_and_non_negative_count(test_session, make_product, user):
    product = await make_product("WIDGET-1", stock=5)
    with pytest.raises(ValidationFailed):
        await inventory_service.adjust_stock(test_session, product.id, 3, user.id, "  ")
    with pytest.raises(ValidationFailed):
        await inventory_service.adjust_stock(test_session, product.id, -1, user.id, "Lost")


@pytest.mark.anyio
async def test_unknown_product(test_session, user):
    with pytest.raises(ProductNotFound):
        await inventory_service.receive_stock(test_session, 404, 1, user.id)


@pytest.mark.anyio
async def test_reconcile_reports_drift(test_session, make_product):
    good = await make_product("GOOD-1", stock=4)
    bad = await make_product("BAD-1", stock=4)
    # Out-of-band write that bypasses the ledger
    await test_session.execute(update(Product).where(Product.id == bad.id).values(current_stock=7))
    await test_session.commit()

    results = {r.sku: r for r in await inventory_service.reconcile_all(test_session)}
    assert results["GOOD-1"].consistent
    assert results["BAD-1"].drift == 3
    assert not (await inventory_service.reconcile_product(test_session, bad.id)).consistent
    assert good.id in {r.product_id for r in results.values()}


@pytest.mark.anyio
async def test_recent_receives_newest_first(test_session, make_product, user):
    product = await make_product("WIDGET-1", stock=1)
    await inventory_service.receive_stock(test_session, product.id, 2, user.id, "PO-1")
    await inventory_service.receive_stock(test_session, product.id, 3, user.id, "PO-2")
    await inventory_service.return_stock(test_session, product.id, 1, user.id)

    receives = await inventory_service.recent_receives(test_session, limit=2)
    assert [e.notes for e in receives] == ["PO-2", "PO-1"]


@pytest.mark.anyio
async def test_low_stock_and_summary(test_session, make_product):
    await make_product("PLENTY-1", stock=50, threshold=5)
    await make_product("LOW-1", stock=2, threshold=5)
    await make_product("OUT-1", stock=0, threshold=5)

    low = await inventory_service.list_low_stock(test_session)
    assert [p.sku for p in low] == ["OUT-1", "LOW-1"]

    summary = await inventory_service.inventory_summary(test_session)
    assert summary == {
        "total_products": 3,
        "total_units": 52,
        "low_stock_count": 2,
        "out_of_stock_count": 1,
    }


# ------------------ HTTP ------------------

@pytest.mark.anyio
async def test_inventory_api_flow(client: AsyncClient, auth_headers, test_session):
    r = await client.post('/api/inventory/products', json={
        'sku': 'WIDGET-1', 'name': 'Widget', 'initial_stock': 5, 'weight': 1.5,
    }, headers=auth_headers)
    assert r.status_code == 201
    product_id = r.json()['id']

    r = await client.post(f'/api/inventory/products/{product_id}/receive', json={'quantity': 4, 'notes': 'PO-77'}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()['product']['current_stock'] == 9
    assert r.json()['transaction']['type'] == 'RECEIVED'

    r = await client.post(f'/api/inventory/products/{product_id}/adjust', json={'new_stock': 8, 'notes': 'Count'}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()['transaction']['quantity'] == -1

    r = await client.post(f'/api/inventory/products/{product_id}/return', json={'quantity': 1}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()['product']['current_stock'] == 9

    r = await client.get('/api/inventory/transactions', params={'product_id': product_id}, headers=auth_headers)
    assert [e['type'] for e in r.json()] == ['RETURNED', 'ADJUSTED', 'RECEIVED', 'RECEIVED']

    r = await client.get('/api/inventory/reconcile', headers=auth_headers)
    assert r.json()['consistent'] is True

    r = await client.get('/api/inventory/summary', headers=auth_headers)
    assert r.json()['total_units'] == 9

    rows = (await test_session.execute(select(InventoryTransaction))).scalars().all()
    assert sum(e.quantity for e in rows) == 9


@pytest.mark.anyio
async def test_inventory_api_validation_errors(client: AsyncClient, auth_headers, make_product):
    product = await make_product("WIDGET-1", stock=5)

    r = await client.post(f'/api/inventory/products/{product.id}/receive', json={'quantity': 0}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()['code'] == 'validation_failed'

    r = await client.post(f'/api/inventory/products/{product.id}/adjust', json={'new_stock': 3}, headers=auth_headers)
    assert r.status_code == 422

    r = await client.post('/api/inventory/products/999/return', json={'quantity': 1}, headers=auth_headers)
    assert r.status_code == 404
    assert r.json()['code'] == 'product_not_found'

    r = await client.post('/api/inventory/products', json={'sku': 'WIDGET-1', 'name': 'Dup'}, headers=auth_headers)
    assert r.status_code == 400
