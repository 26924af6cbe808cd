import base64
import os
import pytest
import httpx
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
# Default DATABASE_URL (not used by tests that use the per-fixture engine)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
from warehouse.main import app
from warehouse.core.security import create_access_token
from warehouse.db.database import Base, get_db, enable_sqlite_foreign_keys
from warehouse.db.enums import OrderStatus, UserRole
from warehouse.db.models import Order, OrderItem, Product, User
from warehouse.integrations.carriers import CarrierRegistry
from warehouse.integrations.carriers.base import Address
from warehouse.integrations.carriers.fedex import FedExClient
from warehouse.integrations.carriers.ups import UPSClient
from warehouse.integrations.shopify import ShopifyClient
from warehouse.services import inventory as inventory_service

LABEL_BYTES = b"GIF89a-test-label"

UPS_TOKEN = {"access_token": "ups-token", "token_type": "Bearer", "expires_in": "14399"}
UPS_RATES = {
    "RateResponse": {
        "RatedShipment": [
            {
                "Service": {"Code": "03"},
                "TotalCharges": {"MonetaryValue": "12.50", "CurrencyCode": "USD"},
                "GuaranteedDelivery": {"BusinessDaysInTransit": "5"},
            },
            {
                "Service": {"Code": "02"},
                "TotalCharges": {"MonetaryValue": "27.10", "CurrencyCode": "USD"},
            },
        ]
    }
}
UPS_SHIPMENT = {
    "ShipmentResponse": {
        "ShipmentResults": {
            "ShipmentCharges": {"TotalCharges": {"MonetaryValue": "12.50", "CurrencyCode": "USD"}},
            "PackageResults": {
                "TrackingNumber": "1ZTEST0000000001",
                "ShippingLabel": {
                    "ImageFormat": {"Code": "GIF"},
                    "GraphicImage": base64.b64encode(LABEL_BYTES).decode(),
                },
            },
        }
    }
}

FEDEX_TOKEN = {"access_token": "fedex-token", "token_type": "bearer", "expires_in": 3599}
FEDEX_RATES = {
    "output": {
        "rateReplyDetails": [
            {
                "serviceType": "FEDEX_GROUND",
                "serviceName": "FedEx Ground",
                "ratedShipmentDetails": [
                    {"rateType": "LIST", "totalNetCharge": 15.0, "currency": "USD"},
                    {"rateType": "ACCOUNT", "totalNetCharge": 11.25, "currency": "USD"},
                ],
                "commit": {"transitDays": {"minimumTransitTime": "THREE_DAYS"}},
            },
            {
                "serviceType": "PRIORITY_OVERNIGHT",
                "ratedShipmentDetails": [
                    {"rateType": "LIST", "totalNetCharge": 48.4, "currency": "USD"},
                ],
            },
        ]
    }
}


class FakeAPI:
    """Route table for httpx.MockTransport: path -> (status, json) or handler(request)."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def handler(self, request: httpx.Request):
        self.calls.append((request.method, request.url.path))
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": f"no route for {request.url.path}"})
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, path: str) -> int:
        return sum(1 for _, p in self.calls if p == path)


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test_concurrency.db",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_session(test_engine):
    async_session = sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session() as session:
        yield session


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture(scope="session")
async def override_get_db_for_app(test_engine):
    """Override app's get_db dependency once per test session to use the session-scoped engine.
    This yields a fresh session per request while keeping a single AsyncEngine for the app and tests.
    """
    async_session = sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async def _override_get_db():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def clean_tables(test_engine):
    """Ensure DB is empty before each test by deleting from all tables (keep schema intact)."""
    async with test_engine.begin() as conn:
        # delete in reverse order to respect FK constraints
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    yield


@pytest.fixture(autouse=True)
def database(request):
    """Async tests run against the test engine with empty tables; plain tests never touch the DB."""
    if request.node.get_closest_marker("anyio") is not None:
        request.getfixturevalue("override_get_db_for_app")
        request.getfixturevalue("clean_tables")


# ------------------ carriers / upstream ------------------

@pytest.fixture
def ship_from():
    return Address(
        name="Main Warehouse",
        address1="1 Dock St",
        city="Austin",
        state="TX",
        postal_code="78701",
        country="US",
        phone="5125550100",
    )


@pytest.fixture
def ups_api():
    return FakeAPI({
        "/security/v1/oauth/token": (200, UPS_TOKEN),
        "/api/rating/v2403/Rate": (200, UPS_RATES),
        "/api/shipments/v2403/ship": (200, UPS_SHIPMENT),
    })


@pytest.fixture
def fedex_api():
    return FakeAPI({
        "/oauth/token": (200, FEDEX_TOKEN),
        "/rate/v1/rates/quotes": (200, FEDEX_RATES),
    })


@pytest.fixture
def shopify_api():
    return FakeAPI({
        "/admin/api/2024-10/orders/9001/fulfillment_orders.json": (200, {
            "fulfillment_orders": [
                {"id": 77, "status": "open", "line_items": [{"id": 501, "fulfillable_quantity": 3}]},
                {"id": 78, "status": "closed", "line_items": [{"id": 502, "fulfillable_quantity": 0}]},
            ]
        }),
        "/admin/api/2024-10/fulfillments.json": (201, {"fulfillment": {"id": 4242, "status": "success"}}),
    })


@pytest.fixture
def make_shopify():
    def _make(routes: dict) -> tuple[ShopifyClient, FakeAPI]:
        """``routes`` are keyed by path below the versioned Admin API root."""
        api = FakeAPI({f"/admin/api/2024-10{path}": route for path, route in routes.items()})
        client = ShopifyClient("shop.test", "shpat_test", transport=api.transport(), page_delay=0)
        return client, api
    return _make


@pytest.fixture
def make_ups(ship_from):
    def _make(api: FakeAPI = None, configured: bool = True) -> UPSClient:
        return UPSClient(
            client_id="ups-id" if configured else "",
            client_secret="ups-secret" if configured else "",
            account_number="A1B2C3" if configured else "",
            base_url="https://ups.test",
            ship_from=ship_from,
            transport=api.transport() if api else None,
        )
    return _make


@pytest.fixture
def make_fedex(ship_from):
    def _make(api: FakeAPI = None, configured: bool = True) -> FedExClient:
        return FedExClient(
            api_key="fx-key" if configured else "",
            secret_key="fx-secret" if configured else "",
            account_number="510087000" if configured else "",
            base_url="https://fedex.test",
            ship_from=ship_from,
            transport=api.transport() if api else None,
        )
    return _make


@pytest.fixture
def unconfigured_carriers(make_ups, make_fedex):
    return CarrierRegistry([make_ups(configured=False), make_fedex(configured=False)])


@pytest.fixture
def live_carriers(make_ups, make_fedex, ups_api):
    """UPS configured against the fake API; FedEx without credentials."""
    return CarrierRegistry([make_ups(ups_api), make_fedex(configured=False)])


@pytest.fixture(autouse=True)
def app_state(unconfigured_carriers):
    # ASGITransport does not run the lifespan
    app.state.carriers = unconfigured_carriers
    app.state.shopify = ShopifyClient("", "")
    yield


# ------------------ data ------------------

@pytest.fixture
async def user(test_session):
    u = User(email="packer@example.com", name="Pat Packer", role=UserRole.EMPLOYEE)
    test_session.add(u)
    await test_session.commit()
    return u


@pytest.fixture
def auth_headers(user):
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_product(test_session, user):
    async def _make(sku="WIDGET-1", stock=5, weight=1.0, dims=(8.0, 6.0, 4.0), threshold=2, name=None):
        length, width, height = dims
        return await inventory_service.create_product(
            test_session,
            sku=sku,
            name=name or f"Product {sku}",
            created_by_id=user.id,
            initial_stock=stock,
            low_stock_threshold=threshold,
            weight=weight,
            length=length,
            width=width,
            height=height,
        )
    return _make


@pytest.fixture
def make_order(test_session):
    async def _make(lines, number="#1001", status=OrderStatus.PENDING, shopify_order_id="9001"):
        """``lines`` is a list of (Product or None, quantity)."""
        order = Order(
            shopify_order_id=shopify_order_id,
            order_number=number,
            customer_name="Ada Lovelace",
            customer_email="ada@example.com",
            shipping_address1="10 Main St",
            shipping_city="Springfield",
            shipping_state="IL",
            shipping_zip="62701",
            shipping_country="US",
            status=status,
            total_price=Decimal("29.97"),
            currency="USD",
        )
        order.items = [
            OrderItem(
                shopify_line_item_id=f"{shopify_order_id}-{i}",
                sku=product.sku if product else "GHOST-1",
                name=product.name if product else "Ghost item",
                quantity=qty,
                price=Decimal("9.99"),
                product_id=product.id if product else None,
            )
            for i, (product, qty) in enumerate(lines, start=1)
        ]
        test_session.add(order)
        await test_session.commit()
        return order
    return _make


@pytest.fixture
def stock_of(test_session):
    async def _stock(product_id: int) -> int:
        return await test_session.scalar(select(Product.current_stock).where(Product.id == product_id))
    return _stock


@pytest.fixture
def status_of(test_session):
    async def _status(order_id: int) -> OrderStatus:
        return await test_session.scalar(select(Order.status).where(Order.id == order_id))
    return _status
