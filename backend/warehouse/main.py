from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from warehouse.api import carriers, health, inventory, orders, shipping, shopify, webhooks
from warehouse.api.errors import register_exception_handlers
from warehouse.core.config import settings, logger
from warehouse.core.middleware import RequestContextMiddleware
from warehouse.db.database import create_tables
from warehouse.integrations.carriers import build_registry
from warehouse.integrations.shopify import ShopifyClient


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await create_tables()
    app.state.carriers = build_registry()
    app.state.shopify = ShopifyClient.from_settings()

    configured = [c.name for c in app.state.carriers.configured()]
    logger.info(f"Carriers configured: {configured or 'none (placeholder rates)'}")
    if not app.state.shopify.is_configured():
        logger.warning("Shopify credentials not set; fulfillments will not be pushed upstream")
    yield


app = FastAPI(
    title="Warehouse Fulfillment API",
    description="Order sync, inventory ledger, carrier rates and label purchase",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)

register_exception_handlers(app)

# Include routers
app.include_router(health.router, prefix="", tags=["Health"])
app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
app.include_router(shipping.router, prefix="/api/shipping", tags=["Shipping"])
app.include_router(inventory.router, prefix="/api/inventory", tags=["Inventory"])
app.include_router(carriers.router, prefix="/api/carriers", tags=["Carriers"])
app.include_router(shopify.router, prefix="/api/shopify", tags=["Shopify"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])
