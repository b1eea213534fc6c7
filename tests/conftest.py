import os

os.environ.setdefault("ENVIRONMENT", "test")

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from storefront.cart_service import CartService
from storefront.cart_store import CartStore
from storefront.catalog import ProductCatalog
from storefront.config import Settings
from storefront.database import create_engine_from_settings, init_models, make_session_maker
from storefront.main import create_app, wire_services
from storefront.models import Product

PRODUCT_A = 1      # price 10.00, stock 5
PRODUCT_B = 2      # price 2.50, stock 100
SOLD_OUT = 3       # price 4.00, stock 0
MISSING_PRODUCT = 999
USER = 7


@pytest.fixture
def settings():
    return Settings(database_url="sqlite+aiosqlite://", environment="test", debug=False)


@pytest.fixture
async def engine(settings):
    engine = create_engine_from_settings(settings)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return make_session_maker(engine)


@pytest.fixture
async def products(session_maker):
    async with session_maker() as session:
        session.add_all([
            Product(id=PRODUCT_A, name="Product A", description="First product",
                    price=Decimal("10.00"), stock=5),
            Product(id=PRODUCT_B, name="Product B", price=Decimal("2.50"), stock=100),
            Product(id=SOLD_OUT, name="Sold out", price=Decimal("4.00"), stock=0),
        ])
        await session.commit()


@pytest.fixture
def store(session_maker):
    return CartStore(session_maker)


@pytest.fixture
def service(store, products):
    return CartService(store, ProductCatalog())


@pytest.fixture
async def client(settings, session_maker, products):
    app = create_app(settings)
    # ASGITransport skips lifespan, wire the services the way startup does
    wire_services(app, session_maker)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
