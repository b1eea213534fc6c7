import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from storefront.cart_service import CartService, format_money, parse_state, require_quantity, sum_lines
from storefront.cart_store import CartStore
from storefront.catalog import ProductCatalog
from storefront.config import Settings
from storefront.database import create_engine_from_settings, init_models, make_session_maker
from storefront.errors import DatabaseError, ErrorKind, NotFoundError, ValidationError
from storefront.models import Cart, CartState, Product
from tests.conftest import MISSING_PRODUCT, PRODUCT_A, PRODUCT_B, SOLD_OUT, USER


def _line(view, product_id):
    return next(item for item in view.items if item.product_id == product_id)


async def _update_product(session_maker, product_id, price=None, stock=None):
    async with session_maker() as session:
        product = await session.get(Product, product_id)
        if price is not None:
            product.price = price
        if stock is not None:
            product.stock = stock
        await session.commit()


# 🧾 view

async def test_new_user_gets_empty_cart(service):
    view = await service.view_cart(USER)
    assert view.items == []
    assert view.total == Decimal("0.00")
    assert view.item_count == 0
    assert view.unit_count == 0
    assert view.state is CartState.ACTIVE
    assert view.user_id == USER


async def test_view_cart_is_idempotent(service):
    first = await service.view_cart(USER)
    second = await service.view_cart(USER)
    assert first.id == second.id


async def test_view_reports_line_details(service):
    await service.add_item(USER, PRODUCT_A, 2)
    view = await service.add_item(USER, PRODUCT_B, 3)

    line = _line(view, PRODUCT_A)
    assert line.name == "Product A"
    assert line.description == "First product"
    assert line.price == Decimal("10.00")
    assert line.stock_available == 5
    assert line.subtotal == Decimal("20.00")
    assert line.price_formatted == "$10.00"
    assert line.subtotal_formatted == "$20.00"
    assert line.has_stock is True

    assert view.item_count == 2
    assert view.unit_count == 5
    assert view.total == Decimal("27.50")
    assert view.total_formatted == "$27.50"


async def test_total_uses_live_prices(service, session_maker):
    await service.add_item(USER, PRODUCT_A, 2)
    await _update_product(session_maker, PRODUCT_A, price=Decimal("12.35"))

    view = await service.view_cart(USER)
    assert view.total == Decimal("24.70")
    assert _line(view, PRODUCT_A).subtotal == Decimal("24.70")


async def test_has_stock_flag_follows_live_stock(service, session_maker):
    await service.add_item(USER, PRODUCT_A, 4)
    await _update_product(session_maker, PRODUCT_A, stock=3)

    view = await service.view_cart(USER)
    line = _line(view, PRODUCT_A)
    assert line.quantity == 4
    assert line.stock_available == 3
    assert line.has_stock is False


# ➕ add

async def test_add_item_merges_into_one_line(service):
    await service.add_item(USER, PRODUCT_B, 3)
    view = await service.add_item(USER, PRODUCT_B, 4)

    assert len(view.items) == 1
    assert view.items[0].quantity == 7


async def test_add_item_defaults_to_one_unit(service):
    view = await service.add_item(USER, PRODUCT_B)
    assert _line(view, PRODUCT_B).quantity == 1


async def test_add_item_scenario_stops_at_stock(service):
    view = await service.add_item(USER, PRODUCT_A, 2)
    assert view.total == Decimal("20.00")
    assert _line(view, PRODUCT_A).quantity == 2

    view = await service.add_item(USER, PRODUCT_A, 2)
    assert _line(view, PRODUCT_A).quantity == 4
    assert view.total == Decimal("40.00")

    with pytest.raises(ValidationError) as exc_info:
        await service.add_item(USER, PRODUCT_A, 2)
    assert exc_info.value.details == {"available": 5, "in_cart": 4, "requested": 2}

    view = await service.view_cart(USER)
    assert _line(view, PRODUCT_A).quantity == 4
    assert view.total == Decimal("40.00")


async def test_add_sold_out_product_fails(service):
    with pytest.raises(ValidationError):
        await service.add_item(USER, SOLD_OUT, 1)


async def test_failed_first_add_leaves_no_cart(service, store):
    with pytest.raises(ValidationError):
        await service.add_item(USER, PRODUCT_A, 6)

    async with store.unit_of_work() as session:
        assert await store.get_active_cart(session, USER) is None


@pytest.mark.parametrize("quantity", [0, -1, 1.5, "2", True, None])
async def test_add_item_rejects_bad_quantity(service, quantity):
    with pytest.raises(ValidationError):
        await service.add_item(USER, PRODUCT_A, quantity)


async def test_add_unknown_product(service):
    with pytest.raises(NotFoundError):
        await service.add_item(USER, MISSING_PRODUCT, 1)


# 🔀 concurrent adds

@pytest.fixture
async def file_session_maker(tmp_path):
    settings = Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'carts.db'}", environment="test")
    engine = create_engine_from_settings(settings)
    await init_models(engine)
    maker = make_session_maker(engine)
    async with maker() as session:
        session.add_all([
            Product(id=PRODUCT_A, name="Product A", price=Decimal("10.00"), stock=5),
            Product(id=PRODUCT_B, name="Product B", price=Decimal("2.50"), stock=100),
        ])
        await session.commit()
    yield maker
    await engine.dispose()


async def test_concurrent_adds_all_count(service):
    await service.add_item(USER, PRODUCT_B, 1)
    views = await asyncio.gather(*(service.add_item(USER, PRODUCT_B, 1) for _ in range(5)))

    assert len(views) == 5
    view = await service.view_cart(USER)
    assert _line(view, PRODUCT_B).quantity == 6


async def test_concurrent_first_adds_share_one_cart(service, store):
    await asyncio.gather(*(service.add_item(USER, PRODUCT_B, 2) for _ in range(4)))

    view = await service.view_cart(USER)
    assert _line(view, PRODUCT_B).quantity == 8
    async with store.unit_of_work() as session:
        carts = (await session.execute(select(Cart).where(Cart.user_id == USER))).scalars().all()
    assert len(carts) == 1


async def test_concurrent_adds_on_file_database(file_session_maker):
    service = CartService(CartStore(file_session_maker), ProductCatalog())
    await service.add_item(USER, PRODUCT_B, 1)
    await asyncio.gather(*(service.add_item(USER, PRODUCT_B, 1) for _ in range(5)))

    view = await service.view_cart(USER)
    assert _line(view, PRODUCT_B).quantity == 6


async def test_separate_stores_do_not_lose_adds(file_session_maker):
    # each store has its own lock, only BEGIN IMMEDIATE orders them
    services = [CartService(CartStore(file_session_maker), ProductCatalog()) for _ in range(2)]
    await services[0].add_item(USER, PRODUCT_B, 1)
    await asyncio.gather(*(services[i % 2].add_item(USER, PRODUCT_B, 1) for i in range(6)))

    view = await services[1].view_cart(USER)
    assert _line(view, PRODUCT_B).quantity == 7


async def test_concurrent_adds_respect_stock(file_session_maker):
    service = CartService(CartStore(file_session_maker), ProductCatalog())
    results = await asyncio.gather(
        *(service.add_item(USER, PRODUCT_A, 2) for _ in range(4)),
        return_exceptions=True,
    )

    rejected = [r for r in results if isinstance(r, ValidationError)]
    assert len(rejected) == 2
    view = await service.view_cart(USER)
    assert _line(view, PRODUCT_A).quantity == 4


# ✏️ set quantity

async def test_set_item_quantity_is_absolute(service):
    await service.add_item(USER, PRODUCT_A, 2)
    await service.add_item(USER, PRODUCT_A, 2)

    view = await service.set_item_quantity(USER, PRODUCT_A, 5)
    assert _line(view, PRODUCT_A).quantity == 5
    assert view.total == Decimal("50.00")

    view = await service.set_item_quantity(USER, PRODUCT_A, 1)
    assert _line(view, PRODUCT_A).quantity == 1


async def test_set_item_quantity_above_stock(service):
    await service.add_item(USER, PRODUCT_A, 2)
    with pytest.raises(ValidationError) as exc_info:
        await service.set_item_quantity(USER, PRODUCT_A, 6)
    assert exc_info.value.details == {"available": 5, "requested": 6}

    view = await service.view_cart(USER)
    assert _line(view, PRODUCT_A).quantity == 2


async def test_set_item_quantity_never_creates_a_line(service):
    await service.add_item(USER, PRODUCT_B, 1)
    with pytest.raises(NotFoundError):
        await service.set_item_quantity(USER, PRODUCT_A, 1)


async def test_set_item_quantity_without_cart(service):
    with pytest.raises(NotFoundError):
        await service.set_item_quantity(USER, PRODUCT_A, 1)


async def test_set_item_quantity_zero_is_rejected(service):
    await service.add_item(USER, PRODUCT_A, 2)
    with pytest.raises(ValidationError):
        await service.set_item_quantity(USER, PRODUCT_A, 0)


# ➖ remove / clear

async def test_remove_item(service):
    await service.add_item(USER, PRODUCT_A, 1)
    await service.add_item(USER, PRODUCT_B, 1)

    view = await service.remove_item(USER, PRODUCT_A)
    assert [item.product_id for item in view.items] == [PRODUCT_B]

    view = await service.view_cart(USER)
    assert [item.product_id for item in view.items] == [PRODUCT_B]


async def test_remove_last_item_leaves_empty_cart(service):
    await service.add_item(USER, PRODUCT_A, 1)
    view = await service.remove_item(USER, PRODUCT_A)
    assert view.items == []
    assert view.total == Decimal("0.00")


async def test_remove_missing_line(service):
    await service.add_item(USER, PRODUCT_B, 1)
    with pytest.raises(NotFoundError):
        await service.remove_item(USER, PRODUCT_A)


async def test_remove_without_cart(service):
    with pytest.raises(NotFoundError):
        await service.remove_item(USER, PRODUCT_A)


async def test_clear(service):
    await service.add_item(USER, PRODUCT_A, 2)
    await service.add_item(USER, PRODUCT_B, 2)
    cart_id = (await service.view_cart(USER)).id

    view = await service.clear(USER)
    assert view.id == cart_id
    assert view.items == []
    assert view.total == Decimal("0.00")

    view = await service.view_cart(USER)
    assert view.items == []
    assert view.item_count == 0


async def test_clear_creates_cart_for_new_user(service):
    view = await service.clear(USER)
    assert view.items == []


# 🔁 state

async def test_convert_cart_starts_a_fresh_one(service):
    await service.add_item(USER, PRODUCT_A, 1)
    first = await service.view_cart(USER)

    change = await service.set_cart_state(USER, "Converted")
    assert change.cart_id == first.id
    assert change.state is CartState.CONVERTED

    view = await service.view_cart(USER)
    assert view.id != first.id
    assert view.items == []


async def test_abandon_with_enum_member(service):
    cart_id = (await service.view_cart(USER)).id
    change = await service.set_cart_state(USER, CartState.ABANDONED)
    assert change.cart_id == cart_id
    assert change.state is CartState.ABANDONED


async def test_set_active_on_active_cart_is_noop(service):
    cart_id = (await service.view_cart(USER)).id
    change = await service.set_cart_state(USER, "Active")
    assert change.cart_id == cart_id
    assert (await service.view_cart(USER)).id == cart_id


@pytest.mark.parametrize("state", ["pending", "active", 2, None])
async def test_set_cart_state_rejects_unknown(service, state):
    with pytest.raises(ValidationError):
        await service.set_cart_state(USER, state)


def test_terminal_states_cannot_transition():
    assert CartState.ACTIVE.can_transition_to(CartState.CONVERTED)
    assert CartState.ACTIVE.can_transition_to(CartState.ABANDONED)
    assert not CartState.CONVERTED.can_transition_to(CartState.ACTIVE)
    assert not CartState.ABANDONED.can_transition_to(CartState.ACTIVE)
    assert not CartState.CONVERTED.can_transition_to(CartState.ABANDONED)
    assert not CartState.ABANDONED.can_transition_to(CartState.CONVERTED)
    # staying put is not a transition
    assert CartState.CONVERTED.can_transition_to(CartState.CONVERTED)
    assert CartState.ACTIVE.can_transition_to(CartState.ACTIVE)


# 💰 totals

async def test_compute_total(service):
    await service.add_item(USER, PRODUCT_A, 3)
    view = await service.add_item(USER, PRODUCT_B, 3)
    assert await service.compute_total(view.id) == Decimal("37.50")


async def test_compute_total_unknown_cart(service):
    with pytest.raises(NotFoundError):
        await service.compute_total(12345)


def test_money_helpers():
    assert sum_lines([(3, Decimal("0.10")), (1, Decimal("0.20"))]) == Decimal("0.50")
    assert sum_lines([]) == Decimal("0.00")
    assert format_money(Decimal("40")) == "$40.00"
    assert require_quantity(3) == 3
    assert parse_state("Abandoned") is CartState.ABANDONED


# ⚠️ error classification

class _BrokenCatalog(ProductCatalog):
    async def find_by_id(self, session, product_id):
        raise OperationalError("SELECT products", {}, ConnectionError("connection reset"))


class _MissingCatalog(ProductCatalog):
    async def find_by_id(self, session, product_id):
        raise NotFoundError("catalog says no")


async def test_storage_failure_is_wrapped(store, products):
    service = CartService(store, _BrokenCatalog())
    with pytest.raises(DatabaseError) as exc_info:
        await service.add_item(USER, PRODUCT_A, 1)
    assert exc_info.value.kind is ErrorKind.DATABASE
    assert isinstance(exc_info.value.__cause__, OperationalError)


async def test_domain_errors_pass_through_unchanged(store, products):
    service = CartService(store, _MissingCatalog())
    with pytest.raises(NotFoundError, match="catalog says no"):
        await service.add_item(USER, PRODUCT_A, 1)
