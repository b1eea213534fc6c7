# storefront/cart_store.py
"""Persistence for carts and cart lines. No business rules live here.

Every primitive takes the session of the running unit of work, so a caller can
chain reads and writes inside one transaction (see ``unit_of_work``).
"""
import asyncio
from contextlib import asynccontextmanager, nullcontext
from decimal import Decimal
from typing import AsyncIterator, List, Optional, Tuple

from sqlalchemy import select, delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from .database import is_sqlite
from .errors import CartError, DatabaseError, NotFoundError
from .logging import get_logger
from .models import Cart, CartLine, CartState, Product

logger = get_logger(__name__)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _insert_for(session: AsyncSession):
    """Dialect insert that understands ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    try:
        return _INSERTS[dialect]
    except KeyError:
        raise DatabaseError(f"Unsupported database dialect: {dialect}") from None


class CartStore:
    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker
        bind = session_maker.kw.get("bind")
        # SQLite has no row locks and an in-memory database shares one
        # connection, so units of work of this process queue up on a lock
        self._serial = asyncio.Lock() if bind is not None and is_sqlite(bind) else None

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[AsyncSession]:
        """One transaction: commit on success, rollback on any exception.

        Storage failures come out as DatabaseError, cart errors raised by the
        caller pass through untouched. Not reentrant.
        """
        async with self._serial if self._serial is not None else nullcontext():
            try:
                async with self._session_maker() as session:
                    async with session.begin():
                        yield session
            except CartError:
                raise
            except (SQLAlchemyError, OSError) as exc:
                logger.error("cart storage failure", error=str(exc), error_type=type(exc).__name__)
                raise DatabaseError(f"Cart storage failure: {exc}") from exc

    # 🛒 carts

    async def get_active_cart(self, session: AsyncSession, user_id: int, lock: bool = False) -> Optional[Cart]:
        stmt = select(Cart).where(Cart.user_id == user_id, Cart.state == CartState.ACTIVE)
        if lock:
            # row lock held until the unit of work ends, serializes line read-modify-write
            stmt = stmt.with_for_update()
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def get_or_create_active_cart(self, session: AsyncSession, user_id: int, lock: bool = False) -> Cart:
        cart = await self.get_active_cart(session, user_id, lock=lock)
        if cart is not None:
            return cart

        # Atomic INSERT ... ON CONFLICT DO NOTHING: when another request created the
        # active cart first, uq_carts_user_active swallows ours and we read theirs.
        insert = _insert_for(session)
        stmt = (
            insert(Cart.__table__)
            .values(user_id=user_id, state=CartState.ACTIVE)
            .on_conflict_do_nothing()
        )
        result = await session.execute(stmt)
        if result.rowcount == 1:
            logger.info("cart created", user_id=user_id)

        cart = await self.get_active_cart(session, user_id, lock=lock)
        if cart is None:
            raise DatabaseError(f"Failed to create or find active cart for user {user_id}")
        return cart

    async def get_cart_with_lines(self, session: AsyncSession, user_id: int) -> Optional[Cart]:
        """Active cart with lines and their products (name, description, price, stock)."""
        res = await session.execute(
            select(Cart)
            .options(selectinload(Cart.lines).selectinload(CartLine.product))
            .where(Cart.user_id == user_id, Cart.state == CartState.ACTIVE)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def get_cart(self, session: AsyncSession, cart_id: int) -> Optional[Cart]:
        return await session.get(Cart, cart_id)

    async def set_state(self, session: AsyncSession, cart_id: int, state: CartState) -> Cart:
        cart = await session.get(Cart, cart_id, populate_existing=True)
        if cart is None:
            raise NotFoundError(f"Cart {cart_id} not found")
        cart.state = state
        await session.flush()
        return cart

    # 📦 lines

    async def get_line(self, session: AsyncSession, cart_id: int, product_id: int) -> Optional[CartLine]:
        res = await session.execute(
            select(CartLine)
            .where(CartLine.cart_id == cart_id, CartLine.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def upsert_line(self, session: AsyncSession, cart_id: int, product_id: int, quantity: int) -> None:
        """Replace the line quantity, inserting the line when missing. Never increments."""
        insert = _insert_for(session)
        stmt = insert(CartLine.__table__).values(cart_id=cart_id, product_id=product_id, quantity=quantity)
        stmt = stmt.on_conflict_do_update(
            index_elements=["cart_id", "product_id"],
            set_={"quantity": stmt.excluded.quantity},
        )
        await session.execute(stmt)

    async def delete_line(self, session: AsyncSession, line_id: int) -> bool:
        res = await session.execute(delete(CartLine).where(CartLine.id == line_id))
        return res.rowcount > 0

    async def delete_all_lines(self, session: AsyncSession, cart_id: int) -> int:
        res = await session.execute(delete(CartLine).where(CartLine.cart_id == cart_id))
        return res.rowcount

    async def line_amounts(self, session: AsyncSession, cart_id: int) -> List[Tuple[int, Decimal]]:
        """(quantity, live price) for every line of the cart."""
        res = await session.execute(
            select(CartLine.quantity, Product.price)
            .join(Product, CartLine.product_id == Product.id)
            .where(CartLine.cart_id == cart_id)
        )
        return [(qty, price) for qty, price in res.all()]
