# storefront/cart_service.py
"""Cart business rules.

Orchestrates the product catalog and the cart store: quantity validation,
merge arithmetic, the stock bound, totals and state transitions. Each public
operation runs in a single unit of work; mutations lock the cart row first so
the read of the current quantity and the write of the new one cannot interleave
with another request on the same cart. Validation failures roll back, nothing
is left half-written.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from .cart_store import CartStore
from .catalog import ProductCatalog
from .errors import NotFoundError, ValidationError
from .logging import get_logger
from .models import Cart, CartState, Product
from .schemas import CartLineView, CartStateChange, CartView

logger = get_logger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value) -> str:
    return f"${to_money(value):.2f}"


def sum_lines(amounts: Iterable[Tuple[int, Decimal]]) -> Decimal:
    """Σ quantity × price, exact decimal arithmetic."""
    total = Decimal("0.00")
    for quantity, price in amounts:
        total += to_money(price) * quantity
    return to_money(total)


def require_quantity(quantity) -> int:
    # bool is an int subclass, True must not pass as 1
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity must be an integer greater than 0")
    return quantity


def parse_state(state: Union[CartState, str]) -> CartState:
    if isinstance(state, CartState):
        return state
    try:
        return CartState(state)
    except (ValueError, TypeError):
        allowed = ", ".join(s.value for s in CartState)
        raise ValidationError(
            f"Invalid cart state {state!r}. Must be one of: {allowed}",
            details={"allowed": [s.value for s in CartState]},
        ) from None


class CartService:
    def __init__(self, store: CartStore, catalog: ProductCatalog):
        self.store = store
        self.catalog = catalog

    # 🧾 views

    async def view_cart(self, user_id: int) -> CartView:
        async with self.store.unit_of_work() as session:
            return await self._view(session, user_id)

    async def compute_total(self, cart_id: int) -> Decimal:
        async with self.store.unit_of_work() as session:
            cart = await self.store.get_cart(session, cart_id)
            if cart is None:
                raise NotFoundError("Cart not found", details={"cart_id": cart_id})
            return sum_lines(await self.store.line_amounts(session, cart_id))

    # ➕ mutations

    async def add_item(self, user_id: int, product_id: int, quantity: int = 1) -> CartView:
        quantity = require_quantity(quantity)
        async with self.store.unit_of_work() as session:
            product = await self._require_product(session, product_id)
            cart = await self.store.get_or_create_active_cart(session, user_id, lock=True)

            line = await self.store.get_line(session, cart.id, product_id)
            in_cart = line.quantity if line else 0
            new_quantity = in_cart + quantity  # merge, not replace

            if new_quantity > product.stock:
                logger.warning(
                    "insufficient stock",
                    user_id=user_id, product_id=product_id,
                    available=product.stock, in_cart=in_cart, requested=quantity,
                )
                raise ValidationError(
                    f"Insufficient stock. Available: {product.stock}, in cart: {in_cart}, requested: {quantity}",
                    details={"available": product.stock, "in_cart": in_cart, "requested": quantity},
                )

            await self.store.upsert_line(session, cart.id, product_id, new_quantity)
            logger.info("cart item added", user_id=user_id, cart_id=cart.id,
                        product_id=product_id, quantity=new_quantity)
            return await self._view(session, user_id)

    async def set_item_quantity(self, user_id: int, product_id: int, quantity: int) -> CartView:
        quantity = require_quantity(quantity)
        async with self.store.unit_of_work() as session:
            product = await self._require_product(session, product_id)
            if quantity > product.stock:
                raise ValidationError(
                    f"Insufficient stock. Available: {product.stock}, requested: {quantity}",
                    details={"available": product.stock, "requested": quantity},
                )

            cart = await self._require_active_cart(session, user_id)
            line = await self.store.get_line(session, cart.id, product_id)
            if line is None:
                raise NotFoundError("Product is not in the cart", details={"product_id": product_id})

            await self.store.upsert_line(session, cart.id, product_id, quantity)
            logger.info("cart item quantity set", user_id=user_id, cart_id=cart.id,
                        product_id=product_id, quantity=quantity)
            return await self._view(session, user_id)

    async def remove_item(self, user_id: int, product_id: int) -> CartView:
        async with self.store.unit_of_work() as session:
            cart = await self._require_active_cart(session, user_id)
            line = await self.store.get_line(session, cart.id, product_id)
            if line is None:
                raise NotFoundError("Product is not in the cart", details={"product_id": product_id})

            await self.store.delete_line(session, line.id)
            logger.info("cart item removed", user_id=user_id, cart_id=cart.id, product_id=product_id)
            return await self._view(session, user_id)

    async def clear(self, user_id: int) -> CartView:
        async with self.store.unit_of_work() as session:
            cart = await self.store.get_or_create_active_cart(session, user_id, lock=True)
            removed = await self.store.delete_all_lines(session, cart.id)
            logger.info("cart cleared", user_id=user_id, cart_id=cart.id, removed_lines=removed)
            return await self._view(session, user_id)

    async def set_cart_state(self, user_id: int, state: Union[CartState, str]) -> CartStateChange:
        target = parse_state(state)
        async with self.store.unit_of_work() as session:
            cart = await self.store.get_or_create_active_cart(session, user_id, lock=True)
            current = cart.state
            if not current.can_transition_to(target):
                raise ValidationError(
                    f"Cart {cart.id} is {current.value} and cannot become {target.value}",
                    details={"current": current.value, "requested": target.value},
                )
            if target is not current:
                await self.store.set_state(session, cart.id, target)
                logger.info("cart state changed", user_id=user_id, cart_id=cart.id,
                            previous=current.value, state=target.value)
            return CartStateChange(cart_id=cart.id, state=target)

    # helpers

    async def _require_product(self, session: AsyncSession, product_id: int) -> Product:
        product = await self.catalog.find_by_id(session, product_id)
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        return product

    async def _require_active_cart(self, session: AsyncSession, user_id: int) -> Cart:
        cart = await self.store.get_active_cart(session, user_id, lock=True)
        if cart is None:
            raise NotFoundError("No active cart found", details={"user_id": user_id})
        return cart

    async def _view(self, session: AsyncSession, user_id: int) -> CartView:
        # lines were written with core statements, drop stale ORM copies before reading
        session.expunge_all()
        cart = await self.store.get_or_create_active_cart(session, user_id)
        detailed = await self.store.get_cart_with_lines(session, user_id)
        if detailed is None:
            return self._render(cart, [])
        return self._render(detailed, detailed.lines)

    @staticmethod
    def _render(cart: Cart, lines) -> CartView:
        items = []
        for line in lines:
            product = line.product
            price = to_money(product.price)
            subtotal = to_money(price * line.quantity)
            items.append(CartLineView(
                line_id=line.id,
                product_id=product.id,
                name=product.name,
                description=product.description,
                price=price,
                price_formatted=format_money(price),
                quantity=line.quantity,
                stock_available=product.stock,
                subtotal=subtotal,
                subtotal_formatted=format_money(subtotal),
                has_stock=product.stock >= line.quantity,
            ))

        total = sum_lines((item.quantity, item.price) for item in items)
        return CartView(
            id=cart.id,
            user_id=cart.user_id,
            created_at=cart.created_at,
            state=cart.state,
            items=items,
            total=total,
            total_formatted=format_money(total),
            item_count=len(items),
            unit_count=sum(item.quantity for item in items),
        )
