import enum

from sqlalchemy import (
    Column, Integer, String, Text, ForeignKey, DateTime, func, text,
    Numeric, CheckConstraint, UniqueConstraint, Index, Enum,
)
from sqlalchemy.orm import relationship

from .database import Base


class CartState(str, enum.Enum):
    ACTIVE = "Active"
    CONVERTED = "Converted"
    ABANDONED = "Abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not CartState.ACTIVE

    def can_transition_to(self, target: "CartState") -> bool:
        """Active may become any state, Converted / Abandoned only stay as they are.

        CartService always addresses the user's active cart, so a finished cart
        is never loaded there; this rule guards every other caller.
        """
        if self.is_terminal:
            return target is self
        return True


# 🛍️ Product (catalog, read-only for the cart)
class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)         # 💰 exact money
    stock = Column(Integer, nullable=False, default=0)      # 📦 units available

    cart_lines = relationship("CartLine", back_populates="product", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_nonneg"),
        CheckConstraint("stock >= 0", name="ck_products_stock_nonneg"),
    )


# 🛒 Cart
class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    state = Column(
        Enum(
            CartState,
            name="cart_state",
            native_enum=False,
            length=16,
            values_callable=lambda states: [s.value for s in states],
        ),
        nullable=False,
        default=CartState.ACTIVE,
    )

    lines = relationship(
        "CartLine",
        back_populates="cart",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CartLine.id",
    )

    __table_args__ = (
        # 🚫 only one active cart per user
        Index(
            "uq_carts_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("state = 'Active'"),
            sqlite_where=text("state = 'Active'"),
        ),
        Index("ix_carts_user", "user_id"),
    )


class CartLine(Base):
    __tablename__ = "cart_lines"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False)

    cart = relationship("Cart", back_populates="lines")
    product = relationship("Product", back_populates="cart_lines")

    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_lines_cart_product"),  # 🚫 duplicates
        CheckConstraint("quantity > 0", name="ck_cart_lines_quantity_pos"),
    )
