# storefront/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import CartState

T = TypeVar("T")


# 🛍️ Product
class ProductBase(BaseModel):
    name: str
    description: Optional[str] = None
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    stock: int = Field(default=0, ge=0)


class ProductCreate(ProductBase):
    pass


class ProductOut(ProductBase):
    id: int
    model_config = ConfigDict(from_attributes=True)


# 🛒 Cart view (camelCase on the wire)
class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CartLineView(_CamelModel):
    line_id: int
    product_id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    price_formatted: str
    quantity: int
    stock_available: int
    subtotal: Decimal
    subtotal_formatted: str
    has_stock: bool


class CartView(_CamelModel):
    id: int
    user_id: int
    created_at: Optional[datetime] = None
    state: CartState
    items: List[CartLineView] = []
    total: Decimal = Decimal("0.00")
    total_formatted: str = "$0.00"
    item_count: int = 0
    unit_count: int = 0


class CartStateChange(_CamelModel):
    cart_id: int
    state: CartState


class CartTotal(_CamelModel):
    cart_id: int
    total: Decimal
    total_formatted: str


# 📦 Requests
class AddItemRequest(BaseModel):
    user_id: int
    product_id: int
    quantity: int = 1


class SetQuantityRequest(BaseModel):
    user_id: int
    quantity: int


class CartStateRequest(BaseModel):
    user_id: int
    state: str


# 📊 Response envelope ({"success": true, "data": ...})
class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: T

