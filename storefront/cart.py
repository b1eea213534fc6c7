# storefront/cart.py
from fastapi import APIRouter, Depends, Query, Request

from .cart_service import CartService, format_money
from .schemas import (
    AddItemRequest,
    CartStateChange,
    CartStateRequest,
    CartTotal,
    CartView,
    Envelope,
    SetQuantityRequest,
)

router = APIRouter(prefix="/api/cart", tags=["cart"])


def get_cart_service(request: Request) -> CartService:
    # built once at startup, see main.lifespan
    return request.app.state.cart_service


# user_id travels with the request until auth is wired in front of the cart
@router.get("", response_model=Envelope[CartView])
async def get_cart(
    user_id: int = Query(..., gt=0),
    service: CartService = Depends(get_cart_service),
):
    return Envelope(data=await service.view_cart(user_id))


@router.post("/items", response_model=Envelope[CartView])
async def add_to_cart(
    payload: AddItemRequest,
    service: CartService = Depends(get_cart_service),
):
    cart = await service.add_item(payload.user_id, payload.product_id, payload.quantity)
    return Envelope(message="Product added to cart", data=cart)


@router.put("/items/{product_id}", response_model=Envelope[CartView])
async def update_cart_item(
    product_id: int,
    payload: SetQuantityRequest,
    service: CartService = Depends(get_cart_service),
):
    cart = await service.set_item_quantity(payload.user_id, product_id, payload.quantity)
    return Envelope(message="Quantity updated", data=cart)


@router.delete("/items/{product_id}", response_model=Envelope[CartView])
async def remove_cart_item(
    product_id: int,
    user_id: int = Query(..., gt=0),
    service: CartService = Depends(get_cart_service),
):
    cart = await service.remove_item(user_id, product_id)
    return Envelope(message="Product removed from cart", data=cart)


@router.delete("", response_model=Envelope[CartView])
async def clear_cart(
    user_id: int = Query(..., gt=0),
    service: CartService = Depends(get_cart_service),
):
    cart = await service.clear(user_id)
    return Envelope(message="Cart cleared", data=cart)


@router.patch("/state", response_model=Envelope[CartStateChange])
async def change_cart_state(
    payload: CartStateRequest,
    service: CartService = Depends(get_cart_service),
):
    change = await service.set_cart_state(payload.user_id, payload.state)
    return Envelope(message="Cart state updated", data=change)


@router.get("/{cart_id}/total", response_model=Envelope[CartTotal])
async def get_cart_total(
    cart_id: int,
    service: CartService = Depends(get_cart_service),
):
    total = await service.compute_total(cart_id)
    return Envelope(data=CartTotal(cart_id=cart_id, total=total, total_formatted=format_money(total)))
