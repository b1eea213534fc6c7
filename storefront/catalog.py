# storefront/catalog.py
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Product


class ProductCatalog:
    """Read-only product lookups used by the cart. Stock is never written here."""

    async def find_by_id(self, session: AsyncSession, product_id: int) -> Optional[Product]:
        res = await session.execute(select(Product).where(Product.id == product_id))
        return res.scalar_one_or_none()
