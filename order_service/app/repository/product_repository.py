import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.product import Product


class ProductRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_product(
        self,
        name: str,
        code: str,
        price: Decimal,
        model: Optional[str] = None,
        url: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> Product:
        product = Product(
            id=product_id or uuid.uuid4().hex,
            name=name,
            code=code,
            price=price,
            model=model,
            url=url,
        )
        self.session.add(product)
        await self.session.commit()
        await self.session.refresh(product)
        return product

    async def get_product_by_id(self, product_id: str) -> Optional[Product]:
        return await self.session.get(Product, product_id)

    async def get_products_by_ids(self, product_ids: Sequence[str]) -> Dict[str, Product]:
        """Fetch the distinct ids in one query, keyed by id; absent ids are omitted"""
        if not product_ids:
            return {}
        result = await self.session.execute(
            select(Product).where(Product.id.in_(set(product_ids)))
        )
        return {product.id: product for product in result.scalars().all()}

    async def list_products(self, skip: int = 0, limit: int = 100) -> List[Product]:
        result = await self.session.execute(
            select(Product).order_by(Product.code, Product.id).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def update_product(
        self, product_id: str, update_data: Dict[str, Any]
    ) -> Optional[Product]:
        product = await self.get_product_by_id(product_id)
        if product is None:
            return None
        for field, value in update_data.items():
            setattr(product, field, value)
        await self.session.commit()
        await self.session.refresh(product)
        return product

    async def delete_product(self, product_id: str) -> Optional[Product]:
        product = await self.get_product_by_id(product_id)
        if product is None:
            return None
        await self.session.delete(product)
        await self.session.commit()
        return product
