from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.order import Order


class OrderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_order(
        self,
        customer_email: str,
        order_id: str,
        payment_method: str,
        shipping_type: str,
        carrier: str,
        total_price: Decimal,
        product_codes: List[str],
        products: List[Dict[str, Any]],
        created_timestamp: int,
    ) -> Order:
        order = Order(
            customer_email=customer_email,
            order_id=order_id,
            payment_method=payment_method,
            shipping_type=shipping_type,
            carrier=carrier,
            total_price=total_price,
            product_codes=product_codes,
            products=products,
            created_timestamp=created_timestamp,
        )
        self.session.add(order)
        await self.session.commit()
        await self.session.refresh(order)
        return order

    async def get_order(self, customer_email: str, order_id: str) -> Optional[Order]:
        return await self.session.get(Order, (customer_email, order_id))

    async def get_orders_by_email(
        self, customer_email: str, skip: int = 0, limit: Optional[int] = None
    ) -> List[Order]:
        query = (
            select(Order)
            .where(Order.customer_email == customer_email)
            .order_by(Order.created_timestamp, Order.order_id)
            .offset(skip)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_all_orders(self, skip: int = 0, limit: int = 100) -> List[Order]:
        query = (
            select(Order)
            .order_by(Order.customer_email, Order.created_timestamp, Order.order_id)
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def delete_order(self, order: Order) -> None:
        await self.session.delete(order)
        await self.session.commit()
