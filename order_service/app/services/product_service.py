"""
Product catalog administration.

Every mutation is recorded as a product event under the product's partition
of the events table, tagged with the acting admin's email.
"""

import time
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProductNotFoundError, StoreUnavailable, ValidationError
from ..events.schemas import ProductEvent, ProductEventType
from ..models.product import Product
from ..repository.order_event_repository import ProductEventRepository
from ..repository.product_repository import ProductRepository
from ..schemas.product import ProductCreate, ProductUpdate
from ..utils.logging import setup_order_logging

logger = setup_order_logging("order_service.products")


class ProductService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.product_repository = ProductRepository(session)
        self.event_repository = ProductEventRepository(session)

    async def create_product(
        self, product_data: ProductCreate, admin_email: str, request_id: Optional[str] = None
    ) -> Product:
        self._require_admin(admin_email)
        try:
            product = await self.product_repository.create_product(
                name=product_data.name,
                code=product_data.code,
                price=product_data.price,
                model=product_data.model,
                url=product_data.url,
            )
        except SQLAlchemyError as e:
            raise await self._store_failure("create_product", e) from e

        logger.info(
            "Product created",
            extra={"product_id": product.id, "code": product.code, "admin": admin_email},
        )
        await self._record_event(
            product, ProductEventType.PRODUCT_CREATED, admin_email, request_id
        )
        return product

    async def get_product(self, product_id: str) -> Product:
        product = await self.product_repository.get_product_by_id(product_id)
        if product is None:
            raise ProductNotFoundError([product_id])
        return product

    async def list_products(self, skip: int = 0, limit: int = 100) -> List[Product]:
        return await self.product_repository.list_products(skip=skip, limit=limit)

    async def update_product(
        self,
        product_id: str,
        product_data: ProductUpdate,
        admin_email: str,
        request_id: Optional[str] = None,
    ) -> Product:
        self._require_admin(admin_email)
        update_data = product_data.model_dump(exclude_unset=True)
        try:
            product = await self.product_repository.update_product(product_id, update_data)
        except SQLAlchemyError as e:
            raise await self._store_failure("update_product", e) from e
        if product is None:
            raise ProductNotFoundError([product_id])

        logger.info(
            "Product updated",
            extra={
                "product_id": product_id,
                "fields": sorted(update_data),
                "admin": admin_email,
            },
        )
        await self._record_event(
            product, ProductEventType.PRODUCT_UPDATED, admin_email, request_id
        )
        return product

    async def delete_product(
        self, product_id: str, admin_email: str, request_id: Optional[str] = None
    ) -> Product:
        self._require_admin(admin_email)
        try:
            product = await self.product_repository.delete_product(product_id)
        except SQLAlchemyError as e:
            raise await self._store_failure("delete_product", e) from e
        if product is None:
            raise ProductNotFoundError([product_id])

        logger.info(
            "Product deleted", extra={"product_id": product_id, "admin": admin_email}
        )
        await self._record_event(
            product, ProductEventType.PRODUCT_DELETED, admin_email, request_id
        )
        return product

    @staticmethod
    def _require_admin(admin_email: str) -> None:
        if not admin_email:
            raise ValidationError(
                "Acting admin email is required", details={"header": "X-User-Email"}
            )

    async def _record_event(
        self,
        product: Product,
        event_type: ProductEventType,
        admin_email: str,
        request_id: Optional[str],
    ) -> None:
        event = ProductEvent(
            event_type=event_type,
            product_id=product.id,
            product_code=product.code,
            product_price=product.price,
            email=admin_email,
            request_id=request_id,
            timestamp=int(time.time() * 1000),
        )
        try:
            await self.event_repository.append(event)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                f"Failed to record {event_type.value} event: {e}",
                extra={"product_id": product.id, "request_id": request_id},
            )

    async def _store_failure(
        self, operation: str, error: SQLAlchemyError
    ) -> StoreUnavailable:
        await self.session.rollback()
        logger.error(
            f"Catalog store failure during {operation}: {error}",
            extra={"operation": operation},
        )
        return StoreUnavailable(
            "Product store is temporarily unavailable", details={"operation": operation}
        )
