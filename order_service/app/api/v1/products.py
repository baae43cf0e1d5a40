"""Product catalog endpoints"""

from typing import List, Optional

from fastapi import APIRouter, Query, status

from ...schemas.product import ProductCreate, ProductResponse, ProductUpdate
from ...services.product_service import ProductService
from ..deps import AdminEmailDep, CorrelationIdDep, ProductServiceDep

router = APIRouter(prefix="/products")


@router.get("", response_model=List[ProductResponse])
async def list_products(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    product_service: ProductService = ProductServiceDep,
):
    return await product_service.list_products(skip=skip, limit=limit)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: str, product_service: ProductService = ProductServiceDep
):
    return await product_service.get_product(product_id)


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    product_data: ProductCreate,
    admin_email: str = AdminEmailDep,
    correlation_id: Optional[str] = CorrelationIdDep,
    product_service: ProductService = ProductServiceDep,
):
    return await product_service.create_product(
        product_data, admin_email=admin_email, request_id=correlation_id
    )


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: str,
    product_data: ProductUpdate,
    admin_email: str = AdminEmailDep,
    correlation_id: Optional[str] = CorrelationIdDep,
    product_service: ProductService = ProductServiceDep,
):
    return await product_service.update_product(
        product_id, product_data, admin_email=admin_email, request_id=correlation_id
    )


@router.delete("/{product_id}", response_model=ProductResponse)
async def delete_product(
    product_id: str,
    admin_email: str = AdminEmailDep,
    correlation_id: Optional[str] = CorrelationIdDep,
    product_service: ProductService = ProductServiceDep,
):
    return await product_service.delete_product(
        product_id, admin_email=admin_email, request_id=correlation_id
    )
