from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from ..models.order import Carrier, Order, PaymentMethod, ShippingType


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ShippingRequest(CamelModel):
    type: ShippingType = ShippingType.ECONOMIC
    carrier: Carrier = Carrier.FEDEX


class CreateOrderRequest(CamelModel):
    email: EmailStr = Field(..., examples=["alice@example.com"])
    product_ids: List[str] = Field(..., min_length=1, examples=[["P1", "P2"]])
    payment: PaymentMethod
    shipping: ShippingRequest = Field(default_factory=ShippingRequest)


class OrderProductResponse(CamelModel):
    code: str
    price: Decimal


class OrderBillingResponse(CamelModel):
    payment: str
    total_price: Decimal


class OrderShippingResponse(CamelModel):
    type: str
    carrier: str


class OrderResponse(CamelModel):
    email: str
    id: str
    created_at: int
    product_codes: List[str]
    billing: OrderBillingResponse
    shipping: OrderShippingResponse
    products: Optional[List[OrderProductResponse]] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            email=order.customer_email,
            id=order.order_id,
            created_at=order.created_timestamp,
            product_codes=list(order.product_codes),
            billing=OrderBillingResponse(
                payment=order.payment_method, total_price=order.total_price
            ),
            shipping=OrderShippingResponse(
                type=order.shipping_type, carrier=order.carrier
            ),
            products=[OrderProductResponse(**line) for line in order.products],
        )
