from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProductBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    name: str = Field(..., min_length=1, max_length=255, alias="productName")
    code: str = Field(..., min_length=1, max_length=50)
    model: Optional[str] = Field(None, max_length=100)
    url: Optional[str] = Field(None, max_length=500, alias="productUrl")
    price: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, min_length=1, max_length=255, alias="productName")
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    model: Optional[str] = Field(None, max_length=100)
    url: Optional[str] = Field(None, max_length=500, alias="productUrl")
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)

    @field_validator("name", "code", "price", mode="before")
    @classmethod
    def reject_null(cls, v):
        # Omit a field to keep it; these columns cannot be cleared
        if v is None:
            raise ValueError("Field cannot be null")
        return v


class ProductResponse(ProductBase):
    id: str
