from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field


class Unit(str, Enum):
    PIECES = "pieces"
    KG = "kg"
    GRAM = "gram"
    LITER = "liter"
    BOX = "box"
    FEET = "feet"
    CUBIC_FEET = "cubic-feet"
    SQUARE_FEET = "square-feet"
    METER = "meter"


def _require_name(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Product name is required")
    return value


ProductName = Annotated[str, Field(min_length=1, max_length=250), AfterValidator(_require_name)]


class ProductIn(BaseModel):
    name: ProductName
    price: Decimal = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    unit: Unit = Unit.PIECES
    category: str = ""
    description: str | None = None
    image_url: str | None = None


class ProductUpdate(BaseModel):
    name: ProductName | None = None
    price: Decimal | None = Field(default=None, ge=0)
    stock: int | None = Field(default=None, ge=0)
    unit: Unit | None = None
    category: str | None = None
    description: str | None = None
    image_url: str | None = None


class Product(ProductIn):
    id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CatalogResponse(BaseModel):
    products: list[Product]
    total_items: int
