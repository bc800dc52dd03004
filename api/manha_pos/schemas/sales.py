from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from manha_pos.schemas.inventory import Unit

CENT = Decimal("0.01")

FilterType = Literal["daily", "monthly", "yearly", "all"]


def money(value: Decimal) -> str:
    return str(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


class CartLine(BaseModel):
    product_id: str
    name: str
    price: Decimal
    unit: Unit = Unit.PIECES
    qty: int = Field(ge=0)


class CartItemInput(BaseModel):
    product_id: str


class CartQuantityInput(BaseModel):
    delta: int | None = None
    value: str | int | None = None

    @model_validator(mode="after")
    def _one_of(self):
        if (self.delta is None) == (self.value is None):
            raise ValueError("Provide exactly one of 'delta' or 'value'")
        return self


class CustomerInput(BaseModel):
    customer_name: str | None = None
    customer_mobile: str | None = None


class CartView(BaseModel):
    lines: list[CartLine]
    total: str
    item_count: int
    customer_name: str
    customer_mobile: str


class SaleItem(BaseModel):
    product_id: str | None = None
    name: str
    price: Decimal = Field(ge=0)
    qty: int = Field(ge=0)
    unit: Unit = Unit.PIECES


class Sale(BaseModel):
    id: str
    order_number: str
    items: list[SaleItem]
    total: Decimal
    item_count: int
    created_at: datetime | None = None
    date_str: str
    time_str: str | None = None
    customer_name: str = "Walk-in Customer"
    customer_mobile: str | None = None


class SaleEdit(BaseModel):
    order_number: str = Field(min_length=1)
    date_str: str = Field(min_length=1)
    customer_name: str = ""
    customer_mobile: str | None = None
    items: list[SaleItem]


class CheckoutRequest(BaseModel):
    customer_name: str | None = None
    customer_mobile: str | None = None


class ReceiptLine(BaseModel):
    name: str
    qty: int
    unit: Unit
    price: str
    line_total: str


class Receipt(BaseModel):
    sale_id: str
    order_number: str
    customer_name: str
    customer_mobile: str | None
    date_str: str
    time_str: str | None
    lines: list[ReceiptLine]
    item_count: int
    total: str


class CheckoutResponse(BaseModel):
    sale_id: str
    order_number: str
    total: str
    item_count: int
    receipt: Receipt


class ReportQuery(BaseModel):
    search: str = ""
    filter_type: FilterType = "all"
    filter_date: date | None = None
    filter_month: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}$")
    filter_year: int | None = None


class SalesReport(BaseModel):
    sales: list[Sale]
    revenue: str
    order_count: int
