from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from manha_pos.schemas.inventory import Product
from manha_pos.schemas.sales import Sale


class BackupDump(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[Product]
    sales: list[Sale]
    exported_at: datetime = Field(alias="exportedAt")


class RestoreResponse(BaseModel):
    products: int
    sales: int
