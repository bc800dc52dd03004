from datetime import datetime

from manha_pos.core.errors import NotFoundError
from manha_pos.schemas.sales import Sale
from manha_pos.services.cart import Cart
from manha_pos.services.sync import LiveSync


class Terminal:
    """Per-session state: live snapshots, the cart, customer fields and the open receipt."""

    def __init__(self, uid: str, sync: LiveSync):
        self.uid = uid
        self.sync = sync
        self.cart = Cart(sync.product)
        self.sync.on_products_changed(self.cart.reconcile)
        self.customer_name = ""
        self.customer_mobile = ""
        self.receipt: Sale | None = None
        self.expires_at: datetime | None = None

    @property
    def products_path(self) -> str:
        return self.sync.products_path

    @property
    def sales_path(self) -> str:
        return self.sync.sales_path

    def set_customer(self, name: str | None = None, mobile: str | None = None) -> None:
        if name is not None:
            self.customer_name = name
        if mobile is not None:
            self.customer_mobile = mobile

    def complete_sale(self, sale: Sale) -> None:
        self.cart.clear()
        self.customer_name = ""
        self.customer_mobile = ""
        self.sync.add_pending(sale)
        self.receipt = sale

    def view_sale(self, sale_id: str) -> Sale:
        sale = self.sync.sale(sale_id)
        if sale is None:
            raise NotFoundError(f"Sale not found: {sale_id}")
        self.receipt = sale
        return sale

    def close_receipt(self) -> None:
        self.receipt = None

    def close(self) -> None:
        self.sync.close()
