import logging
from decimal import Decimal
from typing import Iterable

from manha_pos.db.documents import DocumentStore
from manha_pos.schemas.sales import Receipt, ReceiptLine, Sale, SaleEdit, SaleItem, money
from manha_pos.services.lock import AppLock
from manha_pos.services.terminal import Terminal

logger = logging.getLogger(__name__)


def recompute_totals(items: Iterable[SaleItem]) -> tuple[Decimal, int]:
    items = list(items)
    total = sum((item.price * item.qty for item in items), Decimal("0"))
    return total, sum(item.qty for item in items)


def build_receipt(sale: Sale, default_customer_name: str = "Walk-in Customer") -> Receipt:
    return Receipt(
        sale_id=sale.id,
        order_number=sale.order_number,
        customer_name=sale.customer_name or default_customer_name,
        customer_mobile=sale.customer_mobile,
        date_str=sale.date_str,
        time_str=sale.time_str,
        lines=[
            ReceiptLine(
                name=item.name,
                qty=item.qty,
                unit=item.unit,
                price=money(item.price),
                line_total=money(item.price * item.qty),
            )
            for item in sale.items
        ],
        item_count=sale.item_count,
        total=money(sale.total),
    )


class SalesService:
    def __init__(self, store: DocumentStore, lock: AppLock):
        self._store = store
        self._lock = lock

    def edit_sale(self, terminal: Terminal, sale_id: str, edit: SaleEdit) -> Sale:
        """
        Rewrite a recorded sale. Total and item count are always recomputed
        from the edited items; stock levels are left alone.
        """
        self._lock.require_unlocked("edit sales")
        total, item_count = recompute_totals(edit.items)

        fields = edit.model_dump(mode="json")
        fields.update(total=str(total), item_count=item_count)
        self._store.update(terminal.sales_path, sale_id, fields)
        logger.info(f"Edited sale {sale_id}: {edit.order_number}, total {money(total)}")

        updated = terminal.sync.sale(sale_id)
        if updated is None:
            base = terminal.receipt if terminal.receipt and terminal.receipt.id == sale_id else None
            updated = Sale(
                id=sale_id,
                created_at=base.created_at if base else None,
                time_str=base.time_str if base else None,
                total=total,
                item_count=item_count,
                **edit.model_dump(),
            )
        if terminal.receipt is not None and terminal.receipt.id == sale_id:
            terminal.receipt = updated
        return updated

    def delete_sale(self, terminal: Terminal, sale_id: str) -> None:
        self._lock.require_unlocked("delete sales")
        self._store.delete(terminal.sales_path, sale_id)
        if terminal.receipt is not None and terminal.receipt.id == sale_id:
            terminal.close_receipt()
        logger.info(f"Deleted sale {sale_id}")
