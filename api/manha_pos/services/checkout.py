"""
Checkout - turn the terminal's cart into a recorded sale.

The sale document and every stock deduction are written in one store
transaction:
1. Allocate an order number not used by any recorded sale
2. Add the sale (server timestamp assigned at commit)
3. Re-read each product and write ``max(0, stock - qty)`` guarded by the
   version just read
4. Any failure rolls everything back; version conflicts retry the whole unit
"""
import logging
import random
from datetime import datetime
from typing import Callable

from manha_pos.core.config import Settings
from manha_pos.core.errors import AuthError, NotFoundError, StoreError
from manha_pos.db.documents import SERVER_TIMESTAMP, DocumentStore, Transaction
from manha_pos.schemas.sales import Sale, SaleItem, money
from manha_pos.services.lock import AppLock
from manha_pos.services.terminal import Terminal

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 20


def generate_order_number(rng: random.Random | None = None) -> str:
    return f"ORD-{(rng or random).randint(100000, 999999)}"


def format_sale_clock(now: datetime) -> tuple[str, str]:
    """Return the receipt's display date (``3/15/2024``) and 12-hour time (``2:05 PM``)."""
    hour = now.hour % 12 or 12
    meridiem = "AM" if now.hour < 12 else "PM"
    return f"{now.month}/{now.day}/{now.year}", f"{hour}:{now.minute:02d} {meridiem}"


class CheckoutService:
    def __init__(
        self,
        store: DocumentStore,
        lock: AppLock,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ):
        self._store = store
        self._lock = lock
        self._settings = settings
        self._clock = clock or datetime.now
        self._rng = rng or random.Random()

    def checkout(self, terminal: Terminal) -> Sale | None:
        """
        Record the cart as a sale and deduct stock.

        Returns None without writing anything when the cart is empty.

        Raises:
            LockedError: the app is locked
            AuthError: no signed-in session
            NotFoundError: a product in the cart no longer exists
            StoreError: the store rejected the write (nothing was applied)
        """
        self._lock.require_unlocked("process sales")
        if not terminal.uid:
            raise AuthError("Sign in before processing sales")

        cart = terminal.cart
        if not cart.lines:
            logger.info("Checkout skipped: cart is empty")
            return None

        date_str, time_str = format_sale_clock(self._clock())
        draft = Sale(
            id="",
            order_number="",
            items=[
                SaleItem(
                    product_id=line.product_id,
                    name=line.name,
                    price=line.price,
                    qty=line.qty,
                    unit=line.unit,
                )
                for line in cart.lines
            ],
            total=cart.total(),
            item_count=cart.item_count(),
            date_str=date_str,
            time_str=time_str,
            customer_name=terminal.customer_name.strip() or self._settings.default_customer_name,
            customer_mobile=terminal.customer_mobile.strip() or None,
        )

        def commit(txn: Transaction) -> tuple[str, str]:
            order_number = self._allocate_order_number(txn, terminal.sales_path)
            data = draft.model_dump(mode="json", exclude={"id"})
            data.update(order_number=order_number, created_at=SERVER_TIMESTAMP)
            sale_id = txn.add(terminal.sales_path, data)

            for item in draft.items:
                doc = txn.get(terminal.products_path, item.product_id)
                if doc is None:
                    raise NotFoundError(f"Product no longer exists: {item.name}")
                known_stock = int(doc.data.get("stock") or 0)
                if item.qty > known_stock:
                    logger.warning(
                        f"Sale {order_number} oversells {item.name}: "
                        f"requested {item.qty}, stock {known_stock}"
                    )
                txn.update(
                    terminal.products_path,
                    item.product_id,
                    {"stock": max(0, known_stock - item.qty), "updated_at": SERVER_TIMESTAMP},
                    expected_version=doc.version,
                )
            return sale_id, order_number

        try:
            sale_id, order_number = self._store.run_transaction(commit)
        except (NotFoundError, StoreError) as exc:
            logger.error(f"Checkout failed for user {terminal.uid}: {exc}")
            raise

        sale = draft.model_copy(update={"id": sale_id, "order_number": order_number})
        terminal.complete_sale(sale)
        logger.info(
            f"Recorded sale {order_number} ({sale.item_count} items, total {money(sale.total)})"
        )
        return sale

    def _allocate_order_number(self, txn: Transaction, sales_path: str) -> str:
        taken = {doc.data.get("order_number") for doc in txn.documents(sales_path)}
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number(self._rng)
            if candidate not in taken:
                return candidate
        raise StoreError("Could not allocate a unique order number")
