import math
import re
from decimal import Decimal
from typing import Callable

from manha_pos.schemas.inventory import Product
from manha_pos.schemas.sales import CartLine

LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_quantity(value: str | int | float | None) -> int:
    """Read a typed quantity the way a number input does: leading digits or 0."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    match = LEADING_INT.match(str(value))
    return int(match.group(1)) if match else 0


class Cart:
    """
    Lines of the sale being built, keyed by product id in insertion order.

    ``live_product`` returns the latest catalog snapshot of a product; stock
    ceilings are always taken from it rather than from the line's own copy.
    """

    def __init__(self, live_product: Callable[[str], Product | None]):
        self._live_product = live_product
        self._lines: dict[str, CartLine] = {}

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    def line(self, product_id: str) -> CartLine | None:
        return self._lines.get(product_id)

    def add(self, product: Product) -> CartLine | None:
        if product.stock <= 0:
            return None

        line = self._lines.get(product.id)
        if line is None:
            line = CartLine(
                product_id=product.id,
                name=product.name,
                price=product.price,
                unit=product.unit,
                qty=1,
            )
            self._lines[product.id] = line
        elif line.qty < product.stock:
            line.qty += 1
        else:
            line.qty = product.stock
        return line

    def remove(self, product_id: str) -> None:
        self._lines.pop(product_id, None)

    def adjust_quantity(self, product_id: str, delta: int) -> CartLine | None:
        line = self._lines.get(product_id)
        if line is None:
            return None

        new_qty = line.qty + delta
        if new_qty <= 0:
            del self._lines[product_id]
            return None
        line.qty = self._clamp(product_id, new_qty)
        return line

    def set_quantity(self, product_id: str, value: str | int | float | None) -> CartLine | None:
        # Typed input never drops the line, even at 0; only stepping down does.
        line = self._lines.get(product_id)
        if line is None:
            return None
        line.qty = self._clamp(product_id, parse_quantity(value))
        return line

    def total(self) -> Decimal:
        return sum((line.price * line.qty for line in self._lines.values()), Decimal("0"))

    def item_count(self) -> int:
        return sum(line.qty for line in self._lines.values())

    def clear(self) -> None:
        self._lines.clear()

    def reconcile(self) -> None:
        """Pull lines back under the stock of the latest catalog snapshot."""
        for line in self._lines.values():
            live = self._live_product(line.product_id)
            if live is not None and line.qty > live.stock:
                line.qty = max(live.stock, 0)

    def _clamp(self, product_id: str, qty: int) -> int:
        live = self._live_product(product_id)
        if live is not None and qty > live.stock:
            return live.stock
        return max(1, qty)
