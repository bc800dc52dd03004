import logging
from typing import Iterable

from manha_pos.core.errors import PosValidationError
from manha_pos.db.documents import SERVER_TIMESTAMP, DocumentStore
from manha_pos.schemas.inventory import Product, ProductIn, ProductUpdate
from manha_pos.services.lock import AppLock
from manha_pos.services.terminal import Terminal

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "price", "stock", "unit")


def search_products(products: Iterable[Product], term: str) -> list[Product]:
    needle = term.strip().lower()
    return [p for p in products if needle in p.name.lower()]


class CatalogService:
    def __init__(self, store: DocumentStore, lock: AppLock):
        self._store = store
        self._lock = lock

    def add_product(self, terminal: Terminal, payload: ProductIn) -> Product:
        data = payload.model_dump(mode="json")
        data.update(created_at=SERVER_TIMESTAMP, updated_at=SERVER_TIMESTAMP)
        product_id = self._store.add(terminal.products_path, data)
        logger.info(f"Added product {payload.name} ({product_id})")
        return terminal.sync.product(product_id) or Product(id=product_id, **payload.model_dump())

    def update_product(self, terminal: Terminal, product_id: str, payload: ProductUpdate) -> Product | None:
        fields = payload.model_dump(mode="json", exclude_unset=True)
        if not fields:
            raise PosValidationError("Nothing to update")
        cleared = [name for name in REQUIRED_FIELDS if name in fields and fields[name] is None]
        if cleared:
            raise PosValidationError(f"Required fields cannot be cleared: {', '.join(cleared)}")

        fields["updated_at"] = SERVER_TIMESTAMP
        self._store.update(terminal.products_path, product_id, fields)
        logger.info(f"Updated product {product_id}: {sorted(fields)}")
        return terminal.sync.product(product_id)

    def delete_product(self, terminal: Terminal, product_id: str) -> None:
        self._lock.require_unlocked("delete items")
        self._store.delete(terminal.products_path, product_id)
        terminal.cart.remove(product_id)
        logger.info(f"Deleted product {product_id}")
