import logging
from typing import Callable, TypeVar

from pydantic import BaseModel, ValidationError

from manha_pos.db.documents import Document, DocumentStore
from manha_pos.schemas.inventory import Product
from manha_pos.schemas.sales import Sale
from manha_pos.services.reporting import sort_sales

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _decode(model: type[M], docs: list[Document]) -> list[M]:
    decoded = []
    for doc in docs:
        try:
            decoded.append(model.model_validate(doc.to_dict()))
        except ValidationError as exc:
            logger.warning(f"Skipping malformed {model.__name__} document {doc.id}: {exc}")
    return decoded


class LiveSync:
    """
    Mirrors the products and sales collections of one terminal.

    Snapshots are replaced wholesale on every callback. Sales written locally
    sit in a pending overlay until a snapshot containing their id arrives.
    """

    def __init__(self, store: DocumentStore, products_path: str, sales_path: str):
        self.products_path = products_path
        self.sales_path = sales_path
        self._store = store
        self._products: list[Product] = []
        self._sales: list[Sale] = []
        self._pending: dict[str, Sale] = {}
        self._product_listeners: list[Callable[[], None]] = []
        self._unsubscribers: list[Callable[[], None]] = []

    def start(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._store.subscribe(self.products_path, self._on_products),
            self._store.subscribe(self.sales_path, self._on_sales),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    @property
    def is_running(self) -> bool:
        return bool(self._unsubscribers)

    @property
    def products(self) -> list[Product]:
        return list(self._products)

    def product(self, product_id: str) -> Product | None:
        return next((p for p in self._products if p.id == product_id), None)

    @property
    def sales(self) -> list[Sale]:
        return sort_sales([*self._pending.values(), *self._sales])

    def sale(self, sale_id: str) -> Sale | None:
        return next((s for s in self.sales if s.id == sale_id), None)

    @property
    def pending_ids(self) -> set[str]:
        return set(self._pending)

    def on_products_changed(self, callback: Callable[[], None]) -> None:
        self._product_listeners.append(callback)

    def add_pending(self, sale: Sale) -> None:
        if any(s.id == sale.id for s in self._sales):
            return
        self._pending[sale.id] = sale

    def _on_products(self, docs: list[Document]) -> None:
        products = _decode(Product, docs)
        self._products = sorted(products, key=lambda p: p.name.casefold())
        for callback in self._product_listeners:
            callback()

    def _on_sales(self, docs: list[Document]) -> None:
        sales = _decode(Sale, docs)
        arrived = {s.id for s in sales}
        for sale_id in list(self._pending):
            if sale_id in arrived:
                del self._pending[sale_id]
        self._sales = sales
