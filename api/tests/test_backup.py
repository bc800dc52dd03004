import json
import random
from datetime import datetime, timezone

import pytest

from manha_pos.core.errors import LockedError, PosValidationError
from manha_pos.db.documents import DocumentStore
from manha_pos.db.session import build_engine, make_session_factory
from manha_pos.services.backup import (
    backup_filename,
    dump_backup,
    export_backup,
    parse_backup,
    restore_backup,
)
from manha_pos.services.checkout import CheckoutService
from manha_pos.services.sync import LiveSync
from manha_pos.services.terminal import Terminal

EXPORTED_AT = datetime(2024, 3, 15, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def populated(store, lock, settings, terminal, seed_product):
    soap = seed_product("Soap", "10.50", 5, description="Lavender")
    seed_product("Rice", "2", 40, unit="kg")
    terminal.cart.add(soap)
    CheckoutService(store, lock, settings, rng=random.Random(2)).checkout(terminal)
    return terminal


def test_dump_has_items_sales_and_exported_at(populated):
    raw = dump_backup(export_backup(populated, EXPORTED_AT))
    data = json.loads(raw)

    assert set(data) == {"items", "sales", "exportedAt"}
    assert data["exportedAt"].startswith("2024-03-15T18:00:00")
    assert [item["name"] for item in data["items"]] == ["Rice", "Soap"]
    assert len(data["sales"]) == 1
    assert raw.startswith("{\n  ")


def test_round_trip_is_structurally_identical(populated):
    dump = export_backup(populated, EXPORTED_AT)

    parsed = parse_backup(dump_backup(dump))

    assert parsed.items == dump.items
    assert parsed.sales == dump.sales
    assert parsed.exported_at == EXPORTED_AT


def test_restore_into_empty_store(populated, store, lock, settings, tmp_path):
    dump = parse_backup(dump_backup(export_backup(populated, EXPORTED_AT)))

    engine = build_engine(f"sqlite:///{tmp_path / 'restore.db'}")
    fresh = DocumentStore(make_session_factory(engine))
    fresh.create_schema()
    sync = LiveSync(fresh, settings.collection_path("products"), settings.collection_path("sales"))
    sync.start()
    target = Terminal("user-2", sync)

    assert restore_backup(fresh, lock, target, dump) == (2, 1)
    assert target.sync.products == dump.items
    assert target.sync.sales == dump.sales

    target.close()
    engine.dispose()


def test_restore_blocked_while_locked(populated, store, lock):
    dump = export_backup(populated, EXPORTED_AT)
    lock.lock()

    with pytest.raises(LockedError):
        restore_backup(store, lock, populated, dump)


def test_parse_rejects_garbage():
    with pytest.raises(PosValidationError):
        parse_backup('{"items": "nope"}')
    with pytest.raises(PosValidationError):
        parse_backup({"items": [], "sales": []})


def test_backup_filename():
    assert backup_filename(EXPORTED_AT) == "bizdash_backup_2024-03-15.json"
