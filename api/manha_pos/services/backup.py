"""
Backup export and restore.

The dump is the live catalog and sales snapshot plus an ``exportedAt``
timestamp. Restoring writes every record back under its original id in a
single transaction.
"""
import logging
from datetime import datetime, timezone

from pydantic import ValidationError

from manha_pos.core.errors import PosValidationError
from manha_pos.db.documents import DocumentStore
from manha_pos.schemas.backup import BackupDump
from manha_pos.services.lock import AppLock
from manha_pos.services.terminal import Terminal

logger = logging.getLogger(__name__)


def backup_filename(now: datetime) -> str:
    return f"bizdash_backup_{now.date().isoformat()}.json"


def export_backup(terminal: Terminal, now: datetime | None = None) -> BackupDump:
    return BackupDump(
        items=terminal.sync.products,
        sales=terminal.sync.sales,
        exported_at=now or datetime.now(timezone.utc),
    )


def dump_backup(dump: BackupDump) -> str:
    return dump.model_dump_json(by_alias=True, indent=2)


def parse_backup(raw: str | bytes | dict) -> BackupDump:
    try:
        if isinstance(raw, dict):
            return BackupDump.model_validate(raw)
        return BackupDump.model_validate_json(raw)
    except ValidationError as exc:
        raise PosValidationError(f"Not a valid backup file: {exc.error_count()} errors") from exc


def restore_backup(
    store: DocumentStore, lock: AppLock, terminal: Terminal, dump: BackupDump
) -> tuple[int, int]:
    lock.require_unlocked("restore a backup")
    with store.transaction() as txn:
        for product in dump.items:
            txn.set(terminal.products_path, product.id, product.model_dump(mode="json", exclude={"id"}))
        for sale in dump.sales:
            txn.set(terminal.sales_path, sale.id, sale.model_dump(mode="json", exclude={"id"}))
    logger.info(
        f"Restored backup from {dump.exported_at.isoformat()}: "
        f"{len(dump.items)} products, {len(dump.sales)} sales"
    )
    return len(dump.items), len(dump.sales)
