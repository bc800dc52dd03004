import logging
from datetime import datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from sqlalchemy.engine import Engine

from manha_pos.core.config import Settings, ensure_configured
from manha_pos.core.security import get_pin_hash
from manha_pos.db.documents import DocumentStore
from manha_pos.db.session import build_engine, make_session_factory
from manha_pos.services.auth import AnonymousAuth, AuthSession
from manha_pos.services.catalog import CatalogService
from manha_pos.services.checkout import CheckoutService
from manha_pos.services.lock import AppLock
from manha_pos.services.sales import SalesService
from manha_pos.services.sync import LiveSync
from manha_pos.services.terminal import Terminal

logger = logging.getLogger(__name__)


class PosContext:
    """
    Everything one running application owns: the store client, the auth
    provider, the lock and a terminal per signed-in user.
    """

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        auth: AnonymousAuth,
        lock: AppLock,
        engine: Engine | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.report_tz = ZoneInfo(settings.report_timezone)
        self.store = store
        self.auth = auth
        self.lock = lock
        self.catalog = CatalogService(store, lock)
        self.checkout = CheckoutService(store, lock, settings)
        self.sales = SalesService(store, lock)
        self._engine = engine
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._terminals: dict[str, Terminal] = {}
        self._unsubscribe_auth = auth.on_auth_state_changed(self._on_auth_state)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PosContext":
        ensure_configured(settings)
        engine = build_engine(settings.database_url)
        store = DocumentStore(make_session_factory(engine))
        store.create_schema()
        return cls(
            settings=settings,
            store=store,
            auth=AnonymousAuth(settings),
            lock=AppLock(get_pin_hash(settings.security_pin)),
            engine=engine,
        )

    def terminal(self, uid: str, expires_at: datetime | None = None) -> Terminal:
        self.evict_expired()
        terminal = self._terminals.get(uid)
        if terminal is None:
            sync = LiveSync(
                self.store,
                self.settings.collection_path("products", uid),
                self.settings.collection_path("sales", uid),
            )
            sync.start()
            terminal = Terminal(uid, sync)
            self._terminals[uid] = terminal
            logger.info(f"Opened terminal for user {uid}")
        if expires_at is not None:
            terminal.expires_at = expires_at
        return terminal

    @property
    def open_terminals(self) -> list[str]:
        return list(self._terminals)

    def evict_expired(self) -> int:
        """Close terminals whose session token has run out."""
        now = self._clock()
        expired = [
            uid
            for uid, terminal in self._terminals.items()
            if terminal.expires_at is not None and terminal.expires_at <= now
        ]
        for uid in expired:
            self._close_terminal(uid)
        return len(expired)

    def close(self) -> None:
        self._unsubscribe_auth()
        for terminal in self._terminals.values():
            terminal.close()
        self._terminals.clear()
        if self._engine is not None:
            self._engine.dispose()

    def _on_auth_state(self, uid: str, session: AuthSession | None) -> None:
        if session is not None:
            self.terminal(uid, session.expires_at)
            return
        self._close_terminal(uid)

    def _close_terminal(self, uid: str) -> None:
        terminal = self._terminals.pop(uid, None)
        if terminal is not None:
            terminal.close()
            logger.info(f"Closed terminal for user {uid}")
