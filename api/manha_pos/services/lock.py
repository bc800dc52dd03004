import logging

from manha_pos.core.errors import AuthError, LockedError, PosValidationError
from manha_pos.core.security import get_pin_hash, is_valid_pin, verify_pin

logger = logging.getLogger(__name__)

GATED_SECTIONS = frozenset({"pos", "sales", "settings"})


class AppLock:
    """
    Process-wide lock gating the point-of-sale, sales history and settings.

    Not persisted: a restart always comes up unlocked.
    """

    def __init__(self, pin_hash: str):
        self._pin_hash = pin_hash
        self.locked = False

    def lock(self) -> None:
        self.locked = True
        logger.info("App locked")

    def unlock(self, pin: str) -> None:
        if not verify_pin(pin, self._pin_hash):
            logger.warning("Unlock attempt with incorrect PIN")
            raise AuthError("Incorrect PIN")
        self.locked = False
        logger.info("App unlocked")

    def authorize(self, section: str, pin: str | None = None) -> bool:
        """Grant a one-off visit to ``section`` without lifting the lock."""
        if not self.locked or section not in GATED_SECTIONS:
            return True
        if pin is None:
            return False
        if not verify_pin(pin, self._pin_hash):
            raise AuthError("Incorrect PIN")
        return True

    def change_pin(self, new_pin: str) -> None:
        self.require_unlocked("change the PIN")
        if not is_valid_pin(new_pin):
            raise PosValidationError("PIN must be exactly 4 digits")
        self._pin_hash = get_pin_hash(new_pin)
        logger.info("Security PIN updated")

    def require_unlocked(self, action: str) -> None:
        if self.locked:
            raise LockedError(f"App is locked. Unlock to {action}.")
