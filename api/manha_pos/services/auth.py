import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from jose import JWTError

from manha_pos.core.config import Settings
from manha_pos.core.errors import AuthError
from manha_pos.core.security import create_access_token, decode_access_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthSession:
    uid: str
    access_token: str
    expires_at: datetime


AuthListener = Callable[[str, AuthSession | None], None]


class AnonymousAuth:
    """
    Issues anonymous identities and tells listeners when they come and go.

    Signing out revokes the uid until its token would have expired anyway.
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] | None = None):
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._listeners: list[AuthListener] = []
        self._revoked: dict[str, datetime] = {}

    def sign_in_anonymously(self) -> AuthSession:
        uid = uuid.uuid4().hex
        expires_at = self._clock() + timedelta(minutes=self._settings.jwt_expires_minutes)
        try:
            token = create_access_token(self._settings, uid, expires_at)
        except JWTError as exc:
            logger.error(f"Anonymous sign-in failed: {exc}")
            raise AuthError("Anonymous sign-in failed") from exc

        session = AuthSession(uid=uid, access_token=token, expires_at=expires_at)
        logger.info(f"Signed in anonymous user {uid}")
        self._emit(uid, session)
        return session

    def verify(self, token: str) -> AuthSession:
        try:
            payload = decode_access_token(self._settings, token)
            uid = payload.get("sub")
            if not uid:
                raise ValueError("Missing subject")
            expires_at = datetime.fromtimestamp(payload["exp"], timezone.utc)
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthError("Invalid authentication token") from exc
        if uid in self._revoked:
            raise AuthError("Session has been signed out")
        return AuthSession(uid=uid, access_token=token, expires_at=expires_at)

    def sign_out(self, uid: str, expires_at: datetime | None = None) -> None:
        now = self._clock()
        self._revoked = {key: until for key, until in self._revoked.items() if until > now}
        self._revoked[uid] = expires_at or now + timedelta(minutes=self._settings.jwt_expires_minutes)
        logger.info(f"Signed out user {uid}")
        self._emit(uid, None)

    def on_auth_state_changed(self, callback: AuthListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, uid: str, session: AuthSession | None) -> None:
        for callback in list(self._listeners):
            callback(uid, session)
