from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from manha_pos.core.config import Settings

PIN_LENGTH = 4


def is_valid_pin(pin: str) -> bool:
    return len(pin) == PIN_LENGTH and pin.isascii() and pin.isdigit()


def verify_pin(plain_pin: str, hashed_pin: str) -> bool:
    if not is_valid_pin(plain_pin):
        return False
    try:
        return bcrypt.checkpw(plain_pin.encode("utf-8"), hashed_pin.encode("utf-8"))
    except ValueError:
        return False


def get_pin_hash(pin: str) -> str:
    if not is_valid_pin(pin):
        raise ValueError(f"PIN must be exactly {PIN_LENGTH} digits")
    return bcrypt.hashpw(pin.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def create_access_token(settings: Settings, subject: str, expires_at: datetime | None = None) -> str:
    expire = expires_at or datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expires_minutes)
    payload = {"sub": subject, "exp": expire, "anon": True}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(settings: Settings, token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
