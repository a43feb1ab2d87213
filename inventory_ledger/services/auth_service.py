"""Users, passwords and credentials.

Callers authenticate with a JWT (bearer header or ``token`` cookie) issued by
``create_access_token``, or with the shared ``X-API-Key``.
"""
import hmac
import logging
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from inventory_ledger.config import settings
from inventory_ledger.models.user import User

ROLES = ("admin", "staff")
API_KEY_ACTOR = "API Key User"
TOKEN_ALGORITHM = "HS256"
MAX_FAILED_LOGINS = 5
LOCKOUT_PERIOD = timedelta(minutes=30)

logger = logging.getLogger(__name__)


class AccountLockedError(ValueError):
    pass


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode(), hashed.encode())


def create_access_token(user_id: str, username: str, role: str = "staff") -> str:
    expires = datetime.now(timezone.utc) + timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS)
    claims = {"sub": user_id, "username": username, "role": role, "exp": expires}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=TOKEN_ALGORITHM)


def decode_token(token: str) -> dict | None:
    """Claims of a valid, unexpired token, else None."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[TOKEN_ALGORITHM])
    except jwt.PyJWTError:
        return None


def check_api_key(key: str | None) -> bool:
    if not key or not settings.API_KEY:
        return False
    return hmac.compare_digest(key.encode(), settings.API_KEY.encode())


def _validate_role(role: str) -> None:
    if role not in ROLES:
        raise ValueError(f"Role must be one of: {', '.join(ROLES)}")


def get_user_by_id(db: Session, user_id: str) -> User | None:
    return db.get(User, user_id)


def get_user_by_username(db: Session, username: str) -> User | None:
    return db.execute(select(User).where(User.username == username)).scalar_one_or_none()


def _utcnow() -> datetime:
    # User timestamps are stored naive, in UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_locked(user: User, now: datetime | None = None) -> bool:
    now = now or _utcnow()
    return user.locked_until is not None and user.locked_until > now


def authenticate(db: Session, username: str, password: str) -> User | None:
    """The active user matching the credentials, or None.

    A wrong password counts towards the lockout; the ``MAX_FAILED_LOGINS``-th
    one locks the account for ``LOCKOUT_PERIOD``. Raises ``AccountLockedError``
    while the lock holds, whatever the password. A successful login clears the
    counter.
    """
    user = get_user_by_username(db, username)
    if user is None or not user.active:
        return None
    now = _utcnow()
    if is_locked(user, now):
        raise AccountLockedError("Account is temporarily locked")
    if not verify_password(password, user.password_hash):
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        if user.failed_login_attempts >= MAX_FAILED_LOGINS:
            user.locked_until = now + LOCKOUT_PERIOD
            logger.warning("Locked account %s after %d failed logins", username, user.failed_login_attempts)
        db.commit()
        return None
    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = now
    db.commit()
    return user


def create_user(db: Session, username: str, password: str, display_name: str = "", role: str = "staff") -> User:
    if not username or not password:
        raise ValueError("Username and password are required")
    _validate_role(role)
    if get_user_by_username(db, username) is not None:
        raise ValueError(f"Username '{username}' already exists")
    user = User(
        username=username,
        display_name=display_name or username,
        password_hash=hash_password(password),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def list_users(db: Session) -> list[User]:
    return list(db.execute(select(User).order_by(User.username)).scalars())


def update_user(db: Session, user: User, display_name: str | None = None, role: str | None = None) -> User:
    if role is not None:
        _validate_role(role)
        user.role = role
    if display_name is not None:
        user.display_name = display_name
    db.commit()
    db.refresh(user)
    return user


def set_active(db: Session, user: User, active: bool) -> User:
    user.active = active
    db.commit()
    db.refresh(user)
    return user


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    if not current_password or not new_password:
        raise ValueError("Current password and new password are required")
    if not verify_password(current_password, user.password_hash):
        raise ValueError("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    db.commit()


def ensure_default_admin(db: Session) -> None:
    """Seed the configured admin account when the users table is empty."""
    if db.execute(select(func.count()).select_from(User)).scalar_one():
        return
    create_user(
        db,
        username=settings.DEFAULT_ADMIN_USERNAME,
        password=settings.DEFAULT_ADMIN_PASSWORD,
        display_name="Admin",
        role="admin",
    )
