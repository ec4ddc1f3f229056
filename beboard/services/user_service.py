"""
beboard.services.user_service — Accounts, Credentials, Profiles
=================================================================

Passwords are stored as passlib ``pbkdf2_sha256`` hashes and never leave
this module in clear text.  Sign-in is refused for accounts that are
deleted, deactivated, not ACTIVE, or temporarily locked; five consecutive
bad passwords lock the account for thirty minutes (both configurable).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from passlib.context import CryptContext
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from beboard.database.engine import get_session
from beboard.database.models import User, UserRole, UserStatus
from beboard.engine.clock import Clock, SystemClock
from beboard.errors import AlreadyExists, InvalidArgument, NotFound, Unauthorized

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

DEFAULT_MAX_FAILED_LOGINS = 5
DEFAULT_LOCKOUT_MINUTES = 30


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _normalize_dt(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _get_live_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None or user.deleted:
        raise NotFound(f"User {user_id} not found")
    return user


# ---------------------------------------------------------------------------
# Registration + sign-in
# ---------------------------------------------------------------------------
def register(
    engine,
    *,
    email: str,
    nickname: str,
    password: str,
    role: str = UserRole.USER,
) -> User:
    """Create an ACTIVE account.  Email and nickname must both be unused."""
    email = email.strip().lower()
    nickname = nickname.strip()
    if not nickname:
        raise InvalidArgument("Nickname must not be blank")

    try:
        with get_session(engine) as session:
            if session.scalar(select(User.id).where(User.email == email)) is not None:
                raise AlreadyExists("Email is already registered")
            if session.scalar(select(User.id).where(User.nickname == nickname)) is not None:
                raise AlreadyExists("Nickname is already taken")

            user = User(
                email=email,
                nickname=nickname,
                password_hash=hash_password(password),
                role=role,
                status=UserStatus.ACTIVE,
            )
            session.add(user)
            session.flush()
            session.refresh(user)
    except IntegrityError as exc:
        raise AlreadyExists("Email or nickname is already registered") from exc

    logger.info("Registered user %s (%s)", user.id, user.nickname)
    return user


def authenticate(
    engine,
    *,
    email: str,
    password: str,
    clock: Clock | None = None,
    max_failed_logins: int = DEFAULT_MAX_FAILED_LOGINS,
    lockout_minutes: int = DEFAULT_LOCKOUT_MINUTES,
) -> User:
    """Check credentials and return the signed-in user.

    A wrong password is recorded (and may lock the account) before
    :class:`Unauthorized` is raised, so the failure counter survives the
    rejected request.
    """
    clock = clock or SystemClock()
    now = clock.now()
    email = email.strip().lower()

    with get_session(engine) as session:
        user = session.scalar(select(User).where(User.email == email))
        if user is None:
            raise Unauthorized("Invalid email or password")
        if user.deleted or not user.active or user.status != UserStatus.ACTIVE:
            raise Unauthorized("Account is not active")
        if user.locked_until is not None and _normalize_dt(user.locked_until) > now:
            raise Unauthorized("Account is temporarily locked")

        if not verify_password(password, user.password_hash):
            user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
            locked = user.failed_login_attempts >= max_failed_logins
            if locked:
                user.locked_until = now + timedelta(minutes=lockout_minutes)
                logger.warning(
                    "Locked user %s after %d failed logins",
                    user.id, user.failed_login_attempts,
                )
            session.commit()
            raise Unauthorized("Invalid email or password")

        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login_at = now
        user.last_activity_at = now

    logger.info("User %s signed in", user.id)
    return user


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------
def get_user(engine, user_id: int) -> User:
    with get_session(engine) as session:
        return _get_live_user(session, user_id)


def change_password(
    engine, *, user_id: int, current_password: str, new_password: str,
) -> None:
    with get_session(engine) as session:
        user = _get_live_user(session, user_id)
        if not verify_password(current_password, user.password_hash):
            raise InvalidArgument("Current password does not match")
        user.password_hash = hash_password(new_password)
    logger.info("User %s changed password", user_id)


def update_profile(
    engine,
    *,
    user_id: int,
    nickname: str | None = None,
    profile_image: str | None = None,
) -> User:
    try:
        with get_session(engine) as session:
            user = _get_live_user(session, user_id)
            if nickname is not None and nickname.strip() != user.nickname:
                nickname = nickname.strip()
                if not nickname:
                    raise InvalidArgument("Nickname must not be blank")
                taken = session.scalar(
                    select(User.id).where(User.nickname == nickname, User.id != user_id)
                )
                if taken is not None:
                    raise AlreadyExists("Nickname is already taken")
                user.nickname = nickname
            if profile_image is not None:
                user.profile_image = profile_image
    except IntegrityError as exc:
        raise AlreadyExists("Nickname is already taken") from exc
    return user


def delete_account(engine, *, user_id: int, clock: Clock | None = None) -> None:
    """Soft-delete: the row stays for authorship, sign-in is refused."""
    clock = clock or SystemClock()
    with get_session(engine) as session:
        user = _get_live_user(session, user_id)
        user.deleted = True
        user.active = False
        user.status = UserStatus.DELETED
        user.deleted_at = clock.now()
    logger.info("User %s deleted their account", user_id)


def touch_activity(engine, *, user_id: int, clock: Clock | None = None) -> None:
    clock = clock or SystemClock()
    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is not None:
            user.last_activity_at = clock.now()


# ---------------------------------------------------------------------------
# Directory + admin
# ---------------------------------------------------------------------------
def search_users(
    engine, *, term: str, page: int = 1, page_size: int = 10,
) -> tuple[int, list[User]]:
    """Live users whose nickname or email contains *term* (case-insensitive)."""
    pattern = f"%{term.strip().lower()}%"
    criteria = (
        User.deleted.is_(False),
        or_(func.lower(User.nickname).like(pattern), func.lower(User.email).like(pattern)),
    )
    with Session(engine) as session:
        total = session.scalar(select(func.count()).select_from(User).where(*criteria)) or 0
        rows = session.scalars(
            select(User)
            .where(*criteria)
            .order_by(User.nickname)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
    return total, list(rows)


def list_users(engine, *, page: int = 1, page_size: int = 20) -> tuple[int, list[User]]:
    with Session(engine) as session:
        total = session.scalar(select(func.count()).select_from(User)) or 0
        rows = session.scalars(
            select(User).order_by(User.id).offset((page - 1) * page_size).limit(page_size)
        ).all()
    return total, list(rows)


def set_user_active(engine, *, user_id: int, active: bool) -> User:
    with get_session(engine) as session:
        user = _get_live_user(session, user_id)
        user.active = active
        user.status = UserStatus.ACTIVE if active else UserStatus.SUSPENDED
    logger.info("User %s active=%s", user_id, active)
    return user


def change_user_role(engine, *, user_id: int, role: str) -> User:
    if role not in UserRole.__members__:
        raise InvalidArgument(f"Unknown role: {role}")
    with get_session(engine) as session:
        user = _get_live_user(session, user_id)
        user.role = UserRole(role)
    logger.info("User %s role → %s", user_id, role)
    return user
