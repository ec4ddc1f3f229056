"""
beboard.api.auth — Email/password sign-in + JWT issuance
==========================================================

Access tokens carry ``sub`` (user id), ``nickname``, ``role`` and
``type="access"``; refresh tokens carry only ``sub`` and
``type="refresh"`` and can be traded for a fresh pair at ``/auth/refresh``.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import jwt
from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field

from beboard.api.deps import (
    JWT_ALGORITHM,
    JWT_SECRET,
    decode_token,
    get_clock,
    get_config,
    get_current_user,
    get_engine,
)
from beboard.config import BoardConfig
from beboard.database.models import User
from beboard.engine.clock import Clock
from beboard.errors import Unauthorized
from beboard.identity import Identity
from beboard.services import user_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RegisterBody(BaseModel):
    email: EmailStr
    nickname: str = Field(min_length=2, max_length=20)
    password: str = Field(min_length=8, max_length=100)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class RefreshBody(BaseModel):
    refresh_token: str


class PasswordBody(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=100)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def user_dict(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "nickname": u.nickname,
        "profile_image": u.profile_image,
        "role": u.role,
        "status": u.status,
        "created_at": u.created_at.isoformat() if u.created_at else None,
        "last_login_at": u.last_login_at.isoformat() if u.last_login_at else None,
    }


def issue_tokens(user: User, cfg: BoardConfig, clock: Clock) -> dict:
    now = clock.now()
    access = jwt.encode(
        {
            "sub": str(user.id),
            "nickname": user.nickname,
            "role": user.role,
            "type": "access",
            "exp": now + timedelta(hours=cfg.access_token_hours),
        },
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )
    refresh = jwt.encode(
        {
            "sub": str(user.id),
            "type": "refresh",
            "exp": now + timedelta(days=cfg.refresh_token_days),
        },
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )
    return {
        "access_token": access,
        "refresh_token": refresh,
        "token_type": "bearer",
        "expires_in": cfg.access_token_hours * 3600,
    }


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.post("/register", status_code=201)
def register(body: RegisterBody, engine=Depends(get_engine)):
    user = user_service.register(
        engine, email=body.email, nickname=body.nickname, password=body.password,
    )
    return user_dict(user)


@router.post("/login")
def login(
    body: LoginBody,
    engine=Depends(get_engine),
    cfg: BoardConfig = Depends(get_config),
    clock: Clock = Depends(get_clock),
):
    user = user_service.authenticate(
        engine,
        email=body.email,
        password=body.password,
        clock=clock,
        max_failed_logins=cfg.max_failed_logins,
        lockout_minutes=cfg.lockout_minutes,
    )
    return {**issue_tokens(user, cfg, clock), "user": user_dict(user)}


@router.post("/refresh")
def refresh(
    body: RefreshBody,
    engine=Depends(get_engine),
    cfg: BoardConfig = Depends(get_config),
    clock: Clock = Depends(get_clock),
):
    """Trade a refresh token for a new token pair."""
    payload = decode_token(body.refresh_token, expected_type="refresh")
    user = user_service.get_user(engine, int(payload["sub"]))
    if not user.active:
        raise Unauthorized("Account is not active")
    return issue_tokens(user, cfg, clock)


@router.get("/me")
def me(
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    clock: Clock = Depends(get_clock),
):
    user_service.touch_activity(engine, user_id=identity.id, clock=clock)
    return user_dict(user_service.get_user(engine, identity.id))


@router.put("/password", status_code=204)
def change_password(
    body: PasswordBody,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    user_service.change_password(
        engine,
        user_id=identity.id,
        current_password=body.current_password,
        new_password=body.new_password,
    )


@router.delete("/me", status_code=204)
def delete_me(
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    clock: Clock = Depends(get_clock),
):
    user_service.delete_account(engine, user_id=identity.id, clock=clock)
