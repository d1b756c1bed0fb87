# tutorhub/routers/auth.py
from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from db import get_db
from deps.auth import (
    CurrentUser,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)
from models import RefreshToken, User, utcnow
from schemas.auth import (
    AuthResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserOut,
)

logger = logging.getLogger("tutorhub.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


def _issue(db: Session, user: User) -> dict:
    refresh = create_refresh_token(db, user)
    db.commit()
    return {
        "user": UserOut.model_validate(user),
        "token": create_access_token(user),
        "refresh_token": refresh,
    }


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(req: RegisterRequest, db: Session = Depends(get_db)):
    if req.role == "admin":
        raise HTTPException(status_code=400, detail="Admin accounts cannot be self-registered.")
    email = req.email.strip().lower()
    if db.scalar(select(User).where(User.email == email)) is not None:
        raise HTTPException(status_code=409, detail="Email already registered.")

    user = User(
        name=req.name.strip(),
        email=email,
        password_hash=hash_password(req.password),
        role=req.role,
        status="active",
        grade=req.grade,
        last_login=utcnow(),
    )
    db.add(user)
    db.flush()
    logger.info("Registered %s user %s", user.role, user.id)
    return _issue(db, user)


@router.post("/login", response_model=AuthResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.scalar(select(User).where(User.email == req.email.strip().lower()))
    if user is None or not verify_password(user.password_hash, req.password):
        raise HTTPException(status_code=401, detail="Invalid email or password.")
    if user.status != "active":
        raise HTTPException(status_code=403, detail=f"Account {user.status}.")
    user.last_login = utcnow()
    return _issue(db, user)


def _stored_refresh(db: Session, token: str) -> RefreshToken:
    payload = decode_token(token, "refresh")
    stored = db.scalar(select(RefreshToken).where(RefreshToken.jti == payload.get("jti")))
    if stored is None or stored.revoked:
        raise HTTPException(status_code=401, detail="Invalid refresh token.")
    if stored.expires_at <= datetime.now(UTC):
        raise HTTPException(status_code=401, detail="Token expired.")
    return stored


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    stored = _stored_refresh(db, req.refresh_token)
    user = db.get(User, stored.user_id)
    if user is None or user.status != "active":
        raise HTTPException(status_code=401, detail="Invalid refresh token.")
    return {"token": create_access_token(user)}


@router.post("/logout")
def logout(req: RefreshRequest, db: Session = Depends(get_db)):
    try:
        payload = decode_token(req.refresh_token, "refresh", verify_exp=False)
    except HTTPException:
        # idempotent
        return {"ok": True}
    stored = db.scalar(select(RefreshToken).where(RefreshToken.jti == payload.get("jti")))
    if stored is not None and not stored.revoked:
        stored.revoked = True
        db.commit()
    return {"ok": True}


@router.get("/me", response_model=UserOut)
def me(user: CurrentUser):
    return user
