import logging
import os
import uuid
from datetime import UTC, datetime, timedelta
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from db import get_db
from models import RefreshToken, User

logger = logging.getLogger("tutorhub.auth")


def _secret() -> str:
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        logger.error("JWT_SECRET is not set; refusing to sign or verify tokens")
        raise HTTPException(status_code=500, detail="JWT_SECRET not configured on server.")
    return secret


def _algorithm() -> str:
    return os.getenv("JWT_ALGORITHM", "HS256")


def _access_ttl() -> timedelta:
    return timedelta(minutes=int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", "15")))


def _refresh_ttl() -> timedelta:
    return timedelta(days=int(os.getenv("REFRESH_TOKEN_TTL_DAYS", "7")))


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def create_access_token(user: User) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "type": "access",
        "iat": now,
        "exp": now + _access_ttl(),
    }
    return jwt.encode(payload, _secret(), algorithm=_algorithm())


def create_refresh_token(db: Session, user: User) -> str:
    """Issue a refresh token and record its jti so it can be revoked."""
    now = datetime.now(UTC)
    jti = uuid.uuid4().hex
    expires = now + _refresh_ttl()
    db.add(RefreshToken(jti=jti, user_id=user.id, expires_at=expires))
    payload = {"sub": str(user.id), "type": "refresh", "jti": jti, "iat": now, "exp": expires}
    return jwt.encode(payload, _secret(), algorithm=_algorithm())


def decode_token(token: str, expected_type: str, verify_exp: bool = True) -> dict:
    try:
        payload = jwt.decode(
            token, _secret(), algorithms=[_algorithm()], options={"verify_exp": verify_exp}
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired.")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token.")
    if payload.get("type") != expected_type:
        raise HTTPException(status_code=401, detail="Invalid token type.")
    return payload


def _bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the Bearer access token to an active user.
    """
    token = _bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    payload = decode_token(token, "access")
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token.")
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized.")
    if user.status != "active":
        raise HTTPException(status_code=403, detail=f"Account {user.status}.")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def require_roles(*roles: str):
    """
    Role guard. Usage: ``user: User = Depends(require_roles("tutor", "admin"))``.
    """

    def guard(user: CurrentUser) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Access denied.")
        return user

    return guard


def require_operator(
    authorization: Annotated[str | None, Header()] = None,
    x_admin_token: Annotated[str | None, Header(alias="x-admin-token")] = None,
    db: Session = Depends(get_db),
) -> None:
    """
    Maintenance guard. Accepts either:
      - X-Admin-Token that matches ADMIN_TOKEN (cron jobs, ops scripts), or
      - a Bearer token belonging to an admin user.
    """
    admin_token = os.getenv("ADMIN_TOKEN", "")
    if admin_token and x_admin_token == admin_token:
        return
    if _bearer(authorization) is None:
        raise HTTPException(status_code=401, detail="Unauthorized.")
    user = get_current_user(authorization, db)
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Access denied.")
