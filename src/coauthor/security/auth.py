from __future__ import annotations

"""Authentication utilities: JWT handling and the request user context.

Credential verification lives outside this service; a development token
endpoint issues tokens for local use. The token subject is the opaque user id
every authorization check keys on.

Env vars:
- JWT_SECRET (required in prod; default for dev)
- JWT_EXPIRES_MIN (default 60)
- COAUTHOR_PUBLIC_MODE (allow a guest identity when no token is sent)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import os
import logging
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr


logger = logging.getLogger("coauthor.auth")
bearer_scheme = HTTPBearer(auto_error=False)

GUEST_USER_ID = "guest@example.com"


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return val


@dataclass
class JwtConfig:
    secret: str
    algorithm: str = "HS256"
    expires_min: int = 60

    @staticmethod
    def from_env() -> "JwtConfig":
        secret = _get_env("JWT_SECRET", "dev-secret-change-me")
        expires = int(os.getenv("JWT_EXPIRES_MIN", "60"))
        return JwtConfig(secret=secret, expires_min=expires)


class User(BaseModel):
    user_id: str
    name: str = ""


class TokenRequest(BaseModel):
    email: EmailStr
    name: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: User


def create_access_token(user: User, cfg: Optional[JwtConfig] = None) -> str:
    cfg = cfg or JwtConfig.from_env()
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=cfg.expires_min)
    payload = {
        "sub": user.user_id,
        "name": user.name,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.algorithm)


def decode_token(token: str, cfg: Optional[JwtConfig] = None) -> User:
    cfg = cfg or JwtConfig.from_env()
    try:
        data = jwt.decode(token, cfg.secret, algorithms=[cfg.algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if not data.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return User(user_id=str(data["sub"]), name=data.get("name", ""))


def _public_mode_enabled() -> bool:
    val = os.getenv("COAUTHOR_PUBLIC_MODE")
    if val is not None:
        return val.lower() in ("1", "true", "yes")
    return False


def _guest() -> User:
    return User(user_id=GUEST_USER_ID, name="Guest")


def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> User:
    """Resolve the current user.

    Requires a valid bearer token unless COAUTHOR_PUBLIC_MODE is enabled, in
    which case anonymous requests act as a shared guest user.
    """
    if creds is None or not creds.scheme or creds.scheme.lower() != "bearer":
        if _public_mode_enabled():
            return _guest()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return decode_token(creds.credentials)


def user_from_token(token: Optional[str]) -> User:
    """Resolve a user from a raw token string (used by the WebSocket endpoint)."""
    if not token:
        if _public_mode_enabled():
            return _guest()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return decode_token(token)
