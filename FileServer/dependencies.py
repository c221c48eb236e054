# FileServer/dependencies.py
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
import jwt  # PyJWT

from core.accounts import rbac
from core.accounts.rbac import Principal
from core.accounts.user_manager import UserStore
from core.storage.service import FileStore

from .config import ALGORITHM, Settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

# Used for every request when authentication is switched off.
DEV_PRINCIPAL = Principal(user_id="dev", username="dev", role=rbac.ADMIN)

_BEARER = {"WWW-Authenticate": "Bearer"}


def get_settings(request: Request) -> Settings:
    return request.app.state.settings

def get_store(request: Request) -> FileStore:
    return request.app.state.store

def get_users(request: Request) -> UserStore:
    return request.app.state.users


def create_access_token(settings: Settings, user: dict) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    expire = now + timedelta(hours=settings.token_expiration_hours)
    to_encode = {
        "sub": user["id"],
        "username": user["username"],
        "role": user["role"],
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.resolved_jwt_secret(), algorithm=ALGORITHM), expire

def decode_token(settings: Settings, token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.resolved_jwt_secret(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired", headers=_BEARER)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Could not validate credentials", headers=_BEARER)
    if not (payload.get("sub") and payload.get("username") and payload.get("role")):
        raise HTTPException(status_code=401, detail="Invalid token payload", headers=_BEARER)
    return payload


def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings),
    users: UserStore = Depends(get_users),
) -> Principal:
    if not settings.auth_enabled:
        return DEV_PRINCIPAL
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated", headers=_BEARER)
    payload = decode_token(settings, token)
    if not users.is_session_active(token):
        raise HTTPException(status_code=401, detail="Token has been revoked", headers=_BEARER)
    principal = Principal(
        user_id=payload["sub"],
        username=payload["username"],
        role=payload["role"],
        token_id=payload.get("jti"),
    )
    request.state.principal = principal
    return principal

def require(action: str):
    """Dependency factory: the caller must be allowed to perform `action`."""
    def _check(principal: Principal = Depends(get_current_user)) -> Principal:
        if not rbac.can(principal, action):
            raise HTTPException(status_code=403, detail="Not enough permissions")
        return principal
    return _check
