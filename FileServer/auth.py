from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from core.accounts.rbac import Principal
from core.accounts.user_manager import UserStore

from .config import Settings
from .dependencies import create_access_token, get_current_user, get_settings, get_users, oauth2_scheme, require
from .logutil import get_logger, bind, redacts
from .schemas import LoginRequest, PrincipalOut, TokenResponse, UserCreate, UserOut

logger = get_logger("filedash.auth", file_basename="auth_api")

router = APIRouter()
users_router = APIRouter()

@router.post("/login", response_model=TokenResponse)
def login(body: LoginRequest, settings: Settings = Depends(get_settings), users: UserStore = Depends(get_users)):
    """
    Accepts JSON in the format of LoginRequest
    """
    user = users.verify_credentials(body.username, body.password)
    if not user:
        logger.info("login rejected", extra={"user": body.username})
        raise HTTPException(status_code=401, detail="Invalid username or password")

    token, expires_at = create_access_token(settings, user)
    users.record_session(user["id"], token, expires_at)
    bind(logger, user=user["username"]).info("login ok", extra={"token": redacts(token)})
    return {"token": token, "token_type": "bearer", "expires_at": expires_at, "user": user}

@router.post("/logout")
def logout(
    token: Optional[str] = Depends(oauth2_scheme),
    principal: Principal = Depends(get_current_user),
    users: UserStore = Depends(get_users),
):
    if token:
        users.revoke_session(token)
    bind(logger, user=principal.username).info("logout")
    return {"message": "Logged out"}

@router.get("/validate", response_model=PrincipalOut)
def validate(principal: Principal = Depends(get_current_user)):
    return {"user_id": principal.user_id, "username": principal.username, "role": principal.role}


@users_router.get("", response_model=list[UserOut])
def list_users(_: Principal = Depends(require("users.list")), users: UserStore = Depends(get_users)):
    return users.list_users()

@users_router.post("", response_model=UserOut, status_code=201)
def add_user(body: UserCreate, admin: Principal = Depends(require("users.create")), users: UserStore = Depends(get_users)):
    created = users.add_user(body.username, body.password, body.role)
    bind(logger, user=admin.username).info("user created", extra={"new_user": created["username"], "role": created["role"]})
    return created

@users_router.delete("/{user_id}")
def delete_user(user_id: str, admin: Principal = Depends(require("users.delete")), users: UserStore = Depends(get_users)):
    if user_id == admin.user_id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    users.delete_user(user_id)
    bind(logger, user=admin.username).info("user deleted", extra={"user_id": user_id})
    return {"status": "deleted", "id": user_id}
