from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.accounts.user_manager import UserStore
from core.storage.service import FileStore

from .auth import router as auth_router, users_router
from .config import VERSION, Settings
from .errors import register_exception_handlers
from .files import router as files_router
from .logutil import get_logger
from .schemas import HealthResponse
from .search import router as search_router

logger = get_logger("filedash.server", file_basename="server")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    store = FileStore(settings.storage_config())
    users = UserStore(settings.db_path, hash_rounds=settings.bcrypt_rounds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.ensure_root()
        if settings.admin_password:
            users.ensure_admin(settings.admin_username, settings.admin_password)
        elif not users.list_users():
            logger.warning("no user accounts exist; set FILEDASH_ADMIN_PASSWORD to seed an admin")
        if not settings.jwt_secret:
            logger.warning("FILEDASH_JWT_SECRET is unset; tokens will not survive a restart")
        if not settings.auth_enabled:
            logger.warning("authentication is DISABLED; every request runs as admin")
        removed = users.cleanup_expired_sessions()
        logger.info(f"serving {store.config.root} (sessions pruned: {removed})")
        yield
        users.close()

    app = FastAPI(title="FileDash API", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.users = users

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.get("/api/health", response_model=HealthResponse)
    def health():
        return {"status": "ok", "version": VERSION}

    # Routers
    app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
    app.include_router(users_router, prefix="/api/users", tags=["users"])
    app.include_router(files_router, prefix="/api/files", tags=["files"])
    app.include_router(search_router, prefix="/api/search", tags=["search"])
    return app
