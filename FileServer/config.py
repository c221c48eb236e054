import os
import secrets
import tomllib
from dataclasses import dataclass, field

from core.storage.config import GB, StorageConfig

ALGORITHM = "HS256"
VERSION = "0.2.0"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _as_bool(name: str, raw) -> bool:
    if isinstance(raw, bool):
        return raw
    s = str(raw).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ValueError(f"{name}: expected a boolean, got {raw!r}")

def _as_int(name: str, raw) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{name}: expected an integer, got {raw!r}") from None

def _as_float(name: str, raw) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{name}: expected a number, got {raw!r}") from None

def _as_list(raw) -> tuple:
    if isinstance(raw, (list, tuple)):
        return tuple(str(x) for x in raw)
    return tuple(p for p in (s.strip() for s in str(raw).split(",")) if p)


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8080
    storage_root: str = "./files"
    allowed_extensions: tuple = ("*",)
    max_upload_size: int = 10 * GB
    request_timeout: float = 86400.0
    allow_symlinks: bool = False
    max_files_per_upload: int = 10000
    jwt_secret: str = field(default="", repr=False)
    token_expiration_hours: int = 24
    auth_enabled: bool = True
    db_path: str = "~/.filedash/db/users.db"
    admin_username: str = "admin"
    admin_password: str = field(default="", repr=False)
    bcrypt_rounds: int = 12
    cors_origins: tuple = ("*",)

    def storage_config(self) -> StorageConfig:
        return StorageConfig(
            root=self.storage_root,
            allowed_extensions=self.allowed_extensions,
            max_upload_size=self.max_upload_size,
            request_timeout=self.request_timeout,
            allow_symlinks=self.allow_symlinks,
            max_files_per_upload=self.max_files_per_upload,
        )

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """
        Defaults, then the TOML file named by FILEDASH_CONFIG, then
        FILEDASH_* environment variables. Bad values raise ValueError here
        rather than at first use.
        """
        env = os.environ if environ is None else environ
        values: dict = {}

        cfg_path = env.get("FILEDASH_CONFIG")
        if cfg_path:
            with open(os.path.expanduser(cfg_path), "rb") as f:
                doc = tomllib.load(f)
            server = doc.get("server", {})
            storage = doc.get("storage", {})
            auth = doc.get("auth", {})
            for key in ("host", "port", "cors_origins"):
                if key in server:
                    values[key] = server[key]
            for key in ("allowed_extensions", "max_upload_size", "request_timeout",
                        "allow_symlinks", "max_files_per_upload"):
                if key in storage:
                    values[key] = storage[key]
            for key in ("root", "home_directory"):
                if key in storage:
                    values["storage_root"] = storage[key]
            for key in ("jwt_secret", "token_expiration_hours", "db_path",
                        "admin_username", "admin_password", "bcrypt_rounds"):
                if key in auth:
                    values[key] = auth[key]
            # names used by older config.toml files
            for old, new in (("enable_auth", "auth_enabled"), ("enabled", "auth_enabled"),
                             ("token_expiration", "token_expiration_hours")):
                if old in auth:
                    values[new] = auth[old]

        env_map = {
            "FILEDASH_HOST": "host",
            "FILEDASH_PORT": "port",
            "FILEDASH_STORAGE_ROOT": "storage_root",
            "FILEDASH_ALLOWED_EXTENSIONS": "allowed_extensions",
            "FILEDASH_MAX_UPLOAD_SIZE": "max_upload_size",
            "FILEDASH_REQUEST_TIMEOUT": "request_timeout",
            "FILEDASH_ALLOW_SYMLINKS": "allow_symlinks",
            "FILEDASH_MAX_FILES_PER_UPLOAD": "max_files_per_upload",
            "FILEDASH_JWT_SECRET": "jwt_secret",
            "FILEDASH_TOKEN_EXPIRATION_HOURS": "token_expiration_hours",
            "FILEDASH_AUTH_ENABLED": "auth_enabled",
            "FILEDASH_DB_PATH": "db_path",
            "FILEDASH_ADMIN_USERNAME": "admin_username",
            "FILEDASH_ADMIN_PASSWORD": "admin_password",
            "FILEDASH_BCRYPT_ROUNDS": "bcrypt_rounds",
            "FILEDASH_CORS_ORIGINS": "cors_origins",
        }
        for var, key in env_map.items():
            if env.get(var) not in (None, ""):
                values[key] = env[var]

        return cls.coerce(**values)

    @classmethod
    def coerce(cls, **values) -> "Settings":
        ints = ("port", "max_upload_size", "max_files_per_upload", "token_expiration_hours", "bcrypt_rounds")
        for key in ints:
            if key in values:
                values[key] = _as_int(key, values[key])
        if "request_timeout" in values:
            values["request_timeout"] = _as_float("request_timeout", values["request_timeout"])
        for key in ("allow_symlinks", "auth_enabled"):
            if key in values:
                values[key] = _as_bool(key, values[key])
        for key in ("allowed_extensions", "cors_origins"):
            if key in values:
                values[key] = _as_list(values[key])

        settings = cls(**values)
        if settings.max_upload_size <= 0:
            raise ValueError("max_upload_size must be positive")
        if settings.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if settings.token_expiration_hours <= 0:
            raise ValueError("token_expiration_hours must be positive")
        return settings

    def resolved_jwt_secret(self) -> str:
        # An unset secret means tokens only survive until restart.
        return self.jwt_secret or _EPHEMERAL_SECRET


_EPHEMERAL_SECRET = secrets.token_urlsafe(48)
