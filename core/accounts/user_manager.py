import logging
logger = logging.getLogger(__name__)

import os, uuid, sqlite3, threading
import hashlib
import re
from datetime import datetime, timezone
from passlib.context import CryptContext

from core.accounts.rbac import ADMIN, USER, ROLES

USERNAME_RE = re.compile(r"[A-Za-z0-9@._-]{1,64}")
MIN_PASSWORD = 8
MAX_PASSWORD = 128

INVALID_INPUT = "invalid_input"
CONFLICT = "conflict"
NOT_FOUND = "not_found"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id            TEXT    PRIMARY KEY,
    username      TEXT    UNIQUE COLLATE NOCASE,
    password_hash TEXT    NOT NULL,
    role          TEXT    NOT NULL,
    is_active     INTEGER NOT NULL DEFAULT 1,
    created_at    TEXT    NOT NULL
);
CREATE TABLE IF NOT EXISTS sessions (
    id          TEXT    PRIMARY KEY,
    user_id     TEXT    NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    token_hash  TEXT    NOT NULL UNIQUE,
    expires_at  TEXT    NOT NULL,
    revoked     INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);
"""


class AccountError(Exception):
    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


def _now() -> datetime:
    return datetime.now(timezone.utc)

def token_hash(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class UserStore:
    """
    Accounts and token sessions in one SQLite file.

    Reads are served from an in-memory cache keyed on lowercase username;
    every write goes through `write_lock` and rebuilds the cache.
    """

    def __init__(self, db_path: str, hash_rounds: int = 12):
        self.db_path = os.path.expanduser(db_path)
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=hash_rounds)
        self.write_lock = threading.Lock()
        self.cache_lock = threading.Lock()
        self.users_cache: dict[str, dict] = {}
        # Per-thread connection storage
        self._thread_local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        if os.path.dirname(self.db_path):
            os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        self._get_conn()

    # ---------- plumbing ----------
    def _get_conn(self) -> sqlite3.Connection:
        """Get or open a thread-local SQLite3 connection, tuned for speed."""
        conn = getattr(self._thread_local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self.db_path, timeout=5, check_same_thread=False)
            # WAL mode allows readers & writers to run in parallel
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            with self.write_lock:
                conn.executescript(_SCHEMA)
                conn.commit()
            conn.row_factory = sqlite3.Row
            self._thread_local.conn = conn
            self._connections.append(conn)
            self.reload_cache()
        return conn

    def reload_cache(self):
        """Rebuild the in-memory cache from disk. Called at startup and after writes."""
        rows = self._get_conn().execute(
            "SELECT id,username,password_hash,role,is_active,created_at FROM users"
        ).fetchall()
        with self.cache_lock:
            self.users_cache.clear()
            for r in rows:
                self.users_cache[r["username"].lower()] = {
                    "id":            r["id"],
                    "username":      r["username"],
                    "password_hash": r["password_hash"],
                    "role":          r["role"],
                    "is_active":     bool(r["is_active"]),
                    "created_at":    r["created_at"],
                }

    def close(self):
        for conn in self._connections:
            try:
                conn.close()
            except sqlite3.Error:
                logger.debug("closing user db connection failed", exc_info=True)
        self._connections.clear()
        self._thread_local = threading.local()

    @staticmethod
    def _public(entry: dict) -> dict:
        return {k: entry[k] for k in ("id", "username", "role", "is_active", "created_at")}

    # ---------- users ----------
    def add_user(self, username: str, password: str, role: str = USER) -> dict:
        # strict allow-list: A-Z, a-z, 0-9, @ . _ -
        if not username or not USERNAME_RE.fullmatch(username):
            raise AccountError(INVALID_INPUT, "Username must be 1-64 characters of A-Z a-z 0-9 @ . _ -")
        if not password or not (MIN_PASSWORD <= len(password) <= MAX_PASSWORD):
            raise AccountError(INVALID_INPUT, f"Password must be {MIN_PASSWORD}-{MAX_PASSWORD} characters")
        if role not in ROLES:
            raise AccountError(INVALID_INPUT, f"Unknown role: {role}")

        conn = self._get_conn()
        try:
            with self.write_lock:
                with self.cache_lock:
                    if username.lower() in self.users_cache:
                        raise AccountError(CONFLICT, f"User already exists: {username}")
                uid = str(uuid.uuid4())
                pw_h = self.pwd_context.hash(password)
                conn.execute(
                    "INSERT INTO users(id,username,password_hash,role,is_active,created_at) VALUES (?,?,?,?,1,?)",
                    (uid, username, pw_h, role, _now().isoformat()),
                )
                conn.commit()
        except sqlite3.IntegrityError:
            raise AccountError(CONFLICT, f"User already exists: {username}")
        finally:
            self.reload_cache()
        logger.info(f"user created: {username} ({role})")
        return self.get_user(uid)

    def verify_credentials(self, username: str, password: str):
        """The public user record when username/password match an active account, else None."""
        with self.cache_lock:
            entry = dict(self.users_cache.get((username or "").lower()) or {})
        if not entry or not entry["is_active"]:
            return None
        if not self.pwd_context.verify(password or "", entry["password_hash"]):
            return None
        return self._public(entry)

    def get_user(self, user_id: str):
        with self.cache_lock:
            for entry in self.users_cache.values():
                if entry["id"] == user_id:
                    return self._public(entry)
        return None

    def get_user_by_name(self, username: str):
        with self.cache_lock:
            entry = self.users_cache.get((username or "").lower())
            return self._public(entry) if entry else None

    def list_users(self) -> list[dict]:
        # read-only: return snapshot from cache
        with self.cache_lock:
            users = [self._public(e) for e in self.users_cache.values()]
        return sorted(users, key=lambda u: u["username"].lower())

    def delete_user(self, user_id: str) -> None:
        conn = self._get_conn()
        try:
            with self.write_lock:
                cur = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
                conn.commit()
        finally:
            self.reload_cache()
        if cur.rowcount == 0:
            raise AccountError(NOT_FOUND, f"User not found: {user_id}")
        logger.info(f"user deleted: {user_id}")

    def set_active(self, user_id: str, active: bool) -> dict:
        conn = self._get_conn()
        try:
            with self.write_lock:
                cur = conn.execute("UPDATE users SET is_active = ? WHERE id = ?", (1 if active else 0, user_id))
                if not active:
                    conn.execute("UPDATE sessions SET revoked = 1 WHERE user_id = ?", (user_id,))
                conn.commit()
        finally:
            self.reload_cache()
        if cur.rowcount == 0:
            raise AccountError(NOT_FOUND, f"User not found: {user_id}")
        return self.get_user(user_id)

    def ensure_admin(self, username: str, password: str) -> bool:
        """Seed an admin account when the user table is empty. True if one was created."""
        with self.cache_lock:
            if self.users_cache:
                return False
        try:
            self.add_user(username, password, ADMIN)
        except AccountError as e:
            if e.kind == CONFLICT:
                return False
            raise
        logger.warning(f"seeded initial admin account '{username}'; change its password")
        return True

    # ---------- sessions ----------
    def record_session(self, user_id: str, token: str, expires_at: datetime) -> str:
        sid = str(uuid.uuid4())
        conn = self._get_conn()
        with self.write_lock:
            conn.execute(
                "INSERT INTO sessions(id,user_id,token_hash,expires_at,revoked,created_at) VALUES (?,?,?,?,0,?)",
                (sid, user_id, token_hash(token), expires_at.astimezone(timezone.utc).isoformat(), _now().isoformat()),
            )
            conn.commit()
        return sid

    def is_session_active(self, token: str) -> bool:
        row = self._get_conn().execute(
            "SELECT s.expires_at, s.revoked, u.is_active FROM sessions s JOIN users u ON u.id = s.user_id "
            "WHERE s.token_hash = ?",
            (token_hash(token),),
        ).fetchone()
        if row is None or row["revoked"] or not row["is_active"]:
            return False
        return datetime.fromisoformat(row["expires_at"]) > _now()

    def revoke_session(self, token: str) -> bool:
        conn = self._get_conn()
        with self.write_lock:
            cur = conn.execute("UPDATE sessions SET revoked = 1 WHERE token_hash = ? AND revoked = 0", (token_hash(token),))
            conn.commit()
        return cur.rowcount > 0

    def revoke_user_sessions(self, user_id: str) -> int:
        conn = self._get_conn()
        with self.write_lock:
            cur = conn.execute("UPDATE sessions SET revoked = 1 WHERE user_id = ? AND revoked = 0", (user_id,))
            conn.commit()
        return cur.rowcount

    def cleanup_expired_sessions(self) -> int:
        conn = self._get_conn()
        with self.write_lock:
            cur = conn.execute("DELETE FROM sessions WHERE expires_at <= ? OR revoked = 1", (_now().isoformat(),))
            conn.commit()
        if cur.rowcount:
            logger.debug(f"removed {cur.rowcount} expired/revoked sessions")
        return cur.rowcount
