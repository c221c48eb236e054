# client/api_client.py
import os
import urllib.parse
from contextlib import ExitStack

import requests

from typing import Any, Dict, Iterable, List, Optional


class ClientError(Exception):
    """Non-2xx answer from the server, carrying its error kind and message."""
    def __init__(self, status: int, error: str, message: str, details: Optional[dict] = None):
        super().__init__(f"{status} {error}: {message}")
        self.status = status
        self.error = error
        self.message = message
        self.details = details or {}


class FileDashClient:
    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout: float = 60.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.token: Optional[str] = None
        self.headers: Dict[str, str] = {}

    # ---------- plumbing ----------
    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @staticmethod
    def _quote_path(path: str) -> str:
        return urllib.parse.quote(path.lstrip("/"), safe="/")

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        headers = dict(self.headers)
        headers.update(kwargs.pop("headers", {}) or {})
        kwargs.setdefault("timeout", self.timeout)
        r = self.session.request(method, self._url(path), headers=headers, **kwargs)
        if not r.ok:
            self._raise(r)
        return r

    @staticmethod
    def _raise(r: requests.Response):
        try:
            body = r.json()
        except ValueError:
            raise ClientError(r.status_code, "http_error", r.text or r.reason or "")
        if isinstance(body, dict):
            raise ClientError(
                r.status_code,
                body.get("error", "http_error"),
                body.get("message") or str(body.get("detail", "")),
                body.get("details"),
            )
        raise ClientError(r.status_code, "http_error", str(body))

    # ---------- auth ----------
    def login(self, username: str, password: str) -> Dict[str, Any]:
        r = self._request("POST", "/api/auth/login", json={"username": username, "password": password})
        data = r.json()
        self.token = data["token"]
        self.headers = {"Authorization": f"Bearer {self.token}"}
        return data

    def logout(self) -> None:
        if not self.token:
            return
        try:
            self._request("POST", "/api/auth/logout")
        finally:
            self.token = None
            self.headers = {}

    # ---------- files ----------
    def list(self, path: str = "") -> List[Dict[str, Any]]:
        return self._request("GET", "/api/files/list", params={"path": path}).json()["files"]

    def mkdir(self, path: str, recursive: bool = True) -> Dict[str, Any]:
        return self._request("POST", "/api/files/mkdir", json={"path": path, "recursive": recursive}).json()

    def rename(self, path: str, new_name: str) -> Dict[str, Any]:
        return self._request("PUT", "/api/files/rename", json={"from": path, "to": new_name}).json()

    def move(self, src: str, dest: str) -> Dict[str, Any]:
        return self._request("PUT", "/api/files/move", json={"from": src, "to": dest}).json()

    def delete(self, path: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/files/{self._quote_path(path)}").json()

    def download(self, remote_path: str, local_path: str, chunk_size: int = 1024 * 1024) -> str:
        """Stream a remote file to `local_path`; a failed transfer leaves no local file behind."""
        r = self._request("GET", f"/api/files/download/{self._quote_path(remote_path)}", stream=True)
        try:
            with open(local_path, "wb") as f:
                for chunk in r.iter_content(chunk_size=chunk_size):
                    if chunk:
                        f.write(chunk)
        except BaseException:
            if os.path.exists(local_path):
                os.remove(local_path)
            raise
        finally:
            r.close()
        return local_path

    def upload(self, local_paths: Iterable[str], target_dir: str = "") -> Dict[str, Any]:
        pairs = [(os.path.basename(p), p) for p in local_paths]
        return self._send_files(pairs, target_dir)

    def upload_folder(self, local_dir: str, target_dir: str = "") -> Dict[str, Any]:
        """
        Upload every file below `local_dir`, keeping the layout: each file is
        sent with its path relative to the folder's parent, so the folder
        itself is recreated under `target_dir`.
        """
        local_dir = os.path.abspath(local_dir)
        anchor = os.path.dirname(local_dir)
        pairs = []
        for dirpath, dirnames, filenames in os.walk(local_dir):
            dirnames.sort()
            for name in sorted(filenames):
                full = os.path.join(dirpath, name)
                rel = os.path.relpath(full, anchor).replace(os.sep, "/")
                pairs.append((rel, full))
        if not pairs:
            raise ValueError(f"no files under {local_dir}")
        return self._send_files(pairs, target_dir)

    def _send_files(self, pairs, target_dir: str) -> Dict[str, Any]:
        with ExitStack() as stack:
            files = [
                ("file", (remote_name, stack.enter_context(open(local, "rb")), "application/octet-stream"))
                for remote_name, local in pairs
            ]
            r = self._request("POST", "/api/files/upload", data={"path": target_dir}, files=files)
        return r.json()

    # ---------- search ----------
    def search(self, query: str, path: str = "") -> List[Dict[str, Any]]:
        return self._request("GET", "/api/search", params={"query": query, "path": path}).json()["results"]

    # ---------- users (admin) ----------
    def list_users(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/users").json()

    def create_user(self, username: str, password: str, role: str = "user") -> Dict[str, Any]:
        return self._request("POST", "/api/users", json={"username": username, "password": password, "role": role}).json()

    def delete_user(self, user_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/users/{urllib.parse.quote(user_id, safe='')}").json()
