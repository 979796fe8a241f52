from __future__ import annotations

import hashlib
import json
import os
import platform
import socket
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import requests


@dataclass
class KeyResult:
    ok: bool
    hwid: str
    mode: Optional[str] = None
    error: Optional[str] = None
    message: str = ""
    data: Optional[Dict[str, Any]] = None


class KeyClient:
    """
    Client side of the activation flow, used by licensed software:
    - Derives a stable HWID locally
    - Always returns the HWID, even when the server is unreachable
    - Stores the redeemed key locally on success
    """

    def __init__(
        self,
        api_base: Optional[str] = None,
        app_name: str = "HWID",
        storage_dir: Optional[Path] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 12.0,
    ) -> None:
        self.api_base = (api_base or os.getenv("HWID_KEY_API", "")).strip() or "http://127.0.0.1:5000"
        self.app_name = app_name
        self.session = session or requests.Session()
        self.timeout = timeout

        if storage_dir is None:
            storage_dir = Path.home() / f".{app_name.lower()}"
        self.storage_dir = storage_dir
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        self.state_path = self.storage_dir / "key_state.json"

        self._hwid = self._make_hwid()

    # ---------------------------
    # HWID (stable)
    # ---------------------------
    def get_hwid(self) -> str:
        return self._hwid

    def _make_hwid(self) -> str:
        """
        Hash of platform, hostname and node id so raw identifiers never leave the machine.
        """
        parts = [
            platform.system(),
            platform.machine(),
            socket.gethostname(),
            str(uuid.getnode()),
            self.app_name,
        ]
        raw = "|".join(parts).encode("utf-8", errors="ignore")
        return hashlib.sha256(raw).hexdigest()[:32].upper()

    # ---------------------------
    # Local state
    # ---------------------------
    def get_saved_key(self) -> str:
        st = self._load_state()
        if st.get("hwid") != self._hwid:
            return ""
        return str(st.get("key", "") or "")

    def _load_state(self) -> Dict[str, Any]:
        if not self.state_path.exists():
            return {}
        try:
            return json.loads(self.state_path.read_text(encoding="utf-8")) or {}
        except ValueError:
            return {}

    def _save_state(self, key: str, extra: Optional[Dict[str, Any]] = None) -> None:
        data = {"app": self.app_name, "hwid": self._hwid, "key": key}
        if extra:
            data.update(extra)
        self.state_path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    # ---------------------------
    # HTTP helpers
    # ---------------------------
    def _url(self, path: str) -> str:
        return self.api_base.rstrip("/") + "/" + path.lstrip("/")

    def _call(self, method: str, path: str, **kwargs: Any) -> KeyResult:
        try:
            r = self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
            data = r.json() if r.content else {}
        except requests.exceptions.RequestException as e:
            return KeyResult(ok=False, hwid=self._hwid, message=f"Request failed: {e}")
        except ValueError as e:
            return KeyResult(ok=False, hwid=self._hwid, message=f"Bad response: {e}")
        if not isinstance(data, dict):
            data = {}

        ok = bool(data.get("ok", False))
        return KeyResult(
            ok=ok,
            hwid=self._hwid,
            mode=data.get("mode"),
            error=data.get("error"),
            message=str(data.get("message", "") or ("OK" if ok else data.get("error", ""))),
            data=data,
        )

    # ---------------------------
    # Public API
    # ---------------------------
    def get_key(self) -> KeyResult:
        return self._call("GET", "/v1/getkey", params={"hwid": self._hwid})

    def redeem(self, key: str) -> KeyResult:
        key = (key or "").strip()
        if not key:
            return KeyResult(ok=False, hwid=self._hwid, error="MISSING_HWID_OR_KEY", message="Please enter a key.")

        res = self._call("POST", "/v1/redeem", json={"hwid": self._hwid, "key": key})
        if res.ok:
            self._save_state(key, extra={"expiresAt": (res.data or {}).get("expiresAt")})
        return res

    def status(self) -> KeyResult:
        return self._call("GET", "/v1/status", params={"hwid": self._hwid})

    def poll(self) -> KeyResult:
        return self._call("GET", "/v1/poll", params={"hwid": self._hwid})
