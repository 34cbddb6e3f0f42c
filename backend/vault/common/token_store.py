from __future__ import annotations

import time
from threading import Lock


class RevokedTokenStore:
    """Process-local set of logged-out access token ids, kept until each token expires."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._revoked: dict[str, int] = {}

    def _cleanup(self) -> None:
        now = int(time.time())
        expired = [jti for jti, exp in self._revoked.items() if exp <= now]
        for jti in expired:
            self._revoked.pop(jti, None)

    def is_revoked(self, jti: str) -> bool:
        with self._lock:
            self._cleanup()
            return jti in self._revoked

    def revoke(self, jti: str, exp: int) -> None:
        with self._lock:
            self._cleanup()
            self._revoked[jti] = exp

    def clear(self) -> None:
        with self._lock:
            self._revoked.clear()


revoked_tokens = RevokedTokenStore()
