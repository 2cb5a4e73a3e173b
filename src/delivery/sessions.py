"""In-memory session store with cookie-scoped sessions and TTL expiry."""

import logging
import secrets
import threading
import time
from http.cookies import CookieError, SimpleCookie
from typing import Any, Optional

logger = logging.getLogger(__name__)

PRUNE_THRESHOLD = 1024


class SessionStore:
    """Key/value storage per client session.

    The session id travels in a cookie. Every request refreshes the expiry
    of a live session. Sessions are only opened when something is stored,
    so plain page and file requests never receive a cookie.
    """

    def __init__(self, cookie_name: str = "sid", ttl: int = 3600):
        self.cookie_name = cookie_name
        self.ttl = max(1, int(ttl))
        self._lock = threading.Lock()
        self._sessions: dict[str, dict] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _cookie_id(self, request) -> Optional[str]:
        raw = request.header("Cookie")
        if not raw:
            return None
        try:
            cookie = SimpleCookie(raw)
        except CookieError:
            logger.debug("Unparsable Cookie header ignored")
            return None
        morsel = cookie.get(self.cookie_name)
        return morsel.value if morsel is not None else None

    def start(self, request, response, resource) -> None:
        """Resume the client's live session, if any.

        No session is created here; `create` runs on the first write.
        """
        session_id = self._cookie_id(request)
        if not session_id:
            return
        now = time.time()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session["expires_at"] <= now:
                self._sessions.pop(session_id, None)
                return
            session["expires_at"] = now + self.ttl
        resource.session_id = session_id

    def create(self, response, resource) -> None:
        """Open a new session and issue its cookie."""
        now = time.time()
        session_id = secrets.token_urlsafe(32)
        with self._lock:
            if len(self._sessions) >= PRUNE_THRESHOLD:
                self._prune_locked(now)
            self._sessions[session_id] = {"data": {}, "expires_at": now + self.ttl}
        response.set_header(
            "Set-Cookie",
            f"{self.cookie_name}={session_id}; Path=/; HttpOnly; SameSite=Lax",
        )
        resource.session_id = session_id

    def get(self, session_id: str, key: str, default: Any = None) -> Any:
        now = time.time()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session["expires_at"] <= now:
                return default
            return session["data"].get(key, default)

    def set(self, session_id: str, key: str, value: Any) -> None:
        now = time.time()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session["expires_at"] <= now:
                logger.debug("Session set(%s) dropped: unknown or expired session", key)
                return
            session["data"][key] = value

    def prune_expired(self) -> int:
        """Drop expired sessions; returns how many were removed."""
        with self._lock:
            return self._prune_locked(time.time())

    def _prune_locked(self, now: float) -> int:
        expired = [sid for sid, s in self._sessions.items() if s["expires_at"] <= now]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug("Pruned %d expired sessions", len(expired))
        return len(expired)
