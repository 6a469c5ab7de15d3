"""
Session Store
Login sessions with a fixed time-to-live.

A session id is embedded in every bearer token (the ``sid`` claim). The auth
guard accepts a token only while its session is still present here, which is
what makes logout and admin resets effective before the JWT itself expires.
The store is created by the app and handed to the guard; nothing in the
transfer path holds a reference to it.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from upi_bank.db.session import utcnow


class SessionStore:
    """
    Maps session_id -> {"account_id", "created_at", "expires_at"}.

    ``storage`` can be any dict-like object (e.g. a Redis-backed mapping);
    a plain dict is used by default.
    """

    def __init__(
        self,
        ttl_minutes: int,
        storage: Optional[Any] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sessions: Any = storage if storage is not None else {}
        self.ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock

    def create(self, account_id: str) -> Dict[str, Any]:
        self.purge_expired()
        now = self._clock()
        session = {
            "session_id": uuid.uuid4().hex,
            "account_id": str(account_id),
            "created_at": now,
            "expires_at": now + self.ttl,
        }
        self.sessions[session["session_id"]] = session
        return session

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self.sessions.get(session_id)
        if session is None:
            return None
        if self._clock() >= session["expires_at"]:
            self.sessions.pop(session_id, None)
            return None
        return session

    def is_active(self, session_id: str, account_id: str) -> bool:
        session = self.get(session_id)
        return session is not None and session["account_id"] == str(account_id)

    def revoke(self, session_id: str) -> bool:
        return self.sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        self.sessions.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in list(self.sessions.items()) if now >= s["expires_at"]]
        for sid in expired:
            self.sessions.pop(sid, None)
        return len(expired)
