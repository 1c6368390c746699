"""
Process-local cache of conversation handles, keyed by chat session id.

Entries are removed when their session is deleted and, when a TTL is
configured, expire on read. The cache lives in plain process memory: it
does not survive a restart and is not shared between server instances, so
it only holds for a single-instance deployment. A missing entry is never
an error because handles can always be rebuilt.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from config import CHAT_HANDLE_TTL_SECONDS


class ChatHandleCache:
    """Thread-safe session id -> handle map with optional TTL. Last write wins."""

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        # None or 0 disables expiry
        self._ttl = ttl_seconds or None
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _expiry(self) -> Optional[float]:
        return self._clock() + self._ttl if self._ttl else None

    def _live(self, session_id: str) -> Optional[Any]:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        handle, expires = entry
        if expires is not None and self._clock() >= expires:
            del self._entries[session_id]
            return None
        return handle

    def get(self, session_id: str) -> Optional[Any]:
        with self._lock:
            return self._live(session_id)

    def set(self, session_id: str, handle: Any):
        with self._lock:
            self._entries[session_id] = (handle, self._expiry())

    def get_or_create(self, session_id: str, factory: Callable[[], Any]) -> Any:
        with self._lock:
            handle = self._live(session_id)
            if handle is None:
                handle = factory()
                self._entries[session_id] = (handle, self._expiry())
            return handle

    def invalidate(self, session_id: str) -> bool:
        """Drop an entry. Returns True when one was present."""
        with self._lock:
            return self._entries.pop(session_id, None) is not None

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, session_id: str) -> bool:
        return self.get(session_id) is not None


# Global cache instance
_chat_handle_cache: Optional[ChatHandleCache] = None


def get_chat_handle_cache() -> ChatHandleCache:
    global _chat_handle_cache
    if _chat_handle_cache is None:
        _chat_handle_cache = ChatHandleCache(ttl_seconds=CHAT_HANDLE_TTL_SECONDS)
    return _chat_handle_cache
