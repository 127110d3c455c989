from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional, Set, Tuple

from umiauth.logging import get_logger
from umiauth.storage.models import User


class MemorySessionStore:
    """In-process stand-in for Redis with per-key TTL expiration.

    Values expire lazily on access against ``clock`` so tests can advance
    time without sleeping. Sets never expire, like the Redis session index.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self.logger = get_logger(__name__)
        self.clock = clock or time.time
        self._values: Dict[str, Tuple[str, Optional[float]]] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._data_lock = threading.RLock()

    def verify_connection(self) -> None:
        return None

    def _live_value(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self._values[key]
            return None
        return value

    def ttl(self, key: str) -> Optional[float]:
        """Remaining lifetime in seconds, or None for missing/persistent keys."""
        with self._data_lock:
            if self._live_value(key) is None:
                return None
            expires_at = self._values[key][1]
            return None if expires_at is None else expires_at - self.clock()

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        with self._data_lock:
            expires_at = (
                self.clock() + max(1, int(ttl_seconds)) if ttl_seconds is not None else None
            )
            self._sets.pop(key, None)
            self._values[key] = (value, expires_at)

    async def get(self, key: str) -> Optional[str]:
        with self._data_lock:
            return self._live_value(key)

    async def take(self, key: str) -> Optional[str]:
        with self._data_lock:
            value = self._live_value(key)
            self._values.pop(key, None)
            return value

    async def delete(self, *keys: str) -> int:
        removed = 0
        with self._data_lock:
            for key in keys:
                if self._live_value(key) is not None:
                    removed += 1
                self._values.pop(key, None)
                if self._sets.pop(key, None) is not None:
                    removed += 1
        return removed

    async def exists(self, key: str) -> bool:
        with self._data_lock:
            return self._live_value(key) is not None or bool(self._sets.get(key))

    async def sadd(self, key: str, *members: str) -> int:
        with self._data_lock:
            self._values.pop(key, None)
            current = self._sets.setdefault(key, set())
            added = len(set(members) - current)
            current.update(members)
            return added

    async def srem(self, key: str, *members: str) -> int:
        with self._data_lock:
            current = self._sets.get(key)
            if not current:
                return 0
            removed = len(current & set(members))
            current.difference_update(members)
            if not current:
                # Redis drops empty sets
                del self._sets[key]
            return removed

    async def smembers(self, key: str) -> Set[str]:
        with self._data_lock:
            return set(self._sets.get(key, set()))

    async def scan_prefix(self, prefix: str) -> List[str]:
        with self._data_lock:
            keys = [k for k in list(self._values) if self._live_value(k) is not None]
            keys.extend(k for k, members in self._sets.items() if members)
            return [k for k in keys if k.startswith(prefix)]

    async def close(self) -> None:
        with self._data_lock:
            self._values.clear()
            self._sets.clear()
        self.logger.debug("memory_session_store_closed")


class MemoryUserStore:
    """Minimal user directory used to mint tokens in tests and local runs."""

    def __init__(self) -> None:
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, str] = {}
        self._data_lock = threading.RLock()

    def add_user(self, user: User, password_hash: Optional[str] = None) -> User:
        with self._data_lock:
            self.users[user.id] = user
            if password_hash is not None:
                self.credentials[user.id] = password_hash
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        normalized = email.strip().lower()
        with self._data_lock:
            for user in self.users.values():
                if user.email.lower() == normalized:
                    return user
        return None

    def get_password_hash(self, user_id: str) -> Optional[str]:
        with self._data_lock:
            return self.credentials.get(user_id)
