from __future__ import annotations

import copy
import threading
from collections.abc import Callable
from typing import TypeVar

from loguru import logger

from stream_chat_bot.models import Session

T = TypeVar("T")


class SessionStore:
    """Sole owner of per-user session state.

    Every mutation goes through ``update``, which runs the mutation function
    under a per-user lock. Mutation functions must be plain data edits: they
    never await and never do I/O, so a lock is only ever held briefly.
    """

    def __init__(self, *, default_model: str, default_system_prompt: str):
        self._default_model = default_model
        self._default_system_prompt = default_system_prompt
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def get(self, user_id: str) -> Session:
        """Return a snapshot of the session, creating it on first use."""
        with self._lock_for(user_id):
            return copy.copy(self._sessions[user_id])

    def update(self, user_id: str, fn: Callable[[Session], T]) -> T:
        """Apply ``fn`` atomically and return its result.

        If ``fn`` raises, the exception propagates; ``fn`` is expected to
        validate before it mutates so a failure leaves the session untouched.
        """
        with self._lock_for(user_id):
            return fn(self._sessions[user_id])

    def sessions(self) -> list[str]:
        with self._registry_lock:
            return list(self._sessions)

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
                self._sessions[user_id] = Session(
                    user_id=user_id,
                    model=self._default_model,
                    system_prompt=self._default_system_prompt,
                )
                logger.info(f"Created session for user {user_id}")
            return lock
