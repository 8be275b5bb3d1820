"""In-memory registry of open viewer sessions."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from contextlib import contextmanager
from typing import Any, Iterator, Tuple

from cladescope.session import Session

logger = logging.getLogger(__name__)


class SessionNotFound(KeyError):
    pass


class SessionStore:
    """
    Keeps at most ``capacity`` sessions; the least recently used one is
    evicted when a new session would exceed it.

    Each session carries its own lock. Requests reach a session through
    :meth:`use`, so gestures on one session run one after the other while
    different sessions proceed in parallel.
    """

    def __init__(self, capacity: int = 32):
        self.capacity = capacity
        self._sessions: "OrderedDict[str, Tuple[Session, threading.RLock]]" = OrderedDict()
        self._lock = threading.Lock()

    def create(self, text: str, **kwargs: Any) -> "tuple[str, Session]":
        return self.add(Session.from_text(text, **kwargs))

    def add(self, session: Session) -> "tuple[str, Session]":
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[session_id] = (session, threading.RLock())
            while len(self._sessions) > self.capacity:
                evicted, _ = self._sessions.popitem(last=False)
                logger.info("evicted session %s", evicted)
        logger.info("created session %s (%d open)", session_id, len(self._sessions))
        return session_id, session

    def _entry(self, session_id: str) -> Tuple[Session, threading.RLock]:
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                raise SessionNotFound(session_id)
            self._sessions.move_to_end(session_id)
            return entry

    @contextmanager
    def use(self, session_id: str) -> Iterator[Session]:
        """Hold the session's lock for the duration of one gesture."""
        session, lock = self._entry(session_id)
        with lock:
            yield session

    def drop(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)
