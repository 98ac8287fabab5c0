"""
In-process chat session state — turn history, start time, last-turn time.

One SessionStore instance is created by the app factory and shared by every
request thread. Turns for the same session id are serialized through a
per-id re-entrant lock (see locked()); different ids never wait on each
other beyond a short map guard.
"""
import logging
import secrets
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

logger = logging.getLogger('services.session_store')

USER = 'user'
ASSISTANT = 'assistant'
ROLES = (USER, ASSISTANT)

_ROLE_LABELS = {USER: 'User', ASSISTANT: 'Assistant'}


class SessionStateError(Exception):
    """Session state is missing or inconsistent — fatal for the current turn."""


@dataclass
class Turn:
    role: str
    text: str
    at: float

    def render(self) -> str:
        return f"{_ROLE_LABELS[self.role]}: {self.text}"


@dataclass
class SessionHandle:
    """Canonical id + start time every later call for this chat must reuse."""
    session_id: str
    is_new: bool
    start_time: datetime


@dataclass
class _Session:
    start_time: datetime
    created_at: float
    turns: List[Turn] = field(default_factory=list)
    last_turn_at: Optional[float] = None

    @property
    def last_activity(self) -> float:
        return self.last_turn_at if self.last_turn_at is not None else self.created_at


class SessionStore:
    """
    Usage:
        store = SessionStore()
        handle = store.begin_or_continue(request_id)
        with store.locked(handle.session_id):
            elapsed = store.append_turn(handle.session_id, USER, text)
            ...
    """

    def __init__(
        self,
        max_id_length: int = 8,
        idle_ttl: Optional[float] = None,
        sweep_interval: float = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.max_id_length = max_id_length
        self.idle_ttl = idle_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._sessions: Dict[str, _Session] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()
        self._last_sweep = clock()
        self._eviction_listeners: List[Callable[[List[str]], None]] = []

    # ── Identity ──────────────────────────────────────────────────────

    def _is_valid_id(self, session_id) -> bool:
        return (
            isinstance(session_id, str)
            and bool(session_id.strip())
            and len(session_id) <= self.max_id_length
        )

    def _new_id(self) -> str:
        # 3 random bytes → 6 upper-case hex chars (24 bits)
        while True:
            candidate = secrets.token_hex(3).upper()
            if candidate not in self._sessions:
                return candidate

    def begin_or_continue(self, session_id: Optional[str] = None) -> SessionHandle:
        """Resolve (or mint) the session id and make sure the session exists."""
        self._maybe_sweep()

        with self._guard:
            if not self._is_valid_id(session_id):
                if session_id:
                    logger.info("Rejected malformed session id (len=%d)", len(str(session_id)))
                session_id = self._new_id()

            session = self._sessions.get(session_id)
            if session is not None:
                return SessionHandle(session_id, False, session.start_time)

            session = _Session(start_time=datetime.now(), created_at=self._clock())
            self._sessions[session_id] = session
            self._locks.setdefault(session_id, threading.RLock())

        logger.info("Started session %s", session_id, extra={'session_id': session_id})
        return SessionHandle(session_id, True, session.start_time)

    # ── Turn history ──────────────────────────────────────────────────

    def _lock_for(self, session_id: str) -> threading.RLock:
        with self._guard:
            return self._locks.setdefault(session_id, threading.RLock())

    @contextmanager
    def locked(self, session_id: str):
        """Hold the per-session lock; same-id turns apply strictly one after another."""
        lock = self._lock_for(session_id)
        with lock:
            yield

    def _get(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionStateError(f"Unknown session '{session_id}'")
        return session

    def append_turn(self, session_id: str, role: str, text: str) -> Optional[float]:
        """
        Append a turn and return seconds since the previous recorded turn.

        Returns None for the session's first turn — callers must not treat
        that as a zero-second gap.
        """
        if role not in ROLES:
            raise ValueError(f"Unknown role '{role}'")

        with self.locked(session_id):
            session = self._get(session_id)
            now = self._clock()
            elapsed = None if session.last_turn_at is None else now - session.last_turn_at
            session.turns.append(Turn(role=role, text=text, at=now))
            session.last_turn_at = now
            return elapsed

    def history(self, session_id: str, max_turns: int) -> List[Turn]:
        """Most recent max_turns turns, oldest first, without the just-appended one."""
        with self.locked(session_id):
            turns = self._get(session_id).turns[:-1]
            if max_turns <= 0:
                return []
            return list(turns[-max_turns:])

    def transcript(self, session_id: str) -> str:
        """Full conversation as 'User: …' / 'Assistant: …' lines."""
        with self.locked(session_id):
            return '\n'.join(turn.render() for turn in self._get(session_id).turns)

    def turn_count(self, session_id: str) -> int:
        if not self.exists(session_id):
            return 0
        with self.locked(session_id):
            session = self._sessions.get(session_id)
            return len(session.turns) if session else 0

    def exists(self, session_id: str) -> bool:
        with self._guard:
            return session_id in self._sessions

    # ── Lifecycle ─────────────────────────────────────────────────────

    def clear(self, session_id: Optional[str]) -> None:
        """Drop all state for the id. No-op when absent."""
        if not session_id:
            return
        with self.locked(session_id):
            with self._guard:
                removed = self._sessions.pop(session_id, None)
        self._drop_lock(session_id)
        if removed is not None:
            logger.info("Cleared session %s", session_id, extra={'session_id': session_id})

    def _drop_lock(self, session_id: str):
        """Forget the id's lock unless a session came back or a turn holds it."""
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None or session_id in self._sessions:
                return
            if not lock.acquire(blocking=False):
                return
            try:
                del self._locks[session_id]
            finally:
                lock.release()

    def add_eviction_listener(self, callback: Callable[[List[str]], None]):
        """callback(evicted_ids) runs after each sweep that removed sessions."""
        self._eviction_listeners.append(callback)

    def _maybe_sweep(self):
        if self.idle_ttl is None:
            return
        if self._clock() - self._last_sweep < self.sweep_interval:
            return
        self.evict_idle()

    def evict_idle(self, now: Optional[float] = None) -> int:
        """
        Remove sessions idle longer than idle_ttl. Returns the number evicted.

        A session whose lock is held by an in-flight turn is skipped.
        """
        if self.idle_ttl is None:
            return 0

        now = self._clock() if now is None else now
        evicted = []
        with self._guard:
            self._last_sweep = now
            for session_id, session in list(self._sessions.items()):
                if now - session.last_activity <= self.idle_ttl:
                    continue
                lock = self._locks.get(session_id)
                if lock is not None and not lock.acquire(blocking=False):
                    continue
                try:
                    del self._sessions[session_id]
                    self._locks.pop(session_id, None)
                    evicted.append(session_id)
                finally:
                    if lock is not None:
                        lock.release()

        if evicted:
            logger.info("Evicted %d idle sessions (ttl=%ss)", len(evicted), self.idle_ttl)
            for callback in self._eviction_listeners:
                try:
                    callback(evicted)
                except Exception as e:
                    logger.warning("Eviction listener %r failed: %s", callback, e)
        return len(evicted)

    def __len__(self):
        with self._guard:
            return len(self._sessions)
