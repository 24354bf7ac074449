from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .errors import InvalidTransition, NotFound, StaleInteraction

log = logging.getLogger("modrelay.sessions")


class Stage(enum.Enum):
    AWAITING_BASIC_INFO = "basic"
    AWAITING_ENTRY_REQUIREMENTS = "entry"
    AWAITING_CUSTOMIZATION = "custom"
    AWAITING_MESSAGES = "messages"
    READY_TO_SUBMIT = "ready"

    def next(self) -> "Stage":
        order = list(Stage)
        idx = order.index(self)
        if idx + 1 >= len(order):
            raise InvalidTransition(f"{self.name} is the last stage")
        return order[idx + 1]


class Session:
    """In-flight giveaway wizard for one owner."""

    def __init__(self, owner_id: int, now: float):
        self.owner_id = owner_id
        self.stage = Stage.AWAITING_BASIC_INFO
        self.fields: Dict[str, Any] = {}
        self.started_at = now
        self.updated_at = now

    def __repr__(self) -> str:
        return f"<Session owner={self.owner_id} stage={self.stage.name} fields={sorted(self.fields)}>"


class SessionStore:
    """Owner id -> at most one Session.

    All reads and writes go through one lock so a stage transition only lands
    if the session is still in the stage the caller observed. Sessions idle
    for longer than ``ttl_seconds`` are evicted on access; ``ttl_seconds=0``
    keeps them until they are submitted or cancelled, which lets the map grow
    with every abandoned wizard.
    """

    def __init__(self, ttl_seconds: int = 0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self.clock = clock
        self._sessions: Dict[int, Session] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._evict_locked()
            return len(self._sessions)

    def __contains__(self, owner_id: int) -> bool:
        with self._lock:
            self._evict_locked()
            return owner_id in self._sessions

    # ---------- eviction ----------
    def _evict_locked(self) -> int:
        if self.ttl <= 0:
            return 0
        now = self.clock()
        expired = [oid for oid, s in self._sessions.items() if (now - s.updated_at) > self.ttl]
        for oid in expired:
            self._sessions.pop(oid, None)
            log.info("Evicted idle wizard session for %s", oid)
        return len(expired)

    def evict_expired(self) -> int:
        with self._lock:
            return self._evict_locked()

    # ---------- operations ----------
    def start(self, owner_id: int) -> Session:
        with self._lock:
            self._evict_locked()
            if owner_id in self._sessions:
                log.info("Replacing unfinished wizard session for %s", owner_id)
            session = Session(owner_id, self.clock())
            self._sessions[owner_id] = session
            return session

    def get(self, owner_id: int) -> Session:
        with self._lock:
            self._evict_locked()
            session = self._sessions.get(owner_id)
            if session is None:
                raise NotFound(f"No active giveaway wizard for {owner_id}")
            return session

    def update(
        self,
        owner_id: int,
        fields_delta: Dict[str, Any],
        next_stage: Stage,
        expected_stage: Optional[Stage] = None,
    ) -> Session:
        with self._lock:
            self._evict_locked()
            session = self._sessions.get(owner_id)
            if session is None:
                raise InvalidTransition(f"No active giveaway wizard for {owner_id}")
            if expected_stage is not None and session.stage is not expected_stage:
                raise StaleInteraction(
                    f"Session for {owner_id} is at {session.stage.name}, not {expected_stage.name}"
                )
            session.fields.update(fields_delta)
            session.stage = next_stage
            session.updated_at = self.clock()
            return session

    def take(self, owner_id: int, expected_stage: Stage) -> Session:
        """Remove and return the session if it is at ``expected_stage``."""
        with self._lock:
            self._evict_locked()
            session = self._sessions.get(owner_id)
            if session is None:
                raise NotFound(f"No active giveaway wizard for {owner_id}")
            if session.stage is not expected_stage:
                raise StaleInteraction(
                    f"Session for {owner_id} is at {session.stage.name}, not {expected_stage.name}"
                )
            del self._sessions[owner_id]
            return session

    def remove(self, owner_id: int):
        with self._lock:
            self._sessions.pop(owner_id, None)
