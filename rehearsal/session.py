"""
Session lifecycle management.

A session is one rehearsal attempt: (none) -> active -> completed.
At most one active session exists per trainee; completed sessions are never
reopened.
"""
import asyncio
import random
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Protocol, TYPE_CHECKING

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity
from .errors import AlreadyActive, ConfirmationMismatch, InvalidState, NotFound

if TYPE_CHECKING:
    from .subjects import SubjectCatalog


logger = get_logger(LogComponent.SESSION_MANAGER)

DEFAULT_CONFIRMATION_PHRASE = "start new simulation"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Subject:
    """The machine and part the simulated customer is asking about."""

    machine_model: str
    part_description: str
    part_number: str
    breadcrumb: str


@dataclass
class Session:
    """One rehearsal attempt."""

    session_id: str
    owner: str
    status: SessionStatus
    subject: Subject
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.session_id:
            raise ValueError("session_id is required")
        if not self.owner:
            raise ValueError("owner is required")

    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE


class SessionStore(Protocol):
    """Persistence for sessions (opaque to the manager)."""

    async def create(self, owner: str, subject: Subject) -> Session:
        ...

    async def find_active(self, owner: str) -> Optional[Session]:
        ...

    async def get(self, session_id: str) -> Optional[Session]:
        ...

    async def set_status(self, session_id: str, status: SessionStatus) -> Session:
        ...

    async def list_for_owner(self, owner: str) -> List[Session]:
        ...


class InMemorySessionStore:
    """Dict-backed SessionStore."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    async def create(self, owner: str, subject: Subject) -> Session:
        session = Session(
            session_id=str(uuid.uuid4()),
            owner=owner,
            status=SessionStatus.ACTIVE,
            subject=subject,
        )
        self._sessions[session.session_id] = session
        return session

    async def find_active(self, owner: str) -> Optional[Session]:
        for session in self._sessions.values():
            if session.owner == owner and session.is_active():
                return session
        return None

    async def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def set_status(self, session_id: str, status: SessionStatus) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found")
        session.status = status
        if status == SessionStatus.COMPLETED:
            session.completed_at = datetime.now(timezone.utc)
        return session

    async def list_for_owner(self, owner: str) -> List[Session]:
        sessions = [s for s in self._sessions.values() if s.owner == owner]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)


@dataclass
class _OwnerLock:
    """A trainee's start lock; dropped once nobody holds or waits for it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionManager:
    """Owns the session state machine and the one-active-per-trainee rule."""

    def __init__(
        self,
        store: SessionStore,
        catalog: "SubjectCatalog",
        *,
        confirmation_phrase: str = DEFAULT_CONFIRMATION_PHRASE,
        rng: Optional[random.Random] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.confirmation_phrase = confirmation_phrase
        self._rng = rng or random.Random()
        self._emitter = emitter or EventEmitter(ObsComponent.SESSION_MANAGER)
        # Check-then-create must not interleave for the same trainee.
        self._owner_locks: Dict[str, _OwnerLock] = {}

    async def start(self, owner: str, confirmation_phrase: str) -> Session:
        """
        Start a session with a freshly drawn subject.

        Raises:
            ConfirmationMismatch: phrase differs from the required literal.
            AlreadyActive: the trainee already has an active session.
            NoSubjectsAvailable: the catalog is empty.
        """
        if confirmation_phrase != self.confirmation_phrase:
            self._emit_rejected(owner, ConfirmationMismatch.category)
            raise ConfirmationMismatch("Confirmation text does not match.")

        async with self._owner_lock(owner):
            existing = await self.store.find_active(owner)
            if existing is not None:
                self._emit_rejected(owner, AlreadyActive.category)
                raise AlreadyActive("Complete the current session before starting a new one.")

            subject = self.catalog.pick(self._rng)
            session = await self.store.create(owner, subject)

        logger.with_session(session.session_id).info(
            "Session started",
            machine_model=subject.machine_model,
        )
        self._emitter.emit(
            "session.started",
            session_id=session.session_id,
            machine_model=subject.machine_model,
        )
        return session

    async def complete(self, session_id: str) -> Session:
        """
        Transition an active session to completed.

        Raises:
            NotFound: unknown session.
            InvalidState: the session is already completed.
        """
        session = await self.store.get(session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found")
        if not session.is_active():
            raise InvalidState(f"Session {session_id} is already {session.status.value}")

        session = await self.store.set_status(session_id, SessionStatus.COMPLETED)
        logger.with_session(session_id).info("Session completed")
        self._emitter.emit(
            "session.completed",
            session_id=session_id,
            from_state=SessionStatus.ACTIVE.value,
            to_state=SessionStatus.COMPLETED.value,
        )
        return session

    async def get_active(self, owner: str) -> Optional[Session]:
        """The trainee's active session, or None. Never a completed one."""
        session = await self.store.find_active(owner)
        if session is not None and not session.is_active():
            return None
        return session

    async def get(self, session_id: str) -> Session:
        session = await self.store.get(session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found")
        return session

    async def history(self, owner: str) -> List[Session]:
        return await self.store.list_for_owner(owner)

    @asynccontextmanager
    async def _owner_lock(self, owner: str) -> AsyncIterator[None]:
        entry = self._owner_locks.setdefault(owner, _OwnerLock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._owner_locks[owner]

    def _emit_rejected(self, owner: str, reason: str) -> None:
        logger.info("Session start rejected", reason=reason)
        self._emitter.emit(
            "session.start_rejected",
            session_id="",
            severity=Severity.WARN,
            correlation_id=f"owner:{owner}",
            reason=reason,
        )
