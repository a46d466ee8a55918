"""
Conversation log for a session: an ordered list of user / ai entries.
"""
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol


class Sender(str, Enum):
    USER = "user"
    AI = "ai"


@dataclass(frozen=True)
class ConversationEntry:
    session_id: str
    sender: Sender
    message: str
    entry_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "session_id": self.session_id,
            "sender": self.sender.value,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class ConversationStore(Protocol):
    async def append(
        self,
        session_id: str,
        sender: Sender,
        message: str,
        timestamp: Optional[datetime] = None,
    ) -> ConversationEntry:
        ...

    async def list(self, session_id: str) -> List[ConversationEntry]:
        ...


class InMemoryConversationStore:
    """Append-only store; list() is ascending by timestamp, insertion order on ties."""

    def __init__(self):
        self._entries: Dict[str, List[ConversationEntry]] = defaultdict(list)

    async def append(
        self,
        session_id: str,
        sender: Sender,
        message: str,
        timestamp: Optional[datetime] = None,
    ) -> ConversationEntry:
        entry = ConversationEntry(
            session_id=session_id,
            sender=sender,
            message=message,
            created_at=timestamp or datetime.now(timezone.utc),
        )
        self._entries[session_id].append(entry)
        return entry

    async def list(self, session_id: str) -> List[ConversationEntry]:
        # sorted() is stable, so equal timestamps keep insertion order.
        return sorted(self._entries.get(session_id, ()), key=lambda e: e.created_at)


def format_transcript(entries: Iterable[ConversationEntry]) -> str:
    """Render entries as "sender: message" lines."""
    return "\n".join(f"{entry.sender.value}: {entry.message}" for entry in entries)
