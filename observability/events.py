"""
Structured JSON event emission (shared).

Used by the session layer and the voice-turn pipeline. Every event is one
JSON envelope on stdout and is also kept in the in-memory event store so the
session events endpoint can return it.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .event_store import EventStore, event_store as default_event_store


class Component(str, Enum):
    """Event-emitting components."""

    SESSION_MANAGER = "session_manager"
    TURN_PIPELINE = "turn_pipeline"
    API = "api"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


def text_pii(*fields: str) -> Dict[str, Any]:
    """PII marker for events that carry trainee speech or replies."""
    return {"contains_pii": True, "fields": list(fields), "handling": "none"}


class EventEmitter:
    """Emits structured JSON events."""

    def __init__(self, component: Component, store: Optional[EventStore] = None):
        self.component = component
        self._store = store if store is not None else default_event_store

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Emit one event and return the envelope.

        Args:
            event_type: Stable event type string (e.g. "turn.done")
            session_id: Opaque session identifier ("" for session-less turns)
            severity: Event severity level
            correlation_id: Turn id for turn events; defaults to the session id
            pii: PII metadata (contains_pii, fields, handling)
            **kwargs: Event-specific fields
        """
        event = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or DEFAULT_PII,
        }
        event.update(kwargs)

        sys.stdout.write(json.dumps(event, ensure_ascii=False, default=str))
        sys.stdout.write("\n")
        sys.stdout.flush()

        self._store.store(event)
        return event
