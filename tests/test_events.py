"""
Event emission tests.
Tests the structured JSON event envelope and the bounded event store.
"""
import json
from datetime import datetime, timedelta, timezone

from observability.event_store import EventStore
from observability.events import (
    Component,
    EventEmitter,
    Severity,
    text_pii,
)


class TestEventFormat:
    """Test the event envelope."""

    def test_required_fields(self, capsys):
        emitter = EventEmitter(Component.TURN_PIPELINE, store=EventStore())
        emitter.emit("turn.received", session_id="sess-123", severity=Severity.INFO)

        event = json.loads(capsys.readouterr().out.strip())

        for key in ("ts", "session_id", "component", "event_type", "severity", "correlation_id", "pii"):
            assert key in event
        assert event["session_id"] == "sess-123"
        assert event["component"] == "turn_pipeline"
        assert event["event_type"] == "turn.received"
        assert event["severity"] == "info"

    def test_timestamp_is_iso8601_utc(self, capsys):
        EventEmitter(Component.API, store=EventStore()).emit("x.y", session_id="s")

        event = json.loads(capsys.readouterr().out.strip())
        ts = datetime.fromisoformat(event["ts"])
        assert ts.tzinfo is not None

    def test_correlation_defaults_to_session(self, capsys):
        EventEmitter(Component.SESSION_MANAGER, store=EventStore()).emit("session.started", session_id="s1")

        event = json.loads(capsys.readouterr().out.strip())
        assert event["correlation_id"] == "s1"

    def test_turn_correlation_and_payload(self, capsys):
        emitter = EventEmitter(Component.TURN_PIPELINE, store=EventStore())
        emitter.emit(
            "tts.segment_emitted",
            session_id="s1",
            correlation_id="turn_1",
            segment_index=2,
            latency_ms=120,
        )

        event = json.loads(capsys.readouterr().out.strip())
        assert event["correlation_id"] == "turn_1"
        assert event["segment_index"] == 2
        assert event["latency_ms"] == 120

    def test_default_pii_marker(self, capsys):
        EventEmitter(Component.API, store=EventStore()).emit("x.y", session_id="s")

        event = json.loads(capsys.readouterr().out.strip())
        assert event["pii"] == {"contains_pii": False, "fields": [], "handling": "none"}

    def test_text_pii_marker(self, capsys):
        EventEmitter(Component.TURN_PIPELINE, store=EventStore()).emit(
            "stt.final", session_id="s", text="where is it", pii=text_pii("text")
        )

        event = json.loads(capsys.readouterr().out.strip())
        assert event["pii"]["contains_pii"] is True
        assert event["pii"]["fields"] == ["text"]

    def test_emit_returns_envelope_and_stores_it(self):
        store = EventStore()
        event = EventEmitter(Component.API, store=store).emit("x.y", session_id="s")

        assert event["event_type"] == "x.y"
        assert store.query(session_id="s")[0]["event_type"] == "x.y"


class TestEventStore:
    """Test the bounded in-memory store."""

    def _event(self, event_type, session_id="s1", ts=None, component="turn_pipeline"):
        return {
            "ts": (ts or datetime.now(timezone.utc)).isoformat(),
            "session_id": session_id,
            "component": component,
            "event_type": event_type,
            "severity": "info",
            "correlation_id": session_id,
            "pii": {"contains_pii": False, "fields": [], "handling": "none"},
        }

    def test_query_filters(self):
        store = EventStore()
        store.store(self._event("turn.received"))
        store.store(self._event("turn.done"))
        store.store(self._event("turn.done", session_id="s2"))
        store.store(self._event("session.started", component="session_manager"))

        assert len(store.query(session_id="s1")) == 3
        assert len(store.query(event_type="turn.done")) == 2
        assert len(store.query(component="session_manager")) == 1
        assert len(store.query(session_id="s1", limit=2)) == 2

    def test_query_time_window(self):
        store = EventStore()
        now = datetime.now(timezone.utc)
        store.store(self._event("old", ts=now - timedelta(minutes=10)))
        store.store(self._event("new", ts=now))

        events = store.query(since=now - timedelta(minutes=1))
        assert [e["event_type"] for e in events] == ["new"]

        events = store.query(until=now - timedelta(minutes=1))
        assert [e["event_type"] for e in events] == ["old"]

    def test_bounded_fifo(self):
        store = EventStore(max_events=3)
        for i in range(5):
            store.store(self._event(f"e{i}"))

        assert [e["event_type"] for e in store.query()] == ["e2", "e3", "e4"]
        stats = store.get_stats()
        assert stats["total_events"] == 3
        assert stats["max_events"] == 3

    def test_payload_round_trips(self):
        store = EventStore()
        event = self._event("tts.segment_emitted")
        event["segment_index"] = 1
        store.store(event)

        assert store.query()[0]["segment_index"] == 1

    def test_clear(self):
        store = EventStore()
        store.store(self._event("x"))
        store.clear()
        assert store.query() == []
        assert store.get_stats()["oldest_event_ts"] is None
