"""
Structured logging tests.
Tests turn/session correlation, PII placement, record serialization and the
plain-text mode used for local runs.
"""
import json
import logging
from datetime import datetime
from io import StringIO
from pathlib import Path

import pytest

from logging_setup import (
    Component,
    JSONFormatter,
    _RESERVED_ATTRS,
    _default_component,
    get_logger,
    setup_logging,
)


@pytest.fixture
def log_lines():
    """Route the root logger into a buffer; returns a callable yielding parsed lines."""
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    root.handlers = [handler]
    root.setLevel(logging.DEBUG)

    yield lambda: [json.loads(line) for line in buffer.getvalue().splitlines() if line.strip()]

    root.handlers = saved_handlers
    root.setLevel(saved_level)


class TestTurnCorrelation:
    """Test session_id / turn_id binding."""

    def test_turn_logger_carries_both_ids(self, log_lines):
        log = get_logger(Component.TURN_PIPELINE, session_id="sess_9").with_turn("turn_1a2b")
        log.info("Turn received", mode="interactive")

        [line] = log_lines()
        assert line["session_id"] == "sess_9"
        assert line["turn_id"] == "turn_1a2b"
        assert line["component"] == "turn_pipeline"
        assert line["mode"] == "interactive"

    def test_binding_order_does_not_matter(self, log_lines):
        get_logger(Component.TTS).with_turn("turn_x").with_session("sess_y").info("Segment ready")

        [line] = log_lines()
        assert (line["session_id"], line["turn_id"]) == ("sess_y", "turn_x")

    def test_sessionless_turn_has_no_session_key(self, log_lines):
        get_logger(Component.CAPTURE).with_turn("turn_solo").info("Capture pre-empted")

        [line] = log_lines()
        assert line["turn_id"] == "turn_solo"
        assert "session_id" not in line

    def test_binding_returns_new_logger(self):
        base = get_logger(Component.API)
        bound = base.with_turn("turn_1")

        assert base.turn_id is None
        assert bound.turn_id == "turn_1"
        assert bound.logger is base.logger


class TestRecordSerialization:
    """Test what ends up on the JSON line."""

    def test_fixed_keys_come_first(self, log_lines):
        get_logger(Component.STT).info("Transcribed", latency_ms=84)

        [line] = log_lines()
        assert list(line)[:4] == ["timestamp", "severity", "component", "message"]
        assert datetime.fromisoformat(line["timestamp"]).tzinfo is not None

    def test_non_json_values_are_stringified(self, log_lines):
        get_logger(Component.SESSION_MANAGER).info(
            "Subject catalog loaded",
            path=Path("/srv/subjects.yaml"),
            component_enum=Component.LLM,
        )

        [line] = log_lines()
        assert line["path"] == "/srv/subjects.yaml"
        assert line["component_enum"] == "llm"

    def test_utterance_kept_under_pii(self, log_lines):
        get_logger(Component.TURN_PIPELINE).info_pii("Utterance ready", text="is it AT12345?")

        [line] = log_lines()
        assert line["pii"] == {"text": "is it AT12345?"}
        assert "text" not in line

    def test_exception_is_attached(self, log_lines):
        log = get_logger(Component.ERROR_HANDLER)
        try:
            raise ConnectionResetError("peer went away")
        except ConnectionResetError:
            log.exception("Unhandled exception", path="/turns")

        [line] = log_lines()
        assert line["severity"] == "error"
        assert "ConnectionResetError: peer went away" in line["exception"]

    def test_record_internals_are_not_leaked(self, log_lines):
        logging.getLogger("aiohttp.client").warning("pool exhausted")

        [line] = log_lines()
        for attr in ("taskName", "processName", "args", "msg", "levelno"):
            assert attr not in line
        assert line["component"] == "unknown"

    @pytest.mark.parametrize("attr", ["taskName", "turn_id", "session_id", "component"])
    def test_reserved_attributes(self, attr):
        assert attr in _RESERVED_ATTRS


class TestSetup:
    """Test root logger configuration."""

    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        yield
        root.handlers = saved_handlers
        root.setLevel(saved_level)

    def test_json_mode(self):
        setup_logging(level="warning", use_json=True)

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_unknown_level_falls_back_to_info(self):
        setup_logging(level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_text_mode_tags_third_party_records(self):
        setup_logging(level="INFO", use_json=False)
        handler = logging.getLogger().handlers[0]

        record = logging.LogRecord("uvicorn.error", logging.INFO, __file__, 1, "Started", None, None)
        assert handler.filter(record)
        assert record.component == "uvicorn.error"
        assert handler.format(record).endswith("INFO - uvicorn.error - Started")

    def test_default_component_keeps_existing_tag(self):
        record = logging.LogRecord("tts", logging.INFO, __file__, 1, "x", None, None)
        record.component = "tts"
        record.name = "something.else"

        assert _default_component(record) is True
        assert record.component == "tts"
