"""
Shared logging infrastructure for the rehearsal service.

Both the session layer (rehearsal) and the voice-turn core (voice_turn) log
through this module so every line on stdout is one JSON object that can be
correlated by session_id and turn_id.

Features:
- JSON-formatted structured logs
- Component tagging
- Session / turn correlation
- PII-aware helpers (utterances and replies are trainee speech)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Severity(str, Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Component(str, Enum):
    """System components for log tagging."""
    API = "api"
    SESSION_MANAGER = "session_manager"
    TURN_PIPELINE = "turn_pipeline"
    STT = "stt"
    LLM = "llm"
    TTS = "tts"
    CAPTURE = "capture"
    ERROR_HANDLER = "error_handler"


# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "component", "session_id", "turn_id", "message",
})


class JSONFormatter(logging.Formatter):
    """
    Render a record as a single JSON line.

    Fixed keys come first (timestamp, severity, component, message), then the
    correlation ids when present, then caller-supplied fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname.lower(),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }

        for key in ("session_id", "turn_id"):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Wrapper around Python's logging with structured JSON output.

    Usage:
        logger = get_logger(Component.TURN_PIPELINE).with_session("sess_1")
        logger.info("Segment emitted", segment_index=0, latency_ms=412)
        logger.info_pii("Utterance transcribed", text="is it AT12345?")
    """

    def __init__(
        self,
        component: str | Component,
        session_id: Optional[str] = None,
        turn_id: Optional[str] = None,
        logger_name: Optional[str] = None,
    ):
        self.component = component.value if isinstance(component, Component) else component
        self.session_id = session_id
        self.turn_id = turn_id
        self.logger = logging.getLogger(logger_name or self.component)

    def _log(
        self,
        level: int,
        message: str,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs,
    ):
        exc_info = kwargs.pop("exc_info", None)

        extra = {"component": self.component, **kwargs}
        if self.session_id:
            extra["session_id"] = self.session_id
        if self.turn_id:
            extra["turn_id"] = self.turn_id
        if pii:
            extra["pii"] = pii

        self.logger.log(level, message, exc_info=exc_info, extra=extra)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log at error level with the active exception attached."""
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, message, **kwargs)

    def debug_pii(self, message: str, **pii_fields):
        """
        Log debug with PII fields explicitly marked.

        Example:
            logger.debug_pii("Prompt built", utterance="where is the filter?")
        """
        self._log(logging.DEBUG, message, pii=pii_fields)

    def info_pii(self, message: str, **pii_fields):
        """Log info with PII fields explicitly marked."""
        self._log(logging.INFO, message, pii=pii_fields)

    def with_session(self, session_id: str) -> "StructuredLogger":
        """Create a new logger instance bound to a session."""
        return StructuredLogger(
            self.component,
            session_id=session_id,
            turn_id=self.turn_id,
            logger_name=self.logger.name,
        )

    def with_turn(self, turn_id: str) -> "StructuredLogger":
        """Create a new logger instance bound to a turn (keeps the session)."""
        return StructuredLogger(
            self.component,
            session_id=self.session_id,
            turn_id=turn_id,
            logger_name=self.logger.name,
        )


def _default_component(record: logging.LogRecord) -> bool:
    if not hasattr(record, "component"):
        record.component = record.name
    return True


def setup_logging(level: str = "INFO", use_json: bool = True) -> None:
    """
    Configure the root logger. Call once at process startup.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: JSON lines (True) or a plain text format (False)
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    if use_json:
        console_handler.setFormatter(JSONFormatter())
    else:
        # Third-party records (uvicorn, aiohttp) carry no component attribute.
        console_handler.addFilter(_default_component)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(levelname)s - %(component)s - %(message)s")
        )
    root_logger.addHandler(console_handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(
    component: str | Component,
    session_id: Optional[str] = None,
) -> StructuredLogger:
    """
    Get a structured logger for a component.

    Example:
        logger = get_logger(Component.SESSION_MANAGER, session_id="sess_123")
        logger.info("Session started")
    """
    return StructuredLogger(component, session_id=session_id)
