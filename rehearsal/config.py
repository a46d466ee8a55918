"""
Server configuration for the rehearsal API.
Loads from environment variables with sensible defaults.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from voice_turn.config import _parse_int_env
from .session import DEFAULT_CONFIRMATION_PHRASE


def _parse_bool_env(key: str, default: bool) -> bool:
    value = os.environ.get(key)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """HTTP server and session-layer settings."""

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    log_json: bool = True
    confirmation_phrase: str = DEFAULT_CONFIRMATION_PHRASE
    # None means the packaged rehearsal/data/subjects.yaml
    subjects_file: Optional[Path] = None
    event_store_max_events: int = 10000

    @classmethod
    def from_env(cls) -> "ServerConfig":
        subjects_file = os.environ.get("SUBJECTS_FILE")
        return cls(
            host=os.environ.get("HOST", "0.0.0.0"),
            port=_parse_int_env("PORT", default=8000),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            log_json=_parse_bool_env("LOG_JSON", default=True),
            confirmation_phrase=os.environ.get("CONFIRMATION_PHRASE", DEFAULT_CONFIRMATION_PHRASE),
            subjects_file=Path(subjects_file) if subjects_file else None,
            event_store_max_events=_parse_int_env("EVENT_STORE_MAX_EVENTS", default=10000),
        )
