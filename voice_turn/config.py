"""
Voice-turn configuration.

Loads backend selection, credentials, and pipeline tuning from environment
variables. Backend names are resolved to enum values here, once; nothing
downstream compares provider strings again.
"""
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


class TextModel(str, Enum):
    """Reply-generation backend variants."""
    OPENAI = "openai"
    GROQ = "groq"


class SpeechService(str, Enum):
    """Text-to-speech backend variants."""
    ELEVENLABS = "elevenlabs"
    DEEPGRAM = "deepgram"


class TranscriptionService(str, Enum):
    """Speech-to-text backend variants."""
    OPENAI = "openai"
    GROQ = "groq"


def load_env_files(root: Optional[Path] = None) -> None:
    """
    Seed os.environ from .env_local / .env.local (local dev convenience).

    Never overrides variables that are already set.
    """
    root = root or Path(__file__).parent.parent
    for name in (".env_local", ".env.local"):
        p = root / name
        if p.exists():
            load_dotenv(p, override=False)


def _strip_comment(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if "#" in value:
        value = value.split("#")[0]
    value = value.strip()
    return value or None


def _parse_int_env(key: str, default: int) -> int:
    """
    Parse integer environment variable, stripping comments and whitespace.

    Handles cases like:
    - "1900  # chars" -> 1900
    - "abc" -> default
    - unset -> default
    """
    value = _strip_comment(os.environ.get(key))
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _strip_comment(os.environ.get(key))
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_choice(key: str, enum_cls, default):
    raw = (os.environ.get(key) or default.value).strip().lower()
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"{key}={raw!r} is not supported (expected one of: {allowed})")


def _require(key: str, reason: str) -> str:
    value = os.environ.get(key)
    if not value:
        raise ValueError(f"{key} is required when {reason}")
    return value


@dataclass
class VoiceConfig:
    """Voice-turn configuration."""

    # Backend selection
    text_model: TextModel
    speech_service: SpeechService
    transcription_service: TranscriptionService

    # Credentials (only the selected variants' keys are mandatory)
    openai_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None
    deepgram_api_key: Optional[str] = None

    # Models / voices
    openai_chat_model: str = "gpt-4o-mini"
    groq_chat_model: str = "llama3-8b-8192"
    openai_transcription_model: str = "whisper-1"
    groq_transcription_model: str = "whisper-large-v3"
    elevenlabs_voice_id: str = "pMsXgVXv3BLzUgSXRplE"
    deepgram_voice_model: str = "aura-orion-en"

    # Pipeline tuning
    max_chunk_size: int = 1900
    segment_pacing_seconds: float = 1.0
    transcription_timeout_seconds: float = 30.0
    generation_timeout_seconds: float = 30.0
    synthesis_timeout_seconds: float = 30.0

    # Persona scenario (voice_turn/scenarios/<name>.yaml)
    scenario: str = "default"

    @classmethod
    def from_env(cls) -> "VoiceConfig":
        """Load configuration from environment variables."""
        text_model = _parse_choice("TEXT_MODEL", TextModel, TextModel.OPENAI)
        speech_service = _parse_choice("SPEECH_SERVICE", SpeechService, SpeechService.ELEVENLABS)
        transcription_service = _parse_choice(
            "TRANSCRIPTION_SERVICE", TranscriptionService, TranscriptionService.OPENAI
        )

        needs_openai = text_model is TextModel.OPENAI or transcription_service is TranscriptionService.OPENAI
        needs_groq = text_model is TextModel.GROQ or transcription_service is TranscriptionService.GROQ

        return cls(
            text_model=text_model,
            speech_service=speech_service,
            transcription_service=transcription_service,
            openai_api_key=(
                _require("OPENAI_API_KEY", "an OpenAI backend is selected")
                if needs_openai else os.environ.get("OPENAI_API_KEY")
            ),
            groq_api_key=(
                _require("GROQ_API_KEY", "a Groq backend is selected")
                if needs_groq else os.environ.get("GROQ_API_KEY")
            ),
            elevenlabs_api_key=(
                _require("ELEVENLABS_API_KEY", "SPEECH_SERVICE=elevenlabs")
                if speech_service is SpeechService.ELEVENLABS else os.environ.get("ELEVENLABS_API_KEY")
            ),
            deepgram_api_key=(
                _require("DEEPGRAM_API_KEY", "SPEECH_SERVICE=deepgram")
                if speech_service is SpeechService.DEEPGRAM else os.environ.get("DEEPGRAM_API_KEY")
            ),
            openai_chat_model=os.environ.get("OPENAI_CHAT_MODEL", "gpt-4o-mini"),
            groq_chat_model=os.environ.get("GROQ_CHAT_MODEL", "llama3-8b-8192"),
            openai_transcription_model=os.environ.get("OPENAI_TRANSCRIPTION_MODEL", "whisper-1"),
            groq_transcription_model=os.environ.get("GROQ_TRANSCRIPTION_MODEL", "whisper-large-v3"),
            elevenlabs_voice_id=os.environ.get("ELEVENLABS_VOICE_ID", "pMsXgVXv3BLzUgSXRplE"),
            deepgram_voice_model=os.environ.get("DEEPGRAM_VOICE_MODEL", "aura-orion-en"),
            max_chunk_size=_parse_int_env("MAX_CHUNK_SIZE", default=1900),
            segment_pacing_seconds=_parse_float_env("SEGMENT_PACING_SECONDS", default=1.0),
            transcription_timeout_seconds=_parse_float_env("TRANSCRIPTION_TIMEOUT_SECONDS", default=30.0),
            generation_timeout_seconds=_parse_float_env("GENERATION_TIMEOUT_SECONDS", default=30.0),
            synthesis_timeout_seconds=_parse_float_env("SYNTHESIS_TIMEOUT_SECONDS", default=30.0),
            scenario=os.environ.get("REHEARSAL_SCENARIO", "default"),
        )
