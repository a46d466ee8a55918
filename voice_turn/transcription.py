"""
Speech-to-text for recorded utterances.

A recording that is empty, undecodable, or transcribes to nothing is a
TranscriptionFailure: the trainee re-records, nothing is silently skipped.
"""
import asyncio
import base64
import binascii
import time
from typing import Optional, Protocol

import aiohttp
from groq import AsyncGroq

from logging_setup import get_logger, Component
from .config import TranscriptionService, VoiceConfig
from .errors import BackendErrorCategory, TranscriptionFailure

logger = get_logger(Component.STT)


class TranscriptionBackend(Protocol):
    """Capability: turn an audio recording into text."""

    name: str

    async def transcribe(self, audio: bytes, filename: str = "audio.wav") -> str:
        ...

    async def aclose(self) -> None:
        ...


class OpenAIWhisperBackend:
    """OpenAI Whisper via the REST transcription endpoint (multipart upload)."""

    name = "openai"
    URL = "https://api.openai.com/v1/audio/transcriptions"

    def __init__(self, *, api_key: str, model: str = "whisper-1"):
        if not api_key:
            raise ValueError("OpenAI transcription requires OPENAI_API_KEY")
        self._api_key = api_key
        self._model = model
        self._http_session: Optional[aiohttp.ClientSession] = None

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession()
        return self._http_session

    async def transcribe(self, audio: bytes, filename: str = "audio.wav") -> str:
        form = aiohttp.FormData()
        form.add_field("model", self._model)
        form.add_field("file", audio, filename=filename, content_type="audio/wav")

        session = self._get_or_create_session()
        async with session.post(
            self.URL,
            data=form,
            headers={"Authorization": f"Bearer {self._api_key}"},
        ) as response:
            if response.status != 200:
                error_text = await response.text()
                raise RuntimeError(f"OpenAI transcription error: {response.status} - {error_text[:200]}")
            data = await response.json()
            return data.get("text") or ""

    async def aclose(self) -> None:
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None


class GroqWhisperBackend:
    """Whisper hosted on Groq, through the official async SDK."""

    name = "groq"

    def __init__(self, *, api_key: str, model: str = "whisper-large-v3"):
        if not api_key:
            raise ValueError("Groq transcription requires GROQ_API_KEY")
        self._model = model
        self._client = AsyncGroq(api_key=api_key)

    async def transcribe(self, audio: bytes, filename: str = "audio.wav") -> str:
        result = await self._client.audio.transcriptions.create(
            file=(filename, audio),
            model=self._model,
        )
        return getattr(result, "text", None) or ""

    async def aclose(self) -> None:
        await self._client.close()


def decode_audio_payload(audio_b64: str) -> bytes:
    """
    Decode a base64 recording as sent by the browser.

    Raises:
        TranscriptionFailure: the payload is not valid base64.
    """
    try:
        return base64.b64decode(audio_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise TranscriptionFailure(
            "Audio payload is not valid base64",
            cause=BackendErrorCategory.BAD_INPUT,
        ) from e


class Transcriber:
    """Transcribes one recording with the configured backend and a timeout."""

    def __init__(self, backend: TranscriptionBackend, *, timeout_seconds: float = 30.0):
        self.backend = backend
        self.timeout_seconds = timeout_seconds

    async def transcribe(self, audio: bytes) -> str:
        """
        Return the stripped transcript of a recording.

        Raises:
            TranscriptionFailure: empty input, backend error or timeout, or a
                blank transcript.
        """
        if not audio:
            raise TranscriptionFailure(
                "Recording is empty",
                cause=BackendErrorCategory.BAD_INPUT,
            )

        t_start = time.perf_counter()
        try:
            text = await asyncio.wait_for(
                self.backend.transcribe(audio), timeout=self.timeout_seconds
            )
        except Exception as e:
            logger.warning(
                "STT call failed",
                provider=self.backend.name,
                audio_bytes=len(audio),
                error_type=type(e).__name__,
            )
            raise TranscriptionFailure.from_exception(
                f"{self.backend.name} could not transcribe the recording", e
            ) from e

        text = (text or "").strip()
        if not text:
            raise TranscriptionFailure(
                "No speech recognized in the recording",
                cause=BackendErrorCategory.EMPTY_RESULT,
            )

        logger.info(
            "STT call completed",
            provider=self.backend.name,
            audio_bytes=len(audio),
            transcript_length=len(text),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return text

    async def aclose(self) -> None:
        await self.backend.aclose()


def build_transcription_backend(config: VoiceConfig) -> TranscriptionBackend:
    """Instantiate the configured transcription backend variant."""
    if config.transcription_service is TranscriptionService.GROQ:
        return GroqWhisperBackend(api_key=config.groq_api_key, model=config.groq_transcription_model)
    return OpenAIWhisperBackend(api_key=config.openai_api_key, model=config.openai_transcription_model)
