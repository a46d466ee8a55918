"""
Text-to-speech for reply segments.

Two interchangeable REST backends share one shape (SpeechBackend); which one
runs is decided by configuration when the service is built. The synthesizer
in front of them adds the timeout and turns every provider problem into a
SynthesisFailure.
"""
import asyncio
import time
from typing import Optional, Protocol

import aiohttp

from logging_setup import get_logger, Component
from .config import SpeechService, VoiceConfig
from .errors import BackendErrorCategory, SynthesisFailure

logger = get_logger(Component.TTS)


class SpeechBackend(Protocol):
    """Capability: turn one text segment into an audio payload."""

    name: str

    async def synthesize(self, text: str) -> bytes:
        ...

    async def aclose(self) -> None:
        ...


class _PooledHTTPBackend:
    """
    Shared aiohttp session handling for REST speech providers.

    The session is created on first use and reused so consecutive segments of
    a turn do not pay a new TCP/TLS handshake each.
    """

    name = "http"

    def __init__(self, *, pool_size: int = 10, connect_timeout: float = 3.0):
        self._pool_size = pool_size
        self._connect_timeout = connect_timeout
        self._http_session: Optional[aiohttp.ClientSession] = None

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            connector = aiohttp.TCPConnector(
                limit=self._pool_size,
                limit_per_host=self._pool_size,
                ttl_dns_cache=300,
            )
            # Total time is bounded by the synthesizer's wait_for.
            timeout = aiohttp.ClientTimeout(total=None, connect=self._connect_timeout)
            self._http_session = aiohttp.ClientSession(connector=connector, timeout=timeout)
            logger.info("TTS connection pool created", provider=self.name, pool_size=self._pool_size)
        return self._http_session

    async def _post_for_audio(self, url: str, *, headers: dict, params: dict, payload: dict) -> bytes:
        session = self._get_or_create_session()
        async with session.post(url, headers=headers, params=params, json=payload) as response:
            if response.status != 200:
                error_text = await response.text()
                logger.error(
                    "TTS provider error",
                    provider=self.name,
                    status_code=response.status,
                    error_text=error_text[:500],
                )
                raise RuntimeError(f"{self.name} TTS error: {response.status} - {error_text[:200]}")
            return await response.read()

    async def aclose(self) -> None:
        """Close the pooled session. Safe to call more than once."""
        if self._http_session is not None:
            try:
                await self._http_session.close()
                logger.info("TTS connection pool closed", provider=self.name)
            finally:
                self._http_session = None


class ElevenLabsSpeechBackend(_PooledHTTPBackend):
    """ElevenLabs text-to-speech -> MP3 44.1 kHz 128 kbps."""

    name = "elevenlabs"
    BASE_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"

    def __init__(self, *, api_key: str, voice_id: str = "pMsXgVXv3BLzUgSXRplE", **kwargs):
        super().__init__(**kwargs)
        if not api_key:
            raise ValueError("ElevenLabs TTS requires ELEVENLABS_API_KEY")
        self._api_key = api_key
        self._voice_id = voice_id

    async def synthesize(self, text: str) -> bytes:
        return await self._post_for_audio(
            self.BASE_URL.format(voice_id=self._voice_id),
            headers={"xi-api-key": self._api_key, "Accept": "audio/mpeg"},
            params={"output_format": "mp3_44100_128", "optimize_streaming_latency": "0"},
            payload={
                "text": text,
                "voice_settings": {
                    "stability": 0.1,
                    "similarity_boost": 0.3,
                    "style": 0.2,
                },
            },
        )


class DeepgramSpeechBackend(_PooledHTTPBackend):
    """Deepgram Aura text-to-speech -> 16-bit linear PCM in a WAV container."""

    name = "deepgram"
    BASE_URL = "https://api.deepgram.com/v1/speak"

    def __init__(self, *, api_key: str, model: str = "aura-orion-en", **kwargs):
        super().__init__(**kwargs)
        if not api_key:
            raise ValueError("Deepgram TTS requires DEEPGRAM_API_KEY")
        self._api_key = api_key
        self._model = model

    async def synthesize(self, text: str) -> bytes:
        return await self._post_for_audio(
            self.BASE_URL,
            headers={"Authorization": f"Token {self._api_key}"},
            params={"model": self._model, "encoding": "linear16", "container": "wav"},
            payload={"text": text},
        )


class SpeechSynthesizer:
    """Synthesizes one segment with a configured backend and a hard timeout."""

    def __init__(self, backend: SpeechBackend, *, timeout_seconds: float = 30.0):
        self.backend = backend
        self.timeout_seconds = timeout_seconds

    async def synthesize(self, segment: str, *, segment_index: int = 0) -> bytes:
        """
        Return the audio payload for a segment.

        Raises:
            SynthesisFailure: backend error, timeout, or an empty payload.
        """
        t_start = time.perf_counter()
        try:
            audio = await asyncio.wait_for(
                self.backend.synthesize(segment), timeout=self.timeout_seconds
            )
        except Exception as e:
            logger.warning(
                "TTS call failed",
                provider=self.backend.name,
                segment_index=segment_index,
                error_type=type(e).__name__,
            )
            raise SynthesisFailure.from_exception(
                f"{self.backend.name} could not synthesize segment {segment_index}",
                e,
                segment_index=segment_index,
            ) from e

        if not audio:
            raise SynthesisFailure(
                f"{self.backend.name} returned no audio for segment {segment_index}",
                cause=BackendErrorCategory.EMPTY_RESULT,
                segment_index=segment_index,
            )

        logger.info(
            "TTS call completed",
            provider=self.backend.name,
            segment_index=segment_index,
            text_length=len(segment),
            audio_bytes=len(audio),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return audio

    async def aclose(self) -> None:
        await self.backend.aclose()


def build_speech_backend(config: VoiceConfig) -> SpeechBackend:
    """Instantiate the configured speech backend variant."""
    if config.speech_service is SpeechService.DEEPGRAM:
        return DeepgramSpeechBackend(api_key=config.deepgram_api_key, model=config.deepgram_voice_model)
    return ElevenLabsSpeechBackend(api_key=config.elevenlabs_api_key, voice_id=config.elevenlabs_voice_id)
