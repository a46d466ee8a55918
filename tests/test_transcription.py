"""
Tests for recording transcription.
"""
import base64

import pytest

from conftest import FakeTranscriptionBackend
from voice_turn.errors import BackendErrorCategory, TranscriptionFailure
from voice_turn.transcription import Transcriber, decode_audio_payload


@pytest.mark.asyncio
async def test_transcribe_strips_text():
    backend = FakeTranscriptionBackend(text="  is it the return filter?  \n")
    transcriber = Transcriber(backend)

    assert await transcriber.transcribe(b"RIFF....") == "is it the return filter?"
    assert backend.calls == [b"RIFF...."]


@pytest.mark.asyncio
async def test_empty_recording_fails_without_backend_call():
    backend = FakeTranscriptionBackend()
    transcriber = Transcriber(backend)

    with pytest.raises(TranscriptionFailure) as exc_info:
        await transcriber.transcribe(b"")

    assert backend.calls == []
    assert exc_info.value.cause == BackendErrorCategory.BAD_INPUT
    assert exc_info.value.status_code == 422


@pytest.mark.asyncio
async def test_blank_transcript_fails():
    transcriber = Transcriber(FakeTranscriptionBackend(text="   "))

    with pytest.raises(TranscriptionFailure) as exc_info:
        await transcriber.transcribe(b"RIFF")

    assert exc_info.value.cause == BackendErrorCategory.EMPTY_RESULT


@pytest.mark.asyncio
async def test_backend_error_is_classified():
    transcriber = Transcriber(FakeTranscriptionBackend(error=RuntimeError("401 Unauthorized")))

    with pytest.raises(TranscriptionFailure) as exc_info:
        await transcriber.transcribe(b"RIFF")

    assert exc_info.value.cause == BackendErrorCategory.AUTH_FAILED
    assert exc_info.value.status_code == 502


def test_decode_audio_payload():
    assert decode_audio_payload(base64.b64encode(b"RIFF").decode()) == b"RIFF"


def test_decode_audio_payload_rejects_garbage():
    with pytest.raises(TranscriptionFailure) as exc_info:
        decode_audio_payload("not base64 at all!")

    assert exc_info.value.cause == BackendErrorCategory.BAD_INPUT
