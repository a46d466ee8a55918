"""
Shared fakes and fixtures.

Backends are replaced by in-memory fakes that record their calls; no test
touches the network.
"""
import random
from typing import Dict, List, Optional

import pytest

from observability.event_store import EventStore
from observability.events import Component as ObsComponent, EventEmitter
from rehearsal.conversation import InMemoryConversationStore
from rehearsal.services import Services
from rehearsal.session import InMemorySessionStore, SessionManager, Subject
from rehearsal.subjects import SubjectCatalog
from voice_turn.capture import CaptureRegistry
from voice_turn.generation import ResponseGenerator
from voice_turn.instructions import DEFAULT_SCENARIO
from voice_turn.pipeline import TurnPipeline
from voice_turn.synthesis import SpeechSynthesizer
from voice_turn.transcription import Transcriber


SUBJECT = Subject(
    machine_model="Komatsu PC210-11",
    part_description="Hydraulic return filter",
    part_number="AT12345",
    breadcrumb="Hydraulic System > Filters > Return Filter",
)


class FakeTranscriptionBackend:
    name = "fake-stt"

    def __init__(self, text: str = "where is the hydraulic filter?", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls: List[bytes] = []
        self.closed = False

    async def transcribe(self, audio: bytes, filename: str = "audio.wav") -> str:
        self.calls.append(audio)
        if self.error is not None:
            raise self.error
        return self.text

    async def aclose(self) -> None:
        self.closed = True


class FakeReplyBackend:
    name = "fake-llm"

    def __init__(self, reply: Optional[str] = "I think it is near the engine.", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[List[Dict[str, str]]] = []
        self.closed = False

    async def complete(self, messages: List[Dict[str, str]]) -> Optional[str]:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply

    async def aclose(self) -> None:
        self.closed = True


class FakeSpeechBackend:
    """Returns b"audio-<n>" for the n-th call; fails on call index `fail_on`."""

    name = "fake-tts"

    def __init__(self, fail_on: Optional[int] = None, error: Optional[Exception] = None):
        self.fail_on = fail_on
        self.error = error or RuntimeError("connection reset by peer")
        self.calls: List[str] = []
        self.closed = False

    async def synthesize(self, text: str) -> bytes:
        index = len(self.calls)
        self.calls.append(text)
        if self.fail_on is not None and index == self.fail_on:
            raise self.error
        return f"audio-{index}".encode()

    async def aclose(self) -> None:
        self.closed = True


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def event_store():
    return EventStore()


@pytest.fixture
def catalog():
    return SubjectCatalog([SUBJECT])


@pytest.fixture
def session_manager(catalog, event_store):
    return SessionManager(
        InMemorySessionStore(),
        catalog,
        rng=random.Random(7),
        emitter=EventEmitter(ObsComponent.SESSION_MANAGER, store=event_store),
    )


@pytest.fixture
def conversations():
    return InMemoryConversationStore()


@pytest.fixture
def stt_backend():
    return FakeTranscriptionBackend()


@pytest.fixture
def llm_backend():
    return FakeReplyBackend()


@pytest.fixture
def tts_backend():
    return FakeSpeechBackend()


@pytest.fixture
def pipeline(stt_backend, llm_backend, tts_backend, conversations, session_manager, event_store):
    return TurnPipeline(
        transcriber=Transcriber(stt_backend, timeout_seconds=1.0),
        generator=ResponseGenerator(llm_backend, scenario=DEFAULT_SCENARIO, timeout_seconds=1.0),
        synthesizer=SpeechSynthesizer(tts_backend, timeout_seconds=1.0),
        conversations=conversations,
        sessions=session_manager,
        captures=CaptureRegistry(),
        max_chunk_size=1900,
        pacing_seconds=1.0,
        sleep=no_sleep,
        emitter=EventEmitter(ObsComponent.TURN_PIPELINE, store=event_store),
    )


@pytest.fixture
def services(pipeline, session_manager, conversations, event_store):
    return Services(
        sessions=session_manager,
        conversations=conversations,
        transcriber=pipeline.transcriber,
        pipeline=pipeline,
        events=event_store,
        scenario=DEFAULT_SCENARIO,
    )
