"""
Service handles for one running server.

Everything that talks to a backend or holds state is constructed here from
configuration and handed to the HTTP layer; nothing is created at import time.
"""
from dataclasses import dataclass
from typing import Any, Dict

from logging_setup import get_logger, Component
from observability.event_store import EventStore
from observability.events import Component as ObsComponent, EventEmitter
from voice_turn.capture import CaptureRegistry
from voice_turn.config import VoiceConfig
from voice_turn.generation import ResponseGenerator, build_reply_backend
from voice_turn.instructions import load_scenario
from voice_turn.pipeline import TurnPipeline
from voice_turn.synthesis import SpeechSynthesizer, build_speech_backend
from voice_turn.transcription import Transcriber, build_transcription_backend
from .config import ServerConfig
from .conversation import ConversationStore, InMemoryConversationStore
from .session import InMemorySessionStore, SessionManager
from .subjects import SubjectCatalog

logger = get_logger(Component.API)


@dataclass
class Services:
    sessions: SessionManager
    conversations: ConversationStore
    transcriber: Transcriber
    pipeline: TurnPipeline
    events: EventStore
    scenario: Dict[str, Any]

    async def aclose(self) -> None:
        """Close backend connection pools."""
        await self.transcriber.aclose()
        await self.pipeline.generator.aclose()
        await self.pipeline.synthesizer.aclose()


def build_services(voice_config: VoiceConfig, server_config: ServerConfig) -> Services:
    """Wire stores, backends and the pipeline from configuration."""
    events = EventStore(max_events=server_config.event_store_max_events)
    scenario = load_scenario(voice_config.scenario)

    sessions = SessionManager(
        InMemorySessionStore(),
        SubjectCatalog.from_yaml(server_config.subjects_file),
        confirmation_phrase=server_config.confirmation_phrase,
        emitter=EventEmitter(ObsComponent.SESSION_MANAGER, store=events),
    )
    conversations = InMemoryConversationStore()
    transcriber = Transcriber(
        build_transcription_backend(voice_config),
        timeout_seconds=voice_config.transcription_timeout_seconds,
    )
    pipeline = TurnPipeline(
        transcriber=transcriber,
        generator=ResponseGenerator(
            build_reply_backend(voice_config),
            scenario=scenario,
            timeout_seconds=voice_config.generation_timeout_seconds,
        ),
        synthesizer=SpeechSynthesizer(
            build_speech_backend(voice_config),
            timeout_seconds=voice_config.synthesis_timeout_seconds,
        ),
        conversations=conversations,
        sessions=sessions,
        captures=CaptureRegistry(),
        max_chunk_size=voice_config.max_chunk_size,
        pacing_seconds=voice_config.segment_pacing_seconds,
        emitter=EventEmitter(ObsComponent.TURN_PIPELINE, store=events),
    )

    logger.info(
        "Services built",
        text_model=voice_config.text_model.value,
        speech_service=voice_config.speech_service.value,
        transcription_service=voice_config.transcription_service.value,
        scenario=scenario.get("name"),
    )
    return Services(
        sessions=sessions,
        conversations=conversations,
        transcriber=transcriber,
        pipeline=pipeline,
        events=events,
        scenario=scenario,
    )
