"""
Voice-turn pipeline: utterance in, streamed reply audio out.

    RECEIVED -> TRANSCRIBED -> GENERATED -> CHUNKED -> STREAMING -> DONE
    (any stage) -> FAILED / CANCELLED

Stages run strictly in order. Audio segments are synthesized one at a time and
handed to the consumer as soon as each is ready; the next synthesis call is
only made once the consumer asks for more. The stream is one-shot.

Side effects of a successful interactive turn: exactly one user entry and one
ai entry in the conversation log, however many segments are produced.
Both are written after the reply is generated and chunked, so a turn that
fails or is cancelled before streaming leaves nothing behind. A turn cancelled by a newer capture
raises TurnCancelled at its next stage boundary.
"""
import asyncio
import time
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Tuple

from logging_setup import get_logger, Component
from observability.events import (
    Component as ObsComponent,
    EventEmitter,
    Severity,
    text_pii,
)
from rehearsal.conversation import ConversationEntry, ConversationStore, Sender
from rehearsal.errors import InvalidState, NotFound
from rehearsal.session import Session, SessionManager
from .capture import CaptureRegistry
from .chunker import chunk_text
from .errors import (
    BackendErrorCategory,
    GenerationFailure,
    RehearsalError,
    TurnCancelled,
    UnspeakableText,
)
from .generation import ReplyMode, ResponseGenerator
from .synthesis import SpeechSynthesizer
from .transcription import Transcriber

logger = get_logger(Component.TURN_PIPELINE)

Sleep = Callable[[float], Awaitable[None]]


class TurnState(str, Enum):
    RECEIVED = "received"
    TRANSCRIBED = "transcribed"
    GENERATED = "generated"
    CHUNKED = "chunked"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({TurnState.DONE, TurnState.FAILED, TurnState.CANCELLED})


@dataclass
class TurnRequest:
    """One utterance to answer. Exactly one of `audio` / `text` is set."""

    owner: str
    mode: ReplyMode
    session_id: Optional[str] = None
    audio: Optional[bytes] = None
    text: Optional[str] = None

    def __post_init__(self):
        if not self.owner:
            raise ValueError("owner is required")
        if (self.audio is None) == (self.text is None):
            raise ValueError("Exactly one of audio or text is required")
        if self.text is not None and not self.text.strip():
            raise ValueError("text must not be blank")
        if self.mode is ReplyMode.SCRIPTED and self.text is None:
            raise ValueError("Scripted turns take their reply as text")
        if self.mode is ReplyMode.INTERACTIVE and not self.session_id:
            raise ValueError("Interactive turns need a session_id")


@dataclass
class Turn:
    """Ephemeral record of one turn; never persisted."""

    request: TurnRequest
    turn_id: str = field(default_factory=lambda: f"turn_{uuid.uuid4().hex[:12]}")
    state: TurnState = TurnState.RECEIVED
    transcript: Optional[str] = None
    reply: Optional[str] = None
    segments: List[str] = field(default_factory=list)
    emitted: int = 0
    error: Optional[BaseException] = None
    cancel_reason: Optional[str] = None
    _cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def advance(self, state: TurnState) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Turn {self.turn_id} is already {self.state.value}")
        self.state = state

    def cancel(self, reason: str = "cancelled") -> None:
        """Ask the turn to stop; it finishes at its next check."""
        if self.is_terminal or self.cancelled:
            return
        self.cancel_reason = reason
        self._cancel_event.set()

    async def wait_cancelled(self) -> None:
        await self._cancel_event.wait()


def _elapsed_ms(t_start: float) -> int:
    return int((time.perf_counter() - t_start) * 1000)


class TurnPipeline:
    """Runs turns through transcribe -> generate -> chunk -> synthesize."""

    def __init__(
        self,
        *,
        transcriber: Transcriber,
        generator: ResponseGenerator,
        synthesizer: SpeechSynthesizer,
        conversations: ConversationStore,
        sessions: SessionManager,
        captures: Optional[CaptureRegistry] = None,
        max_chunk_size: int = 1900,
        pacing_seconds: float = 1.0,
        sleep: Optional[Sleep] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        self.transcriber = transcriber
        self.generator = generator
        self.synthesizer = synthesizer
        self.conversations = conversations
        self.sessions = sessions
        self.captures = captures or CaptureRegistry()
        self.max_chunk_size = max_chunk_size
        self.pacing_seconds = pacing_seconds
        self._sleep = sleep or asyncio.sleep
        self._emitter = emitter or EventEmitter(ObsComponent.TURN_PIPELINE)

    def start(self, request: TurnRequest) -> Tuple[Turn, AsyncIterator[bytes]]:
        """Create a turn for `request` and return it with its audio stream."""
        if request.mode is ReplyMode.SCRIPTED:
            # Nothing has been claimed or persisted yet; reject unspeakable text up front.
            self._segment(request.text, request.mode)
        turn = Turn(request=request)
        return turn, self.stream(turn)

    async def stream(self, turn: Turn) -> AsyncIterator[bytes]:
        """
        Yield the turn's audio payloads in segment order.

        Stage failures are raised to the consumer after any segments that were
        already yielded. Closing the stream early cancels the turn; the capture
        claim is released on every exit path.
        """
        request = turn.request
        log = logger.with_turn(turn.turn_id)
        if request.session_id:
            log = log.with_session(request.session_id)
        t_start = time.perf_counter()

        self._emit(
            turn,
            "turn.received",
            mode=request.mode.value,
            input="audio" if request.audio is not None else "text",
        )
        log.info("Turn received", mode=request.mode.value)

        try:
            session = await self._resolve_session(request)
            async with self.captures.claim(request.owner, turn):
                async with aclosing(self._run(turn, session, log)) as audio_stream:
                    async for audio in audio_stream:
                        yield audio
        except (GeneratorExit, asyncio.CancelledError):
            turn.cancel("caller_disconnected")
            raise
        except TurnCancelled as e:
            turn.error = e
            raise
        except Exception as e:
            turn.error = e
            if not turn.is_terminal:
                turn.advance(TurnState.FAILED)
            raise
        finally:
            self._finish(turn, log, t_start)

    async def _resolve_session(self, request: TurnRequest) -> Optional[Session]:
        """Sessions are a precondition, checked before any backend call."""
        if not request.session_id:
            return None
        session = await self.sessions.get(request.session_id)
        if session.owner != request.owner:
            raise NotFound(f"Session {request.session_id} not found")
        if request.mode is ReplyMode.INTERACTIVE and not session.is_active():
            raise InvalidState(f"Session {request.session_id} is {session.status.value}")
        return session

    async def _run(self, turn: Turn, session: Optional[Session], log) -> AsyncIterator[bytes]:
        request = turn.request
        session_id = request.session_id

        # RECEIVED -> TRANSCRIBED
        if request.text is not None:
            utterance = request.text.strip()
        else:
            t_stage = time.perf_counter()
            utterance = await self.transcriber.transcribe(request.audio)
            self._emit(
                turn,
                "stt.final",
                latency_ms=_elapsed_ms(t_stage),
                text=utterance,
                pii=text_pii("text"),
            )
        turn.transcript = utterance
        turn.advance(TurnState.TRANSCRIBED)
        log.info_pii("Utterance ready", text=utterance)
        self._check_cancelled(turn)

        # TRANSCRIBED -> GENERATED
        history: List[ConversationEntry] = []
        if request.mode is ReplyMode.INTERACTIVE:
            history = await self.conversations.list(session_id)

        self._emit(turn, "llm.request", mode=request.mode.value, history_entries=len(history))
        t_stage = time.perf_counter()
        reply = await self.generator.generate(
            utterance,
            history,
            session.subject if session is not None else None,
            request.mode,
        )
        turn.reply = reply
        turn.advance(TurnState.GENERATED)
        self._emit(
            turn,
            "llm.response",
            latency_ms=_elapsed_ms(t_stage),
            text=reply,
            pii=text_pii("text"),
        )
        self._check_cancelled(turn)

        # GENERATED -> CHUNKED
        turn.segments = self._segment(reply, request.mode)
        turn.advance(TurnState.CHUNKED)

        # The user / ai pair is written together, once, by the turn holding the capture.
        if session_id:
            if request.mode is ReplyMode.INTERACTIVE:
                await self.conversations.append(session_id, Sender.USER, utterance)
            await self.conversations.append(session_id, Sender.AI, reply)
        self._emit(turn, "turn.chunked", segment_count=len(turn.segments), reply_chars=len(reply))

        # CHUNKED -> STREAMING
        turn.advance(TurnState.STREAMING)
        for index, segment in enumerate(turn.segments):
            if index > 0:
                await self._pause(turn)
            self._check_cancelled(turn)
            t_stage = time.perf_counter()
            audio = await self.synthesizer.synthesize(segment, segment_index=index)
            self._check_cancelled(turn)
            turn.emitted += 1
            self._emit(
                turn,
                "tts.segment_emitted",
                segment_index=index,
                segment_chars=len(segment),
                audio_bytes=len(audio),
                latency_ms=_elapsed_ms(t_stage),
            )
            yield audio

    def _segment(self, text: str, mode: ReplyMode) -> List[str]:
        try:
            return chunk_text(text, self.max_chunk_size)
        except ValueError as e:
            if mode is ReplyMode.SCRIPTED:
                raise UnspeakableText(f"Text cannot be split for speech: {e}") from e
            raise GenerationFailure(
                f"Reply cannot be split for speech: {e}",
                cause=BackendErrorCategory.BAD_OUTPUT,
            ) from e

    @staticmethod
    def _check_cancelled(turn: Turn) -> None:
        if turn.cancelled:
            raise TurnCancelled(
                f"Turn {turn.turn_id} was cancelled",
                reason=turn.cancel_reason or "cancelled",
            )

    async def _pause(self, turn: Turn) -> None:
        """Inter-segment pacing; returns early if the turn is cancelled."""
        if self.pacing_seconds <= 0 or turn.cancelled:
            return
        sleeper = asyncio.ensure_future(self._sleep(self.pacing_seconds))
        waiter = asyncio.ensure_future(turn.wait_cancelled())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()

    def _finish(self, turn: Turn, log, t_start: float) -> None:
        if not turn.is_terminal:
            turn.advance(TurnState.CANCELLED if turn.cancelled else TurnState.DONE)

        latency_ms = _elapsed_ms(t_start)
        if turn.state is TurnState.DONE:
            log.info("Turn done", segments=turn.emitted, latency_ms=latency_ms)
            self._emit(turn, "turn.done", segments_emitted=turn.emitted, latency_ms=latency_ms)
        elif turn.state is TurnState.CANCELLED:
            log.info("Turn cancelled", reason=turn.cancel_reason, segments=turn.emitted)
            self._emit(
                turn,
                "turn.cancelled",
                reason=turn.cancel_reason,
                segments_emitted=turn.emitted,
                latency_ms=latency_ms,
            )
        else:
            error = turn.error
            if isinstance(error, RehearsalError):
                error_fields = error.to_dict()
            else:
                error_fields = {"category": "turn.failed", "message": type(error).__name__}
            log.warning(
                "Turn failed",
                category=error_fields["category"],
                segments=turn.emitted,
            )
            self._emit(
                turn,
                "turn.failed",
                severity=Severity.ERROR,
                error=error_fields,
                segments_emitted=turn.emitted,
                latency_ms=latency_ms,
            )

    def _emit(self, turn: Turn, event_type: str, severity: Severity = Severity.INFO, pii=None, **fields):
        self._emitter.emit(
            event_type,
            session_id=turn.request.session_id or "",
            severity=severity,
            correlation_id=turn.turn_id,
            pii=pii,
            turn_id=turn.turn_id,
            **fields,
        )
