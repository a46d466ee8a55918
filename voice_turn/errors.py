"""
Turn-stage failures and backend error classification.

A stage failure terminates the current turn. Nothing is retried: the caller
re-records (transcription) or asks again (generation, synthesis).
Backend exceptions are mapped onto stable categories so the structured error
a client receives never depends on a provider's wording.
"""
import asyncio
import re
from typing import Optional


class BackendErrorCategory:
    """Stable categories for errors raised by speech/model providers."""

    AUTH_FAILED = "backend.auth_failed"
    RATE_LIMITED = "backend.rate_limited"
    TIMEOUT = "backend.timeout"
    NETWORK_ERROR = "backend.network_error"
    EMPTY_RESULT = "backend.empty_result"
    BAD_INPUT = "backend.bad_input"
    BAD_OUTPUT = "backend.bad_output"
    UNKNOWN_ERROR = "backend.unknown_error"


# Backends report HTTP failures as "<provider> ... error: <status> - <body>".
_STATUS_IN_MESSAGE = re.compile(r"\berror:\s*(\d{3})\b")


def backend_status_code(error: BaseException) -> Optional[int]:
    """HTTP status of a provider error, from the SDK attribute or our message format."""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    match = _STATUS_IN_MESSAGE.search(str(error))
    return int(match.group(1)) if match else None


def classify_backend_error(error: BaseException) -> str:
    """Classify a provider exception into a BackendErrorCategory value."""
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return BackendErrorCategory.TIMEOUT

    status = backend_status_code(error)
    if status in (401, 403):
        return BackendErrorCategory.AUTH_FAILED
    if status == 429:
        return BackendErrorCategory.RATE_LIMITED
    if status in (408, 504):
        return BackendErrorCategory.TIMEOUT
    if status in (400, 413, 415, 422):
        return BackendErrorCategory.BAD_INPUT

    error_str = str(error).lower()
    if "unauthorized" in error_str or "invalid api key" in error_str:
        return BackendErrorCategory.AUTH_FAILED
    if "rate limit" in error_str or "quota" in error_str:
        return BackendErrorCategory.RATE_LIMITED
    if "timeout" in error_str or "timed out" in error_str:
        return BackendErrorCategory.TIMEOUT
    if "connection" in error_str or "network" in error_str or "dns" in error_str:
        return BackendErrorCategory.NETWORK_ERROR
    if "bad request" in error_str or "unsupported" in error_str or "invalid file" in error_str:
        return BackendErrorCategory.BAD_INPUT
    return BackendErrorCategory.UNKNOWN_ERROR


def redact_detail(detail: str) -> str:
    """Drop provider detail that may echo credentials back."""
    lowered = detail.lower()
    if "secret" in lowered or "password" in lowered or "key" in lowered or "token" in lowered:
        return "[redacted: potential secret]"
    return detail


class RehearsalError(Exception):
    """Base for every error surfaced to a rehearsal client."""

    category = "rehearsal.error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"category": self.category, "message": self.message}


class TurnFailure(RehearsalError):
    """A stage of the voice turn failed; the turn is over."""

    category = "turn.failed"
    status_code = 502

    def __init__(self, message: str, *, cause: Optional[str] = None):
        super().__init__(message)
        self.cause = cause or BackendErrorCategory.UNKNOWN_ERROR

    @classmethod
    def from_exception(cls, stage_message: str, error: BaseException, **kwargs):
        detail = redact_detail(str(error)) or type(error).__name__
        return cls(f"{stage_message}: {detail}", cause=classify_backend_error(error), **kwargs)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["cause"] = self.cause
        return data


class TranscriptionFailure(TurnFailure):
    """Audio could not be turned into text (empty, undecodable, backend error)."""

    category = "turn.transcription_failed"

    @property
    def status_code(self) -> int:
        # The recording itself was unusable: a client error, re-record.
        if self.cause in (BackendErrorCategory.BAD_INPUT, BackendErrorCategory.EMPTY_RESULT):
            return 422
        return 502


class GenerationFailure(TurnFailure):
    """The reply backend errored or timed out."""

    category = "turn.generation_failed"


class SynthesisFailure(TurnFailure):
    """A segment could not be synthesized; remaining segments are abandoned."""

    category = "turn.synthesis_failed"

    def __init__(self, message: str, *, cause: Optional[str] = None, segment_index: int = 0):
        super().__init__(message, cause=cause)
        self.segment_index = segment_index

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["segment_index"] = self.segment_index
        return data


class TurnCancelled(RehearsalError):
    """A newer capture took over the device; this turn stopped early."""

    category = "turn.cancelled"
    status_code = 409

    def __init__(self, message: str, *, reason: str = "preempted"):
        super().__init__(message)
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class UnspeakableText(RehearsalError):
    """Scripted text holds a word too long to fit in one synthesis request."""

    category = "turn.unspeakable_text"
    status_code = 422
