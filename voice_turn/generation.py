"""
Reply generation for the role-playing customer.

Order of decisions for an interactive reply:
1. the trainee said the exact part number -> fixed success acknowledgment
2. otherwise one call to the configured chat model with persona + transcript
3. a model that answers with nothing -> deterministic hint reply
Scripted replies (announcements) are returned as given.
"""
import asyncio
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

import aiohttp
from groq import AsyncGroq

from logging_setup import get_logger, Component
from rehearsal.conversation import ConversationEntry, format_transcript
from rehearsal.session import Subject
from .config import TextModel, VoiceConfig
from .errors import GenerationFailure
from .instructions import build_system_instruction, hint_reply, success_acknowledgment

logger = get_logger(Component.LLM)


class ReplyMode(str, Enum):
    """How a turn's reply text is produced."""
    SCRIPTED = "scripted"
    INTERACTIVE = "interactive"


class ReplyBackend(Protocol):
    """Capability: chat completion over a list of role/content messages."""

    name: str

    async def complete(self, messages: List[Dict[str, str]]) -> Optional[str]:
        ...

    async def aclose(self) -> None:
        ...


class OpenAIChatBackend:
    """OpenAI chat completions over REST."""

    name = "openai"
    URL = "https://api.openai.com/v1/chat/completions"

    def __init__(self, *, api_key: str, model: str = "gpt-4o-mini"):
        if not api_key:
            raise ValueError("OpenAI chat requires OPENAI_API_KEY")
        self._api_key = api_key
        self._model = model
        self._http_session: Optional[aiohttp.ClientSession] = None

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession()
        return self._http_session

    async def complete(self, messages: List[Dict[str, str]]) -> Optional[str]:
        session = self._get_or_create_session()
        async with session.post(
            self.URL,
            json={"model": self._model, "messages": messages},
            headers={"Authorization": f"Bearer {self._api_key}"},
        ) as response:
            if response.status != 200:
                error_text = await response.text()
                raise RuntimeError(f"OpenAI chat error: {response.status} - {error_text[:200]}")
            data = await response.json()
        choices = data.get("choices") or []
        if not choices:
            return None
        return (choices[0].get("message") or {}).get("content")

    async def aclose(self) -> None:
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None


class GroqChatBackend:
    """Groq chat completions through the official async SDK."""

    name = "groq"

    def __init__(self, *, api_key: str, model: str = "llama3-8b-8192"):
        if not api_key:
            raise ValueError("Groq chat requires GROQ_API_KEY")
        self._model = model
        self._client = AsyncGroq(api_key=api_key)

    async def complete(self, messages: List[Dict[str, str]]) -> Optional[str]:
        resp = await self._client.chat.completions.create(model=self._model, messages=messages)
        return resp.choices[0].message.content

    async def aclose(self) -> None:
        await self._client.close()


def build_messages(
    system_instruction: str,
    history: Sequence[ConversationEntry],
    utterance: str,
) -> List[Dict[str, str]]:
    """
    Prompt layout: persona, prior transcript as "sender: message" lines,
    then the current utterance. An empty transcript is left out.
    """
    messages = [{"role": "system", "content": system_instruction}]
    context = format_transcript(history)
    if context:
        messages.append({"role": "user", "content": context})
    messages.append({"role": "user", "content": utterance})
    return messages


class ResponseGenerator:
    """Produces the customer's next line for a turn."""

    def __init__(
        self,
        backend: ReplyBackend,
        *,
        scenario: Optional[Dict[str, Any]] = None,
        timeout_seconds: float = 30.0,
    ):
        self.backend = backend
        self.scenario = scenario
        self.timeout_seconds = timeout_seconds

    async def generate(
        self,
        utterance: str,
        history: Sequence[ConversationEntry],
        subject: Optional[Subject],
        mode: ReplyMode,
    ) -> str:
        """
        Return the reply text for `utterance`.

        Raises:
            GenerationFailure: the model call errored or timed out, or an
                interactive reply was requested without a subject.
        """
        if mode is ReplyMode.SCRIPTED:
            return utterance

        if subject is None:
            raise GenerationFailure("Interactive replies need the session's subject")

        # Win condition: exact, case-sensitive part number anywhere in the utterance.
        if subject.part_number in utterance:
            logger.info("Part number found by trainee", backend_called=False)
            return success_acknowledgment(subject, self.scenario)

        fallback = hint_reply(utterance, subject, self.scenario)
        messages = build_messages(
            build_system_instruction(subject, self.scenario), history, utterance
        )
        logger.debug_pii("LLM prompt built", utterance=utterance, history_entries=len(history))

        t_start = time.perf_counter()
        try:
            content = await asyncio.wait_for(
                self.backend.complete(messages), timeout=self.timeout_seconds
            )
        except Exception as e:
            logger.warning(
                "LLM call failed",
                provider=self.backend.name,
                error_type=type(e).__name__,
            )
            raise GenerationFailure.from_exception(
                f"{self.backend.name} could not generate a reply", e
            ) from e

        latency_ms = int((time.perf_counter() - t_start) * 1000)
        if not content or not content.strip():
            logger.warning("LLM returned no content, using hint reply", provider=self.backend.name)
            return fallback

        logger.info("LLM call completed", provider=self.backend.name, latency_ms=latency_ms)
        return content.strip()

    async def aclose(self) -> None:
        await self.backend.aclose()


def build_reply_backend(config: VoiceConfig) -> ReplyBackend:
    """Instantiate the configured reply backend variant."""
    if config.text_model is TextModel.GROQ:
        return GroqChatBackend(api_key=config.groq_api_key, model=config.groq_chat_model)
    return OpenAIChatBackend(api_key=config.openai_api_key, model=config.openai_chat_model)
