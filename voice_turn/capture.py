"""
Exclusive audio-capture ownership.

Each trainee has one capture device. The turn that owns it is the only one
allowed to keep synthesizing and playing back; claiming the device for a new
turn cancels whatever turn held it before and waits for that turn to let go,
so two turns of one trainee never touch the conversation log at once.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Tuple, TYPE_CHECKING

from logging_setup import get_logger, Component

if TYPE_CHECKING:
    from .pipeline import Turn

logger = get_logger(Component.CAPTURE)

DEFAULT_RELEASE_TIMEOUT_SECONDS = 5.0


class CaptureRegistry:
    """Tracks which turn currently owns each trainee's capture device."""

    def __init__(self, release_timeout: float = DEFAULT_RELEASE_TIMEOUT_SECONDS):
        self.release_timeout = release_timeout
        self._owners: Dict[str, Tuple["Turn", asyncio.Event]] = {}

    def active(self, owner: str) -> Optional["Turn"]:
        held = self._owners.get(owner)
        return held[0] if held is not None else None

    @asynccontextmanager
    async def claim(self, owner: str, turn: "Turn") -> AsyncIterator["Turn"]:
        """
        Hold the owner's capture device for the lifetime of the block.

        An in-flight turn is cancelled and given up to `release_timeout`
        seconds to finish before the new one takes over. On exit the claim is
        released only if it still belongs to `turn`.
        """
        # Loop: another claim may have taken the device while we waited.
        while True:
            held = self._owners.get(owner)
            if held is None or held[0] is turn:
                break
            previous, released = held
            log = logger.with_turn(previous.turn_id)
            log.info("Capture pre-empted by a new turn", new_turn_id=turn.turn_id)
            previous.cancel("preempted")
            try:
                await asyncio.wait_for(released.wait(), timeout=self.release_timeout)
            except asyncio.TimeoutError:
                log.warning(
                    "Pre-empted turn did not release capture in time",
                    new_turn_id=turn.turn_id,
                    timeout_seconds=self.release_timeout,
                )
                break

        released = asyncio.Event()
        self._owners[owner] = (turn, released)
        try:
            yield turn
        finally:
            released.set()
            current = self._owners.get(owner)
            if current is not None and current[0] is turn:
                del self._owners[owner]
