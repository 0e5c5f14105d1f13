"""
Bounded wait for new operator input.

``WaitCoordinator.wait_for_utterance`` polls the shared store until one of:

- voice input was never active (immediate failure, nothing broadcast)
- voice input gets switched off mid-wait
- at least one pending utterance shows up (they are delivered oldest first)
- the wait window runs out

The browser is told ``waitStatus(true)`` on entry and ``waitStatus(false)``
exactly once on the way out, whichever exit fired, cancellation included.
No lock is held across the sleep; shared state is re-read on every tick.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import structlog

from src.voice_hooks.queue import Utterance
from src.voice_hooks.sound import NoopSoundPlayer, SoundPlayer
from src.voice_hooks.state import VoiceHooksContext

logger = structlog.get_logger(__name__)

VOICE_INPUT_INACTIVE_ERROR = (
    "Voice input is not active. Cannot wait for utterances when voice input is disabled."
)
VOICE_INPUT_DEACTIVATED_MESSAGE = "Voice input was deactivated"


class WaitPhase(str, Enum):
    NOT_STARTED = "not_started"
    WAITING = "waiting"
    DONE = "done"


class WaitOutcome(str, Enum):
    INACTIVE = "inactive"
    DEACTIVATED = "deactivated"
    SATISFIED = "satisfied"
    TIMEOUT = "timeout"


@dataclass
class WaitResult:
    outcome: WaitOutcome
    success: bool
    utterances: list[Utterance] = field(default_factory=list)
    wait_time_ms: int = 0
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.utterances)

    @property
    def texts(self) -> list[str]:
        return [u.text for u in self.utterances]

    def to_dict(self) -> dict:
        if not self.success:
            return {"success": False, "error": self.error}

        payload: dict = {
            "success": True,
            "utterances": [u.to_dict() for u in self.utterances],
            "waitTime": self.wait_time_ms,
        }
        if self.utterances:
            payload["count"] = self.count
        if self.message:
            payload["message"] = self.message
        return payload


@dataclass
class _WaitSession:
    """State of one wait_for_utterance call. Calls may overlap."""
    phase: WaitPhase = WaitPhase.NOT_STARTED


def _timeout_message(max_duration_ms: int) -> str:
    return f"No utterances found after waiting {max_duration_ms / 1000:g} seconds."


class WaitCoordinator:
    """Runs wait_for_utterance against the shared context."""

    def __init__(
        self,
        context: VoiceHooksContext,
        *,
        sound_player: Optional[SoundPlayer] = None,
    ):
        self.context = context
        self.sound_player = sound_player or NoopSoundPlayer()

    async def wait_for_utterance(
        self,
        max_duration_ms: Optional[int] = None,
        poll_interval_ms: Optional[int] = None,
    ) -> WaitResult:
        config = self.context.config
        max_ms = int(max_duration_ms if max_duration_ms is not None else config.wait_timeout_ms)
        poll_ms = int(
            poll_interval_ms if poll_interval_ms is not None else config.wait_poll_interval_ms
        )
        prefs = self.context.prefs
        store = self.context.store

        if not prefs.voice_input_active:
            return WaitResult(
                outcome=WaitOutcome.INACTIVE,
                success=False,
                error=VOICE_INPUT_INACTIVE_ERROR,
            )

        logger.debug("Waiting for utterance", max_duration_ms=max_ms, poll_interval_ms=poll_ms)
        started = time.monotonic()
        session = _WaitSession()
        self._enter(session)

        try:
            first_tick = True
            while True:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                if elapsed_ms >= max_ms:
                    break

                if not prefs.voice_input_active:
                    logger.debug("Voice input deactivated during wait", elapsed_ms=elapsed_ms)
                    return WaitResult(
                        outcome=WaitOutcome.DEACTIVATED,
                        success=True,
                        message=VOICE_INPUT_DEACTIVATED_MESSAGE,
                        wait_time_ms=elapsed_ms,
                    )

                if store.has_pending():
                    utterances = store.dequeue_pending_oldest_first()
                    logger.info(
                        "Wait satisfied",
                        count=len(utterances),
                        elapsed_ms=elapsed_ms,
                    )
                    return WaitResult(
                        outcome=WaitOutcome.SATISFIED,
                        success=True,
                        utterances=utterances,
                        wait_time_ms=elapsed_ms,
                    )

                if first_tick:
                    first_tick = False
                    await self._play_notification_sound()

                remaining_ms = max_ms - int((time.monotonic() - started) * 1000)
                await asyncio.sleep(max(0, min(poll_ms, remaining_ms)) / 1000.0)

            logger.debug("Wait timed out", max_duration_ms=max_ms)
            return WaitResult(
                outcome=WaitOutcome.TIMEOUT,
                success=True,
                message=_timeout_message(max_ms),
                wait_time_ms=max_ms,
            )
        finally:
            self._exit(session)

    def _enter(self, session: _WaitSession) -> None:
        session.phase = WaitPhase.WAITING
        self.context.notifier.notify_wait_status(True)

    def _exit(self, session: _WaitSession) -> None:
        if session.phase is not WaitPhase.WAITING:
            return
        session.phase = WaitPhase.DONE
        self.context.notifier.notify_wait_status(False)

    async def _play_notification_sound(self) -> None:
        try:
            await self.sound_player.play()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Failed to play notification sound", error=str(e) or repr(e))
