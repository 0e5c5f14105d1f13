"""
Facade over the coordination core.

Transports (the HTTP server, tests, a tool layer) call these methods and get
back result objects with a ``to_dict()`` payload. Nothing here raises for bad
input; failures come back as ``ValidationFailure`` or a failed result.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

import structlog

from src.voice_hooks.broadcast import Observer
from src.voice_hooks.config import Config
from src.voice_hooks.hooks import (
    ActionValidation,
    ActionValidator,
    AttemptedAction,
    HookDecision,
    HookDecisionEngine,
    parse_attempted_action,
    parse_validated_action,
)
from src.voice_hooks.queue import (
    ConversationMessage,
    DequeuedUtterance,
    QueueCounts,
    Utterance,
)
from src.voice_hooks.sound import SoundPlayer, create_sound_player
from src.voice_hooks.state import VoiceHooksContext, VoicePreferences
from src.voice_hooks.wait import WaitCoordinator, WaitResult

logger = structlog.get_logger(__name__)

TEXT_REQUIRED = "Text is required"
VOICE_RESPONSES_DISABLED = "Voice responses are disabled"
INVALID_VALIDATE_ACTION = 'Invalid action. Must be "tool-use" or "stop"'
INVALID_HOOK_ACTION = 'Invalid action. Must be "tool", "post-tool", "speak" or "stop"'


@dataclass(frozen=True)
class ValidationFailure:
    error: str

    def to_dict(self) -> dict:
        return {"error": self.error}


@dataclass(frozen=True)
class SubmitResult:
    utterance: Optional[Utterance] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.utterance is not None

    def to_dict(self) -> dict:
        if self.utterance is None:
            return {"success": False, "error": self.error}
        return {"success": True, "utterance": self.utterance.to_dict()}


@dataclass(frozen=True)
class DequeueResult:
    utterances: list[DequeuedUtterance]

    def to_dict(self) -> dict:
        return {
            "success": True,
            "utterances": [u.to_dict() for u in self.utterances],
        }


@dataclass(frozen=True)
class SpeakResult:
    ok: bool
    status_code: int = 200
    responded_count: int = 0
    error: Optional[str] = None
    details: Optional[str] = None

    def to_dict(self) -> dict:
        if self.ok:
            return {"success": True, "respondedCount": self.responded_count}
        payload: dict = {"error": self.error}
        if self.details:
            payload["details"] = self.details
        return payload


class VoiceHooksService:
    """Everything the outside world may ask of the core."""

    def __init__(
        self,
        context: VoiceHooksContext,
        *,
        sound_player: Optional[SoundPlayer] = None,
    ):
        self.context = context
        self.waiter = WaitCoordinator(
            context,
            sound_player=sound_player or create_sound_player(context.config),
        )
        self.engine = HookDecisionEngine(context, self.waiter)
        self.validator = ActionValidator(context)

    @classmethod
    def create(
        cls,
        config: Config,
        *,
        sound_player: Optional[SoundPlayer] = None,
    ) -> "VoiceHooksService":
        return cls(VoiceHooksContext(config=config), sound_player=sound_player)

    @property
    def prefs(self) -> VoicePreferences:
        return self.context.prefs

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def submit_utterance(self, text: str, timestamp: Optional[datetime] = None) -> SubmitResult:
        utterance = self.context.store.add(text, timestamp)
        if utterance is None:
            return SubmitResult(error=TEXT_REQUIRED)
        return SubmitResult(utterance=utterance)

    def list_recent_utterances(self, limit: int = 10) -> list[Utterance]:
        return self.context.store.recent_utterances(limit)

    def list_recent_messages(self, limit: int = 50) -> list[ConversationMessage]:
        return self.context.store.recent_messages(limit)

    def get_counts(self) -> QueueCounts:
        return self.context.store.counts()

    def has_pending(self) -> bool:
        return self.context.store.has_pending()

    def pending_count(self) -> int:
        return self.context.store.counts().pending

    def delete_utterance(self, utterance_id: str) -> bool:
        return self.context.store.delete_pending(utterance_id)

    def clear_all(self) -> int:
        return self.context.store.clear()

    def dequeue_pending(self) -> DequeueResult:
        return DequeueResult(utterances=self.context.store.dequeue_pending_newest_first())

    async def wait_for_utterance(
        self,
        max_duration_ms: Optional[int] = None,
        poll_interval_ms: Optional[int] = None,
    ) -> WaitResult:
        return await self.waiter.wait_for_utterance(max_duration_ms, poll_interval_ms)

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------

    async def evaluate_action(
        self, action: Union[AttemptedAction, str]
    ) -> Union[HookDecision, ValidationFailure]:
        parsed = parse_attempted_action(action)
        if parsed is None:
            return ValidationFailure(INVALID_HOOK_ACTION)
        return await self.engine.evaluate(parsed)

    def validate_action(self, action: object) -> Union[ActionValidation, ValidationFailure]:
        parsed = parse_validated_action(action)
        if parsed is None:
            return ValidationFailure(INVALID_VALIDATE_ACTION)
        return self.validator.validate(parsed)

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------

    def record_assistant_speech(self, text: str) -> int:
        """Log a spoken reply and close out every delivered utterance."""
        self.context.store.add_assistant_message(text)
        responded = self.context.store.mark_responded_all_delivered()
        self.context.timestamps.stamp_speak()
        return responded

    def speak(self, text: str) -> SpeakResult:
        if not text or not text.strip():
            return SpeakResult(ok=False, status_code=400, error=TEXT_REQUIRED)
        if not self.prefs.voice_responses_enabled:
            return SpeakResult(ok=False, status_code=400, error=VOICE_RESPONSES_DISABLED)

        try:
            self.context.notifier.notify_speak(text)
            responded = self.record_assistant_speech(text)
        except Exception as e:
            logger.error("Speak failed", error=str(e))
            return SpeakResult(
                ok=False,
                status_code=500,
                error="Failed to speak text",
                details=str(e),
            )

        logger.debug("Sent text to browser for speech", text=text, responded=responded)
        return SpeakResult(ok=True, responded_count=responded)

    # ------------------------------------------------------------------
    # Preferences and observers
    # ------------------------------------------------------------------

    def set_voice_responses(self, enabled: bool) -> VoicePreferences:
        self.prefs.voice_responses_enabled = bool(enabled)
        logger.info("Voice responses updated", enabled=self.prefs.voice_responses_enabled)
        return self.prefs

    def set_voice_input_active(self, active: bool) -> VoicePreferences:
        self.prefs.voice_input_active = bool(active)
        logger.info(
            "Voice input started" if self.prefs.voice_input_active else "Voice input stopped"
        )
        return self.prefs

    def subscribe(self, observer: Observer) -> None:
        self.context.notifier.subscribe(observer)

    def unsubscribe(self, observer: Observer) -> None:
        self.context.notifier.unsubscribe(observer)
