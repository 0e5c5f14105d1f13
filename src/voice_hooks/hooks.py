"""
Hook decision engine.

The agent's lifecycle hooks ask before every tool call, after every tool call,
before speaking and before ending its turn. Rules are checked in a fixed
order and the first match decides:

1. Pending input is drained and handed to the agent (block).
2. With voice responses on, delivered input must be answered with speak first.
3. Tool and post-tool calls are approved and stamped.
4. Speak is approved.
5. Stop is blocked if tools ran since the last spoken reply; otherwise, with
   voice input on, it turns into a wait for new input.

Any failure inside the stop wait approves the stop.

``ActionValidator`` is the older, coarser check that only reports what the
agent should do next and never touches the queue.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Protocol

import structlog

from src.voice_hooks.state import VoiceHooksContext, VoicePreferences
from src.voice_hooks.wait import WaitCoordinator

logger = structlog.get_logger(__name__)

SPEAK_REMINDER = (
    "\n\nThe user has enabled voice responses, so use the 'speak' tool to respond "
    "to the user's voice input before proceeding."
)
MUST_SPEAK_AFTER_TOOLS = (
    "Assistant must speak after using tools. "
    "Please use the speak tool to respond before proceeding."
)
NO_UTTERANCES_SINCE_TIMEOUT = "No utterances since last timeout"
NO_UTTERANCES_DURING_WAIT = "No utterances found during wait"
AUTO_WAIT_FAILED = "Auto-wait encountered an error, proceeding"
STOP_REQUIRES_WAIT = (
    "Assistant tried to end its response. Stopping is not allowed without first "
    "checking for voice input. Assistant should now use wait_for_utterance to "
    "check for voice input"
)


class AttemptedAction(str, Enum):
    TOOL = "tool"
    POST_TOOL = "post-tool"
    SPEAK = "speak"
    STOP = "stop"


class Decision(str, Enum):
    APPROVE = "approve"
    BLOCK = "block"


class ValidatedAction(str, Enum):
    TOOL_USE = "tool-use"
    STOP = "stop"


class RequiredAction(str, Enum):
    DEQUEUE_UTTERANCES = "dequeue_utterances"
    SPEAK = "speak"
    WAIT_FOR_UTTERANCE = "wait_for_utterance"


class _HasText(Protocol):
    text: str


@dataclass(frozen=True)
class HookDecision:
    decision: Decision
    reason: Optional[str] = None

    @classmethod
    def approve(cls, reason: Optional[str] = None) -> "HookDecision":
        return cls(Decision.APPROVE, reason)

    @classmethod
    def block(cls, reason: str) -> "HookDecision":
        return cls(Decision.BLOCK, reason)

    @property
    def approved(self) -> bool:
        return self.decision is Decision.APPROVE

    def to_dict(self) -> dict:
        payload: dict = {"decision": self.decision.value}
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload


@dataclass(frozen=True)
class ActionValidation:
    allowed: bool
    required_action: Optional[RequiredAction] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        payload: dict = {"allowed": self.allowed}
        if self.required_action is not None:
            payload["requiredAction"] = self.required_action.value
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload


def voice_response_reminder(prefs: VoicePreferences) -> str:
    return SPEAK_REMINDER if prefs.voice_responses_enabled else ""


def format_voice_utterances(utterances: Iterable[_HasText], prefs: VoicePreferences) -> str:
    items = list(utterances)
    texts = "\n".join(f'"{u.text}"' for u in items)
    plural = "" if len(items) == 1 else "s"
    return (
        f"Assistant received voice input from the user ({len(items)} utterance{plural}):"
        f"\n\n{texts}{voice_response_reminder(prefs)}"
    )


def delivered_needs_response(count: int) -> str:
    return (
        f"{count} delivered utterance(s) require voice response. "
        "Please use the speak tool to respond before proceeding."
    )


def parse_attempted_action(token: object) -> Optional[AttemptedAction]:
    try:
        return AttemptedAction(token)
    except (ValueError, TypeError):
        return None


def parse_validated_action(token: object) -> Optional[ValidatedAction]:
    if not token:
        return None
    try:
        return ValidatedAction(token)
    except (ValueError, TypeError):
        return None


class HookDecisionEngine:
    """Approves or blocks the agent's next step based on queue and preferences."""

    def __init__(self, context: VoiceHooksContext, waiter: WaitCoordinator):
        self.context = context
        self.waiter = waiter

    async def evaluate(self, action: AttemptedAction) -> HookDecision:
        decision = await self._evaluate(action)
        logger.debug(
            "Hook decision",
            action=action.value,
            decision=decision.decision.value,
            reason=decision.reason,
        )
        return decision

    async def _evaluate(self, action: AttemptedAction) -> HookDecision:
        store = self.context.store
        prefs = self.context.prefs

        # Every hook drains the queue, typed and spoken input alike.
        if store.has_pending():
            newest_first = store.dequeue_pending_newest_first()
            if newest_first:
                oldest_first = list(reversed(newest_first))
                return HookDecision.block(format_voice_utterances(oldest_first, prefs))

        if prefs.voice_responses_enabled:
            delivered = store.delivered()
            if delivered:
                if action is AttemptedAction.SPEAK:
                    return HookDecision.approve()
                return HookDecision.block(delivered_needs_response(len(delivered)))

        if action is AttemptedAction.TOOL or action is AttemptedAction.POST_TOOL:
            self.context.timestamps.stamp_tool_use()
            return HookDecision.approve()

        if action is AttemptedAction.SPEAK:
            return HookDecision.approve()

        if action is AttemptedAction.STOP:
            return await self._evaluate_stop()

        return HookDecision.approve()

    async def _evaluate_stop(self) -> HookDecision:
        prefs = self.context.prefs

        if prefs.voice_responses_enabled and self.context.timestamps.tool_used_since_last_speak():
            return HookDecision.block(MUST_SPEAK_AFTER_TOOLS)

        if not prefs.voice_input_active:
            return HookDecision.approve(NO_UTTERANCES_SINCE_TIMEOUT)

        logger.debug("Stop hook waiting for utterance")
        try:
            result = await self.waiter.wait_for_utterance()
        except Exception as e:
            logger.error("Stop hook wait failed", error=str(e) or repr(e))
            return HookDecision.approve(AUTO_WAIT_FAILED)

        if not result.success and result.error:
            return HookDecision.approve(result.error)
        if result.utterances:
            return HookDecision.block(format_voice_utterances(result.utterances, prefs))
        return HookDecision.approve(result.message or NO_UTTERANCES_DURING_WAIT)


class ActionValidator:
    """Reports what the agent must do before ``tool-use`` or ``stop``. Read only."""

    def __init__(self, context: VoiceHooksContext):
        self.context = context

    def validate(self, action: ValidatedAction) -> ActionValidation:
        store = self.context.store
        prefs = self.context.prefs

        if prefs.voice_input_active:
            pending = store.pending()
            if pending:
                return ActionValidation(
                    allowed=False,
                    required_action=RequiredAction.DEQUEUE_UTTERANCES,
                    reason=(
                        f"{len(pending)} pending utterance(s) must be dequeued first. "
                        "Please use dequeue_utterances to process them."
                    ),
                )

        if prefs.voice_responses_enabled:
            delivered = store.delivered()
            if delivered:
                return ActionValidation(
                    allowed=False,
                    required_action=RequiredAction.SPEAK,
                    reason=delivered_needs_response(len(delivered)),
                )

        if action is ValidatedAction.STOP and prefs.voice_input_active and store.has_any():
            return ActionValidation(
                allowed=False,
                required_action=RequiredAction.WAIT_FOR_UTTERANCE,
                reason=STOP_REQUIRES_WAIT,
            )

        return ActionValidation(allowed=True)
