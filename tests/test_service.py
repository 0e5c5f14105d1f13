"""
Tests for the service facade (the operations transports call).
"""

from unittest.mock import patch

import pytest

from src.voice_hooks.hooks import ActionValidation, AttemptedAction, Decision, HookDecision
from src.voice_hooks.queue import UtteranceStatus
from src.voice_hooks.service import (
    INVALID_HOOK_ACTION,
    INVALID_VALIDATE_ACTION,
    TEXT_REQUIRED,
    VOICE_RESPONSES_DISABLED,
    ValidationFailure,
)


class TestSubmit:
    def test_submit_returns_pending_utterance(self, service):
        result = service.submit_utterance("  hi  ")

        assert result.success is True
        payload = result.to_dict()
        assert payload["success"] is True
        assert payload["utterance"]["text"] == "hi"
        assert payload["utterance"]["status"] == "pending"

    def test_submit_blank_is_structured_failure(self, service):
        result = service.submit_utterance("   ")

        assert result.success is False
        assert result.to_dict() == {"success": False, "error": TEXT_REQUIRED}
        assert service.get_counts().total == 0

    def test_drain_order_through_dequeue(self, service, at):
        service.submit_utterance("A", at(0))
        service.submit_utterance("B", at(1))
        service.submit_utterance("C", at(2))

        dequeued = service.dequeue_pending().utterances

        assert [u.text for u in reversed(dequeued)] == ["A", "B", "C"]
        assert service.has_pending() is False

    def test_delete_and_clear(self, service):
        keep = service.submit_utterance("keep").utterance
        drop = service.submit_utterance("drop").utterance
        service.context.store.mark_delivered(keep.id)

        assert service.delete_utterance(drop.id) is True
        assert service.delete_utterance(keep.id) is False
        assert service.clear_all() == 1
        assert service.list_recent_messages() == []


class TestGating:
    @pytest.mark.asyncio
    async def test_evaluate_accepts_tokens(self, service):
        result = await service.evaluate_action("post-tool")

        assert isinstance(result, HookDecision)
        assert result.decision is Decision.APPROVE
        assert service.context.timestamps.last_tool_use is not None

    @pytest.mark.asyncio
    async def test_evaluate_accepts_enum(self, service):
        result = await service.evaluate_action(AttemptedAction.SPEAK)
        assert result.decision is Decision.APPROVE

    @pytest.mark.asyncio
    async def test_evaluate_unknown_token(self, service):
        result = await service.evaluate_action("dance")

        assert isinstance(result, ValidationFailure)
        assert result.to_dict() == {"error": INVALID_HOOK_ACTION}

    @pytest.mark.parametrize("token", [None, "", "tool", "STOP", 3])
    def test_validate_unknown_token(self, service, token):
        result = service.validate_action(token)

        assert isinstance(result, ValidationFailure)
        assert result.error == INVALID_VALIDATE_ACTION

    def test_validate_known_token(self, service):
        result = service.validate_action("tool-use")

        assert isinstance(result, ActionValidation)
        assert result.allowed is True


class TestSpeak:
    def test_speak_requires_text(self, service):
        service.set_voice_responses(True)

        result = service.speak("  ")

        assert result.ok is False
        assert result.status_code == 400
        assert result.to_dict() == {"error": TEXT_REQUIRED}

    def test_speak_requires_voice_responses(self, service, recorder):
        result = service.speak("hello")

        assert result.ok is False
        assert result.to_dict() == {"error": VOICE_RESPONSES_DISABLED}
        assert recorder.events == []

    def test_speak_broadcasts_and_marks_responded(self, service, recorder):
        service.set_voice_responses(True)
        utterance = service.submit_utterance("what time is it").utterance
        service.dequeue_pending()

        result = service.speak("It is noon.")

        assert result.to_dict() == {"success": True, "respondedCount": 1}
        assert recorder.events == [{"type": "speak", "text": "It is noon."}]
        assert service.context.store.get(utterance.id).status is UtteranceStatus.RESPONDED
        assert service.list_recent_messages()[-1].text == "It is noon."
        assert service.context.timestamps.last_speak is not None

    def test_speak_failure_is_reported(self, service):
        service.set_voice_responses(True)

        with patch.object(
            service.context.store, "add_assistant_message", side_effect=RuntimeError("disk full")
        ):
            result = service.speak("hello")

        assert result.ok is False
        assert result.status_code == 500
        assert result.to_dict() == {"error": "Failed to speak text", "details": "disk full"}

    @pytest.mark.asyncio
    async def test_speaking_unlocks_stop(self, service):
        service.set_voice_responses(True)
        await service.evaluate_action(AttemptedAction.TOOL)

        blocked = await service.evaluate_action(AttemptedAction.STOP)
        service.record_assistant_speech("Done.")
        allowed = await service.evaluate_action(AttemptedAction.STOP)

        assert blocked.decision is Decision.BLOCK
        assert allowed.decision is Decision.APPROVE


class TestPreferences:
    def test_toggles(self, service):
        service.set_voice_input_active(True)
        service.set_voice_responses(True)

        assert service.prefs.to_dict() == {"voiceResponsesEnabled": True, "voiceInputActive": True}

    def test_last_observer_leaving_resets_preferences(self, service, recorder):
        service.set_voice_input_active(True)
        service.set_voice_responses(True)

        service.unsubscribe(recorder)

        assert service.prefs.to_dict() == {
            "voiceResponsesEnabled": False,
            "voiceInputActive": False,
        }
