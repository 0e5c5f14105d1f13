"""
Process-wide shared state.

A single ``VoiceHooksContext`` is created at startup and handed to every
component; nothing here is a module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import structlog

from src.voice_hooks.broadcast import BroadcastNotifier
from src.voice_hooks.config import Config
from src.voice_hooks.queue import UtteranceStore, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class VoicePreferences:
    """The two operator toggles, both off until the browser turns them on."""
    voice_responses_enabled: bool = False
    voice_input_active: bool = False

    def reset(self) -> None:
        self.voice_responses_enabled = False
        self.voice_input_active = False

    def to_dict(self) -> dict:
        return {
            "voiceResponsesEnabled": self.voice_responses_enabled,
            "voiceInputActive": self.voice_input_active,
        }


@dataclass
class TurnTimestamps:
    last_tool_use: Optional[datetime] = None
    last_speak: Optional[datetime] = None

    def stamp_tool_use(self, when: Optional[datetime] = None) -> None:
        self.last_tool_use = when or utc_now()

    def stamp_speak(self, when: Optional[datetime] = None) -> None:
        self.last_speak = when or utc_now()

    def tool_used_since_last_speak(self) -> bool:
        if self.last_tool_use is None:
            return False
        return self.last_speak is None or self.last_speak < self.last_tool_use


@dataclass
class VoiceHooksContext:
    config: Config
    store: UtteranceStore = field(default_factory=UtteranceStore)
    prefs: VoicePreferences = field(default_factory=VoicePreferences)
    timestamps: TurnTimestamps = field(default_factory=TurnTimestamps)
    notifier: BroadcastNotifier = field(init=False)

    def __post_init__(self) -> None:
        self.notifier = BroadcastNotifier(
            on_last_observer_disconnected=self.handle_last_observer_disconnected
        )

    def handle_last_observer_disconnected(self) -> None:
        if self.prefs.voice_input_active or self.prefs.voice_responses_enabled:
            logger.info("Disabling voice features, no browser connected")
        self.prefs.reset()
