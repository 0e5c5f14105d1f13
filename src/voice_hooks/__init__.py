"""
Voice hooks package.

Keep imports lightweight so modules like `src.voice_hooks.queue` can be used
without requiring the full runtime dependency set (e.g., dotenv) at import time.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.voice_hooks.config import Config
    from src.voice_hooks.service import VoiceHooksService

__all__ = ["Config", "get_config", "VoiceHooksService"]


def __getattr__(name: str) -> Any:
    if name in ("Config", "get_config"):
        from src.voice_hooks.config import Config, get_config

        return {"Config": Config, "get_config": get_config}[name]
    if name == "VoiceHooksService":
        from src.voice_hooks.service import VoiceHooksService

        return VoiceHooksService
    raise AttributeError(name)
