"""
Notification sound played when the agent starts waiting for the operator.
"""

from __future__ import annotations

import asyncio
import shlex
from abc import ABC, abstractmethod

import structlog

from src.voice_hooks.config import Config

logger = structlog.get_logger(__name__)


class SoundPlayer(ABC):
    """Plays the short "now listening" cue when the agent starts waiting."""

    @abstractmethod
    async def play(self) -> None:
        raise NotImplementedError


class NoopSoundPlayer(SoundPlayer):
    async def play(self) -> None:
        return None


class CommandSoundPlayer(SoundPlayer):
    """
    Runs an external command (``afplay <file>`` on macOS) and waits for it.

    Raises on a missing binary or a non-zero exit; callers treat the sound as
    optional and swallow the error.
    """

    def __init__(self, command: str, *, timeout_s: float = 5.0):
        self.argv = shlex.split(command)
        self.timeout_s = timeout_s

    async def play(self) -> None:
        if not self.argv:
            return

        proc = await asyncio.create_subprocess_exec(
            *self.argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise
        if returncode != 0:
            raise RuntimeError(f"{self.argv[0]} exited with status {returncode}")
        logger.debug("Played notification sound", command=self.argv[0])


def create_sound_player(config: Config) -> SoundPlayer:
    if not config.notification_sound_enabled:
        return NoopSoundPlayer()
    return CommandSoundPlayer(config.notification_sound_command)
