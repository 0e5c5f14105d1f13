"""
Pytest configuration and fixtures.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from src.voice_hooks.broadcast import Observer


@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for tests."""
    env_vars = {
        "HOST": "localhost",
        "PORT": "5111",
        "LOG_LEVEL": "DEBUG",
        "WAIT_TIMEOUT_MS": "300",
        "WAIT_POLL_INTERVAL_MS": "20",
        "NOTIFICATION_SOUND_ENABLED": "false",  # Never shell out in tests
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.voice_hooks.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


@pytest.fixture
def config():
    from src.voice_hooks.config import get_config
    return get_config()


@pytest.fixture
def context(config):
    from src.voice_hooks.state import VoiceHooksContext
    return VoiceHooksContext(config=config)


@pytest.fixture
def store(context):
    return context.store


@pytest.fixture
def service(context):
    from src.voice_hooks.sound import NoopSoundPlayer
    from src.voice_hooks.service import VoiceHooksService
    return VoiceHooksService(context, sound_player=NoopSoundPlayer())


@pytest.fixture
def base_time():
    """A fixed instant so ordering tests do not depend on the clock."""
    return datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def at(base_time):
    """at(n) -> base_time + n seconds."""
    return lambda seconds: base_time + timedelta(seconds=seconds)


class RecordingObserver(Observer):
    """Observer that keeps every event it was handed."""

    def __init__(self):
        self.events = []

    def deliver(self, event):
        self.events.append(event)

    @property
    def wait_statuses(self):
        return [e["isWaiting"] for e in self.events if e["type"] == "waitStatus"]


@pytest.fixture
def recorder(context):
    observer = RecordingObserver()
    context.notifier.subscribe(observer)
    return observer
