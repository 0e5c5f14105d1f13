"""
Configuration management for the voice hooks server.

Loads environment variables and provides a strongly-typed configuration object.
Validates values at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)

DEFAULT_NOTIFICATION_SOUND_COMMAND = "afplay /System/Library/Sounds/Funk.aiff"


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    # Server
    host: str = "localhost"
    port: int = 5111
    external_url: str = ""
    log_level: str = "INFO"

    # Wait for utterance
    # - wait_timeout_ms is the whole window a stop hook may block for
    # - wait_poll_interval_ms is how often the queue is re-read while waiting
    wait_timeout_ms: int = 60000
    wait_poll_interval_ms: int = 100

    # Notification sound (played once when a wait starts)
    notification_sound_enabled: bool = True
    notification_sound_command: str = DEFAULT_NOTIFICATION_SOUND_COMMAND

    # Event stream
    sse_queue_size: int = 100

    @property
    def base_url(self) -> str:
        """Get the advertised HTTP URL."""
        return self.external_url or f"http://{self.host}:{self.port}"

    @property
    def wait_timeout_seconds(self) -> float:
        return self.wait_timeout_ms / 1000.0

    def validate(self) -> None:
        """Validate that configuration values are usable."""
        problems = []

        if not self.host:
            problems.append("HOST must not be empty")
        if not (0 < self.port < 65536):
            problems.append(f"PORT must be between 1 and 65535 (got {self.port})")
        if self.wait_timeout_ms <= 0:
            problems.append(f"WAIT_TIMEOUT_MS must be positive (got {self.wait_timeout_ms})")
        if self.wait_poll_interval_ms <= 0:
            problems.append(
                f"WAIT_POLL_INTERVAL_MS must be positive (got {self.wait_poll_interval_ms})"
            )
        elif self.wait_poll_interval_ms > self.wait_timeout_ms:
            problems.append("WAIT_POLL_INTERVAL_MS must not exceed WAIT_TIMEOUT_MS")
        if self.sse_queue_size <= 0:
            problems.append(f"SSE_QUEUE_SIZE must be positive (got {self.sse_queue_size})")
        if self.notification_sound_enabled and not self.notification_sound_command.strip():
            problems.append("NOTIFICATION_SOUND_COMMAND is empty but the sound is enabled")

        if problems:
            raise ConfigError(
                "Invalid configuration:\n  " + "\n  ".join(problems) + "\n"
                "Please check your .env file."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Configuration loaded",
            host=self.host,
            port=self.port,
            base_url=self.base_url,
            log_level=self.log_level,
            wait_timeout_ms=self.wait_timeout_ms,
            wait_poll_interval_ms=self.wait_poll_interval_ms,
            notification_sound_enabled=self.notification_sound_enabled,
            notification_sound_command=self.notification_sound_command,
            sse_queue_size=self.sse_queue_size,
        )


def _get_bool(key: str, default: bool = False) -> bool:
    """Get a boolean from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "y", "on")


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    host = os.getenv("HOST", "localhost").strip()
    port = _get_int("PORT", 5111)

    config = Config(
        # Server
        host=host,
        port=port,
        external_url=os.getenv("EXTERNAL_URL", "").strip(),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        # Wait for utterance
        wait_timeout_ms=_get_int("WAIT_TIMEOUT_MS", 60000),
        wait_poll_interval_ms=_get_int("WAIT_POLL_INTERVAL_MS", 100),

        # Notification sound
        notification_sound_enabled=_get_bool("NOTIFICATION_SOUND_ENABLED", True),
        notification_sound_command=os.getenv(
            "NOTIFICATION_SOUND_COMMAND", DEFAULT_NOTIFICATION_SOUND_COMMAND
        ),

        # Event stream
        sse_queue_size=_get_int("SSE_QUEUE_SIZE", 100),
    )

    return config


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
