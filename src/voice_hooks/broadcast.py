"""
Fan-out of state change events to connected browser tabs.

Two event kinds leave the server: ``speak`` (the browser should read a text
aloud) and ``waitStatus`` (the agent started or stopped waiting for input).
Delivery is best effort: a dead observer is logged and skipped.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


def speak_event(text: str) -> dict[str, Any]:
    return {"type": "speak", "text": text}


def wait_status_event(is_waiting: bool) -> dict[str, Any]:
    return {"type": "waitStatus", "isWaiting": is_waiting}


CONNECTED_EVENT: dict[str, Any] = {"type": "connected"}


def format_sse(payload: dict[str, Any]) -> str:
    """Frame a payload as a single Server-Sent Events message."""
    return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n"


class Observer(ABC):
    """Something that receives broadcast events (usually one open stream)."""

    @abstractmethod
    def deliver(self, event: dict[str, Any]) -> None:
        raise NotImplementedError


class QueueObserver(Observer):
    """
    Observer backed by an asyncio queue.

    The streaming endpoint drains ``events()``; a full queue means the client
    stopped reading and the delivery is reported as failed.
    """

    def __init__(self, *, maxsize: int = 100):
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def deliver(self, event: dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionError("observer is closed")
        self._queue.put_nowait(event)

    async def next_event(self) -> dict[str, Any]:
        return await self._queue.get()

    def close(self) -> None:
        self.closed = True

    @property
    def backlog(self) -> int:
        return self._queue.qsize()


class BroadcastNotifier:
    """
    Set of subscribed observers plus the two notify helpers.

    ``on_last_observer_disconnected`` runs once each time the observer count
    drops from one or more to zero.
    """

    def __init__(self, *, on_last_observer_disconnected: Optional[Callable[[], None]] = None):
        self._observers: list[Observer] = []
        self._on_last_observer_disconnected = on_last_observer_disconnected

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def subscribe(self, observer: Observer) -> None:
        if observer in self._observers:
            return
        self._observers.append(observer)
        logger.debug("Observer subscribed", observers=len(self._observers))

    def unsubscribe(self, observer: Observer) -> None:
        if observer not in self._observers:
            return
        self._observers.remove(observer)

        remaining = len(self._observers)
        if remaining:
            logger.debug("Observer unsubscribed", observers=remaining)
            return

        logger.info("Last observer disconnected")
        if self._on_last_observer_disconnected is not None:
            try:
                self._on_last_observer_disconnected()
            except Exception as e:
                logger.error("Last-observer callback failed", error=str(e))

    def broadcast(self, event: dict[str, Any]) -> int:
        """Send ``event`` to every observer. Returns the number of successful deliveries."""
        delivered = 0
        for observer in list(self._observers):
            try:
                observer.deliver(event)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Failed to deliver event",
                    event_type=event.get("type"),
                    error=str(e) or e.__class__.__name__,
                )
        return delivered

    def notify_speak(self, text: str) -> int:
        return self.broadcast(speak_event(text))

    def notify_wait_status(self, is_waiting: bool) -> int:
        return self.broadcast(wait_status_event(is_waiting))
