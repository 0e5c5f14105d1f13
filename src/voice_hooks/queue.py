"""
Utterance store.

Holds the operator's utterances and the conversation log that mirrors them.
Every utterance has exactly one user message with the same id; the message's
status always follows the utterance's status. Assistant messages are stored
in the same log but have no status.

Mutations never raise for ordinary input. They report failure through their
return value (``None``/``False``/no-op) because the store sits on the path of
every hook decision.
"""

from __future__ import annotations

import itertools
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UtteranceStatus(str, Enum):
    """Lifecycle of an utterance. Only ever moves forward."""
    PENDING = "pending"
    DELIVERED = "delivered"
    RESPONDED = "responded"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


_NEXT_STATUS = {
    UtteranceStatus.PENDING: UtteranceStatus.DELIVERED,
    UtteranceStatus.DELIVERED: UtteranceStatus.RESPONDED,
}

_sequence = itertools.count()


@dataclass
class Utterance:
    text: str
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: UtteranceStatus = UtteranceStatus.PENDING
    # Insertion order, used to break timestamp ties.
    seq: int = field(default_factory=lambda: next(_sequence), repr=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
        }


@dataclass
class ConversationMessage:
    role: MessageRole
    text: str
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: Optional[UtteranceStatus] = None
    seq: int = field(default_factory=lambda: next(_sequence), repr=False)

    def to_dict(self) -> dict:
        payload: dict = {
            "id": self.id,
            "role": self.role.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.status is not None:
            payload["status"] = self.status.value
        return payload


@dataclass(frozen=True)
class DequeuedUtterance:
    """Snapshot of an utterance handed to the agent."""
    id: str
    text: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {"id": self.id, "text": self.text, "timestamp": self.timestamp.isoformat()}


@dataclass(frozen=True)
class QueueCounts:
    total: int
    pending: int
    delivered: int

    def to_dict(self) -> dict:
        return {"total": self.total, "pending": self.pending, "delivered": self.delivered}


def _oldest_first_key(record: Utterance | ConversationMessage) -> tuple[datetime, int]:
    return (record.timestamp, record.seq)


class UtteranceStore:
    """
    In-memory utterance queue plus conversation history.

    One instance per process. All methods take a single coarse lock; each
    operation is short, so nothing finer is needed.
    """

    def __init__(self) -> None:
        self._utterances: list[Utterance] = []
        self._messages: list[ConversationMessage] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, text: str, timestamp: Optional[datetime] = None) -> Optional[Utterance]:
        """Queue a new pending utterance. Returns None for blank text."""
        cleaned = (text or "").strip()
        if not cleaned:
            logger.debug("Rejected empty utterance")
            return None

        if timestamp is None:
            timestamp = utc_now()
        elif timestamp.tzinfo is None:
            # Naive client timestamps are taken as UTC.
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        utterance = Utterance(text=cleaned, timestamp=timestamp)
        message = ConversationMessage(
            role=MessageRole.USER,
            text=utterance.text,
            timestamp=utterance.timestamp,
            id=utterance.id,
            status=utterance.status,
        )
        with self._lock:
            self._utterances.append(utterance)
            self._messages.append(message)

        logger.debug("Utterance queued", utterance_id=utterance.id, text=utterance.text)
        return utterance

    def add_assistant_message(self, text: str) -> ConversationMessage:
        message = ConversationMessage(role=MessageRole.ASSISTANT, text=(text or "").strip())
        with self._lock:
            self._messages.append(message)
        logger.debug("Assistant message recorded", message_id=message.id, text=message.text)
        return message

    def mark_delivered(self, utterance_id: str) -> None:
        """Move a pending utterance to delivered. Anything else is a no-op."""
        with self._lock:
            utterance = self._find(utterance_id)
            if utterance is None or utterance.status is not UtteranceStatus.PENDING:
                return
            self._advance(utterance)
        logger.debug("Utterance delivered", utterance_id=utterance_id, text=utterance.text)

    def mark_responded_all_delivered(self) -> int:
        """Move every delivered utterance to responded. Returns how many moved."""
        with self._lock:
            delivered = [u for u in self._utterances if u.status is UtteranceStatus.DELIVERED]
            for utterance in delivered:
                self._advance(utterance)

        for utterance in delivered:
            logger.debug("Utterance responded", utterance_id=utterance.id, text=utterance.text)
        return len(delivered)

    def delete_pending(self, utterance_id: str) -> bool:
        """Remove a pending utterance and its message. False if not pending."""
        with self._lock:
            utterance = self._find(utterance_id)
            if utterance is None or utterance.status is not UtteranceStatus.PENDING:
                return False
            self._utterances = [u for u in self._utterances if u.id != utterance_id]
            self._messages = [m for m in self._messages if m.id != utterance_id]

        logger.debug("Pending utterance deleted", utterance_id=utterance_id, text=utterance.text)
        return True

    def clear(self) -> int:
        """Drop all utterances and the whole conversation log."""
        with self._lock:
            count = len(self._utterances)
            self._utterances = []
            self._messages = []
        logger.debug("Queue cleared", cleared=count)
        return count

    def dequeue_pending_newest_first(self) -> list[DequeuedUtterance]:
        """
        Mark every pending utterance delivered and return them newest first.

        Callers reverse the result to read them in the order they were spoken.
        """
        with self._lock:
            pending = self.pending_newest_first()
            for utterance in pending:
                self._advance(utterance)

        if pending:
            logger.debug("Pending utterances dequeued", count=len(pending))
        return [DequeuedUtterance(id=u.id, text=u.text, timestamp=u.timestamp) for u in pending]

    def dequeue_pending_oldest_first(self) -> list[Utterance]:
        """Mark every pending utterance delivered and return them oldest first."""
        with self._lock:
            pending = self.pending_oldest_first()
            for utterance in pending:
                self._advance(utterance)

        if pending:
            logger.debug("Pending utterances dequeued", count=len(pending))
        return pending

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def pending(self) -> list[Utterance]:
        with self._lock:
            return [u for u in self._utterances if u.status is UtteranceStatus.PENDING]

    def delivered(self) -> list[Utterance]:
        with self._lock:
            return [u for u in self._utterances if u.status is UtteranceStatus.DELIVERED]

    def pending_oldest_first(self) -> list[Utterance]:
        return sorted(self.pending(), key=_oldest_first_key)

    def pending_newest_first(self) -> list[Utterance]:
        return sorted(self.pending(), key=_oldest_first_key, reverse=True)

    def has_pending(self) -> bool:
        with self._lock:
            return any(u.status is UtteranceStatus.PENDING for u in self._utterances)

    def has_any(self) -> bool:
        with self._lock:
            return bool(self._utterances)

    def counts(self) -> QueueCounts:
        with self._lock:
            pending = sum(1 for u in self._utterances if u.status is UtteranceStatus.PENDING)
            delivered = sum(1 for u in self._utterances if u.status is UtteranceStatus.DELIVERED)
            return QueueCounts(total=len(self._utterances), pending=pending, delivered=delivered)

    def get(self, utterance_id: str) -> Optional[Utterance]:
        with self._lock:
            return self._find(utterance_id)

    def get_message(self, message_id: str) -> Optional[ConversationMessage]:
        with self._lock:
            return next((m for m in self._messages if m.id == message_id), None)

    def recent_utterances(self, limit: int = 10) -> list[Utterance]:
        """Most recent utterances, newest first."""
        if limit <= 0:
            return []
        with self._lock:
            ordered = sorted(self._utterances, key=_oldest_first_key, reverse=True)
        return ordered[:limit]

    def recent_messages(self, limit: int = 50) -> list[ConversationMessage]:
        """The last ``limit`` conversation messages, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            ordered = sorted(self._messages, key=_oldest_first_key)
        return ordered[-limit:]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find(self, utterance_id: str) -> Optional[Utterance]:
        return next((u for u in self._utterances if u.id == utterance_id), None)

    def _advance(self, utterance: Utterance) -> None:
        # Caller holds the lock.
        new_status = _NEXT_STATUS[utterance.status]
        utterance.status = new_status
        for message in self._messages:
            if message.id == utterance.id and message.role is MessageRole.USER:
                message.status = new_status
                break
