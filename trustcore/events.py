"""
TrustCore structured events.

Every committed state change produces an Event. Events are observability
for external indexers and auditors; nothing in TrustCore reads them back to
make a decision.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .journal import EventJournal
from .logging_config import AuditLogger, audit_log

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Published event names."""
    # Documents
    DOCUMENT_REGISTERED = "DOCUMENT_REGISTERED"
    OWNERSHIP_TRANSFERRED = "OWNERSHIP_TRANSFERRED"
    EXECUTOR_AUTHORIZED = "EXECUTOR_AUTHORIZED"
    EXECUTOR_REVOKED = "EXECUTOR_REVOKED"
    TOKENIZER_BOUND = "TOKENIZER_BOUND"
    PRIMARY_RESOLVER_SET = "PRIMARY_RESOLVER_SET"
    ADDITIONAL_RESOLVER_ADDED = "ADDITIONAL_RESOLVER_ADDED"
    ADDITIONAL_RESOLVER_REMOVED = "ADDITIONAL_RESOLVER_REMOVED"
    RESOLVERS_LOCKED = "RESOLVERS_LOCKED"
    RESOLVERS_EMERGENCY_UNLOCKED = "RESOLVERS_EMERGENCY_UNLOCKED"

    # Resolver dispatch
    PRIMARY_RESOLVER_UNAVAILABLE = "PRIMARY_RESOLVER_UNAVAILABLE"
    ADDITIONAL_RESOLVER_FAILED = "ADDITIONAL_RESOLVER_FAILED"

    # Components
    COMPONENT_REGISTERED = "COMPONENT_REGISTERED"
    COMPONENT_DEACTIVATED = "COMPONENT_DEACTIVATED"
    COMPONENT_REACTIVATED = "COMPONENT_REACTIVATED"

    # Governance
    GOVERNANCE_TRANSITIONED = "GOVERNANCE_TRANSITIONED"
    GOVERNANCE_FROZEN = "GOVERNANCE_FROZEN"
    SLOT_UPGRADED = "SLOT_UPGRADED"
    SETTINGS_CHANGED = "SETTINGS_CHANGED"
    PAUSED = "PAUSED"
    UNPAUSED = "UNPAUSED"


@dataclass(frozen=True)
class Event:
    """Immutable record of one committed state change."""
    sequence: int
    event_type: EventType
    subject_id: Optional[str]
    actor: Optional[str]
    timestamp: int
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "event_type": self.event_type.value,
            "subject_id": self.subject_id,
            "actor": self.actor,
            "timestamp": self.timestamp,
            "data": self.data,
        }


class EventSink(ABC):
    """Destination for committed events."""

    @abstractmethod
    def publish(self, event: Event) -> None:
        pass


class LoggingSink(EventSink):
    """Writes each event to the structured audit log."""

    def __init__(self, audit: Optional[AuditLogger] = None):
        self._audit = audit or audit_log

    def publish(self, event: Event) -> None:
        self._audit.state_change(
            event.event_type.value, event.subject_id, event.actor, event.sequence, event.data
        )


class JournalSink(EventSink):
    """Appends each event to a hash-chained SQLite journal."""

    def __init__(self, journal: EventJournal):
        self.journal = journal

    def publish(self, event: Event) -> None:
        self.journal.append(event.to_dict())


class EventBus:
    """
    Fan-out of committed events to sinks and subscribers.

    Keeps a bounded in-memory history for queries. A failing sink or
    subscriber is logged and never affects the operation that produced the
    event.
    """

    def __init__(self, sinks: Optional[List[EventSink]] = None, max_records: int = 10000):
        self._sinks: List[EventSink] = list(sinks) if sinks is not None else [LoggingSink()]
        self._subscribers: List[Callable[[Event], None]] = []
        self._history: List[Event] = []
        self._max_records = max_records
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[Event], None]) -> Callable[[], None]:
        """Register a callback; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, events: List[Event]) -> None:
        with self._lock:
            self._history.extend(events)
            if len(self._history) > self._max_records:
                self._history = self._history[-self._max_records:]
            targets = list(self._sinks) + list(self._subscribers)

        for event in events:
            for target in targets:
                deliver = target.publish if isinstance(target, EventSink) else target
                try:
                    deliver(event)
                except Exception:
                    logger.exception("Event delivery failed for %s #%d", event.event_type.value, event.sequence)

    def query(
        self,
        event_type: Optional[EventType] = None,
        subject_id: Optional[str] = None,
        actor: Optional[str] = None
    ) -> List[Event]:
        with self._lock:
            events = self._history[:]

        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if subject_id:
            events = [e for e in events if e.subject_id == subject_id]
        if actor:
            events = [e for e in events if e.actor == actor]

        return events
