"""
TrustCore transactional ledger.

A single-writer, serializable, in-process store. The committed state is a
snapshot that readers use without locking. Each mutating entry point runs
inside `Ledger.transaction()`, which:

- serializes writers behind one re-entrant lock,
- rejects nested re-entry on a resource that is already in flight,
- fails fast while the system is paused,
- stages changes on a private copy and publishes them by swapping the
  snapshot only when the outermost transaction completes,
- buffers events and hands them to the EventBus only on commit.

Nested transactions (a resolver hook calling back into the core on another
resource) behave as savepoints: their changes fold into the parent on
success and vanish on failure.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .errors import ReentrantCall, SystemPaused
from .events import Event, EventBus, EventType
from .logging_config import audit_log
from .util import now_epoch

logger = logging.getLogger(__name__)


class LedgerState:
    """
    Mutable container of ledger tables.

    Records inside the tables are frozen dataclasses; a change replaces the
    record. `copy()` duplicates the table dicts, never the records.
    """

    def __init__(self, deployed_at: int):
        self.components: Dict[str, Any] = {}
        self.documents: Dict[str, Any] = {}
        self.executors: Dict[str, Any] = {}
        self.slots: Dict[str, str] = {}
        self.resolver_budgets: Dict[str, float] = {}
        self.executor_allowlist: frozenset = frozenset()
        self.verifier_config: Any = None
        self.governance: Any = None
        self.paused: bool = False
        self.deployed_at: int = deployed_at
        self.sequence: int = 0

    def copy(self) -> "LedgerState":
        clone = LedgerState.__new__(LedgerState)
        clone.__dict__ = {
            key: dict(value) if isinstance(value, dict) else value
            for key, value in self.__dict__.items()
        }
        return clone


class Transaction:
    """One in-flight operation (or savepoint) over a staged state copy."""

    def __init__(
        self,
        ledger: "Ledger",
        operation: str,
        resource: str,
        actor: Optional[str],
        parent: Optional["Transaction"]
    ):
        self.ledger = ledger
        self.operation = operation
        self.resource = resource
        self.actor = actor
        self.parent = parent
        base = parent.state if parent else ledger.snapshot
        self.state = base.copy()
        self.now = ledger.clock()
        self._pending: List[Tuple[EventType, Optional[str], Optional[str], int, Dict[str, Any]]] = []

    def emit(
        self,
        event_type: EventType,
        subject_id: Optional[str],
        actor: Optional[str] = None,
        **data: Any
    ) -> None:
        """Buffer an event; it is published only if the operation commits."""
        self._pending.append((event_type, subject_id, actor if actor is not None else self.actor, self.now, data))

    def _fold_into_parent(self) -> None:
        self.parent.state = self.state
        self.parent._pending.extend(self._pending)

    def _seal_events(self) -> List[Event]:
        events = []
        for event_type, subject_id, actor, timestamp, data in self._pending:
            self.state.sequence += 1
            events.append(Event(
                sequence=self.state.sequence,
                event_type=event_type,
                subject_id=subject_id,
                actor=actor,
                timestamp=timestamp,
                data=data,
            ))
        return events


class Ledger:
    """
    Serializable store shared by every TrustCore registry.

    Usage:
        with ledger.transaction("register_document", f"document:{doc_id}", caller) as tx:
            tx.state.documents[doc_id] = record
            tx.emit(EventType.DOCUMENT_REGISTERED, doc_id, owner=caller)
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        self.clock = clock or now_epoch
        self.events = event_bus or EventBus()
        self._snapshot = LedgerState(deployed_at=self.clock())
        self._writer = threading.RLock()
        self._local = threading.local()
        self._in_flight: Dict[str, str] = {}

    @property
    def snapshot(self) -> LedgerState:
        """Last committed state. Never blocks."""
        return self._snapshot

    def _stack(self) -> List[Transaction]:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = []
            self._local.stack = stack
        return stack

    def current(self) -> Optional[Transaction]:
        """The innermost transaction open on this thread, if any."""
        stack = self._stack()
        return stack[-1] if stack else None

    def view(self) -> LedgerState:
        """
        State as seen by the calling thread: its own staged changes while an
        operation is in flight, otherwise the committed snapshot.
        """
        tx = self.current()
        return tx.state if tx else self._snapshot

    def is_in_flight(self, resource: str) -> bool:
        return resource in self._in_flight

    @contextmanager
    def transaction(
        self,
        operation: str,
        resource: str,
        actor: Optional[str] = None,
        check_pause: bool = True
    ) -> Iterator[Transaction]:
        """
        Run one atomic operation guarded on `resource`.

        Raises:
            ReentrantCall: resource already has an operation in flight
            SystemPaused: system paused and check_pause is set
        """
        with self._writer:
            stack = self._stack()
            parent = stack[-1] if stack else None

            if resource in self._in_flight:
                audit_log.security_event(
                    "reentrant_call", severity="high",
                    operation=operation, resource=resource,
                    in_flight_operation=self._in_flight[resource], actor=actor,
                )
                raise ReentrantCall(
                    f"{resource} already has {self._in_flight[resource]} in flight",
                    operation=operation, subject_id=resource, actor=actor,
                )

            tx = Transaction(self, operation, resource, actor, parent)
            if check_pause and tx.state.paused:
                raise SystemPaused("system is paused", operation=operation, subject_id=resource, actor=actor)

            self._in_flight[resource] = operation
            stack.append(tx)
            try:
                yield tx
            except BaseException:
                stack.pop()
                del self._in_flight[resource]
                logger.debug("Rolled back %s on %s", operation, resource)
                raise

            stack.pop()
            del self._in_flight[resource]

            if parent is not None:
                tx._fold_into_parent()
                return

            events = tx._seal_events()
            self._snapshot = tx.state
            if events:
                self.events.publish(events)
