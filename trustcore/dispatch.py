"""
TrustCore Resolver Dispatcher

Invokes the resolver hooks attached to a document after a lifecycle
operation has written its state:

- the primary resolver is critical: if it is configured and available, any
  error or budget overrun aborts the enclosing operation;
- additional resolvers are best-effort: each one runs in its own savepoint
  and budget, and a failure is recorded as an event and skipped.

A configured primary resolver that cannot be resolved (deactivated or code
changed) does not block the operation; the miss is recorded instead.
"""

import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .errors import PrimaryResolverFailed, ResourceBudgetExceeded, ValidationError
from .events import EventType
from .governance import require_mutable
from .ledger import Ledger

logger = logging.getLogger(__name__)

BUDGETS_RESOURCE = "settings:resolver_budgets"


class LifecycleEvent(str, Enum):
    REGISTERED = "REGISTERED"
    OWNERSHIP_TRANSFERRED = "OWNERSHIP_TRANSFERRED"
    EXECUTOR_AUTHORIZED = "EXECUTOR_AUTHORIZED"
    EXECUTOR_REVOKED = "EXECUTOR_REVOKED"


class Budget:
    """
    Wall-clock allowance for one hook invocation.

    Hooks that loop or wait should call `check()`; a hook that returns
    after its allowance is still treated as an overrun. The allowance is
    measured, not enforced: a hook that blocks without calling `check()`
    keeps the ledger writer lock for as long as it blocks, stalling every
    other mutation until it returns.
    """

    def __init__(self, component_id: str, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.component_id = component_id
        self.seconds = seconds
        self._clock = clock
        self._started = clock()

    def elapsed(self) -> float:
        return self._clock() - self._started

    def check(self) -> None:
        """Raise ResourceBudgetExceeded once the allowance is spent."""
        elapsed = self.elapsed()
        if elapsed > self.seconds:
            raise ResourceBudgetExceeded(self.component_id, self.seconds, elapsed)


class Resolver(ABC):
    """Lifecycle hook attached to documents. Registered as a RESOLVER component."""

    @abstractmethod
    def handle(self, event: LifecycleEvent, document_id: str, payload: Dict[str, Any], budget: Budget) -> None:
        pass


class ResolverDispatcher:
    """
    Usage:
        dispatcher = ResolverDispatcher(ledger, registry, default_budget=0.5, max_budget=5.0)
        # inside a document transaction, after state is written:
        dispatcher.dispatch(document_id, LifecycleEvent.REGISTERED, {"owner": owner})
    """

    def __init__(
        self,
        ledger: Ledger,
        registry,
        default_budget: float = 0.5,
        max_budget: float = 5.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ledger = ledger
        self.registry = registry
        self.default_budget = default_budget
        self.max_budget = max_budget
        self._clock = clock

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    def budget_for(self, component_id: str) -> float:
        override = self.ledger.view().resolver_budgets.get(component_id)
        seconds = override if override is not None else self.default_budget
        return min(seconds, self.max_budget)

    def set_budget(self, caller: str, component_id: str, seconds: Optional[float]) -> float:
        """
        Override one resolver's budget (None restores the default).
        Values above the global cap are stored capped.
        """
        with self.ledger.transaction("set_resolver_budget", BUDGETS_RESOURCE, caller) as tx:
            require_mutable(tx.state, caller, "set_resolver_budget", component_id)
            if seconds is None:
                tx.state.resolver_budgets.pop(component_id, None)
            else:
                seconds = float(seconds)
                if seconds <= 0:
                    raise ValidationError("budget must be positive", operation="set_resolver_budget",
                                          subject_id=component_id, actor=caller)
                tx.state.resolver_budgets[component_id] = min(seconds, self.max_budget)
            effective = self.budget_for(component_id)
            tx.emit(EventType.SETTINGS_CHANGED, BUDGETS_RESOURCE, component_id=component_id, budget=effective)
            return effective

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, document_id: str, event: LifecycleEvent, payload: Dict[str, Any]) -> None:
        self.invoke_primary(document_id, event, payload)
        self.invoke_additional(document_id, event, payload)

    def invoke_primary(self, document_id: str, event: LifecycleEvent, payload: Dict[str, Any]) -> None:
        """
        Raises:
            PrimaryResolverFailed: the hook raised or overran its budget
        """
        record = self.ledger.view().documents.get(document_id)
        component_id = record.primary_resolver_id if record else None
        if not component_id:
            return

        hook = self.registry.resolve_instance(component_id)
        if hook is None:
            logger.warning("Primary resolver %s unavailable for %s", component_id, document_id)
            self._emit(EventType.PRIMARY_RESOLVER_UNAVAILABLE, document_id,
                       resolver_id=component_id, lifecycle_event=event.value)
            return

        try:
            self._run(component_id, hook, event, document_id, payload)
        except Exception as e:
            logger.error("Primary resolver %s failed on %s: %s", component_id, event.value, e)
            raise PrimaryResolverFailed(
                f"primary resolver {component_id} failed: {e}",
                operation=event.value, subject_id=document_id, resolver_id=component_id,
            ) from e

    def invoke_additional(self, document_id: str, event: LifecycleEvent, payload: Dict[str, Any]) -> None:
        record = self.ledger.view().documents.get(document_id)
        if record is None:
            return

        for component_id in record.additional_resolver_ids:
            hook = self.registry.resolve_instance(component_id)
            if hook is None:
                logger.debug("Skipping unavailable resolver %s", component_id)
                continue
            try:
                self._run(component_id, hook, event, document_id, payload)
            except Exception as e:
                logger.warning("Additional resolver %s failed on %s: %s", component_id, event.value, e)
                self._emit(EventType.ADDITIONAL_RESOLVER_FAILED, document_id,
                           resolver_id=component_id, lifecycle_event=event.value,
                           error=type(e).__name__, reason=str(e))

    def _run(self, component_id: str, hook: Any, event: LifecycleEvent, document_id: str,
             payload: Dict[str, Any]) -> None:
        handler = getattr(hook, "handle", None)
        if handler is None:
            if isinstance(hook, type) or not callable(hook):
                raise TypeError(f"resolver {component_id} is not callable")
            handler = hook

        budget = Budget(component_id, self.budget_for(component_id), self._clock)
        # savepoint: changes the hook makes through the core vanish if it fails
        with self.ledger.transaction("resolver_hook", f"hook:{component_id}", check_pause=False):
            handler(event, document_id, dict(payload), budget)
            budget.check()

    def _emit(self, event_type: EventType, subject_id: str, **data: Any) -> None:
        tx = self.ledger.current()
        if tx is not None:
            tx.emit(event_type, subject_id, **data)
