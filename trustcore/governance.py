"""
TrustCore Governance Stage Machine

Administrative authority progresses one way:

    BOOTSTRAP -> GUARDIAN -> COMMUNITY -> FROZEN (terminal)

Each forward step is taken by the current authority and hands authority to
a new holder. FROZEN permanently disables upgrades and reconfiguration of
the mutable components (implementation slots, verifier settings, executor
allow-list, resolver budgets). Operational powers that are not upgrades,
namely pausing, component lifecycle and emergency unlock, stay with the
final authority.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .errors import (
    ComponentNotFound,
    InvalidIdentifier,
    InvalidStageTransition,
    Ossified,
    Unauthorized,
    ValidationError,
)
from .events import EventType
from .ledger import Ledger, LedgerState
from .util import is_identity

logger = logging.getLogger(__name__)

GOVERNANCE_RESOURCE = "governance"


class GovernanceStage(str, Enum):
    BOOTSTRAP = "BOOTSTRAP"
    GUARDIAN = "GUARDIAN"
    COMMUNITY = "COMMUNITY"
    FROZEN = "FROZEN"

    @property
    def rank(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER = [
    GovernanceStage.BOOTSTRAP,
    GovernanceStage.GUARDIAN,
    GovernanceStage.COMMUNITY,
    GovernanceStage.FROZEN,
]


@dataclass(frozen=True)
class GovernanceState:
    stage: GovernanceStage
    authority: str
    transitioned_at: int
    frozen_at: Optional[int] = None

    @property
    def frozen(self) -> bool:
        return self.stage == GovernanceStage.FROZEN

    def to_dict(self):
        return {
            "stage": self.stage.value,
            "authority": self.authority,
            "transitioned_at": self.transitioned_at,
            "frozen_at": self.frozen_at,
        }


def is_valid_transition(current: GovernanceStage, target: GovernanceStage) -> bool:
    """Only the immediately next stage is reachable; FROZEN only via freeze."""
    if target == GovernanceStage.FROZEN:
        return False
    return target.rank == current.rank + 1


def require_authority(state: LedgerState, caller: str, operation: str, subject_id: Optional[str] = None) -> None:
    """Raise Unauthorized unless caller holds governance authority."""
    governance = state.governance
    if governance is None or caller != governance.authority:
        raise Unauthorized(
            "governance authority required",
            operation=operation, subject_id=subject_id, actor=caller,
        )


def require_mutable(state: LedgerState, caller: str, operation: str, subject_id: Optional[str] = None) -> None:
    """Raise Ossified once frozen, Unauthorized unless caller holds authority."""
    governance = state.governance
    if governance is not None and governance.frozen:
        raise Ossified(
            "governance is frozen; mutable components can no longer change",
            operation=operation, subject_id=subject_id, actor=caller,
        )
    require_authority(state, caller, operation, subject_id)


def is_governance_authority(state: LedgerState, caller: str) -> bool:
    return state.governance is not None and caller == state.governance.authority


class GovernanceStageMachine:
    """
    One-way authority progression plus the governed settings it owns.

    Usage:
        governance = GovernanceStageMachine(ledger, initial_authority="founder")
        governance.transition("founder", GovernanceStage.GUARDIAN, "guardian-council")
        governance.transition("guardian-council", GovernanceStage.COMMUNITY, "dao")
        governance.freeze("dao")
    """

    def __init__(self, ledger: Ledger, initial_authority: str):
        if not is_identity(initial_authority):
            raise InvalidIdentifier("initial authority must be a non-empty identity", operation="bootstrap")
        self.ledger = ledger
        if ledger.snapshot.governance is None:
            with ledger.transaction("bootstrap_governance", GOVERNANCE_RESOURCE, initial_authority, check_pause=False) as tx:
                tx.state.governance = GovernanceState(
                    stage=GovernanceStage.BOOTSTRAP,
                    authority=initial_authority,
                    transitioned_at=tx.now,
                )

    # ------------------------------------------------------------------
    # Read-only
    # ------------------------------------------------------------------

    @property
    def state(self) -> GovernanceState:
        return self.ledger.view().governance

    @property
    def stage(self) -> GovernanceStage:
        return self.state.stage

    @property
    def authority(self) -> str:
        return self.state.authority

    def is_paused(self) -> bool:
        return self.ledger.view().paused

    def slot(self, name: str) -> Optional[str]:
        """Component id bound to an implementation slot."""
        return self.ledger.view().slots.get(name)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(self, caller: str, next_stage: GovernanceStage, new_authority: str) -> GovernanceState:
        """
        Advance to the next stage and hand authority to new_authority.

        Raises:
            Unauthorized: caller is not the current authority
            InvalidStageTransition: next_stage is not the immediate successor
            Ossified: already frozen
        """
        next_stage = GovernanceStage(next_stage)
        with self.ledger.transaction("transition_governance_stage", GOVERNANCE_RESOURCE, caller) as tx:
            current = tx.state.governance
            if current.frozen:
                raise Ossified("governance is frozen", operation="transition_governance_stage", actor=caller)
            require_authority(tx.state, caller, "transition_governance_stage")
            if not is_valid_transition(current.stage, next_stage):
                raise InvalidStageTransition(
                    f"{current.stage.value} -> {next_stage.value} is not allowed",
                    operation="transition_governance_stage", actor=caller,
                    current=current.stage.value, requested=next_stage.value,
                )
            if not is_identity(new_authority):
                raise InvalidIdentifier("new authority must be a non-empty identity",
                                        operation="transition_governance_stage", actor=caller)

            tx.state.governance = GovernanceState(
                stage=next_stage,
                authority=new_authority,
                transitioned_at=tx.now,
            )
            tx.emit(
                EventType.GOVERNANCE_TRANSITIONED, GOVERNANCE_RESOURCE,
                from_stage=current.stage.value, to_stage=next_stage.value,
                previous_authority=current.authority, new_authority=new_authority,
            )
            logger.info("Governance %s -> %s", current.stage.value, next_stage.value)
            return tx.state.governance

    def freeze(self, caller: str) -> GovernanceState:
        """
        Enter FROZEN. Only from COMMUNITY, only by the current authority.
        """
        with self.ledger.transaction("freeze_governance", GOVERNANCE_RESOURCE, caller) as tx:
            current = tx.state.governance
            if current.frozen:
                raise Ossified("governance is already frozen", operation="freeze_governance", actor=caller)
            require_authority(tx.state, caller, "freeze_governance")
            if current.stage != GovernanceStage.COMMUNITY:
                raise InvalidStageTransition(
                    f"{current.stage.value} -> FROZEN is not allowed",
                    operation="freeze_governance", actor=caller,
                    current=current.stage.value, requested=GovernanceStage.FROZEN.value,
                )
            tx.state.governance = replace(
                current, stage=GovernanceStage.FROZEN, transitioned_at=tx.now, frozen_at=tx.now
            )
            tx.emit(EventType.GOVERNANCE_FROZEN, GOVERNANCE_RESOURCE, authority=current.authority)
            logger.warning("Governance frozen by %s", caller)
            return tx.state.governance

    # ------------------------------------------------------------------
    # Operational powers
    # ------------------------------------------------------------------

    def set_paused(self, caller: str, paused: bool) -> bool:
        """
        Set the system-wide pause flag. Returns the new value.
        """
        with self.ledger.transaction("set_paused", GOVERNANCE_RESOURCE, caller, check_pause=False) as tx:
            require_authority(tx.state, caller, "set_paused")
            if tx.state.paused != bool(paused):
                tx.state.paused = bool(paused)
                tx.emit(EventType.PAUSED if paused else EventType.UNPAUSED, GOVERNANCE_RESOURCE)
            return tx.state.paused

    # ------------------------------------------------------------------
    # Governed settings
    # ------------------------------------------------------------------

    def upgrade_slot(self, caller: str, slot: str, component_id: str) -> None:
        """
        Bind an implementation slot to a registered, active component.

        Raises:
            Ossified: governance frozen
            ComponentNotFound: component unknown or inactive
        """
        with self.ledger.transaction("upgrade_slot", f"slot:{slot}", caller) as tx:
            require_mutable(tx.state, caller, "upgrade_slot", slot)
            if not slot or not isinstance(slot, str):
                raise ValidationError("slot name required", operation="upgrade_slot", actor=caller)
            record = tx.state.components.get(component_id)
            if record is None or not record.active:
                raise ComponentNotFound(
                    f"no active component {component_id}",
                    operation="upgrade_slot", subject_id=component_id, actor=caller,
                )
            previous = tx.state.slots.get(slot)
            tx.state.slots[slot] = component_id
            tx.emit(EventType.SLOT_UPGRADED, slot, previous=previous, component_id=component_id)
