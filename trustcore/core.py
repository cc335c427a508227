"""
TrustCore facade.

Wires the ledger, registries, verifier, dispatcher and event sinks into
one object exposing every external operation. Rejected mutating
operations are written to the audit log before the error propagates.
"""

import functools
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .attestation import AttestationVerifier, VerificationReport, VerifierConfig
from .components import ComponentRecord, ComponentRegistry, ComponentType
from .config import CoreConfig
from .dispatch import ResolverDispatcher
from .documents import AuthorityPath, DocumentRecord, DocumentRegistry, ExecutorBinding
from .errors import CapabilityDenied, TrustCoreError
from .events import Event, EventBus, EventType, JournalSink, LoggingSink
from .governance import GovernanceStage, GovernanceStageMachine, GovernanceState
from .identity import ComponentLoader, ImportLoader, MappingLoader
from .journal import EventJournal
from .ledger import Ledger
from .logging_config import audit_log

logger = logging.getLogger(__name__)


def audited(operation: str) -> Callable:
    """Log TrustCoreError rejections of a facade operation, then re-raise."""
    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(self, caller, *args, **kwargs):
            try:
                return fn(self, caller, *args, **kwargs)
            except TrustCoreError as e:
                audit_log.operation_rejected(operation, e.code, subject_id=e.subject_id, actor=caller)
                raise
        return wrapper
    return decorator


class TrustCore:
    """
    In-process trust registry.

    Usage:
        core = TrustCore(initial_authority="founder", config=CoreConfig(...))
        doc = core.register_document("alice", doc_id, content_hash)
        ok, caps = core.verify_capability(proof, "bob", doc_id)
    """

    def __init__(
        self,
        initial_authority: str,
        config: Optional[CoreConfig] = None,
        loader: Optional[ComponentLoader] = None,
        clock: Optional[Callable[[], int]] = None,
        journal: Optional[EventJournal] = None
    ):
        self.config = config or CoreConfig()
        self.journal = journal or EventJournal(self.config.journal_path)
        self.events = EventBus([LoggingSink(), JournalSink(self.journal)])
        self.ledger = Ledger(self.events, clock)
        self.loader = loader or MappingLoader(fallback=ImportLoader())

        self.governance = GovernanceStageMachine(self.ledger, initial_authority)
        self.components = ComponentRegistry(self.ledger, self.loader, self.config.max_page_size)
        self.dispatcher = ResolverDispatcher(
            self.ledger,
            self.components,
            default_budget=self.config.default_resolver_budget,
            max_budget=self.config.max_resolver_budget,
        )
        self.documents = DocumentRegistry(
            self.ledger,
            self.components,
            self.dispatcher,
            emergency_authority=self.config.emergency_authority,
            emergency_window_seconds=self.config.emergency_window_seconds,
            max_batch_size=self.config.max_batch_size,
            max_additional_resolvers=self.config.max_additional_resolvers,
        )
        self.verifier = AttestationVerifier(
            self.components,
            self.ledger,
            self.documents.content_hash_of,
            VerifierConfig.from_core_config(self.config),
        )
        logger.info("TrustCore started on network %s", self.config.network_id)

    # ============================================================
    # Documents
    # ============================================================

    @audited("register_document")
    def register_document(
        self,
        caller: str,
        document_id: str,
        content_hash: str,
        tokenizer_binding: Optional[str] = None,
        primary_resolver_id: Optional[str] = None,
        additional_resolver_ids: Sequence[str] = (),
        executor: Optional[str] = None
    ) -> DocumentRecord:
        return self.documents.register(
            caller, document_id, content_hash, tokenizer_binding,
            primary_resolver_id, additional_resolver_ids, executor,
        )

    @audited("register_documents_batch")
    def register_documents_batch(
        self,
        caller: str,
        document_ids: Sequence[str],
        content_hashes: Sequence[str],
        tokenizer_binding: Optional[str] = None,
        primary_resolver_id: Optional[str] = None,
        additional_resolver_ids: Sequence[str] = ()
    ) -> List[DocumentRecord]:
        return self.documents.register_batch(
            caller, document_ids, content_hashes, tokenizer_binding,
            primary_resolver_id, additional_resolver_ids,
        )

    @audited("transfer_document_ownership")
    def transfer_document_ownership(self, caller: str, document_id: str, new_owner: str, reason: str) -> DocumentRecord:
        return self.documents.transfer_ownership(caller, document_id, new_owner, reason)

    @audited("authorize_executor")
    def authorize_executor(self, caller: str, document_id: str, executor: str) -> ExecutorBinding:
        return self.documents.authorize_executor(caller, document_id, executor)

    @audited("revoke_executor")
    def revoke_executor(self, caller: str, document_id: str) -> ExecutorBinding:
        return self.documents.revoke_executor(caller, document_id)

    def resolve_authority(self, caller: str, document_id: str, target_binding: Optional[str] = None) -> AuthorityPath:
        return self.documents.resolve_authority(caller, document_id, target_binding)

    # Resolver configuration

    @audited("set_primary_resolver")
    def set_primary_resolver(self, caller: str, document_id: str, resolver_id: Optional[str]) -> DocumentRecord:
        return self.documents.set_primary_resolver(caller, document_id, resolver_id)

    @audited("add_additional_resolver")
    def add_additional_resolver(self, caller: str, document_id: str, resolver_id: str) -> DocumentRecord:
        return self.documents.add_additional_resolver(caller, document_id, resolver_id)

    @audited("remove_additional_resolver")
    def remove_additional_resolver(self, caller: str, document_id: str, resolver_id: str) -> DocumentRecord:
        return self.documents.remove_additional_resolver(caller, document_id, resolver_id)

    @audited("set_tokenizer_binding")
    def set_tokenizer_binding(self, caller: str, document_id: str, tokenizer_binding: Optional[str]) -> DocumentRecord:
        return self.documents.set_tokenizer_binding(caller, document_id, tokenizer_binding)

    @audited("lock_resolvers")
    def lock_resolvers(self, caller: str, document_id: str) -> DocumentRecord:
        return self.documents.lock_resolvers(caller, document_id)

    @audited("emergency_unlock_resolvers")
    def emergency_unlock_resolvers(self, caller: str, document_id: str, justification: str) -> DocumentRecord:
        return self.documents.emergency_unlock(caller, document_id, justification)

    # Read-only

    def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        return self.documents.get(document_id)

    def document_exists(self, document_id: str) -> bool:
        return self.documents.exists(document_id)

    def content_hash_of(self, document_id: str) -> Optional[str]:
        return self.documents.content_hash_of(document_id)

    def executor_of(self, document_id: str) -> Optional[ExecutorBinding]:
        return self.documents.executor_of(document_id)

    def document_count(self) -> int:
        return self.documents.count()

    # ============================================================
    # Capabilities
    # ============================================================

    def verify_capability(
        self,
        proof: Any,
        claimant: str,
        document_id: str,
        required_capability: int = 0
    ) -> Tuple[bool, int]:
        """
        (True, granted_capabilities) if proof verifies for claimant on
        document_id, else (False, 0). The grant is returned whole; check it
        with has_capability(caps, required_capability), or use
        require_capability to have that done here.
        """
        return self.verifier.verify(proof, claimant, document_id, required_capability)

    def evaluate_capability(
        self,
        proof: Any,
        claimant: str,
        document_id: str,
        required_capability: int = 0
    ) -> VerificationReport:
        return self.verifier.evaluate(proof, claimant, document_id, required_capability)

    @audited("require_capability")
    def require_capability(
        self,
        caller: str,
        proof: Any,
        document_id: str,
        required: int,
        target_binding: Optional[str] = None
    ) -> Tuple[AuthorityPath, int]:
        """
        Authority over the document, a verified proof for caller, and the
        required bits, in one call.

        Raises:
            Unauthorized / WrongBinding: no authority path
            CapabilityDenied: proof rejected or required bits missing
        """
        path = self.documents.resolve_authority(caller, document_id, target_binding)
        report = self.verifier.evaluate(proof, caller, document_id, required)
        if not report.granted:
            failed = report.failed_check
            raise CapabilityDenied(
                "attestation rejected",
                operation="require_capability", subject_id=document_id, actor=caller,
                failed_check=failed.check_id if failed else None,
            )
        if not report.satisfied:
            raise CapabilityDenied(
                "required capabilities not granted",
                operation="require_capability", subject_id=document_id, actor=caller,
                required=required, granted=report.capabilities,
            )
        return path, report.capabilities

    # ============================================================
    # Components
    # ============================================================

    @audited("register_component")
    def register_component(
        self,
        caller: str,
        component_id: str,
        ref: str,
        component_type: ComponentType,
        description: str = ""
    ) -> ComponentRecord:
        return self.components.register(caller, component_id, ref, component_type, description)

    def resolve_component(self, component_id: str) -> Optional[str]:
        return self.components.resolve(component_id)

    def resolve_component_instance(self, component_id: str) -> Optional[Any]:
        return self.components.resolve_instance(component_id)

    @audited("deactivate_component")
    def deactivate_component(self, caller: str, component_id: str, reason: str) -> ComponentRecord:
        return self.components.deactivate(caller, component_id, reason)

    @audited("reactivate_component")
    def reactivate_component(self, caller: str, component_id: str) -> ComponentRecord:
        return self.components.reactivate(caller, component_id)

    def get_component(self, component_id: str) -> Optional[ComponentRecord]:
        return self.components.get(component_id)

    def component_count(self) -> int:
        return self.components.count()

    def list_components(self, offset: int = 0, limit: int = 50) -> List[ComponentRecord]:
        return self.components.list_page(offset, limit)

    def list_components_by_type(self, component_type: ComponentType) -> List[ComponentRecord]:
        return self.components.list_by_type(component_type)

    # ============================================================
    # Governance
    # ============================================================

    @audited("transition_governance_stage")
    def transition_governance_stage(self, caller: str, next_stage: GovernanceStage, new_authority: str) -> GovernanceState:
        return self.governance.transition(caller, next_stage, new_authority)

    @audited("freeze_governance")
    def freeze_governance(self, caller: str) -> GovernanceState:
        return self.governance.freeze(caller)

    @audited("set_paused")
    def set_paused(self, caller: str, paused: bool) -> bool:
        return self.governance.set_paused(caller, paused)

    @audited("upgrade_slot")
    def upgrade_slot(self, caller: str, slot: str, component_id: str) -> None:
        self.governance.upgrade_slot(caller, slot, component_id)

    @audited("configure_verifier")
    def configure_verifier(self, caller: str, **changes: Any) -> VerifierConfig:
        return self.verifier.configure(caller, **changes)

    @audited("set_executor_allowlist")
    def set_executor_allowlist(self, caller: str, executors: Iterable[str]) -> frozenset:
        return self.documents.set_executor_allowlist(caller, executors)

    @audited("set_resolver_budget")
    def set_resolver_budget(self, caller: str, component_id: str, seconds: Optional[float]) -> float:
        return self.dispatcher.set_budget(caller, component_id, seconds)

    def governance_state(self) -> GovernanceState:
        return self.governance.state

    def is_paused(self) -> bool:
        return self.governance.is_paused()

    # ============================================================
    # Events / journal
    # ============================================================

    def query_events(
        self,
        event_type: Optional[EventType] = None,
        subject_id: Optional[str] = None,
        actor: Optional[str] = None
    ) -> List[Event]:
        return self.events.query(event_type, subject_id, actor)

    def verify_journal(self) -> Dict[str, Any]:
        return self.journal.verify_chain()

    def stats(self) -> Dict[str, Any]:
        state = self.ledger.snapshot
        return {
            "documents": len(state.documents),
            "components": len(state.components),
            "executors": len(state.executors),
            "governance_stage": state.governance.stage.value,
            "paused": state.paused,
            "sequence": state.sequence,
            "journal": self.journal.stats(),
        }

    def close(self) -> None:
        self.journal.close()
