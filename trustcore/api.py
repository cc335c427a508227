"""
HTTP wrapper for TrustCore.

The caller identity is taken from the X-Caller header. TrustCore errors are
translated to HTTPException with the error's `to_dict()` as detail.
Mutating routes are rate limited per caller.
"""

import logging
from typing import Any, Callable, Optional

from fastapi import FastAPI, Header, HTTPException, Request

from .attestation import AttestationProof
from .capabilities import capability_names
from .components import ComponentType
from .config import (
    CONFIG_PATH,
    ENV,
    INITIAL_AUTHORITY,
    ISSUER_KEYS_PATH,
    LOG_JSON,
    LOG_LEVEL,
    MUTATE_RPM,
    is_debug,
    is_production,
    load_core_config,
    validate_config,
)
from .core import TrustCore
from .errors import ResolverConfigurationLocked, SystemPaused, TrustCoreError
from .events import EventType
from .governance import GovernanceStage
from .keys import FileKeyring
from .logging_config import audit_log, configure_logging, set_operation_id
from .models import (
    AllowlistRequest,
    BudgetRequest,
    DeactivateRequest,
    EmergencyUnlockRequest,
    ExecutorRequest,
    PauseRequest,
    RegisterBatchRequest,
    RegisterComponentRequest,
    RegisterDocumentRequest,
    ResolverRequest,
    SlotRequest,
    TokenizerBindingRequest,
    TransferRequest,
    TransitionRequest,
    VerifierSettingsRequest,
    VerifyCapabilityRequest,
)
from .providers import SignedClaimProvider
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY = {
    "validation": 400,
    "authorization": 403,
    "not_found": 404,
    "conflict": 409,
    "concurrency": 409,
    "state": 409,
}


def status_for(error: TrustCoreError) -> int:
    if isinstance(error, (SystemPaused, ResolverConfigurationLocked)):
        return 423
    return STATUS_BY_CATEGORY.get(error.category, 500)


def build_default_core() -> TrustCore:
    """
    Core built from the environment. With TRUSTCORE_ISSUER_KEYS_PATH set, a
    SignedClaimProvider over that trust store is registered as the
    attestation provider.
    """
    core = TrustCore(initial_authority=INITIAL_AUTHORITY, config=load_core_config(CONFIG_PATH or None))
    if ISSUER_KEYS_PATH:
        ref = "providers:signed-claims"
        core.loader.bind(ref, SignedClaimProvider(FileKeyring(ISSUER_KEYS_PATH)))
        core.register_component(INITIAL_AUTHORITY, core.config.provider_id, ref, ComponentType.PROVIDER,
                                f"trust store {ISSUER_KEYS_PATH}")
    return core


def create_app(core: Optional[TrustCore] = None, limiter: Optional[RateLimiter] = None) -> FastAPI:
    app = FastAPI(title="TrustCore")
    app.state.core = core or build_default_core()
    app.state.limiter = limiter or RateLimiter(MUTATE_RPM)

    def call(fn: Callable, *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except TrustCoreError as e:
            raise HTTPException(status_for(e), detail=e.to_dict())

    def mutate(caller: str, endpoint: str, fn: Callable, *args: Any, **kwargs: Any) -> Any:
        limit = app.state.limiter.check(caller)
        if not limit.allowed:
            audit_log.rate_limit_exceeded(caller, endpoint)
            raise HTTPException(429, "RATE_LIMIT", headers={"Retry-After": str(int(limit.retry_after or 0) + 1)})
        return call(fn, caller, *args, **kwargs)

    def found(value: Any, what: str) -> Any:
        if value is None:
            raise HTTPException(404, f"{what.upper()}_NOT_FOUND")
        return value

    @app.middleware("http")
    async def operation_id(request: Request, call_next):
        op_id = set_operation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = op_id
        return response

    tc: TrustCore = app.state.core

    @app.get("/health")
    def health():
        checks = validate_config()
        status = "ok" if all(checks.values()) else "degraded"
        body = {"status": status, "env": ENV, **tc.stats()}
        if not is_production():
            body["config_checks"] = checks
        return body

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    @app.post("/documents")
    def register_document(req: RegisterDocumentRequest, x_caller: str = Header(...)):
        record = mutate(x_caller, "register_document", tc.register_document,
                        req.document_id, req.content_hash, req.tokenizer_binding,
                        req.primary_resolver_id, req.additional_resolver_ids, req.executor)
        return record.to_dict()

    @app.post("/documents/batch")
    def register_documents_batch(req: RegisterBatchRequest, x_caller: str = Header(...)):
        records = mutate(x_caller, "register_documents_batch", tc.register_documents_batch,
                         req.document_ids, req.content_hashes, req.tokenizer_binding,
                         req.primary_resolver_id, req.additional_resolver_ids)
        return [r.to_dict() for r in records]

    @app.get("/documents/{document_id}")
    def get_document(document_id: str):
        record = found(tc.get_document(document_id), "document")
        executor = tc.executor_of(document_id)
        return {**record.to_dict(), "executor": executor.to_dict() if executor else None}

    @app.post("/documents/{document_id}/transfer")
    def transfer(document_id: str, req: TransferRequest, x_caller: str = Header(...)):
        record = mutate(x_caller, "transfer_document_ownership", tc.transfer_document_ownership,
                        document_id, req.new_owner, req.reason)
        return record.to_dict()

    @app.put("/documents/{document_id}/executor")
    def authorize_executor(document_id: str, req: ExecutorRequest, x_caller: str = Header(...)):
        binding = mutate(x_caller, "authorize_executor", tc.authorize_executor, document_id, req.executor)
        return binding.to_dict()

    @app.delete("/documents/{document_id}/executor")
    def revoke_executor(document_id: str, x_caller: str = Header(...)):
        binding = mutate(x_caller, "revoke_executor", tc.revoke_executor, document_id)
        return binding.to_dict()

    @app.get("/documents/{document_id}/authority")
    def resolve_authority(document_id: str, target_binding: Optional[str] = None, x_caller: str = Header(...)):
        path = call(tc.resolve_authority, x_caller, document_id, target_binding)
        return {"document_id": document_id, "caller": x_caller, "path": path.value}

    @app.put("/documents/{document_id}/primary_resolver")
    def set_primary_resolver(document_id: str, req: ResolverRequest, x_caller: str = Header(...)):
        record = mutate(x_caller, "set_primary_resolver", tc.set_primary_resolver, document_id, req.resolver_id)
        return record.to_dict()

    @app.post("/documents/{document_id}/resolvers")
    def add_additional_resolver(document_id: str, req: ResolverRequest, x_caller: str = Header(...)):
        if not req.resolver_id:
            raise HTTPException(400, "RESOLVER_ID_REQUIRED")
        record = mutate(x_caller, "add_additional_resolver", tc.add_additional_resolver,
                        document_id, req.resolver_id)
        return record.to_dict()

    @app.delete("/documents/{document_id}/resolvers/{resolver_id}")
    def remove_additional_resolver(document_id: str, resolver_id: str, x_caller: str = Header(...)):
        record = mutate(x_caller, "remove_additional_resolver", tc.remove_additional_resolver,
                        document_id, resolver_id)
        return record.to_dict()

    @app.put("/documents/{document_id}/tokenizer_binding")
    def set_tokenizer_binding(document_id: str, req: TokenizerBindingRequest, x_caller: str = Header(...)):
        record = mutate(x_caller, "set_tokenizer_binding", tc.set_tokenizer_binding,
                        document_id, req.tokenizer_binding)
        return record.to_dict()

    @app.post("/documents/{document_id}/lock")
    def lock_resolvers(document_id: str, x_caller: str = Header(...)):
        return mutate(x_caller, "lock_resolvers", tc.lock_resolvers, document_id).to_dict()

    @app.post("/documents/{document_id}/emergency_unlock")
    def emergency_unlock(document_id: str, req: EmergencyUnlockRequest, x_caller: str = Header(...)):
        record = mutate(x_caller, "emergency_unlock_resolvers", tc.emergency_unlock_resolvers,
                        document_id, req.justification)
        return record.to_dict()

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    @app.post("/capabilities/verify")
    def verify_capability(req: VerifyCapabilityRequest):
        proof = AttestationProof(claim_id=req.proof.claim_id, evidence=req.proof.evidence)
        report = tc.evaluate_capability(proof, req.claimant, req.document_id, req.required)
        return {**report.to_dict(), "capability_names": capability_names(report.capabilities)}

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @app.post("/components")
    def register_component(req: RegisterComponentRequest, x_caller: str = Header(...)):
        try:
            component_type = ComponentType(req.component_type)
        except ValueError:
            raise HTTPException(400, "UNKNOWN_COMPONENT_TYPE")
        record = mutate(x_caller, "register_component", tc.register_component,
                        req.component_id, req.ref, component_type, req.description)
        return record.to_dict()

    @app.get("/components")
    def list_components(offset: int = 0, limit: int = 50):
        return {
            "total": tc.component_count(),
            "items": [r.to_dict() for r in tc.list_components(offset, limit)],
        }

    @app.get("/components/{component_id}")
    def get_component(component_id: str):
        return found(tc.get_component(component_id), "component").to_dict()

    @app.get("/components/{component_id}/resolve")
    def resolve_component(component_id: str):
        ref = tc.resolve_component(component_id)
        return {"component_id": component_id, "available": ref is not None, "ref": ref}

    @app.post("/components/{component_id}/deactivate")
    def deactivate_component(component_id: str, req: DeactivateRequest, x_caller: str = Header(...)):
        return mutate(x_caller, "deactivate_component", tc.deactivate_component, component_id, req.reason).to_dict()

    @app.post("/components/{component_id}/reactivate")
    def reactivate_component(component_id: str, x_caller: str = Header(...)):
        return mutate(x_caller, "reactivate_component", tc.reactivate_component, component_id).to_dict()

    # ------------------------------------------------------------------
    # Governance
    # ------------------------------------------------------------------

    @app.get("/governance")
    def governance_state():
        return {**tc.governance_state().to_dict(), "paused": tc.is_paused()}

    @app.post("/governance/transition")
    def transition(req: TransitionRequest, x_caller: str = Header(...)):
        try:
            next_stage = GovernanceStage(req.next_stage)
        except ValueError:
            raise HTTPException(400, "UNKNOWN_STAGE")
        return mutate(x_caller, "transition_governance_stage", tc.transition_governance_stage,
                      next_stage, req.new_authority).to_dict()

    @app.post("/governance/freeze")
    def freeze(x_caller: str = Header(...)):
        return mutate(x_caller, "freeze_governance", tc.freeze_governance).to_dict()

    @app.post("/governance/pause")
    def set_paused(req: PauseRequest, x_caller: str = Header(...)):
        return {"paused": mutate(x_caller, "set_paused", tc.set_paused, req.paused)}

    @app.put("/governance/slots/{slot}")
    def upgrade_slot(slot: str, req: SlotRequest, x_caller: str = Header(...)):
        mutate(x_caller, "upgrade_slot", tc.upgrade_slot, slot, req.component_id)
        return {"slot": slot, "component_id": req.component_id}

    @app.put("/governance/verifier")
    def configure_verifier(req: VerifierSettingsRequest, x_caller: str = Header(...)):
        changes = req.model_dump(exclude_none=True)
        return mutate(x_caller, "configure_verifier", tc.configure_verifier, **changes).to_dict()

    @app.put("/governance/executor_allowlist")
    def set_executor_allowlist(req: AllowlistRequest, x_caller: str = Header(...)):
        allowlist = mutate(x_caller, "set_executor_allowlist", tc.set_executor_allowlist, req.executors)
        return {"executor_allowlist": sorted(allowlist)}

    @app.put("/governance/resolver_budgets/{component_id}")
    def set_resolver_budget(component_id: str, req: BudgetRequest, x_caller: str = Header(...)):
        budget = mutate(x_caller, "set_resolver_budget", tc.set_resolver_budget, component_id, req.seconds)
        return {"component_id": component_id, "budget": budget}

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @app.get("/events")
    def events(event_type: Optional[str] = None, subject_id: Optional[str] = None, actor: Optional[str] = None):
        try:
            kind = EventType(event_type) if event_type else None
        except ValueError:
            raise HTTPException(400, "UNKNOWN_EVENT_TYPE")
        return [e.to_dict() for e in tc.query_events(kind, subject_id, actor)]

    @app.get("/journal/verify")
    def verify_journal():
        return tc.verify_journal()

    return app


configure_logging("DEBUG" if is_debug() else LOG_LEVEL, json_format=LOG_JSON)
app = create_app()
