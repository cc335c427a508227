from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class RegisterDocumentRequest(BaseModel):
    document_id: str
    content_hash: str
    tokenizer_binding: Optional[str] = None
    primary_resolver_id: Optional[str] = None
    additional_resolver_ids: List[str] = Field(default_factory=list)
    executor: Optional[str] = None


class RegisterBatchRequest(BaseModel):
    document_ids: List[str]
    content_hashes: List[str]
    tokenizer_binding: Optional[str] = None
    primary_resolver_id: Optional[str] = None
    additional_resolver_ids: List[str] = Field(default_factory=list)


class TransferRequest(BaseModel):
    new_owner: str
    reason: str


class ExecutorRequest(BaseModel):
    executor: str


class ResolverRequest(BaseModel):
    resolver_id: Optional[str] = None


class TokenizerBindingRequest(BaseModel):
    tokenizer_binding: Optional[str] = None


class EmergencyUnlockRequest(BaseModel):
    justification: str


class ProofModel(BaseModel):
    claim_id: str
    evidence: Dict[str, Any] = Field(default_factory=dict)


class VerifyCapabilityRequest(BaseModel):
    proof: ProofModel
    claimant: str
    document_id: str
    required: int = 0


class RegisterComponentRequest(BaseModel):
    component_id: str
    ref: str
    component_type: str
    description: str = ""


class DeactivateRequest(BaseModel):
    reason: str


class TransitionRequest(BaseModel):
    next_stage: str
    new_authority: str


class PauseRequest(BaseModel):
    paused: bool


class SlotRequest(BaseModel):
    component_id: str


class VerifierSettingsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    verifier_id: Optional[str] = None
    provider_id: Optional[str] = None
    schema_id: Optional[str] = None
    schema_version: Optional[str] = None
    network_id: Optional[str] = None
    issuer_allowlist: Optional[List[str]] = None
    max_claim_age_seconds: Optional[int] = Field(default=None, ge=0)


class AllowlistRequest(BaseModel):
    executors: List[str]


class BudgetRequest(BaseModel):
    seconds: Optional[float] = None
