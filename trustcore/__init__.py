"""
TrustCore

Capability-based authorization and trust registry for document binding.

TrustCore answers one question per request: may this caller perform this
capability-gated operation on this document? The answer combines three
pieces:

- document authority: the caller is the owner, or the owner's executor
  acting through the document's tokenizer binding;
- a verified attestation: a signed claim, resolved through an
  integrity-checked provider, bound to the caller, this deployment, this
  verifier and this document's content;
- the capability bits the claim grants.

Administrative power moves one way, BOOTSTRAP -> GUARDIAN -> COMMUNITY ->
FROZEN, and once frozen nothing upgradeable can change.

Usage:
    from trustcore import (
        TrustCore,
        CoreConfig,
        ComponentType,
        SignedClaimProvider,
        InMemoryKeyring,
        DOC_SIGN,
    )

    core = TrustCore(initial_authority="founder", config=CoreConfig(issuer_allowlist=frozenset({"notary"})))

    # Deploy and register the attestation provider
    provider = SignedClaimProvider(InMemoryKeyring({"notary": notary_public_b64}))
    core.loader.bind("providers:signed", provider)
    core.register_component("founder", "signed-claims", "providers:signed", ComponentType.PROVIDER)

    # Register a document
    doc = core.register_document("alice", doc_id, content_hash)

    # Check a presented proof
    ok, caps = core.verify_capability(proof, "alice", doc_id)
    if ok and has_capability(caps, DOC_SIGN):
        ...
"""

__version__ = "1.0.0"

# Capabilities
from .capabilities import (
    CAPABILITIES,
    CAPABILITY_WIDTH,
    CORE_ADMIN,
    CORE_CLAIM,
    CORE_DELEGATE,
    CORE_REVOKE,
    CORE_TRANSFER,
    CORE_UPDATE,
    CORE_VIEW,
    DOC_AMEND,
    DOC_NOTARIZE,
    DOC_SIGN,
    DOC_VERIFY,
    DOC_WITNESS,
    add,
    capability_names,
    compose,
    from_names,
    has_capability,
    remove,
)

# Configuration
from .config import CoreConfig, load_core_config

# Errors
from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateError,
    TrustCoreError,
    ValidationError,
)

# Ledger and events
from .events import Event, EventBus, EventType
from .journal import EventJournal
from .ledger import Ledger

# Components
from .components import ComponentRecord, ComponentRegistry, ComponentType
from .identity import ComponentLoader, ImportLoader, MappingLoader, code_digest

# Attestation
from .attestation import (
    AttestationClaim,
    AttestationProof,
    AttestationProvider,
    AttestationVerifier,
    VerificationReport,
    VerifierConfig,
)
from .keys import FileKeyring, InMemoryKeyring, generate_issuer_keypair
from .providers import SignedClaimProvider

# Documents, dispatch, governance
from .dispatch import Budget, LifecycleEvent, Resolver, ResolverDispatcher
from .documents import AuthorityPath, DocumentRecord, DocumentRegistry, ExecutorBinding, ExecutorKind
from .governance import GovernanceStage, GovernanceStageMachine, GovernanceState

# Facade
from .core import TrustCore

# Utilities
from .util import content_hash, derive_document_id, sha256_hash


__all__ = [
    "__version__",

    # Capabilities
    "CAPABILITIES",
    "CAPABILITY_WIDTH",
    "CORE_ADMIN",
    "CORE_CLAIM",
    "CORE_DELEGATE",
    "CORE_REVOKE",
    "CORE_TRANSFER",
    "CORE_UPDATE",
    "CORE_VIEW",
    "DOC_AMEND",
    "DOC_NOTARIZE",
    "DOC_SIGN",
    "DOC_VERIFY",
    "DOC_WITNESS",
    "add",
    "capability_names",
    "compose",
    "from_names",
    "has_capability",
    "remove",

    # Configuration
    "CoreConfig",
    "load_core_config",

    # Errors
    "AuthorizationError",
    "ConflictError",
    "NotFoundError",
    "StateError",
    "TrustCoreError",
    "ValidationError",

    # Ledger and events
    "Event",
    "EventBus",
    "EventType",
    "EventJournal",
    "Ledger",

    # Components
    "ComponentRecord",
    "ComponentRegistry",
    "ComponentType",
    "ComponentLoader",
    "ImportLoader",
    "MappingLoader",
    "code_digest",

    # Attestation
    "AttestationClaim",
    "AttestationProof",
    "AttestationProvider",
    "AttestationVerifier",
    "VerificationReport",
    "VerifierConfig",
    "FileKeyring",
    "InMemoryKeyring",
    "generate_issuer_keypair",
    "SignedClaimProvider",

    # Documents, dispatch, governance
    "Budget",
    "LifecycleEvent",
    "Resolver",
    "ResolverDispatcher",
    "AuthorityPath",
    "DocumentRecord",
    "DocumentRegistry",
    "ExecutorBinding",
    "ExecutorKind",
    "GovernanceStage",
    "GovernanceStageMachine",
    "GovernanceState",

    # Facade
    "TrustCore",

    # Utilities
    "content_hash",
    "derive_document_id",
    "sha256_hash",
]
