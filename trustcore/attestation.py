"""
TrustCore Attestation Verifier

A single-shot, fail-closed pipeline that turns an opaque attestation proof
into a capability grant for one recipient on one document.

The checks run in a fixed order and stop at the first failure:

    1.  claim_resolves          provider available and proof names a real claim
    2.  claim_not_revoked
    3.  claim_not_expired
    4.  schema_matches          claim schema id == expected schema id
    5.  recipient_matches       claim recipient == claimed recipient (anti front-running)
    6.  issuer_allowed          issuer on the allow-list
    7.  network_matches         claim origin network == deployment network (anti cross-network replay)
    8.  provider_matches        claim origin provider == configured provider
    9.  target_matches          claim target == this verifier (anti cross-verifier replay)
    10. schema_version_matches
    11. content_hash_matches    claim is bound to the document's current content
    12. claim_age_within_limit  optional, only when a maximum age is configured

A failed pipeline yields (False, 0). Checks never raise.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from .capabilities import CAPABILITY_MASK, has_capability
from .config import CoreConfig
from .errors import ValidationError
from .events import EventType
from .governance import require_mutable
from .ledger import Ledger
from .logging_config import audit_log
from .util import constant_time_compare, is_identity, is_null_digest

logger = logging.getLogger(__name__)

VERIFIER_RESOURCE = "settings:verifier"
PROVIDER_SLOT = "attestation_provider"


# ============================================================
# Proofs and claims
# ============================================================

@dataclass(frozen=True)
class AttestationProof:
    """Opaque evidence handed to a provider."""
    claim_id: str
    evidence: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AttestationClaim:
    """
    A resolved attestation. Timestamps are Unix seconds; 0 means unset
    (no expiry, not revoked).
    """
    claim_id: str
    subject_id: str
    recipient: str
    schema_id: str
    schema_version: str
    issuer: str
    source_system_id: str
    source_network_id: str
    target_id: str
    granted_capabilities: int
    content_hash: str
    issued_at: int
    expires_at: int = 0
    revoked_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def signable(self) -> Dict[str, Any]:
        """Claim body covered by the issuer signature (revocation excluded)."""
        body = self.to_dict()
        body.pop("revoked_at")
        return body


class AttestationProvider(ABC):
    """Resolves proofs into claims. Registered as a PROVIDER component."""

    @abstractmethod
    def get_claim(self, proof: AttestationProof) -> Optional[AttestationClaim]:
        """The claim named by proof, or None if it does not exist or fails validation."""
        pass


# ============================================================
# Configuration
# ============================================================

@dataclass(frozen=True)
class VerifierConfig:
    verifier_id: str
    provider_id: str
    schema_id: str
    schema_version: str
    network_id: str
    issuer_allowlist: FrozenSet[str] = field(default_factory=frozenset)
    max_claim_age_seconds: int = 0

    @classmethod
    def from_core_config(cls, config: CoreConfig) -> "VerifierConfig":
        return cls(
            verifier_id=config.verifier_id,
            provider_id=config.provider_id,
            schema_id=config.schema_id,
            schema_version=config.schema_version,
            network_id=config.network_id,
            issuer_allowlist=frozenset(config.issuer_allowlist),
            max_claim_age_seconds=config.max_claim_age_seconds,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["issuer_allowlist"] = sorted(self.issuer_allowlist)
        return d


_IDENTIFIER_SETTINGS = ("verifier_id", "provider_id", "schema_id", "schema_version", "network_id")


def _checked_setting(name: str, value: Any, caller: str) -> Any:
    """Validate one verifier setting and return it in stored form."""
    def invalid(expected: str) -> ValidationError:
        return ValidationError(
            f"{name} must be {expected}, got {value!r}",
            operation="configure_verifier", actor=caller, setting=name,
        )

    if name in _IDENTIFIER_SETTINGS:
        if not is_identity(value):
            raise invalid("a non-empty identifier")
        return value
    if name == "issuer_allowlist":
        if not isinstance(value, (list, tuple, set, frozenset)) or not all(is_identity(v) for v in value):
            raise invalid("a list of issuer identities")
        return frozenset(value)
    # max_claim_age_seconds; 0 disables the age check
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise invalid("a non-negative integer")
    return value


# ============================================================
# Check results
# ============================================================

class CheckResult(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


class FailureCode(str, Enum):
    MISSING = "MISSING"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"
    MISMATCH = "MISMATCH"
    UNAUTHORIZED = "UNAUTHORIZED"
    EXCEEDED = "EXCEEDED"
    REPLAY = "REPLAY"
    UNKNOWN = "UNKNOWN"


@dataclass
class CheckEvaluation:
    """Result of evaluating a single check."""
    check_id: str
    result: CheckResult
    failure_code: Optional[FailureCode] = None
    required: Optional[str] = None
    observed: Optional[str] = None

    def passed(self) -> bool:
        return self.result == CheckResult.PASS

    def to_dict(self) -> Dict[str, Any]:
        d = {"check_id": self.check_id, "result": self.result.value}
        if self.failure_code:
            d["failure_code"] = self.failure_code.value
        if self.required:
            d["required"] = self.required
        if self.observed:
            d["observed"] = self.observed
        return d


@dataclass
class VerificationContext:
    """Everything the checks look at, resolved once per verification."""
    proof: Any
    claimant: str
    document_id: str
    config: VerifierConfig
    now: int
    claim: Optional[AttestationClaim] = None
    document_content_hash: Optional[str] = None


@dataclass
class VerificationReport:
    granted: bool
    capabilities: int
    checks: List[CheckEvaluation]
    claim_id: Optional[str] = None
    required: int = 0

    @property
    def failed_check(self) -> Optional[CheckEvaluation]:
        for check in self.checks:
            if not check.passed():
                return check
        return None

    @property
    def satisfied(self) -> bool:
        """Granted and the grant covers the requested bits."""
        return self.granted and has_capability(self.capabilities, self.required)

    def decision(self) -> Tuple[bool, int]:
        return self.granted, self.capabilities

    def to_dict(self) -> Dict[str, Any]:
        return {
            "granted": self.granted,
            "capabilities": self.capabilities,
            "claim_id": self.claim_id,
            "required": self.required,
            "satisfied": self.satisfied,
            "checks": [c.to_dict() for c in self.checks],
        }


# ============================================================
# Checks
# ============================================================

class ClaimCheck(ABC):
    """One step of the pipeline. Must return PASS or FAIL, never raise."""

    check_id = "check"

    @abstractmethod
    def evaluate(self, ctx: VerificationContext) -> CheckEvaluation:
        pass

    def _pass(self) -> CheckEvaluation:
        return CheckEvaluation(check_id=self.check_id, result=CheckResult.PASS)

    def _fail(self, code: FailureCode, required: str = None, observed: str = None) -> CheckEvaluation:
        return CheckEvaluation(
            check_id=self.check_id,
            result=CheckResult.FAIL,
            failure_code=code,
            required=required,
            observed=observed,
        )


class ClaimResolvesCheck(ClaimCheck):
    """Provider resolvable through the registry and the proof names a real claim."""

    check_id = "claim_resolves"

    def __init__(self, resolve_provider: Callable[[], Optional[Any]]):
        self._resolve_provider = resolve_provider

    def evaluate(self, ctx):
        if not isinstance(ctx.proof, AttestationProof) or not ctx.proof.claim_id:
            return self._fail(FailureCode.MISSING, "attestation proof", "malformed proof")
        provider = self._resolve_provider()
        if provider is None or isinstance(provider, type) or not callable(getattr(provider, "get_claim", None)):
            return self._fail(FailureCode.MISSING, "available provider", "provider unavailable")
        try:
            claim = provider.get_claim(ctx.proof)
        except Exception:
            logger.exception("Provider failed resolving claim %s", ctx.proof.claim_id)
            return self._fail(FailureCode.UNKNOWN, "claim lookup", "provider error")
        if not isinstance(claim, AttestationClaim):
            return self._fail(FailureCode.MISSING, f"claim {ctx.proof.claim_id}", "not found")
        ctx.claim = claim
        return self._pass()


class NotRevokedCheck(ClaimCheck):
    check_id = "claim_not_revoked"

    def evaluate(self, ctx):
        revoked_at = ctx.claim.revoked_at
        if revoked_at and revoked_at <= ctx.now:
            return self._fail(FailureCode.REVOKED, "not revoked", f"revoked at {revoked_at}")
        return self._pass()


class NotExpiredCheck(ClaimCheck):
    check_id = "claim_not_expired"

    def evaluate(self, ctx):
        expires_at = ctx.claim.expires_at
        if expires_at and ctx.now >= expires_at:
            return self._fail(FailureCode.EXPIRED, f"now < {expires_at}", f"now = {ctx.now}")
        return self._pass()


class FieldEqualsCheck(ClaimCheck):
    """Claim field must equal a value taken from the verification context."""

    def __init__(
        self,
        check_id: str,
        claim_field: str,
        expected: Callable[[VerificationContext], Any],
        code: FailureCode = FailureCode.MISMATCH
    ):
        self.check_id = check_id
        self._claim_field = claim_field
        self._expected = expected
        self._code = code

    def evaluate(self, ctx):
        want = self._expected(ctx)
        got = getattr(ctx.claim, self._claim_field, None)
        if want is None or got is None or str(got) != str(want):
            return self._fail(self._code, f"{self._claim_field} = {want}", str(got))
        return self._pass()


class IssuerAllowedCheck(ClaimCheck):
    check_id = "issuer_allowed"

    def evaluate(self, ctx):
        if ctx.claim.issuer not in ctx.config.issuer_allowlist:
            return self._fail(FailureCode.UNAUTHORIZED, "issuer on allow-list", ctx.claim.issuer)
        return self._pass()


class ContentHashCheck(ClaimCheck):
    """Claim must be bound to the target document's registered content."""

    check_id = "content_hash_matches"

    def evaluate(self, ctx):
        expected = ctx.document_content_hash
        if is_null_digest(expected):
            return self._fail(FailureCode.MISSING, f"document {ctx.document_id}", "not registered")
        if not isinstance(ctx.claim.content_hash, str) or not constant_time_compare(ctx.claim.content_hash, expected):
            return self._fail(FailureCode.MISMATCH, expected, str(ctx.claim.content_hash))
        return self._pass()


class ClaimAgeCheck(ClaimCheck):
    check_id = "claim_age_within_limit"

    def evaluate(self, ctx):
        limit = ctx.config.max_claim_age_seconds
        if not limit:
            return self._pass()
        age = ctx.now - int(ctx.claim.issued_at)
        if age > limit:
            return self._fail(FailureCode.EXCEEDED, f"age <= {limit}s", f"age = {age}s")
        return self._pass()


# ============================================================
# Verifier
# ============================================================

class AttestationVerifier:
    """
    Verifies proofs against its own configuration and the target document.

    Usage:
        verifier = AttestationVerifier(registry, ledger, documents.content_hash_of,
                                       VerifierConfig.from_core_config(config))
        ok, caps = verifier.verify(proof, claimant, document_id)
        if ok and has_capability(caps, DOC_SIGN):
            ...
    """

    def __init__(
        self,
        registry,
        ledger: Ledger,
        content_hash_lookup: Callable[[str], Optional[str]],
        config: VerifierConfig
    ):
        self.registry = registry
        self.ledger = ledger
        self._content_hash_lookup = content_hash_lookup
        if ledger.snapshot.verifier_config is None:
            with ledger.transaction("bootstrap_verifier", VERIFIER_RESOURCE, check_pause=False) as tx:
                tx.state.verifier_config = config
        self._checks: List[ClaimCheck] = [
            ClaimResolvesCheck(self.resolve_provider),
            NotRevokedCheck(),
            NotExpiredCheck(),
            FieldEqualsCheck("schema_matches", "schema_id", lambda c: c.config.schema_id),
            FieldEqualsCheck("recipient_matches", "recipient", lambda c: c.claimant, FailureCode.UNAUTHORIZED),
            IssuerAllowedCheck(),
            FieldEqualsCheck("network_matches", "source_network_id", lambda c: c.config.network_id, FailureCode.REPLAY),
            FieldEqualsCheck("provider_matches", "source_system_id", lambda c: c.config.provider_id, FailureCode.REPLAY),
            FieldEqualsCheck("target_matches", "target_id", lambda c: c.config.verifier_id, FailureCode.REPLAY),
            FieldEqualsCheck("schema_version_matches", "schema_version", lambda c: c.config.schema_version),
            ContentHashCheck(),
            ClaimAgeCheck(),
        ]

    @property
    def config(self) -> VerifierConfig:
        return self.ledger.view().verifier_config

    def provider_component_id(self) -> str:
        """Upgraded provider slot if bound, else the configured provider id."""
        return self.ledger.view().slots.get(PROVIDER_SLOT) or self.config.provider_id

    def resolve_provider(self) -> Optional[Any]:
        return self.registry.resolve_instance(self.provider_component_id())

    def evaluate(
        self,
        proof: Any,
        claimant: str,
        document_id: str,
        required_capability: int = 0
    ) -> VerificationReport:
        """
        Run the pipeline and return the per-check report.

        required_capability does not affect the decision; it is recorded on
        the report so `satisfied` can answer has_capability for the caller.

        Never raises; an unexpected error inside a check fails closed.
        """
        ctx = VerificationContext(
            proof=proof,
            claimant=claimant,
            document_id=document_id,
            config=self.config,
            now=self.ledger.clock(),
        )
        try:
            ctx.document_content_hash = self._content_hash_lookup(document_id)
        except Exception:
            logger.exception("Content hash lookup failed for %s", document_id)
            ctx.document_content_hash = None

        evaluations: List[CheckEvaluation] = []
        for check in self._checks:
            try:
                evaluation = check.evaluate(ctx)
            except Exception:
                logger.exception("Check %s raised", check.check_id)
                evaluation = check._fail(FailureCode.UNKNOWN, "check completes", "exception")
            evaluations.append(evaluation)
            if not evaluation.passed():
                break

        claim_id = ctx.claim.claim_id if ctx.claim else getattr(proof, "claim_id", None)
        granted = all(e.passed() for e in evaluations) and len(evaluations) == len(self._checks)
        report = VerificationReport(
            granted=granted,
            capabilities=int(ctx.claim.granted_capabilities) & CAPABILITY_MASK if granted else 0,
            checks=evaluations,
            claim_id=claim_id,
            required=required_capability & CAPABILITY_MASK if isinstance(required_capability, int) else 0,
        )

        failed = report.failed_check
        audit_log.capability_decision(
            document_id=document_id,
            claimant=claimant,
            granted=granted,
            failed_check=failed.check_id if failed else None,
            failure_code=failed.failure_code.value if failed and failed.failure_code else None,
        )
        return report

    def verify(
        self,
        proof: Any,
        claimant: str,
        document_id: str,
        required_capability: int = 0
    ) -> Tuple[bool, int]:
        """
        (True, granted_capabilities) on a full pass, else (False, 0).

        The grant is returned whole; callers apply has_capability against
        required_capability themselves.
        """
        return self.evaluate(proof, claimant, document_id, required_capability).decision()

    def configure(self, caller: str, **changes: Any) -> VerifierConfig:
        """
        Change verifier settings. Governance authority only; refused once frozen.

        Raises:
            Ossified: governance frozen
            Unauthorized: caller is not the governance authority
            ValidationError: unknown setting
        """
        with self.ledger.transaction("configure_verifier", VERIFIER_RESOURCE, caller) as tx:
            require_mutable(tx.state, caller, "configure_verifier")
            known = {f.name for f in fields(VerifierConfig)}
            unknown = sorted(set(changes) - known)
            if unknown:
                raise ValidationError(
                    f"unknown verifier settings: {', '.join(unknown)}",
                    operation="configure_verifier", actor=caller,
                )
            changes = {name: _checked_setting(name, value, caller) for name, value in changes.items()}
            config = replace(tx.state.verifier_config, **changes)
            tx.state.verifier_config = config
            tx.emit(EventType.SETTINGS_CHANGED, VERIFIER_RESOURCE, changed=sorted(changes), config=config.to_dict())
            return config
