"""
TrustCore error taxonomy.

Every error carries a stable code plus the operation, subject and actor it
relates to, so clients can handle failures deterministically. Component
unavailability is never an error: registries return None and callers
decide.
"""

from typing import Any, Dict, Optional


class TrustCoreError(Exception):
    """Base class for all TrustCore failures."""

    code = "TRUSTCORE_ERROR"
    category = "internal"

    def __init__(
        self,
        message: str = "",
        operation: Optional[str] = None,
        subject_id: Optional[str] = None,
        actor: Optional[str] = None,
        **details: Any
    ):
        self.message = message or self.code
        self.operation = operation
        self.subject_id = subject_id
        self.actor = actor
        self.details = details
        super().__init__(f"{self.code}: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "code": self.code,
            "category": self.category,
            "message": self.message,
            "operation": self.operation,
            "subject_id": self.subject_id,
            "actor": self.actor,
        }
        if self.details:
            d["details"] = self.details
        return d


# ============================================================
# Validation
# ============================================================

class ValidationError(TrustCoreError):
    code = "VALIDATION_ERROR"
    category = "validation"


class InvalidIdentifier(ValidationError):
    code = "INVALID_IDENTIFIER"


class InvalidContentHash(ValidationError):
    code = "INVALID_CONTENT_HASH"


class NullOwner(ValidationError):
    code = "NULL_OWNER"


class SameOwner(ValidationError):
    code = "SAME_OWNER"


class MissingJustification(ValidationError):
    code = "MISSING_JUSTIFICATION"


class InvalidExecutor(ValidationError):
    code = "INVALID_EXECUTOR"


class LengthMismatch(ValidationError):
    code = "LENGTH_MISMATCH"


class BatchSizeExceeded(ValidationError):
    code = "BATCH_SIZE_EXCEEDED"


# ============================================================
# Authorization
# ============================================================

class AuthorizationError(TrustCoreError):
    code = "AUTHORIZATION_ERROR"
    category = "authorization"


class Unauthorized(AuthorizationError):
    code = "UNAUTHORIZED"


class WrongBinding(AuthorizationError):
    code = "WRONG_BINDING"


class EmergencyPowersExpired(AuthorizationError):
    code = "EMERGENCY_POWERS_EXPIRED"


class CapabilityDenied(AuthorizationError):
    code = "CAPABILITY_DENIED"


# ============================================================
# Lookup / conflicts
# ============================================================

class NotFoundError(TrustCoreError):
    code = "NOT_FOUND"
    category = "not_found"


class DocumentNotFound(NotFoundError):
    code = "DOCUMENT_NOT_FOUND"


class ComponentNotFound(NotFoundError):
    code = "COMPONENT_NOT_FOUND"


class ConflictError(TrustCoreError):
    code = "CONFLICT"
    category = "conflict"


class AlreadyRegistered(ConflictError):
    code = "ALREADY_REGISTERED"


class AlreadyExists(ConflictError):
    code = "ALREADY_EXISTS"


class NotExecutable(ConflictError):
    code = "NOT_EXECUTABLE"


class IdentityChanged(ConflictError):
    code = "IDENTITY_CHANGED"


class ResolverConfigurationLocked(ConflictError):
    code = "RESOLVER_CONFIGURATION_LOCKED"


class PrimaryResolverFailed(ConflictError):
    code = "PRIMARY_RESOLVER_FAILED"


# ============================================================
# Concurrency / state
# ============================================================

class ConcurrencyError(TrustCoreError):
    code = "CONCURRENCY_ERROR"
    category = "concurrency"


class ReentrantCall(ConcurrencyError):
    code = "REENTRANT_CALL"


class StateError(TrustCoreError):
    code = "STATE_ERROR"
    category = "state"


class InvalidStageTransition(StateError):
    code = "INVALID_STAGE_TRANSITION"


class Ossified(StateError):
    code = "OSSIFIED"


class SystemPaused(StateError):
    code = "SYSTEM_PAUSED"


class ResourceBudgetExceeded(Exception):
    """
    Raised inside a resolver hook when it outruns its budget.

    Never escapes the dispatcher: primary hooks convert it to
    PrimaryResolverFailed, additional hooks record it as an event.
    """

    def __init__(self, component_id: str, budget: float, elapsed: float):
        self.component_id = component_id
        self.budget = budget
        self.elapsed = elapsed
        super().__init__(f"{component_id} exceeded budget {budget:.3f}s (elapsed {elapsed:.3f}s)")
