"""
TrustCore Component Registry

Stores identifiers for pluggable infrastructure (attestation providers,
proof verifiers, resolvers, token implementations) together with the
identity digest of their code captured at registration.

Resolution is a three-way gate: a component resolves only if it is known,
active, and its live code still hashes to the registered digest. Anything
else yields None, never an exception, and the caller decides whether that
is fatal, skippable, or a reason to fall back to another id.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import (
    AlreadyRegistered,
    ComponentNotFound,
    IdentityChanged,
    InvalidIdentifier,
    NotExecutable,
)
from .events import EventType
from .governance import require_authority
from .identity import ComponentLoader, ImportLoader, LoadError, code_digest
from .ledger import Ledger
from .logging_config import audit_log
from .util import constant_time_compare, is_identity

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGE_SIZE = 100


class ComponentType(str, Enum):
    PROVIDER = "PROVIDER"
    VERIFIER = "VERIFIER"
    RESOLVER = "RESOLVER"
    TOKEN_IMPLEMENTATION = "TOKEN_IMPLEMENTATION"


@dataclass(frozen=True)
class ComponentRecord:
    id: str
    ref: str
    identity_digest: str
    component_type: ComponentType
    description: str
    registered_at: int
    active: bool = True
    deactivated_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ref": self.ref,
            "identity_digest": self.identity_digest,
            "component_type": self.component_type.value,
            "description": self.description,
            "registered_at": self.registered_at,
            "active": self.active,
            "deactivated_reason": self.deactivated_reason,
        }


class ComponentRegistry:
    """
    Integrity-checked registry of pluggable components.

    Usage:
        registry = ComponentRegistry(ledger, loader=ImportLoader())
        registry.register(authority, "signed-claims", "trustcore.providers:SignedClaimProvider",
                          ComponentType.PROVIDER, "Ed25519 signed claims")
        provider = registry.resolve_instance("signed-claims")
        if provider is None:
            ...  # unavailable: caller decides
    """

    def __init__(
        self,
        ledger: Ledger,
        loader: Optional[ComponentLoader] = None,
        max_page_size: int = DEFAULT_MAX_PAGE_SIZE
    ):
        self.ledger = ledger
        self.loader = loader or ImportLoader()
        self.max_page_size = max_page_size

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def register(
        self,
        caller: str,
        component_id: str,
        ref: str,
        component_type: ComponentType,
        description: str = ""
    ) -> ComponentRecord:
        """
        Register a component and capture its identity digest.

        Raises:
            Unauthorized: caller is not the governance authority
            AlreadyRegistered: id in use
            NotExecutable: ref does not load into code
        """
        component_type = ComponentType(component_type)
        with self.ledger.transaction("register_component", f"component:{component_id}", caller) as tx:
            require_authority(tx.state, caller, "register_component", component_id)
            if not is_identity(component_id):
                raise InvalidIdentifier("component id must be a non-empty identifier",
                                        operation="register_component", actor=caller)
            if component_id in tx.state.components:
                raise AlreadyRegistered(
                    f"component {component_id} already registered",
                    operation="register_component", subject_id=component_id, actor=caller,
                )
            try:
                digest = code_digest(self.loader.load(ref))
            except LoadError as e:
                raise NotExecutable(
                    str(e), operation="register_component", subject_id=component_id, actor=caller, ref=ref,
                ) from e

            record = ComponentRecord(
                id=component_id,
                ref=ref,
                identity_digest=digest,
                component_type=component_type,
                description=description or "",
                registered_at=tx.now,
            )
            tx.state.components[component_id] = record
            tx.emit(
                EventType.COMPONENT_REGISTERED, component_id,
                ref=ref, component_type=component_type.value, identity_digest=digest,
            )
            logger.info("Registered %s component %s -> %s", component_type.value, component_id, ref)
            return record

    def deactivate(self, caller: str, component_id: str, reason: str) -> ComponentRecord:
        """Take a component out of resolution. Idempotent on inactive components."""
        with self.ledger.transaction("deactivate_component", f"component:{component_id}", caller) as tx:
            require_authority(tx.state, caller, "deactivate_component", component_id)
            record = self._require(tx.state.components, component_id, "deactivate_component", caller)
            if not record.active:
                return record
            record = replace(record, active=False, deactivated_reason=reason or "")
            tx.state.components[component_id] = record
            tx.emit(EventType.COMPONENT_DEACTIVATED, component_id, reason=reason or "")
            return record

    def reactivate(self, caller: str, component_id: str) -> ComponentRecord:
        """
        Return a component to service after re-verifying its digest.

        Raises:
            IdentityChanged: live code no longer matches the registered digest
        """
        with self.ledger.transaction("reactivate_component", f"component:{component_id}", caller) as tx:
            require_authority(tx.state, caller, "reactivate_component", component_id)
            record = self._require(tx.state.components, component_id, "reactivate_component", caller)
            live = self.loader.digest(record.ref)
            if live is None or not constant_time_compare(live, record.identity_digest):
                audit_log.security_event(
                    "component_identity_changed", severity="high",
                    component_id=component_id, registered=record.identity_digest, live=live,
                )
                raise IdentityChanged(
                    f"component {component_id} code changed since registration",
                    operation="reactivate_component", subject_id=component_id, actor=caller,
                    registered=record.identity_digest, live=live,
                )
            if record.active:
                return record
            record = replace(record, active=True, deactivated_reason=None)
            tx.state.components[component_id] = record
            tx.emit(EventType.COMPONENT_REACTIVATED, component_id)
            return record

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, component_id: Optional[str]) -> Optional[str]:
        """Ref of an available component, else None."""
        record, _ = self._gate(component_id)
        return record.ref if record else None

    def resolve_instance(self, component_id: Optional[str]) -> Optional[Any]:
        """Loaded object of an available component, else None."""
        _, obj = self._gate(component_id)
        return obj

    def _gate(self, component_id: Optional[str]):
        if not component_id:
            return None, None
        record = self.ledger.view().components.get(component_id)
        if record is None or not record.active:
            return None, None
        try:
            obj = self.loader.load(record.ref)
            live = code_digest(obj)
        except LoadError:
            logger.warning("Component %s no longer loads from %s", component_id, record.ref)
            return None, None
        if not constant_time_compare(live, record.identity_digest):
            audit_log.security_event(
                "component_digest_mismatch", severity="high",
                component_id=component_id, registered=record.identity_digest, live=live,
            )
            return None, None
        return record, obj

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    def get(self, component_id: str) -> Optional[ComponentRecord]:
        return self.ledger.view().components.get(component_id)

    def count(self) -> int:
        return len(self.ledger.view().components)

    def list_by_type(self, component_type: ComponentType) -> List[ComponentRecord]:
        component_type = ComponentType(component_type)
        records = self.ledger.view().components.values()
        return sorted(
            (r for r in records if r.component_type == component_type),
            key=lambda r: (r.registered_at, r.id),
        )

    def list_page(self, offset: int = 0, limit: int = 50) -> List[ComponentRecord]:
        """Components in registration order; limit is capped at max_page_size."""
        offset = max(0, int(offset))
        limit = max(0, min(int(limit), self.max_page_size))
        records = sorted(self.ledger.view().components.values(), key=lambda r: (r.registered_at, r.id))
        return records[offset:offset + limit]

    @staticmethod
    def _require(components, component_id: str, operation: str, caller: str) -> ComponentRecord:
        record = components.get(component_id)
        if record is None:
            raise ComponentNotFound(
                f"component {component_id} not registered",
                operation=operation, subject_id=component_id, actor=caller,
            )
        return record
