"""
TrustCore Document Registry

Binds documents (identified by content-derived digests) to owners, an
optional delegated executor, and resolver hooks.

Authority over a document is resolved on exactly three paths:

    PATH 1  caller is the owner                         -> OWNER
    PATH 2  caller is the authorized executor and the
            target binding is the document's tokenizer  -> EXECUTOR
    PATH 3  anything else                               -> Unauthorized

There is no superuser path. Governance holds no power over documents
except the time-windowed emergency unlock of resolver configuration.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import (
    AlreadyExists,
    BatchSizeExceeded,
    DocumentNotFound,
    EmergencyPowersExpired,
    InvalidContentHash,
    InvalidExecutor,
    InvalidIdentifier,
    LengthMismatch,
    MissingJustification,
    NullOwner,
    ResolverConfigurationLocked,
    SameOwner,
    Unauthorized,
    ValidationError,
    WrongBinding,
)
from .dispatch import LifecycleEvent, ResolverDispatcher
from .events import EventType
from .governance import is_governance_authority, require_mutable
from .ledger import Ledger, LedgerState, Transaction
from .util import is_digest, is_identity, is_null_digest

logger = logging.getLogger(__name__)

ALLOWLIST_RESOURCE = "settings:executor_allowlist"
CODE_IDENTITY_PREFIX = "component:"


class ExecutorKind(str, Enum):
    ALLOW_LISTED = "ALLOW_LISTED"
    CODE_IDENTITY = "CODE_IDENTITY"
    NON_VERIFIABLE = "NON_VERIFIABLE"


class AuthorityPath(str, Enum):
    OWNER = "OWNER"
    EXECUTOR = "EXECUTOR"


@dataclass(frozen=True)
class DocumentRecord:
    id: str
    owner: str
    content_hash: str
    registered_at: int
    tokenizer_binding: Optional[str] = None
    primary_resolver_id: Optional[str] = None
    additional_resolver_ids: Tuple[str, ...] = ()
    resolvers_locked: bool = False
    exists: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "content_hash": self.content_hash,
            "registered_at": self.registered_at,
            "tokenizer_binding": self.tokenizer_binding,
            "primary_resolver_id": self.primary_resolver_id,
            "additional_resolver_ids": list(self.additional_resolver_ids),
            "resolvers_locked": self.resolvers_locked,
            "exists": self.exists,
        }


@dataclass(frozen=True)
class ExecutorBinding:
    document_id: str
    executor: str
    kind: ExecutorKind
    authorized_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "executor": self.executor,
            "kind": self.kind.value,
            "authorized_at": self.authorized_at,
        }


def _resource(document_id: str) -> str:
    return f"document:{document_id}"


class DocumentRegistry:
    """
    Usage:
        documents.register(owner, doc_id, content_hash, tokenizer_binding="erc721")
        documents.authorize_executor(owner, doc_id, "agent-7")
        documents.resolve_authority("agent-7", doc_id, "erc721")  # -> AuthorityPath.EXECUTOR
    """

    def __init__(
        self,
        ledger: Ledger,
        registry,
        dispatcher: ResolverDispatcher,
        emergency_authority: Optional[str] = None,
        emergency_window_seconds: int = 180 * 24 * 3600,
        max_batch_size: int = 50,
        max_additional_resolvers: int = 10
    ):
        self.ledger = ledger
        self.registry = registry
        self.dispatcher = dispatcher
        self.emergency_authority = emergency_authority
        self.emergency_window_seconds = emergency_window_seconds
        self.max_batch_size = max_batch_size
        self.max_additional_resolvers = max_additional_resolvers

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        caller: str,
        document_id: str,
        content_hash: str,
        tokenizer_binding: Optional[str] = None,
        primary_resolver_id: Optional[str] = None,
        additional_resolver_ids: Sequence[str] = (),
        executor: Optional[str] = None
    ) -> DocumentRecord:
        """
        Register a document owned by caller.

        Raises:
            AlreadyExists: document id already registered
            InvalidContentHash: null or malformed content hash
        """
        with self.ledger.transaction("register_document", _resource(document_id), caller) as tx:
            if not is_identity(caller):
                raise NullOwner("owner identity required", operation="register_document", subject_id=document_id)
            if not is_digest(document_id) or is_null_digest(document_id):
                raise InvalidIdentifier(f"malformed document id {document_id!r}",
                                        operation="register_document", actor=caller)
            if not is_digest(content_hash) or is_null_digest(content_hash):
                raise InvalidContentHash("content hash must be a non-null sha256 digest",
                                         operation="register_document", subject_id=document_id, actor=caller)
            if document_id in tx.state.documents:
                raise AlreadyExists(f"document {document_id} already registered",
                                    operation="register_document", subject_id=document_id, actor=caller)

            additional = self._validate_resolver_list(additional_resolver_ids, document_id, caller)
            if primary_resolver_id is not None:
                self._validate_resolver_id(primary_resolver_id, document_id, caller, "register_document")
            if tokenizer_binding is not None and not is_identity(tokenizer_binding):
                raise InvalidIdentifier("malformed tokenizer binding", operation="register_document",
                                        subject_id=document_id, actor=caller)

            record = DocumentRecord(
                id=document_id,
                owner=caller,
                content_hash=content_hash,
                registered_at=tx.now,
                tokenizer_binding=tokenizer_binding,
                primary_resolver_id=primary_resolver_id,
                additional_resolver_ids=additional,
            )
            tx.state.documents[document_id] = record
            tx.emit(
                EventType.DOCUMENT_REGISTERED, document_id,
                owner=caller, content_hash=content_hash, tokenizer_binding=tokenizer_binding,
                primary_resolver_id=primary_resolver_id, additional_resolver_ids=list(additional),
            )

            if executor is not None:
                self._bind_executor(tx, record, executor, caller)

            self.dispatcher.dispatch(document_id, LifecycleEvent.REGISTERED, {
                "owner": caller,
                "content_hash": content_hash,
                "executor": executor,
            })
            return tx.state.documents[document_id]

    def register_batch(
        self,
        caller: str,
        document_ids: Sequence[str],
        content_hashes: Sequence[str],
        tokenizer_binding: Optional[str] = None,
        primary_resolver_id: Optional[str] = None,
        additional_resolver_ids: Sequence[str] = ()
    ) -> List[DocumentRecord]:
        """
        Register several documents sharing one resolver configuration.
        All or nothing.

        Raises:
            LengthMismatch: ids and hashes differ in length
            BatchSizeExceeded: more than max_batch_size entries
        """
        document_ids = list(document_ids)
        content_hashes = list(content_hashes)
        if len(document_ids) != len(content_hashes):
            raise LengthMismatch(
                f"{len(document_ids)} ids but {len(content_hashes)} content hashes",
                operation="register_documents_batch", actor=caller,
            )
        if not document_ids:
            raise ValidationError("empty batch", operation="register_documents_batch", actor=caller)
        if len(document_ids) > self.max_batch_size:
            raise BatchSizeExceeded(
                f"batch of {len(document_ids)} exceeds {self.max_batch_size}",
                operation="register_documents_batch", actor=caller,
            )

        records = []
        with self.ledger.transaction("register_documents_batch", f"batch:{caller}", caller):
            for document_id, digest in zip(document_ids, content_hashes):
                records.append(self.register(
                    caller, document_id, digest,
                    tokenizer_binding=tokenizer_binding,
                    primary_resolver_id=primary_resolver_id,
                    additional_resolver_ids=additional_resolver_ids,
                ))
        logger.info("Registered batch of %d documents for %s", len(records), caller)
        return records

    # ------------------------------------------------------------------
    # Ownership and delegation
    # ------------------------------------------------------------------

    def transfer_ownership(self, caller: str, document_id: str, new_owner: str, reason: str) -> DocumentRecord:
        """
        Hand the document to new_owner. Clears any executor binding.

        Raises:
            Unauthorized: caller is not the owner
            NullOwner / SameOwner: bad new owner
            MissingJustification: empty reason
        """
        with self.ledger.transaction("transfer_document_ownership", _resource(document_id), caller) as tx:
            record = self._require_owner(tx.state, caller, document_id, "transfer_document_ownership")
            if not new_owner:
                raise NullOwner("new owner required", operation="transfer_document_ownership",
                                subject_id=document_id, actor=caller)
            if not is_identity(new_owner):
                raise InvalidIdentifier(f"malformed owner {new_owner!r}", operation="transfer_document_ownership",
                                        subject_id=document_id, actor=caller)
            if new_owner == record.owner:
                raise SameOwner("new owner equals current owner", operation="transfer_document_ownership",
                                subject_id=document_id, actor=caller)
            if not reason or not str(reason).strip():
                raise MissingJustification("transfer reason required", operation="transfer_document_ownership",
                                           subject_id=document_id, actor=caller)

            previous = record.owner
            tx.state.documents[document_id] = replace(record, owner=new_owner)
            binding = tx.state.executors.pop(document_id, None)
            if binding is not None:
                tx.emit(EventType.EXECUTOR_REVOKED, document_id,
                        executor=binding.executor, reason="ownership transferred")
            tx.emit(EventType.OWNERSHIP_TRANSFERRED, document_id,
                    previous_owner=previous, new_owner=new_owner, reason=reason)

            self.dispatcher.dispatch(document_id, LifecycleEvent.OWNERSHIP_TRANSFERRED, {
                "previous_owner": previous,
                "new_owner": new_owner,
                "reason": reason,
            })
            return tx.state.documents[document_id]

    def authorize_executor(self, caller: str, document_id: str, executor: str) -> ExecutorBinding:
        """
        Delegate to executor, replacing any existing binding.

        Raises:
            Unauthorized: caller is not the owner
            InvalidExecutor: executor malformed, equal to owner, or a code
                identity that does not resolve / declare itself valid
        """
        with self.ledger.transaction("authorize_executor", _resource(document_id), caller) as tx:
            record = self._require_owner(tx.state, caller, document_id, "authorize_executor")
            binding = self._bind_executor(tx, record, executor, caller)
            self.dispatcher.dispatch(document_id, LifecycleEvent.EXECUTOR_AUTHORIZED, {
                "executor": executor,
                "kind": binding.kind.value,
            })
            return binding

    def revoke_executor(self, caller: str, document_id: str) -> ExecutorBinding:
        with self.ledger.transaction("revoke_executor", _resource(document_id), caller) as tx:
            self._require_owner(tx.state, caller, document_id, "revoke_executor")
            binding = tx.state.executors.pop(document_id, None)
            if binding is None:
                raise InvalidExecutor("no executor authorized", operation="revoke_executor",
                                      subject_id=document_id, actor=caller)
            tx.emit(EventType.EXECUTOR_REVOKED, document_id, executor=binding.executor, reason="revoked by owner")
            self.dispatcher.dispatch(document_id, LifecycleEvent.EXECUTOR_REVOKED, {
                "executor": binding.executor,
            })
            return binding

    def _bind_executor(self, tx: Transaction, record: DocumentRecord, executor: str, caller: str) -> ExecutorBinding:
        if not is_identity(executor):
            raise InvalidExecutor(f"malformed executor {executor!r}", operation="authorize_executor",
                                  subject_id=record.id, actor=caller)
        if executor == record.owner:
            raise InvalidExecutor("owner cannot be its own executor", operation="authorize_executor",
                                  subject_id=record.id, actor=caller)

        kind = self._classify_executor(tx.state, executor, record.id)
        if kind is None:
            raise InvalidExecutor(
                f"code identity {executor} does not resolve or declines {record.id}",
                operation="authorize_executor", subject_id=record.id, actor=caller,
            )

        binding = ExecutorBinding(document_id=record.id, executor=executor, kind=kind, authorized_at=tx.now)
        previous = tx.state.executors.get(record.id)
        tx.state.executors[record.id] = binding
        tx.emit(EventType.EXECUTOR_AUTHORIZED, record.id, executor=executor, kind=kind.value,
                replaced=previous.executor if previous else None)
        return binding

    def _classify_executor(self, state: LedgerState, executor: str, document_id: str) -> Optional[ExecutorKind]:
        if executor in state.executor_allowlist:
            return ExecutorKind.ALLOW_LISTED
        if executor.startswith(CODE_IDENTITY_PREFIX):
            return ExecutorKind.CODE_IDENTITY if self._code_identity_valid(executor, document_id) else None
        return ExecutorKind.NON_VERIFIABLE

    def _code_identity_valid(self, executor: str, document_id: str) -> bool:
        component = self.registry.resolve_instance(executor[len(CODE_IDENTITY_PREFIX):])
        if component is None:
            return False
        check = getattr(component, "is_valid_executor", None)
        if not callable(check) or isinstance(component, type):
            return False
        try:
            return check(document_id) is True
        except Exception:
            logger.warning("Executor %s raised in is_valid_executor(%s)", executor, document_id, exc_info=True)
            return False

    # ------------------------------------------------------------------
    # Authority
    # ------------------------------------------------------------------

    def resolve_authority(self, caller: str, document_id: str, target_binding: Optional[str] = None) -> AuthorityPath:
        """
        Which path grants caller authority over the document.

        Raises:
            DocumentNotFound
            WrongBinding: executor acting on a binding other than the document's
            Unauthorized: no path applies
        """
        state = self.ledger.view()
        record = self._require(state, document_id, "resolve_authority", caller)

        if caller == record.owner:
            return AuthorityPath.OWNER

        binding = state.executors.get(document_id)
        if binding is not None and caller == binding.executor:
            if target_binding != record.tokenizer_binding:
                raise WrongBinding(
                    f"executor bound to {record.tokenizer_binding}, not {target_binding}",
                    operation="resolve_authority", subject_id=document_id, actor=caller,
                )
            if binding.kind == ExecutorKind.CODE_IDENTITY and not self._code_identity_valid(caller, document_id):
                raise Unauthorized("executor code identity no longer valid",
                                   operation="resolve_authority", subject_id=document_id, actor=caller)
            return AuthorityPath.EXECUTOR

        raise Unauthorized("caller is neither owner nor executor",
                           operation="resolve_authority", subject_id=document_id, actor=caller)

    # ------------------------------------------------------------------
    # Resolver configuration
    # ------------------------------------------------------------------

    def set_primary_resolver(self, caller: str, document_id: str, resolver_id: Optional[str]) -> DocumentRecord:
        with self.ledger.transaction("set_primary_resolver", _resource(document_id), caller) as tx:
            record = self._require_unlocked(tx.state, caller, document_id, "set_primary_resolver")
            if resolver_id is not None:
                self._validate_resolver_id(resolver_id, document_id, caller, "set_primary_resolver")
            tx.state.documents[document_id] = replace(record, primary_resolver_id=resolver_id)
            tx.emit(EventType.PRIMARY_RESOLVER_SET, document_id,
                    previous=record.primary_resolver_id, resolver_id=resolver_id)
            return tx.state.documents[document_id]

    def add_additional_resolver(self, caller: str, document_id: str, resolver_id: str) -> DocumentRecord:
        with self.ledger.transaction("add_additional_resolver", _resource(document_id), caller) as tx:
            record = self._require_unlocked(tx.state, caller, document_id, "add_additional_resolver")
            additional = self._validate_resolver_list(
                record.additional_resolver_ids + (resolver_id,), document_id, caller
            )
            tx.state.documents[document_id] = replace(record, additional_resolver_ids=additional)
            tx.emit(EventType.ADDITIONAL_RESOLVER_ADDED, document_id, resolver_id=resolver_id)
            return tx.state.documents[document_id]

    def remove_additional_resolver(self, caller: str, document_id: str, resolver_id: str) -> DocumentRecord:
        with self.ledger.transaction("remove_additional_resolver", _resource(document_id), caller) as tx:
            record = self._require_unlocked(tx.state, caller, document_id, "remove_additional_resolver")
            if resolver_id not in record.additional_resolver_ids:
                raise ValidationError(f"resolver {resolver_id} not attached", operation="remove_additional_resolver",
                                      subject_id=document_id, actor=caller)
            remaining = tuple(r for r in record.additional_resolver_ids if r != resolver_id)
            tx.state.documents[document_id] = replace(record, additional_resolver_ids=remaining)
            tx.emit(EventType.ADDITIONAL_RESOLVER_REMOVED, document_id, resolver_id=resolver_id)
            return tx.state.documents[document_id]

    def set_tokenizer_binding(self, caller: str, document_id: str, tokenizer_binding: Optional[str]) -> DocumentRecord:
        """Not covered by the resolver lock."""
        with self.ledger.transaction("set_tokenizer_binding", _resource(document_id), caller) as tx:
            record = self._require_owner(tx.state, caller, document_id, "set_tokenizer_binding")
            if tokenizer_binding is not None and not is_identity(tokenizer_binding):
                raise InvalidIdentifier("malformed tokenizer binding", operation="set_tokenizer_binding",
                                        subject_id=document_id, actor=caller)
            tx.state.documents[document_id] = replace(record, tokenizer_binding=tokenizer_binding)
            tx.emit(EventType.TOKENIZER_BOUND, document_id,
                    previous=record.tokenizer_binding, tokenizer_binding=tokenizer_binding)
            return tx.state.documents[document_id]

    def lock_resolvers(self, caller: str, document_id: str) -> DocumentRecord:
        """One way for the owner; only emergency_unlock reverses it."""
        with self.ledger.transaction("lock_resolvers", _resource(document_id), caller) as tx:
            record = self._require_owner(tx.state, caller, document_id, "lock_resolvers")
            if record.resolvers_locked:
                return record
            tx.state.documents[document_id] = replace(record, resolvers_locked=True)
            tx.emit(EventType.RESOLVERS_LOCKED, document_id)
            return tx.state.documents[document_id]

    def emergency_unlock(self, caller: str, document_id: str, justification: str) -> DocumentRecord:
        """
        Unlock resolver configuration outside the owner's control.

        Before the emergency window closes: emergency authority or governance
        authority. Afterwards: governance authority only.

        Raises:
            MissingJustification: empty justification
            Unauthorized: caller holds neither role
            EmergencyPowersExpired: window closed and caller is not governance
        """
        with self.ledger.transaction("emergency_unlock_resolvers", _resource(document_id), caller) as tx:
            record = self._require(tx.state, document_id, "emergency_unlock_resolvers", caller)
            if not justification or not str(justification).strip():
                raise MissingJustification("justification required", operation="emergency_unlock_resolvers",
                                           subject_id=document_id, actor=caller)

            expires_at = self.emergency_expires_at(tx.state)
            governance = is_governance_authority(tx.state, caller)
            if not governance:
                if tx.now >= expires_at:
                    raise EmergencyPowersExpired(
                        "emergency window closed; governance authority required",
                        operation="emergency_unlock_resolvers", subject_id=document_id, actor=caller,
                        expired_at=expires_at,
                    )
                if not self.emergency_authority or caller != self.emergency_authority:
                    raise Unauthorized("emergency or governance authority required",
                                       operation="emergency_unlock_resolvers", subject_id=document_id, actor=caller)

            tx.state.documents[document_id] = replace(record, resolvers_locked=False)
            tx.emit(
                EventType.RESOLVERS_EMERGENCY_UNLOCKED, document_id,
                justification=justification, was_locked=record.resolvers_locked,
                role="governance" if governance else "emergency",
            )
            logger.warning("Emergency unlock of %s by %s: %s", document_id, caller, justification)
            return tx.state.documents[document_id]

    def emergency_expires_at(self, state: Optional[LedgerState] = None) -> int:
        state = state or self.ledger.view()
        return state.deployed_at + self.emergency_window_seconds

    # ------------------------------------------------------------------
    # Governed settings
    # ------------------------------------------------------------------

    def set_executor_allowlist(self, caller: str, executors: Iterable[str]) -> frozenset:
        with self.ledger.transaction("set_executor_allowlist", ALLOWLIST_RESOURCE, caller) as tx:
            require_mutable(tx.state, caller, "set_executor_allowlist")
            allowlist = frozenset(executors)
            bad = sorted(e for e in allowlist if not is_identity(e))
            if bad:
                raise InvalidExecutor(f"malformed executors: {bad}", operation="set_executor_allowlist", actor=caller)
            tx.state.executor_allowlist = allowlist
            tx.emit(EventType.SETTINGS_CHANGED, ALLOWLIST_RESOURCE, executor_allowlist=sorted(allowlist))
            return allowlist

    # ------------------------------------------------------------------
    # Read-only
    # ------------------------------------------------------------------

    def get(self, document_id: str) -> Optional[DocumentRecord]:
        return self.ledger.view().documents.get(document_id)

    def exists(self, document_id: str) -> bool:
        record = self.get(document_id)
        return record is not None and record.exists

    def content_hash_of(self, document_id: str) -> Optional[str]:
        record = self.get(document_id)
        return record.content_hash if record else None

    def executor_of(self, document_id: str) -> Optional[ExecutorBinding]:
        return self.ledger.view().executors.get(document_id)

    def count(self) -> int:
        return len(self.ledger.view().documents)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    def _require(state: LedgerState, document_id: str, operation: str, caller: str) -> DocumentRecord:
        record = state.documents.get(document_id)
        if record is None:
            raise DocumentNotFound(f"document {document_id} not registered",
                                   operation=operation, subject_id=document_id, actor=caller)
        return record

    def _require_owner(self, state: LedgerState, caller: str, document_id: str, operation: str) -> DocumentRecord:
        record = self._require(state, document_id, operation, caller)
        if caller != record.owner:
            raise Unauthorized("owner only", operation=operation, subject_id=document_id, actor=caller)
        return record

    def _require_unlocked(self, state: LedgerState, caller: str, document_id: str, operation: str) -> DocumentRecord:
        record = self._require_owner(state, caller, document_id, operation)
        if record.resolvers_locked:
            raise ResolverConfigurationLocked("resolver configuration is locked",
                                              operation=operation, subject_id=document_id, actor=caller)
        return record

    @staticmethod
    def _validate_resolver_id(resolver_id: str, document_id: str, caller: str, operation: str) -> None:
        if not is_identity(resolver_id):
            raise InvalidIdentifier(f"malformed resolver id {resolver_id!r}",
                                    operation=operation, subject_id=document_id, actor=caller)

    def _validate_resolver_list(self, resolver_ids: Sequence[str], document_id: str, caller: str) -> Tuple[str, ...]:
        resolver_ids = tuple(resolver_ids or ())
        for resolver_id in resolver_ids:
            self._validate_resolver_id(resolver_id, document_id, caller, "configure_resolvers")
        if len(set(resolver_ids)) != len(resolver_ids):
            raise ValidationError("duplicate additional resolver", operation="configure_resolvers",
                                  subject_id=document_id, actor=caller)
        if len(resolver_ids) > self.max_additional_resolvers:
            raise ValidationError(
                f"at most {self.max_additional_resolvers} additional resolvers",
                operation="configure_resolvers", subject_id=document_id, actor=caller,
            )
        return resolver_ids
