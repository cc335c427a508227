"""
Document registry tests: registration, ownership, delegation, authority
resolution and resolver configuration locking.
"""

import unittest

from trustcore import AuthorityPath, ComponentType, EventType, ExecutorKind
from trustcore.documents import CODE_IDENTITY_PREFIX
from trustcore.errors import (
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
from trustcore.util import NULL_HASH

from support import (
    AUTHORITY,
    DAY,
    EMERGENCY,
    OTHER,
    OWNER,
    AcceptingExecutor,
    DecliningExecutor,
    FakeClock,
    deploy,
    make_core,
    make_document,
)

TOKENIZER = "erc721-lease"


class DocumentTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.core = make_core(self.clock)
        self.doc_id, self.digest = make_document("lease")


class TestRegistration(DocumentTestCase):

    def test_register(self):
        record = self.core.register_document(OWNER, self.doc_id, self.digest, tokenizer_binding=TOKENIZER)
        self.assertEqual(record.owner, OWNER)
        self.assertEqual(record.content_hash, self.digest)
        self.assertEqual(record.registered_at, self.clock.now)
        self.assertFalse(record.resolvers_locked)
        self.assertTrue(self.core.document_exists(self.doc_id))
        self.assertEqual(self.core.content_hash_of(self.doc_id), self.digest)
        self.assertEqual(self.core.document_count(), 1)

    def test_register_emits_event(self):
        self.core.register_document(OWNER, self.doc_id, self.digest)
        events = self.core.query_events(EventType.DOCUMENT_REGISTERED, self.doc_id)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].actor, OWNER)
        self.assertEqual(events[0].data["content_hash"], self.digest)

    def test_duplicate_rejected(self):
        self.core.register_document(OWNER, self.doc_id, self.digest)
        with self.assertRaises(AlreadyExists):
            self.core.register_document(OTHER, self.doc_id, self.digest)
        self.assertEqual(self.core.get_document(self.doc_id).owner, OWNER)

    def test_null_content_hash_rejected(self):
        for bad in (NULL_HASH, "", None):
            with self.assertRaises(InvalidContentHash):
                self.core.register_document(OWNER, self.doc_id, bad)
        self.assertFalse(self.core.document_exists(self.doc_id))

    def test_malformed_content_hash_rejected(self):
        for bad in ("sha256:xyz", self.digest.upper(), self.digest[len("sha256:"):]):
            with self.assertRaises(InvalidContentHash):
                self.core.register_document(OWNER, self.doc_id, bad)

    def test_malformed_document_id_rejected(self):
        with self.assertRaises(InvalidIdentifier):
            self.core.register_document(OWNER, "lease-1", self.digest)
        with self.assertRaises(InvalidIdentifier):
            self.core.register_document(OWNER, NULL_HASH, self.digest)

    def test_missing_owner_rejected(self):
        with self.assertRaises(NullOwner):
            self.core.register_document("", self.doc_id, self.digest)

    def test_register_with_executor(self):
        self.core.register_document(OWNER, self.doc_id, self.digest, executor="agent-7")
        binding = self.core.executor_of(self.doc_id)
        self.assertEqual(binding.executor, "agent-7")
        self.assertEqual(binding.kind, ExecutorKind.NON_VERIFIABLE)

    def test_too_many_additional_resolvers(self):
        with self.assertRaises(ValidationError):
            self.core.register_document(
                OWNER, self.doc_id, self.digest,
                additional_resolver_ids=["r1", "r2", "r3", "r4", "r5"],
            )

    def test_duplicate_additional_resolvers(self):
        with self.assertRaises(ValidationError):
            self.core.register_document(OWNER, self.doc_id, self.digest, additional_resolver_ids=["r1", "r1"])


class TestBatchRegistration(DocumentTestCase):

    def docs(self, n):
        return zip(*(make_document(f"batch-{i}") for i in range(n)))

    def test_batch(self):
        ids, digests = self.docs(3)
        records = self.core.register_documents_batch(OWNER, ids, digests, tokenizer_binding=TOKENIZER)
        self.assertEqual(len(records), 3)
        self.assertEqual(self.core.document_count(), 3)
        self.assertTrue(all(r.tokenizer_binding == TOKENIZER for r in records))

    def test_length_mismatch(self):
        ids, digests = self.docs(3)
        with self.assertRaises(LengthMismatch):
            self.core.register_documents_batch(OWNER, ids, digests[:2])
        self.assertEqual(self.core.document_count(), 0)

    def test_batch_size_limit(self):
        ids, digests = self.docs(6)
        with self.assertRaises(BatchSizeExceeded):
            self.core.register_documents_batch(OWNER, ids, digests)
        self.assertEqual(self.core.document_count(), 0)

    def test_all_or_nothing(self):
        ids, digests = self.docs(3)
        self.core.register_document(OWNER, ids[2], digests[2])
        before = len(self.core.query_events())
        with self.assertRaises(AlreadyExists):
            self.core.register_documents_batch(OWNER, ids, digests)
        self.assertEqual(self.core.document_count(), 1)
        self.assertFalse(self.core.document_exists(ids[0]))
        self.assertEqual(len(self.core.query_events()), before)


class TestTransfer(DocumentTestCase):

    def setUp(self):
        super().setUp()
        self.core.register_document(OWNER, self.doc_id, self.digest, executor="agent-7")

    def test_transfer(self):
        record = self.core.transfer_document_ownership(OWNER, self.doc_id, OTHER, "sold")
        self.assertEqual(record.owner, OTHER)
        self.assertEqual(self.core.resolve_authority(OTHER, self.doc_id), AuthorityPath.OWNER)
        with self.assertRaises(Unauthorized):
            self.core.resolve_authority(OWNER, self.doc_id)

    def test_transfer_clears_executor(self):
        self.core.transfer_document_ownership(OWNER, self.doc_id, OTHER, "sold")
        self.assertIsNone(self.core.executor_of(self.doc_id))
        revoked = self.core.query_events(EventType.EXECUTOR_REVOKED, self.doc_id)
        self.assertEqual(revoked[-1].data["reason"], "ownership transferred")

    def test_only_owner_transfers(self):
        for caller in (OTHER, "agent-7", AUTHORITY):
            with self.assertRaises(Unauthorized):
                self.core.transfer_document_ownership(caller, self.doc_id, caller, "mine now")
        self.assertEqual(self.core.get_document(self.doc_id).owner, OWNER)

    def test_bad_new_owner(self):
        with self.assertRaises(NullOwner):
            self.core.transfer_document_ownership(OWNER, self.doc_id, "", "gone")
        with self.assertRaises(SameOwner):
            self.core.transfer_document_ownership(OWNER, self.doc_id, OWNER, "again")

    def test_reason_required(self):
        for reason in ("", "   "):
            with self.assertRaises(MissingJustification):
                self.core.transfer_document_ownership(OWNER, self.doc_id, OTHER, reason)
        self.assertEqual(self.core.executor_of(self.doc_id).executor, "agent-7")

    def test_unknown_document(self):
        ghost_id, _ = make_document("ghost")
        with self.assertRaises(DocumentNotFound):
            self.core.transfer_document_ownership(OWNER, ghost_id, OTHER, "sold")


class TestExecutors(DocumentTestCase):

    def setUp(self):
        super().setUp()
        self.core.register_document(OWNER, self.doc_id, self.digest, tokenizer_binding=TOKENIZER)

    def test_allow_listed(self):
        self.core.set_executor_allowlist(AUTHORITY, ["escrow-agent"])
        binding = self.core.authorize_executor(OWNER, self.doc_id, "escrow-agent")
        self.assertEqual(binding.kind, ExecutorKind.ALLOW_LISTED)

    def test_non_verifiable(self):
        binding = self.core.authorize_executor(OWNER, self.doc_id, "agent-7")
        self.assertEqual(binding.kind, ExecutorKind.NON_VERIFIABLE)

    def test_code_identity_accepting(self):
        deploy(self.core, "escrow", AcceptingExecutor(), ComponentType.TOKEN_IMPLEMENTATION)
        executor = CODE_IDENTITY_PREFIX + "escrow"
        binding = self.core.authorize_executor(OWNER, self.doc_id, executor)
        self.assertEqual(binding.kind, ExecutorKind.CODE_IDENTITY)
        self.assertEqual(self.core.resolve_authority(executor, self.doc_id, TOKENIZER), AuthorityPath.EXECUTOR)

    def test_code_identity_declining(self):
        deploy(self.core, "picky", DecliningExecutor(), ComponentType.TOKEN_IMPLEMENTATION)
        with self.assertRaises(InvalidExecutor):
            self.core.authorize_executor(OWNER, self.doc_id, CODE_IDENTITY_PREFIX + "picky")
        self.assertIsNone(self.core.executor_of(self.doc_id))

    def test_code_identity_unresolvable(self):
        with self.assertRaises(InvalidExecutor):
            self.core.authorize_executor(OWNER, self.doc_id, CODE_IDENTITY_PREFIX + "nowhere")

    def test_code_identity_revalidated_on_use(self):
        ref = deploy(self.core, "escrow", AcceptingExecutor(), ComponentType.TOKEN_IMPLEMENTATION)
        executor = CODE_IDENTITY_PREFIX + "escrow"
        self.core.authorize_executor(OWNER, self.doc_id, executor)
        self.core.loader.bind(ref, DecliningExecutor())
        with self.assertRaises(Unauthorized):
            self.core.resolve_authority(executor, self.doc_id, TOKENIZER)

    def test_owner_cannot_be_executor(self):
        with self.assertRaises(InvalidExecutor):
            self.core.authorize_executor(OWNER, self.doc_id, OWNER)
        with self.assertRaises(InvalidExecutor):
            self.core.authorize_executor(OWNER, self.doc_id, "")

    def test_only_owner_delegates(self):
        with self.assertRaises(Unauthorized):
            self.core.authorize_executor(OTHER, self.doc_id, OTHER)

    def test_replace_and_revoke(self):
        self.core.authorize_executor(OWNER, self.doc_id, "agent-7")
        self.core.authorize_executor(OWNER, self.doc_id, "agent-8")
        self.assertEqual(self.core.executor_of(self.doc_id).executor, "agent-8")
        with self.assertRaises(Unauthorized):
            self.core.resolve_authority("agent-7", self.doc_id, TOKENIZER)
        revoked = self.core.revoke_executor(OWNER, self.doc_id)
        self.assertEqual(revoked.executor, "agent-8")
        self.assertIsNone(self.core.executor_of(self.doc_id))

    def test_revoke_without_binding(self):
        with self.assertRaises(InvalidExecutor):
            self.core.revoke_executor(OWNER, self.doc_id)


class TestResolveAuthority(DocumentTestCase):

    def setUp(self):
        super().setUp()
        self.core.register_document(OWNER, self.doc_id, self.digest, tokenizer_binding=TOKENIZER, executor="agent-7")

    def test_owner_path_ignores_binding(self):
        self.assertEqual(self.core.resolve_authority(OWNER, self.doc_id), AuthorityPath.OWNER)
        self.assertEqual(self.core.resolve_authority(OWNER, self.doc_id, "anything"), AuthorityPath.OWNER)

    def test_executor_path(self):
        self.assertEqual(self.core.resolve_authority("agent-7", self.doc_id, TOKENIZER), AuthorityPath.EXECUTOR)

    def test_executor_wrong_binding(self):
        for binding in ("erc1155-other", None):
            with self.assertRaises(WrongBinding):
                self.core.resolve_authority("agent-7", self.doc_id, binding)

    def test_no_superuser(self):
        for caller in (AUTHORITY, EMERGENCY, OTHER):
            with self.assertRaises(Unauthorized):
                self.core.resolve_authority(caller, self.doc_id, TOKENIZER)

    def test_unknown_document(self):
        ghost_id, _ = make_document("ghost")
        with self.assertRaises(DocumentNotFound):
            self.core.resolve_authority(OWNER, ghost_id)

    def test_rebinding_tokenizer(self):
        self.core.set_tokenizer_binding(OWNER, self.doc_id, "erc1155-lease")
        with self.assertRaises(WrongBinding):
            self.core.resolve_authority("agent-7", self.doc_id, TOKENIZER)
        self.assertEqual(
            self.core.resolve_authority("agent-7", self.doc_id, "erc1155-lease"), AuthorityPath.EXECUTOR
        )


class TestResolverConfiguration(DocumentTestCase):

    def setUp(self):
        super().setUp()
        self.core.register_document(OWNER, self.doc_id, self.digest)

    def test_configure(self):
        self.core.set_primary_resolver(OWNER, self.doc_id, "primary")
        self.core.add_additional_resolver(OWNER, self.doc_id, "audit")
        self.core.add_additional_resolver(OWNER, self.doc_id, "notify")
        self.core.remove_additional_resolver(OWNER, self.doc_id, "audit")
        record = self.core.get_document(self.doc_id)
        self.assertEqual(record.primary_resolver_id, "primary")
        self.assertEqual(record.additional_resolver_ids, ("notify",))

    def test_remove_unattached(self):
        with self.assertRaises(ValidationError):
            self.core.remove_additional_resolver(OWNER, self.doc_id, "never-added")

    def test_owner_only(self):
        with self.assertRaises(Unauthorized):
            self.core.set_primary_resolver(OTHER, self.doc_id, "primary")
        with self.assertRaises(Unauthorized):
            self.core.lock_resolvers(OTHER, self.doc_id)

    def test_lock_blocks_configuration(self):
        self.core.lock_resolvers(OWNER, self.doc_id)
        with self.assertRaises(ResolverConfigurationLocked):
            self.core.set_primary_resolver(OWNER, self.doc_id, "primary")
        with self.assertRaises(ResolverConfigurationLocked):
            self.core.add_additional_resolver(OWNER, self.doc_id, "audit")
        self.assertIsNone(self.core.get_document(self.doc_id).primary_resolver_id)

    def test_lock_is_idempotent(self):
        self.core.lock_resolvers(OWNER, self.doc_id)
        self.core.lock_resolvers(OWNER, self.doc_id)
        self.assertEqual(len(self.core.query_events(EventType.RESOLVERS_LOCKED, self.doc_id)), 1)

    def test_lock_leaves_tokenizer_binding_mutable(self):
        self.core.lock_resolvers(OWNER, self.doc_id)
        record = self.core.set_tokenizer_binding(OWNER, self.doc_id, TOKENIZER)
        self.assertEqual(record.tokenizer_binding, TOKENIZER)


class TestEmergencyUnlock(DocumentTestCase):

    def setUp(self):
        super().setUp()
        self.core.register_document(OWNER, self.doc_id, self.digest)
        self.core.lock_resolvers(OWNER, self.doc_id)

    def test_emergency_authority_within_window(self):
        self.clock.advance(179 * DAY)
        record = self.core.emergency_unlock_resolvers(EMERGENCY, self.doc_id, "resolver compromised")
        self.assertFalse(record.resolvers_locked)
        self.core.set_primary_resolver(OWNER, self.doc_id, "replacement")
        event = self.core.query_events(EventType.RESOLVERS_EMERGENCY_UNLOCKED, self.doc_id)[-1]
        self.assertEqual(event.data["role"], "emergency")
        self.assertTrue(event.data["was_locked"])

    def test_emergency_authority_after_window(self):
        self.clock.advance(180 * DAY)
        with self.assertRaises(EmergencyPowersExpired):
            self.core.emergency_unlock_resolvers(EMERGENCY, self.doc_id, "too late")
        self.assertTrue(self.core.get_document(self.doc_id).resolvers_locked)

    def test_governance_authority_after_window(self):
        self.clock.advance(365 * DAY)
        record = self.core.emergency_unlock_resolvers(AUTHORITY, self.doc_id, "court order")
        self.assertFalse(record.resolvers_locked)

    def test_justification_required(self):
        with self.assertRaises(MissingJustification):
            self.core.emergency_unlock_resolvers(EMERGENCY, self.doc_id, "  ")
        self.assertTrue(self.core.get_document(self.doc_id).resolvers_locked)

    def test_other_callers_rejected(self):
        for caller in (OWNER, OTHER):
            with self.assertRaises(Unauthorized):
                self.core.emergency_unlock_resolvers(caller, self.doc_id, "please")

    def test_unlocked_document(self):
        self.core.emergency_unlock_resolvers(EMERGENCY, self.doc_id, "first")
        self.core.emergency_unlock_resolvers(EMERGENCY, self.doc_id, "second")
        event = self.core.query_events(EventType.RESOLVERS_EMERGENCY_UNLOCKED, self.doc_id)[-1]
        self.assertFalse(event.data["was_locked"])


if __name__ == "__main__":
    unittest.main()
