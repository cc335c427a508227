"""
Resolver dispatch tests: critical primary hooks, best-effort additional
hooks, budgets, and re-entry from inside a hook.
"""

import unittest

from trustcore import EventType, LifecycleEvent
from trustcore.dispatch import Budget
from trustcore.errors import (
    PrimaryResolverFailed,
    ReentrantCall,
    ResourceBudgetExceeded,
    Unauthorized,
    ValidationError,
)

from support import (
    AUTHORITY,
    OTHER,
    OWNER,
    CallbackResolver,
    FailingResolver,
    FakeClock,
    RecordingResolver,
    SlowResolver,
    deploy,
    make_core,
    make_document,
)


class DispatchTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.core = make_core(self.clock)
        self.doc_id, self.digest = make_document("lease")


class TestPrimaryResolver(DispatchTestCase):

    def test_primary_called_on_register(self):
        hook = RecordingResolver()
        deploy(self.core, "primary", hook)
        self.core.register_document(OWNER, self.doc_id, self.digest, primary_resolver_id="primary")
        self.assertEqual(len(hook.calls), 1)
        event, document_id, payload = hook.calls[0]
        self.assertEqual(event, LifecycleEvent.REGISTERED)
        self.assertEqual(document_id, self.doc_id)
        self.assertEqual(payload["owner"], OWNER)

    def test_primary_called_on_each_lifecycle_event(self):
        hook = RecordingResolver()
        deploy(self.core, "primary", hook)
        self.core.register_document(OWNER, self.doc_id, self.digest, primary_resolver_id="primary")
        self.core.authorize_executor(OWNER, self.doc_id, "agent-7")
        self.core.revoke_executor(OWNER, self.doc_id)
        self.core.transfer_document_ownership(OWNER, self.doc_id, OTHER, "sold")
        self.assertEqual([c[0] for c in hook.calls], [
            LifecycleEvent.REGISTERED,
            LifecycleEvent.EXECUTOR_AUTHORIZED,
            LifecycleEvent.EXECUTOR_REVOKED,
            LifecycleEvent.OWNERSHIP_TRANSFERRED,
        ])

    def test_hook_sees_written_state(self):
        seen = []
        hook = CallbackResolver(lambda event, doc_id: seen.append(self.core.get_document(doc_id).owner))
        deploy(self.core, "primary", hook)
        self.core.register_document(OWNER, self.doc_id, self.digest, primary_resolver_id="primary")
        self.core.transfer_document_ownership(OWNER, self.doc_id, OTHER, "sold")
        self.assertEqual(seen, [OWNER, OTHER])

    def test_failing_primary_aborts_operation(self):
        deploy(self.core, "primary", FailingResolver())
        with self.assertRaises(PrimaryResolverFailed):
            self.core.register_document(OWNER, self.doc_id, self.digest, primary_resolver_id="primary")
        self.assertFalse(self.core.document_exists(self.doc_id))
        self.assertEqual(self.core.query_events(EventType.DOCUMENT_REGISTERED), [])

    def test_failing_primary_blocks_transfer(self):
        hook = CallbackResolver(lambda event, doc_id: None)
        ref = deploy(self.core, "primary", hook)
        self.core.register_document(OWNER, self.doc_id, self.digest, primary_resolver_id="primary", executor="agent-7")

        def veto(event, doc_id):
            if event == LifecycleEvent.OWNERSHIP_TRANSFERRED:
                raise RuntimeError("transfer vetoed")

        hook.callback = veto
        with self.assertRaises(PrimaryResolverFailed):
            self.core.transfer_document_ownership(OWNER, self.doc_id, OTHER, "sold")
        self.assertEqual(self.core.get_document(self.doc_id).owner, OWNER)
        self.assertEqual(self.core.executor_of(self.doc_id).executor, "agent-7")
        self.assertEqual(self.core.resolve_component("primary"), ref)

    def test_unavailable_primary_does_not_block(self):
        deploy(self.core, "primary", FailingResolver())
        self.core.deactivate_component(AUTHORITY, "primary", "retired")
        record = self.core.register_document(OWNER, self.doc_id, self.digest, primary_resolver_id="primary")
        self.assertEqual(record.primary_resolver_id, "primary")
        missed = self.core.query_events(EventType.PRIMARY_RESOLVER_UNAVAILABLE, self.doc_id)
        self.assertEqual(len(missed), 1)
        self.assertEqual(missed[0].data["resolver_id"], "primary")

    def test_substituted_primary_is_unavailable(self):
        hook = FailingResolver()
        ref = deploy(self.core, "primary", RecordingResolver())
        self.core.loader.bind(ref, hook)
        self.core.register_document(OWNER, self.doc_id, self.digest, primary_resolver_id="primary")
        self.assertEqual(hook.calls, 0)
        self.assertTrue(self.core.document_exists(self.doc_id))


class TestAdditionalResolvers(DispatchTestCase):

    def test_failure_recorded_and_others_run(self):
        failing = FailingResolver()
        recording = RecordingResolver()
        deploy(self.core, "flaky", failing)
        deploy(self.core, "audit", recording)
        self.core.register_document(OWNER, self.doc_id, self.digest, additional_resolver_ids=["flaky", "audit"])
        self.assertTrue(self.core.document_exists(self.doc_id))
        self.assertEqual(failing.calls, 1)
        self.assertEqual(len(recording.calls), 1)
        failures = self.core.query_events(EventType.ADDITIONAL_RESOLVER_FAILED, self.doc_id)
        self.assertEqual(len(failures), 1)
        self.assertEqual(failures[0].data["resolver_id"], "flaky")
        self.assertEqual(failures[0].data["error"], "RuntimeError")

    def test_unregistered_resolvers_skipped(self):
        recording = RecordingResolver()
        deploy(self.core, "audit", recording)
        self.core.register_document(OWNER, self.doc_id, self.digest, additional_resolver_ids=["missing", "audit"])
        self.assertEqual(len(recording.calls), 1)
        self.assertEqual(self.core.query_events(EventType.ADDITIONAL_RESOLVER_FAILED), [])

    def test_failed_hook_changes_are_discarded(self):
        other_id, other_digest = make_document("side effect")

        def register_then_fail(event, doc_id):
            self.core.register_document(OWNER, other_id, other_digest)
            raise RuntimeError("after side effect")

        deploy(self.core, "messy", CallbackResolver(register_then_fail))
        self.core.register_document(OWNER, self.doc_id, self.digest, additional_resolver_ids=["messy"])
        self.assertTrue(self.core.document_exists(self.doc_id))
        self.assertFalse(self.core.document_exists(other_id))

    def test_successful_hook_changes_commit_with_operation(self):
        other_id, other_digest = make_document("companion")

        def register_companion(event, doc_id):
            if event == LifecycleEvent.REGISTERED and doc_id != other_id:
                self.core.register_document(OWNER, other_id, other_digest)

        deploy(self.core, "companion", CallbackResolver(register_companion))
        self.core.register_document(OWNER, self.doc_id, self.digest, additional_resolver_ids=["companion"])
        self.assertTrue(self.core.document_exists(other_id))


class TestBudgets(DispatchTestCase):

    def test_overrun_of_additional_is_recorded(self):
        deploy(self.core, "slow", SlowResolver(0.05))
        self.core.set_resolver_budget(AUTHORITY, "slow", 0.01)
        self.core.register_document(OWNER, self.doc_id, self.digest, additional_resolver_ids=["slow"])
        failures = self.core.query_events(EventType.ADDITIONAL_RESOLVER_FAILED, self.doc_id)
        self.assertEqual(failures[0].data["error"], "ResourceBudgetExceeded")

    def test_overrun_of_primary_aborts(self):
        deploy(self.core, "slow", SlowResolver(0.05))
        self.core.set_resolver_budget(AUTHORITY, "slow", 0.01)
        with self.assertRaises(PrimaryResolverFailed):
            self.core.register_document(OWNER, self.doc_id, self.digest, primary_resolver_id="slow")
        self.assertFalse(self.core.document_exists(self.doc_id))

    def test_budget_check_measures_elapsed_time(self):
        now = [100.0]
        budget = Budget("hook", 1.0, clock=lambda: now[0])
        budget.check()
        now[0] = 100.5
        budget.check()
        self.assertEqual(budget.elapsed(), 0.5)
        now[0] = 101.5
        with self.assertRaises(ResourceBudgetExceeded) as ctx:
            budget.check()
        self.assertEqual(ctx.exception.elapsed, 1.5)
        self.assertEqual(ctx.exception.component_id, "hook")

    def test_budget_capped_and_reset(self):
        self.assertEqual(self.core.set_resolver_budget(AUTHORITY, "slow", 60), 5.0)
        self.assertEqual(self.core.set_resolver_budget(AUTHORITY, "slow", None), 0.5)

    def test_budget_requires_authority(self):
        with self.assertRaises(Unauthorized):
            self.core.set_resolver_budget(OTHER, "slow", 1.0)
        with self.assertRaises(ValidationError):
            self.core.set_resolver_budget(AUTHORITY, "slow", 0)


class TestReentrancy(DispatchTestCase):

    def test_hook_cannot_reenter_its_document(self):
        hook = CallbackResolver(
            lambda event, doc_id: self.core.transfer_document_ownership(OWNER, doc_id, OTHER, "hijack")
        )
        deploy(self.core, "primary", hook)
        with self.assertRaises(PrimaryResolverFailed) as ctx:
            self.core.register_document(OWNER, self.doc_id, self.digest, primary_resolver_id="primary")
        self.assertIsInstance(ctx.exception.__cause__, ReentrantCall)
        self.assertIsInstance(hook.errors[0], ReentrantCall)
        self.assertFalse(self.core.document_exists(self.doc_id))

    def test_additional_hook_reentry_is_contained(self):
        hook = CallbackResolver(
            lambda event, doc_id: self.core.lock_resolvers(OWNER, doc_id)
        )
        deploy(self.core, "sneaky", hook)
        self.core.register_document(OWNER, self.doc_id, self.digest, additional_resolver_ids=["sneaky"])
        record = self.core.get_document(self.doc_id)
        self.assertFalse(record.resolvers_locked)
        failures = self.core.query_events(EventType.ADDITIONAL_RESOLVER_FAILED, self.doc_id)
        self.assertEqual(failures[0].data["error"], "ReentrantCall")

    def test_resource_released_after_operation(self):
        hook = CallbackResolver(lambda event, doc_id: None)
        deploy(self.core, "primary", hook)
        self.core.register_document(OWNER, self.doc_id, self.digest, primary_resolver_id="primary")
        self.assertFalse(self.core.ledger.is_in_flight(f"document:{self.doc_id}"))
        self.core.transfer_document_ownership(OWNER, self.doc_id, OTHER, "sold")


if __name__ == "__main__":
    unittest.main()
