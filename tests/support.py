"""
Shared fixtures for the TrustCore test suite: a controllable clock, a
preconfigured core, sample plugins, and a claim factory.
"""

import time
from dataclasses import replace

from trustcore import (
    AttestationClaim,
    ComponentType,
    CoreConfig,
    InMemoryKeyring,
    MappingLoader,
    SignedClaimProvider,
    TrustCore,
    content_hash,
    derive_document_id,
    generate_issuer_keypair,
)
from trustcore.dispatch import Resolver

AUTHORITY = "founder"
EMERGENCY = "emergency-council"
ISSUER = "notary"
OWNER = "alice"
OTHER = "bob"

NETWORK_ID = "net-test"
VERIFIER_ID = "verifier-test"
PROVIDER_ID = "signed-claims"
SCHEMA_ID = "trustcore.capability-grant"
SCHEMA_VERSION = "1"

START = 1_700_000_000
DAY = 24 * 3600


class FakeClock:
    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def make_config(**changes) -> CoreConfig:
    config = CoreConfig(
        network_id=NETWORK_ID,
        verifier_id=VERIFIER_ID,
        provider_id=PROVIDER_ID,
        schema_id=SCHEMA_ID,
        schema_version=SCHEMA_VERSION,
        issuer_allowlist=frozenset({ISSUER}),
        max_claim_age_seconds=0,
        emergency_authority=EMERGENCY,
        emergency_window_seconds=180 * DAY,
        default_resolver_budget=0.5,
        max_resolver_budget=5.0,
        max_batch_size=5,
        max_page_size=3,
        max_additional_resolvers=4,
        journal_path=":memory:",
    )
    return config.with_changes(**changes)


def make_core(clock: FakeClock = None, **changes) -> TrustCore:
    return TrustCore(
        initial_authority=AUTHORITY,
        config=make_config(**changes),
        loader=MappingLoader(),
        clock=clock or FakeClock(),
    )


def make_document(label: str, owner: str = OWNER):
    """(document_id, content_hash) for a labelled test document."""
    digest = content_hash(f"document body: {label}".encode("utf-8"))
    return derive_document_id(digest, owner, label), digest


def deploy(core: TrustCore, component_id: str, obj, component_type=ComponentType.RESOLVER):
    """Bind obj in the core's loader and register it under component_id."""
    ref = f"plugins:{component_id}"
    core.loader.bind(ref, obj)
    core.register_component(AUTHORITY, component_id, ref, component_type, f"test {component_id}")
    return ref


# ============================================================
# Sample plugins
# ============================================================

class RecordingResolver(Resolver):
    def __init__(self):
        self.calls = []

    def handle(self, event, document_id, payload, budget):
        self.calls.append((event, document_id, payload))


class FailingResolver(Resolver):
    def __init__(self):
        self.calls = 0

    def handle(self, event, document_id, payload, budget):
        self.calls += 1
        raise RuntimeError("resolver exploded")


class SlowResolver(Resolver):
    def __init__(self, seconds: float):
        self.seconds = seconds

    def handle(self, event, document_id, payload, budget):
        time.sleep(self.seconds)


class CallbackResolver(Resolver):
    """Runs an arbitrary callback; records what it raised."""

    def __init__(self, callback):
        self.callback = callback
        self.errors = []

    def handle(self, event, document_id, payload, budget):
        try:
            self.callback(event, document_id)
        except Exception as e:
            self.errors.append(e)
            raise


class AcceptingExecutor:
    def is_valid_executor(self, document_id):
        return True


class DecliningExecutor:
    def is_valid_executor(self, document_id):
        return False


# ============================================================
# Claims
# ============================================================

class ClaimFactory:
    """Issuer keys plus a registered SignedClaimProvider."""

    def __init__(self, core: TrustCore, clock: FakeClock, issuer: str = ISSUER):
        self.core = core
        self.clock = clock
        self.issuer = issuer
        self.private_key, self.public_key = generate_issuer_keypair()
        self.keyring = InMemoryKeyring({issuer: self.public_key})
        self.provider = SignedClaimProvider(self.keyring)
        self._counter = 0
        deploy(core, PROVIDER_ID, self.provider, ComponentType.PROVIDER)

    def claim(self, recipient: str, document_id: str, capabilities: int, **overrides) -> AttestationClaim:
        self._counter += 1
        claim = AttestationClaim(
            claim_id=f"claim-{self._counter}",
            subject_id=document_id,
            recipient=recipient,
            schema_id=SCHEMA_ID,
            schema_version=SCHEMA_VERSION,
            issuer=self.issuer,
            source_system_id=PROVIDER_ID,
            source_network_id=NETWORK_ID,
            target_id=VERIFIER_ID,
            granted_capabilities=capabilities,
            content_hash=self.core.content_hash_of(document_id),
            issued_at=self.clock.now,
            expires_at=self.clock.now + DAY,
        )
        return replace(claim, **overrides)

    def issue(self, recipient: str, document_id: str, capabilities: int, **overrides):
        claim = self.claim(recipient, document_id, capabilities, **overrides)
        return self.provider.issue(claim, self.private_key)
