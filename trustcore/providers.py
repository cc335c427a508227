"""
Reference attestation provider.

SignedClaimProvider keeps issued claims in process memory. Every claim is
signed by its issuer with Ed25519 over the canonical JSON of the claim
body; the signature is re-checked against the issuer keyring on every
lookup, so a key removed from the keyring invalidates its claims.
"""

import logging
import threading
from dataclasses import replace
from typing import Any, Dict, Optional, Tuple

from .attestation import AttestationClaim, AttestationProof, AttestationProvider
from .keys import IssuerKeyring, sign_ed25519
from .util import canonicalize, constant_time_compare, generate_id

logger = logging.getLogger(__name__)


class SignedClaimProvider(AttestationProvider):
    """
    Usage:
        keyring = InMemoryKeyring({"issuer-a": public_key_b64})
        provider = SignedClaimProvider(keyring)
        proof = provider.issue(claim, private_key_b64)
        provider.get_claim(proof)  # -> claim, signature checked
    """

    def __init__(self, keyring: IssuerKeyring):
        self.keyring = keyring
        self._claims: Dict[str, Tuple[AttestationClaim, str]] = {}
        self._lock = threading.RLock()

    def issue(self, claim: AttestationClaim, issuer_private_key_b64: str) -> AttestationProof:
        """Sign and store a claim; returns the proof a claimant presents."""
        signature = sign_ed25519(canonicalize(claim.signable()), issuer_private_key_b64)
        return self.submit(claim, signature)

    def submit(self, claim: AttestationClaim, signature_b64: str) -> AttestationProof:
        """Store a claim signed elsewhere. The signature is checked on lookup."""
        if not claim.claim_id:
            claim = replace(claim, claim_id=generate_id())
        with self._lock:
            if claim.claim_id in self._claims:
                raise ValueError(f"claim {claim.claim_id} already stored")
            self._claims[claim.claim_id] = (claim, signature_b64)
        logger.info("Stored claim %s from issuer %s", claim.claim_id, claim.issuer)
        return AttestationProof(claim_id=claim.claim_id, evidence={"signature": signature_b64})

    def revoke(self, claim_id: str, at: int) -> bool:
        """Mark a claim revoked from `at` onwards. Returns False for unknown claims."""
        with self._lock:
            entry = self._claims.get(claim_id)
            if entry is None:
                return False
            claim, signature = entry
            if claim.revoked_at and claim.revoked_at <= at:
                return True
            self._claims[claim_id] = (replace(claim, revoked_at=int(at)), signature)
        logger.info("Revoked claim %s at %d", claim_id, at)
        return True

    def get_claim(self, proof: AttestationProof) -> Optional[AttestationClaim]:
        with self._lock:
            entry = self._claims.get(proof.claim_id)
        if entry is None:
            return None
        claim, signature = entry

        presented = (proof.evidence or {}).get("signature")
        if presented is not None and not constant_time_compare(str(presented), signature):
            logger.warning("Proof for claim %s carries a foreign signature", proof.claim_id)
            return None
        if not self.keyring.verify(claim.issuer, canonicalize(claim.signable()), signature):
            logger.warning("Claim %s signature does not verify for issuer %s", claim.claim_id, claim.issuer)
            return None
        return claim

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            claims = [c for c, _ in self._claims.values()]
        return {
            "claims": len(claims),
            "revoked": sum(1 for c in claims if c.revoked_at),
        }
