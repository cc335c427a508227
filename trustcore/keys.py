"""
Issuer key management for TrustCore.

Attestation claims are signed by issuers with Ed25519 keys. A keyring maps
issuer identities to their public keys; providers use it to check claim
signatures on lookup.
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey

from .util import b64d, b64e


class IssuerKeyring(ABC):
    """Abstract trust store of issuer public keys."""

    @abstractmethod
    def public_key(self, issuer: str) -> Optional[str]:
        """
        Base64 Ed25519 public key for issuer, or None if unknown.
        """
        pass

    @abstractmethod
    def issuers(self) -> Dict[str, str]:
        """All issuer -> public key entries."""
        pass

    def verify(self, issuer: str, payload: bytes, signature_b64: str) -> bool:
        """True if signature_b64 is issuer's valid signature over payload."""
        public_key_b64 = self.public_key(issuer)
        if not public_key_b64:
            return False
        return verify_ed25519(signature_b64, payload, public_key_b64)


class InMemoryKeyring(IssuerKeyring):
    """Keyring held in process memory."""

    def __init__(self, keys: Optional[Dict[str, str]] = None):
        self._keys: Dict[str, str] = dict(keys or {})
        self._lock = threading.RLock()

    def add(self, issuer: str, public_key_b64: str) -> None:
        with self._lock:
            self._keys[issuer] = public_key_b64

    def remove(self, issuer: str) -> None:
        with self._lock:
            self._keys.pop(issuer, None)

    def public_key(self, issuer: str) -> Optional[str]:
        with self._lock:
            return self._keys.get(issuer)

    def issuers(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._keys)


class FileKeyring(IssuerKeyring):
    """
    Keyring backed by a JSON trust store file:

        {"issuers": {"issuer-a": "<base64 public key>", ...}}

    Thread-safe; the file is reloaded when its modification time changes.
    """

    def __init__(self, trust_store_path: str):
        self._trust_store_path = trust_store_path
        self._lock = threading.RLock()
        self._cache: Optional[Dict[str, str]] = None
        self._mtime: float = 0

    def _load(self) -> Dict[str, str]:
        with self._lock:
            try:
                mtime = os.path.getmtime(self._trust_store_path)
                if self._cache is None or mtime > self._mtime:
                    with open(self._trust_store_path, "r", encoding="utf-8") as f:
                        raw = json.load(f)
                    self._cache = dict(raw.get("issuers", {}))
                    self._mtime = mtime
            except FileNotFoundError:
                if self._cache is None:
                    raise

            return self._cache

    def public_key(self, issuer: str) -> Optional[str]:
        return self._load().get(issuer)

    def issuers(self) -> Dict[str, str]:
        return dict(self._load())


def generate_issuer_keypair() -> Tuple[str, str]:
    """
    Create a fresh Ed25519 keypair.

    Returns:
        Tuple of (private_key_b64, public_key_b64)
    """
    sk = SigningKey.generate()
    return b64e(bytes(sk)), b64e(bytes(sk.verify_key))


def sign_ed25519(payload: bytes, private_key_b64: str) -> str:
    """Sign payload and return the base64 signature."""
    sk = SigningKey(b64d(private_key_b64))
    return b64e(sk.sign(payload).signature)


def verify_ed25519(signature_b64: str, payload: bytes, public_key_b64: str) -> bool:
    """
    Verify an Ed25519 signature.

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        vk = VerifyKey(b64d(public_key_b64))
        vk.verify(payload, b64d(signature_b64))
        return True
    except (BadSignatureError, CryptoError, ValueError, TypeError):
        return False
