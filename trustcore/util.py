"""
Utility functions for TrustCore.

Provides canonical JSON serialization, digest formatting, identifier
validation, encoding, and time utilities.
"""

import base64
import hashlib
import hmac
import json
import re
import secrets
import time
from typing import Any, Union


DIGEST_PREFIX = "sha256:"
NULL_HASH = DIGEST_PREFIX + "0" * 64

DIGEST_PATTERN = re.compile(r'^sha256:[a-f0-9]{64}$')
IDENTITY_PATTERN = re.compile(r'^[\x21-\x7e]{1,128}$')


def canonicalize(obj: Any) -> bytes:
    """
    Convert object to canonical JSON bytes.

    Canonical JSON:
    - Lexicographically sorted keys
    - No whitespace
    - UTF-8 encoded
    """
    s = json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
    return s.encode('utf-8')


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def sha256_hash(data: Union[bytes, str]) -> str:
    """
    Compute SHA-256 hash in TrustCore digest format.

    Returns:
        Hash string in format "sha256:abcdef..."
    """
    return DIGEST_PREFIX + sha256_hex(data)


def content_hash(content: Union[bytes, str]) -> str:
    """Digest of raw document content."""
    return sha256_hash(content)


def derive_document_id(content_digest: str, owner: str, salt: str = "") -> str:
    """
    Derive a document id from its content hash and registering identity.

    The same content registered by different owners (or with different
    salts) yields distinct ids.
    """
    return sha256_hash(canonicalize({"content_hash": content_digest, "owner": owner, "salt": salt}))


def is_digest(value: Any) -> bool:
    """True if value is a well-formed sha256 digest string."""
    return isinstance(value, str) and DIGEST_PATTERN.match(value) is not None


def is_null_digest(value: Any) -> bool:
    return value is None or value == "" or value == NULL_HASH


def is_identity(value: Any) -> bool:
    """True if value is a usable identity string (non-empty, printable, bounded)."""
    return isinstance(value, str) and IDENTITY_PATTERN.match(value) is not None


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Base64 decode string to bytes."""
    return base64.b64decode(s.encode('ascii'))


def constant_time_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two strings/bytes in constant time to prevent timing attacks.
    """
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)


def generate_id(length: int = 16) -> str:
    """Generate a cryptographically secure random ID."""
    return secrets.token_hex(length)

