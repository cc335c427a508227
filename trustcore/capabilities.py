"""
TrustCore Capability Namespace

Pure bit manipulation over a fixed 256-bit permission space.

A capability set is a plain unsigned integer. Each named capability is a
single bit. Bit 7 (CORE_ADMIN) is the admin override: a set holding it
satisfies every requirement. Published bit positions never change meaning;
new capabilities only ever take unused bits.
"""

from typing import Dict, Iterable, List

CAPABILITY_WIDTH = 256
CAPABILITY_MASK = (1 << CAPABILITY_WIDTH) - 1

# Core (0-7)
CORE_VIEW = 1 << 0
CORE_CLAIM = 1 << 1
CORE_TRANSFER = 1 << 2
CORE_UPDATE = 1 << 3
CORE_DELEGATE = 1 << 4
CORE_REVOKE = 1 << 5
CORE_ADMIN = 1 << 7

# Financial (8-15)
FIN_REQUEST_PAYMENT = 1 << 8
FIN_APPROVE_PAYMENT = 1 << 9
FIN_EXECUTE_PAYMENT = 1 << 10
FIN_CANCEL_PAYMENT = 1 << 11
FIN_WITHDRAW = 1 << 12

# Document workflow (16-23)
DOC_SIGN = 1 << 16
DOC_WITNESS = 1 << 17
DOC_NOTARIZE = 1 << 18
DOC_VERIFY = 1 << 19
DOC_AMEND = 1 << 20

# Rental (24-31)
RENTAL_USE = 1 << 24
RENTAL_EXTEND = 1 << 25

ADMIN = CORE_ADMIN

CAPABILITIES: Dict[str, int] = {
    "CORE_VIEW": CORE_VIEW,
    "CORE_CLAIM": CORE_CLAIM,
    "CORE_TRANSFER": CORE_TRANSFER,
    "CORE_UPDATE": CORE_UPDATE,
    "CORE_DELEGATE": CORE_DELEGATE,
    "CORE_REVOKE": CORE_REVOKE,
    "CORE_ADMIN": CORE_ADMIN,
    "FIN_REQUEST_PAYMENT": FIN_REQUEST_PAYMENT,
    "FIN_APPROVE_PAYMENT": FIN_APPROVE_PAYMENT,
    "FIN_EXECUTE_PAYMENT": FIN_EXECUTE_PAYMENT,
    "FIN_CANCEL_PAYMENT": FIN_CANCEL_PAYMENT,
    "FIN_WITHDRAW": FIN_WITHDRAW,
    "DOC_SIGN": DOC_SIGN,
    "DOC_WITNESS": DOC_WITNESS,
    "DOC_NOTARIZE": DOC_NOTARIZE,
    "DOC_VERIFY": DOC_VERIFY,
    "DOC_AMEND": DOC_AMEND,
    "RENTAL_USE": RENTAL_USE,
    "RENTAL_EXTEND": RENTAL_EXTEND,
}

# Common bundles
ROLE_VIEWER = CORE_VIEW
ROLE_PARTY = CORE_VIEW | CORE_CLAIM | CORE_TRANSFER
ROLE_SIGNER = CORE_VIEW | DOC_SIGN
ROLE_PAYER = CORE_VIEW | FIN_REQUEST_PAYMENT | FIN_APPROVE_PAYMENT | FIN_EXECUTE_PAYMENT


def has_capability(granted: int, required: int) -> bool:
    """
    True iff the admin bit is set, or every required bit is present.

    An empty requirement is satisfied by any set.
    """
    granted &= CAPABILITY_MASK
    required &= CAPABILITY_MASK
    if granted & CORE_ADMIN:
        return True
    return (granted & required) == required


def compose(capabilities: Iterable[int]) -> int:
    """Bitwise OR fold of capabilities."""
    result = 0
    for capability in capabilities:
        result |= capability
    return result & CAPABILITY_MASK


def add(granted: int, capability: int) -> int:
    """Set the given bit(s)."""
    return (granted | capability) & CAPABILITY_MASK


def remove(granted: int, capability: int) -> int:
    """Clear the given bit(s)."""
    return (granted & ~capability) & CAPABILITY_MASK


def capability_names(mask: int) -> List[str]:
    """Names of the published capabilities present in mask, lowest bit first."""
    mask &= CAPABILITY_MASK
    return [name for name, bit in sorted(CAPABILITIES.items(), key=lambda kv: kv[1]) if mask & bit]


def from_names(names: Iterable[str]) -> int:
    """Compose a capability set from published names."""
    bits = []
    for name in names:
        key = name.strip().upper()
        if key not in CAPABILITIES:
            raise ValueError(f"Unknown capability: {name}")
        bits.append(CAPABILITIES[key])
    return compose(bits)
