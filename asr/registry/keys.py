"""
Account identity and deterministic address derivation.

Provides:
1. AccountId - immutable 32-byte identifier
2. Keypair - Ed25519 signer identity (cryptography)
3. create_address / derive - program-derived addresses

A derived address is SHA-256(seeds || program_id || marker) and is accepted
only if it is NOT a valid Ed25519 curve point, so no private key can ever
sign for it. `derive` walks a one-byte bump from 255 down to 0 and returns
the first off-curve address.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from .errors import ErrorCode, fail, require

ACCOUNT_ID_BYTES = 32
MAX_SEEDS = 16
MAX_SEED_LEN = 32
PDA_MARKER = b"ProgramDerivedAddress"

# Edwards25519 field and curve constant
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


@dataclass(frozen=True, order=True)
class AccountId:
    """32-byte account identifier. Ordered by raw bytes."""

    value: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.value, (bytes, bytearray)) or len(self.value) != ACCOUNT_ID_BYTES:
            raise ValueError(f"AccountId must be {ACCOUNT_ID_BYTES} bytes")
        object.__setattr__(self, "value", bytes(self.value))

    @classmethod
    def zero(cls) -> "AccountId":
        return cls(bytes(ACCOUNT_ID_BYTES))

    @classmethod
    def from_hex(cls, text: str) -> "AccountId":
        return cls(bytes.fromhex(text))

    @classmethod
    def from_label(cls, label: str) -> "AccountId":
        """Deterministic id from a human label (fixtures, CLI demos)."""
        return cls(hashlib.sha256(label.encode("utf-8")).digest())

    def is_zero(self) -> bool:
        return self.value == bytes(ACCOUNT_ID_BYTES)

    def hex(self) -> str:
        return self.value.hex()

    def __bytes__(self) -> bytes:
        return self.value

    def __str__(self) -> str:
        return self.value.hex()

    def __repr__(self) -> str:
        return f"AccountId({self.value.hex()[:16]}...)"


class Keypair:
    """
    Ed25519 signer identity.

    The public key doubles as the AccountId. Signatures are plain Ed25519
    over the raw message bytes.
    """

    def __init__(self, private_key: Optional[bytes] = None):
        if private_key is not None:
            self._private_key = ed25519.Ed25519PrivateKey.from_private_bytes(private_key)
        else:
            self._private_key = ed25519.Ed25519PrivateKey.generate()
        public_bytes = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self._account_id = AccountId(public_bytes)

    @classmethod
    def generate(cls) -> "Keypair":
        return cls()

    @property
    def account_id(self) -> AccountId:
        return self._account_id

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    @staticmethod
    def verify(account_id: AccountId, message: bytes, signature: bytes) -> bool:
        public_key = ed25519.Ed25519PublicKey.from_public_bytes(account_id.value)
        try:
            public_key.verify(signature, message)
            return True
        except InvalidSignature:
            return False


def is_on_curve(candidate: bytes) -> bool:
    """
    True if `candidate` decompresses to a point on edwards25519.

    y is the low 255 bits (little endian); the point exists iff
    (y^2 - 1) / (d*y^2 + 1) is a square mod p.
    """
    y = int.from_bytes(candidate, "little") & ((1 << 255) - 1)
    y %= _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    x2 = u * pow(v, _P - 2, _P) % _P
    if x2 == 0:
        return True
    return pow(x2, (_P - 1) // 2, _P) == 1


def _check_seeds(seeds: Sequence[bytes]) -> None:
    require(len(seeds) <= MAX_SEEDS, ErrorCode.INVALID_SEEDS, seeds=len(seeds))
    for seed in seeds:
        require(len(seed) <= MAX_SEED_LEN, ErrorCode.INVALID_SEEDS, seed_len=len(seed))


def create_address(seeds: Sequence[bytes], program_id: AccountId) -> AccountId:
    """Hash seeds into an address; raises InvalidSeeds if it lands on the curve."""
    _check_seeds(seeds)
    hasher = hashlib.sha256()
    for seed in seeds:
        hasher.update(seed)
    hasher.update(program_id.value)
    hasher.update(PDA_MARKER)
    digest = hasher.digest()
    if is_on_curve(digest):
        fail(ErrorCode.INVALID_SEEDS, "Derived address lies on the curve")
    return AccountId(digest)


def derive(seeds: Sequence[bytes], program_id: AccountId) -> Tuple[AccountId, int]:
    """
    Find the canonical derived address for `seeds`.

    Returns:
        (address, bump) with the highest bump yielding an off-curve address.
    """
    # one slot is reserved for the bump byte
    require(len(seeds) < MAX_SEEDS, ErrorCode.INVALID_SEEDS, seeds=len(seeds))
    for bump in range(255, -1, -1):
        hasher = hashlib.sha256()
        for seed in seeds:
            require(len(seed) <= MAX_SEED_LEN, ErrorCode.INVALID_SEEDS, seed_len=len(seed))
            hasher.update(seed)
        hasher.update(bytes([bump]))
        hasher.update(program_id.value)
        hasher.update(PDA_MARKER)
        digest = hasher.digest()
        if not is_on_curve(digest):
            return AccountId(digest), bump
    fail(ErrorCode.INVALID_SEEDS, "No viable bump for seeds")
