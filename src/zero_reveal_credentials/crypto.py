"""
zero_reveal_credentials/crypto.py
Field hash primitives shared by tree building, proof checks and the composer.

Every function takes the hasher explicitly. Off-circuit and in-circuit
recomputation only agree when both sides use the same backend.
"""
import hashlib
import hmac
from typing import Callable, Dict, List, Sequence

from .errors import HashUnavailableError
from .field import FIELD_MODULUS, FieldElement, field_bytes, is_field_element, reduce, to_field
from .poseidon import CircomPoseidonHasher

HASH_ALGORITHM = 'sha256'
DEFAULT_BACKEND = 'sha256'

# H2 and H4 share one hash; the arity prefix keeps them apart.
MAX_ARITY = 16

Hasher = Callable[[Sequence[FieldElement]], FieldElement]


class Sha256FieldHasher:
    """Arity-flexible hash over the BN254 scalar field.

    Not circuit-compatible: trees built with it only verify off-circuit.
    Use the "poseidon" backend for anything the circuit must recompute.

    Format: SHA256(arity || x_1 || ... || x_n) mod p, where every x_i is
    the 32-byte big-endian encoding of the input reduced mod p.

    Example:
        hasher = Sha256FieldHasher()
        parent = hasher([left, right])
    """

    name = 'sha256'

    def __call__(self, inputs: Sequence[FieldElement]) -> FieldElement:
        arity = len(inputs)
        if not 1 <= arity <= MAX_ARITY:
            raise ValueError(f"Unsupported hash arity: {arity}")
        h = hashlib.new(HASH_ALGORITHM)
        h.update(bytes([arity]))
        for value in inputs:
            h.update(field_bytes(value))
        return int.from_bytes(h.digest(), 'big') % FIELD_MODULUS

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


DEFAULT_HASHER: Hasher = Sha256FieldHasher()

_BACKENDS: Dict[str, Callable[[], Hasher]] = {
    DEFAULT_BACKEND: Sha256FieldHasher,
    CircomPoseidonHasher.name: CircomPoseidonHasher,
}


def register_hasher(name: str, factory: Callable[[], Hasher]) -> None:
    """Register a hash backend under a name.

    "sha256" and "poseidon" are built in; integrators can add others
    and select them through settings.

    Args:
        name: Backend name, matched case-insensitively
        factory: Zero-argument callable returning a hasher
    """
    _BACKENDS[name.lower()] = factory


def get_hasher(name: str = DEFAULT_BACKEND) -> Hasher:
    """Construct the named hash backend.

    Raises:
        HashUnavailableError: If no backend is registered under name
    """
    factory = _BACKENDS.get(name.lower())
    if factory is None:
        raise HashUnavailableError(
            f"Hash backend '{name}' is not registered "
            f"(available: {', '.join(sorted(_BACKENDS))})"
        )
    return factory()


def _hash(hasher: Hasher, inputs: Sequence[FieldElement]) -> FieldElement:
    if hasher is None:
        raise HashUnavailableError("No hasher supplied")
    result = hasher(list(inputs))
    if not is_field_element(result):
        raise HashUnavailableError(
            f"Hasher {hasher!r} returned a value outside the field"
        )
    return result


def leaf_hash(a: FieldElement, b: FieldElement, hasher: Hasher = DEFAULT_HASHER) -> FieldElement:
    """Hash a raw (a, b) pair into a leaf: H2(a, b)."""
    return _hash(hasher, (a, b))


def internal_hash(left: FieldElement, right: FieldElement, hasher: Hasher = DEFAULT_HASHER) -> FieldElement:
    """Hash two children into their parent: H2(left, right).

    Same function as leaf_hash. The circuit recomputes both with one
    2-input hash, so no leaf/internal domain prefix is applied.
    """
    return _hash(hasher, (left, right))


def credential_hash(
    exam_id_hash: FieldElement,
    achievement_level_hash: FieldElement,
    issuer_hash: FieldElement,
    holder_secret: FieldElement,
    hasher: Hasher = DEFAULT_HASHER
) -> FieldElement:
    """Credential commitment: H4(examIdHash, achievementLevelHash, issuerHash, holderSecret).

    This value is both the credential tree leaf and the signed message.
    """
    return _hash(hasher, (exam_id_hash, achievement_level_hash, issuer_hash, holder_secret))


def usage_id(
    cred_hash: FieldElement,
    nullifier: FieldElement,
    hasher: Hasher = DEFAULT_HASHER
) -> FieldElement:
    """Public usage marker binding one credential to one nullifier spend."""
    return _hash(hasher, (cred_hash, nullifier))


def credential_leaf(
    exam_id: object,
    achievement_level: object,
    issuer: object,
    holder_secret: object,
    hasher: Hasher = DEFAULT_HASHER
) -> FieldElement:
    """Build a credential leaf from raw attributes.

    Applies the field codec to each attribute before hashing, so
    "EXAM_LOCAL", "0xabc" and 42 are all acceptable inputs.
    """
    return credential_hash(
        to_field(exam_id),
        to_field(achievement_level),
        to_field(issuer),
        to_field(holder_secret),
        hasher=hasher,
    )


def nullifier_leaf(nullifier: object) -> FieldElement:
    """Nullifier leaves are the encoded nullifier itself, reduced into the field."""
    return reduce(nullifier)


def constant_time_compare(a: FieldElement, b: FieldElement) -> bool:
    """Compare two field elements in constant time.

    Both sides are encoded to fixed-width bytes first so the comparison
    time does not depend on where the values differ.
    """
    return hmac.compare_digest(field_bytes(a), field_bytes(b))


def nullifier_slot(nullifier: object, height: int) -> int:
    """Deterministic slot for a nullifier: nullifier_leaf(n) mod 2**height.

    Non-inclusion is only checked at one slot, so prover, verifier and
    registry must agree on which slot a nullifier lives in.
    """
    return nullifier_leaf(nullifier) % (1 << height)


def slot_bits(slot: int, height: int) -> List[int]:
    """Path bits that address slot, least significant first."""
    return [(slot >> level) & 1 for level in range(height)]
