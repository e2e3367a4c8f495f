"""
Zero-Reveal Credentials: credential and nullifier Merkle proofs for
zero-knowledge credential presentations.

A holder proves that a credential is committed in the credential tree,
that a one-time nullifier is absent from the spent-nullifier tree, and
that the credential hash carries a valid signature, while a verifier only
sees roots, hashes and a 0/1 result.
"""

from .errors import (
    ZeroRevealError,
    CapacityError,
    HashUnavailableError,
    ConstraintError,
    SlotCollisionError,
    ArtifactError,
    KeyMaterialError,
)

from .field import (
    FIELD_MODULUS,
    to_field,
    to_decimal,
    field_bytes,
)

from .crypto import (
    Sha256FieldHasher,
    DEFAULT_HASHER,
    register_hasher,
    get_hasher,
    leaf_hash,
    internal_hash,
    credential_hash,
    usage_id,
    credential_leaf,
    nullifier_leaf,
    constant_time_compare,
    slot_bits,
)

from .poseidon import CircomPoseidonHasher

from .merkle import (
    MerkleProof,
    MerkleTree,
    build_tree,
    create_empty_tree,
    update_tree,
    rebuild_tree,
    get_proof,
    validate_proof,
    zero_hashes,
)

from .verify import (
    VerificationInputs,
    VerificationResult,
    compose_verification,
    check_nullifier_non_inclusion,
    prepare_inputs,
    public_signals,
    verify_signature,
    sign_credential,
    generate_keypair,
)

from .registry import (
    TreeRegistry,
    CredentialRegistry,
    NullifierRegistry,
    nullifier_slot,
)

from .artifacts import (
    build_circuit_input,
    read_tree_file,
    write_tree_file,
    read_proof_file,
    write_proof_file,
)

from .config import Settings, get_settings
from .logger import get_logger, setup_logging

__version__ = "0.1.0"

__all__ = [
    # Errors
    "ZeroRevealError",
    "CapacityError",
    "HashUnavailableError",
    "ConstraintError",
    "SlotCollisionError",
    "ArtifactError",
    "KeyMaterialError",
    # Field
    "FIELD_MODULUS",
    "to_field",
    "to_decimal",
    "field_bytes",
    # Crypto
    "Sha256FieldHasher",
    "DEFAULT_HASHER",
    "register_hasher",
    "get_hasher",
    "leaf_hash",
    "internal_hash",
    "credential_hash",
    "usage_id",
    "credential_leaf",
    "nullifier_leaf",
    "constant_time_compare",
    "slot_bits",
    "CircomPoseidonHasher",
    # Merkle
    "MerkleProof",
    "MerkleTree",
    "build_tree",
    "create_empty_tree",
    "update_tree",
    "rebuild_tree",
    "get_proof",
    "validate_proof",
    "zero_hashes",
    # Verify
    "VerificationInputs",
    "VerificationResult",
    "compose_verification",
    "check_nullifier_non_inclusion",
    "prepare_inputs",
    "public_signals",
    "verify_signature",
    "sign_credential",
    "generate_keypair",
    # Registry
    "TreeRegistry",
    "CredentialRegistry",
    "NullifierRegistry",
    "nullifier_slot",
    # Artifacts
    "build_circuit_input",
    "read_tree_file",
    "write_tree_file",
    "read_proof_file",
    "write_proof_file",
    # Config / logging
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
    # Meta
    "__version__",
]
