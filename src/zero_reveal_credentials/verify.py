"""
zero_reveal_credentials/verify.py
Verification composer: credential inclusion, nullifier non-inclusion and
holder signature folded into one 0/1 result.

This is the reference relation the external proving system encodes as
constraints. Off-circuit it doubles as a pre-flight check before a proof
is requested.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from .crypto import (
    DEFAULT_HASHER,
    Hasher,
    constant_time_compare,
    credential_hash,
    nullifier_slot,
    slot_bits,
    usage_id,
)
from .errors import ConstraintError, KeyMaterialError
from .field import FieldElement, field_bytes, reduce, to_decimal, to_field
from .logger import get_logger
from .merkle import MerkleProof, MerkleTree, validate_proof

logger = get_logger(__name__)

KeyMaterial = Union[bytes, str]
SignatureVerifier = Callable[[Any, Any, FieldElement], bool]

# Order of public signals: outputs first, then public inputs as declared
PUBLIC_OUTPUTS = ('verified', 'credentialId', 'verificationTimestamp')
PUBLIC_INPUTS = (
    'pubKey',
    'credentialRoot',
    'nullifierRoot',
    'currentTime',
    'signature',
    'nullifier',
    'examIdHash',
    'achievementLevelHash',
    'issuerHash',
)


@dataclass
class VerificationInputs:
    """Public and private inputs of one credential presentation."""
    # Public
    credential_root: FieldElement
    nullifier_root: FieldElement
    nullifier: FieldElement
    pub_key: KeyMaterial
    signature: KeyMaterial
    exam_id_hash: FieldElement
    achievement_level_hash: FieldElement
    issuer_hash: FieldElement
    current_time: FieldElement
    # Private
    holder_secret: FieldElement = field(repr=False)
    credential_path: MerkleProof = field(repr=False)
    nullifier_path: MerkleProof = field(repr=False)
    stored_nullifier_leaf: FieldElement = field(repr=False)


@dataclass
class VerificationResult:
    """Composed outcome plus the component checks that produced it."""
    verified: int
    credential_id: FieldElement
    verification_timestamp: FieldElement
    credential_hash: FieldElement
    credential_included: bool
    nullifier_valid: bool
    signature_valid: bool

    @property
    def is_valid(self) -> bool:
        return self.verified == 1

    def outputs(self) -> List[str]:
        """Public outputs as decimal strings, in circuit order."""
        return [
            to_decimal(self.verified),
            to_decimal(self.credential_id),
            to_decimal(self.verification_timestamp),
        ]


def normalize_key_material(value: KeyMaterial) -> bytes:
    """Accept raw bytes or a hex string (with or without 0x).

    Malformed key material raises KeyMaterialError wherever it is encoded
    (public signals, circuit input). Only verify_signature() turns it into
    False, since the composed relation must evaluate to 0 or 1.

    Raises:
        KeyMaterialError: If value is neither bytes nor valid hex
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value.startswith('0x') else value
        try:
            return bytes.fromhex(text)
        except ValueError as exc:
            raise KeyMaterialError(f"Key material is not valid hex: {exc}") from exc
    raise KeyMaterialError(
        f"Key material must be bytes or hex string, got {type(value).__name__}"
    )


def generate_keypair() -> Tuple[bytes, bytes]:
    """Fresh Ed25519 keypair as (private_seed, public_key), 32 bytes each."""
    private_key = Ed25519PrivateKey.generate()
    private_bytes = private_key.private_bytes(
        Encoding.Raw, PrivateFormat.Raw, NoEncryption()
    )
    public_bytes = private_key.public_key().public_bytes(
        Encoding.Raw, PublicFormat.Raw
    )
    return private_bytes, public_bytes


def sign_credential(private_key: KeyMaterial, cred_hash: FieldElement) -> bytes:
    """Issuer/holder side: sign the credential hash.

    The message is the 32-byte big-endian encoding of the hash, the same
    bytes verify_signature() checks.
    """
    key = Ed25519PrivateKey.from_private_bytes(normalize_key_material(private_key))
    return key.sign(field_bytes(cred_hash))


def verify_signature(pub_key: KeyMaterial, signature: KeyMaterial, message: FieldElement) -> bool:
    """Default signature primitive: Ed25519 over field_bytes(message).

    Malformed keys or signatures verify as False.
    """
    try:
        public_key = Ed25519PublicKey.from_public_bytes(normalize_key_material(pub_key))
        public_key.verify(normalize_key_material(signature), field_bytes(message))
        return True
    except InvalidSignature:
        return False
    except (TypeError, ValueError) as exc:
        logger.warning("signature_malformed", error=str(exc))
        return False


def _assert_boolean(value: int, name: str) -> int:
    if value * (1 - value) != 0:
        raise ConstraintError(f"{name} must be 0 or 1, got {value}")
    return value


def check_nullifier_non_inclusion(
    nullifier: Any,
    stored_leaf: Any,
    path: MerkleProof,
    nullifier_root: Any,
    height: int,
    hasher: Hasher = DEFAULT_HASHER,
    expected_index: Optional[int] = None
) -> bool:
    """Prove the slot the path points at holds something other than nullifier.

    Both halves must hold: the stored leaf really is what the nullifier
    tree commits to at that slot, and it differs from the nullifier being
    spent. Equality is the replay signal and yields False.

    Absence is only shown for this one slot. With expected_index set, the
    path bits must address exactly that slot, normally
    nullifier_slot(nullifier, height); otherwise an empty neighbouring
    slot would hide a spent nullifier.
    """
    if expected_index is not None:
        try:
            claimed = [int(b) for b in path.path_indices[:height]]
        except (TypeError, ValueError):
            claimed = None
        if claimed != slot_bits(expected_index, height):
            logger.warning(
                "nullifier_slot_mismatch",
                expected_index=expected_index,
                leaf_index=path.leaf_index,
            )
            return False

    root_matches = validate_proof(
        stored_leaf, path.siblings, path.path_indices, nullifier_root, height, hasher
    )
    differs = not constant_time_compare(reduce(stored_leaf), reduce(nullifier))

    if root_matches and not differs:
        logger.warning("nullifier_replay_detected", leaf_index=path.leaf_index)
    return root_matches and differs


def compose_verification(
    inputs: VerificationInputs,
    height: int,
    hasher: Hasher = DEFAULT_HASHER,
    signature_verifier: SignatureVerifier = verify_signature,
    bind_slot: bool = True
) -> VerificationResult:
    """Evaluate the full credential relation.

    verified = credentialIncluded * nullifierValid * signatureValid, with
    verified * (1 - verified) == 0 enforced. The timestamp is passed
    through; expiry windows are the caller's responsibility.

    Args:
        inputs: Public and private inputs
        height: Height shared by both trees
        hasher: Hash backend the trees were built with
        signature_verifier: (pub_key, signature, message) -> bool
        bind_slot: Require the nullifier path to address
            nullifier_slot(nullifier, height); disable only for trees that
            place nullifiers some other way

    Returns:
        VerificationResult with outputs and component checks
    """
    cred_hash = credential_hash(
        to_field(inputs.exam_id_hash),
        to_field(inputs.achievement_level_hash),
        to_field(inputs.issuer_hash),
        to_field(inputs.holder_secret),
        hasher=hasher,
    )

    credential_included = validate_proof(
        cred_hash,
        inputs.credential_path.siblings,
        inputs.credential_path.path_indices,
        inputs.credential_root,
        height,
        hasher,
    )
    nullifier_valid = check_nullifier_non_inclusion(
        inputs.nullifier,
        inputs.stored_nullifier_leaf,
        inputs.nullifier_path,
        inputs.nullifier_root,
        height,
        hasher,
        expected_index=nullifier_slot(inputs.nullifier, height) if bind_slot else None,
    )
    signature_valid = bool(signature_verifier(inputs.pub_key, inputs.signature, cred_hash))

    verified = _assert_boolean(
        int(credential_included) * int(nullifier_valid) * int(signature_valid),
        'verified',
    )

    result = VerificationResult(
        verified=verified,
        credential_id=usage_id(cred_hash, reduce(inputs.nullifier), hasher),
        verification_timestamp=to_field(inputs.current_time),
        credential_hash=cred_hash,
        credential_included=credential_included,
        nullifier_valid=nullifier_valid,
        signature_valid=signature_valid,
    )

    logger.info(
        "credential_verification_composed",
        verified=verified,
        credential_included=credential_included,
        nullifier_valid=nullifier_valid,
        signature_valid=signature_valid,
    )
    return result


def prepare_inputs(
    credential_tree: MerkleTree,
    nullifier_tree: MerkleTree,
    credential_index: int,
    nullifier_index: int,
    *,
    exam_id: Any,
    achievement_level: Any,
    issuer: Any,
    holder_secret: Any,
    nullifier: Any,
    pub_key: KeyMaterial,
    signature: KeyMaterial,
    current_time: Any
) -> VerificationInputs:
    """Assemble composer inputs from two registry snapshots.

    Raw attributes go through the field codec; both paths are taken
    from the snapshots passed in, so a concurrent registry update cannot
    mix old and new layers.
    """
    return VerificationInputs(
        credential_root=credential_tree.root,
        nullifier_root=nullifier_tree.root,
        nullifier=reduce(nullifier),
        pub_key=pub_key,
        signature=signature,
        exam_id_hash=to_field(exam_id),
        achievement_level_hash=to_field(achievement_level),
        issuer_hash=to_field(issuer),
        current_time=to_field(current_time),
        holder_secret=to_field(holder_secret),
        credential_path=credential_tree.get_proof(credential_index),
        nullifier_path=nullifier_tree.get_proof(nullifier_index),
        stored_nullifier_leaf=nullifier_tree.leaf(nullifier_index),
    )


def public_signals(result: VerificationResult, inputs: VerificationInputs) -> List[str]:
    """Outputs followed by public inputs, all as decimal strings.

    Key material is encoded as the big-endian integer of its raw bytes.

    Raises:
        KeyMaterialError: If the public key or signature is malformed
    """
    values = {
        'pubKey': normalize_key_material(inputs.pub_key),
        'credentialRoot': inputs.credential_root,
        'nullifierRoot': inputs.nullifier_root,
        'currentTime': inputs.current_time,
        'signature': normalize_key_material(inputs.signature),
        'nullifier': inputs.nullifier,
        'examIdHash': inputs.exam_id_hash,
        'achievementLevelHash': inputs.achievement_level_hash,
        'issuerHash': inputs.issuer_hash,
    }
    return result.outputs() + [to_decimal(values[name]) for name in PUBLIC_INPUTS]
