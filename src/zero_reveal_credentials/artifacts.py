"""
zero_reveal_credentials/artifacts.py
Tree files, proof files and the canonical circuit input.

All field elements are written as base-10 strings; path bits as numbers.
"""
import json
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, Union

from .crypto import DEFAULT_HASHER, Hasher, constant_time_compare
from .errors import ArtifactError
from .field import reduce, to_decimal
from .merkle import MerkleProof, MerkleTree, build_tree
from .verify import VerificationInputs, normalize_key_material

PathLike = Union[str, Path]

# Key order of the circuit input file; the witness generator reads it as-is
CIRCUIT_INPUT_ORDER = (
    'pubKey',
    'credentialRoot',
    'nullifierRoot',
    'currentTime',
    'signature',
    'nullifier',
    'examIdHash',
    'achievementLevelHash',
    'issuerHash',
    'holderSecret',
    'merkleProof',
    'merkleProofNullifier',
    'merklePathIndices',
    'merklePathIndicesNullifier',
    'storedNullifierLeaf',
)


def tree_from_dict(
    data: Dict[str, Any],
    hasher: Hasher = DEFAULT_HASHER,
    verify_root: bool = True
) -> MerkleTree:
    """Load a tree from its {root, layers} file shape.

    The leaf layer is rehashed and the stored root must match, so a
    hand-edited or truncated file is rejected rather than trusted.

    Raises:
        ArtifactError: If the data is malformed or the root does not match
    """
    try:
        layers = data['layers']
        root = reduce(data['root'])
        leaf_count = len(layers[0])
        height = len(layers) - 1
    except (KeyError, IndexError, TypeError) as exc:
        raise ArtifactError(f"Malformed tree data: {exc}") from exc

    if height < 0 or leaf_count != 1 << height:
        raise ArtifactError(
            f"Leaf layer has {leaf_count} entries; expected 2**{height}"
        )

    try:
        if verify_root:
            tree = build_tree(layers[0], height, hasher)
        else:
            tree = MerkleTree(
                height=height,
                layers=tuple(tuple(reduce(v) for v in layer) for layer in layers),
            )
    except (IndexError, TypeError, ValueError) as exc:
        raise ArtifactError(f"Malformed tree data: {exc}") from exc

    if not constant_time_compare(tree.root, root):
        raise ArtifactError("Stored root does not match the tree layers")
    return tree


def write_tree_file(tree: MerkleTree, path: PathLike) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(tree.to_dict(), indent=2), encoding='utf-8')
    return path


def read_tree_file(
    path: PathLike,
    hasher: Hasher = DEFAULT_HASHER,
    verify_root: bool = True
) -> MerkleTree:
    """Read a tree file written by write_tree_file()."""
    try:
        data = json.loads(Path(path).read_text(encoding='utf-8'))
    except json.JSONDecodeError as exc:
        raise ArtifactError(f"Tree file is not valid JSON: {path}") from exc
    return tree_from_dict(data, hasher, verify_root)


def write_proof_file(proof: MerkleProof, path: PathLike) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(proof.to_json(), encoding='utf-8')
    return path


def read_proof_file(path: PathLike) -> MerkleProof:
    """Read a {siblings, pathIndices, leaf} proof file.

    Raises:
        ArtifactError: If the file is not a well-formed proof
    """
    try:
        data = json.loads(Path(path).read_text(encoding='utf-8'))
    except json.JSONDecodeError as exc:
        raise ArtifactError(f"Proof file is not valid JSON: {path}") from exc
    if not isinstance(data, dict):
        raise ArtifactError(
            f"Malformed proof file {path}: expected an object, got {type(data).__name__}"
        )
    try:
        proof = MerkleProof.from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise ArtifactError(f"Malformed proof file {path}: {exc}") from exc
    if len(proof.siblings) != len(proof.path_indices):
        raise ArtifactError(
            f"Proof has {len(proof.siblings)} siblings but "
            f"{len(proof.path_indices)} path indices"
        )
    return proof


def build_circuit_input(inputs: VerificationInputs, height: int) -> 'OrderedDict[str, Any]':
    """Canonical input document for the external witness generator.

    Path arrays must have exactly height entries, matching the compiled
    circuit's signal sizes.

    Raises:
        ArtifactError: If a path length does not match height
        KeyMaterialError: If the public key or signature is malformed
    """
    for label, path in (('credential', inputs.credential_path),
                        ('nullifier', inputs.nullifier_path)):
        if len(path.siblings) != height or len(path.path_indices) != height:
            raise ArtifactError(
                f"{label} path has {len(path.siblings)} levels; circuit expects {height}"
            )

    values = {
        'pubKey': to_decimal(normalize_key_material(inputs.pub_key)),
        'credentialRoot': to_decimal(inputs.credential_root),
        'nullifierRoot': to_decimal(inputs.nullifier_root),
        'currentTime': to_decimal(inputs.current_time),
        'signature': to_decimal(normalize_key_material(inputs.signature)),
        'nullifier': to_decimal(inputs.nullifier),
        'examIdHash': to_decimal(inputs.exam_id_hash),
        'achievementLevelHash': to_decimal(inputs.achievement_level_hash),
        'issuerHash': to_decimal(inputs.issuer_hash),
        'holderSecret': to_decimal(inputs.holder_secret),
        'merkleProof': [to_decimal(s) for s in inputs.credential_path.siblings],
        'merkleProofNullifier': [to_decimal(s) for s in inputs.nullifier_path.siblings],
        'merklePathIndices': [to_decimal(b) for b in inputs.credential_path.path_indices],
        'merklePathIndicesNullifier': [to_decimal(b) for b in inputs.nullifier_path.path_indices],
        'storedNullifierLeaf': to_decimal(inputs.stored_nullifier_leaf),
    }
    return OrderedDict((key, values[key]) for key in CIRCUIT_INPUT_ORDER)


def write_circuit_input(inputs: VerificationInputs, height: int, path: PathLike) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(build_circuit_input(inputs, height), indent=2), encoding='utf-8')
    return path
