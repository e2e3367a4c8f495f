"""
zero_reveal_credentials/merkle.py
Fixed-height field Merkle tree for credential and nullifier registries.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .config import MAX_TREE_HEIGHT
from .crypto import DEFAULT_HASHER, Hasher, constant_time_compare, internal_hash, leaf_hash
from .errors import CapacityError
from .field import FieldElement, reduce, to_decimal, to_field
from .logger import get_logger

logger = get_logger(__name__)

EMPTY_LEAF = 0

# A leaf is a pre-hashed value or a raw (a, b) pair hashed with H2
LeafInput = Union[int, str, bytes, Tuple[Any, Any]]
Layers = Tuple[Tuple[FieldElement, ...], ...]


@dataclass
class MerkleProof:
    """Authentication path for one leaf, ordered leaf to root.

    path_indices[i] is 0 when the running node is the left child at
    level i and 1 when it is the right child.
    """
    siblings: List[FieldElement]
    path_indices: List[int]
    leaf: FieldElement
    leaf_index: Optional[int] = None

    @property
    def height(self) -> int:
        return len(self.siblings)

    def verify(self, root: FieldElement, hasher: Hasher = DEFAULT_HASHER) -> bool:
        """Replay this path against root."""
        return validate_proof(
            self.leaf, self.siblings, self.path_indices, root, self.height, hasher
        )

    def to_dict(self, include_index: bool = False) -> Dict[str, Any]:
        """Wire shape: {siblings: [dec str], pathIndices: [int], leaf: dec str}."""
        data: Dict[str, Any] = {
            'siblings': [to_decimal(s) for s in self.siblings],
            'pathIndices': [int(b) for b in self.path_indices],
            'leaf': to_decimal(self.leaf),
        }
        if include_index and self.leaf_index is not None:
            data['leafIndex'] = self.leaf_index
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MerkleProof':
        """Parse the wire shape. Field values may be decimal or hex strings."""
        leaf_index = data.get('leafIndex')
        return cls(
            siblings=[to_field(s) for s in data['siblings']],
            path_indices=[int(b) for b in data['pathIndices']],
            leaf=to_field(data['leaf']),
            leaf_index=int(leaf_index) if leaf_index is not None else None,
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(include_index=True), indent=2)


@dataclass(frozen=True)
class MerkleTree:
    """Immutable snapshot of a complete binary tree of fixed height.

    layers[0] holds 2**height leaves and layers[height] holds the root.
    Updates return a new MerkleTree; readers keep the snapshot they hold.

    Example:
        tree = build_tree([credential_leaf(...)], height=4)
        proof = tree.get_proof(0)
        assert proof.verify(tree.root)
    """
    height: int
    layers: Layers

    @property
    def root(self) -> FieldElement:
        return self.layers[self.height][0]

    @property
    def capacity(self) -> int:
        return 1 << self.height

    @property
    def leaves(self) -> Tuple[FieldElement, ...]:
        return self.layers[0]

    def leaf(self, index: int) -> FieldElement:
        _check_index(index, self.height)
        return self.layers[0][index]

    def get_proof(self, index: int) -> MerkleProof:
        return get_proof(self.layers, index, self.height)

    def to_dict(self) -> Dict[str, Any]:
        """File shape: {root: dec str, layers: [[dec str]]}."""
        return {
            'root': to_decimal(self.root),
            'layers': [[to_decimal(v) for v in layer] for layer in self.layers],
        }


def _check_height(height: int) -> int:
    if isinstance(height, bool) or not isinstance(height, int) \
            or not 0 <= height <= MAX_TREE_HEIGHT:
        raise ValueError(
            f"Tree height must be an integer in [0, {MAX_TREE_HEIGHT}], got {height!r}"
        )
    return 1 << height


def _check_index(index: int, height: int) -> None:
    capacity = 1 << height
    if isinstance(index, bool) or not isinstance(index, int) \
            or not 0 <= index < capacity:
        raise CapacityError(index, capacity)


def _encode_leaf(value: LeafInput, hasher: Hasher) -> FieldElement:
    if isinstance(value, (tuple, list)):
        if len(value) != 2:
            raise ValueError(f"Pair leaves need exactly 2 values, got {len(value)}")
        return leaf_hash(to_field(value[0]), to_field(value[1]), hasher)
    return reduce(value)


def zero_hashes(height: int, hasher: Hasher = DEFAULT_HASHER) -> List[FieldElement]:
    """Roots of all-empty subtrees: zeros[l] is the root of an empty subtree of height l."""
    _check_height(height)
    zeros = [EMPTY_LEAF]
    for _ in range(height):
        zeros.append(internal_hash(zeros[-1], zeros[-1], hasher))
    return zeros


def _hash_up(bottom: List[FieldElement], height: int, hasher: Hasher) -> MerkleTree:
    zeros = zero_hashes(height, hasher)
    layers = [tuple(bottom)]
    for level in range(1, height + 1):
        prev = layers[level - 1]
        empty = zeros[level - 1]
        nxt = []
        for i in range(len(prev) // 2):
            left, right = prev[2 * i], prev[2 * i + 1]
            if left == empty and right == empty:
                nxt.append(zeros[level])
            else:
                nxt.append(internal_hash(left, right, hasher))
        layers.append(tuple(nxt))
    return MerkleTree(height=height, layers=tuple(layers))


def build_tree(
    leaves: Sequence[LeafInput],
    height: int,
    hasher: Hasher = DEFAULT_HASHER,
    truncate: bool = False
) -> MerkleTree:
    """Build a complete tree of fixed height from a leaf list.

    The leaf layer is zero-padded to 2**height. Each leaf may be a field
    value (int, numeric or hex string, free text) or an (a, b) pair that
    is hashed with H2.

    Args:
        leaves: Leaf inputs, placed from index 0
        height: Tree height; capacity is 2**height
        hasher: Hash backend shared with the verifying circuit
        truncate: Drop leaves beyond capacity (logged) instead of raising

    Returns:
        MerkleTree snapshot

    Raises:
        CapacityError: If more leaves than capacity and truncate is False
        ValueError: If height is out of range
    """
    capacity = _check_height(height)
    leaves = list(leaves)

    if len(leaves) > capacity:
        if not truncate:
            raise CapacityError(
                len(leaves) - 1, capacity,
                f"{len(leaves)} leaves exceed tree capacity {capacity}"
            )
        logger.warning(
            "merkle_leaves_truncated",
            supplied=len(leaves),
            capacity=capacity,
            dropped=len(leaves) - capacity,
        )
        leaves = leaves[:capacity]

    bottom = [EMPTY_LEAF] * capacity
    for i, value in enumerate(leaves):
        bottom[i] = _encode_leaf(value, hasher)

    tree = _hash_up(bottom, height, hasher)
    logger.debug("merkle_tree_built", height=height, leaves=len(leaves))
    return tree


def create_empty_tree(height: int, hasher: Hasher = DEFAULT_HASHER) -> MerkleTree:
    """All-zero tree for a registry that has not been populated yet."""
    return build_tree([], height, hasher)


def _coerce_layers(existing: Union[MerkleTree, Sequence[Sequence[Any]]], height: int) -> Layers:
    if isinstance(existing, MerkleTree):
        if existing.height != height:
            raise ValueError(
                f"Tree height {existing.height} does not match requested height {height}"
            )
        return existing.layers

    if len(existing) != height + 1:
        raise ValueError(
            f"Expected {height + 1} layers for height {height}, got {len(existing)}"
        )
    layers = []
    for level, layer in enumerate(existing):
        expected = 1 << (height - level)
        if len(layer) != expected:
            raise ValueError(
                f"Layer {level} has {len(layer)} nodes, expected {expected}"
            )
        layers.append(tuple(reduce(v) for v in layer))
    return tuple(layers)


def update_tree(
    existing_layers: Union[MerkleTree, Sequence[Sequence[Any]]],
    new_leaf: LeafInput,
    index: int,
    height: int,
    hasher: Hasher = DEFAULT_HASHER
) -> MerkleTree:
    """Return a new tree with one leaf replaced.

    Only the height nodes on the path from the leaf to the root are
    rehashed. The result is identical to rebuild_tree().

    Raises:
        CapacityError: If index is outside [0, 2**height)
        ValueError: If the layers do not describe a tree of this height
    """
    _check_height(height)
    _check_index(index, height)
    layers = [list(layer) for layer in _coerce_layers(existing_layers, height)]

    layers[0][index] = _encode_leaf(new_leaf, hasher)
    node = index
    for level in range(1, height + 1):
        node //= 2
        below = layers[level - 1]
        layers[level][node] = internal_hash(below[2 * node], below[2 * node + 1], hasher)

    logger.debug("merkle_leaf_updated", height=height, index=index)
    return MerkleTree(height=height, layers=tuple(tuple(layer) for layer in layers))


def rebuild_tree(
    existing_layers: Union[MerkleTree, Sequence[Sequence[Any]]],
    new_leaf: LeafInput,
    index: int,
    height: int,
    hasher: Hasher = DEFAULT_HASHER
) -> MerkleTree:
    """Replace one leaf and rebuild every layer from scratch.

    Reference behaviour for update_tree(); both must yield the same root.
    """
    _check_height(height)
    _check_index(index, height)
    leaves = list(_coerce_layers(existing_layers, height)[0])
    leaves[index] = _encode_leaf(new_leaf, hasher)
    return build_tree(leaves, height, hasher)


def _node(layers: Sequence[Sequence[Any]], level: int, index: int) -> FieldElement:
    if level < len(layers) and index < len(layers[level]):
        return reduce(layers[level][index])
    return EMPTY_LEAF


def get_proof(
    layers: Union[MerkleTree, Sequence[Sequence[Any]]],
    index: int,
    height: int
) -> MerkleProof:
    """Extract the authentication path for the leaf at index.

    At each level the sibling sits at index ^ 1 and the path bit is
    index % 2; missing nodes of an underfull layer read as 0.

    Raises:
        CapacityError: If index is outside [0, 2**height)
    """
    _check_height(height)
    _check_index(index, height)
    if isinstance(layers, MerkleTree):
        layers = layers.layers

    siblings = []
    path_indices = []
    node = index
    for level in range(height):
        siblings.append(_node(layers, level, node ^ 1))
        path_indices.append(node % 2)
        node //= 2

    return MerkleProof(
        siblings=siblings,
        path_indices=path_indices,
        leaf=_node(layers, 0, index),
        leaf_index=index,
    )


def validate_proof(
    leaf: Any,
    siblings: Sequence[Any],
    path_indices: Sequence[int],
    root: Any,
    height: int,
    hasher: Hasher = DEFAULT_HASHER
) -> bool:
    """Recompute the root from a leaf and its path, without the tree.

    Verification is O(height): one hash per level. A malformed proof
    (short path, non-binary path bit, unencodable value) is rejected,
    not raised.

    Args:
        leaf: Claimed leaf value
        siblings: Sibling values, leaf to root (ints or decimal strings)
        path_indices: Path bits, 0 = left child, 1 = right child
        root: Expected root
        height: Tree height
        hasher: Hash backend used to build the tree

    Returns:
        True if the path reproduces root, False otherwise
    """
    _check_height(height)
    if len(siblings) < height or len(path_indices) < height:
        logger.warning(
            "merkle_proof_malformed",
            reason="short_path",
            siblings=len(siblings),
            path_indices=len(path_indices),
            height=height,
        )
        return False

    try:
        current = reduce(leaf)
        expected = reduce(root)
        path = [reduce(s) for s in siblings[:height]]
    except TypeError as exc:
        logger.warning("merkle_proof_malformed", reason="bad_value", error=str(exc))
        return False

    for level in range(height):
        bit = path_indices[level]
        if bit == 0:
            current = internal_hash(current, path[level], hasher)
        elif bit == 1:
            current = internal_hash(path[level], current, hasher)
        else:
            logger.warning(
                "merkle_proof_malformed", reason="path_bit", level=level, bit=bit
            )
            return False

    if constant_time_compare(current, expected):
        return True
    logger.warning("merkle_proof_rejected", height=height)
    return False
