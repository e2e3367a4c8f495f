"""
zero_reveal_credentials/registry.py
In-process holders for the credential and nullifier tree snapshots.

Each update computes a new immutable MerkleTree under a lock and swaps
the reference; readers take snapshot() once and work on that value.
Durable storage of leaves and roots stays with the caller.
"""
import threading
from typing import Any, Dict, Iterable, Optional, Tuple

from .config import Settings, get_settings
from .crypto import Hasher, credential_leaf, get_hasher, nullifier_leaf, nullifier_slot
from .errors import CapacityError, SlotCollisionError
from .field import FieldElement
from .logger import get_logger
from .merkle import EMPTY_LEAF, LeafInput, MerkleProof, MerkleTree, build_tree, update_tree

logger = get_logger(__name__)

__all__ = [
    "TreeRegistry",
    "CredentialRegistry",
    "NullifierRegistry",
    "nullifier_slot",
]


class TreeRegistry:
    """Serializes leaf updates to one tree and publishes snapshots.

    Example:
        registry = TreeRegistry(height=4)
        index = registry.append(leaf)
        tree = registry.snapshot()
        proof = tree.get_proof(index)
    """

    def __init__(
        self,
        height: Optional[int] = None,
        hasher: Optional[Hasher] = None,
        settings: Optional[Settings] = None,
        name: str = "tree"
    ):
        settings = settings or get_settings()
        self.height = height if height is not None else settings.merkle_tree_height
        self.hasher = hasher or get_hasher(settings.hash_backend)
        self.name = name
        self._truncate = settings.truncate_overflow
        self._lock = threading.RLock()
        self._tree = build_tree([], self.height, self.hasher)
        self._next_index = 0

    @property
    def root(self) -> FieldElement:
        return self._tree.root

    @property
    def capacity(self) -> int:
        return 1 << self.height

    def snapshot(self) -> MerkleTree:
        """Current immutable tree. Safe to read without holding the lock."""
        return self._tree

    def load(self, leaves: list) -> MerkleTree:
        """Replace the whole leaf set, e.g. from a persisted registry."""
        tree = build_tree(leaves, self.height, self.hasher, truncate=self._truncate)
        with self._lock:
            self._tree = tree
            self._next_index = min(len(leaves), self.capacity)
        logger.info("registry_loaded", registry=self.name, leaves=self._next_index)
        return tree

    def set_leaf(self, index: int, leaf: LeafInput) -> MerkleTree:
        """Write leaf at index and publish the new snapshot."""
        with self._lock:
            self._tree = update_tree(self._tree, leaf, index, self.height, self.hasher)
            self._next_index = max(self._next_index, index + 1)
            tree = self._tree
        logger.info("registry_leaf_set", registry=self.name, index=index)
        return tree

    def append(self, leaf: LeafInput) -> int:
        """Write leaf at the next free index and return that index.

        Raises:
            CapacityError: If the tree is full
        """
        with self._lock:
            index = self._next_index
            if index >= self.capacity:
                raise CapacityError(index, self.capacity)
            self._tree = update_tree(self._tree, leaf, index, self.height, self.hasher)
            self._next_index = index + 1
        logger.info("registry_leaf_appended", registry=self.name, index=index)
        return index


class CredentialRegistry(TreeRegistry):
    """Credential tree: leaves are H4(examId, achievementLevel, issuer, holderSecret).

    Every write path keeps the hash -> index lookup in step with the
    published tree, so register() never returns an index whose leaf has
    since been overwritten.
    """

    def __init__(self, height: Optional[int] = None, hasher: Optional[Hasher] = None,
                 settings: Optional[Settings] = None):
        super().__init__(height, hasher, settings, name="credential")
        self._index: Dict[FieldElement, int] = {}

    def register(
        self,
        exam_id: Any,
        achievement_level: Any,
        issuer: Any,
        holder_secret: Any
    ) -> Tuple[int, FieldElement]:
        """Commit a credential and return (index, credential_hash).

        Re-registering the same credential returns its existing index.
        """
        leaf = credential_leaf(exam_id, achievement_level, issuer, holder_secret, self.hasher)
        with self._lock:
            existing = self._index.get(leaf)
            if existing is not None:
                return existing, leaf
            index = self.append(leaf)
        return index, leaf

    def append(self, leaf: LeafInput) -> int:
        with self._lock:
            index = super().append(leaf)
            self._track(index)
        return index

    def set_leaf(self, index: int, leaf: LeafInput) -> MerkleTree:
        with self._lock:
            previous = self._tree.leaf(index)
            tree = super().set_leaf(index, leaf)
            if self._index.get(previous) == index:
                del self._index[previous]
            self._track(index)
        return tree

    def load(self, leaves: list) -> MerkleTree:
        with self._lock:
            tree = super().load(leaves)
            self._index = {}
            for i in range(self._next_index):
                self._track(i)
        return tree

    def _track(self, index: int) -> None:
        leaf = self._tree.leaf(index)
        if leaf != EMPTY_LEAF:
            self._index.setdefault(leaf, index)

    def index_of(self, cred_hash: FieldElement) -> Optional[int]:
        return self._index.get(cred_hash)


class NullifierRegistry:
    """Spent-nullifier tree; each nullifier owns the slot nullifier_slot() gives it.

    Wraps a TreeRegistry instead of extending it: the only writes are
    mark_spent() and load(), both of which place a nullifier at its slot.
    """

    def __init__(self, height: Optional[int] = None, hasher: Optional[Hasher] = None,
                 settings: Optional[Settings] = None):
        self._registry = TreeRegistry(height, hasher, settings, name="nullifier")
        self._lock = threading.Lock()

    @property
    def height(self) -> int:
        return self._registry.height

    @property
    def hasher(self) -> Hasher:
        return self._registry.hasher

    @property
    def root(self) -> FieldElement:
        return self._registry.root

    @property
    def capacity(self) -> int:
        return self._registry.capacity

    def snapshot(self) -> MerkleTree:
        return self._registry.snapshot()

    def slot(self, nullifier: Any) -> int:
        return nullifier_slot(nullifier, self.height)

    def is_spent(self, nullifier: Any) -> bool:
        tree = self.snapshot()
        return tree.leaf(self.slot(nullifier)) == nullifier_leaf(nullifier)

    def _spendable_leaf(self, nullifier: Any) -> FieldElement:
        leaf = nullifier_leaf(nullifier)
        if leaf == EMPTY_LEAF:
            raise ValueError("Nullifier 0 is reserved for empty slots")
        return leaf

    def mark_spent(self, nullifier: Any) -> MerkleTree:
        """Record nullifier as spent at its slot.

        Raises:
            SlotCollisionError: If the slot holds a different nullifier;
                overwriting it would make that one spendable again
            ValueError: If the nullifier encodes to 0
        """
        leaf = self._spendable_leaf(nullifier)
        slot = self.slot(nullifier)
        with self._lock:
            tree = self._registry.snapshot()
            current = tree.leaf(slot)
            if current == leaf:
                return tree
            if current != EMPTY_LEAF:
                raise SlotCollisionError(slot)
            tree = self._registry.set_leaf(slot, leaf)
        logger.info("nullifier_marked_spent", slot=slot)
        return tree

    def load(self, nullifiers: Iterable[Any]) -> MerkleTree:
        """Rebuild from a set of spent nullifiers, each placed at its slot.

        Raises:
            SlotCollisionError: If two different nullifiers share a slot
            ValueError: If a nullifier encodes to 0
        """
        leaves = [EMPTY_LEAF] * self.capacity
        for nullifier in nullifiers:
            leaf = self._spendable_leaf(nullifier)
            slot = self.slot(nullifier)
            if leaves[slot] not in (EMPTY_LEAF, leaf):
                raise SlotCollisionError(slot)
            leaves[slot] = leaf
        with self._lock:
            return self._registry.load(leaves)

    def witness(self, nullifier: Any) -> Tuple[FieldElement, MerkleProof, FieldElement]:
        """Non-inclusion witness from one snapshot: (stored_leaf, path, root)."""
        tree = self.snapshot()
        slot = self.slot(nullifier)
        return tree.leaf(slot), tree.get_proof(slot), tree.root
