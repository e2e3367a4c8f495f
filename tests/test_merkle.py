"""
tests/test_merkle.py
Unit tests for tree building, updates, proof extraction and validation.
"""
import json
import random

import pytest
from structlog.testing import capture_logs

from zero_reveal_credentials.crypto import credential_hash, internal_hash, leaf_hash, nullifier_leaf
from zero_reveal_credentials.errors import CapacityError
from zero_reveal_credentials.field import FIELD_MODULUS, reduce
from zero_reveal_credentials.merkle import (
    MerkleProof,
    MerkleTree,
    build_tree,
    create_empty_tree,
    get_proof,
    rebuild_tree,
    update_tree,
    validate_proof,
    zero_hashes,
)


class TestBuildTree:
    """Tree construction tests."""

    def test_layer_shapes(self):
        """Layer l has 2**(height - l) nodes and the top has one."""
        tree = build_tree([1, 2, 3], 3)
        assert [len(layer) for layer in tree.layers] == [8, 4, 2, 1]
        assert tree.capacity == 8

    def test_zero_padding(self):
        """Unused leaves are 0."""
        tree = build_tree([7, 8], 2)
        assert tree.leaves == (7, 8, 0, 0)

    def test_parent_is_h2_of_children(self):
        """Every internal node hashes its two children."""
        tree = build_tree([1, 2, 3, 4], 2)
        assert tree.layers[1][0] == internal_hash(1, 2)
        assert tree.layers[1][1] == internal_hash(3, 4)
        assert tree.root == internal_hash(tree.layers[1][0], tree.layers[1][1])

    def test_string_leaves_encoded(self):
        """String leaves go through the field codec."""
        tree = build_tree(["42", "0x10", "free text"], 2)
        assert tree.leaves[:3] == (42, 16, reduce("free text"))

    def test_pair_leaves_hashed(self):
        """(a, b) pairs become H2(a, b)."""
        tree = build_tree([(1, 2), ["3", "0x4"]], 1)
        assert tree.leaves == (leaf_hash(1, 2), leaf_hash(3, 4))

    def test_bad_pair_rejected(self):
        """Pairs must have exactly two members."""
        with pytest.raises(ValueError, match="exactly 2"):
            build_tree([(1, 2, 3)], 2)

    def test_deterministic_build(self):
        """Same leaves give the same root."""
        assert build_tree([1, 2, 3], 3).root == build_tree([1, 2, 3], 3).root

    def test_leaf_change_changes_root(self):
        """Any leaf change moves the root."""
        assert build_tree([1, 2, 3], 3).root != build_tree([1, 2, 4], 3).root

    def test_height_zero(self):
        """A height-0 tree is its single leaf."""
        tree = build_tree([9], 0)
        assert tree.root == 9
        assert tree.layers == ((9,),)

    def test_invalid_height(self):
        """Height must be a small non-negative integer."""
        for bad in (-1, 33, 2.0, True):
            with pytest.raises(ValueError, match="Tree height"):
                build_tree([], bad)

    def test_overflow_rejected_by_default(self):
        """More leaves than capacity is a capacity error."""
        with pytest.raises(CapacityError, match="exceed tree capacity 4"):
            build_tree([1, 2, 3, 4, 5], 2)

    def test_overflow_truncated_when_allowed(self):
        """Opt-in truncation keeps the first 2**height leaves and logs it."""
        with capture_logs() as logs:
            tree = build_tree([1, 2, 3, 4, 5, 6], 2, truncate=True)
        assert tree.leaves == (1, 2, 3, 4)
        warnings = [e for e in logs if e["event"] == "merkle_leaves_truncated"]
        assert len(warnings) == 1
        assert warnings[0]["dropped"] == 2
        assert warnings[0]["log_level"] == "warning"

    def test_tree_is_immutable(self):
        """Layers are tuples; snapshots cannot be edited in place."""
        tree = build_tree([1, 2], 1)
        with pytest.raises(TypeError):
            tree.layers[0][0] = 5

    def test_custom_hasher(self, hasher):
        """An injected hasher is used for every node."""
        def summing(inputs):
            return sum(inputs) % FIELD_MODULUS

        tree = build_tree([1, 2, 3, 4], 2, hasher=summing)
        assert tree.root == 10
        assert build_tree([1, 2, 3, 4], 2, hasher=hasher).root != 10


class TestEmptyTree:
    """Tests for the all-zero registry state."""

    def test_empty_root_depends_on_height_only(self):
        """Empty roots are reproducible per height."""
        assert create_empty_tree(5).root == create_empty_tree(5).root
        assert create_empty_tree(5).root != create_empty_tree(6).root

    def test_empty_root_matches_zero_hashes(self):
        """Empty root of height h is zeros[h]."""
        zeros = zero_hashes(6)
        assert create_empty_tree(6).root == zeros[6]
        assert zeros[0] == 0
        assert zeros[1] == internal_hash(0, 0)

    def test_empty_equals_explicit_zero_leaves(self):
        """Empty tree equals a tree built from explicit zeros."""
        assert create_empty_tree(3).root == build_tree([0] * 8, 3).root

    def test_large_empty_tree(self):
        """Circuit-sized empty trees are practical to build."""
        tree = create_empty_tree(16)
        assert tree.capacity == 65536
        assert tree.root == zero_hashes(16)[16]


class TestUpdateTree:
    """Single-leaf update tests."""

    def test_update_matches_direct_build(self):
        """Updating index i equals building with leaf i replaced."""
        leaves = [11, 22, 33, 44, 55]
        tree = build_tree(leaves, 3)
        updated = update_tree(tree.layers, 99, 2, 3)

        expected = list(leaves) + [0] * 3
        expected[2] = 99
        assert updated.root == build_tree(expected, 3).root
        assert updated.layers == build_tree(expected, 3).layers

    def test_update_equals_rebuild_everywhere(self):
        """Incremental update and full rebuild agree at every index."""
        rng = random.Random(7)
        leaves = [rng.randrange(FIELD_MODULUS) for _ in range(6)]
        tree = build_tree(leaves, 3)
        for index in range(8):
            new_leaf = rng.randrange(FIELD_MODULUS)
            incremental = update_tree(tree, new_leaf, index, 3)
            full = rebuild_tree(tree, new_leaf, index, 3)
            assert incremental.layers == full.layers

    def test_update_returns_new_value(self):
        """The original snapshot is untouched."""
        tree = build_tree([1, 2], 2)
        updated = update_tree(tree, 5, 0, 2)
        assert tree.leaves[0] == 1
        assert updated.leaves[0] == 5
        assert tree.root != updated.root

    def test_update_accepts_decimal_string_layers(self):
        """Layers loaded from JSON (decimal strings) are accepted."""
        tree = build_tree([1, 2, 3], 2)
        as_strings = tree.to_dict()["layers"]
        assert update_tree(as_strings, 4, 3, 2).root == build_tree([1, 2, 3, 4], 2).root

    def test_update_out_of_range(self):
        """Index at or beyond capacity is a hard error."""
        tree = create_empty_tree(2)
        with pytest.raises(CapacityError, match="Index 4 exceeds tree capacity 4"):
            update_tree(tree.layers, 1, 4, 2)
        with pytest.raises(CapacityError):
            update_tree(tree.layers, 1, -1, 2)
        with pytest.raises(CapacityError):
            rebuild_tree(tree.layers, 1, 4, 2)

    def test_capacity_error_is_index_error(self):
        """Callers catching IndexError still see capacity violations."""
        with pytest.raises(IndexError):
            update_tree(create_empty_tree(1), 1, 2, 1)

    def test_update_height_mismatch(self):
        """Layers of another height are rejected."""
        tree = create_empty_tree(2)
        with pytest.raises(ValueError, match="does not match"):
            update_tree(tree, 1, 0, 3)
        with pytest.raises(ValueError, match="Expected 4 layers"):
            update_tree(tree.layers, 1, 0, 3)


class TestGetProof:
    """Proof extraction tests."""

    def test_proof_shape(self):
        """Proof has height siblings and bits."""
        tree = build_tree([1, 2, 3], 4)
        proof = tree.get_proof(2)
        assert isinstance(proof, MerkleProof)
        assert len(proof.siblings) == 4
        assert len(proof.path_indices) == 4
        assert proof.leaf == 3
        assert proof.leaf_index == 2

    def test_path_bits_are_index_bits(self):
        """Bits are the binary digits of the index, least significant first."""
        tree = create_empty_tree(3)
        assert tree.get_proof(0).path_indices == [0, 0, 0]
        assert tree.get_proof(5).path_indices == [1, 0, 1]
        assert tree.get_proof(7).path_indices == [1, 1, 1]

    def test_first_sibling_is_pair(self):
        """Level-0 sibling is the neighbouring leaf."""
        tree = build_tree([1, 2, 3, 4], 2)
        assert tree.get_proof(0).siblings[0] == 2
        assert tree.get_proof(3).siblings[0] == 3
        assert tree.get_proof(0).siblings[1] == tree.layers[1][1]

    def test_function_and_method_agree(self):
        """get_proof(layers, ...) and tree.get_proof(...) match."""
        tree = build_tree([5, 6, 7], 3)
        assert get_proof(tree.layers, 1, 3) == tree.get_proof(1)
        assert get_proof(tree, 1, 3) == tree.get_proof(1)

    def test_underfull_layers_read_as_zero(self):
        """Missing nodes in degenerate layers become 0."""
        proof = get_proof([[1, 2, 3]], 2, 2)
        assert proof.siblings == [0, 0]
        assert proof.leaf == 3

    def test_out_of_range_index(self):
        """Extraction outside capacity is a hard error."""
        tree = create_empty_tree(2)
        with pytest.raises(CapacityError):
            tree.get_proof(4)
        with pytest.raises(CapacityError):
            get_proof(tree.layers, -1, 2)


class TestValidateProof:
    """Proof validation tests."""

    @pytest.mark.parametrize("height", [1, 2, 3, 4])
    def test_all_indices_validate(self, height):
        """Every extracted proof replays to the root."""
        rng = random.Random(height)
        leaves = [rng.randrange(FIELD_MODULUS) for _ in range(1 << height)]
        tree = build_tree(leaves, height)
        for index in range(1 << height):
            proof = get_proof(tree.layers, index, height)
            assert proof.leaf == leaves[index]
            assert validate_proof(
                leaves[index], proof.siblings, proof.path_indices, tree.root, height
            ) is True

    def test_two_leaf_credential_scenario(self, credential_tree):
        """Height-4 credential tree: valid proof passes, tampered sibling fails."""
        proof = credential_tree.get_proof(0)
        leaf = credential_hash(1, 2, 3, 4)
        assert validate_proof(leaf, proof.siblings, proof.path_indices, credential_tree.root, 4) is True

        proof.siblings[0] = proof.siblings[0] + 1
        assert validate_proof(leaf, proof.siblings, proof.path_indices, credential_tree.root, 4) is False

    def test_any_tampered_sibling_fails(self, credential_tree):
        """Flipping any single sibling breaks the proof."""
        original = credential_tree.get_proof(1)
        for level in range(4):
            siblings = list(original.siblings)
            siblings[level] = (siblings[level] + 1) % FIELD_MODULUS
            assert validate_proof(
                original.leaf, siblings, original.path_indices, credential_tree.root, 4
            ) is False

    def test_flipped_bit_fails(self, credential_tree):
        """Swapping left/right at a level breaks the proof."""
        proof = credential_tree.get_proof(0)
        bits = list(proof.path_indices)
        bits[0] = 1
        assert validate_proof(proof.leaf, proof.siblings, bits, credential_tree.root, 4) is False

    def test_wrong_leaf_fails(self, credential_tree):
        """A different leaf does not reach the root."""
        proof = credential_tree.get_proof(0)
        assert validate_proof(
            credential_hash(1, 2, 3, 5), proof.siblings, proof.path_indices, credential_tree.root, 4
        ) is False

    def test_wrong_root_fails(self, credential_tree):
        """A valid path against another root is rejected."""
        proof = credential_tree.get_proof(0)
        assert validate_proof(proof.leaf, proof.siblings, proof.path_indices, 12345, 4) is False

    def test_wire_strings_accepted(self, credential_tree):
        """Decimal-string siblings and root validate like ints."""
        wire = credential_tree.get_proof(1).to_dict()
        assert validate_proof(
            wire["leaf"], wire["siblings"], wire["pathIndices"], str(credential_tree.root), 4
        ) is True

    def test_short_path_rejected(self, credential_tree):
        """A path shorter than height is rejected, not padded."""
        proof = credential_tree.get_proof(0)
        with capture_logs() as logs:
            result = validate_proof(
                proof.leaf, proof.siblings[:3], proof.path_indices[:3], credential_tree.root, 4
            )
        assert result is False
        assert logs[0]["event"] == "merkle_proof_malformed"

    def test_non_binary_bit_rejected(self, credential_tree):
        """Path bits other than 0/1 are rejected."""
        proof = credential_tree.get_proof(0)
        bits = list(proof.path_indices)
        bits[2] = 2
        assert validate_proof(proof.leaf, proof.siblings, bits, credential_tree.root, 4) is False

    def test_unencodable_value_rejected(self, credential_tree):
        """Garbage values are a rejection, not an exception."""
        proof = credential_tree.get_proof(0)
        siblings = list(proof.siblings)
        siblings[1] = None
        assert validate_proof(proof.leaf, siblings, proof.path_indices, credential_tree.root, 4) is False

    def test_mismatch_is_logged(self, credential_tree):
        """Rejections are visible in logs."""
        proof = credential_tree.get_proof(0)
        with capture_logs() as logs:
            validate_proof(proof.leaf, proof.siblings, proof.path_indices, 1, 4)
        assert any(e["event"] == "merkle_proof_rejected" for e in logs)

    def test_height_zero_proof(self):
        """Empty path: leaf must equal root."""
        assert validate_proof(9, [], [], 9, 0) is True
        assert validate_proof(9, [], [], 8, 0) is False

    def test_proof_verify_method(self, credential_tree):
        """MerkleProof.verify replays against a root."""
        proof = credential_tree.get_proof(1)
        assert proof.verify(credential_tree.root) is True
        assert proof.verify(credential_tree.root + 1) is False


class TestNullifierTreeScenario:
    """Non-inclusion relative to a slot."""

    def test_spent_nullifier_detected(self):
        """Stored leaf at slot 0 is NULLIFIER_A: A is spent, B is not."""
        tree = build_tree([nullifier_leaf("0xNULLIFIER_A")], 4)
        proof = tree.get_proof(0)

        assert validate_proof(proof.leaf, proof.siblings, proof.path_indices, tree.root, 4)
        assert proof.leaf == nullifier_leaf("0xNULLIFIER_A")
        assert proof.leaf != nullifier_leaf("0xNULLIFIER_B")


class TestSerialization:
    """Wire and file shapes."""

    def test_proof_wire_shape(self, credential_tree):
        """{siblings: [str], pathIndices: [int], leaf: str}."""
        proof = credential_tree.get_proof(1)
        data = proof.to_dict()
        assert list(data) == ["siblings", "pathIndices", "leaf"]
        assert all(isinstance(s, str) and s.isdigit() for s in data["siblings"])
        assert data["pathIndices"] == [1, 0, 0, 0]
        assert data["leaf"] == str(credential_hash(5, 6, 7, 8))

    def test_proof_from_dict(self, credential_tree):
        """Parsing the wire shape restores the proof."""
        proof = credential_tree.get_proof(1)
        restored = MerkleProof.from_dict(proof.to_dict(include_index=True))
        assert restored == proof

    def test_proof_to_json(self, credential_tree):
        """JSON form carries the leaf index."""
        data = json.loads(credential_tree.get_proof(3).to_json())
        assert data["leafIndex"] == 3
        assert data["leaf"] == "0"

    def test_tree_to_dict(self):
        """Tree file shape: decimal root and layers."""
        tree = build_tree([1, 2], 1)
        data = tree.to_dict()
        assert data["root"] == str(tree.root)
        assert data["layers"][0] == ["1", "2"]
        assert len(data["layers"]) == 2

    def test_tree_value_equality(self):
        """Trees are compared by value."""
        assert build_tree([1, 2], 1) == build_tree([1, 2], 1)
        assert isinstance(build_tree([1, 2], 1), MerkleTree)
