"""
zero_reveal_credentials/errors.py
Exception hierarchy for tree, proof and verification failures.

Proof mismatches are not exceptions: validators return False.
"""


class ZeroRevealError(Exception):
    """Base class for all library errors."""


class CapacityError(ZeroRevealError, IndexError):
    """Leaf index or leaf count exceeds the tree capacity of 2**height."""

    def __init__(self, index: int, capacity: int, message: str = None):
        self.index = index
        self.capacity = capacity
        super().__init__(
            message or f"Index {index} exceeds tree capacity {capacity}"
        )


class HashUnavailableError(ZeroRevealError, RuntimeError):
    """Hash backend missing or misbehaving."""


class ConstraintError(ZeroRevealError, ValueError):
    """A value that must be boolean (0/1) is not."""


class SlotCollisionError(ZeroRevealError, ValueError):
    """Nullifier slot already holds a different nullifier."""

    def __init__(self, slot: int):
        self.slot = slot
        super().__init__(f"Nullifier slot {slot} is already occupied")


class ArtifactError(ZeroRevealError, ValueError):
    """Tree or proof file is malformed or inconsistent."""


class KeyMaterialError(ZeroRevealError, ValueError):
    """Public key or signature is not raw bytes or a valid hex string."""
