"""
tests/conftest.py
Shared fixtures for tree, registry and verification tests.
"""
import pytest

from zero_reveal_credentials.config import get_settings
from zero_reveal_credentials.crypto import Sha256FieldHasher, credential_hash
from zero_reveal_credentials.merkle import build_tree
from zero_reveal_credentials.verify import generate_keypair

HEIGHT = 4


@pytest.fixture
def hasher():
    """Explicitly constructed default backend."""
    return Sha256FieldHasher()


@pytest.fixture
def credential_leaves():
    """The two credential leaves used across end-to-end scenarios."""
    return [credential_hash(1, 2, 3, 4), credential_hash(5, 6, 7, 8)]


@pytest.fixture
def credential_tree(credential_leaves):
    """Height-4 credential tree holding the two leaves at indices 0 and 1."""
    return build_tree(credential_leaves, HEIGHT)


@pytest.fixture
def keypair():
    """Fresh Ed25519 (private_seed, public_key) pair."""
    return generate_keypair()


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are lru_cached; keep env overrides from leaking between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
