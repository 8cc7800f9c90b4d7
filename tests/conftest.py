"""Shared fixtures for the Strongbox test suite."""

import pytest

from strongbox.crypto import KdfParams
from strongbox.providers import MemoryStore
from strongbox.sync_state import SyncStateStore
from strongbox.vault import Vault

# scrypt at production cost takes ~100ms per derivation; tests use a toy cost.
FAST_KDF = KdfParams(log2_n=4, r=8, p=1)
SECRET = "correct horse battery staple"


@pytest.fixture
def fast_kdf():
    return FAST_KDF


@pytest.fixture
def secret():
    return SECRET


@pytest.fixture
def remote_store():
    return MemoryStore()


@pytest.fixture
def make_vault(tmp_path):
    """Create a vault for a named 'device' with its own sync state file."""
    def _make(device="a", name="book.sbx"):
        root = tmp_path / device
        return Vault.create(
            root / name,
            SECRET,
            kdf=FAST_KDF,
            state_store=SyncStateStore(root / "sync_state.json"),
        )
    return _make
