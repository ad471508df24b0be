"""
Shared pytest fixtures for the TruthStamp test suite.
"""

import pytest

from truthstamp_core.gateway import InMemoryLedgerGateway
from truthstamp_core.keystore import KeystoreManager
from truthstamp_core.protocol import StampOrchestrator
from truthstamp_core.wallet import Wallet

# scrypt at n=2**10 keeps each unlock in the low milliseconds
FAST_SCRYPT = {"scrypt_n": 2 ** 10, "scrypt_r": 8, "scrypt_p": 1}

PASSWORD = "correct horse battery"

KEY_ONE = "0x" + "00" * 31 + "01"
KEY_ONE_ADDRESS = "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"


@pytest.fixture
def wallet():
    """Deterministic wallet for private key 1."""
    return Wallet.from_private_key_hex(KEY_ONE)


@pytest.fixture
def keystore(tmp_path):
    """Keystore manager under tmp_path with cheap scrypt parameters."""
    return KeystoreManager(tmp_path / "wallet.json", **FAST_SCRYPT)


@pytest.fixture
def stored_keystore(keystore, wallet):
    """Keystore holding the key-1 wallet, encrypted with PASSWORD."""
    keystore.encrypt_and_persist(wallet, PASSWORD)
    return keystore


@pytest.fixture
def gateway():
    """In-memory gateway that includes stamps on submission, at a fixed time."""
    return InMemoryLedgerGateway(clock=lambda: 1_700_000_000)


@pytest.fixture
def manual_gateway():
    """In-memory gateway whose inclusion is driven by the test."""
    return InMemoryLedgerGateway(clock=lambda: 1_700_000_000, auto_include=False)


@pytest.fixture
def orchestrator(gateway):
    return StampOrchestrator(gateway)


@pytest.fixture
def sample_file(tmp_path):
    path = tmp_path / "report.txt"
    path.write_bytes(b"hello world")
    return path
