"""
Wallet management for TruthStamp.

A wallet wraps a secp256k1 key-pair and provides:
  - Address derivation (EIP-55 checksummed)
  - Personal-message signing of content fingerprints
  - Import from a raw hex private key
  - BIP-39 recovery phrases and BIP-32 / BIP-44 derivation
  - Explicit wiping of the private key once signing is done

Wallets are never serialised in plaintext; see ``keystore.py`` for the
encrypted on-disk form.
"""

from __future__ import annotations

import hashlib
import hmac
import struct

from ecdsa import SECP256k1, SigningKey
from mnemonic import Mnemonic

from truthstamp_core.crypto_utils import (
    derive_address,
    generate_keypair,
    hash_personal_message,
    is_valid_private_key,
    public_key_from_private,
    sign,
)
from truthstamp_core.errors import InvalidKeyFormat

# Standard Ethereum account path, also what most wallets use for account 0.
DEFAULT_DERIVATION_PATH = "m/44'/60'/0'/0/0"


# ===================================================================
#  BIP-39 Mnemonic Support
# ===================================================================

_MNEMONIC = Mnemonic("english")


def generate_mnemonic(strength: int = 128) -> str:
    """Generate a new BIP-39 mnemonic phrase (128 bits → 12 words)."""
    if strength not in (128, 160, 192, 224, 256):
        raise ValueError("Strength must be 128/160/192/224/256")
    return _MNEMONIC.generate(strength=strength)


def validate_mnemonic(mnemonic: str) -> bool:
    """Word count, wordlist membership and checksum."""
    return _MNEMONIC.check(" ".join(mnemonic.split()))


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """Convert a mnemonic phrase to a 64-byte seed (BIP-39)."""
    return Mnemonic.to_seed(" ".join(mnemonic.split()), passphrase=passphrase)


# ===================================================================
#  HD Key Derivation (BIP-32 / BIP-44)
# ===================================================================

class HDNode:
    """
    Hierarchical Deterministic key derivation node.

    Implements BIP-32 private derivation with HMAC-SHA512.
    Path notation: m/44'/60'/account'/0/index
    """

    HARDENED = 0x80000000

    def __init__(self, private_key: bytes, chain_code: bytes, depth: int = 0, index: int = 0):
        self.private_key = private_key
        self.chain_code = chain_code
        self.depth = depth
        self.index = index

    @classmethod
    def from_seed(cls, seed: bytes) -> HDNode:
        """Create master node from a BIP-39 seed."""
        I = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        return cls(private_key=I[:32], chain_code=I[32:])

    def derive_child(self, index: int) -> HDNode:
        """Derive a child node at the given index."""
        if index >= self.HARDENED:
            # Hardened: use private key
            data = b"\x00" + self.private_key + struct.pack(">I", index)
        else:
            # Normal: use compressed public key
            data = self._get_compressed_pub() + struct.pack(">I", index)

        I = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        tweak = int.from_bytes(I[:32], "big")
        child_key_int = (tweak + int.from_bytes(self.private_key, "big")) % SECP256k1.order
        if tweak >= SECP256k1.order or child_key_int == 0:
            # BIP-32: invalid child, proceed with the next index
            return self.derive_child(index + 1)

        return HDNode(
            private_key=child_key_int.to_bytes(32, "big"),
            chain_code=I[32:],
            depth=self.depth + 1,
            index=index,
        )

    def derive_path(self, path: str) -> HDNode:
        """
        Derive from a BIP-44 path string like "m/44'/60'/0'/0/0".
        """
        if path == "m":
            return self
        if path.startswith("m/"):
            path = path[2:]

        node = self
        for component in path.split("/"):
            if component.endswith("'"):
                index = int(component[:-1]) + self.HARDENED
            else:
                index = int(component)
            node = node.derive_child(index)
        return node

    def _get_compressed_pub(self) -> bytes:
        """Get compressed (33-byte) public key."""
        sk = SigningKey.from_string(self.private_key, curve=SECP256k1)
        raw = sk.get_verifying_key().to_string()
        x, y = raw[:32], raw[32:]
        prefix = b"\x02" if y[-1] % 2 == 0 else b"\x03"
        return prefix + x

    def to_wallet(self) -> Wallet:
        return Wallet(self.private_key)


# ===================================================================
#  Wallet
# ===================================================================

class Wallet:
    """In-memory signing wallet; the private key can be wiped after use."""

    def __init__(self, private_key: bytes, public_key: bytes | None = None, address: str | None = None):
        if not is_valid_private_key(bytes(private_key)):
            raise InvalidKeyFormat("Private key must be 32 bytes in the range [1, n-1]")
        self._private_key = bytearray(private_key)
        self.public_key = public_key or public_key_from_private(bytes(private_key))
        self.address = address or derive_address(self.public_key)

    # ---- factory methods ----

    @classmethod
    def create(cls) -> Wallet:
        """Generate a brand-new random wallet."""
        priv, pub = generate_keypair()
        return cls(priv, pub)

    @classmethod
    def from_private_key_hex(cls, secret: str) -> Wallet:
        """
        Build a wallet from a hex private key.

        Exactly 64 hex characters, optionally prefixed with ``0x``;
        surrounding whitespace is ignored.
        """
        body = secret.strip()
        if body[:2] in ("0x", "0X"):
            body = body[2:]
        if len(body) != 64:
            raise InvalidKeyFormat(
                f"Private key must be 64 hex characters, got {len(body)}"
            )
        try:
            raw = bytes.fromhex(body)
        except ValueError as exc:
            raise InvalidKeyFormat("Private key is not valid hex") from exc
        return cls(raw)

    @classmethod
    def from_mnemonic(cls, mnemonic: str, passphrase: str = "",
                      account: int = 0, index: int = 0) -> Wallet:
        """
        Create a wallet from a BIP-39 mnemonic phrase using HD derivation.

        Path: m/44'/60'/account'/0/index
        """
        if not validate_mnemonic(mnemonic):
            raise InvalidKeyFormat("Invalid mnemonic phrase")
        seed = mnemonic_to_seed(mnemonic, passphrase)
        master = HDNode.from_seed(seed)
        return master.derive_path(f"m/44'/60'/{account}'/0/{index}").to_wallet()

    @classmethod
    def create_hd(cls, mnemonic: str | None = None,
                  strength: int = 128) -> tuple[str, Wallet]:
        """
        Create an HD wallet, optionally generating a new mnemonic.
        Returns (mnemonic_phrase, wallet).
        """
        if mnemonic is None:
            mnemonic = generate_mnemonic(strength)
        return mnemonic, cls.from_mnemonic(mnemonic)

    # ---- key access ----

    @property
    def private_key(self) -> bytes:
        if self.wiped:
            raise RuntimeError("Wallet key material has been wiped.")
        return bytes(self._private_key)

    @property
    def wiped(self) -> bool:
        return not any(self._private_key)

    def wipe(self) -> None:
        """Overwrite the private key in place."""
        for i in range(len(self._private_key)):
            self._private_key[i] = 0

    def __enter__(self) -> Wallet:
        return self

    def __exit__(self, *exc_info) -> None:
        self.wipe()

    # ---- signing ----

    def sign_digest(self, digest: bytes) -> bytes:
        return sign(self.private_key, digest)

    def sign_message(self, message: bytes) -> bytes:
        """Sign *message* under the EIP-191 personal-message prefix."""
        return self.sign_digest(hash_personal_message(message))

    def __repr__(self) -> str:
        return f"Wallet({self.address})"
