"""
Cryptographic utilities for TruthStamp.

Provides:
  - SHA-256 / Keccak-256 hashing
  - secp256k1 key-pair generation and validation
  - Ethereum-style address derivation with EIP-55 checksums
  - EIP-191 "personal message" hashing
  - Recoverable ECDSA signatures (r || s || v) and signer recovery

Signatures are deterministic (RFC 6979 with HMAC-SHA256) and low-s
canonical, so they match what other secp256k1 wallets produce for the same
key and message.
"""

from __future__ import annotations

import hashlib
import os

from Crypto.Hash import keccak
from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.numbertheory import SquareRootError
from ecdsa.util import sigdecode_string, sigencode_string_canonize

CURVE_ORDER = SECP256k1.order

PRIVATE_KEY_LENGTH = 32
PUBLIC_KEY_LENGTH = 65          # uncompressed, 0x04 prefix
SIGNATURE_LENGTH = 65           # r(32) || s(32) || v(1)

PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n"


# ===================================================================
#  Hashing
# ===================================================================

def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def keccak256(data: bytes) -> bytes:
    """Keccak-256 as used by Ethereum (not the NIST SHA3-256 padding)."""
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def hash_personal_message(message: bytes) -> bytes:
    """
    EIP-191 version 0x45 digest of *message*.

    ``keccak256(b"\\x19Ethereum Signed Message:\\n" + len(message) + message)``
    where the length is rendered in ASCII decimal.  The prefix keeps a
    signature over user content from ever doubling as a signature over a
    raw ledger transaction.
    """
    prefix = PERSONAL_MESSAGE_PREFIX + str(len(message)).encode("ascii")
    return keccak256(prefix + message)


# ===================================================================
#  Keys and addresses
# ===================================================================

def is_valid_private_key(private_key: bytes) -> bool:
    if len(private_key) != PRIVATE_KEY_LENGTH:
        return False
    secret = int.from_bytes(private_key, "big")
    return 0 < secret < CURVE_ORDER


def generate_keypair() -> tuple[bytes, bytes]:
    """Generate a secp256k1 key-pair. Returns (private_key, public_key)."""
    while True:
        private_key = os.urandom(PRIVATE_KEY_LENGTH)
        if is_valid_private_key(private_key):
            return private_key, public_key_from_private(private_key)


def public_key_from_private(private_key: bytes) -> bytes:
    """65-byte uncompressed public key for a 32-byte private key."""
    if not is_valid_private_key(private_key):
        raise ValueError("Private key must be 32 bytes in the range [1, n-1]")
    sk = SigningKey.from_string(bytes(private_key), curve=SECP256k1)
    return b"\x04" + sk.get_verifying_key().to_string()


def to_checksum_address(address: str) -> str:
    """Apply EIP-55 mixed-case checksumming to a 20-byte hex address."""
    body = address[2:] if address[:2].lower() == "0x" else address
    body = body.lower()
    if len(body) != 40 or any(c not in "0123456789abcdef" for c in body):
        raise ValueError(f"Not a 20-byte hex address: {address!r}")
    digest = keccak256(body.encode("ascii")).hex()
    return "0x" + "".join(
        c.upper() if int(digest[i], 16) >= 8 else c
        for i, c in enumerate(body)
    )


def derive_address(public_key: bytes) -> str:
    """Address = last 20 bytes of keccak256(pubkey without the 0x04 prefix)."""
    if len(public_key) != PUBLIC_KEY_LENGTH or public_key[0] != 0x04:
        raise ValueError("Expected a 65-byte uncompressed public key")
    return to_checksum_address(keccak256(public_key[1:])[-20:].hex())


def addresses_equal(a: str, b: str) -> bool:
    return a.lower() == b.lower()


# ===================================================================
#  Recoverable signatures
# ===================================================================

def sign(private_key: bytes, digest: bytes) -> bytes:
    """
    Sign a 32-byte digest and return ``r || s || v`` with ``v`` in {27, 28}.
    """
    if len(digest) != 32:
        raise ValueError("Digest must be exactly 32 bytes")
    sk = SigningKey.from_string(bytes(private_key), curve=SECP256k1)
    rs = sk.sign_digest_deterministic(
        digest, hashfunc=hashlib.sha256, sigencode=sigencode_string_canonize,
    )
    own = sk.get_verifying_key().to_string()
    for recovery_id, candidate in enumerate(_recover_candidates(rs, digest)):
        if candidate.to_string() == own:
            return rs + bytes([27 + recovery_id])
    raise ValueError("Could not determine recovery id for signature")


def recover_public_key(digest: bytes, signature: bytes) -> bytes:
    """Recover the 65-byte public key that produced *signature* over *digest*."""
    if len(digest) != 32:
        raise ValueError("Digest must be exactly 32 bytes")
    if len(signature) != SIGNATURE_LENGTH:
        raise ValueError(f"Signature must be {SIGNATURE_LENGTH} bytes")
    v = signature[64]
    recovery_id = v - 27 if v >= 27 else v
    if recovery_id not in (0, 1):
        raise ValueError(f"Invalid recovery byte: {v}")
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    if not (0 < r < CURVE_ORDER and 0 < s < CURVE_ORDER):
        raise ValueError("Signature scalars out of range")
    try:
        candidates = _recover_candidates(signature[:64], digest)
    except (SquareRootError, MalformedPointError, ArithmeticError) as exc:
        raise ValueError("Signature does not recover to a valid public key") from exc
    return b"\x04" + candidates[recovery_id].to_string()


def recover_address(digest: bytes, signature: bytes) -> str:
    return derive_address(recover_public_key(digest, signature))


def recover_personal_signer(message: bytes, signature: bytes) -> str:
    """Address that signed *message* under the personal-message prefix."""
    return recover_address(hash_personal_message(message), signature)


def verify(public_key: bytes, digest: bytes, signature: bytes) -> bool:
    """True if *signature* over *digest* recovers to *public_key*."""
    try:
        return recover_public_key(digest, signature) == public_key
    except ValueError:
        return False


def _recover_candidates(rs: bytes, digest: bytes) -> list[VerifyingKey]:
    # ecdsa returns the candidate for an even R.y first, which is
    # recovery id 0 in the Ethereum convention.
    return VerifyingKey.from_public_key_recovery_with_digest(
        rs, digest, SECP256k1, hashfunc=hashlib.sha256, sigdecode=sigdecode_string,
    )
