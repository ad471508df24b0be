"""
Content fingerprinting.

A fingerprint is the SHA-256 digest of the content bytes, rendered as
``0x`` followed by 64 lowercase hex characters.  It depends on the bytes
only: the same bytes read from a file, a socket, or memory always give the
same fingerprint.
"""

from __future__ import annotations

import hashlib
import os
import re
from typing import BinaryIO

from truthstamp_core.errors import InvalidFingerprint

FINGERPRINT_PREFIX = "0x"
FINGERPRINT_LENGTH = 66
DEFAULT_CHUNK_SIZE = 64 * 1024

_HEX64 = re.compile(r"[0-9a-fA-F]{64}")


def fingerprint_bytes(buffer: bytes) -> str:
    """Fingerprint an in-memory byte sequence."""
    return FINGERPRINT_PREFIX + hashlib.sha256(buffer).hexdigest()


def fingerprint_stream(source: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """
    Fingerprint a binary stream, reading it incrementally.

    Read errors are not caught: an ``OSError`` raised by *source* reaches
    the caller unchanged.
    """
    h = hashlib.sha256()
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            break
        h.update(chunk)
    return FINGERPRINT_PREFIX + h.hexdigest()


def fingerprint_file(path: str | os.PathLike, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    with open(path, "rb") as f:
        return fingerprint_stream(f, chunk_size)


def normalize_fingerprint(text: str) -> str:
    """
    Canonicalise a user-supplied fingerprint.

    Accepts the 64 hex digits with or without a ``0x``/``0X`` prefix, in any
    case, and returns the lowercase 66-character wire form.
    """
    body = text.strip()
    if body[:2] in ("0x", "0X"):
        body = body[2:]
    if not _HEX64.fullmatch(body):
        raise InvalidFingerprint(
            "Fingerprint must be 64 hex characters, optionally 0x-prefixed",
            fingerprint=text,
        )
    return FINGERPRINT_PREFIX + body.lower()


def fingerprint_digest(fingerprint: str) -> bytes:
    """The 32 raw digest bytes behind a fingerprint string."""
    return bytes.fromhex(normalize_fingerprint(fingerprint)[2:])
