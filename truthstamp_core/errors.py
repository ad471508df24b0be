"""
Error kinds raised by the TruthStamp core.

Every error carries a short ``kind`` tag and a ``context`` dict holding the
values a caller needs to decide between retrying, re-prompting for a
password, or aborting (keystore path, address, fingerprint, operation
handle).  Where a kind has a natural built-in counterpart the class also
derives from it, so ``except FileNotFoundError`` / ``except ValueError``
keep working for generic callers.
"""

from __future__ import annotations

from typing import Any


class TruthStampError(Exception):
    """Base class for every error raised by ``truthstamp_core``."""

    kind = "error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{self.message} ({details})"


# ── Keystore ─────────────────────────────────────────────────────────

class KeystoreNotFound(TruthStampError, FileNotFoundError):
    kind = "keystore_not_found"


class WrongPassword(TruthStampError):
    kind = "wrong_password"


class CorruptKeystore(TruthStampError):
    kind = "corrupt_keystore"


class InvalidKeyFormat(TruthStampError, ValueError):
    kind = "invalid_key_format"


class KeystoreIOError(TruthStampError, OSError):
    kind = "io_error"


class WeakPassword(TruthStampError, ValueError):
    kind = "weak_password"


# ── Fingerprints ─────────────────────────────────────────────────────

class InvalidFingerprint(TruthStampError, ValueError):
    kind = "invalid_fingerprint"


# ── Ledger gateway ───────────────────────────────────────────────────

class NetworkError(TruthStampError, ConnectionError):
    kind = "network_error"


class TransactionRejected(TruthStampError):
    kind = "transaction_rejected"


class UnknownOutcome(TruthStampError):
    """The stamp was broadcast but its fate could not be confirmed.

    The submission cannot be withdrawn and may still land; callers should
    ``verify()`` the fingerprint later instead of resubmitting blindly.
    """

    kind = "unknown_outcome"
