"""
Ledger Gateway interface and stamp records.

The ledger that durably stores stamps is external; TruthStamp only talks to
it through the small async interface below.  Two implementations ship with
the package:

  - ``InMemoryLedgerGateway`` – a local stand-in that enforces the same
    rules the on-chain registry does (recoverable signature, one stamp per
    fingerprint) and lets tests control when operations are included.
  - ``HTTPLedgerGateway`` (``http_gateway.py``) – JSON over HTTP via aiohttp.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from truthstamp_core.crypto_utils import keccak256, recover_personal_signer
from truthstamp_core.errors import InvalidFingerprint, TransactionRejected
from truthstamp_core.fingerprint import fingerprint_digest, normalize_fingerprint

logger = logging.getLogger("truthstamp_gateway")


# ===================================================================
#  Records
# ===================================================================

class StampState(enum.Enum):
    FINGERPRINTING = "fingerprinting"
    SIGNING = "signing"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    STAMPED = "stamped"
    FAILED = "failed"
    UNKNOWN_OUTCOME = "unknown_outcome"


@dataclass(frozen=True)
class StampRecord:
    fingerprint: str
    creator: str = ""
    timestamp: int = 0
    metadata: str = ""
    exists: bool = False

    @classmethod
    def missing(cls, fingerprint: str) -> StampRecord:
        return cls(fingerprint=fingerprint)

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "creator": self.creator,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
            "exists": self.exists,
        }


@dataclass
class PendingStamp:
    """Handle for a broadcast stamp whose inclusion is not yet confirmed."""
    handle: str
    fingerprint: str
    signature: str
    metadata: str
    creator: str | None = None
    submitted_at: float = field(default_factory=time.time)
    state: StampState = StampState.CONFIRMING


# ===================================================================
#  Gateway interface
# ===================================================================

class LedgerGateway(Protocol):
    async def submit_stamp(self, fingerprint: str, signature: str, metadata: str) -> str:
        """Broadcast a stamp; returns an operation handle."""
        ...

    async def wait_for_inclusion(self, handle: str) -> None:
        """Return once the operation is durably included."""
        ...

    async def get_stamp(self, fingerprint: str) -> StampRecord:
        ...

    async def get_stamps_by_creator(self, address: str) -> list[str]:
        ...

    async def get_stamp_count(self) -> int:
        ...


# ===================================================================
#  In-memory gateway
# ===================================================================

@dataclass
class _Operation:
    fingerprint: str
    creator: str
    metadata: str
    signature: str
    included: asyncio.Event = field(default_factory=asyncio.Event)
    error: Exception | None = None


class InMemoryLedgerGateway:
    """
    Process-local ledger with the registry's acceptance rules.

    ``auto_include=True`` includes each stamp as soon as it is submitted;
    with ``False`` the caller drives inclusion through ``include()`` or
    ``fail()``, which is how tests exercise the confirmation window.
    """

    def __init__(self, clock: Callable[[], int] | None = None, auto_include: bool = True):
        self._clock = clock or (lambda: int(time.time()))
        self.auto_include = auto_include
        self._records: dict[str, StampRecord] = {}
        self._by_creator: dict[str, list[str]] = {}
        self._operations: dict[str, _Operation] = {}
        self._nonce = itertools.count()

    async def submit_stamp(self, fingerprint: str, signature: str, metadata: str) -> str:
        try:
            fp = normalize_fingerprint(fingerprint)
        except InvalidFingerprint as exc:
            raise TransactionRejected("Malformed fingerprint", fingerprint=fingerprint) from exc
        try:
            sig = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
            creator = recover_personal_signer(fingerprint_digest(fp), sig)
        except ValueError as exc:
            raise TransactionRejected(f"Invalid signature: {exc}", fingerprint=fp) from exc

        if fp in self._records or any(
            op.fingerprint == fp and op.error is None for op in self._operations.values()
        ):
            raise TransactionRejected("Content already stamped", fingerprint=fp)

        handle = "0x" + keccak256(
            f"{fp}:{signature}:{next(self._nonce)}".encode("utf-8")
        ).hex()
        self._operations[handle] = _Operation(
            fingerprint=fp, creator=creator, metadata=metadata, signature=signature,
        )
        logger.debug(f"Accepted stamp {fp} from {creator} as {handle}")
        if self.auto_include:
            self.include(handle)
        return handle

    def include(self, handle: str) -> StampRecord:
        op = self._operations[handle]
        record = StampRecord(
            fingerprint=op.fingerprint,
            creator=op.creator,
            timestamp=self._clock(),
            metadata=op.metadata,
            exists=True,
        )
        self._records[op.fingerprint] = record
        self._by_creator.setdefault(op.creator.lower(), []).append(op.fingerprint)
        op.included.set()
        return record

    def fail(self, handle: str, reason: str = "Operation reverted") -> None:
        op = self._operations[handle]
        op.error = TransactionRejected(reason, fingerprint=op.fingerprint, handle=handle)
        op.included.set()

    def status(self, handle: str) -> str:
        """``pending``, ``included`` or ``failed``; KeyError for unknown handles."""
        op = self._operations[handle]
        if not op.included.is_set():
            return "pending"
        return "failed" if op.error is not None else "included"

    async def wait_for_inclusion(self, handle: str) -> None:
        op = self._operations.get(handle)
        if op is None:
            raise TransactionRejected("Unknown operation handle", handle=handle)
        await op.included.wait()
        if op.error is not None:
            raise op.error

    async def get_stamp(self, fingerprint: str) -> StampRecord:
        fp = normalize_fingerprint(fingerprint)
        return self._records.get(fp) or StampRecord.missing(fp)

    async def get_stamps_by_creator(self, address: str) -> list[str]:
        return list(self._by_creator.get(address.lower(), []))

    async def get_stamp_count(self) -> int:
        return len(self._records)
