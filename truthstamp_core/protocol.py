"""
Stamp protocol orchestration.

Drives one stamping operation through

    FINGERPRINTING → SIGNING → SUBMITTING → CONFIRMING
        → STAMPED | FAILED | UNKNOWN_OUTCOME

against a ``LedgerGateway``.  Submission and confirmation are separate
calls: once ``submit()`` returns a handle the stamp has been broadcast and
cannot be withdrawn, so anything that goes wrong afterwards is reported as
an unknown outcome rather than a failure.

Verification and listing are stateless reads outside the machine.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass

from truthstamp_core.crypto_utils import recover_personal_signer
from truthstamp_core.errors import TruthStampError, UnknownOutcome
from truthstamp_core.fingerprint import fingerprint_digest, fingerprint_file, normalize_fingerprint
from truthstamp_core.gateway import LedgerGateway, PendingStamp, StampRecord, StampState
from truthstamp_core.keystore import KeystoreManager
from truthstamp_core.wallet import Wallet

logger = logging.getLogger("truthstamp_protocol")

DEFAULT_TOOL_NAME = "truth-stamped-cli"


@dataclass
class StampOutcome:
    state: StampState
    fingerprint: str | None = None
    handle: PendingStamp | None = None
    record: StampRecord | None = None
    error: Exception | None = None


class StampOrchestrator:

    def __init__(self, gateway: LedgerGateway, tool_name: str = DEFAULT_TOOL_NAME):
        self.gateway = gateway
        self.tool_name = tool_name

    # ---- building blocks ----

    @staticmethod
    def sign(wallet: Wallet, fingerprint: str) -> str:
        """
        Sign the 32 raw digest bytes behind *fingerprint* as an EIP-191
        personal message; returns ``0x`` + 130 hex (r || s || v).
        """
        return "0x" + wallet.sign_message(fingerprint_digest(fingerprint)).hex()

    def compose_metadata(self, user_metadata: str | None, source_name: str) -> str:
        """Caller metadata verbatim, or a default naming the source file."""
        if user_metadata:
            return user_metadata
        return f"filename:{os.path.basename(source_name)},tool:{self.tool_name}"

    async def submit(self, fingerprint: str, signature: str, metadata: str) -> PendingStamp:
        fp = normalize_fingerprint(fingerprint)
        raw = signature[2:] if signature.startswith("0x") else signature
        try:
            creator = recover_personal_signer(fingerprint_digest(fp), bytes.fromhex(raw))
        except ValueError:
            creator = None  # the gateway decides what to do with a bad signature
        handle = await self.gateway.submit_stamp(fp, signature, metadata)
        logger.info(f"Submitted {fp} as operation {handle}")
        return PendingStamp(
            handle=handle, fingerprint=fp, signature=signature,
            metadata=metadata, creator=creator,
        )

    async def await_confirmation(self, pending: PendingStamp,
                                 timeout: float | None = None) -> StampRecord:
        """
        Wait for *pending* to be included and return the finalized record.

        There is no built-in deadline; *timeout* is whatever the caller
        chooses.  Timeouts and any other failure raise ``UnknownOutcome``.
        Cancellation leaves ``pending.state`` at ``UNKNOWN_OUTCOME`` and
        propagates ``CancelledError``.
        """
        pending.state = StampState.CONFIRMING
        context = {"fingerprint": pending.fingerprint, "handle": pending.handle}
        try:
            waiter = self.gateway.wait_for_inclusion(pending.handle)
            if timeout is None:
                await waiter
            else:
                await asyncio.wait_for(waiter, timeout)
            record = await self.gateway.get_stamp(pending.fingerprint)
        except asyncio.CancelledError:
            pending.state = StampState.UNKNOWN_OUTCOME
            logger.warning(f"Confirmation wait for {pending.handle} cancelled; outcome unknown")
            raise
        except asyncio.TimeoutError as exc:
            pending.state = StampState.UNKNOWN_OUTCOME
            raise UnknownOutcome(
                f"No confirmation within {timeout}s; the stamp may still be recorded",
                **context,
            ) from exc
        except TruthStampError as exc:
            pending.state = StampState.UNKNOWN_OUTCOME
            raise UnknownOutcome(
                f"Confirmation failed after broadcast: {exc}", **context,
            ) from exc
        except Exception as exc:
            pending.state = StampState.UNKNOWN_OUTCOME
            logger.exception(f"Unexpected error while confirming {pending.handle}")
            raise UnknownOutcome(
                f"Confirmation failed after broadcast: {type(exc).__name__}: {exc}",
                **context,
            ) from exc

        if not record.exists:
            pending.state = StampState.UNKNOWN_OUTCOME
            raise UnknownOutcome("Operation reported included but no stamp is readable", **context)
        pending.state = StampState.STAMPED
        logger.info(f"Stamp {pending.fingerprint} confirmed for {record.creator}")
        return record

    # ---- reads ----

    async def verify(self, fingerprint: str) -> StampRecord:
        return await self.gateway.get_stamp(normalize_fingerprint(fingerprint))

    async def list_by_creator(self, address: str) -> list[str]:
        return await self.gateway.get_stamps_by_creator(address)

    async def list_stamps(self, address: str) -> list[StampRecord]:
        """Every stamp of *address* with its details, in gateway order."""
        return [await self.verify(fp) for fp in await self.list_by_creator(address)]

    async def stamp_count(self) -> int:
        return await self.gateway.get_stamp_count()

    # ---- full lifecycle ----

    async def stamp(
        self,
        source: str | os.PathLike,
        keystore: KeystoreManager,
        password: str,
        metadata: str | None = None,
        timeout: float | None = None,
    ) -> StampOutcome:
        """
        Fingerprint *source*, sign with the keystore wallet, submit and
        wait for confirmation.

        Errors before the broadcast give ``FAILED``; errors after it give
        ``UNKNOWN_OUTCOME``.  The error is kept on the outcome so the caller
        can tell a wrong password from a rejected stamp.
        """
        state = StampState.FINGERPRINTING
        fingerprint = None
        try:
            fingerprint = fingerprint_file(source)
            logger.debug(f"Fingerprinted {source}: {fingerprint}")

            state = StampState.SIGNING
            with keystore.unlocked(password) as wallet:
                signature = self.sign(wallet, fingerprint)

            state = StampState.SUBMITTING
            pending = await self.submit(
                fingerprint, signature, self.compose_metadata(metadata, os.fspath(source)),
            )
        except (OSError, TruthStampError) as exc:
            logger.warning(f"Stamping failed while {state.value}: {exc}")
            return StampOutcome(StampState.FAILED, fingerprint=fingerprint, error=exc)

        try:
            record = await self.await_confirmation(pending, timeout)
        except UnknownOutcome as exc:
            return StampOutcome(StampState.UNKNOWN_OUTCOME, fingerprint, pending, error=exc)
        return StampOutcome(StampState.STAMPED, fingerprint, pending, record)
