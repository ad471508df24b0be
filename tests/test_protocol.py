"""
Tests for truthstamp_core.protocol: the stamp / confirm / verify lifecycle.

Covers:
  - Signing and metadata composition
  - submit() + await_confirmation() transitions
  - Timeouts, gateway failures and cancellation after broadcast
  - stamp() outcomes for each failure kind
  - verify() and listing
"""

import asyncio

import pytest

from truthstamp_core.crypto_utils import recover_personal_signer
from truthstamp_core.errors import (
    InvalidFingerprint,
    KeystoreNotFound,
    NetworkError,
    TransactionRejected,
    UnknownOutcome,
    WrongPassword,
)
from truthstamp_core.fingerprint import fingerprint_bytes, fingerprint_digest
from truthstamp_core.gateway import InMemoryLedgerGateway, StampRecord, StampState
from truthstamp_core.protocol import DEFAULT_TOOL_NAME, StampOrchestrator

from conftest import KEY_ONE_ADDRESS, PASSWORD

HELLO_FP = "0xb94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9"


class _FlakyGateway(InMemoryLedgerGateway):
    """Accepts submissions, then loses contact while confirming."""

    async def wait_for_inclusion(self, handle):
        raise NetworkError("connection reset", handle=handle)


class _VanishingGateway(InMemoryLedgerGateway):
    """Reports inclusion but never returns the record."""

    async def get_stamp(self, fingerprint):
        return StampRecord.missing(fingerprint)


class _GarbledGateway(InMemoryLedgerGateway):
    """Includes the operation, then fails to decode the record."""

    async def get_stamp(self, fingerprint):
        raise TypeError("int() argument must be a string or a number, not 'NoneType'")


class _DownGateway(InMemoryLedgerGateway):
    async def submit_stamp(self, fingerprint, signature, metadata):
        raise NetworkError("connection refused")


# ═══════════════════════════════════════════════════════════════════
#  Building blocks
# ═══════════════════════════════════════════════════════════════════

class TestSigning:

    def test_sign_format(self, wallet):
        sig = StampOrchestrator.sign(wallet, HELLO_FP)
        assert sig.startswith("0x")
        assert len(sig) == 2 + 130
        assert sig[-2:] in ("1b", "1c")

    def test_sign_recovers_to_wallet(self, wallet):
        sig = StampOrchestrator.sign(wallet, HELLO_FP)
        signer = recover_personal_signer(fingerprint_digest(HELLO_FP), bytes.fromhex(sig[2:]))
        assert signer == KEY_ONE_ADDRESS

    def test_sign_is_deterministic(self, wallet):
        assert StampOrchestrator.sign(wallet, HELLO_FP) == StampOrchestrator.sign(wallet, HELLO_FP)

    def test_sign_accepts_unprefixed_fingerprint(self, wallet):
        assert StampOrchestrator.sign(wallet, HELLO_FP[2:]) == StampOrchestrator.sign(wallet, HELLO_FP)

    def test_sign_rejects_bad_fingerprint(self, wallet):
        with pytest.raises(InvalidFingerprint):
            StampOrchestrator.sign(wallet, "0x12")


class TestMetadata:

    def test_user_metadata_verbatim(self, orchestrator):
        text = "name:a,b;c=\"quoted\""
        assert orchestrator.compose_metadata(text, "/tmp/x.pdf") == text

    def test_default_names_file_and_tool(self, orchestrator):
        meta = orchestrator.compose_metadata(None, "/some/dir/report.pdf")
        assert meta == f"filename:report.pdf,tool:{DEFAULT_TOOL_NAME}"

    def test_empty_metadata_uses_default(self, orchestrator):
        assert orchestrator.compose_metadata("", "a.txt").startswith("filename:a.txt,")

    def test_custom_tool_name(self, gateway):
        orch = StampOrchestrator(gateway, tool_name="ci-bot")
        assert orch.compose_metadata(None, "a.txt") == "filename:a.txt,tool:ci-bot"


# ═══════════════════════════════════════════════════════════════════
#  Submit and confirm
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestSubmitConfirm:

    async def test_verify_before_and_after(self, orchestrator, wallet):
        before = await orchestrator.verify(HELLO_FP)
        assert before.exists is False

        sig = orchestrator.sign(wallet, HELLO_FP)
        pending = await orchestrator.submit(HELLO_FP, sig, "m")
        assert pending.creator == KEY_ONE_ADDRESS
        assert pending.state is StampState.CONFIRMING

        record = await orchestrator.await_confirmation(pending)
        assert pending.state is StampState.STAMPED
        assert record.exists
        assert record.creator == KEY_ONE_ADDRESS
        assert record.metadata == "m"
        assert record.timestamp == 1_700_000_000

        after = await orchestrator.verify(HELLO_FP[2:].upper())
        assert after == record

    async def test_submit_normalizes_fingerprint(self, orchestrator, wallet):
        sig = orchestrator.sign(wallet, HELLO_FP)
        pending = await orchestrator.submit("0X" + HELLO_FP[2:].upper(), sig, "")
        assert pending.fingerprint == HELLO_FP

    async def test_submit_rejected_raises(self, orchestrator, wallet):
        sig = orchestrator.sign(wallet, HELLO_FP)
        await orchestrator.submit(HELLO_FP, sig, "")
        with pytest.raises(TransactionRejected):
            await orchestrator.submit(HELLO_FP, sig, "")

    async def test_submit_bad_signature_raises(self, orchestrator):
        with pytest.raises(TransactionRejected):
            await orchestrator.submit(HELLO_FP, "0x" + "ab" * 10, "")

    async def test_waits_for_manual_inclusion(self, manual_gateway, wallet):
        orch = StampOrchestrator(manual_gateway)
        pending = await orch.submit(HELLO_FP, orch.sign(wallet, HELLO_FP), "")
        waiter = asyncio.create_task(orch.await_confirmation(pending))
        await asyncio.sleep(0)
        assert not waiter.done()
        assert pending.state is StampState.CONFIRMING

        manual_gateway.include(pending.handle)
        record = await asyncio.wait_for(waiter, 1)
        assert record.exists
        assert pending.state is StampState.STAMPED

    async def test_timeout_is_unknown_outcome(self, manual_gateway, wallet):
        orch = StampOrchestrator(manual_gateway)
        pending = await orch.submit(HELLO_FP, orch.sign(wallet, HELLO_FP), "")
        with pytest.raises(UnknownOutcome) as exc:
            await orch.await_confirmation(pending, timeout=0.01)
        assert pending.state is StampState.UNKNOWN_OUTCOME
        assert exc.value.context["handle"] == pending.handle

        # the stamp may still land later
        manual_gateway.include(pending.handle)
        assert (await orch.verify(HELLO_FP)).exists

    async def test_explicit_failure_after_broadcast_is_unknown_outcome(self, manual_gateway, wallet):
        orch = StampOrchestrator(manual_gateway)
        pending = await orch.submit(HELLO_FP, orch.sign(wallet, HELLO_FP), "")
        manual_gateway.fail(pending.handle, "reverted")
        with pytest.raises(UnknownOutcome) as exc:
            await orch.await_confirmation(pending)
        assert isinstance(exc.value.__cause__, TransactionRejected)
        assert pending.state is StampState.UNKNOWN_OUTCOME

    async def test_network_loss_after_broadcast_is_unknown_outcome(self, wallet):
        orch = StampOrchestrator(_FlakyGateway())
        pending = await orch.submit(HELLO_FP, orch.sign(wallet, HELLO_FP), "")
        with pytest.raises(UnknownOutcome) as exc:
            await orch.await_confirmation(pending)
        assert isinstance(exc.value.__cause__, NetworkError)

    async def test_included_but_unreadable_is_unknown_outcome(self, wallet):
        orch = StampOrchestrator(_VanishingGateway())
        pending = await orch.submit(HELLO_FP, orch.sign(wallet, HELLO_FP), "")
        with pytest.raises(UnknownOutcome):
            await orch.await_confirmation(pending)

    async def test_unexpected_error_after_broadcast_is_unknown_outcome(self, wallet):
        orch = StampOrchestrator(_GarbledGateway())
        pending = await orch.submit(HELLO_FP, orch.sign(wallet, HELLO_FP), "")
        with pytest.raises(UnknownOutcome) as exc:
            await orch.await_confirmation(pending)
        assert isinstance(exc.value.__cause__, TypeError)
        assert exc.value.context["handle"] == pending.handle
        assert pending.state is StampState.UNKNOWN_OUTCOME

    async def test_cancellation_leaves_unknown_outcome(self, manual_gateway, wallet):
        orch = StampOrchestrator(manual_gateway)
        pending = await orch.submit(HELLO_FP, orch.sign(wallet, HELLO_FP), "")
        waiter = asyncio.create_task(orch.await_confirmation(pending))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert pending.state is StampState.UNKNOWN_OUTCOME

        # the broadcast operation is unaffected by the cancelled wait
        manual_gateway.include(pending.handle)
        assert (await orch.verify(HELLO_FP)).exists


# ═══════════════════════════════════════════════════════════════════
#  Full lifecycle
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestStampLifecycle:

    async def test_stamped(self, orchestrator, stored_keystore, sample_file):
        outcome = await orchestrator.stamp(sample_file, stored_keystore, PASSWORD)
        assert outcome.state is StampState.STAMPED
        assert outcome.fingerprint == HELLO_FP
        assert outcome.error is None
        assert outcome.record.creator == KEY_ONE_ADDRESS
        assert outcome.record.metadata == f"filename:report.txt,tool:{DEFAULT_TOOL_NAME}"
        assert outcome.handle.state is StampState.STAMPED

    async def test_user_metadata(self, orchestrator, stored_keystore, sample_file):
        outcome = await orchestrator.stamp(sample_file, stored_keystore, PASSWORD, metadata="Q3 audit")
        assert outcome.record.metadata == "Q3 audit"

    async def test_wrong_password_fails_before_broadcast(
        self, orchestrator, stored_keystore, sample_file,
    ):
        outcome = await orchestrator.stamp(sample_file, stored_keystore, "wrong password")
        assert outcome.state is StampState.FAILED
        assert isinstance(outcome.error, WrongPassword)
        assert outcome.fingerprint == HELLO_FP
        assert outcome.handle is None
        assert await orchestrator.stamp_count() == 0

    async def test_missing_keystore_fails(self, orchestrator, keystore, sample_file):
        outcome = await orchestrator.stamp(sample_file, keystore, PASSWORD)
        assert outcome.state is StampState.FAILED
        assert isinstance(outcome.error, KeystoreNotFound)

    async def test_missing_file_fails(self, orchestrator, stored_keystore, tmp_path):
        outcome = await orchestrator.stamp(tmp_path / "missing.txt", stored_keystore, PASSWORD)
        assert outcome.state is StampState.FAILED
        assert outcome.fingerprint is None
        assert isinstance(outcome.error, FileNotFoundError)

    async def test_already_stamped_fails(self, orchestrator, stored_keystore, sample_file):
        await orchestrator.stamp(sample_file, stored_keystore, PASSWORD)
        outcome = await orchestrator.stamp(sample_file, stored_keystore, PASSWORD)
        assert outcome.state is StampState.FAILED
        assert isinstance(outcome.error, TransactionRejected)

    async def test_gateway_down_fails(self, stored_keystore, sample_file):
        outcome = await StampOrchestrator(_DownGateway()).stamp(
            sample_file, stored_keystore, PASSWORD,
        )
        assert outcome.state is StampState.FAILED
        assert isinstance(outcome.error, NetworkError)

    async def test_timeout_gives_unknown_outcome(self, manual_gateway, stored_keystore, sample_file):
        orch = StampOrchestrator(manual_gateway)
        outcome = await orch.stamp(sample_file, stored_keystore, PASSWORD, timeout=0.01)
        assert outcome.state is StampState.UNKNOWN_OUTCOME
        assert isinstance(outcome.error, UnknownOutcome)
        assert outcome.handle is not None
        assert manual_gateway.status(outcome.handle.handle) == "pending"

    async def test_two_identical_files_share_fingerprint(
        self, orchestrator, stored_keystore, sample_file, tmp_path,
    ):
        copy = tmp_path / "copy.txt"
        copy.write_bytes(sample_file.read_bytes())
        await orchestrator.stamp(sample_file, stored_keystore, PASSWORD)
        record = await orchestrator.verify(fingerprint_bytes(copy.read_bytes()))
        assert record.exists


# ═══════════════════════════════════════════════════════════════════
#  Reads
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestReads:

    async def test_verify_rejects_bad_fingerprint(self, orchestrator):
        with pytest.raises(InvalidFingerprint):
            await orchestrator.verify("not a hash")

    async def test_list_stamps(self, orchestrator, wallet):
        fps = [fingerprint_bytes(b"file-%d" % i) for i in range(3)]
        for fp in fps:
            pending = await orchestrator.submit(fp, orchestrator.sign(wallet, fp), fp[-4:])
            await orchestrator.await_confirmation(pending)

        assert await orchestrator.list_by_creator(KEY_ONE_ADDRESS) == fps
        records = await orchestrator.list_stamps(KEY_ONE_ADDRESS)
        assert [r.fingerprint for r in records] == fps
        assert [r.metadata for r in records] == [fp[-4:] for fp in fps]
        assert await orchestrator.stamp_count() == 3

    async def test_list_empty(self, orchestrator):
        assert await orchestrator.list_stamps("0x" + "00" * 20) == []
