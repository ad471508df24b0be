#!/usr/bin/env python3
"""
TruthStamp runner. Stamp and verify content from the command line:
  - init    create (or --import) a wallet and encrypt it to the keystore
  - stamp   fingerprint a file, sign it and record it on the ledger
  - verify  look up a file or --hash on the ledger
  - list    list the stamps made by an address (default: own wallet)

Usage:
    python run_stamp.py init
    python run_stamp.py stamp report.pdf --metadata "Q3 audit"
    python run_stamp.py verify report.pdf
    python run_stamp.py verify --hash 0xb94d27…
    python run_stamp.py list --network mainnet

Environment variables (alternative to flags):
    TRUTHSTAMP_NETWORK, TRUTHSTAMP_GATEWAY_URL, TRUTHSTAMP_KEYSTORE,
    TRUTH_STAMP_CONTRACT_MAINNET, TRUTH_STAMP_CONTRACT_SEPOLIA
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys
from datetime import datetime

from truthstamp_core.config import NETWORKS, TruthStampConfig, load_config
from truthstamp_core.errors import TruthStampError
from truthstamp_core.fingerprint import fingerprint_file, normalize_fingerprint
from truthstamp_core.gateway import InMemoryLedgerGateway, LedgerGateway, StampState
from truthstamp_core.http_gateway import HTTPLedgerGateway
from truthstamp_core.keystore import KeystoreManager
from truthstamp_core.logging_config import setup_logging
from truthstamp_core.passwords import PromptSecretProvider, SecretProvider, check_password
from truthstamp_core.protocol import StampOrchestrator

logger = logging.getLogger("truthstamp")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_UNKNOWN_OUTCOME = 2


def _format_ts(ts: int) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def build_keystore(cfg: TruthStampConfig) -> KeystoreManager:
    return KeystoreManager(
        cfg.keystore.path,
        scrypt_n=cfg.keystore.scrypt_n,
        scrypt_r=cfg.keystore.scrypt_r,
        scrypt_p=cfg.keystore.scrypt_p,
    )


def build_gateway(cfg: TruthStampConfig, kind: str) -> LedgerGateway:
    if kind == "memory":
        logger.warning("Using the in-memory gateway; stamps are discarded on exit")
        return InMemoryLedgerGateway()
    if not cfg.network.gateway_url:
        raise ValueError(
            f"No gateway configured for {cfg.network.display_name} ({cfg.network.name}). "
            "Set TRUTHSTAMP_GATEWAY_URL or [network] gateway_url."
        )
    return HTTPLedgerGateway.from_config(cfg.network)


# ===================================================================
#  Commands
# ===================================================================

async def cmd_init(args, cfg: TruthStampConfig, secrets: SecretProvider, gateway) -> int:
    keystore = build_keystore(cfg)
    print("\nTruth Stamped wallet setup\n")

    if keystore.exists() and not args.force:
        answer = input("Wallet already exists. Overwrite? (yes/no): ").strip().lower()
        if answer != "yes":
            print("Setup cancelled.")
            return EXIT_OK

    phrase = None
    if args.import_key:
        wallet = keystore.import_from_secret(secrets.get_password("Enter your private key: "))
    else:
        wallet, phrase = keystore.create_keypair(with_recovery_phrase=True)

    with wallet:
        password = check_password(
            secrets.get_password("Enter password to encrypt wallet: ", confirm=True)
        )
        keystore.encrypt_and_persist(wallet, password)
        address = wallet.address

    print("\nWallet created.")
    print(f"Address:  {address}")
    print(f"Keystore: {keystore.path}")
    if phrase:
        print("\nIMPORTANT: write down your recovery phrase. It is shown only once:\n")
        print(f"  {phrase}\n")
    return EXIT_OK


async def cmd_stamp(args, cfg: TruthStampConfig, secrets: SecretProvider, gateway) -> int:
    if not os.path.isfile(args.file):
        print(f"Error: File not found: {args.file}")
        return EXIT_FAILED

    keystore = build_keystore(cfg)
    orchestrator = StampOrchestrator(gateway, tool_name=cfg.stamp.tool_name)

    print(f"Content hash: {fingerprint_file(args.file)}")
    password = secrets.get_password("Enter wallet password: ")
    outcome = await orchestrator.stamp(
        args.file, keystore, password,
        metadata=args.metadata,
        timeout=args.timeout if args.timeout is not None else cfg.stamp.confirmation_timeout,
    )

    if outcome.state is StampState.STAMPED:
        record = outcome.record
        print("\nContent successfully stamped.")
        print(f"Content hash: {record.fingerprint}")
        print(f"Creator:      {record.creator}")
        print(f"Timestamp:    {_format_ts(record.timestamp)}")
        print(f"Metadata:     {record.metadata}")
        print(f"Network:      {cfg.network.display_name}")
        print(f"Operation:    {cfg.network.explorer_url}/tx/{outcome.handle.handle}")
        return EXIT_OK
    if outcome.state is StampState.UNKNOWN_OUTCOME:
        print(f"\nStamp broadcast as {outcome.handle.handle} but not confirmed: {outcome.error}")
        print("Run 'verify' later before stamping this content again.")
        return EXIT_UNKNOWN_OUTCOME
    print(f"\nError: {outcome.error}")
    return EXIT_FAILED


async def cmd_verify(args, cfg: TruthStampConfig, secrets: SecretProvider, gateway) -> int:
    if args.hash:
        fingerprint = normalize_fingerprint(args.hash)
    elif args.file:
        if not os.path.isfile(args.file):
            print(f"Error: File not found: {args.file}")
            return EXIT_FAILED
        fingerprint = fingerprint_file(args.file)
        print(f"Content hash: {fingerprint}")
    else:
        print("Error: Either --hash or a file path must be provided")
        return EXIT_FAILED

    orchestrator = StampOrchestrator(gateway)
    record = await orchestrator.verify(fingerprint)
    if not record.exists:
        print("\nContent NOT verified: it has not been stamped.")
        return EXIT_OK

    print("\nContent VERIFIED")
    print(f"Content hash: {record.fingerprint}")
    print(f"Creator:      {record.creator}")
    print(f"Timestamp:    {_format_ts(record.timestamp)}")
    print(f"Metadata:     {record.metadata or 'None'}")
    print(f"Creator page: {cfg.network.explorer_url}/address/{record.creator}")
    return EXIT_OK


async def cmd_list(args, cfg: TruthStampConfig, secrets: SecretProvider, gateway) -> int:
    address = args.address or build_keystore(cfg).stored_address()
    print(f"Address: {address}")

    orchestrator = StampOrchestrator(gateway)
    records = await orchestrator.list_stamps(address)
    if not records:
        print("\nNo stamps found for this address.")
        return EXIT_OK

    print(f"\nFound {len(records)} stamp(s):\n")
    for i, record in enumerate(records, 1):
        print(f"{i}. Content hash: {record.fingerprint}")
        print(f"   Timestamp: {_format_ts(record.timestamp)}")
        print(f"   Metadata:  {record.metadata or 'None'}")
    return EXIT_OK


COMMANDS = {
    "init": cmd_init,
    "stamp": cmd_stamp,
    "verify": cmd_verify,
    "list": cmd_list,
}


# ===================================================================
#  Main entry point
# ===================================================================

def parse_args(argv=None):
    p = argparse.ArgumentParser(
        prog="truth-stamped",
        description="Stamp and verify content authenticity on a ledger",
    )
    p.add_argument("--config", default=None, help="Path to truthstamp.toml config file")
    p.add_argument("--network", choices=sorted(NETWORKS), default=None,
                   help="Network preset (default: sepolia)")
    p.add_argument("--keystore", default=None, help="Keystore file path")
    p.add_argument("--gateway", choices=["http", "memory"], default="http",
                   help="Ledger gateway backend")
    p.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    sub = p.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Create or import a wallet")
    init.add_argument("--import", dest="import_key", action="store_true",
                      help="Import an existing private key")
    init.add_argument("--force", action="store_true", help="Overwrite without asking")

    stamp = sub.add_parser("stamp", help="Stamp a file")
    stamp.add_argument("file")
    stamp.add_argument("--metadata", default=None, help="Free-form metadata")
    stamp.add_argument("--timeout", type=float, default=None,
                       help="Seconds to wait for confirmation (default: no limit)")

    verify = sub.add_parser("verify", help="Verify a file or hash")
    verify.add_argument("file", nargs="?")
    verify.add_argument("--hash", default=None, help="Content hash to look up")

    lst = sub.add_parser("list", help="List stamps by creator")
    lst.add_argument("--address", default=None, help="Creator address (default: own wallet)")
    return p.parse_args(argv)


async def main(argv=None, secrets: SecretProvider | None = None, gateway=None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config, network=args.network)
    if args.keystore:
        cfg.keystore.path = args.keystore
    if args.log_level:
        cfg.logging.level = args.log_level.upper()
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    secrets = secrets or PromptSecretProvider()
    owned = None
    try:
        if gateway is None and args.command != "init":
            gateway = owned = build_gateway(cfg, args.gateway)
        return await COMMANDS[args.command](args, cfg, secrets, gateway)
    except (TruthStampError, ValueError, OSError) as e:
        print(f"\nError: {e}")
        return EXIT_FAILED
    finally:
        if isinstance(owned, HTTPLedgerGateway):
            await owned.close()


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    main_sync()
