"""
TruthStamp - signed, ledger-recorded proof that content existed.

Key features:
- SHA-256 content fingerprints, streamed from files of any size
- secp256k1 wallets with BIP-39 recovery phrases
- scrypt + AES-256-GCM password-encrypted keystore
- EIP-191 personal-message signatures over fingerprints
- Submit / confirm / verify lifecycle against a pluggable ledger gateway
"""

__version__ = "0.1.0"
__all__ = [
    "config",
    "crypto_utils",
    "errors",
    "fingerprint",
    "gateway",
    "http_gateway",
    "keystore",
    "logging_config",
    "passwords",
    "protocol",
    "wallet",
]
