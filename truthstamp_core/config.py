"""
TOML-based configuration for TruthStamp.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.  The resulting
``TruthStampConfig`` is built once at start-up and passed explicitly to the
components that need it.

Usage:
    from truthstamp_core.config import load_config
    cfg = load_config("truthstamp.toml", network="sepolia")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


NETWORKS: dict[str, dict[str, Any]] = {
    "mainnet": {
        "chain_id": 8453,
        "display_name": "Base Mainnet",
        "explorer_url": "https://basescan.org",
    },
    "sepolia": {
        "chain_id": 84532,
        "display_name": "Base Sepolia",
        "explorer_url": "https://sepolia.basescan.org",
    },
}

DEFAULT_NETWORK = "sepolia"


@dataclass
class NetworkConfig:
    """Where stamps are recorded."""
    name: str = DEFAULT_NETWORK
    display_name: str = "Base Sepolia"
    chain_id: int = 84532
    explorer_url: str = "https://sepolia.basescan.org"
    contract_address: str = ""         # sent to the relay as X-Stamp-Contract when set
    gateway_url: str = ""              # stamp relay endpoint (empty = not configured)
    api_key: str = ""                  # sent as X-API-Key when set
    poll_interval: float = 2.0         # seconds between inclusion polls
    request_timeout: float = 30.0      # per round trip

    @classmethod
    def preset(cls, name: str) -> NetworkConfig:
        if name not in NETWORKS:
            raise ValueError(f"Unknown network {name!r}; expected one of {sorted(NETWORKS)}")
        return cls(name=name, **NETWORKS[name])


@dataclass
class KeystoreConfig:
    """Encrypted wallet location and scrypt cost parameters."""
    path: str = "~/.truth-stamped/wallet.json"
    scrypt_n: int = 2 ** 17
    scrypt_r: int = 8
    scrypt_p: int = 1


@dataclass
class StampConfig:
    """Stamping defaults."""
    tool_name: str = "truth-stamped-cli"
    confirmation_timeout: float | None = None   # None = wait as long as it takes


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "WARNING"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class TruthStampConfig:
    """Top-level configuration container."""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    keystore: KeystoreConfig = field(default_factory=KeystoreConfig)
    stamp: StampConfig = field(default_factory=StampConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None, network: str | None = None) -> TruthStampConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    The network preset is chosen from *network*, then ``TRUTHSTAMP_NETWORK``,
    then ``[network] name`` in the file, defaulting to ``sepolia``.

    Env-var mapping:
        TRUTHSTAMP_NETWORK            -> network preset
        TRUTHSTAMP_GATEWAY_URL        -> network.gateway_url
        TRUTHSTAMP_API_KEY            -> network.api_key
        TRUTH_STAMP_CONTRACT_MAINNET  -> network.contract_address (mainnet)
        TRUTH_STAMP_CONTRACT_SEPOLIA  -> network.contract_address (sepolia)
        TRUTHSTAMP_KEYSTORE           -> keystore.path
        TRUTHSTAMP_LOG_LEVEL          -> logging.level
        TRUTHSTAMP_LOG_FMT            -> logging.format
    """
    data: dict[str, Any] = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)

    file_network = data.get("network", {})
    name = network or os.environ.get("TRUTHSTAMP_NETWORK") or file_network.get("name") or DEFAULT_NETWORK

    cfg = TruthStampConfig(network=NetworkConfig.preset(name))

    # ── TOML file ────────────────────────────────────────────────
    for section_name, section_dc in [
        ("network", cfg.network),
        ("keystore", cfg.keystore),
        ("stamp", cfg.stamp),
        ("logging", cfg.logging),
    ]:
        if section_name in data:
            _merge(section_dc, data[section_name])
    cfg.network.name = name

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get(f"TRUTH_STAMP_CONTRACT_{name.upper()}"):
        cfg.network.contract_address = v
    if v := os.environ.get("TRUTHSTAMP_GATEWAY_URL"):
        cfg.network.gateway_url = v
    if v := os.environ.get("TRUTHSTAMP_API_KEY"):
        cfg.network.api_key = v
    if v := os.environ.get("TRUTHSTAMP_KEYSTORE"):
        cfg.keystore.path = v
    if v := os.environ.get("TRUTHSTAMP_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("TRUTHSTAMP_LOG_FMT"):
        cfg.logging.format = v

    return cfg
