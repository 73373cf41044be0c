"""
TOML-based configuration for PhiWallet.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from phiwallet_core.config import load_config
    cfg = load_config("phiwallet.toml")
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
    import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class ChainConfig:
    """Endpoints and identity of the target chain."""
    chain_id: str = "vietchain"
    chain_name: str = "VietChain"
    rpc_endpoint: str = "http://localhost:26657"
    rest_endpoint: str = "http://localhost:1317"
    address_prefix: str = "cosmos"
    explorer_url: str = "http://localhost:1317"
    faucet_endpoint: str = "http://localhost:4500"
    faucet_amount: str = "1000000"        # 1 STAKE in minimal units
    request_timeout: float = 15.0         # seconds per HTTP request
    identity_query_path: str = "/vietchain/identity/identity"


@dataclass
class CurrencyConfig:
    """Display vs. on-chain denomination."""
    display_denom: str = "STAKE"
    minimal_denom: str = "stake"
    decimals: int = 6


@dataclass
class FeeSpec:
    """A fixed fee: a single coin plus a gas limit."""
    amount: str
    denom: str
    gas: int = 200_000


@dataclass
class FeesConfig:
    """Fixed fee per message family; not user-editable."""
    transfer: FeeSpec = field(default_factory=lambda: FeeSpec("5000", "stake"))
    identity_create: FeeSpec = field(default_factory=lambda: FeeSpec("1000", "token"))
    identity_update: FeeSpec = field(default_factory=lambda: FeeSpec("0", "token"))


@dataclass
class VaultConfig:
    """Key-derivation settings for the encrypted recovery phrase."""
    kdf_iterations: int = 600_000
    min_password_length: int = 6


@dataclass
class HistoryConfig:
    """Transaction-history resolver limits."""
    default_limit: int = 10
    search_page_size: int = 10
    scan_block_cap: int = 50


@dataclass
class StorageConfig:
    """Where the surrounding application keeps the wallet record."""
    wallet_file: str = "data/wallet.json"


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class PhiWalletConfig:
    """Top-level configuration container."""
    chain: ChainConfig = field(default_factory=ChainConfig)
    currency: CurrencyConfig = field(default_factory=CurrencyConfig)
    fees: FeesConfig = field(default_factory=FeesConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _merge_fees(fees: FeesConfig, raw: dict[str, Any]) -> None:
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        current = getattr(fees, key_under, None)
        if isinstance(current, FeeSpec) and isinstance(value, dict):
            _merge(current, value)
            current.amount = str(current.amount)
            current.gas = int(current.gas)


def load_config(path: str | None = None) -> PhiWalletConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        PHIWALLET_CHAIN_ID        -> chain.chain_id
        PHIWALLET_RPC             -> chain.rpc_endpoint
        PHIWALLET_REST            -> chain.rest_endpoint
        PHIWALLET_PREFIX          -> chain.address_prefix
        PHIWALLET_FAUCET          -> chain.faucet_endpoint
        PHIWALLET_KDF_ITERATIONS  -> vault.kdf_iterations
        PHIWALLET_WALLET_FILE     -> storage.wallet_file
        PHIWALLET_LOG_LEVEL       -> logging.level
        PHIWALLET_LOG_FMT         -> logging.format
    """
    cfg = PhiWalletConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("chain", cfg.chain),
                ("currency", cfg.currency),
                ("vault", cfg.vault),
                ("history", cfg.history),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])
            if "fees" in data:
                _merge_fees(cfg.fees, data["fees"])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("PHIWALLET_CHAIN_ID"):
        cfg.chain.chain_id = v
    if v := os.environ.get("PHIWALLET_RPC"):
        cfg.chain.rpc_endpoint = v.rstrip("/")
    if v := os.environ.get("PHIWALLET_REST"):
        cfg.chain.rest_endpoint = v.rstrip("/")
    if v := os.environ.get("PHIWALLET_PREFIX"):
        cfg.chain.address_prefix = v
    if v := os.environ.get("PHIWALLET_FAUCET"):
        cfg.chain.faucet_endpoint = v.rstrip("/")
    if v := os.environ.get("PHIWALLET_KDF_ITERATIONS"):
        cfg.vault.kdf_iterations = int(v)
    if v := os.environ.get("PHIWALLET_WALLET_FILE"):
        cfg.storage.wallet_file = v
    if v := os.environ.get("PHIWALLET_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("PHIWALLET_LOG_FMT"):
        cfg.logging.format = v

    return cfg
