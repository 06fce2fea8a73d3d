"""
Config - network table, runtime settings, logging bootstrap

Layer 0 of mintflow:
- NETWORKS: frozen per-network defaults (native symbol, public RPCs, explorer)
- MintflowConfig: runtime settings, loaded from environment / .env
- configure_logging(): basicConfig + secret masking for host applications

Environment variables (all optional):
    MINTFLOW_RPC_<networkId>      comma-separated RPC endpoints, highest priority first
    MINTFLOW_CONFIRMATIONS        confirmation depth awaited per step (default 1)
    MINTFLOW_GAS_BUFFER_PERCENT   gas limit = estimate * N / 100 (default 120)
    MINTFLOW_FALLBACK_GAS         gas limit used when approval estimation fails
    MINTFLOW_RPC_TIMEOUT          seconds per JSON-RPC request (default 30)
    MINTFLOW_HTTP_TIMEOUT         seconds per pricing / allowlist API request (default 15)
    MINTFLOW_PROOF_CACHE_SIZE     max cached merkle trees / proofs (default 100)
    MINTFLOW_FETCH_USD            "false" disables USD estimates
    MINTFLOW_ALLOWLIST_API_URL    base URL of the allowlist index service
    LOG_LEVEL                     used by configure_logging() when no level is passed
"""

import os
import re
import logging
from dataclasses import dataclass, field
from typing import Final, Optional

from dotenv import load_dotenv


NATIVE_CURRENCY: Final[str] = "0x0000000000000000000000000000000000000000"
ZERO_HASH: Final[str] = "0x" + "00" * 32


# ============================================================
# NETWORK TABLE
# ============================================================

@dataclass(frozen=True)
class NetworkConfig:
    network_id: int
    name: str
    native_symbol: str
    rpc_urls: tuple[str, ...]
    explorer: str


NETWORKS: Final[dict[int, NetworkConfig]] = {
    1: NetworkConfig(
        network_id=1,
        name="Ethereum",
        native_symbol="ETH",
        rpc_urls=("https://eth.llamarpc.com", "https://ethereum-rpc.publicnode.com"),
        explorer="https://etherscan.io",
    ),
    10: NetworkConfig(
        network_id=10,
        name="Optimism",
        native_symbol="ETH",
        rpc_urls=("https://mainnet.optimism.io", "https://optimism-rpc.publicnode.com"),
        explorer="https://optimistic.etherscan.io",
    ),
    137: NetworkConfig(
        network_id=137,
        name="Polygon",
        native_symbol="POL",
        rpc_urls=("https://polygon-rpc.com", "https://polygon-bor-rpc.publicnode.com"),
        explorer="https://polygonscan.com",
    ),
    360: NetworkConfig(
        network_id=360,
        name="Shape",
        native_symbol="ETH",
        rpc_urls=("https://mainnet.shape.network",),
        explorer="https://shapescan.xyz",
    ),
    8453: NetworkConfig(
        network_id=8453,
        name="Base",
        native_symbol="ETH",
        rpc_urls=("https://mainnet.base.org", "https://base-rpc.publicnode.com"),
        explorer="https://basescan.org",
    ),
    42161: NetworkConfig(
        network_id=42161,
        name="Arbitrum",
        native_symbol="ETH",
        rpc_urls=("https://arb1.arbitrum.io/rpc", "https://arbitrum-one-rpc.publicnode.com"),
        explorer="https://arbiscan.io",
    ),
    84532: NetworkConfig(
        network_id=84532,
        name="Base Sepolia",
        native_symbol="ETH",
        rpc_urls=("https://sepolia.base.org",),
        explorer="https://sepolia.basescan.org",
    ),
    11155111: NetworkConfig(
        network_id=11155111,
        name="Sepolia",
        native_symbol="ETH",
        rpc_urls=("https://ethereum-sepolia-rpc.publicnode.com",),
        explorer="https://sepolia.etherscan.io",
    ),
}


def get_network(network_id: int) -> Optional[NetworkConfig]:
    return NETWORKS.get(network_id)


def native_symbol(network_id: int) -> str:
    """Native currency symbol for a network; ETH when the network is unknown."""
    network = NETWORKS.get(network_id)
    return network.native_symbol if network else "ETH"


# ============================================================
# RUNTIME SETTINGS
# ============================================================

@dataclass
class MintflowConfig:
    rpc_overrides: dict[int, list[str]] = field(default_factory=dict)
    confirmations: int = 1
    gas_buffer_percent: int = 120
    fallback_gas: int = 200_000
    rpc_timeout: float = 30.0
    http_timeout: float = 15.0
    proof_cache_size: int = 100
    fetch_usd: bool = True
    allowlist_api_url: str = ""
    coinbase_api_url: str = "https://api.coinbase.com/v2"
    coingecko_api_url: str = "https://api.coingecko.com/api/v3"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "MintflowConfig":
        """Build settings from environment variables (and .env when present)."""
        if dotenv:
            load_dotenv()

        overrides: dict[int, list[str]] = {}
        for key, value in os.environ.items():
            if not key.startswith("MINTFLOW_RPC_"):
                continue
            suffix = key[len("MINTFLOW_RPC_"):]
            if not suffix.isdigit():
                continue
            urls = [u.strip() for u in value.split(",") if u.strip()]
            if urls:
                overrides[int(suffix)] = urls

        defaults = cls()
        return cls(
            rpc_overrides=overrides,
            confirmations=int(os.getenv("MINTFLOW_CONFIRMATIONS", str(defaults.confirmations))),
            gas_buffer_percent=int(os.getenv("MINTFLOW_GAS_BUFFER_PERCENT", str(defaults.gas_buffer_percent))),
            fallback_gas=int(os.getenv("MINTFLOW_FALLBACK_GAS", str(defaults.fallback_gas))),
            rpc_timeout=float(os.getenv("MINTFLOW_RPC_TIMEOUT", str(defaults.rpc_timeout))),
            http_timeout=float(os.getenv("MINTFLOW_HTTP_TIMEOUT", str(defaults.http_timeout))),
            proof_cache_size=int(os.getenv("MINTFLOW_PROOF_CACHE_SIZE", str(defaults.proof_cache_size))),
            fetch_usd=os.getenv("MINTFLOW_FETCH_USD", "true").lower() in ("1", "true", "yes"),
            allowlist_api_url=os.getenv("MINTFLOW_ALLOWLIST_API_URL", defaults.allowlist_api_url),
        )

    def endpoints_for(self, network_id: int) -> list[str]:
        """Overrides first, then the network table defaults, de-duplicated in order."""
        urls = list(self.rpc_overrides.get(network_id, []))
        network = NETWORKS.get(network_id)
        if network:
            urls.extend(network.rpc_urls)
        seen: set[str] = set()
        ordered = []
        for url in urls:
            if url not in seen:
                seen.add(url)
                ordered.append(url)
        return ordered


# ============================================================
# LOGGING
# ============================================================

REDACTED: Final = "[REDACTED]"

# signing keys loaded in this process, lower-case hex without 0x
_KNOWN_SECRETS: set[str] = set()


def register_secret(value: str) -> None:
    """Mask this exact hex value, with or without 0x, wherever SecretMaskingFilter runs."""
    raw = value.lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    if raw:
        _KNOWN_SECRETS.add(raw)


class SecretMaskingFilter(logging.Filter):
    """
    Redact private keys from log output.

    Registered keys are masked in any form. Otherwise only a bare 64-hex run
    is treated as a key: 0x-prefixed words are tx hashes, merkle roots and
    leaves, and stay readable.
    """
    _BARE_KEY = re.compile(r"(?<!0[xX])(?<![0-9a-fA-F])[0-9a-fA-F]{64}(?![0-9a-fA-F])")

    def mask(self, text: str) -> str:
        for secret in _KNOWN_SECRETS:
            text = re.sub(f"(?:0[xX])?{re.escape(secret)}", REDACTED, text, flags=re.IGNORECASE)
        return self._BARE_KEY.sub(REDACTED, text)

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        masked = self.mask(message)
        if masked != message:
            record.msg, record.args = masked, None
        return True


def configure_logging(level: Optional[str] = None) -> None:
    """
    Logging bootstrap for applications embedding mintflow.

    Library modules only create named loggers (mintflow.*); nothing is
    configured on import.
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    mask = SecretMaskingFilter()
    for handler in logging.root.handlers:
        handler.addFilter(mask)
