"""
Configuration management for cl8y-bridge.

Provides centralized configuration for:
- Chains and their RPC endpoints with fallback support
- Bridge contract addresses per chain
- Ledger pagination bounds
- Refresh schedule of the read model
- Token metadata sources
- Logging configuration
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Chain ids of the supported networks
BSC = 56
BSC_TESTNET = 97
OPBNB = 204
OPBNB_TESTNET = 5611


class BridgeSettings(BaseSettings):
    """Environment settings (prefix CL8Y_)."""

    model_config = SettingsConfigDict(env_prefix="CL8Y_", extra="ignore")

    default_chain_id: Optional[int] = None
    token_list_url: str = ""
    ipfs_gateway: str = "https://ipfs.io/ipfs/"
    log_level: str = "INFO"
    log_json: bool = False
    signer_private_key: str = ""


@dataclass
class RPCEndpointConfig:
    """Configuration for a single RPC endpoint."""
    url: str
    priority: int = 0  # Lower is higher priority
    timeout_seconds: float = 30.0

    # Health check settings
    health_check_interval_seconds: float = 60.0
    max_consecutive_failures: int = 3


@dataclass
class BridgeContracts:
    """Addresses of the bridge contracts deployed on one chain."""
    bridge: Optional[str] = None
    router: Optional[str] = None
    access_manager: Optional[str] = None
    chain_registry: Optional[str] = None
    token_registry: Optional[str] = None
    mint_burn: Optional[str] = None
    lock_unlock: Optional[str] = None
    multicall: Optional[str] = MULTICALL3_ADDRESS


@dataclass
class ChainConfig:
    """Configuration for a blockchain network."""
    chain_id: int
    name: str
    display_name: str

    # RPC endpoints (primary + fallbacks)
    rpc_endpoints: List[RPCEndpointConfig] = field(default_factory=list)

    contracts: BridgeContracts = field(default_factory=BridgeContracts)

    # None = unknown, treated as mainnet
    is_testnet: Optional[bool] = None
    native_token: str = "BNB"
    explorer_host: str = "bscscan.com"

    # Receipt polling
    block_time_seconds: float = 3.0
    confirmation_timeout_seconds: float = 120.0

    def get_primary_rpc_url(self) -> str:
        """Get the primary (highest priority) RPC URL."""
        if not self.rpc_endpoints:
            raise ValueError(f"No RPC endpoints configured for {self.name}")
        sorted_endpoints = sorted(self.rpc_endpoints, key=lambda e: e.priority)
        return sorted_endpoints[0].url

    def get_all_rpc_urls(self) -> List[str]:
        """Get all RPC URLs in priority order."""
        sorted_endpoints = sorted(self.rpc_endpoints, key=lambda e: e.priority)
        return [e.url for e in sorted_endpoints]

    def address_explorer_url(self, address: str) -> str:
        return f"https://{self.explorer_host}/address/{address}"


@dataclass
class PaginationConfig:
    """Bounds for ledger enumeration."""
    page_size: int = 100
    max_items: int = 10_000
    registry_page_size: int = 500


@dataclass
class RefreshSchedule:
    """Refresh interval in seconds per read-model query."""
    intervals: Dict[str, float] = field(default_factory=lambda: {
        "deposit_hashes": 30.0,
        "deposits": 30.0,
        "xchain_approvals": 15.0,
        "xchain_withdraw_hashes": 15.0,
        "can_approve": 30.0,
        "withdraw_hashes": 30.0,
        "withdraws": 30.0,
        "withdraw_delay": 60.0,
        "block_time": 10.0,
        "token_meta": 60.0,
        "chain_keys": 30.0,
        "token_list": 300.0,
    })

    def interval(self, query: str, default: float = 30.0) -> float:
        return self.intervals.get(query, default)


@dataclass
class MetadataConfig:
    """Token metadata sources."""
    token_list_url: str = ""
    ipfs_gateway: str = "https://ipfs.io/ipfs/"
    http_timeout_seconds: float = 10.0


@dataclass
class LoggingConfig:
    """Configuration for reconciliation logging."""
    operation_level: str = "DEBUG"
    transaction_level: str = "INFO"
    error_level: str = "WARNING"
    log_operation_latency: bool = True


@dataclass
class BridgeReconConfig:
    """
    Master configuration for cl8y-bridge.

    Chains are keyed by chain id. Supports loading overrides from environment
    variables with prefix CL8Y_.
    """
    chains: Dict[int, ChainConfig] = field(default_factory=dict)

    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    refresh: RefreshSchedule = field(default_factory=RefreshSchedule)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    chain_key_tag: str = "EVM"
    default_chain_id: int = BSC

    def get_chain_config(self, chain_id: int) -> ChainConfig:
        """Get configuration for a specific chain."""
        if chain_id not in self.chains:
            raise ValueError(f"Unknown chain id: {chain_id}")
        return self.chains[chain_id]

    def is_chain_supported(self, chain_id: int) -> bool:
        return chain_id in self.chains


def _build_chain_config(
    chain_id: int,
    name: str,
    display_name: str,
    default_rpc: str,
    fallback_rpcs: List[str],
    explorer_host: str,
    contracts: BridgeContracts,
    is_testnet: bool = False,
    block_time: float = 3.0,
) -> ChainConfig:
    """Build a ChainConfig with environment variable overrides."""

    custom_rpc = os.getenv(f"CL8Y_RPC_URL_{chain_id}")
    primary_url = custom_rpc or default_rpc

    endpoints = [RPCEndpointConfig(url=primary_url, priority=0)]
    for i, url in enumerate(fallback_rpcs):
        if url != primary_url:
            endpoints.append(RPCEndpointConfig(url=url, priority=i + 1))

    access_override = os.getenv(f"CL8Y_ACCESS_MANAGER_ADDRESS_{chain_id}")
    if access_override:
        contracts.access_manager = access_override

    return ChainConfig(
        chain_id=chain_id,
        name=name,
        display_name=display_name,
        rpc_endpoints=endpoints,
        contracts=contracts,
        is_testnet=is_testnet,
        explorer_host=explorer_host,
        block_time_seconds=block_time,
    )


def _deployed_contracts() -> BridgeContracts:
    # Same CREATE3 addresses on every chain with a deployment
    return BridgeContracts(
        bridge="0x9981937e53758C46464fF89B35dF9A46175A7212",
        router="0x52cDA4D1D1cC1B1499E25f75933D8A83a9c111c0",
        access_manager="0xA1012cf7d54650A01608161E7C70400dE7A3B476",
        chain_registry="0x0B43A43A64284f49A9FDa3282C1a5f2eb74620D8",
        token_registry="0x23F054503f163Fc5196E1D7E29B3cCDe73282101",
        mint_burn="0x6721D7d9f4b2d75b205B0E19450D30b7284A4E15",
        lock_unlock="0x6132fcb458b8570B69052463f2F9d09B340A6bA0",
    )


def build_default_config(settings: Optional[BridgeSettings] = None) -> BridgeReconConfig:
    """Build default configuration with all supported chains."""
    settings = settings or BridgeSettings()

    chains: Dict[int, ChainConfig] = {}

    chains[BSC] = _build_chain_config(
        chain_id=BSC,
        name="bsc",
        display_name="BNB Smart Chain (BSC)",
        default_rpc="https://bsc-dataseed.bnbchain.org",
        fallback_rpcs=[
            "https://bsc-rpc.publicnode.com",
        ],
        explorer_host="bscscan.com",
        contracts=_deployed_contracts(),
    )

    chains[BSC_TESTNET] = _build_chain_config(
        chain_id=BSC_TESTNET,
        name="bsc_testnet",
        display_name="BSC Testnet",
        default_rpc="https://data-seed-prebsc-1-s1.bnbchain.org:8545",
        fallback_rpcs=[
            "https://bsc-testnet-rpc.publicnode.com",
        ],
        explorer_host="testnet.bscscan.com",
        contracts=_deployed_contracts(),
        is_testnet=True,
    )

    # opBNB mainnet has no bridge deployment yet
    chains[OPBNB] = _build_chain_config(
        chain_id=OPBNB,
        name="opbnb",
        display_name="opBNB",
        default_rpc="https://opbnb-mainnet-rpc.bnbchain.org",
        fallback_rpcs=[],
        explorer_host="opbnb.bscscan.com",
        contracts=BridgeContracts(),
        block_time=1.0,
    )

    chains[OPBNB_TESTNET] = _build_chain_config(
        chain_id=OPBNB_TESTNET,
        name="opbnb_testnet",
        display_name="opBNB Testnet",
        default_rpc="https://opbnb-testnet-rpc.bnbchain.org",
        fallback_rpcs=[],
        explorer_host="opbnb-testnet.bscscan.com",
        contracts=_deployed_contracts(),
        is_testnet=True,
        block_time=1.0,
    )

    default_chain_id = settings.default_chain_id
    if default_chain_id not in chains:
        if default_chain_id is not None:
            logger.warning(f"Unsupported default chain id {default_chain_id}, using {BSC}")
        default_chain_id = BSC

    return BridgeReconConfig(
        chains=chains,
        metadata=MetadataConfig(
            token_list_url=settings.token_list_url,
            ipfs_gateway=settings.ipfs_gateway,
        ),
        default_chain_id=default_chain_id,
    )


# Global configuration instance
_global_config: Optional[BridgeReconConfig] = None


def get_config() -> BridgeReconConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = build_default_config()
    return _global_config


def set_config(config: Optional[BridgeReconConfig]) -> None:
    """Set (or reset with None) the global configuration instance."""
    global _global_config
    _global_config = config


def get_chain_config(chain_id: int) -> ChainConfig:
    """Convenience function to get chain configuration."""
    return get_config().get_chain_config(chain_id)
