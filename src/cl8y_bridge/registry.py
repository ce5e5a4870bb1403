"""
Chain registry: configured chains, their keys, RPC clients and peers.

Built once at startup and injected into the engine. A chain with no RPC
endpoint resolves to no client, and operations on it return empty results.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from .config import BridgeContracts, BridgeReconConfig, get_config
from .identifiers import DecodedChain, EvmChain, UnknownChain, derive_chain_key, to_bytes32
from .models import ChainDescriptor
from .paginator import LedgerPaginator, chain_keys_listing, get_paginator
from .rpc_client import ChainRPCClient

logger = logging.getLogger(__name__)


class ChainRegistry:
    """Immutable view of the configured chains."""

    def __init__(
        self,
        config: Optional[BridgeReconConfig] = None,
        clients: Optional[Dict[int, ChainRPCClient]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        paginator: Optional[LedgerPaginator] = None,
    ):
        self._config = config or get_config()
        self._paginator = paginator or get_paginator()

        self._descriptors: List[ChainDescriptor] = [
            ChainDescriptor(
                chain_id=chain.chain_id,
                name=chain.name,
                display_name=chain.display_name,
                is_testnet=chain.is_testnet,
                explorer_host=chain.explorer_host,
                chain_key=derive_chain_key(self._config.chain_key_tag, chain.chain_id),
            )
            for chain in self._config.chains.values()
        ]
        self._by_key: Dict[bytes, int] = {d.chain_key: d.chain_id for d in self._descriptors}
        self._by_id: Dict[int, ChainDescriptor] = {d.chain_id: d for d in self._descriptors}

        if clients is not None:
            self._clients = dict(clients)
        else:
            self._clients = {
                chain.chain_id: ChainRPCClient(chain, transport=transport)
                for chain in self._config.chains.values()
                if chain.rpc_endpoints
            }

    @property
    def config(self) -> BridgeReconConfig:
        return self._config

    @property
    def descriptors(self) -> List[ChainDescriptor]:
        return list(self._descriptors)

    def descriptor(self, chain_id: int) -> Optional[ChainDescriptor]:
        return self._by_id.get(chain_id)

    def resolve_client(self, chain_id: int) -> Optional[ChainRPCClient]:
        """RPC client for the chain, or None if none is configured."""
        return self._clients.get(chain_id)

    def contracts(self, chain_id: int) -> BridgeContracts:
        """Contract addresses for the chain; all None for an unknown chain."""
        chain = self._config.chains.get(chain_id)
        if chain is None:
            return BridgeContracts(multicall=None)
        return chain.contracts

    def derive_key(self, tag: str, chain_id: int) -> bytes:
        return derive_chain_key(tag, chain_id)

    def chain_id_from_key(self, key: bytes) -> Optional[int]:
        """Chain id whose derived key equals ``key``, or None."""
        return self._by_key.get(bytes(key))

    def decode_chain_key(self, key) -> DecodedChain:
        raw = to_bytes32(key)
        chain_id = self.chain_id_from_key(raw)
        if chain_id is None:
            return UnknownChain(raw)
        return EvmChain(chain_id)

    def peer_chains(self, current_chain_id: int) -> List[ChainDescriptor]:
        """
        Chains in the same testnet/mainnet partition, excluding the current
        one, in configuration order.
        """
        current = self._by_id.get(current_chain_id)
        if current is None:
            return []
        return [
            d for d in self._descriptors
            if d.chain_id != current_chain_id and d.is_mainnet == current.is_mainnet
        ]

    def chains_in_environment(self, chain_id: int) -> List[ChainDescriptor]:
        """Peer chains plus the chain itself, in configuration order."""
        current = self._by_id.get(chain_id)
        if current is None:
            return []
        return [d for d in self._descriptors if d.is_mainnet == current.is_mainnet]

    def friendly_name_for_key(self, key: bytes) -> Optional[str]:
        chain_id = self.chain_id_from_key(key)
        if chain_id is None:
            return None
        return self._by_id[chain_id].display_name

    async def registered_chain_keys(self, chain_id: int) -> List[bytes]:
        """Chain keys registered in the on-chain ChainRegistry of ``chain_id``."""
        client = self.resolve_client(chain_id)
        registry_address = self.contracts(chain_id).chain_registry
        if client is None or not registry_address:
            return []
        listing = chain_keys_listing(self._config.pagination.registry_page_size)
        return [
            bytes(k)
            for k in await self._paginator.enumerate_record_ids(client, registry_address, listing)
        ]

    async def aclose(self) -> None:
        """Close every RPC client."""
        for client in self._clients.values():
            await client.close()
