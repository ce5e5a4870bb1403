"""
Pytest configuration for cl8y-bridge tests.
"""
from __future__ import annotations

import os

import pytest

from cl8y_bridge import logging_utils, paginator
from cl8y_bridge.cache import ViewCache
from cl8y_bridge.config import set_config
from cl8y_bridge.identifiers import evm_chain_key
from cl8y_bridge.metadata import MetadataResolver
from cl8y_bridge.paginator import LedgerPaginator
from cl8y_bridge.registry import ChainRegistry
from cl8y_bridge.service import BridgeViewService

from fakes import FakeChain, FakeLedger, FakeNetwork, chain_config, recon_config

# Keep developer environment out of the defaults
for var in list(os.environ):
    if var.startswith("CL8Y_"):
        del os.environ[var]


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset module-level singletons between tests."""
    set_config(None)
    paginator._paginator = None
    logging_utils._recon_logger = None
    yield
    set_config(None)
    paginator._paginator = None
    logging_utils._recon_logger = None


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def bsc(network):
    """Mainnet chain 56 with a bridge ledger."""
    return network.add(FakeChain(56))


@pytest.fixture
def opbnb(network):
    """Mainnet chain 204, a peer of 56."""
    return network.add(FakeChain(204))


@pytest.fixture
def testnet(network):
    """Testnet chain 97."""
    return network.add(FakeChain(97))


@pytest.fixture
def bsc_ledger(bsc):
    return FakeLedger(bsc)


@pytest.fixture
def opbnb_ledger(opbnb):
    return FakeLedger(opbnb)


@pytest.fixture
def testnet_ledger(testnet):
    return FakeLedger(testnet)


@pytest.fixture
def config(bsc, opbnb, testnet):
    cfg = recon_config(
        chain_config(56, "bsc"),
        chain_config(204, "opbnb"),
        chain_config(97, "bsc_testnet", is_testnet=True),
    )
    set_config(cfg)
    return cfg


@pytest.fixture
def ledger_paginator(config):
    return LedgerPaginator(config.pagination)


@pytest.fixture
def registry(config, network, ledger_paginator):
    return ChainRegistry(config, transport=network.transport, paginator=ledger_paginator)


@pytest.fixture
def cache():
    return ViewCache()


@pytest.fixture
def service(registry, cache, ledger_paginator, config):
    metadata = MetadataResolver(registry, cache, config.metadata)
    metadata.set_token_list([])
    return BridgeViewService(
        registry, cache=cache, paginator=ledger_paginator, metadata=metadata
    )


@pytest.fixture
def key_56():
    return evm_chain_key(56)


@pytest.fixture
def key_204():
    return evm_chain_key(204)
