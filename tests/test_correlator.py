"""Unit tests for cross-chain correlation."""
from __future__ import annotations

import pytest

from cl8y_bridge import abi
from cl8y_bridge.correlator import CrossChainCorrelator, describe_opaque
from cl8y_bridge.identifiers import EvmChain, ForeignBytes, NativeAddress, UnknownChain, derive_chain_key
from cl8y_bridge.models import DepositRecord

from fakes import ACTOR, BRIDGE, SENDER, h, install_access_manager


def deposit(dest_key: bytes, token: bytes = None, account: bytes = None) -> DepositRecord:
    return DepositRecord(
        dest_chain_key=dest_key,
        dest_token_address=token or b"\x00" * 12 + b"\x70" * 20,
        dest_account=account or b"\x00" * 12 + b"\x0d" * 20,
        sender=SENDER,
        amount=10**18,
        nonce=1,
    )


@pytest.fixture
def correlator(registry, ledger_paginator, cache):
    return CrossChainCorrelator(registry, ledger_paginator, cache)


class TestDecoding:
    """Tests for destination decoding."""

    @pytest.mark.asyncio
    async def test_cross_ecosystem_destinations(self, correlator, key_204):
        """Unknown chains and non-address values are flagged, not fetched."""
        items = await correlator.correlate_deposits(56, [
            (h(1), deposit(derive_chain_key("COSMW", 1))),
            (h(2), deposit(key_204, account=b"\x01" * 32)),
        ])
        assert all(item.cross_ecosystem for item in items)
        assert isinstance(items[0].dest_chain, UnknownChain)
        assert isinstance(items[1].dest_account, ForeignBytes)
        assert items[0].approval is None

    @pytest.mark.asyncio
    async def test_evm_destination(self, correlator, key_204):
        items = await correlator.correlate_deposits(56, [(h(1), deposit(key_204))])
        item = items[0]
        assert not item.cross_ecosystem
        assert item.dest_chain == EvmChain(204)
        assert isinstance(item.dest_token, NativeAddress)
        assert item.dest_chain_id == 204


class TestCorrelation:
    """Tests for destination-side joins."""

    @pytest.mark.asyncio
    async def test_approved_and_matched(self, correlator, opbnb_ledger, key_204, key_56):
        """Approved and present in the destination withdraw set."""
        opbnb_ledger.approve(h(1), approved_at=100)
        opbnb_ledger.add_withdraw(h(1), key_56)
        opbnb_ledger.approve(h(2), approved_at=100)
        opbnb_ledger.add_withdraw(h(3), key_56)

        items = await correlator.correlate_deposits(56, [
            (h(1), deposit(key_204)),
            (h(2), deposit(key_204)),
            (h(3), deposit(key_204)),
            (h(4), deposit(key_204)),
        ])

        assert [i.approved_and_matched for i in items] == [True, False, False, False]
        assert [i.in_dest_withdraw_set for i in items] == [True, False, True, False]
        assert items[1].approval.is_approved
        assert items[3].approval.is_empty

    @pytest.mark.asyncio
    async def test_order_preserved(self, correlator, key_204, key_56):
        rows = [(h(i), deposit(key_204 if i % 2 else key_56)) for i in range(6)]
        items = await correlator.correlate_deposits(97, rows)
        assert [i.record_hash for i in items] == [h(i) for i in range(6)]

    @pytest.mark.asyncio
    async def test_can_approve(self, correlator, opbnb, opbnb_ledger, key_204):
        """Permission is checked on the destination bridge for approveWithdraw."""
        calls = install_access_manager(opbnb, immediate=False, delay=3600)
        items = await correlator.correlate_deposits(56, [(h(1), deposit(key_204))], actor=ACTOR)
        assert items[0].can_approve.immediate is False
        assert items[0].can_approve.delay == 3600
        caller, target, selector = calls[0]
        assert caller.lower() == ACTOR
        assert target.lower() == BRIDGE
        assert selector == abi.APPROVE_WITHDRAW.selector

    @pytest.mark.asyncio
    async def test_failed_permission_check_cached(self, correlator, opbnb, opbnb_ledger, key_204):
        calls = install_access_manager(opbnb, fail=True)
        for _ in range(2):
            items = await correlator.correlate_deposits(56, [(h(1), deposit(key_204))], actor=ACTOR)
            assert items[0].can_approve is None
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_no_actor_no_permission(self, correlator, opbnb, opbnb_ledger, key_204):
        calls = install_access_manager(opbnb)
        items = await correlator.correlate_deposits(56, [(h(1), deposit(key_204))])
        assert items[0].can_approve is None
        assert calls == []

    @pytest.mark.asyncio
    async def test_destination_without_bridge(self, correlator, config, key_204):
        config.chains[204].contracts.bridge = None
        items = await correlator.correlate_deposits(56, [(h(1), deposit(key_204))])
        assert items[0].approval is None
        assert not items[0].approved_and_matched

    @pytest.mark.asyncio
    async def test_destination_reads_are_cached(self, correlator, opbnb, opbnb_ledger, key_204):
        rows = [(h(1), deposit(key_204))]
        await correlator.correlate_deposits(56, rows)
        before = opbnb.calls_to("eth_call")
        await correlator.correlate_deposits(56, rows)
        assert opbnb.calls_to("eth_call") == before


class TestDepositScans:
    """Tests for deposit enumeration and relevance."""

    @pytest.mark.asyncio
    async def test_deposits_on(self, correlator, bsc_ledger, key_204):
        bsc_ledger.add_deposit(h(1), key_204, amount=5)
        bsc_ledger.add_deposit(h(2), key_204, amount=6)
        bsc_ledger.deposit_hashes.append(h(3))  # listed but unreadable
        rows = await correlator.deposits_on(56)
        assert [(r[0], r[1].amount) for r in rows] == [(h(1), 5), (h(2), 6)]

    @pytest.mark.asyncio
    async def test_relevant_deposit_hashes(self, correlator, bsc_ledger, testnet_ledger, key_204, key_56):
        """Only peer-chain deposits addressed to the viewed chain count."""
        bsc_ledger.add_deposit(h(1), key_204)
        bsc_ledger.add_deposit(h(2), key_56)
        bsc_ledger.add_deposit(h(3), key_204)
        testnet_ledger.add_deposit(h(4), key_204)
        assert await correlator.relevant_deposit_hashes(204) == [h(1), h(3)]


def test_describe_opaque():
    assert describe_opaque(NativeAddress("0xAb")) == "0xAb"
    assert describe_opaque(ForeignBytes(b"\x01\x02")) == "0x0102"
