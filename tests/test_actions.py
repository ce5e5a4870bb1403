"""Unit tests for the approve and execute actions."""
from __future__ import annotations

from typing import Any, Dict

import pytest
import pytest_asyncio
from eth_abi import encode

from cl8y_bridge import abi
from cl8y_bridge.abi import selector
from cl8y_bridge.actions import TRANSACTION_CANCELED, BridgeActions, readable_error
from cl8y_bridge.exceptions import (
    BridgeActionError,
    ConfigurationError,
    NotActionableError,
    TransactionRevertedError,
    UserRejectedError,
)
from cl8y_bridge.rpc_client import RPCError
from cl8y_bridge.signer import LocalAccountSigner, TransactionSigner

from fakes import BRIDGE, ROUTER, TOKEN, h

TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


class RejectingSigner(TransactionSigner):
    """Signer that always declines, like a wallet prompt being dismissed."""

    @property
    def address(self) -> str:
        return "0x" + "ee" * 20

    async def sign_transaction(self, tx: Dict[str, Any]) -> str:
        raise RuntimeError("User rejected the request.")


@pytest.fixture
def signer():
    return LocalAccountSigner(TEST_KEY)


@pytest.fixture
def actions(service, signer):
    return BridgeActions(service, signer)


@pytest_asyncio.fixture
async def pending_deposit(service, bsc_ledger, opbnb_ledger, key_204):
    bsc_ledger.add_deposit(h(1), key_204, amount=123, nonce=9)
    view = await service.deposits_view(56)
    return view.items[0]


def unauthorized(account: str) -> bytes:
    return selector("AccessManagedUnauthorized(address)") + encode(["address"], [account])


class TestReadableError:
    """Tests for readable_error."""

    def test_user_rejection(self):
        assert readable_error(UserRejectedError()) == TRANSACTION_CANCELED
        assert readable_error(RuntimeError("MetaMask: User rejected transaction")) == TRANSACTION_CANCELED

    def test_decoded_revert(self):
        err = RPCError("execution reverted", code=3, data="0x" + unauthorized("0x" + "ab" * 20).hex())
        assert readable_error(err).startswith("AccessManagedUnauthorized(0x")

    def test_raw_message(self):
        assert readable_error(RuntimeError("nonce too low")) == "nonce too low"


class TestApproveWithdraw:
    """Tests for approve_withdraw_for_deposit."""

    @pytest.mark.asyncio
    async def test_approve_submits_on_destination(self, actions, pending_deposit, opbnb, opbnb_ledger, key_56):
        result = await actions.approve_withdraw_for_deposit(pending_deposit)

        assert result.chain_id == 204
        assert result.tx_hash.startswith("0x")
        assert len(opbnb.sent) == 1
        assert actions.active_chain_id == 204
        assert opbnb.calls_to("eth_getTransactionCount") == 1

        src_key, token, to, dest_account, amount, nonce, fee, fee_recipient, deduct = (
            opbnb_ledger.approve_calls[0]
        )
        assert src_key == key_56
        assert token.lower() == TOKEN
        assert amount == 123
        assert nonce == 9
        assert fee == 0
        assert int(fee_recipient, 16) == 0
        assert deduct is False

    @pytest.mark.asyncio
    async def test_approve_invalidates_affected_keys(self, actions, service, pending_deposit):
        assert any(k[:3] == ("xchain", 204, "approvals") for k in service.cache.keys())

        result = await actions.approve_withdraw_for_deposit(pending_deposit)

        assert ("xchain", 204, "approvals") in result.invalidated
        assert ("bridge-view", 56) in result.invalidated
        assert not any(k[:3] == ("xchain", 204, "approvals") for k in service.cache.keys())
        assert not any(k[:4] == ("bridge", 204, BRIDGE, "withdraw-hashes") for k in service.cache.keys())

    @pytest.mark.asyncio
    async def test_next_read_reflects_approval(self, actions, service, bsc_ledger, opbnb_ledger, pending_deposit):
        """Views read after the receipt show the approved, recorded withdraw."""
        opbnb_ledger.peers.append(bsc_ledger)
        assert not pending_deposit.approved_and_matched
        assert (await service.withdraws_view(204)).items == []

        await actions.approve_withdraw_for_deposit(pending_deposit)

        refreshed = (await service.deposits_view(56)).items[0]
        assert refreshed.approval.is_approved
        assert refreshed.approved_and_matched
        withdraws = (await service.withdraws_view(204)).items
        assert [v.record_hash for v in withdraws] == [h(1)]
        assert withdraws[0].withdraw.amount == 123

    @pytest.mark.asyncio
    async def test_simulation_revert_is_decoded(self, actions, pending_deposit, opbnb, opbnb_ledger, signer):
        opbnb_ledger.approve_revert = unauthorized(signer.address)

        with pytest.raises(TransactionRevertedError) as exc_info:
            await actions.approve_withdraw_for_deposit(pending_deposit)

        assert exc_info.value.user_message == f"AccessManagedUnauthorized({signer.address})"
        assert opbnb.sent == []

    @pytest.mark.asyncio
    async def test_user_rejection(self, service, pending_deposit, opbnb):
        actions = BridgeActions(service, RejectingSigner())
        with pytest.raises(UserRejectedError) as exc_info:
            await actions.approve_withdraw_for_deposit(pending_deposit)
        assert exc_info.value.user_message == TRANSACTION_CANCELED
        assert opbnb.sent == []

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, actions, pending_deposit, opbnb):
        opbnb.receipt_status = 0
        with pytest.raises(TransactionRevertedError) as exc_info:
            await actions.approve_withdraw_for_deposit(pending_deposit)
        assert exc_info.value.tx_hash

    @pytest.mark.asyncio
    async def test_receipt_timeout(self, actions, pending_deposit, opbnb):
        opbnb.mine = False
        with pytest.raises(BridgeActionError):
            await actions.approve_withdraw_for_deposit(pending_deposit)

    @pytest.mark.asyncio
    async def test_cross_ecosystem_not_actionable(self, actions, service, bsc_ledger):
        bsc_ledger.add_deposit(h(1), b"\x42" * 32)
        item = (await service.deposits_view(56)).items[0]
        with pytest.raises(NotActionableError):
            await actions.approve_withdraw_for_deposit(item)


class TestExecuteWithdraw:
    """Tests for execute_withdraw."""

    @pytest.fixture
    def router_calls(self, bsc):
        calls = []
        bsc.on(ROUTER, abi.ROUTER_WITHDRAW, lambda *args: calls.append(args))
        return calls

    @pytest.mark.asyncio
    async def test_executes_through_router(self, actions, service, signer, bsc, bsc_ledger, router_calls, key_204):
        bsc.timestamp = 10_000
        bsc_ledger.add_withdraw(h(1), key_204, amount=55, nonce=3)
        bsc_ledger.approve(h(1), approved_at=1)
        view = (await service.withdraws_view(56, signer.address)).items[0]

        result = await actions.execute_withdraw(56, view)

        assert result.chain_id == 56
        assert len(bsc.sent) == 1
        src_key, token, to, amount, nonce = router_calls[0]
        assert src_key == key_204
        assert amount == 55
        assert nonce == 3
        assert ("bridge-view", 56) in result.invalidated

    @pytest.mark.asyncio
    async def test_not_yet_executable(self, actions, service, signer, bsc, bsc_ledger, router_calls, key_204):
        bsc.timestamp = 10_000
        bsc_ledger.add_withdraw(h(1), key_204)
        bsc_ledger.approve(h(1), approved_at=10_050)
        view = (await service.withdraws_view(56, signer.address)).items[0]

        with pytest.raises(NotActionableError) as exc_info:
            await actions.execute_withdraw(56, view)

        assert exc_info.value.user_message == "Withdraw available in 50s"
        assert bsc.sent == []
        assert router_calls == []

    @pytest.mark.asyncio
    async def test_no_router(self, actions, service, signer, config, bsc, bsc_ledger, key_204):
        bsc.timestamp = 10_000
        bsc_ledger.add_withdraw(h(1), key_204)
        bsc_ledger.approve(h(1), approved_at=1)
        view = (await service.withdraws_view(56, signer.address)).items[0]
        config.chains[56].contracts.router = None
        with pytest.raises(NotActionableError):
            await actions.execute_withdraw(56, view)


class TestSigner:
    """Tests for the local signer."""

    @pytest.mark.asyncio
    async def test_signs_legacy_transaction(self, signer):
        raw = await signer.sign_transaction({
            "to": "0x" + "11" * 20,
            "data": "0x",
            "value": 0,
            "gas": 21000,
            "gasPrice": 1,
            "nonce": 0,
            "chainId": 56,
        })
        assert raw.startswith("0x")
        assert len(raw) > 100

    def test_requires_key(self):
        with pytest.raises(ConfigurationError):
            LocalAccountSigner("")
