"""
Mutating bridge actions: approve a withdraw, execute a withdraw.

Every submission simulates with ``eth_call``, estimates gas, prices it with
the legacy gas price, signs through the signer port, broadcasts and waits
for the receipt on the chain it was sent to. Affected cache keys are
invalidated after the receipt. Failures raise ``BridgeActionError`` carrying
a short message for the operator; nothing is retried.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from eth_utils import to_checksum_address

from . import abi
from .abi import decode_revert
from .cache import CacheKey
from .config import ZERO_ADDRESS
from .exceptions import (
    BridgeActionError,
    NotActionableError,
    TransactionRevertedError,
    UserRejectedError,
)
from .logging_utils import OperationType, get_recon_logger
from .models import CorrelatedDeposit, WithdrawView
from .rpc_client import RPCClientError, RPCError
from .service import BridgeViewService
from .signer import TransactionSigner

logger = logging.getLogger(__name__)

_USER_REJECTED = re.compile(r"user rejected", re.IGNORECASE)
TRANSACTION_CANCELED = "Transaction canceled"


@dataclass
class ActionResult:
    """Outcome of a mined transaction."""
    chain_id: int
    tx_hash: str
    block_number: int
    invalidated: List[CacheKey]


def readable_error(error: BaseException) -> str:
    """
    Short operator-facing text for a failed action.

    A rejection reads "Transaction canceled", decodable revert data reads
    ``ErrorName(args)``, anything else is the raw message.
    """
    if isinstance(error, UserRejectedError) or _USER_REJECTED.search(str(error)):
        return TRANSACTION_CANCELED
    revert_data = None
    if isinstance(error, RPCError):
        revert_data = error.revert_data
    elif isinstance(error, TransactionRevertedError):
        revert_data = error.revert_data
    decoded = decode_revert(revert_data)
    if decoded:
        return decoded
    if isinstance(error, BridgeActionError):
        return error.user_message
    return str(error)


class BridgeActions:
    """Submits approve-withdraw and execute-withdraw transactions."""

    def __init__(
        self,
        service: BridgeViewService,
        signer: TransactionSigner,
        active_chain_id: Optional[int] = None,
    ):
        self._service = service
        self._registry = service.registry
        self._signer = signer
        self.active_chain_id = (
            active_chain_id if active_chain_id is not None
            else self._registry.config.default_chain_id
        )

    def switch_chain(self, chain_id: int) -> None:
        """Make ``chain_id`` the chain transactions are sent to."""
        if chain_id != self.active_chain_id:
            logger.info(f"Switching active chain {self.active_chain_id} -> {chain_id}")
            self.active_chain_id = chain_id

    def _invalidate(self, keys: List[CacheKey]) -> List[CacheKey]:
        for key in keys:
            self._service.cache.invalidate(key)
        return keys

    async def _submit(self, chain_id: int, to: str, data: bytes, action: str) -> Dict[str, Any]:
        client = self._registry.resolve_client(chain_id)
        if client is None:
            raise NotActionableError(f"No RPC endpoint for chain {chain_id}")

        sender = self._signer.address
        call = {"from": sender, "to": to_checksum_address(to), "data": "0x" + data.hex()}

        async with get_recon_logger().operation_context(
            OperationType.TRANSACTION_SUBMIT, chain_id, action=action, to=call["to"]
        ) as ctx:
            try:
                await client.eth_call(call)
            except RPCError as e:
                if not e.is_revert:
                    raise
                raise TransactionRevertedError(
                    f"{action} simulation reverted: {e}",
                    revert_data=e.revert_data,
                    user_message=readable_error(e),
                ) from e

            gas = await client.estimate_gas(call)
            gas_price = await client.get_gas_price()
            nonce = await client.get_nonce(sender)

            tx = {
                "to": call["to"],
                "data": call["data"],
                "value": 0,
                "gas": gas,
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": chain_id,
            }
            try:
                raw = await self._signer.sign_transaction(tx)
            except BridgeActionError:
                raise
            except Exception as e:
                if _USER_REJECTED.search(str(e)):
                    raise UserRejectedError(str(e)) from e
                raise BridgeActionError(f"Signing failed: {e}") from e
            tx_hash = await client.send_raw_transaction(raw)
            ctx.metadata["tx_hash"] = tx_hash

        async with get_recon_logger().operation_context(
            OperationType.TRANSACTION_CONFIRM, chain_id, tx_hash=tx_hash
        ):
            receipt = await client.wait_for_receipt(tx_hash)
            if int(receipt.get("status", "0x0"), 16) == 0:
                raise TransactionRevertedError(
                    f"{action} transaction {tx_hash} reverted on chain {chain_id}",
                    tx_hash=tx_hash,
                )
        return receipt

    async def _run(self, chain_id: int, to: str, data: bytes, action: str) -> Dict[str, Any]:
        """Submit and turn every failure into a BridgeActionError."""
        try:
            return await self._submit(chain_id, to, data, action)
        except BridgeActionError as e:
            e.user_message = readable_error(e)
            raise
        except (RPCError, RPCClientError, TimeoutError, ValueError) as e:
            raise BridgeActionError(
                f"{action} failed on chain {chain_id}: {e}",
                user_message=readable_error(e),
            ) from e

    async def approve_withdraw_for_deposit(self, deposit: CorrelatedDeposit) -> ActionResult:
        """
        Approve on the destination ledger the withdraw matching ``deposit``.

        Fee is zero, fee recipient is the zero address and the fee is not
        deducted from the amount.
        """
        if deposit.cross_ecosystem or deposit.dest_chain_id is None:
            raise NotActionableError(
                "Deposit destination is not an EVM chain, token and account",
                user_message="Destination not resolvable",
            )

        dest_chain_id = deposit.dest_chain_id
        bridge = self._registry.contracts(dest_chain_id).bridge
        if not bridge:
            raise NotActionableError(f"No bridge deployment on chain {dest_chain_id}")

        source_chain_id = deposit.source_chain_id
        source_bridge = self._registry.contracts(source_chain_id).bridge
        self.switch_chain(dest_chain_id)

        src_chain_key = self._registry.derive_key(
            self._registry.config.chain_key_tag, source_chain_id
        )
        record = deposit.deposit
        data = abi.APPROVE_WITHDRAW.encode(
            src_chain_key,
            deposit.dest_token_address,
            deposit.dest_account_address,
            record.dest_account,
            record.amount,
            record.nonce,
            0,
            ZERO_ADDRESS,
            False,
        )

        receipt = await self._run(dest_chain_id, bridge, data, "approveWithdraw")

        keys: List[CacheKey] = [
            ("xchain", dest_chain_id, "approvals"),
            ("bridge", dest_chain_id, bridge, "withdraw-hashes"),
            ("bridge", dest_chain_id, bridge, "withdraws"),
            ("bridge-view", dest_chain_id),
            ("bridge-view", source_chain_id),
        ]
        if source_bridge:
            keys += [
                ("bridge", source_chain_id, source_bridge, "withdraw-hashes"),
                ("bridge", source_chain_id, source_bridge, "withdraws"),
            ]
        return ActionResult(
            chain_id=dest_chain_id,
            tx_hash=receipt.get("transactionHash", ""),
            block_number=int(receipt.get("blockNumber", "0x0"), 16),
            invalidated=self._invalidate(keys),
        )

    async def execute_withdraw(self, chain_id: int, view: WithdrawView) -> ActionResult:
        """Execute an approved withdraw through the router of ``chain_id``."""
        if view.withdraw is None:
            raise NotActionableError("Withdraw record not found")
        if view.eligibility is None or not view.eligibility.actionable_now:
            remaining = view.eligibility.remaining_seconds if view.eligibility else None
            raise NotActionableError(
                "Withdraw is not executable yet",
                user_message=(
                    f"Withdraw available in {remaining}s" if remaining else "Withdraw not executable"
                ),
            )

        contracts = self._registry.contracts(chain_id)
        router = contracts.router
        if not router:
            raise NotActionableError(f"No router deployment on chain {chain_id}")

        self.switch_chain(chain_id)

        w = view.withdraw
        data = abi.ROUTER_WITHDRAW.encode(w.src_chain_key, w.token, w.to, w.amount, w.nonce)
        receipt = await self._run(chain_id, router, data, "withdraw")

        keys: List[CacheKey] = [
            ("bridge", chain_id, router),
            ("bridge-view", chain_id),
        ]
        if contracts.bridge:
            keys.append(("bridge", chain_id, contracts.bridge, "withdraws"))
        return ActionResult(
            chain_id=chain_id,
            tx_hash=receipt.get("transactionHash", ""),
            block_number=int(receipt.get("blockNumber", "0x0"), 16),
            invalidated=self._invalidate(keys),
        )
