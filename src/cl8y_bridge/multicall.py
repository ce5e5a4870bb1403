"""
Batched record and approval reads.

Fetching N records and N approvals costs one round trip: a Multicall3
``aggregate3`` call with ``allowFailure`` when the chain has Multicall3,
otherwise one JSON-RPC batch of ``eth_call`` requests. A failing sub-call
only blanks its own field.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from . import abi
from .abi import FunctionABI
from .exceptions import DecodeError
from .logging_utils import OperationType, get_recon_logger
from .models import ApprovalState, DepositRecord, WithdrawRecord
from .rpc_client import ChainRPCClient, RPCClientError, RPCError

logger = logging.getLogger(__name__)

# Sub-calls per aggregate3 request
MULTICALL_CHUNK_SIZE = 400

Call = Tuple[str, bytes]
T = TypeVar("T")


@dataclass
class RecordDetail:
    """A record id with its record and approval, each None when unreadable."""
    record_hash: bytes
    record: Optional[WithdrawRecord] = None
    approval: Optional[ApprovalState] = None


async def _aggregate3(
    client: ChainRPCClient, multicall_address: str, calls: Sequence[Call]
) -> List[Optional[bytes]]:
    payload = [(target, True, data) for target, data in calls]
    raw = await client.call_contract(multicall_address, abi.AGGREGATE3.encode(payload))
    results = abi.AGGREGATE3.decode_single(raw)
    if len(results) != len(calls):
        raise DecodeError(
            f"aggregate3 returned {len(results)} results for {len(calls)} calls"
        )
    return [bytes(data) if success else None for success, data in results]


async def _json_rpc_batch(
    client: ChainRPCClient, calls: Sequence[Call]
) -> List[Optional[bytes]]:
    requests = [
        ("eth_call", [{"to": target, "data": "0x" + data.hex()}, "latest"])
        for target, data in calls
    ]
    results = await client.batch_call(requests)
    out: List[Optional[bytes]] = []
    for result in results:
        if isinstance(result, RPCError) or not isinstance(result, str):
            out.append(None)
        else:
            out.append(bytes.fromhex(result[2:]))
    return out


async def execute_calls(
    client: ChainRPCClient, calls: Sequence[Call]
) -> List[Optional[bytes]]:
    """
    Run read-only calls in one round trip per chunk.

    Returns the raw result of each call in input order, None for a call that
    failed. If a round trip fails as a whole, all of its calls are None.
    """
    if not calls:
        return []

    multicall_address = client.chain_config.contracts.multicall

    async def run_chunk(chunk: Sequence[Call]) -> List[Optional[bytes]]:
        try:
            if multicall_address:
                return await _aggregate3(client, multicall_address, chunk)
            return await _json_rpc_batch(client, chunk)
        except (RPCError, RPCClientError, DecodeError, ValueError) as e:
            logger.warning(
                f"Batched read of {len(chunk)} calls failed on chain {client.chain_id}: {e}"
            )
            return [None] * len(chunk)

    chunks = [
        calls[i:i + MULTICALL_CHUNK_SIZE]
        for i in range(0, len(calls), MULTICALL_CHUNK_SIZE)
    ]
    results = await asyncio.gather(*(run_chunk(chunk) for chunk in chunks))
    return [item for chunk_result in results for item in chunk_result]


def _decode(
    fn: FunctionABI,
    data: Optional[bytes],
    build: Callable[[Sequence], T],
) -> Optional[T]:
    if data is None:
        return None
    try:
        return build(fn.decode_single(data))
    except (DecodeError, ValueError, TypeError) as e:
        logger.debug(f"Dropping undecodable {fn.name} result: {e}")
        return None


def _deposit_or_none(values: Sequence) -> Optional[DepositRecord]:
    record = DepositRecord.from_tuple(values)
    # Unknown hashes read back as an all-zero struct
    if record.amount == 0 and record.nonce == 0 and not any(record.dest_chain_key):
        return None
    return record


def _withdraw_or_none(values: Sequence) -> Optional[WithdrawRecord]:
    record = WithdrawRecord.from_tuple(values)
    if record.amount == 0 and record.nonce == 0 and not any(record.src_chain_key):
        return None
    return record


async def fetch_records_and_approvals(
    client: ChainRPCClient,
    ledger_address: str,
    ids: Sequence[bytes],
) -> List[RecordDetail]:
    """Withdraw record and approval for each id, in input order."""
    if not ids:
        return []

    calls: List[Call] = [
        (ledger_address, abi.GET_WITHDRAW_FROM_HASH.encode(h)) for h in ids
    ] + [
        (ledger_address, abi.GET_WITHDRAW_APPROVAL.encode(h)) for h in ids
    ]

    async with get_recon_logger().operation_context(
        OperationType.BATCH_FETCH, client.chain_id, kind="withdraws", count=len(ids)
    ):
        raw = await execute_calls(client, calls)

    n = len(ids)
    return [
        RecordDetail(
            record_hash=h,
            record=_decode(abi.GET_WITHDRAW_FROM_HASH, raw[i], _withdraw_or_none),
            approval=_decode(abi.GET_WITHDRAW_APPROVAL, raw[n + i], ApprovalState.from_tuple),
        )
        for i, h in enumerate(ids)
    ]


async def fetch_deposits(
    client: ChainRPCClient,
    ledger_address: str,
    ids: Sequence[bytes],
) -> List[Tuple[bytes, Optional[DepositRecord]]]:
    """Deposit record for each id, in input order."""
    if not ids:
        return []

    calls: List[Call] = [
        (ledger_address, abi.GET_DEPOSIT_FROM_HASH.encode(h)) for h in ids
    ]
    async with get_recon_logger().operation_context(
        OperationType.BATCH_FETCH, client.chain_id, kind="deposits", count=len(ids)
    ):
        raw = await execute_calls(client, calls)

    return [
        (h, _decode(abi.GET_DEPOSIT_FROM_HASH, raw[i], _deposit_or_none))
        for i, h in enumerate(ids)
    ]


async def fetch_approvals(
    client: ChainRPCClient,
    ledger_address: str,
    ids: Sequence[bytes],
) -> List[Tuple[bytes, Optional[ApprovalState]]]:
    """Approval for each id, in input order."""
    if not ids:
        return []

    calls: List[Call] = [
        (ledger_address, abi.GET_WITHDRAW_APPROVAL.encode(h)) for h in ids
    ]
    async with get_recon_logger().operation_context(
        OperationType.BATCH_FETCH, client.chain_id, kind="approvals", count=len(ids)
    ):
        raw = await execute_calls(client, calls)

    return [
        (h, _decode(abi.GET_WITHDRAW_APPROVAL, raw[i], ApprovalState.from_tuple))
        for i, h in enumerate(ids)
    ]
