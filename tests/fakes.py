"""
In-memory EVM chains served over httpx.MockTransport.

A FakeChain answers the JSON-RPC methods the bridge code uses and dispatches
eth_call by (contract, selector) to Python handlers. FakeLedger installs the
CL8YBridge ledger functions on a chain.
"""
from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
from eth_abi import decode, encode
from web3 import Web3

from cl8y_bridge import abi
from cl8y_bridge.abi import FunctionABI
from cl8y_bridge.config import (
    MULTICALL3_ADDRESS,
    ZERO_ADDRESS,
    BridgeContracts,
    BridgeReconConfig,
    ChainConfig,
    RPCEndpointConfig,
)

BRIDGE = "0x" + "b1" * 20
ROUTER = "0x" + "a2" * 20
ACCESS_MANAGER = "0x" + "ac" * 20
CHAIN_REGISTRY = "0x" + "c4" * 20
TOKEN = "0x" + "70" * 20
ACTOR = "0x" + "ee" * 20
RECIPIENT = "0x" + "0d" * 20
SENDER = "0x" + "5e" * 20

ZERO32 = b"\x00" * 32


def h(n: int) -> bytes:
    """Deterministic 32-byte record hash."""
    return bytes(Web3.keccak(text=f"record-{n}"))


def pad(address: str) -> bytes:
    return b"\x00" * 12 + bytes.fromhex(address[2:])


class Revert(Exception):
    """Raised by handlers to make the call revert with ``data``."""

    def __init__(self, data: bytes = b""):
        super().__init__("execution reverted")
        self.data = data


Handler = Callable[..., Any]


class FakeChain:
    """One chain: JSON-RPC state plus contract handlers."""

    def __init__(self, chain_id: int, has_multicall: bool = True):
        self.chain_id = chain_id
        self.has_multicall = has_multicall
        self.timestamp = 1_700_000_000
        self.block_number = 1000
        self.gas_price = 3_000_000_000
        self.nonce = 7
        self.receipt_status = 1
        self.mine = True
        self.errors: Dict[str, Dict[str, Any]] = {}
        self.methods: List[str] = []
        self.batches: List[int] = []
        self.sent: List[str] = []
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self._handlers: Dict[Tuple[str, bytes], Tuple[FunctionABI, Handler]] = {}

    def on(self, address: str, fn: FunctionABI, handler: Handler) -> None:
        self._handlers[(address.lower(), fn.selector)] = (fn, handler)

    def calls_to(self, method: str) -> int:
        return self.methods.count(method)

    # -- contract execution -------------------------------------------------

    def execute(self, to: str, data: bytes) -> bytes:
        if to.lower() == MULTICALL3_ADDRESS.lower():
            if not self.has_multicall or data[:4] != abi.AGGREGATE3.selector:
                raise Revert()
            return self._aggregate3(data)

        entry = self._handlers.get((to.lower(), data[:4]))
        if entry is None:
            raise Revert()
        fn, handler = entry
        args = decode(list(fn.inputs), data[4:]) if fn.inputs else ()
        out = handler(*args)
        if not fn.outputs:
            return b""
        if len(fn.outputs) == 1:
            out = (out,)
        return encode(list(fn.outputs), list(out))

    def _aggregate3(self, data: bytes) -> bytes:
        (calls,) = decode(["(address,bool,bytes)[]"], data[4:])
        results = []
        for target, _allow_failure, call_data in calls:
            try:
                results.append((True, self.execute(target, bytes(call_data))))
            except Revert as e:
                results.append((False, e.data))
        return encode(["(bool,bytes)[]"], [results])

    # -- JSON-RPC -----------------------------------------------------------

    def handle(self, payload: Any) -> Any:
        if isinstance(payload, list):
            self.batches.append(len(payload))
            return [self._handle_one(item) for item in payload]
        return self._handle_one(payload)

    def _handle_one(self, request: Dict[str, Any]) -> Dict[str, Any]:
        method = request["method"]
        params = request.get("params", [])
        self.methods.append(method)
        reply: Dict[str, Any] = {"jsonrpc": "2.0", "id": request["id"]}

        if method in self.errors:
            reply["error"] = self.errors[method]
            return reply
        try:
            reply["result"] = self._dispatch(method, params)
        except Revert as e:
            reply["error"] = {
                "code": 3,
                "message": "execution reverted",
                "data": "0x" + e.data.hex(),
            }
        return reply

    def _dispatch(self, method: str, params: Sequence[Any]) -> Any:
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "eth_blockNumber":
            return hex(self.block_number)
        if method == "eth_getBlockByNumber":
            return {"number": hex(self.block_number), "timestamp": hex(self.timestamp)}
        if method == "eth_call":
            tx = params[0]
            return "0x" + self.execute(tx["to"], bytes.fromhex(tx["data"][2:])).hex()
        if method == "eth_estimateGas":
            return hex(150_000)
        if method == "eth_gasPrice":
            return hex(self.gas_price)
        if method == "eth_getTransactionCount":
            return hex(self.nonce)
        if method == "eth_sendRawTransaction":
            raw = params[0]
            tx_hash = "0x" + bytes(Web3.keccak(hexstr=raw)).hex()
            self.sent.append(raw)
            if self.mine:
                self.receipts[tx_hash] = {
                    "transactionHash": tx_hash,
                    "blockNumber": hex(self.block_number),
                    "status": hex(self.receipt_status),
                }
            return tx_hash
        if method == "eth_getTransactionReceipt":
            return self.receipts.get(params[0])
        raise ValueError(f"unsupported method {method}")


class FakeNetwork:
    """Routes requests to chains by URL host."""

    def __init__(self):
        self._by_host: Dict[str, FakeChain] = {}
        self.down: set = set()
        self.requests: List[str] = []

    def add(self, chain: FakeChain, *hosts: str) -> FakeChain:
        for host in hosts or (f"rpc{chain.chain_id}.test",):
            self._by_host[host] = chain
        return chain

    def _handle(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.requests.append(host)
        if host in self.down:
            raise httpx.ConnectError("connection refused", request=request)
        chain = self._by_host[host]
        return httpx.Response(200, json=chain.handle(json.loads(request.content)))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)


class FakeLedger:
    """CL8YBridge ledger state installed on a FakeChain."""

    def __init__(self, chain: FakeChain, address: str = BRIDGE):
        self.chain = chain
        self.address = address
        self.bulk = True
        self.counted = True
        self.paged = True
        self.fail_page_at: Optional[int] = None
        self.deposit_hashes: List[bytes] = []
        self.withdraw_hashes: List[bytes] = []
        self.deposits: Dict[bytes, tuple] = {}
        self.withdraws: Dict[bytes, tuple] = {}
        self.approvals: Dict[bytes, tuple] = {}
        self.failing_approvals: set = set()
        self.approve_calls: List[tuple] = []
        self.approve_revert: Optional[bytes] = None
        # Ledgers whose deposits approveWithdraw can match
        self.peers: List["FakeLedger"] = []

        chain.on(address, abi.GET_DEPOSIT_HASHES, lambda: self._bulk(self.deposit_hashes))
        chain.on(address, abi.GET_DEPOSIT_HASH_COUNT, lambda: self._count(self.deposit_hashes))
        chain.on(
            address, abi.GET_DEPOSIT_HASHES_PAGE,
            lambda offset, count: self._page(self.deposit_hashes, offset, count),
        )
        chain.on(address, abi.GET_WITHDRAW_HASHES, lambda: self._bulk(self.withdraw_hashes))
        chain.on(address, abi.GET_WITHDRAW_HASH_COUNT, lambda: self._count(self.withdraw_hashes))
        chain.on(
            address, abi.GET_WITHDRAW_HASHES_PAGE,
            lambda offset, count: self._page(self.withdraw_hashes, offset, count),
        )
        chain.on(address, abi.GET_DEPOSIT_FROM_HASH, self._deposit)
        chain.on(address, abi.GET_WITHDRAW_FROM_HASH, self._withdraw)
        chain.on(address, abi.GET_WITHDRAW_APPROVAL, self._approval)
        chain.on(address, abi.APPROVE_WITHDRAW, self._approve_withdraw)

    def _bulk(self, hashes: List[bytes]) -> List[bytes]:
        if not self.bulk:
            raise Revert()
        return list(hashes)

    def _count(self, hashes: List[bytes]) -> int:
        if not self.counted:
            raise Revert()
        return len(hashes)

    def _page(self, hashes: List[bytes], offset: int, count: int) -> List[bytes]:
        if not self.paged:
            raise Revert()
        if self.fail_page_at is not None and offset >= self.fail_page_at:
            raise Revert()
        return list(hashes[offset:offset + count])

    def _deposit(self, record_hash: bytes) -> tuple:
        return self.deposits.get(
            bytes(record_hash), (ZERO32, ZERO32, ZERO32, ZERO_ADDRESS, 0, 0)
        )

    def _withdraw(self, record_hash: bytes) -> tuple:
        return self.withdraws.get(
            bytes(record_hash), (ZERO32, ZERO_ADDRESS, ZERO32, ZERO_ADDRESS, 0, 0)
        )

    def _approval(self, record_hash: bytes) -> tuple:
        if bytes(record_hash) in self.failing_approvals:
            raise Revert()
        return self.approvals.get(
            bytes(record_hash), (0, ZERO_ADDRESS, 0, False, False, False, False)
        )

    def _approve_withdraw(self, *args) -> None:
        if self.approve_revert is not None:
            raise Revert(self.approve_revert)
        self.approve_calls.append(args)
        src_chain_key, token, to, dest_account, amount, nonce = args[:6]
        # A withdraw is keyed by the hash of the peer deposit it pays out
        for peer in self.peers:
            for record_hash, deposit in peer.deposits.items():
                if deposit[2] == bytes(dest_account) and deposit[4:] == (amount, nonce):
                    self.add_withdraw(
                        record_hash, bytes(src_chain_key), token.lower(), to.lower(), amount, nonce
                    )
                    self.approve(record_hash, approved_at=self.chain.timestamp)
                    return

    def add_deposit(
        self,
        record_hash: bytes,
        dest_chain_key: bytes,
        dest_token: bytes = None,
        dest_account: bytes = None,
        amount: int = 10**18,
        nonce: int = 1,
        sender: str = SENDER,
    ) -> None:
        self.deposit_hashes.append(record_hash)
        self.deposits[record_hash] = (
            dest_chain_key,
            dest_token if dest_token is not None else pad(TOKEN),
            dest_account if dest_account is not None else pad(RECIPIENT),
            sender,
            amount,
            nonce,
        )

    def add_withdraw(
        self,
        record_hash: bytes,
        src_chain_key: bytes,
        token: str = TOKEN,
        to: str = RECIPIENT,
        amount: int = 10**18,
        nonce: int = 1,
        listed: bool = True,
    ) -> None:
        if listed:
            self.withdraw_hashes.append(record_hash)
        self.withdraws[record_hash] = (src_chain_key, token, pad(to), to, amount, nonce)

    def approve(
        self,
        record_hash: bytes,
        approved_at: int,
        executed: bool = False,
        cancelled: bool = False,
    ) -> None:
        self.approvals[record_hash] = (
            0, ZERO_ADDRESS, approved_at, True, False, cancelled, executed,
        )


def install_access_manager(
    chain: FakeChain, immediate: bool = True, delay: int = 0, fail: bool = False
) -> List[tuple]:
    """canCall handler on ACCESS_MANAGER; returns the list of recorded calls."""
    calls: List[tuple] = []

    def can_call(caller, target, selector):
        calls.append((caller, target, bytes(selector)))
        if fail:
            raise Revert()
        return (immediate, delay)

    chain.on(ACCESS_MANAGER, abi.CAN_CALL, can_call)
    return calls


def install_token(
    chain: FakeChain,
    address: str = TOKEN,
    name: str = "Test Token",
    symbol: str = "TST",
    decimals: int = 18,
    logo: Optional[str] = None,
) -> None:
    chain.on(address, abi.TOKEN_NAME, lambda: name)
    chain.on(address, abi.TOKEN_SYMBOL, lambda: symbol)
    chain.on(address, abi.TOKEN_DECIMALS, lambda: decimals)
    if logo is not None:
        chain.on(address, abi.TOKEN_LOGO_LINK, lambda: logo)


def chain_config(
    chain_id: int,
    name: str,
    is_testnet: bool = False,
    multicall: Optional[str] = MULTICALL3_ADDRESS,
    hosts: Sequence[str] = (),
    bridge: Optional[str] = BRIDGE,
) -> ChainConfig:
    hosts = list(hosts) or [f"rpc{chain_id}.test"]
    return ChainConfig(
        chain_id=chain_id,
        name=name,
        display_name=name.upper(),
        rpc_endpoints=[
            RPCEndpointConfig(url=f"https://{host}/", priority=i)
            for i, host in enumerate(hosts)
        ],
        contracts=BridgeContracts(
            bridge=bridge,
            router=ROUTER,
            access_manager=ACCESS_MANAGER,
            chain_registry=CHAIN_REGISTRY,
            multicall=multicall,
        ),
        is_testnet=is_testnet,
        block_time_seconds=0.01,
        confirmation_timeout_seconds=0.5,
    )


def recon_config(*chains: ChainConfig, default_chain_id: int = 56) -> BridgeReconConfig:
    return BridgeReconConfig(
        chains={c.chain_id: c for c in chains},
        default_chain_id=default_chain_id,
    )
