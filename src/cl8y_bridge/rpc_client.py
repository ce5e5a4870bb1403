"""
JSON-RPC client for bridge chains with failover and health tracking.

Features:
- Multi-RPC endpoint support with automatic failover
- Chain ID validation on connection
- Health-based endpoint selection
- JSON-RPC batch requests (used when a chain has no Multicall3)
- Revert detection so callers can tell a reverting contract from a dead node
- Receipt polling for submitted transactions
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from .config import ChainConfig, RPCEndpointConfig

logger = logging.getLogger(__name__)

# Server errors and rate limits, worth another endpoint
RETRYABLE_ERROR_CODES = (-32000, -32005)
# geth reports reverts with code 3 and the revert data attached
REVERT_ERROR_CODE = 3


class EndpointStatus(str, Enum):
    """Health status of an RPC endpoint."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class EndpointHealth:
    """Failure streak and latency of one endpoint, used to order failover."""
    url: str
    status: EndpointStatus = EndpointStatus.UNKNOWN
    consecutive_failures: int = 0
    avg_latency_ms: float = 0.0
    last_error: Optional[str] = None
    max_consecutive_failures: int = 3

    def record_success(self, latency_ms: float) -> None:
        self.consecutive_failures = 0
        self.status = EndpointStatus.HEALTHY
        if self.avg_latency_ms == 0:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms = 0.9 * self.avg_latency_ms + 0.1 * latency_ms

    def record_failure(self, error: str) -> None:
        self.consecutive_failures += 1
        self.last_error = error
        if self.consecutive_failures >= self.max_consecutive_failures:
            self.status = EndpointStatus.UNHEALTHY

    def get_priority_score(self, base_priority: int) -> float:
        """Lower score = tried earlier."""
        score = float(base_priority * 100)
        if self.status == EndpointStatus.UNHEALTHY:
            score += 10000
        score += self.avg_latency_ms / 10.0
        score += self.consecutive_failures * 100
        return score


class RPCClientError(Exception):
    """A chain could not be reached or is not the chain it claims to be."""


class ChainIDMismatchError(RPCClientError):
    """Raised when chain ID doesn't match expected value."""

    def __init__(self, chain: str, expected: int, received: int):
        self.chain = chain
        self.expected = expected
        self.received = received
        super().__init__(
            f"Chain ID mismatch for {chain}: expected {expected}, got {received}"
        )


class AllEndpointsFailedError(RPCClientError):
    """Raised when all RPC endpoints have failed."""

    def __init__(self, chain: str, errors: List[Tuple[str, str]]):
        self.chain = chain
        self.errors = errors
        error_summary = "; ".join([f"{url}: {err}" for url, err in errors[:3]])
        super().__init__(
            f"All RPC endpoints failed for {chain}. Errors: {error_summary}"
        )


class RPCError(Exception):
    """An error object returned by a JSON-RPC node."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        self.code = code
        self.data = data
        super().__init__(message)

    @property
    def is_revert(self) -> bool:
        """Whether the node reported a contract revert."""
        if self.code == REVERT_ERROR_CODE:
            return True
        return "revert" in str(self).lower()

    @property
    def revert_data(self) -> Optional[str]:
        """Hex revert data when the node attached it."""
        data = self.data
        if isinstance(data, dict):
            data = data.get("data")
        if isinstance(data, str) and data.startswith("0x"):
            return data
        return None


BatchResult = Union[Any, RPCError]


def _parse_error(error: Dict[str, Any]) -> RPCError:
    return RPCError(
        message=error.get("message", str(error)),
        code=error.get("code"),
        data=error.get("data"),
    )


def _is_retryable(error: Dict[str, Any]) -> bool:
    if error.get("code") not in RETRYABLE_ERROR_CODES:
        return False
    # -32000 is also used by some nodes for reverts
    return "revert" not in str(error.get("message", "")).lower()


class ChainRPCClient:
    """
    JSON-RPC client for one chain with failover and health checking.

    A custom ``transport`` may be passed for testing; it is handed to the
    underlying ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        chain_config: ChainConfig,
        validate_chain_id_on_connect: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = chain_config
        self._chain = chain_config.name
        self._validate_chain_id = validate_chain_id_on_connect
        self._transport = transport
        self._request_id = 0
        self._http_client: Optional[httpx.AsyncClient] = None
        self._connected = False
        self._connect_lock = asyncio.Lock()

        self._endpoints: List[Tuple[RPCEndpointConfig, EndpointHealth]] = []
        for endpoint_config in self._config.rpc_endpoints:
            health = EndpointHealth(
                url=endpoint_config.url,
                max_consecutive_failures=endpoint_config.max_consecutive_failures,
            )
            self._endpoints.append((endpoint_config, health))

        if not self._endpoints:
            raise ValueError(f"No RPC endpoints configured for chain {self._chain}")

        logger.debug(
            f"Initialized RPC client for {self._chain} with {len(self._endpoints)} endpoints"
        )

    @property
    def chain_id(self) -> int:
        return self._config.chain_id

    @property
    def chain_config(self) -> ChainConfig:
        return self._config

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self._config.rpc_endpoints[0].timeout_seconds,
                    connect=10.0,
                ),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                transport=self._transport,
            )
        return self._http_client

    async def connect(self) -> None:
        """Connect to RPC and validate chain ID."""
        async with self._connect_lock:
            if self._connected:
                return

            if self._validate_chain_id:
                chain_id = await self._fetch_chain_id()
                if chain_id != self._config.chain_id:
                    raise ChainIDMismatchError(
                        chain=self._chain,
                        expected=self._config.chain_id,
                        received=chain_id,
                    )
                logger.info(f"Chain ID validated for {self._chain}: {chain_id}")

            self._connected = True

    async def _fetch_chain_id(self) -> int:
        result = await self._post(
            self._payload("eth_chainId", []), skip_chain_validation=True
        )
        if "error" in result:
            raise _parse_error(result["error"])
        return int(result["result"], 16)

    def _select_order(self) -> List[Tuple[RPCEndpointConfig, EndpointHealth]]:
        """Endpoints ordered by health and priority, best first."""
        return sorted(
            self._endpoints,
            key=lambda pair: pair[1].get_priority_score(pair[0].priority),
        )

    def _payload(self, method: str, params: List[Any]) -> Dict[str, Any]:
        self._request_id += 1
        return {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

    async def _post(
        self,
        payload: Union[Dict[str, Any], List[Dict[str, Any]]],
        skip_chain_validation: bool = False,
    ) -> Any:
        """
        Send a payload with endpoint selection and failover.

        Single payloads whose error is retryable move on to the next endpoint;
        any other JSON-RPC error body is returned to the caller untouched.
        """
        if not skip_chain_validation and self._validate_chain_id and not self._connected:
            await self.connect()

        errors: List[Tuple[str, str]] = []

        for config, health in self._select_order():
            start_time = time.time()
            try:
                client = await self._get_client()
                response = await client.post(
                    config.url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=config.timeout_seconds,
                )
                latency_ms = (time.time() - start_time) * 1000
                response.raise_for_status()
                result = response.json()
            except (httpx.HTTPError, ValueError) as e:
                latency_ms = (time.time() - start_time) * 1000
                health.record_failure(str(e))
                errors.append((config.url, str(e)))
                logger.warning(
                    f"RPC request to {config.url} failed after {latency_ms:.0f}ms: {e}"
                )
                continue

            if isinstance(result, dict) and "error" in result and _is_retryable(result["error"]):
                error_msg = str(result["error"])
                health.record_failure(error_msg)
                errors.append((config.url, error_msg))
                logger.warning(
                    f"RPC error from {config.url}: {error_msg}, trying next endpoint"
                )
                continue

            health.record_success(latency_ms)
            return result

        raise AllEndpointsFailedError(chain=self._chain, errors=errors)

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Make a JSON-RPC call with automatic failover.

        Raises:
            ChainIDMismatchError: If chain ID validation fails
            AllEndpointsFailedError: If all endpoints fail
            RPCError: If the node returns an error
        """
        result = await self._post(self._payload(method, params or []))
        if "error" in result:
            raise _parse_error(result["error"])
        logger.debug(f"RPC call {method} on {self._chain} succeeded")
        return result.get("result")

    async def batch_call(
        self, requests: Sequence[Tuple[str, List[Any]]]
    ) -> List[BatchResult]:
        """
        Send several calls as one JSON-RPC batch.

        Returns one entry per request in input order: the result, or an
        ``RPCError`` for an item the node rejected. Transport failures raise.
        """
        if not requests:
            return []

        payload = [self._payload(method, params) for method, params in requests]
        response = await self._post(payload)

        if isinstance(response, dict):
            # Whole batch rejected
            error = _parse_error(response.get("error", {"message": "invalid batch response"}))
            return [error for _ in payload]

        by_id = {item.get("id"): item for item in response if isinstance(item, dict)}
        results: List[BatchResult] = []
        for request in payload:
            item = by_id.get(request["id"])
            if item is None:
                results.append(RPCError("missing batch response item"))
            elif "error" in item:
                results.append(_parse_error(item["error"]))
            else:
                results.append(item.get("result"))
        return results

    async def get_latest_block_timestamp(self) -> int:
        """Timestamp (seconds) of the latest block."""
        block = await self.call("eth_getBlockByNumber", ["latest", False])
        if not block:
            raise RPCError("latest block unavailable")
        return int(block["timestamp"], 16)

    async def get_gas_price(self) -> int:
        """Get current gas price in wei."""
        result = await self.call("eth_gasPrice")
        return int(result, 16)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """Estimate gas for a transaction."""
        result = await self.call("eth_estimateGas", [tx])
        return int(result, 16)

    async def get_nonce(self, address: str, block: str = "pending") -> int:
        """Get transaction count (nonce) for address."""
        result = await self.call("eth_getTransactionCount", [address, block])
        return int(result, 16)

    async def send_raw_transaction(self, signed_tx: str) -> str:
        """Broadcast signed transaction."""
        if not signed_tx.startswith("0x"):
            signed_tx = "0x" + signed_tx
        return await self.call("eth_sendRawTransaction", [signed_tx])

    async def get_transaction_receipt(
        self, tx_hash: str
    ) -> Optional[Dict[str, Any]]:
        """Get transaction receipt."""
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def eth_call(
        self,
        tx: Dict[str, Any],
        block: str = "latest",
    ) -> str:
        """Execute a call without creating a transaction."""
        return await self.call("eth_call", [tx, block])

    async def call_contract(self, to: str, data: bytes) -> bytes:
        """eth_call against ``to`` and return the raw result bytes."""
        result = await self.eth_call({"to": to, "data": "0x" + data.hex()})
        return bytes.fromhex((result or "0x")[2:])

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Poll until the transaction has a receipt.

        Returns the receipt whatever its status; callers check ``status``.

        Raises:
            TimeoutError: If no receipt shows up within the timeout
        """
        timeout = timeout if timeout is not None else self._config.confirmation_timeout_seconds
        poll_interval = (
            poll_interval if poll_interval is not None else self._config.block_time_seconds
        )
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt:
                logger.info(
                    f"Transaction {tx_hash} mined in block "
                    f"{int(receipt.get('blockNumber', '0x0'), 16)} on {self._chain}"
                )
                return receipt

            if loop.time() - start_time > timeout:
                raise TimeoutError(f"Transaction {tx_hash} not mined after {timeout}s")

            await asyncio.sleep(poll_interval)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        self._connected = False

