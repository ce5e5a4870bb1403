"""
Contract ABI fragments used by the reconciliation engine.

Each function is described by its name and its input/output types; selectors
are derived from the canonical signature with keccak256. Calldata is encoded
and results are decoded with eth_abi.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address
from web3 import Web3

from .exceptions import DecodeError

logger = logging.getLogger(__name__)


def selector(signature: str) -> bytes:
    """First four bytes of keccak256(signature)."""
    return bytes(Web3.keccak(text=signature)[:4])


@dataclass(frozen=True)
class FunctionABI:
    """A contract function: name, input types and output types."""
    name: str
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return selector(self.signature)

    def encode(self, *args: Any) -> bytes:
        """Calldata for a call with ``args``."""
        if len(args) != len(self.inputs):
            raise ValueError(
                f"{self.signature} takes {len(self.inputs)} arguments, got {len(args)}"
            )
        return self.selector + encode(list(self.inputs), list(args))

    def decode(self, data: bytes) -> Tuple[Any, ...]:
        """
        Decode return data.

        Raises:
            DecodeError: If the data does not match the output types
        """
        if not data and self.outputs:
            raise DecodeError(f"Empty return data for {self.signature}")
        try:
            return tuple(decode(list(self.outputs), data))
        except (DecodingError, ValueError, TypeError) as e:
            raise DecodeError(
                f"Cannot decode result of {self.signature}: {e}",
                details={"data": "0x" + data.hex()},
            ) from e

    def decode_single(self, data: bytes) -> Any:
        """Decode return data of a function with exactly one output."""
        return self.decode(data)[0]


# =============================================================================
# CL8YBridge ledger
# =============================================================================

DEPOSIT_TUPLE = "(bytes32,bytes32,bytes32,address,uint256,uint256)"
WITHDRAW_TUPLE = "(bytes32,address,bytes32,address,uint256,uint256)"
APPROVAL_TUPLE = "(uint256,address,uint256,bool,bool,bool,bool)"

GET_DEPOSIT_HASHES = FunctionABI("getDepositHashes", (), ("bytes32[]",))
GET_DEPOSIT_HASH_COUNT = FunctionABI("getDepositHashCount", (), ("uint256",))
GET_DEPOSIT_HASHES_PAGE = FunctionABI(
    "getDepositHashes", ("uint256", "uint256"), ("bytes32[]",)
)

GET_WITHDRAW_HASHES = FunctionABI("getWithdrawHashes", (), ("bytes32[]",))
GET_WITHDRAW_HASH_COUNT = FunctionABI("getWithdrawHashCount", (), ("uint256",))
GET_WITHDRAW_HASHES_PAGE = FunctionABI(
    "getWithdrawHashes", ("uint256", "uint256"), ("bytes32[]",)
)

GET_DEPOSIT_FROM_HASH = FunctionABI("getDepositFromHash", ("bytes32",), (DEPOSIT_TUPLE,))
GET_WITHDRAW_FROM_HASH = FunctionABI("getWithdrawFromHash", ("bytes32",), (WITHDRAW_TUPLE,))
GET_WITHDRAW_APPROVAL = FunctionABI("getWithdrawApproval", ("bytes32",), (APPROVAL_TUPLE,))

APPROVE_WITHDRAW = FunctionABI(
    "approveWithdraw",
    (
        "bytes32",  # srcChainKey
        "address",  # token
        "address",  # to
        "bytes32",  # destAccount
        "uint256",  # amount
        "uint256",  # nonce
        "uint256",  # fee
        "address",  # feeRecipient
        "bool",  # deductFromAmount
    ),
)

# =============================================================================
# BridgeRouter
# =============================================================================

ROUTER_WITHDRAW = FunctionABI(
    "withdraw", ("bytes32", "address", "address", "uint256", "uint256")
)

# =============================================================================
# AccessManager
# =============================================================================

CAN_CALL = FunctionABI("canCall", ("address", "address", "bytes4"), ("bool", "uint32"))
GET_ACTIVE_ROLE_MEMBERS = FunctionABI("getActiveRoleMembers", ("uint64",), ("address[]",))
GET_ACTIVE_ROLE_MEMBER_COUNT = FunctionABI("getActiveRoleMemberCount", ("uint64",), ("uint256",))
GET_ACTIVE_ROLE_MEMBERS_FROM = FunctionABI(
    "getActiveRoleMembersFrom", ("uint64", "uint256", "uint256"), ("address[]",)
)

# =============================================================================
# ChainRegistry
# =============================================================================

GET_CHAIN_KEYS = FunctionABI("getChainKeys", (), ("bytes32[]",))
GET_CHAIN_KEY_COUNT = FunctionABI("getChainKeyCount", (), ("uint256",))
GET_CHAIN_KEYS_FROM = FunctionABI("getChainKeysFrom", ("uint256", "uint256"), ("bytes32[]",))

# =============================================================================
# Multicall3
# =============================================================================

AGGREGATE3 = FunctionABI(
    "aggregate3", ("(address,bool,bytes)[]",), ("(bool,bytes)[]",)
)

# =============================================================================
# Tokens
# =============================================================================

TOKEN_NAME = FunctionABI("name", (), ("string",))
TOKEN_SYMBOL = FunctionABI("symbol", (), ("string",))
TOKEN_DECIMALS = FunctionABI("decimals", (), ("uint8",))
TOKEN_LOGO_LINK = FunctionABI("logoLink", (), ("string",))


# =============================================================================
# Custom errors
# =============================================================================

@dataclass(frozen=True)
class ErrorABI:
    """A Solidity error definition."""
    name: str
    inputs: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return selector(self.signature)


KNOWN_ERRORS: Tuple[ErrorABI, ...] = (
    ErrorABI("Error", ("string",)),
    ErrorABI("Panic", ("uint256",)),
    # OpenZeppelin IERC20Errors
    ErrorABI("ERC20InsufficientBalance", ("address", "uint256", "uint256")),
    ErrorABI("ERC20InvalidSender", ("address",)),
    ErrorABI("ERC20InvalidReceiver", ("address",)),
    ErrorABI("ERC20InsufficientAllowance", ("address", "uint256", "uint256")),
    ErrorABI("ERC20InvalidApprover", ("address",)),
    ErrorABI("ERC20InvalidSpender", ("address",)),
    # AccessManaged / AccessManager
    ErrorABI("AccessManagedUnauthorized", ("address",)),
    ErrorABI("AccessManagedRequiredDelay", ("address", "uint32")),
    ErrorABI("AccessManagedInvalidAuthority", ("address",)),
    ErrorABI("AccessManagerUnauthorizedAccount", ("address", "uint64")),
    ErrorABI("AccessManagerUnauthorizedCall", ("address", "address", "bytes4")),
    ErrorABI("AccessManagerNotScheduled", ("bytes32",)),
    ErrorABI("AccessManagerNotReady", ("bytes32",)),
    ErrorABI("AccessManagerExpired", ("bytes32",)),
)

_ERRORS_BY_SELECTOR: Dict[bytes, ErrorABI] = {e.selector: e for e in KNOWN_ERRORS}


def _format_arg(abi_type: str, value: Any) -> str:
    if abi_type == "address":
        return to_checksum_address(value)
    if isinstance(value, bytes):
        return "0x" + value.hex()
    if isinstance(value, str):
        return value
    return str(value)


def decode_revert(data: Optional[str], errors: Sequence[ErrorABI] = ()) -> Optional[str]:
    """
    Render revert data as ``ErrorName(arg, ...)``.

    ``errors`` extends the built-in definitions. Returns None when the
    selector is unknown or the arguments do not decode.
    """
    if not data or not data.startswith("0x") or len(data) < 10:
        return None
    try:
        raw = bytes.fromhex(data[2:])
    except ValueError:
        return None
    lookup = dict(_ERRORS_BY_SELECTOR)
    lookup.update({e.selector: e for e in errors})
    error = lookup.get(raw[:4])
    if error is None:
        return None
    try:
        args = decode(list(error.inputs), raw[4:]) if error.inputs else ()
    except (DecodingError, ValueError, TypeError):
        logger.debug(f"Revert data for {error.signature} does not decode")
        return None
    return f"{error.name}({', '.join(_format_arg(t, a) for t, a in zip(error.inputs, args))})"
