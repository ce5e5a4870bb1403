"""
Chain keys and 32-byte identifier decoding.

Bridge records carry destination tokens, accounts and chains as opaque
32-byte values so that non-EVM ecosystems fit in the same slots. This module
derives chain keys and decodes those values into tagged variants.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from eth_abi import encode
from eth_utils import to_checksum_address
from web3 import Web3

from .exceptions import DecodeError

EVM_TAG = "EVM"


@dataclass(frozen=True)
class NativeAddress:
    """A 32-byte value whose 12 high-order bytes are zero."""
    address: str


@dataclass(frozen=True)
class ForeignBytes:
    """A 32-byte value that is not an EVM address."""
    raw: bytes

    def hex(self) -> str:
        return "0x" + self.raw.hex()


Opaque32 = Union[NativeAddress, ForeignBytes]


@dataclass(frozen=True)
class EvmChain:
    """A chain key that matches a configured EVM chain."""
    chain_id: int


@dataclass(frozen=True)
class UnknownChain:
    """A chain key that matches no configured chain."""
    raw: bytes

    def hex(self) -> str:
        return "0x" + self.raw.hex()


DecodedChain = Union[EvmChain, UnknownChain]


def to_bytes32(value: Union[bytes, str]) -> bytes:
    """Accept raw bytes or 0x-hex and return exactly 32 bytes."""
    if isinstance(value, str):
        text = value[2:] if value.startswith("0x") else value
        try:
            value = bytes.fromhex(text)
        except ValueError as e:
            raise DecodeError(f"Not a hex value: {value!r}") from e
    if len(value) != 32:
        raise DecodeError(f"Expected 32 bytes, got {len(value)}")
    return bytes(value)


def derive_chain_key(tag: str, chain_id: int) -> bytes:
    """
    keccak256(abi.encode(string tag, bytes32 chainId)).

    The chain id is encoded as a 32-byte big-endian integer. Pure and
    deterministic.
    """
    chain_id_word = chain_id.to_bytes(32, "big")
    return bytes(Web3.keccak(encode(["string", "bytes32"], [tag, chain_id_word])))


def evm_chain_key(chain_id: int) -> bytes:
    return derive_chain_key(EVM_TAG, chain_id)


def decode_opaque32(value: Union[bytes, str]) -> Opaque32:
    """Classify a 32-byte value as an EVM address or foreign bytes."""
    raw = to_bytes32(value)
    if raw[:12] == b"\x00" * 12:
        return NativeAddress(to_checksum_address(raw[12:]))
    return ForeignBytes(raw)


def try_bytes32_to_address(value: Union[bytes, str, None]) -> Optional[str]:
    """Checksummed address held in a 32-byte value, or None."""
    if value is None:
        return None
    try:
        decoded = decode_opaque32(value)
    except DecodeError:
        return None
    if isinstance(decoded, NativeAddress):
        return decoded.address
    return None


def address_to_bytes32(address: str) -> bytes:
    """Left-pad a 20-byte address to 32 bytes."""
    raw = bytes.fromhex(address[2:] if address.startswith("0x") else address)
    if len(raw) != 20:
        raise DecodeError(f"Not an address: {address!r}")
    return b"\x00" * 12 + raw
