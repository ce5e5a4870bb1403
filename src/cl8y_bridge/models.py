"""Data model of the bridge read model."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Generic, List, Optional, Sequence, TypeVar

from eth_utils import to_checksum_address

from .identifiers import DecodedChain, Opaque32


@dataclass(frozen=True)
class ChainDescriptor:
    """A configured chain. Static, never mutated after startup."""
    chain_id: int
    name: str
    display_name: str
    is_testnet: Optional[bool]
    explorer_host: str
    chain_key: bytes

    @property
    def is_mainnet(self) -> bool:
        # Unknown flag counts as mainnet
        return not self.is_testnet


@dataclass(frozen=True)
class DepositRecord:
    """A deposit as recorded on the source chain ledger."""
    dest_chain_key: bytes
    dest_token_address: bytes
    dest_account: bytes
    sender: str
    amount: int
    nonce: int

    @classmethod
    def from_tuple(cls, values: Sequence) -> "DepositRecord":
        dest_chain_key, dest_token, dest_account, sender, amount, nonce = values
        return cls(
            dest_chain_key=bytes(dest_chain_key),
            dest_token_address=bytes(dest_token),
            dest_account=bytes(dest_account),
            sender=to_checksum_address(sender),
            amount=int(amount),
            nonce=int(nonce),
        )


@dataclass(frozen=True)
class WithdrawRecord:
    """A withdraw as recorded on the destination chain ledger."""
    src_chain_key: bytes
    token: str
    dest_account: bytes
    to: str
    amount: int
    nonce: int

    @classmethod
    def from_tuple(cls, values: Sequence) -> "WithdrawRecord":
        src_chain_key, token, dest_account, to, amount, nonce = values
        return cls(
            src_chain_key=bytes(src_chain_key),
            token=to_checksum_address(token),
            dest_account=bytes(dest_account),
            to=to_checksum_address(to),
            amount=int(amount),
            nonce=int(nonce),
        )


@dataclass(frozen=True)
class ApprovalState:
    """Approval of a withdraw on the destination ledger."""
    fee: int = 0
    fee_recipient: str = "0x0000000000000000000000000000000000000000"
    approved_at: int = 0
    is_approved: bool = False
    deduct_from_amount: bool = False
    cancelled: bool = False
    executed: bool = False

    @classmethod
    def from_tuple(cls, values: Sequence) -> "ApprovalState":
        fee, fee_recipient, approved_at, is_approved, deduct, cancelled, executed = values
        return cls(
            fee=int(fee),
            fee_recipient=to_checksum_address(fee_recipient),
            approved_at=int(approved_at),
            is_approved=bool(is_approved),
            deduct_from_amount=bool(deduct),
            cancelled=bool(cancelled),
            executed=bool(executed),
        )

    @property
    def is_empty(self) -> bool:
        return self == ApprovalState()

    @property
    def is_terminal(self) -> bool:
        return self.executed or self.cancelled


@dataclass(frozen=True)
class PermissionCheck:
    """Result of AccessManager.canCall."""
    immediate: bool
    delay: int


@dataclass(frozen=True)
class Eligibility:
    """Whether a withdraw can be executed now, and when it could be."""
    remaining_seconds: int
    actionable_now: bool
    allowed_at: int


@dataclass(frozen=True)
class TokenMetadata:
    """Display metadata for a token. May be stale."""
    name: str
    symbol: str
    decimals: int
    logo_uri: Optional[str] = None


@dataclass
class CorrelatedDeposit:
    """A source-chain deposit joined with its destination-side state."""
    source_chain_id: int
    record_hash: bytes
    deposit: DepositRecord
    dest_chain: DecodedChain
    dest_token: Opaque32
    dest_account: Opaque32
    cross_ecosystem: bool
    approval: Optional[ApprovalState] = None
    in_dest_withdraw_set: bool = False
    approved_and_matched: bool = False
    can_approve: Optional[PermissionCheck] = None
    token_meta: Optional[TokenMetadata] = None

    @property
    def dest_chain_id(self) -> Optional[int]:
        return getattr(self.dest_chain, "chain_id", None)

    @property
    def dest_token_address(self) -> Optional[str]:
        return getattr(self.dest_token, "address", None)

    @property
    def dest_account_address(self) -> Optional[str]:
        return getattr(self.dest_account, "address", None)


@dataclass
class WithdrawView:
    """A withdraw hash on the viewed chain with its record and approval."""
    record_hash: bytes
    withdraw: Optional[WithdrawRecord] = None
    approval: Optional[ApprovalState] = None
    source_chain: Optional[DecodedChain] = None
    token_meta: Optional[TokenMetadata] = None
    eligibility: Optional[Eligibility] = None


T = TypeVar("T")


@dataclass
class ViewResult(Generic[T]):
    """
    Output of a view computation.

    ``available`` is False when the chain lacks an RPC client or a bridge
    deployment; ``items`` is then empty.
    """
    chain_id: int
    available: bool = True
    items: List[T] = field(default_factory=list)
    reason: Optional[str] = None
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def unavailable(cls, chain_id: int, reason: str) -> "ViewResult[T]":
        return cls(chain_id=chain_id, available=False, reason=reason)
