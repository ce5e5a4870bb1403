"""CL8Y bridge read model, cross-chain correlation and operator actions."""

from .actions import ActionResult, BridgeActions, readable_error
from .cache import ViewCache
from .config import (
    BridgeReconConfig,
    BridgeSettings,
    ChainConfig,
    build_default_config,
    get_config,
    set_config,
)
from .correlator import CrossChainCorrelator
from .eligibility import BlockClock, compute_eligibility
from .exceptions import (
    BridgeActionError,
    BridgeError,
    ConfigurationError,
    DecodeError,
    NotActionableError,
    TransactionRevertedError,
    UserRejectedError,
)
from .identifiers import decode_opaque32, derive_chain_key, evm_chain_key
from .metadata import MetadataResolver, format_amount, sanitize_logo_uri
from .models import (
    ApprovalState,
    CorrelatedDeposit,
    DepositRecord,
    Eligibility,
    TokenMetadata,
    ViewResult,
    WithdrawRecord,
    WithdrawView,
)
from .paginator import LedgerPaginator, enumerate_record_ids
from .refresh import RefreshController
from .registry import ChainRegistry
from .rpc_client import ChainRPCClient, RPCClientError, RPCError
from .service import BridgeViewService
from .signer import LocalAccountSigner, TransactionSigner

__all__ = [
    "ActionResult",
    "BridgeActions",
    "readable_error",
    "ViewCache",
    "BridgeReconConfig",
    "BridgeSettings",
    "ChainConfig",
    "build_default_config",
    "get_config",
    "set_config",
    "CrossChainCorrelator",
    "BlockClock",
    "compute_eligibility",
    "BridgeActionError",
    "BridgeError",
    "ConfigurationError",
    "DecodeError",
    "NotActionableError",
    "TransactionRevertedError",
    "UserRejectedError",
    "decode_opaque32",
    "derive_chain_key",
    "evm_chain_key",
    "MetadataResolver",
    "format_amount",
    "sanitize_logo_uri",
    "ApprovalState",
    "CorrelatedDeposit",
    "DepositRecord",
    "Eligibility",
    "TokenMetadata",
    "ViewResult",
    "WithdrawRecord",
    "WithdrawView",
    "LedgerPaginator",
    "enumerate_record_ids",
    "RefreshController",
    "ChainRegistry",
    "ChainRPCClient",
    "RPCClientError",
    "RPCError",
    "BridgeViewService",
    "LocalAccountSigner",
    "TransactionSigner",
]
