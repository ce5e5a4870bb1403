"""Exception hierarchy for cl8y-bridge.

All bridge-specific exceptions inherit from BridgeError, enabling:
- Consistent error handling between the read model and the actions
- Structured error output with machine-readable error codes
- A short user-facing message for failed transactions

Read paths never raise these to the caller: a missing configuration yields an
unavailable view and partial failures yield absent fields. Write paths (the
mutating actions) always raise.

All exceptions have:
- error_code: Machine-readable error code (e.g., "DECODE_ERROR")
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to a serializable dictionary
"""
from __future__ import annotations

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class BridgeError(Exception):
    """Base exception for all bridge errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: str = "BRIDGE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a serializable dictionary."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ConfigurationError(BridgeError):
    """A chain or contract required by an operation is not configured."""

    error_code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        chain_id: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if chain_id is not None:
            details["chain_id"] = chain_id
        super().__init__(message, details=details)


class DecodeError(BridgeError):
    """A contract result or 32-byte value could not be decoded."""

    error_code = "DECODE_ERROR"


# =============================================================================
# Action Errors
# =============================================================================

class BridgeActionError(BridgeError):
    """A mutating action failed.

    ``user_message`` is the short text shown to an operator: "Transaction
    canceled" for a rejection, the decoded custom error for a revert, or the
    raw message otherwise.
    """

    error_code = "ACTION_FAILED"

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        tx_hash: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if tx_hash:
            details["tx_hash"] = tx_hash
        super().__init__(message, details=details)
        self.user_message = user_message or message
        self.tx_hash = tx_hash

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["user_message"] = self.user_message
        return result


class NotActionableError(BridgeActionError):
    """The record is not in a state that allows the requested action."""

    error_code = "NOT_ACTIONABLE"


class UserRejectedError(BridgeActionError):
    """The signer refused to sign the transaction."""

    error_code = "USER_REJECTED"

    def __init__(self, message: str = "User rejected the request") -> None:
        super().__init__(message, user_message="Transaction canceled")


class TransactionRevertedError(BridgeActionError):
    """The transaction reverted in simulation or on chain."""

    error_code = "TRANSACTION_REVERTED"

    def __init__(
        self,
        message: str,
        revert_data: Optional[str] = None,
        user_message: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> None:
        details = {"revert_data": revert_data} if revert_data else None
        super().__init__(
            message, user_message=user_message, tx_hash=tx_hash, details=details
        )
        self.revert_data = revert_data
