"""
HTLC Toolkit - Transaction Exceptions

This module defines custom exceptions for transaction construction, signing
and broadcasting.
"""

from enum import Enum
from typing import Optional


class TransactionError(Exception):
    """Base exception for transaction-related errors."""
    pass


class TransactionParseError(TransactionError):
    """Exception raised when raw transaction bytes cannot be decoded."""
    pass


class InvalidScriptError(TransactionError):
    """Exception raised for invalid script operations."""
    pass


class AddressError(TransactionError):
    """Exception raised for addresses that cannot be decoded or encoded."""
    pass


class SigningError(TransactionError):
    """Exception raised when a signature hash cannot be computed or a signer does not finalize."""
    pass


class InsufficientFundsError(TransactionError):
    """Exception raised when inputs are insufficient to cover outputs and fees."""

    def __init__(self, required: int, available: int, message: str = None):
        self.required = required
        self.available = available
        if message is None:
            message = f"Insufficient funds: required {required} satoshis, available {available} satoshis"
        super().__init__(message)


class RejectionReason(Enum):
    """Why a node refused a transaction."""
    NON_FINAL = "non_final"
    DOUBLE_SPEND = "double_spend"
    INSUFFICIENT_FEE = "insufficient_fee"
    ALREADY_KNOWN = "already_known"
    OTHER = "other"


class BroadcastError(TransactionError):
    """Exception raised when the network rejects a transaction."""

    def __init__(self, message: str, reason: RejectionReason = RejectionReason.OTHER,
                 txid: Optional[str] = None):
        self.reason = reason
        self.txid = txid
        if txid:
            message = f"{message} (txid {txid})"
        super().__init__(message)

    @property
    def is_timelock_rejection(self) -> bool:
        """True when the node refused the spend because a timelock has not matured yet."""
        return self.reason == RejectionReason.NON_FINAL
