"""
HTLC Toolkit - Contract Exceptions

This module defines custom exceptions for contract construction, spending and
persistence.
"""

from transactions.exceptions import BroadcastError, InsufficientFundsError, SigningError


class HTLCError(Exception):
    """Base exception for contract-related errors."""
    pass


class ValidationError(HTLCError):
    """Exception raised for invalid swap or contract parameters."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class ContractReconstructionError(HTLCError):
    """Exception raised when a contract cannot be matched to on-chain data."""
    pass


class TimeoutNotReachedError(HTLCError):
    """Exception raised when a refund is attempted before the timelock matures."""

    def __init__(self, current_height: int, timelock: int):
        self.current_height = current_height
        self.timelock = timelock
        self.blocks_remaining = max(timelock - current_height, 0)
        super().__init__(
            f"Timelock not reached: current height {current_height}, "
            f"timelock {timelock} ({self.blocks_remaining} blocks remaining)"
        )


class PersistenceError(HTLCError):
    """Exception raised when a contract record fails validation, parsing or decryption."""
    pass


__all__ = [
    'HTLCError',
    'ValidationError',
    'ContractReconstructionError',
    'TimeoutNotReachedError',
    'PersistenceError',
    'SigningError',
    'BroadcastError',
    'InsufficientFundsError',
]
