"""
Cryptographic Exceptions for the HTLC toolkit

This module defines custom exceptions for key, signature and storage operations.
"""


class CryptoError(Exception):
    """Base exception for all cryptographic errors."""
    pass


class InvalidKeyError(CryptoError):
    """Raised when a key is invalid or malformed."""
    pass


class InvalidSignatureError(CryptoError):
    """Raised when a signature is invalid or signing fails."""
    pass


class KeyCombinationError(CryptoError):
    """Raised when two keys combine into a degenerate result (zero scalar or point at infinity)."""
    pass


class KeyStorageError(CryptoError):
    """Raised when encrypting or decrypting stored material fails."""
    pass
