"""
HTLC Toolkit - Cryptographic Operations Module

This module provides cryptographic utilities including:
- secp256k1 key handling and scalar/point addition for escrow keys
- ECDSA and BIP340 Schnorr signature operations
- BIP341 Taproot key tweaking
- Password-based encryption of sensitive documents

Dependencies:
- coincurve: Fast secp256k1 operations
- pycryptodome: RIPEMD160, AES-GCM and PBKDF2
- secrets: Secure random number generation
"""

from .exceptions import (
    CryptoError,
    InvalidKeyError,
    InvalidSignatureError,
    KeyCombinationError,
    KeyStorageError,
)
from .keys import (
    CURVE_ORDER,
    PrivateKey,
    PublicKey,
    combine_public_keys,
    generate_scalar,
    hash160,
    sha256,
    tagged_hash,
)
from .signatures import (
    ECDSASignature,
    sign_ecdsa,
    sign_schnorr,
    verify_ecdsa,
    verify_schnorr,
)
from .storage import (
    EncryptedPayload,
    decrypt_payload,
    encrypt_payload,
    write_json_atomic,
)

__version__ = "0.1.0"
__all__ = [
    # Exceptions
    "CryptoError",
    "InvalidKeyError",
    "InvalidSignatureError",
    "KeyCombinationError",
    "KeyStorageError",

    # Keys
    "CURVE_ORDER",
    "PrivateKey",
    "PublicKey",
    "combine_public_keys",
    "generate_scalar",
    "hash160",
    "sha256",
    "tagged_hash",

    # Signatures
    "ECDSASignature",
    "sign_ecdsa",
    "sign_schnorr",
    "verify_ecdsa",
    "verify_schnorr",

    # Storage
    "EncryptedPayload",
    "decrypt_payload",
    "encrypt_payload",
    "write_json_atomic",
]
