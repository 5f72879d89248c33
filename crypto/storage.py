"""
Encrypted-at-rest Storage for the HTLC toolkit

This module provides password-based encryption of sensitive documents (such as
contract records holding a spendable swap secret) and atomic JSON writes.

Features:
- AES-256-GCM authenticated encryption
- PBKDF2-HMAC-SHA256 key derivation from a password
- Atomic write (temp file + rename) with owner-only permissions
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from Crypto.Random import get_random_bytes

from .exceptions import KeyStorageError


ENCRYPTION_METHOD = "pbkdf2_aes_256_gcm"
PBKDF2_ITERATIONS = 100000
SALT_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16


@dataclass
class EncryptedPayload:
    """
    Encrypted document container.
    """
    encrypted_data: bytes
    salt: bytes
    nonce: bytes  # IV for AES-GCM
    tag: bytes  # Authentication tag for AES-GCM
    encryption_method: str = ENCRYPTION_METHOD
    iterations: int = PBKDF2_ITERATIONS

    def __post_init__(self):
        """Validate encrypted data structure."""
        if self.encryption_method != ENCRYPTION_METHOD:
            raise KeyStorageError(f"Unsupported encryption method: {self.encryption_method}")
        if len(self.encrypted_data) == 0:
            raise KeyStorageError("Encrypted data cannot be empty")
        if len(self.salt) != SALT_LENGTH:
            raise KeyStorageError("Invalid salt length")
        if len(self.nonce) != NONCE_LENGTH:
            raise KeyStorageError("Invalid nonce length for AES-GCM")
        if len(self.tag) != TAG_LENGTH:
            raise KeyStorageError("Invalid tag length for AES-GCM")
        if isinstance(self.iterations, bool) or not isinstance(self.iterations, int):
            raise KeyStorageError("PBKDF2 iteration count must be an integer")
        if self.iterations < PBKDF2_ITERATIONS:
            raise KeyStorageError(
                f"PBKDF2 iteration count {self.iterations} is below the minimum of {PBKDF2_ITERATIONS}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'encryption_method': self.encryption_method,
            'iterations': self.iterations,
            'salt': self.salt.hex(),
            'nonce': self.nonce.hex(),
            'tag': self.tag.hex(),
            'encrypted_data': self.encrypted_data.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EncryptedPayload':
        try:
            return cls(
                encryption_method=data['encryption_method'],
                iterations=data.get('iterations', PBKDF2_ITERATIONS),
                salt=bytes.fromhex(data['salt']),
                nonce=bytes.fromhex(data['nonce']),
                tag=bytes.fromhex(data['tag']),
                encrypted_data=bytes.fromhex(data['encrypted_data']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise KeyStorageError(f"Malformed encrypted payload: {e}") from e


def is_encrypted_document(data: Dict[str, Any]) -> bool:
    """Check whether a parsed JSON document is an encrypted envelope."""
    return isinstance(data, dict) and 'encryption_method' in data and 'encrypted_data' in data


def _derive_key(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """Derive encryption key from password using PBKDF2."""
    if not password:
        raise KeyStorageError("Password cannot be empty")
    return PBKDF2(
        password=password,
        salt=salt,
        dkLen=32,
        count=iterations,
        hmac_hash_module=SHA256
    )


def encrypt_payload(plaintext: bytes, password: str) -> EncryptedPayload:
    """
    Encrypt bytes under a password.

    Args:
        plaintext: Data to encrypt
        password: Password for encryption

    Returns:
        EncryptedPayload with fresh salt and nonce
    """
    salt = get_random_bytes(SALT_LENGTH)
    nonce = get_random_bytes(NONCE_LENGTH)
    key = _derive_key(password, salt)

    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    encrypted_data, tag = cipher.encrypt_and_digest(plaintext)

    return EncryptedPayload(
        encrypted_data=encrypted_data,
        salt=salt,
        nonce=nonce,
        tag=tag,
    )


def decrypt_payload(payload: EncryptedPayload, password: str) -> bytes:
    """
    Decrypt and authenticate an EncryptedPayload.

    Raises:
        KeyStorageError: wrong password or tampered ciphertext
    """
    key = _derive_key(password, payload.salt, payload.iterations)
    cipher = AES.new(key, AES.MODE_GCM, nonce=payload.nonce)
    try:
        return cipher.decrypt_and_verify(payload.encrypted_data, payload.tag)
    except ValueError as e:
        raise KeyStorageError("Decryption failed: wrong password or corrupted data") from e


def write_json_atomic(path: Union[str, Path], data: Dict[str, Any], mode: int = 0o600) -> None:
    """
    Write a JSON document atomically.

    The document is written to a sibling ``.tmp`` file which is then renamed
    over the target, so readers never see a partial file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_suffix(path.suffix + '.tmp')

    fd = os.open(temp_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        temp_file.unlink(missing_ok=True)
        raise
    temp_file.replace(path)
