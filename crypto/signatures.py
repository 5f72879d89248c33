"""
ECDSA and Schnorr Signature Operations for the HTLC toolkit

ECDSA signatures sign segwit v0 (BIP143) digests for the P2WSH contract; BIP340
Schnorr signatures sign BIP341 digests for the Taproot contract.

References:
- BIP66 (strict DER): https://github.com/bitcoin/bips/blob/master/bip-0066.mediawiki
- BIP340: https://github.com/bitcoin/bips/blob/master/bip-0340.mediawiki
"""

from dataclasses import dataclass
from typing import Optional

from coincurve.keys import PublicKeyXOnly

from .exceptions import InvalidSignatureError, InvalidKeyError
from .keys import CURVE_ORDER, PrivateKey, PublicKey


@dataclass
class ECDSASignature:
    """
    ECDSA signature representation.
    """
    r: int
    s: int

    def __post_init__(self):
        """Validate signature components."""
        if not (1 <= self.r < CURVE_ORDER):
            raise InvalidSignatureError("Invalid r value")
        if not (1 <= self.s < CURVE_ORDER):
            raise InvalidSignatureError("Invalid s value")

    @classmethod
    def from_der(cls, der_bytes: bytes) -> 'ECDSASignature':
        """
        Parse a strict-DER signature.

        Args:
            der_bytes: DER-encoded signature

        Returns:
            ECDSASignature object
        """
        if len(der_bytes) < 8 or len(der_bytes) > 72:
            raise InvalidSignatureError("DER signature has invalid length")
        if der_bytes[0] != 0x30:
            raise InvalidSignatureError("Invalid DER signature header")
        if der_bytes[1] != len(der_bytes) - 2:
            raise InvalidSignatureError("Invalid DER length")

        offset = 2
        values = []
        for _ in range(2):
            if der_bytes[offset] != 0x02:
                raise InvalidSignatureError("Expected DER integer marker")
            length = der_bytes[offset + 1]
            start = offset + 2
            end = start + length
            if length == 0 or end > len(der_bytes):
                raise InvalidSignatureError("Invalid DER integer length")
            values.append(int.from_bytes(der_bytes[start:end], 'big'))
            offset = end

        if offset != len(der_bytes):
            raise InvalidSignatureError("Trailing bytes after DER signature")

        return cls(r=values[0], s=values[1])

    def to_der(self) -> bytes:
        """
        Encode signature in DER format.

        Returns:
            DER-encoded signature
        """
        def encode_int(value: int) -> bytes:
            raw = value.to_bytes((value.bit_length() + 7) // 8, 'big')
            # Keep the integer positive
            if raw[0] >= 0x80:
                raw = b'\x00' + raw
            return b'\x02' + bytes([len(raw)]) + raw

        sequence = encode_int(self.r) + encode_int(self.s)
        return b'\x30' + bytes([len(sequence)]) + sequence

    @property
    def is_low_s(self) -> bool:
        """BIP62 low-S check."""
        return self.s <= CURVE_ORDER // 2


# ECDSA signature operations

def sign_ecdsa(private_key: PrivateKey, message_hash: bytes) -> ECDSASignature:
    """
    Sign message hash with ECDSA (RFC6979 deterministic nonce).

    Args:
        private_key: Private key for signing
        message_hash: 32-byte message hash

    Returns:
        ECDSA signature
    """
    if len(message_hash) != 32:
        raise InvalidSignatureError("Message hash must be 32 bytes")

    try:
        return ECDSASignature.from_der(private_key.sign(message_hash))
    except (InvalidKeyError, ValueError) as e:
        raise InvalidSignatureError(f"ECDSA signing failed: {e}") from e


def verify_ecdsa(public_key: PublicKey, signature: ECDSASignature,
                 message_hash: bytes) -> bool:
    """
    Verify ECDSA signature.

    Returns:
        True if signature is valid
    """
    return public_key.verify(signature.to_der(), message_hash)


# Schnorr signature operations (BIP340)

def sign_schnorr(private_key: PrivateKey, message: bytes,
                 aux_rand: Optional[bytes] = None) -> bytes:
    """
    Sign a 32-byte message with BIP340 Schnorr.

    Args:
        private_key: Private key for signing
        message: 32-byte message
        aux_rand: Optional 32-byte auxiliary randomness

    Returns:
        64-byte signature
    """
    if aux_rand is not None and len(aux_rand) != 32:
        raise InvalidSignatureError("Auxiliary randomness must be 32 bytes")
    try:
        return private_key.sign_schnorr(message, aux_rand)
    except (InvalidKeyError, ValueError) as e:
        raise InvalidSignatureError(f"Schnorr signing failed: {e}") from e


def verify_schnorr(x_only_pubkey: bytes, signature: bytes, message: bytes) -> bool:
    """
    Verify a BIP340 Schnorr signature.

    Args:
        x_only_pubkey: 32-byte x-only public key
        signature: 64-byte signature
        message: 32-byte message

    Returns:
        True if signature is valid
    """
    if len(x_only_pubkey) != 32 or len(signature) != 64 or len(message) != 32:
        return False
    try:
        return PublicKeyXOnly(x_only_pubkey).verify(signature, message)
    except ValueError:
        return False
