"""
Key Management and Scalar Arithmetic for the HTLC toolkit

This module handles secp256k1 private/public key operations, the scalar and
point additions behind the atomic-swap escrow key, and Taproot key tweaking.

References:
- SEC2 secp256k1: https://www.secg.org/sec2-v2.pdf
- BIP340: https://github.com/bitcoin/bips/blob/master/bip-0340.mediawiki
- BIP341: https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki
"""

import hashlib
import secrets
from typing import Iterable, Optional, Tuple, Union

from coincurve import PrivateKey as CoinCurvePrivateKey, PublicKey as CoinCurvePublicKey
from Crypto.Hash import RIPEMD160

from .exceptions import (
    InvalidKeyError,
    KeyCombinationError,
)


# secp256k1 group order and field prime
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
FIELD_PRIME = 2**256 - 2**32 - 977


def sha256(data: bytes) -> bytes:
    """Single SHA-256 digest."""
    return hashlib.sha256(data).digest()


def hash160(data: bytes) -> bytes:
    """
    Compute HASH160 (RIPEMD160(SHA256(data))).

    Args:
        data: Input data to hash

    Returns:
        20-byte HASH160 digest
    """
    rmd = RIPEMD160.new()
    rmd.update(sha256(data))
    return rmd.digest()


def tagged_hash(tag: str, data: bytes) -> bytes:
    """
    Compute BIP340/341 tagged hash: SHA256(SHA256(tag) + SHA256(tag) + data).

    Args:
        tag: Tag string for the hash
        data: Data to hash

    Returns:
        32-byte tagged hash
    """
    tag_hash = sha256(tag.encode('utf-8'))
    return sha256(tag_hash + tag_hash + data)


def lift_x(x: bytes) -> Optional[bytes]:
    """
    Lift an x-coordinate to the point with even y.

    Args:
        x: 32-byte x-coordinate

    Returns:
        33-byte compressed public key with even y, or None if x is not on the curve
    """
    if len(x) != 32:
        return None
    candidate = b'\x02' + x
    try:
        CoinCurvePublicKey(candidate)
    except ValueError:
        return None
    return candidate


def has_even_y(pubkey: bytes) -> bool:
    """Check if a 33-byte compressed public key has an even y-coordinate."""
    return pubkey[0] == 0x02


def generate_scalar() -> int:
    """Draw a uniformly random scalar in [1, n-1] from the OS CSPRNG."""
    return secrets.randbelow(CURVE_ORDER - 1) + 1


class PrivateKey:
    """
    Wrapper for secp256k1 private key operations.
    """

    def __init__(self, key_bytes: Optional[bytes] = None):
        """
        Initialize private key.

        Args:
            key_bytes: 32-byte private key. If None, generates random key.
        """
        if key_bytes is None:
            key_bytes = generate_scalar().to_bytes(32, 'big')

        if not isinstance(key_bytes, bytes) or len(key_bytes) != 32:
            raise InvalidKeyError("Private key must be 32 bytes")

        key_int = int.from_bytes(key_bytes, 'big')
        if key_int == 0 or key_int >= CURVE_ORDER:
            raise InvalidKeyError("Private key out of valid range")

        self._key = CoinCurvePrivateKey(key_bytes)

    @classmethod
    def from_hex(cls, hex_str: str) -> 'PrivateKey':
        """Create a private key from a 64-character hex string."""
        try:
            return cls(bytes.fromhex(hex_str))
        except ValueError as e:
            raise InvalidKeyError(f"Invalid private key hex: {e}") from e

    @classmethod
    def from_int(cls, value: int) -> 'PrivateKey':
        """Create a private key from an integer scalar."""
        if not 0 < value < CURVE_ORDER:
            raise InvalidKeyError("Private key out of valid range")
        return cls(value.to_bytes(32, 'big'))

    @property
    def bytes(self) -> bytes:
        """Get private key as bytes."""
        return self._key.secret

    @property
    def hex(self) -> str:
        """Get private key as hex string."""
        return self._key.secret.hex()

    @property
    def scalar(self) -> int:
        """Get private key as an integer."""
        return int.from_bytes(self._key.secret, 'big')

    def public_key(self) -> 'PublicKey':
        """Get corresponding public key."""
        return PublicKey(self._key.public_key)

    def sign(self, message_hash: bytes) -> bytes:
        """
        Sign a 32-byte digest with ECDSA (RFC6979 nonce, low-S).

        Args:
            message_hash: 32-byte message hash to sign

        Returns:
            DER-encoded signature
        """
        if len(message_hash) != 32:
            raise InvalidKeyError("Message hash must be 32 bytes")
        return self._key.sign(message_hash, hasher=None)

    def sign_schnorr(self, message: bytes, aux_rand: Optional[bytes] = None) -> bytes:
        """
        Sign a 32-byte message with BIP340 Schnorr.

        Args:
            message: 32-byte message (a sighash)
            aux_rand: Optional 32-byte auxiliary randomness

        Returns:
            64-byte signature
        """
        if len(message) != 32:
            raise InvalidKeyError("Schnorr message must be 32 bytes")
        if aux_rand is None:
            aux_rand = secrets.token_bytes(32)
        return self._key.sign_schnorr(message, aux_rand)

    def add_scalar(self, other: Union['PrivateKey', int]) -> 'PrivateKey':
        """
        Return (self + other) mod n.

        Raises:
            KeyCombinationError: if the sum is zero modulo the group order
        """
        other_int = other.scalar if isinstance(other, PrivateKey) else other
        total = (self.scalar + other_int) % CURVE_ORDER
        if total == 0:
            raise KeyCombinationError("Scalar sum is zero modulo the curve order")
        return PrivateKey(total.to_bytes(32, 'big'))

    def negate(self) -> 'PrivateKey':
        """Return n - self."""
        return PrivateKey((CURVE_ORDER - self.scalar).to_bytes(32, 'big'))

    def tweak_add(self, tweak: bytes) -> 'PrivateKey':
        """
        Add a 32-byte tweak to the private key.

        Args:
            tweak: 32-byte tweak value

        Returns:
            Tweaked private key
        """
        if len(tweak) != 32:
            raise InvalidKeyError("Tweak must be 32 bytes")

        tweak_int = int.from_bytes(tweak, 'big')
        if tweak_int >= CURVE_ORDER:
            raise InvalidKeyError("Tweak out of range")

        tweaked_int = (self.scalar + tweak_int) % CURVE_ORDER
        if tweaked_int == 0:
            raise InvalidKeyError("Tweaked key is zero")

        return PrivateKey(tweaked_int.to_bytes(32, 'big'))

    def taproot_tweak_private_key(self, merkle_root: Optional[bytes] = None) -> Tuple['PrivateKey', bool]:
        """
        Tweak private key for Taproot according to BIP341.

        Args:
            merkle_root: 32-byte Merkle root of script tree (None for key-path only)

        Returns:
            Tuple of (tweaked_private_key, negated_flag)
        """
        internal_pubkey = self.public_key()
        negated = not internal_pubkey.has_even_y
        base = self.negate() if negated else self

        tweak = compute_taproot_tweak(internal_pubkey.x_only, merkle_root)
        return base.tweak_add(tweak), negated

    def __repr__(self) -> str:
        return f"PrivateKey(<hidden>, pubkey={self.public_key().hex})"


class PublicKey:
    """
    Wrapper for secp256k1 public key operations.
    """

    def __init__(self, key_data: Union[bytes, CoinCurvePublicKey]):
        """
        Initialize public key.

        Args:
            key_data: Public key bytes (33 or 65 bytes) or CoinCurvePublicKey
        """
        if isinstance(key_data, CoinCurvePublicKey):
            self._key = key_data
            return

        if not isinstance(key_data, bytes):
            raise InvalidKeyError("Public key data must be bytes")
        if len(key_data) not in (33, 65):
            raise InvalidKeyError("Public key must be 33 or 65 bytes")
        try:
            self._key = CoinCurvePublicKey(key_data)
        except ValueError as e:
            raise InvalidKeyError(f"Failed to create public key: {e}") from e

    @classmethod
    def from_hex(cls, hex_str: str) -> 'PublicKey':
        """Create a public key from its hex encoding."""
        try:
            return cls(bytes.fromhex(hex_str))
        except ValueError as e:
            raise InvalidKeyError(f"Invalid public key hex: {e}") from e

    @property
    def bytes(self) -> bytes:
        """Get compressed public key as bytes."""
        return self._key.format(compressed=True)

    @property
    def hex(self) -> str:
        """Get compressed public key as hex string."""
        return self.bytes.hex()

    @property
    def x_only(self) -> bytes:
        """Get x-only public key for Taproot (32 bytes)."""
        return self.bytes[1:]

    @property
    def has_even_y(self) -> bool:
        return has_even_y(self.bytes)

    def verify(self, signature: bytes, message_hash: bytes) -> bool:
        """
        Verify a DER-encoded ECDSA signature against a 32-byte digest.

        Returns:
            True if signature is valid
        """
        if len(message_hash) != 32:
            return False
        try:
            return self._key.verify(signature, message_hash, hasher=None)
        except ValueError:
            return False

    def combine(self, other: 'PublicKey') -> 'PublicKey':
        """
        Elliptic-curve point addition self + other.

        Raises:
            KeyCombinationError: if the sum is the point at infinity
        """
        return combine_public_keys([self, other])

    def tweak_add(self, tweak: bytes) -> 'PublicKey':
        """
        Return self + tweak*G.

        Args:
            tweak: 32-byte tweak value

        Returns:
            Tweaked public key
        """
        if len(tweak) != 32:
            raise InvalidKeyError("Tweak must be 32 bytes")

        tweak_public = PrivateKey(tweak).public_key()
        try:
            return combine_public_keys([self, tweak_public])
        except KeyCombinationError as e:
            raise InvalidKeyError(f"Failed to tweak public key: {e}") from e

    def taproot_tweak_public_key(self, merkle_root: Optional[bytes] = None) -> Tuple[bytes, int]:
        """
        Tweak public key for Taproot according to BIP341.

        Args:
            merkle_root: 32-byte Merkle root of script tree (None for key-path only)

        Returns:
            Tuple of (32-byte x-only output key, output key y parity)
        """
        internal_key = PublicKey(lift_x(self.x_only))
        tweak = compute_taproot_tweak(self.x_only, merkle_root)
        output_key = internal_key.tweak_add(tweak)
        return output_key.x_only, 0 if output_key.has_even_y else 1

    def __eq__(self, other) -> bool:
        return isinstance(other, PublicKey) and self.bytes == other.bytes

    def __hash__(self) -> int:
        return hash(self.bytes)

    def __repr__(self) -> str:
        return f"PublicKey({self.hex})"


def combine_public_keys(keys: Iterable[PublicKey]) -> PublicKey:
    """
    Sum a list of public keys.

    Args:
        keys: Public keys to add together

    Returns:
        The point sum as a PublicKey

    Raises:
        KeyCombinationError: if the sum is the point at infinity
    """
    points = [key._key for key in keys]
    try:
        return PublicKey(CoinCurvePublicKey.combine_keys(points))
    except ValueError as e:
        raise KeyCombinationError(f"Public key sum is the point at infinity: {e}") from e


def compute_taproot_tweak(internal_pubkey_x: bytes, merkle_root: Optional[bytes] = None) -> bytes:
    """
    Compute Taproot tweak according to BIP341.

    Args:
        internal_pubkey_x: 32-byte x-only internal public key
        merkle_root: Optional 32-byte Merkle root of script tree

    Returns:
        32-byte tweak value
    """
    if len(internal_pubkey_x) != 32:
        raise InvalidKeyError("Internal pubkey x-coordinate must be 32 bytes")

    tweak_data = internal_pubkey_x
    if merkle_root is not None:
        if len(merkle_root) != 32:
            raise InvalidKeyError("Merkle root must be 32 bytes")
        tweak_data += merkle_root

    return tagged_hash("TapTweak", tweak_data)
