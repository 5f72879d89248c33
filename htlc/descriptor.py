"""
HTLC Toolkit - Output Descriptors

Formatting and parsing of the Taproot contract descriptor

    tr(<internal key>,and_v(v:pk(<revocation key>),older(<N>)))#<checksum>

with the BIP380 descriptor checksum.
"""

import re
from typing import List, Tuple

from crypto.exceptions import InvalidKeyError
from crypto.keys import PublicKey

from .exceptions import ContractReconstructionError, ValidationError


INPUT_CHARSET = (
    "0123456789()[],'/*abcdefgh@:$%{}"
    "IJKLMNOPQRSTUVWXYZ&+-.;<=>?!^_|~"
    "ijklmnopqrstuvwxyzABCDEFGH`#\"\\ "
)
CHECKSUM_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"

_GENERATOR = [0xf5dee51989, 0xa9fdca3312, 0x1bab10e32d, 0x3706b1677a, 0x644d626ffd]

_TAPROOT_HTLC_PATTERN = re.compile(
    r"^tr\(([0-9a-f]{66}),and_v\(v:pk\(([0-9a-f]{66})\),older\(([1-9][0-9]*)\)\)\)$"
)


def _polymod(symbols: List[int]) -> int:
    chk = 1
    for value in symbols:
        top = chk >> 35
        chk = (chk & 0x7ffffffff) << 5 ^ value
        for i in range(5):
            chk ^= _GENERATOR[i] if ((top >> i) & 1) else 0
    return chk


def _expand(descriptor: str) -> List[int]:
    groups = []
    symbols = []
    for c in descriptor:
        v = INPUT_CHARSET.find(c)
        if v < 0:
            raise ValidationError(f"Invalid descriptor character: {c!r}")
        symbols.append(v & 31)
        groups.append(v >> 5)
        if len(groups) == 3:
            symbols.append(groups[0] * 9 + groups[1] * 3 + groups[2])
            groups = []
    if len(groups) == 1:
        symbols.append(groups[0])
    elif len(groups) == 2:
        symbols.append(groups[0] * 3 + groups[1])
    return symbols


def descriptor_checksum(descriptor: str) -> str:
    """Compute the 8-character BIP380 checksum of a descriptor body."""
    symbols = _expand(descriptor) + [0] * 8
    checksum = _polymod(symbols) ^ 1
    return ''.join(CHECKSUM_CHARSET[(checksum >> (5 * (7 - i))) & 31] for i in range(8))


def add_checksum(descriptor: str) -> str:
    return f"{descriptor}#{descriptor_checksum(descriptor)}"


def split_checksum(descriptor: str) -> Tuple[str, str]:
    """
    Split a descriptor into body and checksum, verifying the checksum.

    Raises:
        ContractReconstructionError: if the checksum is missing or wrong
    """
    body, sep, checksum = descriptor.rpartition("#")
    if not sep:
        raise ContractReconstructionError("Descriptor has no checksum")
    if descriptor_checksum(body) != checksum:
        raise ContractReconstructionError(f"Descriptor checksum mismatch: {checksum}")
    return body, checksum


def format_taproot_descriptor(internal_key: PublicKey, revocation_key: PublicKey,
                              timelock_blocks: int) -> str:
    """
    Render the Taproot HTLC descriptor with checksum.

    Args:
        internal_key: Key-path (recipient or escrow) key
        revocation_key: Script-path key
        timelock_blocks: Relative timelock of the script path

    Returns:
        Descriptor string
    """
    body = f"tr({internal_key.hex},and_v(v:pk({revocation_key.hex}),older({timelock_blocks})))"
    return add_checksum(body)


def parse_taproot_descriptor(descriptor: str) -> Tuple[PublicKey, PublicKey, int]:
    """
    Recover (internal key, revocation key, timelock blocks) from a descriptor.

    Raises:
        ContractReconstructionError: on a bad checksum
        ValidationError: if the descriptor is not a Taproot HTLC descriptor
    """
    body, _ = split_checksum(descriptor.strip())
    match = _TAPROOT_HTLC_PATTERN.match(body)
    if match is None:
        raise ValidationError(f"Not a Taproot HTLC descriptor: {body}")

    try:
        internal_key = PublicKey.from_hex(match.group(1))
        revocation_key = PublicKey.from_hex(match.group(2))
    except InvalidKeyError as e:
        raise ValidationError(f"Invalid key in descriptor: {e}") from e

    return internal_key, revocation_key, int(match.group(3))
