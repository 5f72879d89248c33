"""
HTLC Toolkit - Taproot Output Construction

Single-leaf Taproot commitments: TapLeaf hashing, the BIP341 output-key tweak,
and the control block revealed by a script-path spend.
"""

from dataclasses import dataclass
from typing import Optional

from crypto.keys import PublicKey, lift_x, tagged_hash

from .exceptions import InvalidScriptError
from .utils import create_taproot_script, serialize_compact_size


TAPROOT_LEAF_TAPSCRIPT = 0xc0
TAPROOT_LEAF_MASK = 0xfe


def calculate_tap_leaf_hash(script: bytes, leaf_version: int = TAPROOT_LEAF_TAPSCRIPT) -> bytes:
    """
    Calculate TapLeaf hash for script path spending.

    Args:
        script: Script bytes
        leaf_version: Leaf version byte

    Returns:
        32-byte TapLeaf hash
    """
    return tagged_hash(
        "TapLeaf",
        bytes([leaf_version]) + serialize_compact_size(len(script)) + script
    )


@dataclass(frozen=True)
class TapLeaf:
    """Represents a single leaf in the Taproot script tree."""
    script: bytes
    leaf_version: int = TAPROOT_LEAF_TAPSCRIPT

    def __post_init__(self):
        if not self.script:
            raise InvalidScriptError("Tap leaf script cannot be empty")
        if self.leaf_version & TAPROOT_LEAF_MASK != self.leaf_version:
            raise InvalidScriptError(f"Invalid leaf version: {self.leaf_version:#x}")

    @property
    def leaf_hash(self) -> bytes:
        return calculate_tap_leaf_hash(self.script, self.leaf_version)


class TaprootOutput:
    """
    P2TR output committing to an internal key and at most one script leaf.

    With a single leaf the leaf hash is the Merkle root.
    """

    def __init__(self, internal_key: PublicKey, leaf: Optional[TapLeaf] = None):
        if lift_x(internal_key.x_only) is None:
            raise InvalidScriptError("Internal key is not a valid x-only key")
        self.internal_key = internal_key
        self.leaf = leaf
        self.output_key, self.parity = internal_key.taproot_tweak_public_key(self.merkle_root)

    @property
    def merkle_root(self) -> Optional[bytes]:
        return self.leaf.leaf_hash if self.leaf is not None else None

    @property
    def script_pubkey(self) -> bytes:
        return create_taproot_script(self.output_key)

    def control_block(self) -> bytes:
        """
        Control block for spending the leaf.

        Returns:
            (leaf_version | parity) || internal key x-only
        """
        if self.leaf is None:
            raise InvalidScriptError("Output has no script leaf")
        return bytes([self.leaf.leaf_version | self.parity]) + self.internal_key.x_only
