"""
HTLC Toolkit - Segwit Addresses

Bech32 (BIP173, witness v0) and bech32m (BIP350, witness v1+) encoding of
witness programs, and the reverse mapping from an address to its output
script. The codec itself is bitcoinlib's.
"""

from typing import Optional, Tuple

from bitcoinlib.encoding import EncodingError, addr_bech32_to_pubkeyhash, pubkeyhash_to_addr_bech32

from .exceptions import AddressError


NETWORK_HRP = {
    "mainnet": "bc",
    "testnet": "tb",
    "signet": "tb",
    "regtest": "bcrt",
}

# bitcoinlib reads any other length as a full output script
ENCODABLE_PROGRAM_LENGTHS = (20, 32, 40)


def network_hrp(network: str) -> str:
    """Human-readable part for a network name."""
    try:
        return NETWORK_HRP[network]
    except KeyError:
        raise AddressError(f"Unknown network: {network}") from None


def encode_segwit_address(hrp: str, witness_version: int, program: bytes) -> str:
    """
    Encode a witness program as a segwit address.

    Args:
        hrp: Human-readable part (bc, tb, bcrt)
        witness_version: 0 uses bech32, 1..16 use bech32m
        program: Witness program bytes (20, 32 or 40 long)

    Returns:
        Address string
    """
    if not 0 <= witness_version <= 16:
        raise AddressError(f"Invalid witness version: {witness_version}")
    if witness_version == 0 and len(program) not in (20, 32):
        raise AddressError("Witness v0 program must be 20 or 32 bytes")
    if len(program) not in ENCODABLE_PROGRAM_LENGTHS:
        raise AddressError(f"Unsupported witness program length: {len(program)}")

    try:
        return pubkeyhash_to_addr_bech32(program.hex(), prefix=hrp, witver=witness_version)
    except EncodingError as e:
        raise AddressError(str(e)) from e


def decode_segwit_address(address: str) -> Tuple[str, int, bytes]:
    """
    Decode a segwit address.

    Returns:
        Tuple of (hrp, witness_version, program)

    Raises:
        AddressError: on bad characters, checksum, or program
    """
    try:
        script_pubkey = addr_bech32_to_pubkeyhash(address, include_witver=True)
    except EncodingError as e:
        raise AddressError(f"Invalid segwit address {address}: {e}") from e

    hrp = address.lower()[:address.rfind("1")]
    opcode = script_pubkey[0]
    witness_version = 0 if opcode == 0 else opcode - 0x50
    return hrp, witness_version, script_pubkey[2:]


def script_to_address(script_pubkey: bytes, network: str = "regtest") -> str:
    """
    Render a witness output script as an address.

    Args:
        script_pubkey: OP_n <program> output script
        network: Network name selecting the HRP

    Returns:
        Bech32 (v0) or bech32m (v1+) address
    """
    if len(script_pubkey) < 4 or script_pubkey[1] != len(script_pubkey) - 2:
        raise AddressError("Not a witness output script")

    opcode = script_pubkey[0]
    if opcode == 0x00:
        witness_version = 0
    elif 0x51 <= opcode <= 0x60:
        witness_version = opcode - 0x50
    else:
        raise AddressError("Not a witness output script")

    return encode_segwit_address(network_hrp(network), witness_version, script_pubkey[2:])


def address_to_script(address: str, network: Optional[str] = None) -> bytes:
    """
    Convert a segwit address to its output script.

    Args:
        address: Bech32 or bech32m address
        network: If given, the address HRP must belong to this network

    Returns:
        Output script bytes
    """
    hrp, witness_version, program = decode_segwit_address(address)
    if network is not None and hrp != network_hrp(network):
        raise AddressError(f"Address {address} is not a {network} address")

    opcode = 0x00 if witness_version == 0 else 0x50 + witness_version
    return bytes([opcode, len(program)]) + program
