"""
HTLC Toolkit - Transaction Utilities

This module provides serialization helpers and standard output script
constructors shared by the transaction codec and the contracts. Compact-size
integers and hashes come from bitcoinlib's encoding module.
"""

from typing import Tuple

from bitcoinlib.encoding import double_sha256, int_to_varbyteint, sha256, varbyteint_to_int


def varstr(data: bytes) -> bytes:
    """
    Serialize bytes with a compact-size length prefix.

    Unlike bitcoinlib's varstr, a lone 0x00 byte is written with its length.
    """
    return int_to_varbyteint(len(data)) + data


def varstr_parse(data: bytes, offset: int = 0) -> Tuple[bytes, int]:
    """
    Parse a length-prefixed byte string.

    Args:
        data: Bytes to parse
        offset: Starting offset

    Returns:
        Tuple of (parsed_data, new_offset)
    """
    length, new_offset = parse_compact_size(data, offset)
    if new_offset + length > len(data):
        raise ValueError("Insufficient data for varstr")

    return data[new_offset:new_offset + length], new_offset + length


def serialize_compact_size(n: int) -> bytes:
    """Serialize integer as Bitcoin compact size."""
    return int_to_varbyteint(n)


def parse_compact_size(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Parse Bitcoin compact size from bytes.

    Args:
        data: Bytes to parse
        offset: Starting offset in bytes

    Returns:
        Tuple of (value, new_offset)
    """
    if offset >= len(data):
        raise ValueError("Insufficient data for compact size")

    value, size = varbyteint_to_int(bytes(data[offset:offset + 9]))
    if offset + size > len(data):
        raise ValueError(f"Insufficient data for {size - 1}-byte compact size")
    return value, offset + size


def serialize_witness(stack) -> bytes:
    """Serialize a witness stack: item count followed by length-prefixed items."""
    return serialize_compact_size(len(stack)) + b''.join(varstr(item) for item in stack)


def calculate_witness_script_hash(script: bytes) -> bytes:
    """
    Calculate SHA256 hash of witness script for P2WSH.

    Args:
        script: Witness script bytes

    Returns:
        SHA256 hash of script
    """
    return sha256(script)


def create_p2wsh_script(witness_script: bytes) -> bytes:
    """
    Create P2WSH output script from witness script.

    Args:
        witness_script: The witness script

    Returns:
        P2WSH output script (OP_0 + 32-byte script hash)
    """
    script_hash = calculate_witness_script_hash(witness_script)
    return bytes([0x00, 0x20]) + script_hash  # OP_0 OP_PUSHDATA(32) <hash>


def create_p2wpkh_script(pubkey_hash: bytes) -> bytes:
    """
    Create P2WPKH output script.

    Args:
        pubkey_hash: 20-byte HASH160 of a compressed public key

    Returns:
        P2WPKH output script (OP_0 + 20-byte hash)
    """
    if len(pubkey_hash) != 20:
        raise ValueError("Public key hash must be 20 bytes")
    return bytes([0x00, 0x14]) + pubkey_hash


def create_taproot_script(output_key: bytes) -> bytes:
    """
    Create P2TR output script.

    Args:
        output_key: 32-byte x-only tweaked output key

    Returns:
        P2TR output script (OP_1 + 32-byte key)
    """
    if len(output_key) != 32:
        raise ValueError("Taproot output key must be 32 bytes")
    return bytes([0x51, 0x20]) + output_key


def p2wpkh_script_code(pubkey_hash: bytes) -> bytes:
    """BIP143 scriptCode for a P2WPKH input: the equivalent P2PKH script."""
    return bytes([0x76, 0xa9, 0x14]) + pubkey_hash + bytes([0x88, 0xac])


def is_p2wpkh(script_pubkey: bytes) -> bool:
    return len(script_pubkey) == 22 and script_pubkey[:2] == b'\x00\x14'


def is_p2wsh(script_pubkey: bytes) -> bool:
    return len(script_pubkey) == 34 and script_pubkey[:2] == b'\x00\x20'


def is_p2tr(script_pubkey: bytes) -> bool:
    return len(script_pubkey) == 34 and script_pubkey[:2] == b'\x51\x20'


def estimate_vsize(input_count: int, output_scripts, witness_weight_per_input: int) -> int:
    """
    Estimate virtual size of a segwit transaction.

    Args:
        input_count: Number of inputs
        output_scripts: Output script-pubkeys
        witness_weight_per_input: Witness bytes (weight units) per input, including the item count

    Returns:
        Estimated vsize in vbytes (rounded up)
    """
    # version + locktime + segwit marker/flag handled in weight below
    base = 4 + 4
    base += len(serialize_compact_size(input_count)) + input_count * (32 + 4 + 1 + 4)
    base += len(serialize_compact_size(len(output_scripts)))
    for script in output_scripts:
        base += 8 + len(serialize_compact_size(len(script))) + len(script)

    weight = base * 4 + 2 + input_count * witness_weight_per_input
    return (weight + 3) // 4
