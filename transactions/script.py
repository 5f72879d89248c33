"""
HTLC Toolkit - Script Construction Module

This module provides the script builder used for P2WSH witness scripts and
Taproot leaf scripts, along with minimal script-number encoding and a small
script decoder.
"""

import struct
from typing import List, Tuple, Union

from .exceptions import InvalidScriptError


# Bitcoin script opcodes
OP_0 = 0x00
OP_PUSHDATA1 = 0x4c
OP_PUSHDATA2 = 0x4d
OP_PUSHDATA4 = 0x4e
OP_1NEGATE = 0x4f
OP_1 = 0x51
OP_16 = 0x60
OP_IF = 0x63
OP_ELSE = 0x67
OP_ENDIF = 0x68
OP_DROP = 0x75
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_SHA256 = 0xa8
OP_CHECKSIG = 0xac
OP_CHECKSIGVERIFY = 0xad
OP_CHECKLOCKTIMEVERIFY = 0xb1
OP_CHECKSEQUENCEVERIFY = 0xb2

OPCODE_NAMES = {
    OP_0: 'OP_0',
    OP_1NEGATE: 'OP_1NEGATE',
    OP_IF: 'OP_IF',
    OP_ELSE: 'OP_ELSE',
    OP_ENDIF: 'OP_ENDIF',
    OP_DROP: 'OP_DROP',
    OP_EQUAL: 'OP_EQUAL',
    OP_EQUALVERIFY: 'OP_EQUALVERIFY',
    OP_SHA256: 'OP_SHA256',
    OP_CHECKSIG: 'OP_CHECKSIG',
    OP_CHECKSIGVERIFY: 'OP_CHECKSIGVERIFY',
    OP_CHECKLOCKTIMEVERIFY: 'OP_CHECKLOCKTIMEVERIFY',
    OP_CHECKSEQUENCEVERIFY: 'OP_CHECKSEQUENCEVERIFY',
}
for _n in range(1, 17):
    OPCODE_NAMES[OP_1 + _n - 1] = f'OP_{_n}'


def encode_script_number(number: int) -> bytes:
    """
    Encode an integer as a minimal CScriptNum (little-endian, sign bit in the last byte).

    Args:
        number: Integer to encode

    Returns:
        Encoded bytes (empty for zero)
    """
    if number == 0:
        return b''

    negative = number < 0
    if negative:
        number = -number

    result = []
    while number > 0:
        result.append(number & 0xff)
        number >>= 8

    # Add sign byte if the high bit is taken
    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80

    return bytes(result)


def decode_script_number(data: bytes) -> int:
    """Decode a CScriptNum."""
    if not data:
        return 0
    value = int.from_bytes(data, 'little')
    if data[-1] & 0x80:
        return -(value & ~(0x80 << (8 * (len(data) - 1))))
    return value


class ScriptBuilder:
    """
    Builder for witness scripts and tapscripts.

    Each push method returns the builder so scripts read top to bottom.
    """

    def __init__(self):
        """Initialize script builder."""
        self.script_stack: List[bytes] = []

    def reset(self) -> None:
        """Reset the script builder to start a new script."""
        self.script_stack.clear()

    def push_data(self, data: bytes) -> 'ScriptBuilder':
        """
        Push data with the smallest push opcode that fits.

        Args:
            data: Data to push

        Returns:
            Self for method chaining
        """
        if len(data) == 0:
            self.script_stack.append(bytes([OP_0]))
        elif len(data) == 1 and 1 <= data[0] <= 16:
            self.script_stack.append(bytes([OP_1 + data[0] - 1]))
        elif len(data) <= 75:
            self.script_stack.append(bytes([len(data)]) + data)
        elif len(data) <= 255:
            self.script_stack.append(bytes([OP_PUSHDATA1, len(data)]) + data)
        elif len(data) <= 65535:
            self.script_stack.append(bytes([OP_PUSHDATA2]) + struct.pack('<H', len(data)) + data)
        else:
            self.script_stack.append(bytes([OP_PUSHDATA4]) + struct.pack('<I', len(data)) + data)

        return self

    def push_opcode(self, opcode: int) -> 'ScriptBuilder':
        """
        Push an opcode onto the script.

        Args:
            opcode: Bitcoin script opcode

        Returns:
            Self for method chaining
        """
        self.script_stack.append(bytes([opcode]))
        return self

    def push_number(self, number: int) -> 'ScriptBuilder':
        """
        Push a number using minimal encoding.

        Args:
            number: Number to push

        Returns:
            Self for method chaining
        """
        if number == 0:
            return self.push_opcode(OP_0)
        elif number == -1:
            return self.push_opcode(OP_1NEGATE)
        elif 1 <= number <= 16:
            return self.push_opcode(OP_1 + number - 1)
        return self.push_data(encode_script_number(number))

    def build(self) -> bytes:
        """
        Build the final script.

        Returns:
            Complete script bytes
        """
        return b''.join(self.script_stack)


ScriptElement = Union[int, bytes]


def parse_script(script: bytes) -> List[ScriptElement]:
    """
    Decode a script into opcodes (ints) and pushed data (bytes).

    Small-number opcodes OP_1..OP_16 are returned as opcodes.

    Raises:
        InvalidScriptError: on truncated pushes
    """
    elements: List[ScriptElement] = []
    offset = 0
    while offset < len(script):
        opcode = script[offset]
        offset += 1
        if 1 <= opcode <= 75:
            length = opcode
        elif opcode == OP_PUSHDATA1:
            length, offset = _read_length(script, offset, 1)
        elif opcode == OP_PUSHDATA2:
            length, offset = _read_length(script, offset, 2)
        elif opcode == OP_PUSHDATA4:
            length, offset = _read_length(script, offset, 4)
        else:
            elements.append(opcode)
            continue

        if offset + length > len(script):
            raise InvalidScriptError("Script push exceeds script length")
        elements.append(script[offset:offset + length])
        offset += length

    return elements


def _read_length(script: bytes, offset: int, size: int) -> Tuple[int, int]:
    if offset + size > len(script):
        raise InvalidScriptError("Truncated push length")
    return int.from_bytes(script[offset:offset + size], 'little'), offset + size


def script_to_asm(script: bytes) -> str:
    """Render a script as space-separated opcode names and hex pushes."""
    parts = []
    for element in parse_script(script):
        if isinstance(element, bytes):
            parts.append(element.hex())
        else:
            parts.append(OPCODE_NAMES.get(element, f'OP_UNKNOWN_{element:#04x}'))
    return ' '.join(parts)
