"""
Tests for Script Construction Module

Tests minimal number encoding, the script builder and the script decoder.
"""

import pytest

from transactions.exceptions import InvalidScriptError
from transactions.script import (
    OP_0,
    OP_1,
    OP_1NEGATE,
    OP_16,
    OP_CHECKSIG,
    OP_PUSHDATA1,
    OP_PUSHDATA2,
    ScriptBuilder,
    decode_script_number,
    encode_script_number,
    parse_script,
    script_to_asm,
)


class TestScriptNumbers:
    """Test CScriptNum encoding."""

    @pytest.mark.parametrize("number,encoded", [
        (0, b''),
        (1, b'\x01'),
        (127, b'\x7f'),
        (128, b'\x80\x00'),
        (255, b'\xff\x00'),
        (256, b'\x00\x01'),
        (-1, b'\x81'),
        (-128, b'\x80\x80'),
        (144, b'\x90\x00'),
        (500000, b'\x20\xa1\x07'),
    ])
    def test_encode(self, number, encoded):
        """Test minimal encodings."""
        assert encode_script_number(number) == encoded

    @pytest.mark.parametrize("number", [0, 1, -1, 16, 17, 127, 128, -255, 65535, 700000, 2**31 - 1])
    def test_decode_inverts_encode(self, number):
        """Test decoding restores the value."""
        assert decode_script_number(encode_script_number(number)) == number


class TestScriptBuilder:
    """Test ScriptBuilder push selection."""

    def test_small_numbers_use_opcodes(self):
        """Test OP_0, OP_1NEGATE and OP_1..OP_16."""
        assert ScriptBuilder().push_number(0).build() == bytes([OP_0])
        assert ScriptBuilder().push_number(-1).build() == bytes([OP_1NEGATE])
        assert ScriptBuilder().push_number(1).build() == bytes([OP_1])
        assert ScriptBuilder().push_number(16).build() == bytes([OP_16])

    def test_larger_numbers_are_pushed(self):
        """Test numbers beyond 16 become data pushes."""
        assert ScriptBuilder().push_number(17).build() == b'\x01\x11'
        assert ScriptBuilder().push_number(144).build() == b'\x02\x90\x00'

    def test_push_data_sizes(self):
        """Test push opcode selection by data length."""
        assert ScriptBuilder().push_data(b'').build() == bytes([OP_0])
        assert ScriptBuilder().push_data(b'\x05').build() == bytes([OP_1 + 4])
        assert ScriptBuilder().push_data(b'\xaa' * 75).build()[0] == 75
        assert ScriptBuilder().push_data(b'\xaa' * 76).build()[:2] == bytes([OP_PUSHDATA1, 76])
        assert ScriptBuilder().push_data(b'\xaa' * 300).build()[:3] == bytes([OP_PUSHDATA2]) + (300).to_bytes(2, 'little')

    def test_chaining_and_reset(self):
        """Test fluent chaining and builder reuse."""
        builder = ScriptBuilder()
        script = builder.push_data(b'\x02' * 33).push_opcode(OP_CHECKSIG).build()
        assert script == b'\x21' + b'\x02' * 33 + b'\xac'

        builder.reset()
        assert builder.build() == b''


class TestScriptParsing:
    """Test script decoding."""

    def test_parse_round_trip(self):
        """Test decoding of a built script."""
        script = (ScriptBuilder()
                  .push_opcode(OP_0)
                  .push_data(b'\x11' * 20)
                  .push_data(b'\x22' * 80)
                  .push_number(3)
                  .build())
        assert parse_script(script) == [OP_0, b'\x11' * 20, b'\x22' * 80, OP_1 + 2]

    def test_truncated_push(self):
        """Test truncated pushes are rejected."""
        with pytest.raises(InvalidScriptError):
            parse_script(b'\x05\x01\x02')
        with pytest.raises(InvalidScriptError):
            parse_script(bytes([OP_PUSHDATA1]))

    def test_asm(self):
        """Test human-readable rendering."""
        script = ScriptBuilder().push_data(b'\xab\xcd').push_opcode(OP_CHECKSIG).push_number(2).build()
        assert script_to_asm(script) == "abcd OP_CHECKSIG OP_2"
        assert script_to_asm(b'\xff') == "OP_UNKNOWN_0xff"
