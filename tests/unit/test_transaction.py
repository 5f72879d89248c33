"""
Tests for the Transaction Model

Tests BIP144 serialization, parsing, ids and size accounting.
"""

import pytest

from transactions.exceptions import TransactionParseError
from transactions.tx import (
    SEQUENCE_ENABLE_RBF_NO_LOCKTIME,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
)
from transactions.utils import (
    double_sha256,
    estimate_vsize,
    parse_compact_size,
    serialize_compact_size,
    varstr_parse,
)


PREV_TXID = "aa" * 32


def make_transaction(witness=None):
    tx = Transaction(
        version=2,
        inputs=[TxIn(prevout=OutPoint(PREV_TXID, 1))],
        outputs=[
            TxOut(value=50_000, script_pubkey=b'\x00\x14' + b'\x11' * 20),
            TxOut(value=1_000, script_pubkey=b'\x51\x20' + b'\x22' * 32),
        ],
        locktime=123,
    )
    if witness is not None:
        tx.inputs[0].witness = witness
    return tx


class TestOutPoint:
    """Test OutPoint validation and encoding."""

    def test_serialize_reverses_txid(self):
        """Test the txid is written in internal byte order."""
        outpoint = OutPoint("00" * 31 + "01", 2)
        assert outpoint.serialize() == b'\x01' + b'\x00' * 31 + b'\x02\x00\x00\x00'
        assert str(outpoint) == "00" * 31 + "01:2"

    def test_invalid_outpoint(self):
        """Test length and range checks."""
        with pytest.raises(ValueError):
            OutPoint("abcd", 0)
        with pytest.raises(ValueError):
            OutPoint(PREV_TXID, -1)


class TestTransactionSerialization:
    """Test transaction codec."""

    def test_legacy_layout(self):
        """Test serialization without witness data."""
        raw = make_transaction().serialize()

        assert raw[:4] == b'\x02\x00\x00\x00'
        assert raw[4] == 1  # input count, no segwit marker
        assert raw[-4:] == (123).to_bytes(4, 'little')

    def test_segwit_marker(self):
        """Test the marker and flag appear only with witness data."""
        raw = make_transaction(witness=[b'\x01' * 64]).serialize()
        assert raw[4:6] == b'\x00\x01'

    def test_parse_round_trip(self):
        """Test parsing restores every field."""
        tx = make_transaction(witness=[b'\x01' * 71, b'', b'\x02' * 33])
        parsed = Transaction.parse(tx.serialize())

        assert parsed == tx
        assert parsed.inputs[0].sequence == SEQUENCE_ENABLE_RBF_NO_LOCKTIME
        assert parsed.inputs[0].witness[1] == b''

    def test_single_zero_byte_items(self):
        """Test a lone 0x00 witness item keeps its length prefix."""
        tx = make_transaction(witness=[b'\x00', b''])
        raw = tx.serialize()

        assert raw[-4 - 4:-4] == b'\x02\x01\x00\x00'
        assert Transaction.parse(raw).inputs[0].witness == [b'\x00', b'']

    def test_matches_bitcoinlib_layout(self):
        """Test the non-witness bytes are bitcoinlib's serialization."""
        tx = make_transaction(witness=[b'\x01' * 64])
        assert tx.serialize(include_witness=False) == tx.to_bitcoinlib().raw(witness_type='legacy')

    def test_from_hex(self):
        """Test hex parsing."""
        tx = make_transaction()
        assert Transaction.from_hex(tx.hex()).txid == tx.txid

    def test_trailing_bytes_rejected(self):
        """Test that extra bytes are a parse error."""
        with pytest.raises(TransactionParseError):
            Transaction.parse(make_transaction().serialize() + b'\x00')

    def test_truncated_rejected(self):
        """Test that truncated data is a parse error."""
        with pytest.raises(TransactionParseError):
            Transaction.parse(make_transaction().serialize()[:-10])

    def test_bad_hex(self):
        """Test that non-hex input is a parse error."""
        with pytest.raises(TransactionParseError):
            Transaction.from_hex("zz")


class TestTransactionIds:
    """Test txid, wtxid and sizes."""

    def test_txid_ignores_witness(self):
        """Test the txid commits to the non-witness serialization only."""
        bare = make_transaction()
        signed = make_transaction(witness=[b'\x01' * 64])

        assert bare.txid == signed.txid
        assert bare.wtxid != signed.wtxid
        assert bare.txid == double_sha256(bare.serialize())[::-1].hex()

    def test_vsize_discounts_witness(self):
        """Test witness bytes count a quarter."""
        bare = make_transaction()
        assert bare.vsize == len(bare.serialize())

        signed = make_transaction(witness=[b'\x01' * 64])
        witness_bytes = len(signed.serialize()) - len(bare.serialize())
        assert signed.weight == len(bare.serialize()) * 4 + witness_bytes

    def test_estimate_matches_actual(self):
        """Test the size estimate for a key-path spend."""
        signed = make_transaction(witness=[b'\x01' * 64])
        estimate = estimate_vsize(1, [o.script_pubkey for o in signed.outputs], 1 + 1 + 64)
        assert estimate == signed.vsize

    def test_copy_is_deep(self):
        """Test that copies do not share witness lists."""
        tx = make_transaction()
        clone = tx.copy()
        clone.inputs[0].witness.append(b'\x01')
        assert tx.inputs[0].witness == []


class TestCompactSize:
    """Test compact-size integers."""

    @pytest.mark.parametrize("value", [0, 252, 253, 0xffff, 0x10000, 0xffffffff, 0x100000000])
    def test_round_trip(self, value):
        """Test encoding boundaries."""
        encoded = serialize_compact_size(value)
        assert parse_compact_size(encoded) == (value, len(encoded))

    def test_varstr_overrun(self):
        """Test length prefixes beyond the data."""
        with pytest.raises(ValueError):
            varstr_parse(b'\x05\x01')
