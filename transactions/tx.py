"""
HTLC Toolkit - Transaction Model

This module provides the in-memory transaction representation with BIP144
(segwit) serialization, parsing, and id/size calculations.

The non-witness layout is encoded and decoded by bitcoinlib. Witness stacks
are written and read here: bitcoinlib's serializer collapses a lone 0x00 item
and its parser rewrites empty items, so it cannot carry HTLC refund witnesses
intact.
"""

import copy
import struct
from dataclasses import dataclass, field
from io import BytesIO
from typing import List, Optional

from bitcoinlib.encoding import EncodingError, read_varbyteint
from bitcoinlib.transactions import Input, Output, TransactionError
from bitcoinlib.transactions import Transaction as LibTransaction

from .exceptions import TransactionParseError
from .utils import double_sha256, serialize_witness, varstr


# Sequence values (BIP68/BIP125)
SEQUENCE_FINAL = 0xffffffff
SEQUENCE_ENABLE_LOCKTIME_NO_RBF = 0xfffffffe
SEQUENCE_ENABLE_RBF_NO_LOCKTIME = 0xfffffffd
SEQUENCE_LOCKTIME_DISABLE_FLAG = 1 << 31
SEQUENCE_LOCKTIME_TYPE_FLAG = 1 << 22
SEQUENCE_LOCKTIME_MASK = 0x0000ffff

# nLockTime values below this are block heights
LOCKTIME_THRESHOLD = 500000000

SEGWIT_MARKER = b'\x00\x01'


@dataclass(frozen=True)
class OutPoint:
    """Reference to a previous transaction output."""
    txid: str
    vout: int

    def __post_init__(self):
        if len(self.txid) != 64:
            raise ValueError(f"Invalid transaction ID: {self.txid}")
        if not 0 <= self.vout <= 0xffffffff:
            raise ValueError(f"Invalid output index: {self.vout}")

    def serialize(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + struct.pack('<I', self.vout)

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass
class TxIn:
    """Transaction input."""
    prevout: OutPoint
    sequence: int = SEQUENCE_ENABLE_RBF_NO_LOCKTIME
    script_sig: bytes = b''
    witness: List[bytes] = field(default_factory=list)


@dataclass
class TxOut:
    """Transaction output."""
    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return struct.pack('<Q', self.value) + varstr(self.script_pubkey)


@dataclass
class Transaction:
    """
    A Bitcoin transaction.

    Serialization follows BIP144: the marker/flag pair and witness section are
    written only when at least one input carries a witness.
    """
    version: int = 2
    inputs: List[TxIn] = field(default_factory=list)
    outputs: List[TxOut] = field(default_factory=list)
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(tx_in.witness for tx_in in self.inputs)

    def to_bitcoinlib(self, input_index: Optional[int] = None, script_code: bytes = b'',
                      amount: int = 0) -> LibTransaction:
        """
        Build the equivalent bitcoinlib transaction, without witness data.

        Args:
            input_index: Input that carries the spent amount and script code
            script_code: BIP143 scriptCode of that input
            amount: Value in satoshis of the output that input spends

        Returns:
            bitcoinlib Transaction in segwit mode
        """
        inputs = []
        for index, tx_in in enumerate(self.inputs):
            signing = index == input_index
            inputs.append(Input(
                tx_in.prevout.txid, tx_in.prevout.vout,
                unlocking_script=tx_in.script_sig.hex(),
                sequence=tx_in.sequence,
                index_n=index,
                value=amount if signing else 0,
                redeemscript=script_code if signing else b'',
                script_type='unknown',
                witness_type='segwit',
                strict=False,
            ))
        outputs = [
            Output(tx_out.value, lock_script=tx_out.script_pubkey.hex(), output_n=n, strict=False)
            for n, tx_out in enumerate(self.outputs)
        ]
        return LibTransaction(inputs, outputs, locktime=self.locktime, version=struct.pack('>i', self.version),
                              fee=0, witness_type='segwit')

    def serialize(self, include_witness: bool = True) -> bytes:
        """
        Serialize the transaction.

        Args:
            include_witness: Write witness data (BIP144) when present

        Returns:
            Raw transaction bytes
        """
        base = self.to_bitcoinlib().raw(witness_type='legacy')
        if not (include_witness and self.has_witness):
            return base

        witness = b''.join(serialize_witness(tx_in.witness) for tx_in in self.inputs)
        return base[:4] + SEGWIT_MARKER + base[4:-4] + witness + base[-4:]

    def hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        """Transaction ID (hash of the non-witness serialization, display byte order)."""
        return double_sha256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def wtxid(self) -> str:
        return double_sha256(self.serialize())[::-1].hex()

    @property
    def weight(self) -> int:
        base_size = len(self.serialize(include_witness=False))
        total_size = len(self.serialize())
        return base_size * 3 + total_size

    @property
    def vsize(self) -> int:
        return (self.weight + 3) // 4

    def copy(self) -> 'Transaction':
        return copy.deepcopy(self)

    @classmethod
    def from_hex(cls, hex_str: str) -> 'Transaction':
        try:
            raw = bytes.fromhex(hex_str)
        except ValueError as e:
            raise TransactionParseError(f"Invalid transaction hex: {e}") from e
        return cls.parse(raw)

    @classmethod
    def parse(cls, data: bytes) -> 'Transaction':
        """
        Parse raw transaction bytes.

        Raises:
            TransactionParseError: on malformed or trailing data
        """
        try:
            return cls._parse(bytes(data))
        except (ValueError, IndexError, struct.error, TransactionError, EncodingError) as e:
            raise TransactionParseError(f"Failed to parse transaction: {e}") from e

    @classmethod
    def _parse(cls, data: bytes) -> 'Transaction':
        stream = BytesIO(data)
        version = struct.unpack('<i', stream.read(4))[0]

        segwit = data[4:6] == SEGWIT_MARKER
        if segwit:
            stream.seek(6)

        inputs = []
        for n in range(read_varbyteint(stream)):
            lib_input = Input.parse(stream, witness_type='segwit' if segwit else 'legacy', index_n=n, strict=False)
            inputs.append(TxIn(
                prevout=OutPoint(lib_input.prev_txid.hex(), lib_input.output_n_int),
                sequence=lib_input.sequence,
                script_sig=lib_input.unlocking_script,
            ))

        outputs = []
        for n in range(read_varbyteint(stream)):
            lib_output = Output.parse(stream, output_n=n, strict=False)
            outputs.append(TxOut(value=lib_output.value, script_pubkey=lib_output.lock_script))

        if segwit:
            for tx_in in inputs:
                for _ in range(read_varbyteint(stream)):
                    size = read_varbyteint(stream)
                    item = stream.read(size)
                    if len(item) != size:
                        raise ValueError("Insufficient data for witness item")
                    tx_in.witness.append(item)

        locktime = struct.unpack('<I', stream.read(4))[0]
        tx = cls(version=version, inputs=inputs, outputs=outputs, locktime=locktime)

        # bitcoinlib reads short fields without complaint; only an exact
        # re-encoding proves the bytes were a complete transaction
        if tx.serialize() != data:
            raise ValueError("malformed transaction or trailing bytes")
        return tx
