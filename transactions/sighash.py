"""
HTLC Toolkit - Signature Hashes

Segwit v0 (BIP143) and Taproot (BIP341) signature-hash computation. Only the
SIGHASH_ALL family used by the contracts is supported; SIGHASH_DEFAULT is
accepted for Taproot.

BIP143 digests come from bitcoinlib. bitcoinlib has no BIP341 signature hash,
so the Taproot message is assembled here.

References:
- BIP143: https://github.com/bitcoin/bips/blob/master/bip-0143.mediawiki
- BIP341: https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki
"""

import struct
from typing import List, Optional

from bitcoinlib.transactions import TransactionError

from crypto.keys import tagged_hash

from .exceptions import SigningError
from .tx import Transaction, TxOut
from .utils import sha256, varstr


SIGHASH_DEFAULT = 0x00
SIGHASH_ALL = 0x01

TAPROOT_EXT_KEY_PATH = 0
TAPROOT_EXT_SCRIPT_PATH = 1


def _check_input_index(tx: Transaction, input_index: int) -> None:
    if not 0 <= input_index < len(tx.inputs):
        raise SigningError(f"Input index {input_index} out of range")


def segwit_v0_sighash(tx: Transaction, input_index: int, script_code: bytes,
                      amount: int, sighash_type: int = SIGHASH_ALL) -> bytes:
    """
    Compute the BIP143 signature hash for a segwit v0 input.

    The digest is produced by bitcoinlib's segwit signature hash.

    Args:
        tx: Transaction being signed
        input_index: Index of the input being signed
        script_code: Witness script (P2WSH) or P2PKH-equivalent script (P2WPKH)
        amount: Value in satoshis of the output being spent
        sighash_type: Only SIGHASH_ALL is supported

    Returns:
        32-byte digest
    """
    _check_input_index(tx, input_index)
    if sighash_type != SIGHASH_ALL:
        raise SigningError(f"Unsupported sighash type: {sighash_type:#x}")
    if amount <= 0:
        raise SigningError("Spent amount must be positive")
    if not script_code:
        raise SigningError("Script code must not be empty")

    lib_tx = tx.to_bitcoinlib(input_index, script_code, amount)
    try:
        return lib_tx.signature_hash(input_index, sighash_type, witness_type='segwit')
    except TransactionError as e:
        raise SigningError(f"Cannot compute segwit signature hash: {e}") from e


def taproot_sighash(tx: Transaction, input_index: int, spent_outputs: List[TxOut],
                    sighash_type: int = SIGHASH_DEFAULT,
                    leaf_hash: Optional[bytes] = None) -> bytes:
    """
    Compute the BIP341 signature hash for a Taproot input.

    Args:
        tx: Transaction being signed
        input_index: Index of the input being signed
        spent_outputs: The outputs spent by every input, in input order
        sighash_type: SIGHASH_DEFAULT or SIGHASH_ALL
        leaf_hash: TapLeaf hash for a script-path spend, None for key path

    Returns:
        32-byte digest
    """
    _check_input_index(tx, input_index)
    if sighash_type not in (SIGHASH_DEFAULT, SIGHASH_ALL):
        raise SigningError(f"Unsupported sighash type: {sighash_type:#x}")
    if len(spent_outputs) != len(tx.inputs):
        raise SigningError("Spent outputs must match transaction inputs")

    sha_prevouts = sha256(b''.join(i.prevout.serialize() for i in tx.inputs))
    sha_amounts = sha256(b''.join(struct.pack('<Q', o.value) for o in spent_outputs))
    sha_scriptpubkeys = sha256(b''.join(varstr(o.script_pubkey) for o in spent_outputs))
    sha_sequences = sha256(b''.join(struct.pack('<I', i.sequence) for i in tx.inputs))
    sha_outputs = sha256(b''.join(o.serialize() for o in tx.outputs))

    ext_flag = TAPROOT_EXT_KEY_PATH if leaf_hash is None else TAPROOT_EXT_SCRIPT_PATH
    spend_type = ext_flag * 2  # no annex

    sig_msg = b''.join([
        bytes([sighash_type]),
        struct.pack('<i', tx.version),
        struct.pack('<I', tx.locktime),
        sha_prevouts,
        sha_amounts,
        sha_scriptpubkeys,
        sha_sequences,
        sha_outputs,
        bytes([spend_type]),
        struct.pack('<I', input_index),
    ])

    if leaf_hash is not None:
        if len(leaf_hash) != 32:
            raise SigningError("Leaf hash must be 32 bytes")
        # key_version 0, no OP_CODESEPARATOR executed
        sig_msg += leaf_hash + b'\x00' + struct.pack('<I', 0xffffffff)

    # Epoch 0
    return tagged_hash("TapSighash", b'\x00' + sig_msg)
