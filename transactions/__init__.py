"""
HTLC Toolkit - Transaction Construction

This package provides the transaction model and codec, script construction,
segwit v0 and Taproot signature hashes, bech32/bech32m addresses, Taproot
output commitments and the fee-aware build/sign/broadcast pipeline.
"""

from .address import address_to_script, script_to_address
from .exceptions import *
from .pipeline import (
    DEFAULT_FEE_RATE,
    Balance,
    ChainBackend,
    ContractSpender,
    FundingSource,
    SpendPath,
    TransactionPipeline,
    Utxo,
    build_sweep_transaction,
)
from .script import ScriptBuilder, parse_script, script_to_asm
from .sighash import SIGHASH_ALL, SIGHASH_DEFAULT, segwit_v0_sighash, taproot_sighash
from .taproot import TapLeaf, TaprootOutput, calculate_tap_leaf_hash
from .tx import OutPoint, Transaction, TxIn, TxOut

__all__ = [
    'address_to_script',
    'script_to_address',
    'DEFAULT_FEE_RATE',
    'Balance',
    'ChainBackend',
    'ContractSpender',
    'FundingSource',
    'SpendPath',
    'TransactionPipeline',
    'Utxo',
    'build_sweep_transaction',
    'ScriptBuilder',
    'parse_script',
    'script_to_asm',
    'SIGHASH_ALL',
    'SIGHASH_DEFAULT',
    'segwit_v0_sighash',
    'taproot_sighash',
    'TapLeaf',
    'TaprootOutput',
    'calculate_tap_leaf_hash',
    'OutPoint',
    'Transaction',
    'TxIn',
    'TxOut',
]

__version__ = '0.1.0'
