"""
HTLC Toolkit - Contracts

This package provides the P2WSH hash-time-locked contract, the Taproot
contract with a revocation script path, the atomic-swap key-combination
protocol and the persisted contract record.
"""

from .deployment import DeploymentConfig, DeploymentResult, deploy_htlc
from .descriptor import descriptor_checksum, format_taproot_descriptor, parse_taproot_descriptor
from .exceptions import *
from .primitives import SATOSHIS_PER_BTC, SwapInfo, btc_to_satoshis, format_satoshis_to_btc
from .record import ContractRecord, load, save
from .script_contract import (
    LEGACY_HTLC_FEE,
    HTLCContract,
    build_script,
    claim_htlc,
    create_htlc_contract,
    fund_htlc,
    refund_htlc,
)
from .swap import (
    AtomicSwap,
    SwapInitiation,
    combine_swap_keys,
    derive_escrow_private_key,
    generate_swap_secret,
)
from .taproot_contract import Policy, TaprootContract, TaprootContractSpender, TaprootHTLC, build_policy

__all__ = [
    'DeploymentConfig',
    'DeploymentResult',
    'deploy_htlc',
    'descriptor_checksum',
    'format_taproot_descriptor',
    'parse_taproot_descriptor',
    'HTLCError',
    'ValidationError',
    'ContractReconstructionError',
    'TimeoutNotReachedError',
    'PersistenceError',
    'SigningError',
    'BroadcastError',
    'InsufficientFundsError',
    'SATOSHIS_PER_BTC',
    'SwapInfo',
    'btc_to_satoshis',
    'format_satoshis_to_btc',
    'ContractRecord',
    'load',
    'save',
    'LEGACY_HTLC_FEE',
    'HTLCContract',
    'build_script',
    'claim_htlc',
    'create_htlc_contract',
    'fund_htlc',
    'refund_htlc',
    'AtomicSwap',
    'SwapInitiation',
    'combine_swap_keys',
    'derive_escrow_private_key',
    'generate_swap_secret',
    'Policy',
    'TaprootContract',
    'TaprootContractSpender',
    'TaprootHTLC',
    'build_policy',
]

__version__ = '0.1.0'
