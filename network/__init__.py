"""
HTLC Toolkit - Bitcoin Core Integration

This package connects the transaction pipeline to a Bitcoin Core node:
- JSON-RPC client with basic/cookie authentication and wallet routing
- Broadcaster with transport retries and rejection classification
- Node-backed chain backend and wallet funding source

Dependencies:
- requests: HTTP session for JSON-RPC
- urllib3: Retry policy for transient HTTP failures
"""

from .broadcaster import BroadcastConfig, TransactionBroadcaster, classify_rejection
from .node import NodeChainBackend, NodeWalletFundingSource, extract_unsigned_tx
from .rpc import (
    BitcoinRPCClient,
    RPCAuthError,
    RPCConfig,
    RPCConnectionError,
    RPCError,
    RPCTimeoutError,
)

__all__ = [
    'BroadcastConfig',
    'TransactionBroadcaster',
    'classify_rejection',
    'NodeChainBackend',
    'NodeWalletFundingSource',
    'extract_unsigned_tx',
    'BitcoinRPCClient',
    'RPCAuthError',
    'RPCConfig',
    'RPCConnectionError',
    'RPCError',
    'RPCTimeoutError',
]
