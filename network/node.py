"""
HTLC Toolkit - Bitcoin Core Backends

Chain backend and funding source implementations backed by a Bitcoin Core
node: UTXO lookups go through scantxoutset, funding uses the node wallet's
PSBT workflow (walletcreatefundedpsbt -> walletprocesspsbt -> finalizepsbt).
"""

import base64
import binascii
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from transactions.exceptions import InsufficientFundsError, SigningError, TransactionError
from transactions.pipeline import Balance, ChainBackend, FundingSource, Utxo
from transactions.tx import OutPoint, Transaction
from transactions.utils import varstr_parse

from .broadcaster import TransactionBroadcaster
from .rpc import BitcoinRPCClient, RPCError


# Bitcoin Core RPC_INVALID_ADDRESS_OR_KEY, returned for unknown transactions
RPC_INVALID_ADDRESS_OR_KEY = -5
# Bitcoin Core RPC_WALLET_INSUFFICIENT_FUNDS
RPC_WALLET_INSUFFICIENT_FUNDS = -6

PSBT_MAGIC = b'psbt\xff'
PSBT_GLOBAL_UNSIGNED_TX = 0x00

SATOSHIS_PER_BTC = Decimal(100_000_000)


def btc_to_sats(amount) -> int:
    """Convert an RPC BTC amount (float or string) to satoshis."""
    return int(Decimal(str(amount)) * SATOSHIS_PER_BTC)


def sats_to_btc(satoshis: int) -> Decimal:
    return Decimal(satoshis) / SATOSHIS_PER_BTC


def extract_unsigned_tx(psbt_b64: str) -> Transaction:
    """
    Read the unsigned transaction from a base64 PSBT's global map.

    Raises:
        TransactionError: if the PSBT is malformed or has no unsigned transaction
    """
    try:
        data = base64.b64decode(psbt_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise TransactionError(f"Invalid base64 PSBT: {e}") from e

    if not data.startswith(PSBT_MAGIC):
        raise TransactionError("Invalid PSBT magic bytes")

    offset = len(PSBT_MAGIC)
    try:
        while offset < len(data):
            key, offset = varstr_parse(data, offset)
            if not key:  # Separator ends the global map
                break
            value, offset = varstr_parse(data, offset)
            if key == bytes([PSBT_GLOBAL_UNSIGNED_TX]):
                return Transaction.parse(value)
    except ValueError as e:
        raise TransactionError(f"Truncated PSBT global map: {e}") from e

    raise TransactionError("Missing unsigned transaction in PSBT global fields")


class NodeChainBackend(ChainBackend):
    """
    Chain queries and broadcast against a Bitcoin Core node.
    """

    def __init__(self, rpc_client: BitcoinRPCClient,
                 broadcaster: Optional[TransactionBroadcaster] = None):
        self.rpc_client = rpc_client
        self.broadcaster = broadcaster or TransactionBroadcaster(rpc_client)
        self.logger = logging.getLogger(__name__)

    def get_height(self) -> int:
        return self.rpc_client.getblockcount()

    def get_tx(self, txid: str) -> Optional[Transaction]:
        try:
            raw = self.rpc_client.getrawtransaction(txid)
        except RPCError as e:
            if e.code == RPC_INVALID_ADDRESS_OR_KEY:
                self.logger.debug(f"Transaction {txid} not found")
                return None
            raise
        return Transaction.from_hex(raw)

    def list_unspent(self, script_pubkey: bytes) -> List[Utxo]:
        """
        Scan the UTXO set for outputs paying to script_pubkey.

        Confirmations are derived from the scan's tip height; outputs found by
        scantxoutset are always confirmed.
        """
        result = self.rpc_client.scantxoutset([f"raw({script_pubkey.hex()})"])
        tip_height = result.get("height", 0)

        utxos = []
        for unspent in result.get("unspents", []):
            height = unspent.get("height", 0)
            confirmations = tip_height - height + 1 if height > 0 else 0
            utxos.append(Utxo(
                outpoint=OutPoint(unspent["txid"], unspent["vout"]),
                value=btc_to_sats(unspent["amount"]),
                script_pubkey=bytes.fromhex(unspent["scriptPubKey"]),
                confirmations=confirmations,
            ))

        self.logger.debug(f"Found {len(utxos)} unspent outputs for {script_pubkey.hex()}")
        return utxos

    def broadcast(self, tx: Transaction) -> str:
        return self.broadcaster.broadcast(tx)


class NodeWalletFundingSource(FundingSource):
    """
    A Bitcoin Core wallet used as the funding source of the pipeline.

    build() keeps the funded PSBT so that sign() can hand it back to the
    wallet; transactions are matched by txid.
    """

    def __init__(self, rpc_client: BitcoinRPCClient):
        self.rpc_client = rpc_client
        self.logger = logging.getLogger(__name__)
        self._pending: Dict[str, str] = {}

    def sync(self) -> None:
        # The node wallet tracks the chain itself; this only checks it is reachable.
        height = self.rpc_client.getblockcount()
        self.logger.debug(f"Node wallet at height {height}")

    def build(self, outputs: Sequence[Tuple[str, int]], fee_rate: int) -> Transaction:
        rpc_outputs = [{address: str(sats_to_btc(amount))} for address, amount in outputs]
        options = {"fee_rate": fee_rate, "replaceable": True}

        try:
            funded = self.rpc_client.walletcreatefundedpsbt(rpc_outputs, options)
        except RPCError as e:
            if e.code == RPC_WALLET_INSUFFICIENT_FUNDS or "insufficient funds" in (e.message or "").lower():
                required = sum(amount for _, amount in outputs)
                raise InsufficientFundsError(required, self.balance().confirmed) from e
            raise

        tx = extract_unsigned_tx(funded["psbt"])
        self._pending[tx.txid] = funded["psbt"]
        self.logger.debug(f"Funded PSBT for {tx.txid}, fee {funded.get('fee')} BTC")
        return tx

    def sign(self, tx: Transaction) -> Tuple[bool, Transaction]:
        psbt = self._pending.pop(tx.txid, None)
        if psbt is None:
            raise SigningError(f"Transaction {tx.txid} was not built by this wallet")

        processed = self.rpc_client.walletprocesspsbt(psbt)
        finalized = self.rpc_client.finalizepsbt(processed["psbt"])
        if not finalized.get("complete"):
            self.logger.warning(f"Wallet could not finalize {tx.txid}")
            return False, tx

        return True, Transaction.from_hex(finalized["hex"])

    def balance(self) -> Balance:
        mine = self.rpc_client.getbalances().get("mine", {})
        return Balance(
            confirmed=btc_to_sats(mine.get("trusted", 0)),
            unconfirmed=btc_to_sats(mine.get("untrusted_pending", 0)),
        )

    def new_address(self, label: str = "") -> str:
        return self.rpc_client.getnewaddress(label, "bech32m")
