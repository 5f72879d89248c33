"""
HTLC Toolkit - Transaction Broadcasting

This module submits finalized transactions to Bitcoin Core, retrying
transient transport failures with exponential backoff and classifying
node rejections so callers can tell an immature timelock from a
double spend.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Optional

from transactions.exceptions import BroadcastError, RejectionReason
from transactions.tx import Transaction

from .rpc import BitcoinRPCClient, RPCConnectionError, RPCError, RPCTimeoutError


# Bitcoin Core RPC_VERIFY_* codes
RPC_VERIFY_ERROR = -25
RPC_VERIFY_REJECTED = -26
RPC_VERIFY_ALREADY_IN_CHAIN = -27

NON_FINAL_MESSAGES = ("non-final", "non-bip68-final")
DOUBLE_SPEND_MESSAGES = ("missingorspent", "txn-mempool-conflict", "missing inputs")
INSUFFICIENT_FEE_MESSAGES = ("min relay fee", "mempool min fee", "insufficient fee")
ALREADY_KNOWN_MESSAGES = ("txn-already-in-mempool", "txn-already-known", "already in block chain")


def classify_rejection(error: RPCError) -> RejectionReason:
    """
    Map a node rejection to a RejectionReason.

    Messages are checked before codes because Bitcoin Core reports most
    policy and consensus rejections under -26.
    """
    message = (error.message or "").lower()

    if any(text in message for text in NON_FINAL_MESSAGES):
        return RejectionReason.NON_FINAL
    if any(text in message for text in ALREADY_KNOWN_MESSAGES):
        return RejectionReason.ALREADY_KNOWN
    if any(text in message for text in DOUBLE_SPEND_MESSAGES):
        return RejectionReason.DOUBLE_SPEND
    if any(text in message for text in INSUFFICIENT_FEE_MESSAGES):
        return RejectionReason.INSUFFICIENT_FEE

    if error.code == RPC_VERIFY_ALREADY_IN_CHAIN:
        return RejectionReason.ALREADY_KNOWN
    if error.code == RPC_VERIFY_ERROR:
        return RejectionReason.DOUBLE_SPEND
    return RejectionReason.OTHER


@dataclass
class BroadcastConfig:
    """Configuration for transaction broadcasting."""
    max_attempts: int = 5
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1
    max_fee_rate: Optional[float] = None  # BTC/kvB

    def get_retry_delay(self, attempt: int) -> float:
        """Calculate retry delay for given attempt number."""
        if attempt <= 0:
            return 0.0

        delay = self.initial_delay_seconds * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay_seconds)

        if self.jitter_factor > 0:
            delay += delay * self.jitter_factor * random.random()

        return delay


class TransactionBroadcaster:
    """
    Broadcast transactions through a Bitcoin Core node.

    Only connection failures and timeouts are retried. A rejection from the
    node is final and raised as BroadcastError carrying its classified reason.
    """

    def __init__(self, rpc_client: BitcoinRPCClient, config: Optional[BroadcastConfig] = None):
        self.rpc_client = rpc_client
        self.config = config or BroadcastConfig()
        self.logger = logging.getLogger(__name__)

    def broadcast(self, tx: Transaction) -> str:
        """
        Submit a transaction.

        Args:
            tx: Fully signed transaction

        Returns:
            Transaction ID reported by the node

        Raises:
            BroadcastError: if the node rejects the transaction or every attempt fails
        """
        txid = tx.txid
        raw_transaction = tx.serialize().hex()
        max_attempts = self.config.max_attempts

        for attempt_num in range(1, max_attempts + 1):
            if attempt_num > 1:
                delay = self.config.get_retry_delay(attempt_num - 1)
                self.logger.debug(f"Waiting {delay:.2f}s before retry {attempt_num}")
                time.sleep(delay)

            try:
                broadcast_txid = self.rpc_client.sendrawtransaction(raw_transaction,
                                                                    self.config.max_fee_rate)
            except (RPCConnectionError, RPCTimeoutError) as e:
                self.logger.warning(f"Broadcast attempt {attempt_num} failed for {txid}: {e.message}")
                continue
            except RPCError as e:
                reason = classify_rejection(e)
                self.logger.error(f"Node rejected {txid} ({reason.value}): {e.message}")
                raise BroadcastError(f"Transaction rejected: {e.message}", reason, txid) from e

            self.logger.info(f"Broadcast {broadcast_txid} in {attempt_num} attempts")
            return broadcast_txid

        self.logger.error(f"Failed to broadcast {txid} after {max_attempts} attempts")
        raise BroadcastError(f"Failed to broadcast after {max_attempts} attempts",
                             RejectionReason.OTHER, txid)

    def test_accept(self, tx: Transaction) -> Optional[RejectionReason]:
        """
        Dry-run a transaction against the mempool.

        Returns:
            None if the node would accept it, otherwise the rejection reason
        """
        results = self.rpc_client.testmempoolaccept([tx.serialize().hex()])
        result = results[0] if results else {}
        if result.get("allowed"):
            return None
        return classify_rejection(RPCError(RPC_VERIFY_REJECTED, result.get("reject-reason", "")))
