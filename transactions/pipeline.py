"""
HTLC Toolkit - Transaction Pipeline

The fee-rate-aware build -> sign -> broadcast sequence shared by every
money-moving operation, and the collaborator interfaces it consumes.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .exceptions import InsufficientFundsError, SigningError, TransactionError
from .tx import (
    SEQUENCE_ENABLE_RBF_NO_LOCKTIME,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
)
from .utils import estimate_vsize


logger = logging.getLogger(__name__)


# Fee rate for rate-based paths, satoshis per virtual byte
DEFAULT_FEE_RATE = 20

# Smallest output value relayed for any witness output type
DUST_THRESHOLD = 330


class SpendPath(Enum):
    """Which branch of a Taproot output a drain transaction spends."""
    KEY_PATH = "key_path"
    SCRIPT_PATH = "script_path"


@dataclass(frozen=True)
class Balance:
    """Confirmed and unconfirmed value in satoshis."""
    confirmed: int
    unconfirmed: int = 0

    @property
    def total(self) -> int:
        return self.confirmed + self.unconfirmed


@dataclass(frozen=True)
class Utxo:
    """An unspent output as reported by a chain backend."""
    outpoint: OutPoint
    value: int
    script_pubkey: bytes
    confirmations: int = 0

    @property
    def confirmed(self) -> bool:
        return self.confirmations > 0

    def to_txout(self) -> TxOut:
        return TxOut(value=self.value, script_pubkey=self.script_pubkey)


class ChainBackend(ABC):
    """Chain query and broadcast interface."""

    @abstractmethod
    def get_height(self) -> int:
        """Current best block height."""

    @abstractmethod
    def get_tx(self, txid: str) -> Optional[Transaction]:
        """Look up a transaction by id, None if unknown."""

    @abstractmethod
    def list_unspent(self, script_pubkey: bytes) -> List[Utxo]:
        """Unspent outputs paying to a script."""

    @abstractmethod
    def broadcast(self, tx: Transaction) -> str:
        """
        Submit a transaction.

        Returns:
            Transaction id

        Raises:
            BroadcastError: if the transaction is rejected
        """


class FundingSource(ABC):
    """A wallet able to select inputs and fully sign a transaction."""

    @abstractmethod
    def sync(self) -> None:
        """Resynchronize with the chain."""

    @abstractmethod
    def build(self, outputs: Sequence[Tuple[str, int]], fee_rate: int) -> Transaction:
        """
        Build an unsigned transaction paying the given outputs.

        Args:
            outputs: (address, satoshis) pairs
            fee_rate: Fee rate in sat/vB

        Raises:
            InsufficientFundsError: if the wallet cannot cover outputs and fee
        """

    @abstractmethod
    def sign(self, tx: Transaction) -> Tuple[bool, Transaction]:
        """Sign a transaction, returning (finalized, signed_tx)."""

    @abstractmethod
    def balance(self) -> Balance:
        """Current wallet balance."""


class ContractSpender(ABC):
    """
    A contract output set that can be swept to a single destination.

    Unlike a FundingSource the spender always spends everything it holds and
    needs to know which spending branch to use.
    """

    @abstractmethod
    def sync(self) -> None:
        """Refresh the contract's unspent outputs."""

    @abstractmethod
    def balance(self) -> Balance:
        """Value held by the contract."""

    @abstractmethod
    def build_drain(self, destination: str, fee_rate: int, spend_path: SpendPath) -> Transaction:
        """Build an unsigned transaction sweeping the contract to destination."""

    @abstractmethod
    def sign(self, tx: Transaction, spend_path: SpendPath) -> Tuple[bool, Transaction]:
        """Sign a drain transaction, returning (finalized, signed_tx)."""


def build_sweep_transaction(utxos: Sequence[Utxo], destination_script: bytes, fee_rate: int,
                            witness_weight: int, sequence: int = SEQUENCE_ENABLE_RBF_NO_LOCKTIME,
                            locktime: int = 0) -> Transaction:
    """
    Build a transaction spending every given UTXO to one output.

    The fee is ``fee_rate`` times the estimated vsize, using a fixed witness
    size per input.

    Args:
        utxos: Outputs to spend
        destination_script: Output script receiving the funds
        fee_rate: Fee rate in sat/vB
        witness_weight: Witness bytes per input, including the item count
        sequence: nSequence for every input
        locktime: nLockTime

    Returns:
        Unsigned transaction

    Raises:
        InsufficientFundsError: if the remaining value would be dust
    """
    if not utxos:
        raise InsufficientFundsError(0, 0, "no funds available")
    if fee_rate <= 0:
        raise TransactionError(f"Fee rate must be positive: {fee_rate}")

    total = sum(utxo.value for utxo in utxos)
    vsize = estimate_vsize(len(utxos), [destination_script], witness_weight)
    fee = vsize * fee_rate
    if total - fee < DUST_THRESHOLD:
        raise InsufficientFundsError(fee + DUST_THRESHOLD, total)

    logger.debug(f"Sweeping {len(utxos)} inputs ({total} sat), vsize {vsize}, fee {fee} sat")

    return Transaction(
        version=2,
        inputs=[TxIn(prevout=utxo.outpoint, sequence=sequence) for utxo in utxos],
        outputs=[TxOut(value=total - fee, script_pubkey=destination_script)],
        locktime=locktime,
    )


class TransactionPipeline:
    """
    Build, sign and broadcast transactions against a chain backend.

    Every step must succeed in order; a signer that does not fully finalize
    stops the pipeline before anything reaches the network.
    """

    def __init__(self, chain: ChainBackend):
        self.chain = chain
        self.logger = logging.getLogger(__name__)

    def send(self, funding_source: FundingSource, destination: str, amount_satoshis: int,
             fee_rate: int = DEFAULT_FEE_RATE) -> str:
        """
        Pay a fixed amount to one destination.

        Args:
            funding_source: Wallet providing inputs and signatures
            destination: Recipient address
            amount_satoshis: Amount to send
            fee_rate: Fee rate in sat/vB

        Returns:
            Transaction id
        """
        if amount_satoshis <= 0:
            raise TransactionError(f"Amount must be positive: {amount_satoshis}")
        if fee_rate <= 0:
            raise TransactionError(f"Fee rate must be positive: {fee_rate}")

        funding_source.sync()
        tx = funding_source.build([(destination, amount_satoshis)], fee_rate)
        finalized, signed_tx = funding_source.sign(tx)
        if not finalized:
            raise SigningError("Failed to sign and finalize transaction")

        txid = self.broadcast(signed_tx)
        self.logger.info(f"Sent {amount_satoshis} sat to {destination} in {txid}")
        return txid

    def drain(self, spender: ContractSpender, destination: str, spend_path: SpendPath,
              fee_rate: int = DEFAULT_FEE_RATE) -> str:
        """
        Sweep the whole confirmed balance of a contract to one destination.

        Args:
            spender: Contract holding the funds
            destination: Recipient address
            spend_path: Branch of the contract to spend
            fee_rate: Fee rate in sat/vB

        Returns:
            Transaction id

        Raises:
            InsufficientFundsError: if no confirmed funds are available
            SigningError: if the signer does not finalize
        """
        spender.sync()
        balance = spender.balance()
        if balance.confirmed <= 0:
            raise InsufficientFundsError(1, 0, "no funds available")

        tx = spender.build_drain(destination, fee_rate, spend_path)
        finalized, signed_tx = spender.sign(tx, spend_path)
        if not finalized:
            raise SigningError(f"Failed to sign and finalize {spend_path.value} spend")

        txid = self.broadcast(signed_tx)
        self.logger.info(f"Drained {balance.confirmed} sat via {spend_path.value} to {destination} in {txid}")
        return txid

    def broadcast(self, tx: Transaction) -> str:
        """Hand a finalized transaction to the chain backend."""
        self.logger.debug(f"Broadcasting {tx.txid} ({tx.vsize} vB)")
        return self.chain.broadcast(tx)
