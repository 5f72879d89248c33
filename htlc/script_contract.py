"""
HTLC Toolkit - P2WSH Hash-Time-Locked Contract

Two-path witness script: the recipient claims by revealing the hash-lock
preimage, the sender reclaims after an absolute block height.

    OP_IF
        OP_SHA256 <hash_lock> OP_EQUALVERIFY <recipient_pubkey> OP_CHECKSIG
    OP_ELSE
        <timelock> OP_CHECKLOCKTIMEVERIFY OP_DROP <sender_pubkey> OP_CHECKSIG
    OP_ENDIF

Claim and refund spends pay a flat fee instead of a rate-based one.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Tuple

from crypto.keys import PrivateKey, PublicKey, sha256
from transactions.address import address_to_script, script_to_address
from transactions.exceptions import SigningError, TransactionError
from transactions.pipeline import DEFAULT_FEE_RATE, DUST_THRESHOLD, ChainBackend, FundingSource, TransactionPipeline
from transactions.script import (
    OP_CHECKLOCKTIMEVERIFY,
    OP_CHECKSIG,
    OP_DROP,
    OP_ELSE,
    OP_ENDIF,
    OP_EQUALVERIFY,
    OP_IF,
    OP_SHA256,
    ScriptBuilder,
)
from transactions.sighash import SIGHASH_ALL, segwit_v0_sighash
from transactions.tx import (
    LOCKTIME_THRESHOLD,
    SEQUENCE_ENABLE_RBF_NO_LOCKTIME,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
)
from transactions.utils import create_p2wsh_script

from .exceptions import ContractReconstructionError, TimeoutNotReachedError, ValidationError


logger = logging.getLogger(__name__)


# Flat fee subtracted by claim and refund spends, in satoshis
LEGACY_HTLC_FEE = 1000


def build_script(recipient_pubkey: PublicKey, sender_pubkey: PublicKey,
                 hash_lock: bytes, timelock: int) -> bytes:
    """
    Build the HTLC witness script.

    Args:
        recipient_pubkey: Key that may claim with the preimage
        sender_pubkey: Key that may refund after the timelock
        hash_lock: 32-byte SHA256 digest of the secret
        timelock: Absolute block height of the refund path

    Returns:
        Witness script bytes
    """
    if len(hash_lock) != 32:
        raise ValidationError(f"Invalid hash lock length: {len(hash_lock)}", field="hash_lock")

    builder = ScriptBuilder()
    return (builder
            .push_opcode(OP_IF)
            .push_opcode(OP_SHA256)
            .push_data(hash_lock)
            .push_opcode(OP_EQUALVERIFY)
            .push_data(recipient_pubkey.bytes)
            .push_opcode(OP_CHECKSIG)
            .push_opcode(OP_ELSE)
            .push_number(timelock)
            .push_opcode(OP_CHECKLOCKTIMEVERIFY)
            .push_opcode(OP_DROP)
            .push_data(sender_pubkey.bytes)
            .push_opcode(OP_CHECKSIG)
            .push_opcode(OP_ENDIF)
            .build())


@dataclass(frozen=True)
class HTLCContract:
    """
    A P2WSH HTLC. The script and address are pure functions of the four fields.
    """
    recipient_pubkey: PublicKey
    sender_pubkey: PublicKey
    hash_lock: bytes
    timelock: int

    def __post_init__(self):
        if len(self.hash_lock) != 32:
            raise ValidationError(f"Invalid hash lock length: {len(self.hash_lock)}", field="hash_lock")
        if not 0 <= self.timelock <= 0xffffffff:
            raise ValidationError(f"Invalid timelock: {self.timelock}", field="timelock")

    @property
    def witness_script(self) -> bytes:
        return build_script(self.recipient_pubkey, self.sender_pubkey, self.hash_lock, self.timelock)

    @property
    def script_pubkey(self) -> bytes:
        return create_p2wsh_script(self.witness_script)

    def address(self, network: str = "regtest") -> str:
        return script_to_address(self.script_pubkey, network)

    def check_preimage(self, secret: bytes) -> bool:
        """Constant-time check that sha256(secret) equals the hash lock."""
        return hmac.compare_digest(sha256(secret), self.hash_lock)

    def find_funding_output(self, tx: Transaction) -> Tuple[int, TxOut]:
        """
        Locate the contract output in a funding transaction.

        Returns:
            Tuple of (output index, output)

        Raises:
            ContractReconstructionError: if no output pays to this contract
        """
        script_pubkey = self.script_pubkey
        for vout, tx_out in enumerate(tx.outputs):
            if tx_out.script_pubkey == script_pubkey:
                return vout, tx_out
        raise ContractReconstructionError("contract output not found")

    def _spend_template(self, outpoint: OutPoint, amount: int, destination: str,
                        locktime: int) -> Transaction:
        if amount - LEGACY_HTLC_FEE < DUST_THRESHOLD:
            raise SigningError(
                f"Amount {amount} less the {LEGACY_HTLC_FEE} sat fee is below the {DUST_THRESHOLD} sat dust threshold"
            )
        try:
            destination_script = address_to_script(destination)
        except TransactionError as e:
            raise SigningError(f"Invalid destination address: {e}") from e

        return Transaction(
            version=2,
            inputs=[TxIn(prevout=outpoint, sequence=SEQUENCE_ENABLE_RBF_NO_LOCKTIME)],
            outputs=[TxOut(value=amount - LEGACY_HTLC_FEE, script_pubkey=destination_script)],
            locktime=locktime,
        )

    def _sign(self, tx: Transaction, amount: int, private_key: PrivateKey) -> bytes:
        digest = segwit_v0_sighash(tx, 0, self.witness_script, amount, SIGHASH_ALL)
        return private_key.sign(digest) + bytes([SIGHASH_ALL])

    def build_claim_transaction(self, outpoint: OutPoint, amount: int, destination: str,
                                secret: bytes, recipient_private_key: PrivateKey) -> Transaction:
        """
        Build a signed transaction spending the secret path.

        Args:
            outpoint: Contract output being spent
            amount: Value of the contract output
            destination: Address receiving amount minus the flat fee
            secret: Hash-lock preimage
            recipient_private_key: Private key of the recipient

        Returns:
            Fully signed transaction with lockTime 0
        """
        if not self.check_preimage(secret):
            raise ValidationError("Secret does not match hash lock", field="secret")
        if recipient_private_key.public_key() != self.recipient_pubkey:
            raise SigningError("Private key does not match the contract recipient key")

        tx = self._spend_template(outpoint, amount, destination, locktime=0)
        signature = self._sign(tx, amount, recipient_private_key)
        tx.inputs[0].witness = [signature, secret, b'\x01', self.witness_script]
        return tx

    def build_refund_transaction(self, outpoint: OutPoint, amount: int, destination: str,
                                 sender_private_key: PrivateKey) -> Transaction:
        """
        Build a signed transaction spending the timeout path.

        The lockTime is the contract timelock so OP_CHECKLOCKTIMEVERIFY passes;
        the input sequence is non-final.

        Raises:
            SigningError: if the timelock is not a block height or the key is wrong
        """
        if self.timelock >= LOCKTIME_THRESHOLD:
            raise SigningError(f"Timelock {self.timelock} cannot be encoded as a block-height lock-time")
        if sender_private_key.public_key() != self.sender_pubkey:
            raise SigningError("Private key does not match the contract sender key")

        tx = self._spend_template(outpoint, amount, destination, locktime=self.timelock)
        signature = self._sign(tx, amount, sender_private_key)
        tx.inputs[0].witness = [signature, b'', self.witness_script]
        return tx


def create_htlc_contract(recipient_pubkey: PublicKey, sender_pubkey: PublicKey,
                         secret: bytes, timelock: int) -> HTLCContract:
    """Create a contract whose hash lock is sha256(secret)."""
    return HTLCContract(
        recipient_pubkey=recipient_pubkey,
        sender_pubkey=sender_pubkey,
        hash_lock=sha256(secret),
        timelock=timelock,
    )


def fund_htlc(pipeline: TransactionPipeline, funding_source: FundingSource, contract: HTLCContract,
              amount_satoshis: int, network: str = "regtest",
              fee_rate: int = DEFAULT_FEE_RATE) -> str:
    """Send amount_satoshis to the contract address. Returns the funding txid."""
    address = contract.address(network)
    logger.debug(f"HTLC witness script: {contract.witness_script.hex()}")
    txid = pipeline.send(funding_source, address, amount_satoshis, fee_rate)
    logger.info(f"Funded HTLC {address} with {amount_satoshis} sat in {txid}")
    return txid


def _locate_funding(chain: ChainBackend, contract: HTLCContract, funding_txid: str) -> Tuple[OutPoint, int]:
    funding_tx = chain.get_tx(funding_txid)
    if funding_tx is None:
        raise ContractReconstructionError(f"Funding transaction {funding_txid} not found")
    vout, tx_out = contract.find_funding_output(funding_tx)
    return OutPoint(funding_txid, vout), tx_out.value


def claim_htlc(chain: ChainBackend, contract: HTLCContract, funding_txid: str, destination: str,
               secret: bytes, recipient_private_key: PrivateKey) -> str:
    """
    Claim a funded HTLC with the preimage and broadcast the claim.

    Returns:
        Claim transaction id
    """
    outpoint, amount = _locate_funding(chain, contract, funding_txid)
    tx = contract.build_claim_transaction(outpoint, amount, destination, secret, recipient_private_key)
    txid = chain.broadcast(tx)
    logger.info(f"Claimed HTLC output {outpoint} in {txid}")
    return txid


def refund_htlc(chain: ChainBackend, contract: HTLCContract, funding_txid: str, destination: str,
                sender_private_key: PrivateKey) -> str:
    """
    Refund a funded HTLC after its timelock and broadcast the refund.

    Raises:
        TimeoutNotReachedError: if the chain has not reached the timelock height
    """
    current_height = chain.get_height()
    if current_height < contract.timelock:
        raise TimeoutNotReachedError(current_height, contract.timelock)

    outpoint, amount = _locate_funding(chain, contract, funding_txid)
    tx = contract.build_refund_transaction(outpoint, amount, destination, sender_private_key)
    txid = chain.broadcast(tx)
    logger.info(f"Refunded HTLC output {outpoint} in {txid}")
    return txid
