"""
HTLC Toolkit - Taproot Contract

A Taproot output whose key path is the recipient (or escrow) key and whose
single script leaf requires a revocation-key signature after a relative
timelock:

    policy      and(older(N),pk(R))
    miniscript  and_v(v:pk(R),older(N))
    tapscript   <R x-only> OP_CHECKSIGVERIFY <N> OP_CHECKSEQUENCEVERIFY

Funding goes through the transaction pipeline's ``send``; withdrawal (key
path) and refund (script path) go through ``drain``.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from crypto.keys import PrivateKey, PublicKey
from transactions.address import address_to_script, script_to_address
from transactions.exceptions import TransactionError
from transactions.pipeline import (
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
from transactions.script import OP_CHECKSEQUENCEVERIFY, OP_CHECKSIGVERIFY, ScriptBuilder
from transactions.sighash import SIGHASH_DEFAULT, taproot_sighash
from transactions.taproot import TapLeaf, TaprootOutput
from transactions.tx import SEQUENCE_ENABLE_RBF_NO_LOCKTIME, Transaction

from .descriptor import format_taproot_descriptor, parse_taproot_descriptor
from .exceptions import (
    ContractReconstructionError,
    SigningError,
    TimeoutNotReachedError,
    ValidationError,
)
from .primitives import SwapInfo


logger = logging.getLogger(__name__)


# BIP68 block-based relative locks are 16 bits
MAX_RELATIVE_TIMELOCK = 0xffff

# Witness bytes per input: item count + 64-byte signature
KEY_PATH_WITNESS_WEIGHT = 1 + 1 + 64


@dataclass(frozen=True)
class Policy:
    """Revocation-after-relative-timelock spending policy."""
    revocation_key: PublicKey
    timelock_blocks: int

    def __str__(self) -> str:
        return f"and(older({self.timelock_blocks}),pk({self.revocation_key.hex}))"

    @property
    def miniscript(self) -> str:
        return f"and_v(v:pk({self.revocation_key.hex}),older({self.timelock_blocks}))"

    @property
    def tapscript(self) -> bytes:
        return (ScriptBuilder()
                .push_data(self.revocation_key.x_only)
                .push_opcode(OP_CHECKSIGVERIFY)
                .push_number(self.timelock_blocks)
                .push_opcode(OP_CHECKSEQUENCEVERIFY)
                .build())

    @property
    def leaf(self) -> TapLeaf:
        return TapLeaf(self.tapscript)


def build_policy(revocation_pubkey: PublicKey, timelock_blocks: int) -> Policy:
    """
    Compile the revocation policy.

    Raises:
        ValidationError: if timelock_blocks is outside 1..65535
    """
    if not 1 <= timelock_blocks <= MAX_RELATIVE_TIMELOCK:
        raise ValidationError(
            f"Relative timelock must be between 1 and {MAX_RELATIVE_TIMELOCK} blocks: {timelock_blocks}",
            field="timelock_duration_blocks",
        )
    return Policy(revocation_key=revocation_pubkey, timelock_blocks=timelock_blocks)


class TaprootContract:
    """
    The Taproot HTLC output for an internal key and a revocation policy.
    """

    def __init__(self, internal_key: PublicKey, policy: Policy, network: str = "regtest"):
        self.internal_key = internal_key
        self.policy = policy
        self.network = network
        self.output = TaprootOutput(internal_key, policy.leaf)

    @classmethod
    def from_swap_info(cls, swap_info: SwapInfo, network: str = "regtest") -> 'TaprootContract':
        swap_info.validate()
        policy = build_policy(swap_info.revocation_public_key, swap_info.timelock_duration_blocks)
        return cls(swap_info.recipient_public_key, policy, network)

    @classmethod
    def from_descriptor(cls, descriptor: str, network: str = "regtest") -> 'TaprootContract':
        internal_key, revocation_key, timelock_blocks = parse_taproot_descriptor(descriptor)
        return cls(internal_key, build_policy(revocation_key, timelock_blocks), network)

    @property
    def descriptor(self) -> str:
        return format_taproot_descriptor(self.internal_key, self.policy.revocation_key,
                                         self.policy.timelock_blocks)

    @property
    def script_pubkey(self) -> bytes:
        return self.output.script_pubkey

    @property
    def address(self) -> str:
        return script_to_address(self.script_pubkey, self.network)

    @property
    def script_path_witness_weight(self) -> int:
        tapscript = self.policy.tapscript
        control_block = self.output.control_block()
        return 1 + (1 + 64) + (1 + len(tapscript)) + (1 + len(control_block))


class TaprootContractSpender(ContractSpender):
    """
    Sweeps a Taproot contract with one private key.

    The key path needs the private key of the internal key; the script path
    needs the revocation private key and outputs at least N blocks deep.
    """

    def __init__(self, chain: ChainBackend, contract: TaprootContract, private_key: PrivateKey):
        self.chain = chain
        self.contract = contract
        self.private_key = private_key
        self.utxos: List[Utxo] = []
        self._spent: List[Utxo] = []

    def sync(self) -> None:
        self.utxos = self.chain.list_unspent(self.contract.script_pubkey)
        logger.debug(f"Contract {self.contract.address} has {len(self.utxos)} unspent outputs")

    def balance(self) -> Balance:
        confirmed = sum(u.value for u in self.utxos if u.confirmed)
        unconfirmed = sum(u.value for u in self.utxos if not u.confirmed)
        return Balance(confirmed=confirmed, unconfirmed=unconfirmed)

    def _mature_utxos(self) -> List[Utxo]:
        timelock = self.contract.policy.timelock_blocks
        confirmed = [u for u in self.utxos if u.confirmed]
        mature = [u for u in confirmed if u.confirmations >= timelock]
        if not mature:
            current_height = self.chain.get_height()
            deepest = max(u.confirmations for u in confirmed)
            raise TimeoutNotReachedError(current_height, current_height + timelock - deepest)
        return mature

    def build_drain(self, destination: str, fee_rate: int, spend_path: SpendPath) -> Transaction:
        try:
            destination_script = address_to_script(destination)
        except TransactionError as e:
            raise ValidationError(f"Invalid destination address: {e}", field="destination") from e

        if spend_path == SpendPath.KEY_PATH:
            self._spent = [u for u in self.utxos if u.confirmed]
            return build_sweep_transaction(self._spent, destination_script, fee_rate,
                                           KEY_PATH_WITNESS_WEIGHT,
                                           sequence=SEQUENCE_ENABLE_RBF_NO_LOCKTIME)

        self._spent = self._mature_utxos()
        return build_sweep_transaction(self._spent, destination_script, fee_rate,
                                       self.contract.script_path_witness_weight,
                                       sequence=self.contract.policy.timelock_blocks)

    def _spent_outputs(self, tx: Transaction):
        by_outpoint = {u.outpoint: u for u in self._spent}
        try:
            return [by_outpoint[tx_in.prevout].to_txout() for tx_in in tx.inputs]
        except KeyError as e:
            raise SigningError(f"Input {e.args[0]} is not a contract output") from e

    def sign(self, tx: Transaction, spend_path: SpendPath) -> Tuple[bool, Transaction]:
        signed = tx.copy()
        spent_outputs = self._spent_outputs(signed)

        if spend_path == SpendPath.KEY_PATH:
            if self.private_key.public_key().x_only != self.contract.internal_key.x_only:
                logger.warning("Private key does not match the contract internal key")
                return False, signed
            tweaked_key, _ = self.private_key.taproot_tweak_private_key(self.contract.output.merkle_root)
            for index, tx_in in enumerate(signed.inputs):
                digest = taproot_sighash(signed, index, spent_outputs, SIGHASH_DEFAULT)
                tx_in.witness = [tweaked_key.sign_schnorr(digest)]
            return True, signed

        if self.private_key.public_key().x_only != self.contract.policy.revocation_key.x_only:
            logger.warning("Private key does not match the contract revocation key")
            return False, signed
        leaf = self.contract.policy.leaf
        control_block = self.contract.output.control_block()
        for index, tx_in in enumerate(signed.inputs):
            digest = taproot_sighash(signed, index, spent_outputs, SIGHASH_DEFAULT, leaf_hash=leaf.leaf_hash)
            tx_in.witness = [self.private_key.sign_schnorr(digest), leaf.script, control_block]
        return True, signed


class TaprootHTLC:
    """
    Fund, withdraw and refund Taproot HTLCs through a transaction pipeline.
    """

    def __init__(self, pipeline: TransactionPipeline, network: str = "regtest",
                 fee_rate: int = DEFAULT_FEE_RATE):
        self.pipeline = pipeline
        self.network = network
        self.fee_rate = fee_rate
        self.logger = logging.getLogger(__name__)

    def contract_for(self, swap_info: SwapInfo) -> TaprootContract:
        return TaprootContract.from_swap_info(swap_info, self.network)

    def fund(self, funding_source: FundingSource, swap_info: SwapInfo) -> str:
        """
        Send the swap amount to the contract address.

        Returns:
            Funding transaction id
        """
        contract = self.contract_for(swap_info)
        self.logger.debug(f"Contract descriptor: {contract.descriptor}")
        txid = self.pipeline.send(funding_source, contract.address, swap_info.amount_satoshis, self.fee_rate)
        self.logger.info(f"Funded Taproot contract {contract.address} with "
                         f"{swap_info.amount_satoshis} sat in {txid}")
        return txid

    def withdraw(self, swap_info: SwapInfo, destination: str, escrow_private_key: PrivateKey,
                 expected_descriptor: Optional[str] = None) -> str:
        """
        Drain the contract through the key path.

        Args:
            swap_info: Contract parameters (post-combination recipient key)
            destination: Address receiving the funds
            escrow_private_key: Private key of the internal key
            expected_descriptor: If given, the rebuilt descriptor must equal it

        Returns:
            Withdrawal transaction id
        """
        contract = self._rebuild(swap_info, expected_descriptor)
        spender = TaprootContractSpender(self.pipeline.chain, contract, escrow_private_key)
        return self.pipeline.drain(spender, destination, SpendPath.KEY_PATH, self.fee_rate)

    def refund(self, swap_info: SwapInfo, destination: str, revocation_private_key: PrivateKey,
               expected_descriptor: Optional[str] = None) -> str:
        """
        Drain the contract through the revocation script path.

        Raises:
            TimeoutNotReachedError: if no output is N blocks deep yet
        """
        contract = self._rebuild(swap_info, expected_descriptor)
        spender = TaprootContractSpender(self.pipeline.chain, contract, revocation_private_key)
        return self.pipeline.drain(spender, destination, SpendPath.SCRIPT_PATH, self.fee_rate)

    def _rebuild(self, swap_info: SwapInfo, expected_descriptor: Optional[str]) -> TaprootContract:
        contract = self.contract_for(swap_info)
        if expected_descriptor is not None and contract.descriptor != expected_descriptor:
            raise ContractReconstructionError(
                f"Rebuilt descriptor {contract.descriptor} does not match {expected_descriptor}"
            )
        return contract
