"""
HTLC Toolkit - Atomic-Swap Protocol

The initiator draws a one-time swap secret k, publishes the escrow key
E = k*G + P (P is the recipient's long-term key) as the Taproot internal key
and funds the contract. Whoever holds both the recipient private key p and
the revealed k can compute the escrow private key e = p + k (mod n), whose
public key is E, and withdraw through the key path.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from crypto.exceptions import InvalidKeyError, KeyCombinationError
from crypto.keys import PrivateKey, combine_public_keys, generate_scalar
from transactions.pipeline import FundingSource

from .exceptions import ValidationError
from .primitives import SwapInfo
from .record import ContractRecord
from .taproot_contract import TaprootHTLC


logger = logging.getLogger(__name__)


def generate_swap_secret() -> PrivateKey:
    """Draw a fresh swap secret scalar in [1, n-1] from the OS CSPRNG."""
    return PrivateKey.from_int(generate_scalar())


def parse_swap_secret(swap_secret: Union[str, PrivateKey]) -> PrivateKey:
    """
    Accept a swap secret as a PrivateKey or a 64-character hex scalar.

    Raises:
        ValidationError: if the value is not a valid scalar
    """
    if isinstance(swap_secret, PrivateKey):
        return swap_secret
    try:
        return PrivateKey.from_hex(swap_secret.strip())
    except (AttributeError, InvalidKeyError) as e:
        raise ValidationError(f"Invalid swap secret: {e}", field="swap_secret") from e


def combine_swap_keys(swap_info: SwapInfo, swap_secret: PrivateKey) -> SwapInfo:
    """
    Return new Swap Info whose recipient key is the escrow key k*G + P.

    The input is not modified.

    Raises:
        KeyCombinationError: if the sum is the point at infinity
    """
    escrow_key = combine_public_keys([swap_secret.public_key(), swap_info.recipient_public_key])
    return swap_info.with_recipient(escrow_key)


def derive_escrow_private_key(recipient_private_key: PrivateKey,
                              swap_secret: Union[str, PrivateKey]) -> PrivateKey:
    """
    Compute the escrow private key (p + k) mod n.

    Raises:
        KeyCombinationError: if the sum is zero modulo the group order
    """
    return recipient_private_key.add_scalar(parse_swap_secret(swap_secret))


@dataclass(frozen=True)
class SwapInitiation:
    """Result of funding a swap: everything needed to persist a Contract Record."""
    swap_info: SwapInfo
    funding_txid: str
    swap_secret: str
    descriptor: str
    address: str

    def to_record(self, creation_timestamp: Optional[int] = None) -> ContractRecord:
        return ContractRecord.create(
            swap_info=self.swap_info,
            swap_secret=self.swap_secret,
            descriptor_string=self.descriptor,
            contract_address=self.address,
            funding_txid=self.funding_txid,
            creation_timestamp=creation_timestamp,
        )


class AtomicSwap:
    """
    Initiate and complete Taproot atomic swaps.
    """

    def __init__(self, taproot_htlc: TaprootHTLC):
        self.taproot_htlc = taproot_htlc
        self.logger = logging.getLogger(__name__)

    def initiate(self, funding_source: FundingSource, swap_info: SwapInfo) -> SwapInitiation:
        """
        Combine keys and fund the contract.

        Args:
            funding_source: Wallet paying the swap amount
            swap_info: Parameters with the recipient's long-term key

        Returns:
            SwapInitiation with the combined Swap Info and the swap secret
        """
        swap_info.validate()
        swap_secret = generate_swap_secret()
        combined = combine_swap_keys(swap_info, swap_secret)

        contract = self.taproot_htlc.contract_for(combined)
        funding_txid = self.taproot_htlc.fund(funding_source, combined)
        self.logger.info(f"Initiated swap {contract.address} funded by {funding_txid}")

        return SwapInitiation(
            swap_info=combined,
            funding_txid=funding_txid,
            swap_secret=swap_secret.hex,
            descriptor=contract.descriptor,
            address=contract.address,
        )

    def complete(self, swap_info: SwapInfo, recipient_private_key: PrivateKey,
                 revealed_swap_secret: Union[str, PrivateKey], destination: str,
                 expected_descriptor: Optional[str] = None) -> str:
        """
        Withdraw a funded swap with the recipient key and the revealed secret.

        Args:
            swap_info: Combined Swap Info (recipient key is the escrow key)
            recipient_private_key: Recipient's long-term private key
            revealed_swap_secret: The swap secret k
            destination: Address receiving the funds

        Returns:
            Withdrawal transaction id

        Raises:
            KeyCombinationError: if the derived key is zero or does not match the escrow key
        """
        escrow_private_key = derive_escrow_private_key(recipient_private_key, revealed_swap_secret)
        if escrow_private_key.public_key() != swap_info.recipient_public_key:
            raise KeyCombinationError("Derived escrow key does not match the contract escrow key")

        txid = self.taproot_htlc.withdraw(swap_info, destination, escrow_private_key,
                                          expected_descriptor=expected_descriptor)
        self.logger.info(f"Completed swap to {destination} in {txid}")
        return txid

    def complete_from_record(self, record: ContractRecord, recipient_private_key: PrivateKey,
                             destination: str) -> str:
        """Complete a swap using the parameters and secret stored in a record."""
        return self.complete(record.swap_info, recipient_private_key, record.swap_secret,
                             destination, expected_descriptor=record.descriptor_string)

    def refund(self, swap_info: SwapInfo, destination: str, revocation_private_key: PrivateKey,
               expected_descriptor: Optional[str] = None) -> str:
        """Reclaim a swap through the revocation path once the relative timelock matures."""
        txid = self.taproot_htlc.refund(swap_info, destination, revocation_private_key,
                                        expected_descriptor=expected_descriptor)
        self.logger.info(f"Refunded swap to {destination} in {txid}")
        return txid
