"""
HTLC Toolkit - Swap Primitives

Swap Info, the public parameters of a Taproot HTLC, and amount formatting
helpers.
"""

import dataclasses
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Union

from crypto.exceptions import InvalidKeyError
from crypto.keys import PublicKey

from .exceptions import ValidationError


SATOSHIS_PER_BTC = 100_000_000


@dataclass(frozen=True)
class SwapInfo:
    """
    Public parameters of a swap contract.

    Private keys are handled separately. After key combination the
    recipient key is the escrow key and every reconstruction of the contract
    must use that value.
    """
    recipient_public_key: PublicKey
    revocation_public_key: PublicKey
    timelock_duration_blocks: int
    amount_satoshis: int

    def validate(self) -> None:
        """
        Check the swap parameters.

        Raises:
            ValidationError: if the amount or the timelock duration is not positive
        """
        if self.amount_satoshis <= 0:
            raise ValidationError("Amount must be greater than zero", field="amount_satoshis")
        if self.timelock_duration_blocks <= 0:
            raise ValidationError("Timelock duration must be greater than zero",
                                  field="timelock_duration_blocks")

    def amount_btc(self) -> Decimal:
        return Decimal(self.amount_satoshis) / SATOSHIS_PER_BTC

    def with_recipient(self, recipient_public_key: PublicKey) -> 'SwapInfo':
        """Return a copy with a different recipient key."""
        return dataclasses.replace(self, recipient_public_key=recipient_public_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_public_key": self.recipient_public_key.hex,
            "revocation_public_key": self.revocation_public_key.hex,
            "timelock_duration_blocks": self.timelock_duration_blocks,
            "amount_satoshis": self.amount_satoshis,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SwapInfo':
        """
        Build Swap Info from its JSON form.

        Raises:
            ValidationError: on a missing field or malformed key
        """
        try:
            return cls(
                recipient_public_key=PublicKey.from_hex(data["recipient_public_key"]),
                revocation_public_key=PublicKey.from_hex(data["revocation_public_key"]),
                timelock_duration_blocks=int(data["timelock_duration_blocks"]),
                amount_satoshis=int(data["amount_satoshis"]),
            )
        except KeyError as e:
            raise ValidationError(f"Missing swap info field: {e.args[0]}", field=e.args[0]) from e
        except (InvalidKeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed swap info: {e}") from e


def format_satoshis_to_btc(satoshis: int) -> str:
    """
    Format a satoshi amount as BTC with trailing zeros trimmed.

    Examples:
        150000000 -> "1.5", 100000000 -> "1", 0 -> "0"
    """
    whole, fraction = divmod(abs(satoshis), SATOSHIS_PER_BTC)
    sign = "-" if satoshis < 0 else ""
    if fraction == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{fraction:08d}".rstrip("0")


def btc_to_satoshis(amount: Union[str, int, float, Decimal]) -> int:
    """
    Convert a BTC amount to satoshis.

    Raises:
        ValidationError: for amounts with more than 8 decimals or unparseable input
    """
    try:
        value = Decimal(str(amount)) * SATOSHIS_PER_BTC
    except InvalidOperation as e:
        raise ValidationError(f"Invalid BTC amount: {amount}") from e
    if value != value.to_integral_value():
        raise ValidationError(f"BTC amount has more than 8 decimal places: {amount}")
    return int(value)
