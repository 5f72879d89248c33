"""
HTLC Toolkit - Contract Record

A persisted snapshot of a funded swap: its public parameters, the swap
secret, descriptor, address, funding txid and creation time. The record is
the only durable link between the on-chain output and the secret needed to
spend it, so files are written owner-only and may be encrypted with a
password.
"""

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from crypto.exceptions import InvalidKeyError, KeyStorageError
from crypto.keys import PrivateKey
from crypto.storage import (
    EncryptedPayload,
    decrypt_payload,
    encrypt_payload,
    is_encrypted_document,
    write_json_atomic,
)
from transactions.address import address_to_script
from transactions.exceptions import AddressError

from .exceptions import HTLCError, PersistenceError, ValidationError
from .primitives import SwapInfo
from .taproot_contract import TaprootContract


logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "swap_info",
    "swap_secret",
    "descriptor_string",
    "contract_address",
    "funding_txid",
    "creation_timestamp",
)


@dataclass(frozen=True)
class ContractRecord:
    """Validated snapshot of a funded swap."""
    swap_info: SwapInfo
    swap_secret: str
    descriptor_string: str
    contract_address: str
    funding_txid: str
    creation_timestamp: int

    @classmethod
    def create(cls, swap_info: SwapInfo, swap_secret: str, descriptor_string: str,
               contract_address: str, funding_txid: str,
               creation_timestamp: Optional[int] = None) -> 'ContractRecord':
        if creation_timestamp is None:
            creation_timestamp = int(time.time())
        return cls(swap_info, swap_secret, descriptor_string, contract_address,
                   funding_txid, creation_timestamp)

    def validate(self) -> None:
        """
        Check that no field is empty and the embedded Swap Info is valid.

        Raises:
            PersistenceError: describing the first failing field
        """
        for name in ("swap_secret", "descriptor_string", "contract_address", "funding_txid"):
            if not getattr(self, name):
                raise PersistenceError(f"Contract record field '{name}' is empty")
        if self.creation_timestamp <= 0:
            raise PersistenceError("Contract record field 'creation_timestamp' is empty")

        try:
            self.swap_info.validate()
        except ValidationError as e:
            raise PersistenceError(f"Invalid swap info: {e}") from e

        try:
            PrivateKey.from_hex(self.swap_secret)
        except InvalidKeyError as e:
            raise PersistenceError(f"Invalid swap secret: {e}") from e

        if len(self.funding_txid) != 64:
            raise PersistenceError(f"Invalid funding txid: {self.funding_txid}")

    def verify_contract(self) -> None:
        """
        Check that the descriptor and address re-derive from the Swap Info.

        Raises:
            PersistenceError: if either was not produced from these parameters
        """
        try:
            contract = TaprootContract.from_swap_info(self.swap_info)
        except HTLCError as e:
            raise PersistenceError(f"Cannot rebuild contract: {e}") from e

        if contract.descriptor != self.descriptor_string:
            raise PersistenceError("Descriptor does not match the recorded swap info")
        try:
            script_pubkey = address_to_script(self.contract_address)
        except AddressError as e:
            raise PersistenceError(f"Invalid contract address: {e}") from e
        if script_pubkey != contract.script_pubkey:
            raise PersistenceError("Contract address does not match the recorded swap info")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "swap_info": self.swap_info.to_dict(),
            "swap_secret": self.swap_secret,
            "descriptor_string": self.descriptor_string,
            "contract_address": self.contract_address,
            "funding_txid": self.funding_txid,
            "creation_timestamp": self.creation_timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContractRecord':
        if not isinstance(data, dict):
            raise PersistenceError("Contract record must be a JSON object")
        missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, "")]
        if missing:
            raise PersistenceError(f"Contract record is missing fields: {', '.join(missing)}")

        try:
            swap_info = SwapInfo.from_dict(data["swap_info"])
            return cls(
                swap_info=swap_info,
                swap_secret=str(data["swap_secret"]),
                descriptor_string=str(data["descriptor_string"]),
                contract_address=str(data["contract_address"]),
                funding_txid=str(data["funding_txid"]),
                creation_timestamp=int(data["creation_timestamp"]),
            )
        except ValidationError as e:
            raise PersistenceError(f"Invalid swap info: {e}") from e
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed contract record: {e}") from e


def save(record: ContractRecord, path: Union[str, Path], password: Optional[str] = None) -> Path:
    """
    Validate and atomically write a record.

    Nothing is written if validation fails.

    Args:
        record: Record to persist
        path: Destination file
        password: Encrypt the document when given

    Returns:
        The written path
    """
    record.validate()
    document = record.to_dict()
    if password is not None:
        try:
            plaintext = json.dumps(document).encode("utf-8")
            document = encrypt_payload(plaintext, password).to_dict()
        except KeyStorageError as e:
            raise PersistenceError(f"Failed to encrypt contract record: {e}") from e
    else:
        logger.warning(f"Contract record {path} holds the swap secret in plaintext")

    path = Path(path)
    try:
        write_json_atomic(path, document)
    except OSError as e:
        raise PersistenceError(f"Failed to write contract record {path}: {e}") from e

    logger.info(f"Saved contract record for {record.contract_address} to {path}")
    return path


def load(path: Union[str, Path], password: Optional[str] = None) -> ContractRecord:
    """
    Read, decrypt if needed, and validate a record.

    Raises:
        PersistenceError: on unreadable, invalid or undecryptable files
    """
    path = Path(path)
    try:
        with open(path, "r") as f:
            document = json.load(f)
    except OSError as e:
        raise PersistenceError(f"Failed to read contract record {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise PersistenceError(f"Contract record {path} is not valid JSON: {e}") from e

    if is_encrypted_document(document):
        if password is None:
            raise PersistenceError(f"Contract record {path} is encrypted; a password is required")
        try:
            plaintext = decrypt_payload(EncryptedPayload.from_dict(document), password)
            document = json.loads(plaintext.decode("utf-8"))
        except KeyStorageError as e:
            raise PersistenceError(f"Failed to decrypt contract record {path}: {e}") from e
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Decrypted contract record {path} is malformed: {e}") from e

    record = ContractRecord.from_dict(document)
    record.validate()
    record.verify_contract()
    return record
