"""
HTLC Toolkit - Demo Deployment

Creates a P2WSH HTLC with freshly generated keys, for demonstrations and
manual testing against regtest.
"""

from dataclasses import dataclass

from crypto.keys import PrivateKey, sha256

from .script_contract import HTLCContract, create_htlc_contract


@dataclass
class DeploymentConfig:
    network: str = "regtest"
    timelock_blocks: int = 144  # ~24 hours
    secret: bytes = b"my_secret_preimage"


@dataclass
class DeploymentResult:
    contract: HTLCContract
    address: str
    recipient_private_key: PrivateKey
    sender_private_key: PrivateKey
    hash_lock: bytes


def deploy_htlc(config: DeploymentConfig = None, current_height: int = 0) -> DeploymentResult:
    """
    Generate recipient and sender keys and build an HTLC.

    Args:
        config: Deployment parameters
        current_height: Chain height; the refund path opens timelock_blocks later

    Returns:
        DeploymentResult with the contract, its address and both private keys
    """
    config = config or DeploymentConfig()
    recipient_private_key = PrivateKey()
    sender_private_key = PrivateKey()

    contract = create_htlc_contract(
        recipient_private_key.public_key(),
        sender_private_key.public_key(),
        config.secret,
        current_height + config.timelock_blocks,
    )

    return DeploymentResult(
        contract=contract,
        address=contract.address(config.network),
        recipient_private_key=recipient_private_key,
        sender_private_key=sender_private_key,
        hash_lock=sha256(config.secret),
    )
