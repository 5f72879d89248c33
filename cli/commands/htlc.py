"""
P2WSH HTLC Commands for the HTLC CLI

Build contracts offline, fund them from the node wallet, and spend them
through the secret (claim) or timeout (refund) path.
"""

from typing import Optional

import click

from crypto.keys import sha256
from htlc.deployment import DeploymentConfig, deploy_htlc
from htlc.script_contract import HTLCContract, claim_htlc, fund_htlc, refund_htlc
from transactions.script import script_to_asm

from cli.context import (
    CLIContext,
    handle_cli_error,
    parse_hex,
    parse_private_key,
    parse_public_key,
    pass_context,
)


def contract_options(func):
    """Options identifying a P2WSH HTLC by its four parameters."""
    options = [
        click.option('--recipient-pubkey', required=True, help='Compressed public key allowed to claim (hex)'),
        click.option('--sender-pubkey', required=True, help='Compressed public key allowed to refund (hex)'),
        click.option('--hash-lock', required=True, help='SHA256 of the secret (32-byte hex)'),
        click.option('--timelock', required=True, type=click.IntRange(min=0), help='Refund block height'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _contract_from_options(recipient_pubkey: str, sender_pubkey: str, hash_lock: str,
                           timelock: int) -> HTLCContract:
    return HTLCContract(
        recipient_pubkey=parse_public_key(recipient_pubkey, '--recipient-pubkey'),
        sender_pubkey=parse_public_key(sender_pubkey, '--sender-pubkey'),
        hash_lock=parse_hex(hash_lock, '--hash-lock'),
        timelock=timelock,
    )


def _describe(contract: HTLCContract, network: str) -> dict:
    return {
        "address": contract.address(network),
        "hash_lock": contract.hash_lock.hex(),
        "timelock": contract.timelock,
        "witness_script": contract.witness_script.hex(),
        "script_asm": script_to_asm(contract.witness_script),
        "script_pubkey": contract.script_pubkey.hex(),
    }


@click.group()
@pass_context
def htlc(ctx: CLIContext):
    """
    P2WSH hash-time-locked contract commands.
    """
    ctx.logger.debug("HTLC command group invoked")


@htlc.command('create')
@click.option('--recipient-pubkey', required=True, help='Compressed public key allowed to claim (hex)')
@click.option('--sender-pubkey', required=True, help='Compressed public key allowed to refund (hex)')
@click.option('--secret', help='Secret preimage (hex); its SHA256 becomes the hash lock')
@click.option('--hash-lock', help='SHA256 of the secret (32-byte hex), if the secret is not known')
@click.option('--timelock', required=True, type=click.IntRange(min=0), help='Refund block height')
@pass_context
@handle_cli_error
def create(ctx: CLIContext, recipient_pubkey: str, sender_pubkey: str, secret: Optional[str],
           hash_lock: Optional[str], timelock: int):
    """
    Build an HTLC and print its witness script and address.

    Nothing is broadcast.
    """
    if bool(secret) == bool(hash_lock):
        raise click.UsageError("Provide exactly one of --secret or --hash-lock")

    digest = sha256(parse_hex(secret, '--secret')) if secret else parse_hex(hash_lock, '--hash-lock')
    contract = _contract_from_options(recipient_pubkey, sender_pubkey, digest.hex(), timelock)
    ctx.output(_describe(contract, ctx.network))


@htlc.command('deploy')
@click.option('--timelock-blocks', type=click.IntRange(min=1), help='Blocks until the refund path opens')
@click.option('--secret', help='Secret preimage (hex); a demo value is used if omitted')
@click.option('--current-height', type=click.IntRange(min=0),
              help='Chain height to count from (queried from the node if omitted)')
@pass_context
@handle_cli_error
def deploy(ctx: CLIContext, timelock_blocks: Optional[int], secret: Optional[str],
           current_height: Optional[int]):
    """
    Generate fresh keys and an HTLC for demonstration.

    The output includes both private keys; do not use it for real funds.
    """
    config = DeploymentConfig(
        network=ctx.network,
        timelock_blocks=timelock_blocks or ctx.get_config('contracts.timelock'),
    )
    if secret:
        config.secret = parse_hex(secret, '--secret')
    if current_height is None:
        current_height = ctx.chain().get_height()

    result = deploy_htlc(config, current_height)
    data = _describe(result.contract, config.network)
    data.update({
        "secret": config.secret.hex(),
        "recipient_private_key": result.recipient_private_key.hex,
        "recipient_public_key": result.contract.recipient_pubkey.hex,
        "sender_private_key": result.sender_private_key.hex,
        "sender_public_key": result.contract.sender_pubkey.hex,
    })
    ctx.output(data)


@htlc.command('fund')
@contract_options
@click.option('--amount', required=True, type=click.IntRange(min=1), help='Amount in satoshis')
@click.option('--fee-rate', type=click.IntRange(min=1), help='Fee rate in sat/vB')
@pass_context
@handle_cli_error
def fund(ctx: CLIContext, recipient_pubkey: str, sender_pubkey: str, hash_lock: str, timelock: int,
         amount: int, fee_rate: Optional[int]):
    """
    Fund an HTLC from the node wallet.
    """
    contract = _contract_from_options(recipient_pubkey, sender_pubkey, hash_lock, timelock)
    txid = fund_htlc(ctx.pipeline(), ctx.funding_source(), contract, amount,
                     network=ctx.network, fee_rate=fee_rate or ctx.fee_rate)
    ctx.output({"funding_txid": txid, "address": contract.address(ctx.network), "amount_satoshis": amount})


@htlc.command('claim')
@contract_options
@click.option('--funding-txid', required=True, help='Transaction that funded the contract')
@click.option('--destination', required=True, help='Address receiving the funds')
@click.option('--secret', required=True, help='Secret preimage (hex)')
@click.option('--private-key', required=True, help='Recipient private key (hex)')
@pass_context
@handle_cli_error
def claim(ctx: CLIContext, recipient_pubkey: str, sender_pubkey: str, hash_lock: str, timelock: int,
          funding_txid: str, destination: str, secret: str, private_key: str):
    """
    Claim an HTLC by revealing the secret.
    """
    contract = _contract_from_options(recipient_pubkey, sender_pubkey, hash_lock, timelock)
    txid = claim_htlc(ctx.chain(), contract, funding_txid, destination,
                      parse_hex(secret, '--secret'), parse_private_key(private_key, '--private-key'))
    ctx.output({"claim_txid": txid, "destination": destination})


@htlc.command('refund')
@contract_options
@click.option('--funding-txid', required=True, help='Transaction that funded the contract')
@click.option('--destination', required=True, help='Address receiving the funds')
@click.option('--private-key', required=True, help='Sender private key (hex)')
@pass_context
@handle_cli_error
def refund(ctx: CLIContext, recipient_pubkey: str, sender_pubkey: str, hash_lock: str, timelock: int,
           funding_txid: str, destination: str, private_key: str):
    """
    Refund an HTLC after its timelock height.
    """
    contract = _contract_from_options(recipient_pubkey, sender_pubkey, hash_lock, timelock)
    txid = refund_htlc(ctx.chain(), contract, funding_txid, destination,
                       parse_private_key(private_key, '--private-key'))
    ctx.output({"refund_txid": txid, "destination": destination})
