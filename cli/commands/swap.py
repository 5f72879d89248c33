"""
Atomic Swap Commands for the HTLC CLI

Initiate a Taproot swap (fund the contract and write a Contract Record),
complete it with the recipient key and the recorded swap secret, refund it
through the revocation path, and inspect records.
"""

from pathlib import Path
from typing import Optional

import click

from crypto.storage import is_encrypted_document
from htlc import record as contract_record
from htlc.primitives import SwapInfo, format_satoshis_to_btc
from htlc.record import ContractRecord
from htlc.swap import AtomicSwap
from htlc.taproot_contract import TaprootHTLC

from cli.context import (
    CLIContext,
    handle_cli_error,
    load_json_file,
    parse_private_key,
    parse_public_key,
    pass_context,
)


def _atomic_swap(ctx: CLIContext) -> AtomicSwap:
    return AtomicSwap(TaprootHTLC(ctx.pipeline(), network=ctx.network, fee_rate=ctx.fee_rate))


def _load_record(record_path: str, password: Optional[str]) -> ContractRecord:
    if password is None and is_encrypted_document(load_json_file(record_path)):
        password = click.prompt("Record password", hide_input=True)
    return contract_record.load(record_path, password)


def _summarize(record: ContractRecord, show_secret: bool = False) -> dict:
    swap_info = record.swap_info
    data = {
        "contract_address": record.contract_address,
        "descriptor": record.descriptor_string,
        "funding_txid": record.funding_txid,
        "amount_btc": format_satoshis_to_btc(swap_info.amount_satoshis),
        "timelock_blocks": swap_info.timelock_duration_blocks,
        "escrow_public_key": swap_info.recipient_public_key.hex,
        "revocation_public_key": swap_info.revocation_public_key.hex,
        "created": record.creation_timestamp,
    }
    if show_secret:
        data["swap_secret"] = record.swap_secret
    return data


@click.group()
@pass_context
def swap(ctx: CLIContext):
    """
    Taproot atomic-swap commands.
    """
    ctx.logger.debug("Swap command group invoked")


@swap.command('initiate')
@click.option('--recipient-pubkey', required=True, help="Recipient's long-term public key (hex)")
@click.option('--revocation-pubkey', required=True, help='Public key of the refund path (hex)')
@click.option('--timelock-blocks', type=click.IntRange(1, 0xffff),
              help='Relative timelock of the refund path in blocks')
@click.option('--amount', required=True, type=click.IntRange(min=1), help='Amount in satoshis')
@click.option('--record', 'record_path', type=click.Path(dir_okay=False),
              help='Where to write the Contract Record (default: records dir/<txid>.json)')
@click.option('--encrypt', is_flag=True, help='Encrypt the Contract Record with a password')
@pass_context
@handle_cli_error
def initiate(ctx: CLIContext, recipient_pubkey: str, revocation_pubkey: str,
             timelock_blocks: Optional[int], amount: int, record_path: Optional[str], encrypt: bool):
    """
    Fund a Taproot swap contract and save its Contract Record.

    The record holds the swap secret; keep it private until the swap is
    meant to complete.
    """
    password = None
    if encrypt:
        password = click.prompt("Record password", hide_input=True, confirmation_prompt=True)

    swap_info = SwapInfo(
        recipient_public_key=parse_public_key(recipient_pubkey, '--recipient-pubkey'),
        revocation_public_key=parse_public_key(revocation_pubkey, '--revocation-pubkey'),
        timelock_duration_blocks=timelock_blocks or ctx.get_config('contracts.timelock'),
        amount_satoshis=amount,
    )

    initiation = _atomic_swap(ctx).initiate(ctx.funding_source(), swap_info)
    record = initiation.to_record()

    path = Path(record_path) if record_path else ctx.records_dir / f"{initiation.funding_txid}.json"
    written = contract_record.save(record, path, password)

    ctx.output({
        "funding_txid": initiation.funding_txid,
        "contract_address": initiation.address,
        "descriptor": initiation.descriptor,
        "record": str(written),
        "encrypted": encrypt,
    })


@swap.command('complete')
@click.option('--record', 'record_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Contract Record of the swap')
@click.option('--private-key', required=True, help="Recipient's long-term private key (hex)")
@click.option('--destination', required=True, help='Address receiving the funds')
@click.option('--password', help='Record password (prompted if the record is encrypted)')
@pass_context
@handle_cli_error
def complete(ctx: CLIContext, record_path: str, private_key: str, destination: str,
             password: Optional[str]):
    """
    Withdraw a swap through the key path using the recorded swap secret.
    """
    record = _load_record(record_path, password)
    txid = _atomic_swap(ctx).complete_from_record(
        record, parse_private_key(private_key, '--private-key'), destination
    )
    ctx.output({"withdrawal_txid": txid, "destination": destination})


@swap.command('refund')
@click.option('--record', 'record_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Contract Record of the swap')
@click.option('--private-key', required=True, help='Revocation private key (hex)')
@click.option('--destination', required=True, help='Address receiving the funds')
@click.option('--password', help='Record password (prompted if the record is encrypted)')
@pass_context
@handle_cli_error
def refund(ctx: CLIContext, record_path: str, private_key: str, destination: str,
           password: Optional[str]):
    """
    Reclaim a swap through the revocation path once its timelock has matured.
    """
    record = _load_record(record_path, password)
    txid = _atomic_swap(ctx).refund(
        record.swap_info, destination, parse_private_key(private_key, '--private-key'),
        expected_descriptor=record.descriptor_string,
    )
    ctx.output({"refund_txid": txid, "destination": destination})


@swap.command('show')
@click.option('--record', 'record_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Contract Record to display')
@click.option('--password', help='Record password (prompted if the record is encrypted)')
@click.option('--show-secret', is_flag=True, help='Include the swap secret in the output')
@pass_context
@handle_cli_error
def show(ctx: CLIContext, record_path: str, password: Optional[str], show_secret: bool):
    """
    Load a Contract Record, re-derive its descriptor and address, and print it.
    """
    record = _load_record(record_path, password)
    ctx.output(_summarize(record, show_secret))
