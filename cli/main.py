#!/usr/bin/env python3
"""
HTLC Toolkit - Command Line Interface

Create, fund, claim and refund P2WSH hash-time-locked contracts, and run
Taproot atomic swaps against a Bitcoin Core node.
"""

from typing import Optional

import click

from cli import __version__
from cli.commands.htlc import htlc
from cli.commands.swap import swap
from cli.context import CLIContext, handle_cli_error, pass_context


@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--config-file', '-c',
              help='Path to configuration file')
@click.option('--profile',
              type=click.Choice(['regtest', 'testnet', 'mainnet']),
              help='Configuration profile')
@click.option('--output-format', '-o',
              type=click.Choice(['table', 'json', 'yaml']),
              default='table',
              help='Output format')
@click.option('--verbose', '-v',
              count=True,
              help='Increase verbosity (-v for INFO, -vv for DEBUG)')
@click.version_option(__version__, prog_name="HTLC CLI")
@pass_context
@handle_cli_error
def cli(ctx: CLIContext, config_file: Optional[str], profile: Optional[str],
        output_format: str, verbose: int):
    """
    HTLC and atomic-swap toolkit.

    Examples:
        htlc-swap htlc create --recipient-pubkey 02.. --sender-pubkey 03.. --secret 73.. --timelock 200
        htlc-swap swap initiate --recipient-pubkey 02.. --revocation-pubkey 03.. --amount 100000
        htlc-swap swap complete --record swap.json --private-key .. --destination bcrt1..
    """
    ctx.config_file = config_file
    ctx.profile = profile
    ctx.output_format = output_format
    ctx.verbose = verbose

    ctx.setup_logging()
    ctx.load_config()

    ctx.logger.debug("CLI initialized with context")


cli.add_command(htlc)
cli.add_command(swap)


def main():
    """Console script entry point."""
    cli()


if __name__ == '__main__':
    main()
