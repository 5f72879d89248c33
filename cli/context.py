"""
Shared CLI state and helpers for the HTLC command line.

Command modules import from here rather than from cli.main so that they can
be loaded independently of the top-level group.
"""

import functools
import json
import logging
import sys
import traceback
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml
from tabulate import tabulate

from crypto.exceptions import InvalidKeyError
from crypto.keys import PrivateKey, PublicKey
from network.node import NodeChainBackend, NodeWalletFundingSource
from network.rpc import BitcoinRPCClient, RPCConfig
from transactions.pipeline import TransactionPipeline

from .config import ConfigurationManager


class CLIContext:
    """Global CLI context for sharing state across commands."""

    def __init__(self):
        self.config_file: Optional[str] = None
        self.profile: Optional[str] = None
        self.output_format: str = "table"
        self.verbose: int = 0
        self.config: Optional[ConfigurationManager] = None
        self.logger: logging.Logger = logging.getLogger('htlc-cli')
        self._rpc_client: Optional[BitcoinRPCClient] = None

    def setup_logging(self):
        """Configure logging based on verbosity level."""
        log_levels = {
            0: logging.WARNING,
            1: logging.INFO,
            2: logging.DEBUG
        }
        level = log_levels.get(min(self.verbose, 2), logging.DEBUG)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)

        # Library modules log under their own names; route them through the same handler
        root_logger = logging.getLogger()
        root_logger.handlers = [handler]
        root_logger.setLevel(level)

        self.logger = logging.getLogger('htlc-cli')
        self.logger.setLevel(level)

        # Suppress verbose third-party logs unless in debug mode
        if self.verbose < 2:
            logging.getLogger('requests').setLevel(logging.WARNING)
            logging.getLogger('urllib3').setLevel(logging.WARNING)

    def load_config(self):
        """Load layered configuration."""
        self.config = ConfigurationManager(self.config_file, self.profile)
        self.config.load()
        self.logger.debug(f"Configuration sources: {', '.join(self.config.get_sources())}")

    def get_config(self, key: str, default: Any = None) -> Any:
        """Get configuration value with fallback to default."""
        if self.config is None:
            self.load_config()
        return self.config.get(key, default)

    @property
    def network(self) -> str:
        return self.get_config('network', 'regtest')

    @property
    def fee_rate(self) -> int:
        return self.get_config('fees.rate', 20)

    @property
    def records_dir(self) -> Path:
        return Path(self.get_config('records.dir', '~/.htlc/records')).expanduser()

    def rpc_client(self) -> BitcoinRPCClient:
        """Connect lazily so offline commands never need node credentials."""
        if self._rpc_client is None:
            rpc = self.get_config('rpc', {})
            config = RPCConfig(
                host=rpc.get('host') or 'localhost',
                port=rpc.get('port') or 18443,
                username=rpc.get('user'),
                password=rpc.get('password'),
                cookie_file=rpc.get('cookie'),
                wallet=rpc.get('wallet'),
                timeout=rpc.get('timeout') or 30,
            )
            self._rpc_client = BitcoinRPCClient(config)
            self.logger.debug(f"Connected to {config.host}:{config.port}")
        return self._rpc_client

    def chain(self) -> NodeChainBackend:
        return NodeChainBackend(self.rpc_client())

    def pipeline(self) -> TransactionPipeline:
        return TransactionPipeline(self.chain())

    def funding_source(self) -> NodeWalletFundingSource:
        return NodeWalletFundingSource(self.rpc_client())

    def output(self, data: Any, format_override: Optional[str] = None):
        """Output data in specified format."""
        format_type = format_override or self.output_format

        if format_type == "json":
            click.echo(json.dumps(data, indent=2, default=str))
        elif format_type == "yaml":
            click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False).rstrip())
        elif format_type == "table":
            self._output_table(data)
        else:
            click.echo(str(data))

    def _output_table(self, data: Any):
        """Output data in table format."""
        if isinstance(data, dict):
            rows = [[key, value] for key, value in data.items()]
            click.echo(tabulate(rows, tablefmt="plain", disable_numparse=True))
        elif isinstance(data, list) and data and isinstance(data[0], dict):
            headers = list(data[0].keys())
            rows = [[item.get(h, "") for h in headers] for item in data]
            click.echo(tabulate(rows, headers=headers, tablefmt="grid", disable_numparse=True))
        elif isinstance(data, list):
            for item in data:
                click.echo(item)
        else:
            click.echo(str(data))


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def handle_cli_error(func):
    """Decorator reporting errors on stderr with exit status 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (click.ClickException, click.Abort, click.exceptions.Exit):
            raise
        except KeyboardInterrupt:
            click.echo("\nOperation cancelled by user.", err=True)
            sys.exit(130)
        except Exception as e:
            ctx = click.get_current_context(silent=True)
            cli_ctx = ctx.find_object(CLIContext) if ctx else None

            click.echo(f"Error: {e}", err=True)
            if cli_ctx and cli_ctx.verbose >= 2:
                # Show full traceback in debug mode
                click.echo(traceback.format_exc(), err=True)
            else:
                click.echo("Use -vv for detailed error information.", err=True)

            sys.exit(1)

    return wrapper


def parse_public_key(value: str, name: str) -> PublicKey:
    try:
        return PublicKey.from_hex(value)
    except (InvalidKeyError, ValueError) as e:
        raise click.BadParameter(f"Invalid public key: {e}", param_hint=name) from e


def parse_private_key(value: str, name: str) -> PrivateKey:
    try:
        return PrivateKey.from_hex(value)
    except (InvalidKeyError, ValueError) as e:
        raise click.BadParameter(f"Invalid private key: {e}", param_hint=name) from e


def parse_hex(value: str, name: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise click.BadParameter(f"Invalid hex string: {e}", param_hint=name) from e


def load_json_file(file_path: str) -> Dict[str, Any]:
    """Load and validate JSON file."""
    path = Path(file_path)
    if not path.exists():
        raise click.FileError(file_path, hint="File not found")

    try:
        with open(path, 'r') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise click.FileError(file_path, hint=f"Invalid JSON: {e}") from e
