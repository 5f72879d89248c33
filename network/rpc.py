"""
HTLC Toolkit - Bitcoin Core RPC Client

This module provides a Bitcoin Core JSON-RPC client with basic or cookie
authentication, wallet routing, HTTP-level retries and error mapping.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from requests.auth import HTTPBasicAuth
from urllib3.util.retry import Retry


class RPCError(Exception):
    """Base exception for RPC-related errors."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")


class RPCConnectionError(RPCError):
    """Exception for RPC connection failures."""
    pass


class RPCAuthError(RPCError):
    """Exception for RPC authentication failures."""
    pass


class RPCTimeoutError(RPCError):
    """Exception for RPC timeout errors."""
    pass


DEFAULT_PORTS = {
    "mainnet": 8332,
    "testnet": 18332,
    "signet": 38332,
    "regtest": 18443,
}


@dataclass
class RPCConfig:
    """Configuration for Bitcoin Core RPC connection."""
    host: str = "localhost"
    port: int = 18443  # Default regtest port
    username: Optional[str] = None
    password: Optional[str] = None
    cookie_file: Optional[str] = None
    wallet: Optional[str] = None
    timeout: int = 30
    max_retries: int = 3
    backoff_factor: float = 1.0
    use_https: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.username and not self.cookie_file:
            self.cookie_file = self._find_cookie_file()

        if not self.username and not self.cookie_file:
            raise RPCAuthError(-1, "Either username/password or cookie file must be provided")

    def _find_cookie_file(self) -> Optional[str]:
        """Try to find Bitcoin Core cookie file in standard locations."""
        possible_paths = [
            "~/.bitcoin/regtest/.cookie",
            "~/.bitcoin/signet/.cookie",
            "~/.bitcoin/testnet3/.cookie",
            "~/.bitcoin/.cookie",
        ]

        for path in possible_paths:
            expanded_path = Path(path).expanduser()
            if expanded_path.exists():
                return str(expanded_path)

        return None

    @property
    def url(self) -> str:
        """Endpoint URL, routed to the wallet when one is configured."""
        protocol = "https" if self.use_https else "http"
        base = f"{protocol}://{self.host}:{self.port}/"
        if self.wallet:
            return f"{base}wallet/{self.wallet}"
        return base

    @classmethod
    def from_env(cls) -> 'RPCConfig':
        """Create RPC config from environment variables."""
        return cls(
            host=os.getenv("BITCOIN_RPC_HOST", "localhost"),
            port=int(os.getenv("BITCOIN_RPC_PORT", "18443")),
            username=os.getenv("BITCOIN_RPC_USER"),
            password=os.getenv("BITCOIN_RPC_PASSWORD"),
            cookie_file=os.getenv("BITCOIN_RPC_COOKIE_FILE"),
            wallet=os.getenv("BITCOIN_RPC_WALLET"),
            timeout=int(os.getenv("BITCOIN_RPC_TIMEOUT", "30")),
            max_retries=int(os.getenv("BITCOIN_RPC_MAX_RETRIES", "3")),
        )


class BitcoinRPCClient:
    """
    Bitcoin Core RPC client exposing the calls used by the contract tooling.
    """

    def __init__(self, config: Optional[RPCConfig] = None):
        """
        Initialize Bitcoin RPC client.

        Args:
            config: RPC configuration (uses environment if None)
        """
        self.config = config or RPCConfig.from_env()
        self.logger = logging.getLogger(__name__)
        self.session = self._create_session()
        self._request_counter = 0

    def _create_session(self) -> requests.Session:
        session = requests.Session()

        # Retry idempotent transport failures; JSON-RPC errors come back as HTTP 500
        # and are handled below, so 500 is not retried here.
        retry_strategy = Retry(
            total=self.config.max_retries,
            backoff_factor=self.config.backoff_factor,
            status_forcelist=[429, 502, 503, 504],
            allowed_methods=["POST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        if self.config.username and self.config.password is not None:
            session.auth = HTTPBasicAuth(self.config.username, self.config.password)
            self.logger.debug("Using basic authentication")
        elif self.config.cookie_file:
            session.auth = self._read_cookie(self.config.cookie_file)
            self.logger.debug(f"Using cookie file authentication: {self.config.cookie_file}")

        return session

    @staticmethod
    def _read_cookie(cookie_file: str) -> HTTPBasicAuth:
        try:
            with open(cookie_file, 'r') as f:
                cookie_content = f.read().strip()
        except OSError as e:
            raise RPCAuthError(-1, f"Failed to read cookie file {cookie_file}: {e}") from e

        if ':' not in cookie_content:
            raise RPCAuthError(-1, f"Invalid cookie file format: {cookie_file}")
        username, password = cookie_content.split(':', 1)
        return HTTPBasicAuth(username, password)

    def _call(self, method: str, *params) -> Any:
        """
        Make an RPC call and return the result.

        Args:
            method: RPC method name
            *params: Method parameters

        Returns:
            RPC call result

        Raises:
            RPCError: If RPC call fails
        """
        self._request_counter += 1
        payload = {
            "jsonrpc": "1.0",
            "method": method,
            "params": list(params),
            "id": f"htlc_{self._request_counter}",
        }
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "htlc-rpc-client/0.1",
        }

        start_time = time.time()
        try:
            response = self.session.post(
                self.config.url,
                data=json.dumps(payload),
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.exceptions.Timeout as e:
            self.logger.error(f"RPC call {method} timed out")
            raise RPCTimeoutError(-1, f"Request timed out after {self.config.timeout}s") from e
        except requests.exceptions.ConnectionError as e:
            self.logger.error(f"RPC call {method} failed: {e}")
            raise RPCConnectionError(-1, f"Connection error: {e}") from e
        except requests.exceptions.RequestException as e:
            self.logger.error(f"RPC call {method} failed: {e}")
            raise RPCError(-1, f"Request failed: {e}") from e

        self.logger.debug(f"RPC {method} took {time.time() - start_time:.3f}s")

        if response.status_code == 401:
            raise RPCAuthError(response.status_code, "Authentication failed")

        try:
            response_data = response.json()
        except ValueError as e:
            if response.status_code != 200:
                raise RPCConnectionError(response.status_code,
                                         f"HTTP {response.status_code}: {response.reason}") from e
            raise RPCError(-32700, f"Invalid JSON response: {e}") from e

        error = response_data.get("error")
        if error:
            self.logger.error(f"RPC call {method} failed: {error.get('message')}")
            raise RPCError(error.get("code"), error.get("message"), error.get("data"))

        return response_data.get("result")

    # Chain methods

    def getblockcount(self) -> int:
        """Get the current block height."""
        return self._call("getblockcount")

    def getblockchaininfo(self) -> Dict[str, Any]:
        return self._call("getblockchaininfo")

    def getrawtransaction(self, txid: str, verbose: bool = False,
                          blockhash: Optional[str] = None) -> Union[str, Dict[str, Any]]:
        """Get raw transaction data."""
        params = [txid, verbose]
        if blockhash:
            params.append(blockhash)
        return self._call("getrawtransaction", *params)

    def sendrawtransaction(self, hex_string: str, max_fee_rate: Optional[float] = None) -> str:
        """
        Broadcast a raw transaction.

        Args:
            hex_string: Raw transaction hex
            max_fee_rate: Maximum fee rate (BTC/kvB)

        Returns:
            Transaction ID
        """
        params = [hex_string]
        if max_fee_rate is not None:
            params.append(max_fee_rate)
        return self._call("sendrawtransaction", *params)

    def testmempoolaccept(self, rawtxs: List[str]) -> List[Dict[str, Any]]:
        """Test if transactions would be accepted to mempool."""
        return self._call("testmempoolaccept", rawtxs)

    def scantxoutset(self, descriptors: List[str]) -> Dict[str, Any]:
        """Scan the UTXO set for outputs matching descriptors."""
        return self._call("scantxoutset", "start", descriptors)

    # Wallet methods (if wallet is loaded)

    def getbalances(self) -> Dict[str, Any]:
        return self._call("getbalances")

    def getnewaddress(self, label: str = "", address_type: Optional[str] = None) -> str:
        """Get new address from wallet."""
        params = [label]
        if address_type:
            params.append(address_type)
        return self._call("getnewaddress", *params)

    def walletcreatefundedpsbt(self, outputs: List[Dict[str, Any]],
                               options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Create a funded PSBT paying the given outputs.

        Args:
            outputs: List of {address: amount_btc} objects
            options: Funding options (fee_rate in sat/vB, replaceable, ...)
        """
        return self._call("walletcreatefundedpsbt", [], outputs, 0, options or {})

    def walletprocesspsbt(self, psbt: str, sign: bool = True) -> Dict[str, Any]:
        return self._call("walletprocesspsbt", psbt, sign)

    def finalizepsbt(self, psbt: str, extract: bool = True) -> Dict[str, Any]:
        return self._call("finalizepsbt", psbt, extract)

    def test_connection(self) -> bool:
        """Test if connection to Bitcoin Core is working."""
        try:
            return isinstance(self.getblockcount(), int)
        except RPCError as e:
            self.logger.error(f"Connection test failed: {e}")
            return False

    def close(self):
        """Close the RPC client."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
