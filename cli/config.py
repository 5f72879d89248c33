"""
Configuration Management Module for the HTLC CLI

Handles hierarchical configuration loading (defaults, profile, config file,
environment variables), validation, and persistence of settings.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml


# Environment variable prefix
ENV_PREFIX = 'HTLC_'

NETWORKS = ['mainnet', 'testnet', 'signet', 'regtest']

# Default configuration values
DEFAULT_CONFIG = {
    'network': 'regtest',
    'rpc': {
        'host': 'localhost',
        'port': 18443,  # Default regtest port
        'user': None,
        'password': None,
        'cookie': None,
        'wallet': None,
        'timeout': 30
    },
    'fees': {
        'rate': 20  # sat/vB
    },
    'contracts': {
        'timelock': 144  # blocks
    },
    'records': {
        'dir': '~/.htlc/records'
    }
}

# Configuration profiles
PROFILES = {
    'regtest': {
        'network': 'regtest',
        'rpc': {'port': 18443},
        'contracts': {'timelock': 10}
    },
    'testnet': {
        'network': 'testnet',
        'rpc': {'port': 18332},
        'fees': {'rate': 5}
    },
    'mainnet': {
        'network': 'mainnet',
        'rpc': {'port': 8332},
        'contracts': {'timelock': 144}
    }
}


def config_search_paths() -> List[Path]:
    """Configuration file locations in order of precedence (highest to lowest)."""
    return [
        Path.cwd() / '.htlc.yml',
        Path.cwd() / '.htlc.json',
        Path.cwd() / 'htlc.config.yml',
        Path.cwd() / 'htlc.config.json',
        Path.home() / '.htlc' / 'config.yml',
        Path.home() / '.htlc' / 'config.json',
    ]


class ConfigurationError(Exception):
    """Exception raised when a configuration file cannot be read."""
    pass


class ConfigurationManager:
    """Manages hierarchical configuration with environment variable support."""

    def __init__(self, config_file: Optional[str] = None, profile: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_file: Explicit configuration file path
            profile: Configuration profile to load (regtest, testnet, mainnet)
        """
        self.logger = logging.getLogger('htlc-cli.config')
        self.config_file = config_file
        self.profile = profile
        self._config_cache = None
        self._config_sources = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources in hierarchical order.

        Returns:
            Merged configuration dictionary

        Raises:
            ConfigurationError: if an explicit config file is missing or malformed
        """
        if self._config_cache is not None:
            return self._config_cache

        self._config_sources = []
        configs = [copy.deepcopy(DEFAULT_CONFIG)]
        self._config_sources.append("defaults")

        if self.profile:
            if self.profile not in PROFILES:
                raise ConfigurationError(f"Unknown profile: {self.profile}")
            configs.append(PROFILES[self.profile])
            self._config_sources.append(f"profile:{self.profile}")
            self.logger.debug(f"Applied profile: {self.profile}")

        if self.config_file:
            path = Path(self.config_file)
            if not path.exists():
                raise ConfigurationError(f"Config file not found: {path}")
            configs.append(self._load_config_file(path))
            self._config_sources.append(f"file:{path}")
        else:
            for config_path in config_search_paths():
                if config_path.exists():
                    configs.append(self._load_config_file(config_path))
                    self._config_sources.append(f"file:{config_path}")
                    self.logger.debug(f"Loaded config from {config_path}")
                    break  # Use first found config file

        env_config = self._load_environment_variables()
        if env_config:
            configs.append(env_config)
            self._config_sources.append("environment")

        # Later sources override earlier ones
        self._config_cache = self._deep_merge(*configs)
        self._expand_paths(self._config_cache)

        return self._config_cache

    def _load_config_file(self, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML or JSON file."""
        try:
            with open(path, 'r') as f:
                if path.suffix in ['.yml', '.yaml']:
                    data = yaml.safe_load(f)
                elif path.suffix == '.json':
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unknown config file format: {path}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read config from {path}: {e}") from e
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to parse config from {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        env_config = {}

        for key, value in os.environ.items():
            if key.startswith(ENV_PREFIX):
                # e.g., HTLC_RPC_HOST -> {'rpc': {'host': value}}
                parts = key[len(ENV_PREFIX):].lower().split('_')
                current = env_config

                for part in parts[:-1]:
                    if not isinstance(current.get(part), dict):
                        current[part] = {}
                    current = current[part]

                current[parts[-1]] = self._parse_env_value(value)

        return env_config

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool, None]:
        """Parse environment variable value to appropriate type."""
        lowered = value.lower()
        if lowered in ['true', 'yes']:
            return True
        elif lowered in ['false', 'no']:
            return False
        elif lowered in ['null', 'none']:
            return None

        try:
            if '.' in value:
                return float(value)
            return int(value)
        except ValueError:
            return value

    def _deep_merge(self, *dicts: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple dictionaries without mutating them."""
        result = {}

        for dictionary in dicts:
            for key, value in dictionary.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = self._deep_merge(result[key], value)
                else:
                    result[key] = copy.deepcopy(value)

        return result

    def _expand_paths(self, config: Dict[str, Any]):
        """Expand ~ and environment variables in path values."""
        for key, value in config.items():
            if isinstance(value, dict):
                self._expand_paths(value)
            elif isinstance(value, str):
                if '~' in value or '$' in value:
                    config[key] = os.path.expanduser(os.path.expandvars(value))

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'rpc.host')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        current = self.load()

        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return current

    def set(self, key_path: str, value: Any):
        """
        Set configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'rpc.host')
            value: Value to set
        """
        config = self.load()

        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def save(self, path: Optional[str] = None, format: str = 'yaml') -> Path:
        """
        Save current configuration to file.

        Args:
            path: File path to save to (default: project config file)
            format: Output format ('yaml' or 'json')

        Returns:
            The written path
        """
        config = self.load()

        if not path:
            path = Path.cwd() / ('.htlc.yml' if format == 'yaml' else '.htlc.json')

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            if format == 'yaml':
                yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(config, f, indent=2)

        self.logger.info(f"Configuration saved to {path}")
        return path

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        config = self.load()
        errors = []

        if config.get('network') not in NETWORKS:
            errors.append(f"Invalid network: {config.get('network')}")

        rpc_config = config.get('rpc', {})
        if not rpc_config.get('host'):
            errors.append("RPC host is required")
        port = rpc_config.get('port')
        if not isinstance(port, int) or isinstance(port, bool) or port <= 0:
            errors.append("RPC port must be a positive integer")

        fee_rate = config.get('fees', {}).get('rate')
        if not isinstance(fee_rate, int) or isinstance(fee_rate, bool) or fee_rate <= 0:
            errors.append(f"Fee rate must be a positive integer (sat/vB): {fee_rate}")

        timelock = config.get('contracts', {}).get('timelock')
        if not isinstance(timelock, int) or isinstance(timelock, bool) or not 1 <= timelock <= 0xffff:
            errors.append(f"Contract timelock must be between 1 and 65535 blocks: {timelock}")

        return errors

    def get_sources(self) -> List[str]:
        """Get list of configuration sources that were loaded."""
        self.load()
        return self._config_sources

    def reset(self):
        """Reset configuration cache."""
        self._config_cache = None
        self._config_sources = []
