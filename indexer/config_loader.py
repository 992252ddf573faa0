import os
import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Any, Mapping, Optional, Tuple

from web3 import Web3

logger = logging.getLogger(__name__)

# Environment variable -> contract tag, in tracking order
CONTRACT_ENV_TAGS: List[Tuple[str, str]] = [
    ('ASSET_FACTORY_ADDRESS', 'factory'),
    ('KYC_ADDRESS', 'kyc'),
    ('ORACLE_ADDRESS', 'oracle'),
    ('ROUTER_ADDRESS', 'router'),
    ('BASE_TOKEN_ADDRESS', 'baseToken'),
    ('USDC_ADDRESS', 'usdc'),
    ('USDT_ADDRESS', 'usdt'),
]

LOG_LEVELS = ('CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG')


class ConfigError(ValueError):
    """Raised when the runtime configuration is invalid."""


@dataclass(frozen=True)
class ContractConfig:
    tag: str
    address: str

    def to_dict(self) -> Dict[str, str]:
        return {'tag': self.tag, 'address': self.address}


@dataclass(frozen=True)
class IndexerConfig:
    chain_id: int
    rpc_url: str
    poll_interval_ms: int
    start_block: int
    max_block_range: int
    initial_lookback_blocks: int
    request_delay_ms: int
    max_log_retries: int
    max_stored_events: int
    contracts: Tuple[ContractConfig, ...]
    port: int = 8080
    metrics_port: int = 8001
    rpc_timeout_seconds: int = 10
    reorg_rescan_blocks: int = 0
    log_level: str = 'INFO'

    def __post_init__(self) -> None:
        if self.max_block_range < 1:
            raise ConfigError(f"MAX_BLOCK_RANGE must be >= 1, got {self.max_block_range}")
        if self.max_stored_events < 1:
            raise ConfigError(f"MAX_STORED_EVENTS must be >= 1, got {self.max_stored_events}")
        for name in ('poll_interval_ms', 'start_block', 'initial_lookback_blocks',
                     'request_delay_ms', 'max_log_retries', 'reorg_rescan_blocks'):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0, got {getattr(self, name)}")

    @property
    def addresses(self) -> List[str]:
        return [contract.address for contract in self.contracts]


class ConfigLoader:
    """Class for resolving the indexer configuration from the environment."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None, config_file: Optional[str] = None) -> None:
        """
        Initialize the ConfigLoader.

        Args:
            environ (Mapping): Environment to read from, defaults to os.environ
            config_file (str): Optional JSON file with a 'contracts' list of {tag, address}
        """
        self.environ = os.environ if environ is None else environ
        self.config_file = config_file if config_file is not None else self.environ.get('CONFIG_FILE')

    def load(self) -> IndexerConfig:
        """
        Build and validate the indexer configuration.

        Raises:
            ConfigError: if any value is malformed
        """
        contracts = self.load_contract_config()
        if not contracts:
            raise ConfigError("No tracked contracts configured")

        config = IndexerConfig(
            chain_id=self._get_int('CHAIN_ID', 11155111),
            rpc_url=self.environ.get('RPC_URL') or 'http://127.0.0.1:8545',
            poll_interval_ms=self._get_int('POLL_INTERVAL_MS', 60_000),
            start_block=self._get_int('START_BLOCK', 0),
            max_block_range=self._get_int('MAX_BLOCK_RANGE', 10),
            initial_lookback_blocks=self._get_int('INITIAL_LOOKBACK_BLOCKS', 500),
            request_delay_ms=self._get_int('REQUEST_DELAY_MS', 250),
            max_log_retries=self._get_int('MAX_LOG_RETRIES', 6),
            max_stored_events=self._get_int('MAX_STORED_EVENTS', 5_000),
            contracts=tuple(contracts),
            port=self._get_int('PORT', 8080),
            metrics_port=self._get_int('METRICS_PORT', 8001),
            rpc_timeout_seconds=self._get_int('RPC_TIMEOUT_SECONDS', 10),
            reorg_rescan_blocks=self._get_int('REORG_RESCAN_BLOCKS', 0),
            log_level=self._get_log_level(),
        )

        logger.info(
            f"Configuration loaded: chain_id={config.chain_id}, rpc_url={config.rpc_url}, "
            f"contracts={[c.tag for c in config.contracts]}"
        )
        return config

    def load_contract_config(self) -> List[ContractConfig]:
        """
        Return the tracked contracts, environment entries first, then the config file.
        """
        candidates: List[Tuple[str, str]] = []
        for env_name, tag in CONTRACT_ENV_TAGS:
            address = self.environ.get(env_name)
            if address:
                candidates.append((tag, address.strip()))

        if self.config_file:
            for entry in self._load_config_file():
                if not isinstance(entry, dict):
                    raise ConfigError(f"Contract entries in {self.config_file} must be objects, got {entry!r}")
                candidates.append((str(entry.get('tag', '')), str(entry.get('address', '')).strip()))

        contracts: List[ContractConfig] = []
        seen_tags = set()
        seen_addresses = set()
        for tag, address in candidates:
            if not tag:
                raise ConfigError(f"Contract {address} has no tag")
            if not Web3.is_address(address):
                raise ConfigError(f"Malformed address for contract '{tag}': {address}")
            if tag in seen_tags:
                raise ConfigError(f"Duplicate contract tag: {tag}")
            if address.lower() in seen_addresses:
                raise ConfigError(f"Duplicate contract address: {address}")
            seen_tags.add(tag)
            seen_addresses.add(address.lower())
            contracts.append(ContractConfig(tag=tag, address=address))

        return contracts

    def _load_config_file(self) -> List[Dict[str, Any]]:
        try:
            with open(self.config_file, 'r') as file:
                data = json.load(file)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read config file {self.config_file}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get('contracts'), list):
            logger.error(f"Missing 'contracts' key in configuration file: {self.config_file}")
            raise ConfigError(f"Missing 'contracts' key in configuration file: {self.config_file}")
        return data['contracts']

    def _get_log_level(self) -> str:
        level = (self.environ.get('LOG_LEVEL') or 'INFO').strip().upper()
        if level not in LOG_LEVELS:
            raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {level!r}")
        return level

    def _get_int(self, name: str, default: int) -> int:
        raw = self.environ.get(name)
        if raw is None or raw.strip() == '':
            return default
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
