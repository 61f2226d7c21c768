"""
Config Loader module - builds the immutable searcher configuration
from config.yaml and the environment.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import yaml
from web3 import Web3

from .exceptions import ConfigError

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config.yaml")


class Web3Singleton:
    """
    Singleton class to manage w3 object creation per RPC URL
    """

    _instances = {}

    @staticmethod
    def get_instance(rpc_url: Optional[str] = None):
        """
        Set up a Web3 instance for the given RPC URL.
        Maintains separate instances per unique RPC URL.
        """

        if rpc_url not in Web3Singleton._instances:
            Web3Singleton._instances[rpc_url] = Web3(Web3.HTTPProvider(rpc_url))

        return Web3Singleton._instances[rpc_url]


def setup_w3(rpc_url: Optional[str] = None) -> Web3:
    """
    Get the Web3 instance from the singleton class

    Args:
        rpc_url (Optional[str]): RPC URL of the node

    Returns:
        Web3: Web3 instance.
    """
    return Web3Singleton.get_instance(rpc_url)


@dataclass(frozen=True)
class Reserve:
    """A lending pool reserve the chain view considers when resolving assets."""

    symbol: str
    address: str
    decimals: int


@dataclass(frozen=True)
class SearcherConfig:
    """
    Immutable configuration handed to every component at construction.
    """

    chain_id: int
    chain_name: str
    rpc_url: str
    relay_url: str
    searcher_private_key: str
    relay_auth_private_key: str

    pool_address: str
    data_provider_address: str
    oracle_address: str
    pool_abi_path: str
    data_provider_abi_path: str
    oracle_abi_path: str
    reserves: Tuple[Reserve, ...]

    min_profit_wei: int
    max_gas_price_wei: int
    builder_tip_wei: int
    gas_limit: int
    receive_a_token: bool
    target_block_offset: int
    status_check_delay_ms: int

    relay_timeout: float
    poll_interval: float
    max_workers: int
    recent_outcomes_size: int

    candidates: Tuple[str, ...]
    discover_borrowers: bool
    pool_deployment_block: int
    batch_size: int

    notification_url: str = ""
    save_state_path: str = ""

    @property
    def status_check_delay(self) -> float:
        """Status check delay in seconds."""
        return self.status_check_delay_ms / 1000.0

    def validate(self) -> None:
        """
        Validates the numeric settings that bound the fee bid and profit gate.
        Raises ConfigError if any are inconsistent.
        """
        if self.max_gas_price_wei <= 0:
            raise ConfigError("MAX_GAS_PRICE_WEI must be positive")
        if self.builder_tip_wei < 0:
            raise ConfigError("BUILDER_TIP_WEI must not be negative")
        if self.builder_tip_wei > self.max_gas_price_wei:
            raise ConfigError("BUILDER_TIP_WEI must not exceed MAX_GAS_PRICE_WEI")
        if self.min_profit_wei < 0:
            raise ConfigError("MIN_PROFIT_WEI must not be negative")
        if self.status_check_delay_ms <= 0:
            raise ConfigError("STATUS_CHECK_DELAY_MS must be positive")
        if self.target_block_offset < 1:
            raise ConfigError("TARGET_BLOCK_OFFSET must be at least 1")
        if not self.reserves:
            raise ConfigError("At least one reserve must be configured")


required_env_vars = [
    "SEARCHER_PRIVATE_KEY",
]


def validate_env(extra_keys=()) -> None:
    """
    Validates that all required environment variables are set.
    Raises an error if any are missing.
    """
    missing_keys = [key for key in list(required_env_vars) + list(extra_keys) if not os.getenv(key)]
    if missing_keys:
        raise EnvironmentError(f"Missing required environment variables: {', '.join(missing_keys)}")


def _split_env_list(name: str) -> Tuple[str, ...]:
    raw = os.environ.get(name, "")
    return tuple(s.strip() for s in raw.split(",") if s.strip())


def _resolve_path(path: str, base_dir: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(base_dir, path)


def build_config(chain_id: int, global_config: Dict[str, Any], chain_config: Dict[str, Any], base_dir: str) -> SearcherConfig:
    """
    Merge the global and chain sections with secrets from the environment.

    Chain values override global ones of the same name.
    """
    validate_env([chain_config["RPC_NAME"]])

    merged = dict(global_config)
    merged.update({k: v for k, v in chain_config.items() if k != "contracts"})
    contracts = chain_config.get("contracts", {})

    try:
        reserves = tuple(
            Reserve(
                symbol=symbol,
                address=Web3.to_checksum_address(entry["address"]),
                decimals=int(entry["decimals"]),
            )
            for symbol, entry in (chain_config.get("RESERVES") or {}).items()
        )

        candidates = tuple(
            Web3.to_checksum_address(a) for a in list(merged.get("CANDIDATES") or []) + list(_split_env_list("SEARCHER_CANDIDATES"))
        )

        searcher_key = os.environ["SEARCHER_PRIVATE_KEY"]

        config = SearcherConfig(
            chain_id=chain_id,
            chain_name=chain_config["name"],
            rpc_url=os.environ[chain_config["RPC_NAME"]],
            relay_url=merged["RELAY_URL"],
            searcher_private_key=searcher_key,
            relay_auth_private_key=os.environ.get("RELAY_AUTH_PRIVATE_KEY") or searcher_key,
            pool_address=Web3.to_checksum_address(contracts["POOL"]),
            data_provider_address=Web3.to_checksum_address(contracts["DATA_PROVIDER"]),
            oracle_address=Web3.to_checksum_address(contracts["ORACLE"]),
            pool_abi_path=_resolve_path(merged["POOL_ABI_PATH"], base_dir),
            data_provider_abi_path=_resolve_path(merged["DATA_PROVIDER_ABI_PATH"], base_dir),
            oracle_abi_path=_resolve_path(merged["ORACLE_ABI_PATH"], base_dir),
            reserves=reserves,
            min_profit_wei=int(merged["MIN_PROFIT_WEI"]),
            max_gas_price_wei=int(merged["MAX_GAS_PRICE_WEI"]),
            builder_tip_wei=int(merged["BUILDER_TIP_WEI"]),
            gas_limit=int(merged["GAS_LIMIT"]),
            receive_a_token=bool(merged.get("RECEIVE_A_TOKEN", False)),
            target_block_offset=int(merged.get("TARGET_BLOCK_OFFSET", 1)),
            status_check_delay_ms=int(merged["STATUS_CHECK_DELAY_MS"]),
            relay_timeout=float(merged.get("RELAY_TIMEOUT", 10)),
            poll_interval=float(merged.get("POLL_INTERVAL", 1)),
            max_workers=int(merged.get("MAX_WORKERS", 16)),
            recent_outcomes_size=int(merged.get("RECENT_OUTCOMES_SIZE", 500)),
            candidates=candidates,
            discover_borrowers=bool(merged.get("DISCOVER_BORROWERS", False)),
            pool_deployment_block=int(merged.get("POOL_DEPLOYMENT_BLOCK", 0)),
            batch_size=int(merged.get("BATCH_SIZE", 5000)),
            notification_url=os.environ.get("NOTIFICATION_URL", ""),
            save_state_path=os.path.join(merged.get("SAVE_STATE_PATH", "state"), f"{chain_config['name']}_borrowers.json"),
        )
    except KeyError as exc:
        raise ConfigError(f"Missing config value {exc} for chain {chain_id}") from exc
    except ValueError as exc:
        raise ConfigError(f"Invalid config value for chain {chain_id}: {exc}") from exc

    config.validate()
    return config


def load_searcher_config(chain_id: int, config_path: Optional[str] = None) -> SearcherConfig:
    config_path = config_path or DEFAULT_CONFIG_PATH

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Config file not found at {config_path}") from exc
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML file: {e}") from e

    if chain_id not in config["chains"]:
        raise ValueError(f"No configuration found for chain ID {chain_id}")

    return build_config(
        chain_id=chain_id,
        global_config=config["global"],
        chain_config=config["chains"][chain_id],
        base_dir=os.path.dirname(os.path.abspath(config_path)),
    )
