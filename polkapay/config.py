"""Shared configuration loader for PolkaPay."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml
from dotenv import dotenv_values

from .amounts import AmountCodec


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".polkapay.yaml"
DEFAULT_DOTENV_PATH = Path(".env.local")
_CONFIG_PATH_OVERRIDE: Path | None = None

NETWORK_DEFAULTS: dict[str, dict[str, Any]] = {
    "mainnet": {
        "endpoint": "https://polkadot-asset-hub-rpc.polkadot.io",
        "ws_endpoint": "wss://statemint.api.onfinality.io/public-ws",
        "ss58_prefix": 0,
        "native_symbol": "DOT",
    },
    "testnet": {
        "endpoint": "https://westend-asset-hub-rpc.polkadot.io",
        "ws_endpoint": "wss://westend-asset-hub-rpc.polkadot.io",
        "ss58_prefix": 42,
        "native_symbol": "WND",
    },
}


@dataclass
class ChainConfig:
    """Connection and asset settings for an AssetHub-style chain."""

    endpoint: str
    ws_endpoint: str | None = None
    network: str = "mainnet"
    asset_id: int = 1337
    asset_symbol: str = "USDC"
    asset_decimals: int = 6
    asset_min_balance: int = 1000
    native_symbol: str = "DOT"
    native_decimals: int = 10
    ss58_prefix: int = 0
    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_delay_ms: int = 1000
    log_level: str = "info"

    @property
    def asset_codec(self) -> AmountCodec:
        return AmountCodec(decimals=self.asset_decimals, symbol=self.asset_symbol)

    @property
    def native_codec(self) -> AmountCodec:
        return AmountCodec(decimals=self.native_decimals, symbol=self.native_symbol)

    @property
    def subscription_endpoint(self) -> str:
        return self.ws_endpoint or self.endpoint


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML object with a 'chain' section")
    return loaded


def _load_dotenv(path: Path | None) -> dict[str, str]:
    if path is None or not path.exists():
        return {}
    return {key: value for key, value in dotenv_values(path).items() if value is not None}


def _coerce_int(raw: Any, *, source: str) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return default


def _env_value(env_map: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = env_map.get(name)
        if value:
            return value
    return None


def _validate_endpoint(raw: str, *, schemes: set[str], field_name: str) -> str:
    parsed = urlparse(raw)
    if parsed.scheme.lower() not in schemes or not parsed.hostname:
        expected = "/".join(sorted(schemes))
        raise ConfigurationError(f"Invalid {field_name} URL (expected {expected}): {raw}")
    return raw


def load_chain_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    dotenv_path: str | Path | None = DEFAULT_DOTENV_PATH,
) -> ChainConfig:
    """Load chain configuration.

    Values resolve from ``overrides``, then environment variables, then the
    ``chain:`` section of the YAML config file, then ``.env.local``, and
    finally the defaults of the selected network.
    """

    env_map = os.environ if env is None else env
    explicit_path = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    path = (
        Path(config_path).expanduser()
        if config_path is not None
        else _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH
    )

    file_config = _load_config_file(path, required=explicit_path)
    chain_section = file_config.get("chain", {})
    if not isinstance(chain_section, dict):
        raise ConfigurationError(f"Expected 'chain' to be a mapping in {path}")

    dotenv_map = _load_dotenv(Path(dotenv_path) if dotenv_path is not None else None)
    override_map = dict(overrides or {})

    def resolve(key: str, *env_names: str) -> Any:
        return _first_value(
            override_map.get(key),
            _env_value(env_map, *env_names),
            chain_section.get(key),
            _env_value(dotenv_map, *env_names),
        )

    network = str(resolve("network", "POLKAPAY_NETWORK", "NETWORK") or "mainnet").strip().lower()
    if network not in NETWORK_DEFAULTS:
        raise ConfigurationError(
            f"Unknown network {network!r}; expected one of {', '.join(sorted(NETWORK_DEFAULTS))}"
        )
    defaults = NETWORK_DEFAULTS[network]

    endpoint = _validate_endpoint(
        _first_value(resolve("endpoint", "POLKAPAY_RPC_ENDPOINT", "RPC_ENDPOINT"), default=defaults["endpoint"]),
        schemes={"http", "https"},
        field_name="endpoint",
    )
    ws_endpoint = _validate_endpoint(
        _first_value(
            resolve("ws_endpoint", "POLKAPAY_RPC_ENDPOINT_WSS", "RPC_ENDPOINT_WSS"),
            default=defaults["ws_endpoint"],
        ),
        schemes={"ws", "wss"},
        field_name="ws_endpoint",
    )

    def resolve_int(key: str, *env_names: str, default: int) -> int:
        return _first_value(
            _coerce_int(override_map.get(key), source="overrides"),
            _coerce_int(_env_value(env_map, *env_names), source="environment"),
            _coerce_int(chain_section.get(key), source=f"{path} chain.{key}"),
            _coerce_int(_env_value(dotenv_map, *env_names), source=".env.local"),
            default=default,
        )

    timeout_ms = resolve_int("timeout_ms", "RPC_TIMEOUT_MS", default=30000)
    config = ChainConfig(
        endpoint=endpoint,
        ws_endpoint=ws_endpoint,
        network=network,
        asset_id=resolve_int("asset_id", "USDC_ASSET_ID", default=1337),
        asset_symbol=str(resolve("asset_symbol", "USDC_SYMBOL") or "USDC"),
        asset_decimals=resolve_int("asset_decimals", "USDC_DECIMALS", default=6),
        asset_min_balance=resolve_int("asset_min_balance", "USDC_MIN_BALANCE", default=1000),
        native_symbol=str(resolve("native_symbol", "NATIVE_SYMBOL") or defaults["native_symbol"]),
        native_decimals=resolve_int("native_decimals", "NATIVE_DECIMALS", default=10),
        ss58_prefix=resolve_int("ss58_prefix", "SS58_PREFIX", default=defaults["ss58_prefix"]),
        timeout_seconds=timeout_ms / 1000,
        max_retries=resolve_int("max_retries", "RPC_MAX_RETRIES", default=3),
        retry_delay_ms=resolve_int("retry_delay_ms", "RPC_RETRY_DELAY_MS", default=1000),
        log_level=str(resolve("log_level", "LOG_LEVEL") or "info").lower(),
    )

    if config.asset_decimals < 0 or config.native_decimals < 0:
        raise ConfigurationError("Decimal counts must be non-negative")
    if config.max_retries < 1:
        raise ConfigurationError(f"max_retries must be at least 1, got {config.max_retries}")
    if config.retry_delay_ms < 0:
        raise ConfigurationError(f"retry_delay_ms must be non-negative, got {config.retry_delay_ms}")
    return config


def configure_logging(level: str | int = "info") -> None:
    """Apply ``level`` to the ``polkapay`` logger hierarchy."""

    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ConfigurationError(f"Unknown log level: {level}")
        level = resolved
    logging.getLogger("polkapay").setLevel(level)
