"""
Configuration Layer

Two sources of configuration:
- Settings: server runtime knobs (port, bind host, CORS, RPC override, logging)
  loaded with pydantic-settings from the environment / .env
- StakingConfig: on-chain identifiers (program id, mint, store wallet, network)
  resolved once at startup by ConfigResolver, either entirely from environment
  variables or entirely from staking-config.json. Never merged.
"""

import os
import json
import logging
from pathlib import Path
from typing import Callable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger("config")

CONFIG_FILE_NAME = "staking-config.json"

ENV_PROGRAM_ID = "STAKING_PROGRAM_ID"
ENV_MINT_ADDRESS = "MINT_ADDRESS"
ENV_NETWORK = "SOLANA_NETWORK"
ENV_STORE_WALLET = "ZOO_STORE_WALLET"

DEVNET = "devnet"
MAINNET_BETA = "mainnet-beta"

DEVNET_RPC_URL = "https://api.devnet.solana.com"
MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"


# ── Errors ──────────────────────────────────────────────────────────

class ConfigurationError(Exception):
    """Base class for staking configuration failures."""


class ConfigurationMissing(ConfigurationError):
    """Neither the environment nor the fallback file yields a configuration."""


class ConfigurationMalformed(ConfigurationError):
    """The fallback file exists but cannot be parsed."""


# ── Server Settings ─────────────────────────────────────────────────

class Settings(BaseSettings):
    port: int = Field(default=3001, validation_alias="PORT")
    bind_host: str = Field(default="0.0.0.0", validation_alias="STAKING_API_HOST")
    cors_origins: str = Field(default="*", validation_alias="STAKING_API_CORS_ORIGINS")
    rpc_url: Optional[str] = Field(default=None, validation_alias="SOLANA_RPC_URL")
    log_file: str = Field(default="data/staking_api.log", validation_alias="STAKING_API_LOG_FILE")
    payment_confirm_attempts: int = Field(default=10, validation_alias="PAYMENT_CONFIRM_ATTEMPTS")
    payment_confirm_delay_s: float = Field(default=1.0, validation_alias="PAYMENT_CONFIRM_DELAY_S")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # STAKING_PROGRAM_ID etc. belong to ConfigResolver

    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


def rpc_url_for(network: str, override: Optional[str] = None) -> str:
    """Pick the RPC endpoint for a network. Anything unrecognized is devnet."""
    if override:
        return override
    if network in (MAINNET_BETA, "mainnet"):
        return MAINNET_RPC_URL
    return DEVNET_RPC_URL


# ── Staking Config ──────────────────────────────────────────────────

class StakingConfig(BaseModel):
    """On-chain identifiers for the staking API. Extra keys pass through."""

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    program_id: str = Field(alias="programId", min_length=1)
    mint_address: str = Field(alias="mintAddress", min_length=1)
    network: str = DEVNET
    zoo_store_wallet: str = Field(alias="zooStoreWallet", min_length=1)

    def to_json_dict(self) -> dict:
        # Only keys that were supplied; a trusted file dumps back as written.
        return self.model_dump(by_alias=True, exclude_unset=True)

    def lookup(self, name: str, *legacy_keys: str) -> Optional[str]:
        """Field value, falling back to older key names a config file may carry."""
        value = getattr(self, name, None)
        if value:
            return value
        extra = self.model_extra or {}
        for key in (name, *legacy_keys):
            if extra.get(key):
                return extra[key]
        return None


def normalize_network(value: Optional[str]) -> str:
    """Exact match only: 'mainnet-beta' opts in, everything else is devnet."""
    return MAINNET_BETA if value == MAINNET_BETA else DEVNET


def _read_json_object(path: Path) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except UnicodeDecodeError as e:
        raise ConfigurationMalformed(f"{path} is not valid UTF-8: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationMalformed(f"{path} is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ConfigurationMalformed(
            f"{path} must contain a JSON object, got {type(payload).__name__}"
        )
    return payload


def load_config_file(path: Path) -> StakingConfig:
    """Trusting loader: the file content is taken as-is, no field validation."""
    payload = _read_json_object(path)

    # camelCase keys fill the fields; every other key, snake_case twins
    # included, is kept as an extra under its own name.
    fields = {}
    extra = {}
    aliases = {
        field.alias: name
        for name, field in StakingConfig.model_fields.items()
        if field.alias
    }
    for key, value in payload.items():
        if key in aliases:
            fields[aliases[key]] = value
        elif key == "network":
            fields[key] = value
        else:
            extra[key] = value

    config = StakingConfig.model_construct(
        _fields_set=set(fields) | set(extra), **fields
    )
    object.__setattr__(config, "__pydantic_extra__", extra)
    return config


def load_config_file_strict(path: Path) -> StakingConfig:
    """Validating loader: required fields must be present and non-empty."""
    return StakingConfig.model_validate(_read_json_object(path))


class ConfigResolver:
    """
    Resolve the StakingConfig from environment variables, falling back to
    staking-config.json in the working directory.

    Each resolve() re-reads both sources. Callers resolve once at startup
    and hold on to the result.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        config_path: Optional[Path] = None,
        file_loader: Callable[[Path], StakingConfig] = load_config_file,
    ):
        self._environ = environ
        self._config_path = config_path
        self._file_loader = file_loader

    @property
    def config_path(self) -> Path:
        if self._config_path is not None:
            return Path(self._config_path)
        return Path.cwd() / CONFIG_FILE_NAME

    def resolve(self) -> StakingConfig:
        env = self._environ if self._environ is not None else os.environ

        program_id = env.get(ENV_PROGRAM_ID)
        mint_address = env.get(ENV_MINT_ADDRESS)
        store_wallet = env.get(ENV_STORE_WALLET)

        if program_id and mint_address and store_wallet:
            network = normalize_network(env.get(ENV_NETWORK))
            logger.info(f"Staking config loaded from environment (network={network})")
            return StakingConfig(
                program_id=program_id,
                mint_address=mint_address,
                network=network,
                zoo_store_wallet=store_wallet,
            )

        path = self.config_path
        if not path.is_file():
            raise ConfigurationMissing(
                f"Staking config missing. Set env vars ({ENV_PROGRAM_ID}, "
                f"{ENV_MINT_ADDRESS}, {ENV_STORE_WALLET}, optional {ENV_NETWORK}) "
                f"or add {CONFIG_FILE_NAME} (looked for {path})"
            )

        config = self._file_loader(path)
        logger.info(f"Staking config loaded from {path}")
        return config
