"""Shared configuration loader for the custody tooling."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml
from pycardano import Network


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".script_custody.yaml"

MIN_DEPOSIT_LOVELACE = 1_000_000

BLOCKFROST_URLS = {
    "mainnet": "https://cardano-mainnet.blockfrost.io/api",
    "preprod": "https://cardano-preprod.blockfrost.io/api",
    "preview": "https://cardano-preview.blockfrost.io/api",
}
SCRIPT_VERSIONS = ("V1", "V2", "V3")


@dataclass
class CustodyConfig:
    """Connection and wallet settings for a custody flow."""

    project_id: str
    network: str = "preprod"
    base_url: str | None = None
    signing_key_path: Path | None = None
    script_version: str = "V3"
    min_deposit: int = MIN_DEPOSIT_LOVELACE

    @property
    def api_url(self) -> str:
        return (self.base_url or BLOCKFROST_URLS[self.network]).rstrip("/")

    @property
    def address_network(self) -> Network:
        return Network.MAINNET if self.network == "mainnet" else Network.TESTNET


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
        raise ConfigurationError(
            f"Expected {path} to contain a YAML object with a 'provider' section"
        )
    return loaded


def _section(file_config: dict[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_int(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def load_custody_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> CustodyConfig:
    """Load provider and wallet configuration from environment variables and optional YAML."""

    env_map = os.environ if env is None else env
    explicit_path = config_path is not None
    path = Path(config_path).expanduser() if explicit_path else DEFAULT_CONFIG_PATH

    file_config = _load_config_file(path, required=explicit_path)
    provider_section = _section(file_config, "provider", path)
    wallet_section = _section(file_config, "wallet", path)
    script_section = _section(file_config, "script", path)

    override_map = dict(overrides or {})

    env_project = env_map.get("CUSTODY_BLOCKFROST_PROJECT_ID") or env_map.get(
        "BLOCKFROST_PROJECT_ID"
    )

    project_id = _first_value(
        override_map.get("project_id"), env_project, provider_section.get("project_id")
    )
    if not project_id:
        raise ConfigurationError(
            "A Blockfrost project id must be provided via CUSTODY_BLOCKFROST_PROJECT_ID "
            "or the 'provider' section of the config file"
        )

    network = str(
        _first_value(
            override_map.get("network"),
            env_map.get("CUSTODY_NETWORK"),
            provider_section.get("network"),
            "preprod",
        )
    ).lower()
    if network not in BLOCKFROST_URLS:
        raise ConfigurationError(
            f"Unknown network '{network}'; expected one of {', '.join(BLOCKFROST_URLS)}"
        )

    base_url = _first_value(
        override_map.get("base_url"),
        env_map.get("CUSTODY_BLOCKFROST_URL"),
        provider_section.get("base_url"),
    )

    signing_key = _first_value(
        override_map.get("signing_key_path"),
        env_map.get("CUSTODY_SIGNING_KEY"),
        wallet_section.get("signing_key"),
    )

    script_version = str(
        _first_value(
            override_map.get("script_version"),
            env_map.get("CUSTODY_SCRIPT_VERSION"),
            script_section.get("version"),
            "V3",
        )
    ).upper()
    if script_version not in SCRIPT_VERSIONS:
        raise ConfigurationError(
            f"Unknown script version '{script_version}'; expected V1, V2 or V3"
        )

    min_deposit = _first_value(
        _coerce_int(override_map.get("min_deposit"), source="overrides"),
        _coerce_int(env_map.get("CUSTODY_MIN_DEPOSIT"), source="environment"),
        _coerce_int(script_section.get("min_deposit"), source=f"{path} script.min_deposit"),
        MIN_DEPOSIT_LOVELACE,
    )
    if min_deposit < MIN_DEPOSIT_LOVELACE:
        raise ConfigurationError(
            f"Minimum deposit {min_deposit} is below the {MIN_DEPOSIT_LOVELACE:,} lovelace floor"
        )

    return CustodyConfig(
        project_id=str(project_id),
        network=network,
        base_url=base_url,
        signing_key_path=Path(signing_key).expanduser() if signing_key else None,
        script_version=script_version,
        min_deposit=min_deposit,
    )
