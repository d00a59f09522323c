"""Node and indexer endpoint configuration for cellforge."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


class Network(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    CUSTOM = "custom"
    FAKE = "fake"


PUBLIC_NODE_URLS = {
    Network.MAINNET: "https://mainnet.ckb.dev",
    Network.TESTNET: "https://testnet.ckbapp.dev",
}

DEFAULT_TIMEOUT = 30.0
DEFAULT_CONFIG_PATH = Path.home() / ".cellforge.yaml"
_CONFIG_PATH_OVERRIDE: Path | None = None


@dataclass
class NodeConfig:
    """Where to reach the chain node and its cell indexer."""

    node_url: str
    indexer_url: str | None = None
    network: Network = Network.TESTNET
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        if self.indexer_url is None:
            self.indexer_url = self.node_url


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
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML object with a 'node' section")
    return loaded


def _coerce_network(raw: Any, *, source: str) -> Network | None:
    if raw is None:
        return None
    try:
        return Network(str(raw).strip().lower())
    except ValueError as exc:
        raise ConfigurationError(f"Unknown network in {source}: {raw}") from exc


def _coerce_timeout(raw: Any, *, source: str) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid timeout in {source}: {raw}") from exc
    if value <= 0:
        raise ConfigurationError(f"Timeout in {source} must be positive: {raw}")
    return value


def _check_url(raw: str | None, *, source: str) -> str | None:
    if not raw:
        return None
    parsed = urlparse(raw)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ConfigurationError(f"Invalid endpoint URL in {source}: {raw}")
    return raw


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def load_node_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> NodeConfig:
    """Load endpoint configuration from overrides, environment and optional YAML.

    Missing URLs fall back to the public endpoint of the selected network;
    custom networks must name their node explicitly.
    """

    env_map = os.environ if env is None else env
    explicit_path = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    path = (
        Path(config_path).expanduser()
        if config_path is not None
        else _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH
    )

    file_config = _load_config_file(path, required=explicit_path)
    node_section = file_config.get("node", {}) or {}
    if not isinstance(node_section, dict):
        raise ConfigurationError(f"Expected 'node' to be a mapping in {path}")

    override_map = dict(overrides or {})

    network = _first_value(
        _coerce_network(override_map.get("network"), source="overrides"),
        _coerce_network(env_map.get("CELLFORGE_NETWORK"), source="environment"),
        _coerce_network(node_section.get("network"), source=f"{path} node.network"),
        Network.TESTNET,
    )
    node_url = _first_value(
        _check_url(override_map.get("node_url"), source="overrides"),
        _check_url(env_map.get("CELLFORGE_NODE_URL"), source="environment"),
        _check_url(node_section.get("node_url"), source=f"{path} node.node_url"),
        PUBLIC_NODE_URLS.get(network),
    )
    if node_url is None:
        raise ConfigurationError(
            f"A node URL must be configured for the {network.value} network "
            "via CELLFORGE_NODE_URL or the 'node' section of the config file"
        )
    indexer_url = _first_value(
        _check_url(override_map.get("indexer_url"), source="overrides"),
        _check_url(env_map.get("CELLFORGE_INDEXER_URL"), source="environment"),
        _check_url(node_section.get("indexer_url"), source=f"{path} node.indexer_url"),
        node_url,
    )
    timeout = _first_value(
        _coerce_timeout(override_map.get("timeout"), source="overrides"),
        _coerce_timeout(env_map.get("CELLFORGE_RPC_TIMEOUT"), source="environment"),
        _coerce_timeout(node_section.get("timeout"), source=f"{path} node.timeout"),
        DEFAULT_TIMEOUT,
    )

    return NodeConfig(
        node_url=node_url,
        indexer_url=indexer_url,
        network=network,
        timeout=timeout,
    )
