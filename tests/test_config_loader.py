from pathlib import Path

import pytest

from cellforge.config import (
    PUBLIC_NODE_URLS,
    ConfigurationError,
    Network,
    NodeConfig,
    load_node_config,
)


def test_load_node_config_prefers_environment_over_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "node:\n"
        "  network: custom\n"
        "  node_url: http://filehost:8114\n"
        "  indexer_url: http://filehost:8116\n"
        "  timeout: 5\n"
    )

    env_map = {
        "CELLFORGE_NODE_URL": "https://envhost:9114",
        "CELLFORGE_RPC_TIMEOUT": "12.5",
    }

    config = load_node_config(config_path=config_path, env=env_map)

    assert isinstance(config, NodeConfig)
    assert config.network is Network.CUSTOM
    assert config.node_url == "https://envhost:9114"
    assert config.indexer_url == "http://filehost:8116"
    assert config.timeout == 12.5


def test_load_node_config_reads_default_path_when_env_missing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config_path = tmp_path / ".cellforge.yaml"
    monkeypatch.setattr("cellforge.config.DEFAULT_CONFIG_PATH", config_path)
    config_path.write_text("node:\n  network: mainnet\n")

    config = load_node_config(env={})

    assert config.network is Network.MAINNET
    assert config.node_url == PUBLIC_NODE_URLS[Network.MAINNET]
    assert config.indexer_url == config.node_url


def test_overrides_win_over_everything(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("cellforge.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    config = load_node_config(
        env={"CELLFORGE_NETWORK": "mainnet"},
        overrides={"network": "testnet", "node_url": "http://127.0.0.1:8114"},
    )

    assert config.network is Network.TESTNET
    assert config.node_url == "http://127.0.0.1:8114"


def test_unknown_network_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("cellforge.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    with pytest.raises(ConfigurationError, match="Unknown network"):
        load_node_config(env={"CELLFORGE_NETWORK": "moonnet"})


def test_explicit_missing_config_path_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        load_node_config(config_path=tmp_path / "absent.yaml", env={})


def test_custom_network_requires_a_node_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("cellforge.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    with pytest.raises(ConfigurationError, match="node URL"):
        load_node_config(env={"CELLFORGE_NETWORK": "custom"})


def test_invalid_url_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("cellforge.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    with pytest.raises(ConfigurationError, match="Invalid endpoint"):
        load_node_config(env={"CELLFORGE_NODE_URL": "ftp://node"})
