"""Tests for ClusterSettings loading from keyword arguments, env and TOML."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from clustergossip.core.config import ClusterSettings
from clustergossip.datastructures.cluster_types import Address


def test_defaults():
    settings = ClusterSettings()
    assert settings.system_name == "cluster"
    assert settings.port == 2552
    assert settings.roles == ()
    assert settings.allow_weakly_up_members is True
    assert settings.tombstone_retention_ms == 86_400_000
    assert settings.unreachable_gossip_probability == 0.1


def test_address_and_unique_address():
    settings = ClusterSettings(system_name="orders", hostname="node-1", port=4000)
    assert settings.address == Address(system="orders", hostname="node-1", port=4000)
    node = settings.unique_address(7)
    assert node.address == settings.address
    assert node.uid == 7


def test_sequences_normalized_from_strings():
    settings = ClusterSettings(roles="frontend, worker", seed_nodes=None)
    assert settings.roles == ("frontend", "worker")
    assert settings.seed_nodes == ()


def test_from_dict_accepts_lists():
    settings = ClusterSettings.from_dict(
        {"roles": ["a", "b"], "log_debug_scopes": ["cluster.gossip"]}
    )
    assert settings.roles == ("a", "b")
    assert settings.log_debug_scopes == ("cluster.gossip",)


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CLUSTERGOSSIP_PORT", "2600")
    monkeypatch.setenv("CLUSTERGOSSIP_ALLOW_WEAKLY_UP_MEMBERS", "false")
    settings = ClusterSettings()
    assert settings.port == 2600
    assert settings.allow_weakly_up_members is False


def test_invalid_value_rejected():
    with pytest.raises(ValidationError):
        ClusterSettings(port="not-a-port")
    with pytest.raises(ValidationError):
        ClusterSettings(unreachable_gossip_probability=1.5)


def test_from_toml_table(tmp_path: Path):
    config_file = tmp_path / "node.toml"
    config_file.write_text(
        """
[clustergossip]
hostname = "10.1.0.5"
port = 2560
roles = ["backend"]
tombstone_retention = 120.0
cluster_config = "gossip.interval = 1s"
"""
    )
    settings = ClusterSettings.from_toml(config_file)
    assert settings.hostname == "10.1.0.5"
    assert settings.port == 2560
    assert settings.roles == ("backend",)
    assert settings.tombstone_retention_ms == 120_000
    assert settings.cluster_config == "gossip.interval = 1s"


def test_from_toml_without_table(tmp_path: Path):
    config_file = tmp_path / "flat.toml"
    config_file.write_text('system_name = "flat"\nport = 2570\n')
    settings = ClusterSettings.from_toml(str(config_file))
    assert settings.system_name == "flat"
    assert settings.port == 2570
