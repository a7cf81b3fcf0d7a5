# tests/test_config.py
"""Tests for node configuration."""

from pathlib import Path

import pytest

from ono.config import NodeConfig
from ono.errors import ConfigError


class TestNodeConfig:
    """Tests for NodeConfig."""

    def test_defaults(self):
        config = NodeConfig(username="alice", domain="local.example")
        assert config.data_dir == Path("data")
        assert config.queue_concurrency == 4
        assert config.queue_interval == 0.25
        assert config.fetch_timeout == 5.0
        assert config.delivery_timeout == 10.0
        assert config.cache_max_age == 300.0
        assert config.cache_min_age == 30.0
        assert config.actor_ttl == 3600.0

    def test_from_yaml(self):
        config = NodeConfig.from_yaml("""
username: alice
domain: local.example
data_dir: /tmp/ono
blocked_domains:
  - spam.example
""")
        assert config.username == "alice"
        assert config.data_dir == Path("/tmp/ono")
        assert config.blocked_domains == ["spam.example"]

    def test_from_file(self, data_dir):
        path = data_dir / "ono.yaml"
        path.write_text("username: bob\ndomain: bob.example\nqueue_concurrency: 2\n")
        config = NodeConfig.from_file(path)
        assert config.queue_concurrency == 2

    def test_round_trip_dict(self):
        config = NodeConfig(username="alice", domain="local.example", blocked_domains=["x.example"])
        assert NodeConfig.from_dict(config.to_dict()) == config

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="colour"):
            NodeConfig.from_yaml("username: a\ndomain: b.example\ncolour: blue\n")

    def test_missing_domain(self):
        with pytest.raises(ConfigError):
            NodeConfig.from_yaml("username: a\n")

    def test_domain_must_be_bare_host(self):
        with pytest.raises(ConfigError):
            NodeConfig(username="a", domain="https://b.example")

    def test_invalid_yaml(self):
        with pytest.raises(ConfigError):
            NodeConfig.from_yaml("username: [unclosed")

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            NodeConfig.from_yaml("- a\n- b\n")

    def test_bad_values(self):
        with pytest.raises(ConfigError):
            NodeConfig(username="a", domain="b.example", queue_concurrency=0)
        with pytest.raises(ConfigError):
            NodeConfig(username="a", domain="b.example", cache_min_age=600)
