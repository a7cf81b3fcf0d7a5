# ono/config.py
"""
Node configuration.

All tunables have defaults; a YAML file only needs to name the account:

    username: alice
    domain: social.example.com
    data_dir: ./data
    blocked_domains:
      - spam.example
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .errors import ConfigError


@dataclass
class NodeConfig:
    """Runtime settings for a node."""
    username: str
    domain: str
    data_dir: Path = Path("data")

    # Delivery queue
    queue_concurrency: int = 4
    queue_interval: float = 0.25

    # Network timeouts (seconds)
    fetch_timeout: float = 5.0
    delivery_timeout: float = 10.0

    # JSON read cache (seconds)
    cache_max_age: float = 300.0
    cache_min_age: float = 30.0

    # Remote actor cache (seconds)
    actor_ttl: float = 3600.0

    blocked_domains: List[str] = field(default_factory=list)
    user_agent: str = "ono/0.1"

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        self.validate()

    def validate(self):
        if not self.username:
            raise ConfigError("username is required")
        if not self.domain:
            raise ConfigError("domain is required")
        if "/" in self.domain or self.domain.startswith("http"):
            raise ConfigError(f"domain must be a bare host name, got {self.domain!r}")
        if self.queue_concurrency < 1:
            raise ConfigError("queue_concurrency must be at least 1")
        if self.queue_interval < 0:
            raise ConfigError("queue_interval must not be negative")
        if self.cache_min_age > self.cache_max_age:
            raise ConfigError("cache_min_age must not exceed cache_max_age")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(str(e))

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "NodeConfig":
        """Parse config from a YAML string."""
        try:
            data = yaml.safe_load(yaml_content) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}")
        if not isinstance(data, dict):
            raise ConfigError("Config must be a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Path | str) -> "NodeConfig":
        """Load config from a YAML file."""
        with open(path) as f:
            return cls.from_yaml(f.read())

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["data_dir"] = str(self.data_dir)
        return data
