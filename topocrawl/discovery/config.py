"""
TopoCrawl - Discovery configuration.

Every timing threshold here was tuned against real vendor CLIs and is a
default, not a constant. A YAML file may override any field; CLI flags
override the file.

Example YAML:
    max_hops: 3
    discovery_timeout: 90
    exclude_patterns: [phone, sep]
    output_dir: ./maps
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..exceptions import ConfigError
from ..utils.resource_helper import bundled_template_dir

logger = logging.getLogger(__name__)

TEMPLATE_DIR_ENV = "NET_TEXTFSM"

PAGINATION_COMMANDS = [
    'terminal length 0',
    'terminal pager 0',
    'set cli screen-length 0',
]

DEVICE_INFO_COMMANDS = [
    'show version',
]

DISCOVERY_COMMANDS = [
    'show cdp neighbors detail',
    'show lldp neighbors detail',
    'show lldp neighbor detail',
]


@dataclass
class DiscoveryConfig:
    """Crawler tunables."""
    max_hops: int = 4

    # Per-device budget and its sub-step shares
    discovery_timeout: float = 60.0
    socket_check_fraction: float = 0.25
    ssh_attempt_fraction: float = 0.33

    # Reachability probes
    ssh_port: int = 22
    device_probe_timeout: float = 3.0
    neighbor_probe_timeout: float = 1.0

    # Shell interaction
    prompt_attempts: int = 3
    prompt_timeout: float = 5.0
    poll_interval: float = 0.25
    pagination_timeout: float = 10.0
    info_command_timeout: float = 15.0
    discovery_command_timeout: float = 30.0

    # Command sets
    pagination_commands: List[str] = field(default_factory=lambda: list(PAGINATION_COMMANDS))
    device_info_commands: List[str] = field(default_factory=lambda: list(DEVICE_INFO_COMMANDS))
    discovery_commands: List[str] = field(default_factory=lambda: list(DISCOVERY_COMMANDS))

    # Filtering and parsing
    exclude_patterns: List[str] = field(default_factory=list)
    template_dir: Optional[str] = None
    first_match_wins: bool = True

    # Output
    output_dir: str = "."
    topology_file: str = "network_topology.json"
    graph_file: str = "network_topology_graph.json"

    # Executor threads for blocking SSH/socket calls
    max_workers: int = 4

    def __post_init__(self):
        if self.max_hops < 0:
            raise ConfigError(f"max_hops must be >= 0, got {self.max_hops}")
        if self.discovery_timeout <= 0:
            raise ConfigError("discovery_timeout must be positive")
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be positive")
        for name in ('socket_check_fraction', 'ssh_attempt_fraction'):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ConfigError(f"{name} must be in (0, 1], got {value}")

    @property
    def socket_check_timeout(self) -> float:
        return self.discovery_timeout * self.socket_check_fraction

    @property
    def ssh_attempt_timeout(self) -> float:
        return self.discovery_timeout * self.ssh_attempt_fraction

    @property
    def topology_path(self) -> Path:
        return Path(self.output_dir) / self.topology_file

    @property
    def graph_path(self) -> Path:
        return Path(self.output_dir) / self.graph_file

    def resolve_template_dir(self) -> Path:
        """Configured dir, then $NET_TEXTFSM, then bundled templates."""
        if self.template_dir:
            return Path(self.template_dir).expanduser()
        env_dir = os.environ.get(TEMPLATE_DIR_ENV)
        if env_dir:
            return Path(env_dir).expanduser()
        return bundled_template_dir()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiscoveryConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(str(e))

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'DiscoveryConfig':
        """
        Load from a YAML mapping.

        Raises:
            ConfigError: unreadable file, bad YAML, or unknown keys
        """
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}")
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        logger.debug(f"Loaded configuration from {path}")
        return cls.from_dict(data)

    def merged(self, **overrides: Any) -> 'DiscoveryConfig':
        """Copy with non-None overrides applied."""
        data = self.to_dict()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return self.from_dict(data)
