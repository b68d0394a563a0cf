"""
Configuration management for backup_utils.

Supports:
- TOML config files
- Environment variables (GHE_* names understood by the appliance tooling)
- Command-line overrides
- Sensible defaults

Priority (highest to lowest):
1. Command-line arguments
2. Environment variables
3. Config file
4. Defaults
"""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib

from .cluster.ssh import DEFAULT_SSH_PORT, DEFAULT_SSH_USER
from .errors import ConfigError

CONFIG_ENV_VAR = "BACKUP_UTILS_CONFIG"

# Default config file locations (searched in order)
CONFIG_SEARCH_PATHS = [
    Path.cwd() / "backup.config.toml",
    Path.home() / ".config" / "backup-utils" / "backup.config.toml",
    Path("/etc/backup-utils/backup.config.toml"),
]

TRUE_VALUES = ("1", "true", "yes", "on")


def _whole_number(section: Dict[str, Any], name: str, default: int) -> int:
    """Read an integer setting; TOML strings and booleans are rejected."""
    value = section.get(name.rsplit(".", 1)[-1], default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be a whole number, got {value!r}")
    return value


@dataclass
class TargetConfig:
    """The appliance being backed up or restored into."""
    hostname: str = ""
    user: str = DEFAULT_SSH_USER
    port: int = DEFAULT_SSH_PORT
    extra_ssh_opts: List[str] = field(default_factory=list)
    restore_host: str = ""


@dataclass
class StorageConfig:
    """Local snapshot storage."""
    data_dir: str = "./data"
    num_snapshots: int = 10

    @property
    def path(self) -> Path:
        return Path(self.data_dir).expanduser()


@dataclass
class OutputConfig:
    """Output configuration."""
    verbose: bool = False
    log_file: Optional[str] = None


@dataclass
class Config:
    """Main configuration container."""
    target: TargetConfig = field(default_factory=TargetConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # Source tracking
    _config_file: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Load configuration from file and environment.

        Args:
            config_path: Explicit path to config file. If None, searches default locations.
            env: Environment to read (default: os.environ)

        Returns:
            Config instance with loaded values

        Raises:
            ConfigError: If an explicit file is missing or any file is malformed
        """
        env = os.environ if env is None else env
        config = cls()

        if config_path:
            path = Path(config_path).expanduser()
            if not path.exists():
                raise ConfigError(f"Config file not found: {config_path}")
        else:
            path = cls._find_config_file(env)

        if path:
            config = cls._load_from_file(path)
            config._config_file = path

        return config.override_from_env(env)

    @classmethod
    def _find_config_file(cls, env: Mapping[str, str]) -> Optional[Path]:
        """Find config file in default locations."""
        candidates = list(CONFIG_SEARCH_PATHS)
        if env.get(CONFIG_ENV_VAR):
            candidates.insert(0, Path(env[CONFIG_ENV_VAR]).expanduser())
        for path in candidates:
            if path.exists():
                return path
        return None

    @classmethod
    def _load_from_file(cls, path: Path) -> "Config":
        """Load config from TOML file."""
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        # Target
        if "target" in data:
            target = data["target"]
            opts = target.get("extra_ssh_opts", config.target.extra_ssh_opts)
            config.target = TargetConfig(
                hostname=target.get("hostname", config.target.hostname),
                user=target.get("user", config.target.user),
                port=_whole_number(target, "target.port", config.target.port),
                extra_ssh_opts=shlex.split(opts) if isinstance(opts, str) else list(opts),
                restore_host=target.get("restore_host", config.target.restore_host),
            )

        # Storage
        if "storage" in data:
            storage = data["storage"]
            config.storage = StorageConfig(
                data_dir=storage.get("data_dir", config.storage.data_dir),
                num_snapshots=_whole_number(storage, "storage.num_snapshots", config.storage.num_snapshots),
            )

        # Output
        if "output" in data:
            out = data["output"]
            config.output = OutputConfig(
                verbose=out.get("verbose", config.output.verbose),
                log_file=out.get("log_file") or None,
            )

        return config

    def override_from_env(self, env: Mapping[str, str]) -> "Config":
        """Apply GHE_* environment variables over file values."""
        if env.get("GHE_HOSTNAME"):
            self.target.hostname = env["GHE_HOSTNAME"]
        if env.get("GHE_RESTORE_HOST"):
            self.target.restore_host = env["GHE_RESTORE_HOST"]
        if env.get("GHE_EXTRA_SSH_OPTS"):
            self.target.extra_ssh_opts = shlex.split(env["GHE_EXTRA_SSH_OPTS"])
        if env.get("GHE_DATA_DIR"):
            self.storage.data_dir = env["GHE_DATA_DIR"]
        if env.get("GHE_NUM_SNAPSHOTS"):
            value = env["GHE_NUM_SNAPSHOTS"]
            if not value.strip().isdigit():
                raise ConfigError(f"GHE_NUM_SNAPSHOTS must be a whole number, got {value!r}")
            self.storage.num_snapshots = int(value)
        if env.get("GHE_VERBOSE"):
            self.output.verbose = env["GHE_VERBOSE"].strip().lower() in TRUE_VALUES
        return self

    def override_from_args(self, args) -> "Config":
        """
        Override config values from argparse namespace.

        Args with value None are ignored (keeping config file values).
        """
        if getattr(args, "hostname", None):
            self.target.hostname = args.hostname
        if getattr(args, "restore_host", None):
            self.target.restore_host = args.restore_host
        if getattr(args, "data_dir", None):
            self.storage.data_dir = args.data_dir
        if getattr(args, "verbose", None):
            self.output.verbose = True
        if getattr(args, "log_file", None):
            self.output.log_file = args.log_file
        return self

    def validate(self) -> list:
        """
        Validate configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not 0 < int(self.target.port) < 65536:
            errors.append(f"SSH port out of range: {self.target.port}")
        if not self.target.user:
            errors.append("SSH user is required")
        if self.storage.num_snapshots < 1:
            errors.append("num_snapshots must be at least 1")
        if not self.storage.data_dir:
            errors.append("data_dir is required")

        return errors

    def summary(self, include_config_path: bool = True) -> str:
        """Generate human-readable config summary."""
        lines = []

        if include_config_path:
            if self._config_file:
                lines.append(f"Config: {self._config_file}")
            else:
                lines.append("Config: (defaults)")

        lines.append(f"Target: {self.target.user}@{self.target.hostname or '(unset)'}:{self.target.port}")
        if self.target.restore_host:
            lines.append(f"Restore host: {self.target.restore_host}")
        lines.append(f"Snapshots: {self.storage.path} (keep {self.storage.num_snapshots})")

        return "\n".join(lines)
