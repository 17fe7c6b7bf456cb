"""Configuration management module.

Provider settings live in the ``[orbstack]`` table of a TOML file
(``orbstack.toml`` in the project directory by default):

    [orbstack]
    distro = "ubuntu"
    version = "noble"
    machine_name = "web"
    ssh_username = "dev"
    forward_agent = true
    ssh_mode = "proxy"

Environment variables override the file: ORBSTACK_DISTRO, ORBSTACK_VERSION,
ORBSTACK_SSH_USERNAME, ORBSTACK_SSH_MODE.

Security:
- Config file permissions: 0600 (owner read/write only)
- Input validation before any orb command runs
"""

import logging
import os
import re
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import tomli
import tomlkit

from orbstack_provider.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_DISTRO = "ubuntu"

MACHINE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9]+(-[a-zA-Z0-9]+)*$")

DISTRO_EMPTY_ERROR = "distro cannot be empty"
MACHINE_NAME_FORMAT_ERROR = "machine_name must contain only alphanumeric characters and hyphens"
SSH_USERNAME_EMPTY_ERROR = "ssh_username cannot be empty"


class SSHMode(Enum):
    """How SSH connection details are produced for a running machine.

    PROXY: OrbStack's localhost SSH proxy, machine name as login user
    DIRECT: Connect to the machine's IP with its default (or configured) user
    """

    PROXY = "proxy"
    DIRECT = "direct"


SSH_MODE_ERROR = f"ssh_mode must be one of: {', '.join(sorted(m.value for m in SSHMode))}"


@dataclass
class ProviderConfig:
    """OrbStack provider configuration.

    Attributes:
        distro: Distribution to create, e.g. "ubuntu"
        version: Distribution version, e.g. "noble"
        machine_name: Logical name used to build the machine name
        ssh_username: Login user for direct SSH mode
        forward_agent: Forward the local SSH agent
        ssh_mode: "proxy" or "direct"
    """

    distro: str | None = None
    version: str | None = None
    machine_name: str | None = None
    ssh_username: str | None = None
    forward_agent: bool = False
    ssh_mode: str | None = None

    def finalize(self) -> "ProviderConfig":
        """Apply defaults for unset values. Returns self for chaining."""
        if self.distro is None:
            self.distro = DEFAULT_DISTRO
        if self.ssh_mode is None:
            self.ssh_mode = SSHMode.PROXY.value
        # Blank optional strings mean "not set"
        if self.version is not None and not str(self.version).strip():
            self.version = None
        return self

    def validate(self) -> list[str]:
        """Validate configuration.

        Returns:
            List of error messages, empty if valid
        """
        errors = []

        if self.distro is None or not str(self.distro).strip():
            errors.append(DISTRO_EMPTY_ERROR)

        if self.machine_name is not None and not MACHINE_NAME_PATTERN.match(
            str(self.machine_name)
        ):
            errors.append(MACHINE_NAME_FORMAT_ERROR)

        if self.ssh_username is not None and not str(self.ssh_username).strip():
            errors.append(SSH_USERNAME_EMPTY_ERROR)

        if self.ssh_mode is not None and self.ssh_mode not in {m.value for m in SSHMode}:
            errors.append(SSH_MODE_ERROR)

        return errors

    @property
    def ssh_mode_enum(self) -> SSHMode:
        return SSHMode(self.ssh_mode or SSHMode.PROXY.value)

    @property
    def distribution(self) -> str:
        """Distribution argument for ``orb create``: "distro" or "distro:version"."""
        if self.version:
            return f"{self.distro}:{self.version}"
        return str(self.distro)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        # TOML has no null
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderConfig":
        """Create from dictionary, ignoring unknown keys."""
        forward_agent = data.get("forward_agent", False)
        if not isinstance(forward_agent, bool):
            raise ConfigError(f"forward_agent must be true or false, got {forward_agent!r}")

        return cls(
            distro=data.get("distro"),
            version=data.get("version"),
            machine_name=data.get("machine_name"),
            ssh_username=data.get("ssh_username"),
            forward_agent=forward_agent,
            ssh_mode=data.get("ssh_mode"),
        )


class ConfigManager:
    """Load and save provider configuration files."""

    DEFAULT_CONFIG_FILE = "orbstack.toml"
    SECTION = "orbstack"

    ENV_OVERRIDES = {
        "ORBSTACK_DISTRO": "distro",
        "ORBSTACK_VERSION": "version",
        "ORBSTACK_SSH_USERNAME": "ssh_username",
        "ORBSTACK_SSH_MODE": "ssh_mode",
    }

    @classmethod
    def get_config_path(cls, custom_path: str | Path | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Explicit config path (must exist)

        Returns:
            Path to config file

        Raises:
            ConfigError: If custom_path does not exist
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return Path.cwd() / cls.DEFAULT_CONFIG_FILE

    @classmethod
    def load_config(cls, custom_path: str | Path | None = None) -> ProviderConfig:
        """Load, finalize and validate configuration.

        A missing default config file yields the defaults.

        Raises:
            ConfigError: If the file cannot be parsed or values are invalid
        """
        path = cls.get_config_path(custom_path)

        data: dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "rb") as f:
                    document = tomli.load(f)
            except (OSError, tomli.TOMLDecodeError) as e:
                raise ConfigError(f"Failed to load config from {path}: {e}") from e

            section = document.get(cls.SECTION, {})
            if not isinstance(section, dict):
                raise ConfigError(f"[{cls.SECTION}] in {path} must be a table")
            data = dict(section)
            logger.debug(f"Loaded config from {path}")
        else:
            logger.debug(f"No config file at {path}, using defaults")

        for env_var, key in cls.ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value is not None:
                logger.debug(f"Config override from {env_var}")
                data[key] = value

        config = ProviderConfig.from_dict(data).finalize()

        errors = config.validate()
        if errors:
            raise ConfigError(
                "OrbStack Provider configuration is invalid:\n  " + "\n  ".join(errors),
                errors=errors,
            )

        return config

    @classmethod
    def save_config(cls, config: ProviderConfig, path: Path) -> Path:
        """Write configuration as a commented TOML document.

        Raises:
            ConfigError: If the file cannot be written
        """
        doc = tomlkit.document()
        doc.add(tomlkit.comment("OrbStack provider configuration"))

        table = tomlkit.table()
        for key, value in config.to_dict().items():
            table[key] = value
        doc[cls.SECTION] = table

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                tomlkit.dump(doc, f)
            os.chmod(path, 0o600)
        except OSError as e:
            raise ConfigError(f"Failed to save config to {path}: {e}") from e

        logger.debug(f"Saved config to {path}")
        return path


__all__ = [
    "ConfigManager",
    "DEFAULT_DISTRO",
    "MACHINE_NAME_PATTERN",
    "ProviderConfig",
    "SSHMode",
]
