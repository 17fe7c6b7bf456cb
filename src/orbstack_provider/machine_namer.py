"""Unique machine name generation with collision avoidance.

Names have the form ``vagrant-<sanitized-name>-<short-id>`` where short-id is
six random hex characters. Each candidate is checked against the live
``orb list`` output rather than a local counter: machines can be created
outside this tool or survive across runs with no local state, so OrbStack is
the only authoritative source.

Public API (the "studs"):
    sanitize_name: Turn a free-form name into a DNS-safe label
    MachineNamer: Generate a collision-free machine name

Example:
    >>> sanitize_name("My Web_Server!")
    'my-web-server'
    >>> MachineNamer(OrbStackCLI()).generate("web_server")
    'vagrant-web-server-a3b2c1'
"""

import logging
import re
import secrets
from collections.abc import Callable

from orbstack_provider.errors import MachineNameCollisionError
from orbstack_provider.orbstack_cli import CLIGateway

logger = logging.getLogger(__name__)

NAME_PREFIX = "vagrant"
SUFFIX_LENGTH = 6

# DNS hostname label limit
MAX_NAME_LENGTH = 63

# 63 - len("vagrant-") - len("-XXXXXX") = 48
MAX_SANITIZED_LENGTH = MAX_NAME_LENGTH - len(NAME_PREFIX) - 1 - SUFFIX_LENGTH - 1

DEFAULT_NAME = "default"


def sanitize_name(name: str | None) -> str:
    """Sanitize a logical machine name for use in a hostname.

    Rules, in order: strip whitespace, lowercase, underscores to hyphens,
    drop anything outside [a-z0-9-], collapse hyphen runs, trim hyphens,
    truncate to MAX_SANITIZED_LENGTH. Empty results become "default".

    Args:
        name: Logical name, may be None or blank

    Returns:
        Sanitized name, never empty

    Example:
        >>> sanitize_name("My Web_Server!")
        'my-web-server'
        >>> sanitize_name("   ")
        'default'
    """
    if name is None or not name.strip():
        return DEFAULT_NAME

    sanitized = name.strip().lower().replace("_", "-")
    sanitized = re.sub(r"[^a-z0-9-]", "", sanitized)
    sanitized = re.sub(r"-+", "-", sanitized)
    sanitized = sanitized.strip("-")

    if not sanitized:
        return DEFAULT_NAME

    # Truncation can expose a trailing hyphen
    return sanitized[:MAX_SANITIZED_LENGTH].rstrip("-")


def random_suffix() -> str:
    """Six random lowercase hex characters."""
    return secrets.token_hex(SUFFIX_LENGTH // 2)


class MachineNamer:
    """Generate unique machine names against the live machine list."""

    MAX_RETRIES = 3

    def __init__(self, cli: CLIGateway, suffix_generator: Callable[[], str] = random_suffix):
        """Initialize namer.

        Args:
            cli: Gateway used to list existing machines
            suffix_generator: Source of random suffixes, injectable for tests
        """
        self.cli = cli
        self.suffix_generator = suffix_generator

    def generate(self, logical_name: str | None) -> str:
        """Generate a unique machine name.

        Args:
            logical_name: Human-supplied name (config machine_name or host name)

        Returns:
            Name not currently used by any OrbStack machine

        Raises:
            MachineNameCollisionError: If all MAX_RETRIES candidates collided
            OrbStackNotInstalled: If the orb binary is missing
            CommandTimeoutError: If listing machines times out
        """
        sanitized = sanitize_name(logical_name)

        for attempt in range(1, self.MAX_RETRIES + 1):
            candidate = f"{NAME_PREFIX}-{sanitized}-{self.suffix_generator()}"

            if not self._name_taken(candidate):
                logger.debug(f"Generated machine name '{candidate}' (attempt {attempt})")
                return candidate

            logger.warning(
                f"Machine name collision on '{candidate}' "
                f"(attempt {attempt}/{self.MAX_RETRIES}), retrying"
            )

        raise MachineNameCollisionError(logical_name or DEFAULT_NAME, self.MAX_RETRIES)

    def _name_taken(self, candidate: str) -> bool:
        return any(machine.name == candidate for machine in self.cli.list_machines())


__all__ = ["MAX_NAME_LENGTH", "MachineNamer", "NAME_PREFIX", "random_suffix", "sanitize_name"]
