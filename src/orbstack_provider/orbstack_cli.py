"""OrbStack CLI gateway.

Every interaction with the ``orb`` binary goes through OrbStackCLI._execute(),
so the timeout ceiling and the error taxonomy are enforced in one place:

- binary missing           -> OrbStackNotInstalled
- exceeded its timeout     -> CommandTimeoutError
- non-zero exit            -> CommandExecutionError (stderr captured)

Queries (list, info) use a short timeout, state changes (start, stop, delete)
a longer one, and create the longest because the first use of a distribution
downloads its image.

Security:
- Commands are argument lists, never shell strings
- No shell=True

Public API (the "studs"):
    MachineRecord: Normalized machine entry
    CLIGateway: Protocol the lifecycle controller depends on
    OrbStackCLI: Implementation backed by the orb binary

Example:
    >>> cli = OrbStackCLI()
    >>> if cli.available():
    ...     for machine in cli.list_machines():
    ...         print(machine.name, machine.status)
"""

import json
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from typing import Protocol

from orbstack_provider.errors import (
    CommandExecutionError,
    CommandTimeoutError,
    OrbStackError,
    OrbStackNotInstalled,
    OrbStackNotRunning,
)

logger = logging.getLogger(__name__)

STATUS_RUNNING = "running"
STATUS_STOPPED = "stopped"


@dataclass(frozen=True)
class MachineRecord:
    """A machine as reported by the orb CLI.

    Attributes:
        name: Machine name known to OrbStack
        status: Backend status string ("running", "stopped", ...)
        ip_address: IPv4 address, only present while running
        default_username: Login user OrbStack created in the machine
    """

    name: str
    status: str
    ip_address: str | None = None
    default_username: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status == STATUS_RUNNING


class CLIGateway(Protocol):
    """Operations the lifecycle controller needs from a virtualization CLI."""

    def list_machines(self) -> list[MachineRecord]: ...

    def machine_info(self, name: str) -> MachineRecord | None: ...

    def create_machine(self, name: str, distribution: str) -> MachineRecord: ...

    def start_machine(self, name: str) -> MachineRecord: ...

    def stop_machine(self, name: str) -> MachineRecord: ...

    def delete_machine(self, name: str) -> bool: ...

    def available(self) -> bool: ...

    def running(self) -> bool: ...

    def version(self) -> str | None: ...

    def check_environment(self) -> None: ...


class OrbStackCLI:
    """CLIGateway implementation for the ``orb`` command-line tool."""

    # Non-mutating queries (list, info)
    QUERY_TIMEOUT = 30

    # State changes (start, stop, delete)
    MUTATE_TIMEOUT = 60

    # Machine creation, covers distribution image downloads on first use
    CREATE_TIMEOUT = 120

    # stderr fragments orb prints when a machine does not exist
    NOT_FOUND_PATTERNS = ("not found", "does not exist", "doesn't exist", "no such machine")

    VERSION_PATTERN = re.compile(r"(\d+\.\d+\.\d+)")

    # Exit status reported when orb could not be executed (shell convention)
    UNRUNNABLE_RETURNCODE = 126

    def __init__(self, binary: str = "orb"):
        self.binary = binary

    # ------------------------------------------------------------------
    # Environment probes (never raise)
    # ------------------------------------------------------------------

    def available(self) -> bool:
        """Check if the orb binary is on PATH."""
        return shutil.which(self.binary) is not None

    def version(self) -> str | None:
        """Get the OrbStack version, e.g. "1.7.4", or None if unavailable."""
        try:
            result = self._execute(["version"], action="query version", check=False)
        except OrbStackError as e:
            logger.debug(f"Version probe failed: {e}")
            return None

        if result.returncode != 0:
            return None

        match = self.VERSION_PATTERN.search(result.stdout)
        return match.group(1) if match else None

    def running(self) -> bool:
        """Check if OrbStack itself is running."""
        try:
            result = self._execute(["status"], action="query status", check=False)
        except OrbStackError as e:
            logger.debug(f"Status probe failed: {e}")
            return False

        return result.returncode == 0 and "running" in result.stdout.lower()

    def check_environment(self) -> None:
        """Ensure OrbStack is installed and running.

        Raises:
            OrbStackNotInstalled: If the orb binary is missing
            OrbStackNotRunning: If OrbStack is installed but stopped
        """
        if not self.available():
            raise OrbStackNotInstalled(self.binary)
        if not self.running():
            raise OrbStackNotRunning()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_machines(self) -> list[MachineRecord]:
        """List all OrbStack machines.

        Parses ``orb list`` output (columns: NAME STATE DISTRO VERSION ARCH).

        Returns:
            List of MachineRecord, empty if no machines exist

        Raises:
            OrbStackNotInstalled: If the orb binary is missing
            CommandTimeoutError: If the command times out
            CommandExecutionError: If orb exits non-zero

        Example:
            >>> OrbStackCLI().list_machines()
            [MachineRecord(name='ubuntu-dev', status='running', ...)]
        """
        result = self._execute(["list"], action="list", timeout=self.QUERY_TIMEOUT)

        machines = []
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) < 2:
                continue
            if parts[0] == "NAME":
                continue  # header row
            machines.append(MachineRecord(name=parts[0], status=parts[1].lower()))

        return machines

    def machine_info(self, name: str) -> MachineRecord | None:
        """Get details for a single machine.

        Args:
            name: Machine name

        Returns:
            MachineRecord with IP and default username, or None if the
            machine does not exist or its info cannot be parsed

        Raises:
            OrbStackNotInstalled: If the orb binary is missing
            CommandTimeoutError: If the command times out
            CommandExecutionError: If orb fails for a reason other than
                the machine not existing
        """
        result = self._execute(
            ["info", name, "--format", "json"],
            action="query",
            timeout=self.QUERY_TIMEOUT,
            machine_name=name,
            check=False,
        )

        if result.returncode != 0:
            stderr = result.stderr.lower()
            if any(pattern in stderr for pattern in self.NOT_FOUND_PATTERNS):
                logger.debug(f"Machine not found: {name}")
                return None
            raise CommandExecutionError(
                "query",
                self._format_command(["info", name, "--format", "json"]),
                result.returncode,
                result.stderr,
                machine_name=name,
            )

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse machine info JSON for '{name}': {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Unexpected machine info JSON for '{name}': {type(data).__name__}")
            return None

        return self._parse_info(name, data)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_machine(
        self, name: str, distribution: str, timeout: int | None = None
    ) -> MachineRecord:
        """Create (and boot) a new machine.

        Args:
            name: Machine name
            distribution: "<distro>" or "<distro>:<version>", e.g. "ubuntu:noble"
            timeout: Override CREATE_TIMEOUT, e.g. for slow networks

        Raises:
            CommandExecutionError: If the distribution is invalid or creation fails
            CommandTimeoutError: If creation times out
        """
        logger.info(f"Creating machine '{name}' ({distribution})")
        self._execute(
            ["create", distribution, name],
            action="create",
            timeout=timeout or self.CREATE_TIMEOUT,
            machine_name=name,
        )
        return MachineRecord(name=name, status=STATUS_RUNNING)

    def start_machine(self, name: str, timeout: int | None = None) -> MachineRecord:
        """Start a machine. Starting a running machine is a no-op for orb."""
        logger.info(f"Starting machine '{name}'")
        self._execute(
            ["start", name],
            action="start",
            timeout=timeout or self.MUTATE_TIMEOUT,
            machine_name=name,
        )
        return MachineRecord(name=name, status=STATUS_RUNNING)

    def stop_machine(self, name: str, timeout: int | None = None) -> MachineRecord:
        """Stop a machine gracefully. Stopping a stopped machine is a no-op for orb."""
        logger.info(f"Stopping machine '{name}'")
        self._execute(
            ["stop", name],
            action="stop",
            timeout=timeout or self.MUTATE_TIMEOUT,
            machine_name=name,
        )
        return MachineRecord(name=name, status=STATUS_STOPPED)

    def delete_machine(self, name: str, timeout: int | None = None) -> bool:
        """Permanently delete a machine and all its data.

        Raises:
            CommandExecutionError: If deletion fails, including when the
                machine does not exist
            CommandTimeoutError: If deletion times out
        """
        logger.info(f"Deleting machine '{name}'")
        self._execute(
            ["delete", "--force", name],
            action="delete",
            timeout=timeout or self.MUTATE_TIMEOUT,
            machine_name=name,
        )
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _format_command(self, args: list[str]) -> str:
        return " ".join([self.binary, *args])

    def _execute(
        self,
        args: list[str],
        *,
        action: str,
        timeout: int = QUERY_TIMEOUT,
        machine_name: str | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run an orb subcommand.

        Args:
            args: Arguments after the binary name
            action: Verb used in error messages ("create", "stop", ...)
            timeout: Hard ceiling in seconds
            machine_name: Machine the command targets, for error context
            check: Raise CommandExecutionError on non-zero exit

        Returns:
            CompletedProcess with stripped stdout/stderr

        Raises:
            OrbStackNotInstalled: If the orb binary is missing
            CommandTimeoutError: If the command exceeds timeout
            CommandExecutionError: If check is True and orb exits non-zero
                or the command cannot be run at all
        """
        cmd = [self.binary, *args]
        command = self._format_command(args)

        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, errors="replace", timeout=timeout
            )
        except FileNotFoundError as e:
            logger.error(f"orb binary not found: {self.binary}")
            raise OrbStackNotInstalled(self.binary) from e
        except subprocess.TimeoutExpired as e:
            logger.error(f"Command timed out after {timeout}s: {command}")
            raise CommandTimeoutError(command, timeout) from e
        except (OSError, UnicodeDecodeError) as e:
            # Binary not executable, or output that cannot be decoded
            logger.error(f"Command could not be run: {command}: {e}")
            raise CommandExecutionError(
                action, command, self.UNRUNNABLE_RETURNCODE, str(e), machine_name=machine_name
            ) from e

        stdout = (result.stdout or "").strip()
        stderr = (result.stderr or "").strip()

        if result.returncode == 0:
            logger.debug(f"Command succeeded: {command}")
        else:
            logger.error(f"Command failed: {command}, stderr: {stderr}")
            if check:
                raise CommandExecutionError(
                    action, command, result.returncode, stderr, machine_name=machine_name
                )

        return subprocess.CompletedProcess(cmd, result.returncode, stdout, stderr)

    @staticmethod
    def _parse_info(name: str, data: dict) -> MachineRecord:
        """Normalize ``orb info --format json`` output.

        Expected shape::

            {"record": {"name": ..., "state": ..., "config": {"default_username": ...}},
             "ip4": "192.168.139.89"}
        """
        record = data.get("record")
        if not isinstance(record, dict):
            record = {}
        config = record.get("config")
        if not isinstance(config, dict):
            config = {}
        return MachineRecord(
            name=record.get("name") or name,
            status=str(record.get("state") or "").lower(),
            ip_address=data.get("ip4") or None,
            default_username=config.get("default_username") or None,
        )


__all__ = ["CLIGateway", "MachineRecord", "OrbStackCLI", "STATUS_RUNNING", "STATUS_STOPPED"]
