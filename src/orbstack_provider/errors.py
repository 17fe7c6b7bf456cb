"""Error taxonomy for the OrbStack provider.

Every failure the provider can surface maps to exactly one ErrorKind, so a
host can pattern-match on ``error.kind`` instead of parsing messages. Each
exception carries the structured context (machine name, command, exit
diagnostics) that produced it.

Public API (the "studs"):
    ErrorKind: Closed enum of error kinds
    OrbStackError: Base class for all provider errors
    OrbStackNotInstalled, OrbStackNotRunning, CommandExecutionError,
    CommandTimeoutError, MachineNameCollisionError, SSHNotReady,
    InvalidMachineIdentity, ConfigError, MachineStoreError
"""

from enum import Enum


class ErrorKind(Enum):
    """Error kinds a host can match on."""

    BACKEND_NOT_INSTALLED = "backend_not_installed"
    BACKEND_NOT_RUNNING = "backend_not_running"
    COMMAND_FAILED = "command_failed"
    TIMEOUT = "timeout"
    NAME_COLLISION = "name_collision"
    SSH_NOT_READY = "ssh_not_ready"
    INVALID_MACHINE_IDENTITY = "invalid_machine_identity"
    INVALID_CONFIG = "invalid_config"
    STORAGE_ERROR = "storage_error"


class OrbStackError(Exception):
    """Base class for all provider errors."""

    kind: ErrorKind


class OrbStackNotInstalled(OrbStackError):
    """Raised when the orb CLI binary cannot be found."""

    kind = ErrorKind.BACKEND_NOT_INSTALLED

    def __init__(self, command: str = "orb"):
        self.command = command
        super().__init__(
            f"OrbStack is not installed or '{command}' is not on PATH. "
            "Install it from https://orbstack.dev"
        )


class OrbStackNotRunning(OrbStackError):
    """Raised when the orb CLI is present but OrbStack itself is stopped."""

    kind = ErrorKind.BACKEND_NOT_RUNNING

    def __init__(self):
        super().__init__("OrbStack is not running. Start it with 'orb start' and try again.")


class CommandExecutionError(OrbStackError):
    """Raised when an orb command exits non-zero."""

    kind = ErrorKind.COMMAND_FAILED

    def __init__(
        self,
        action: str,
        command: str,
        returncode: int,
        stderr: str = "",
        machine_name: str | None = None,
    ):
        self.action = action
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.machine_name = machine_name

        target = f" '{machine_name}'" if machine_name else ""
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"Failed to {action} machine{target}: {detail}")


class CommandTimeoutError(OrbStackError):
    """Raised when an orb command exceeds its timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout}s: {command}")


class MachineNameCollisionError(OrbStackError):
    """Raised when every generated machine name was already taken."""

    kind = ErrorKind.NAME_COLLISION

    def __init__(self, logical_name: str, attempts: int):
        self.logical_name = logical_name
        self.attempts = attempts
        super().__init__(
            f"Failed to generate unique machine name after {attempts} attempts "
            f"(machine: {logical_name})"
        )


class SSHNotReady(OrbStackError):
    """Raised when a machine has no usable SSH endpoint."""

    kind = ErrorKind.SSH_NOT_READY

    def __init__(self, machine_name: str, reason: str = "SSH did not become available in time"):
        self.machine_name = machine_name
        self.reason = reason
        super().__init__(f"Machine '{machine_name}' is not ready for SSH: {reason}")


class InvalidMachineIdentity(OrbStackError):
    """Raised when an operation needs a machine ID and none is known."""

    kind = ErrorKind.INVALID_MACHINE_IDENTITY

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Cannot {action} machine: machine ID is nil or empty")


class ConfigError(OrbStackError):
    """Raised when configuration cannot be loaded or fails validation."""

    kind = ErrorKind.INVALID_CONFIG

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or []
        super().__init__(message)


class MachineStoreError(OrbStackError):
    """Raised when the machine ID or metadata file cannot be written."""

    kind = ErrorKind.STORAGE_ERROR


__all__ = [
    "CommandExecutionError",
    "CommandTimeoutError",
    "ConfigError",
    "ErrorKind",
    "InvalidMachineIdentity",
    "MachineNameCollisionError",
    "MachineStoreError",
    "OrbStackError",
    "OrbStackNotInstalled",
    "OrbStackNotRunning",
    "SSHNotReady",
]
