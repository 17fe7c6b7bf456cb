"""Values exchanged between the lifecycle controller and its host."""

from dataclasses import dataclass
from enum import Enum


class MachineStateId(Enum):
    """Lifecycle states reported to the host."""

    NOT_CREATED = "not_created"
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(frozen=True)
class ControllerState:
    """Machine state as seen by the host.

    Attributes:
        id: Authoritative lifecycle state
        short_description: One or two words for status lines
        long_description: Sentence for ``status`` output
    """

    id: MachineStateId
    short_description: str
    long_description: str

    @classmethod
    def not_created(cls, long_description: str = "The machine does not exist") -> "ControllerState":
        return cls(MachineStateId.NOT_CREATED, "not created", long_description)

    @classmethod
    def stopped(cls) -> "ControllerState":
        return cls(MachineStateId.STOPPED, "stopped", "The machine is stopped")

    @classmethod
    def running(cls) -> "ControllerState":
        return cls(MachineStateId.RUNNING, "running", "The machine is running")

    @classmethod
    def unknown(cls, status: str) -> "ControllerState":
        # Unrecognized backend statuses are never reported as running
        return cls(
            MachineStateId.NOT_CREATED,
            "unknown",
            f"The machine reported an unknown status: {status}",
        )

    def __str__(self) -> str:
        return self.short_description


@dataclass(frozen=True)
class SSHInfo:
    """SSH connection parameters for a running machine."""

    host: str
    port: int
    username: str
    forward_agent: bool = False
    private_key_path: str | None = None
    proxy_command: str | None = None

    def to_ssh_config(self, host_alias: str) -> str:
        """Render as an OpenSSH ``Host`` block.

        Example:
            >>> info = SSHInfo("127.0.0.1", 32222, "vagrant-default-a3b2c1")
            >>> print(info.to_ssh_config("default"))
            Host default
              HostName 127.0.0.1
              Port 32222
              User vagrant-default-a3b2c1
              ForwardAgent no
        """
        lines = [
            f"Host {host_alias}",
            f"  HostName {self.host}",
            f"  Port {self.port}",
            f"  User {self.username}",
        ]
        if self.private_key_path:
            lines.append(f"  IdentityFile {self.private_key_path}")
            lines.append("  IdentitiesOnly yes")
        if self.proxy_command:
            lines.append(f"  ProxyCommand {self.proxy_command}")
        lines.append(f"  ForwardAgent {'yes' if self.forward_agent else 'no'}")
        return "\n".join(lines)


__all__ = ["ControllerState", "MachineStateId", "SSHInfo"]
