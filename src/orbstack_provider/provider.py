"""Machine lifecycle controller for OrbStack.

The Provider maps desired-state requests onto idempotent orb CLI calls:

    up       running -> no-op, stopped or transitional -> start,
             unknown to orb -> create
    halt     stop the machine
    start    start the machine
    reload   halt, then start
    destroy  delete the machine (best effort), then remove local state

State queries are served from a short-lived StateCache; every mutating
operation invalidates it before returning, whether it succeeded or not.

Error policy:
- Mutations propagate gateway errors unchanged (no retries here)
- destroy swallows deletion failures with a warning so local state converges
- state() never raises; anything it cannot confirm is reported as not_created
- ssh_info() returns None when the machine detail cannot be fetched
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from orbstack_provider.config import ProviderConfig, SSHMode
from orbstack_provider.errors import InvalidMachineIdentity, OrbStackError, SSHNotReady
from orbstack_provider.machine_namer import MachineNamer
from orbstack_provider.machine_state import ControllerState, MachineStateId, SSHInfo
from orbstack_provider.machine_store import MachineStore
from orbstack_provider.orbstack_cli import (
    STATUS_RUNNING,
    STATUS_STOPPED,
    CLIGateway,
    MachineRecord,
    OrbStackCLI,
)
from orbstack_provider.ssh_readiness import SSHReadinessChecker
from orbstack_provider.state_cache import StateCache
from orbstack_provider.ui import MessageSink

logger = logging.getLogger(__name__)

# OrbStack routes SSH for every machine through one localhost proxy
SSH_PROXY_HOST = "127.0.0.1"
SSH_PROXY_PORT = 32222
SSH_DIRECT_PORT = 22
ORBSTACK_SSH_KEY = Path("~/.orbstack/ssh/id_ed25519")
ORBSTACK_HELPER = (
    "/Applications/OrbStack.app/Contents/Frameworks/"
    "OrbStack Helper.app/Contents/MacOS/OrbStack Helper"
)


class MachineHandle(Protocol):
    """What the controller needs to know about the host's machine."""

    name: str
    config: ProviderConfig
    data_dir: Path


@dataclass
class Machine:
    """Plain MachineHandle for hosts without their own machine object."""

    name: str
    config: ProviderConfig
    data_dir: Path


def map_record_to_state(record: MachineRecord | None) -> ControllerState:
    """Translate a backend record into a ControllerState.

    Absent -> not_created, running -> running, stopped -> stopped,
    anything else -> not_created with an "unknown" description.
    """
    if record is None:
        return ControllerState.not_created()
    if record.status == STATUS_RUNNING:
        return ControllerState.running()
    if record.status == STATUS_STOPPED:
        return ControllerState.stopped()
    return ControllerState.unknown(record.status)


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601, e.g. "2026-10-18T09:30:00Z"."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Provider:
    """Lifecycle controller for a single OrbStack machine."""

    def __init__(
        self,
        machine: MachineHandle,
        ui: MessageSink,
        cli: CLIGateway | None = None,
        cache: StateCache | None = None,
        namer: MachineNamer | None = None,
        readiness: SSHReadinessChecker | None = None,
    ):
        """Initialize provider.

        Args:
            machine: Host machine handle (name, config, data_dir)
            ui: Operator message sink
            cli: Gateway to OrbStack (default: OrbStackCLI)
            cache: State cache (default: 5 second TTL)
            namer: Machine name generator (default: uses cli)
            readiness: SSH readiness checker (default: uses cli and ui)
        """
        self.machine = machine
        self.ui = ui
        self.cli = cli if cli is not None else OrbStackCLI()
        self.cache = cache if cache is not None else StateCache()
        self.namer = namer if namer is not None else MachineNamer(self.cli)
        self.readiness = (
            readiness if readiness is not None else SSHReadinessChecker(self.cli, ui)
        )
        self.store = MachineStore(machine.data_dir, ui=ui)

    def __str__(self) -> str:
        return "OrbStack"

    @property
    def config(self) -> ProviderConfig:
        return self.machine.config

    @property
    def machine_id(self) -> str | None:
        """Persisted machine name, or None if no machine was created."""
        return self.store.read_machine_id()

    @property
    def logical_name(self) -> str:
        """Name the generated machine name is derived from."""
        return self.config.machine_name or self.machine.name

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def state(self) -> ControllerState:
        """Current machine state. Never raises.

        Returns:
            not_created when no machine ID is known (no orb call is made),
            otherwise the cached or freshly queried state. Query failures
            are reported as not_created with a warning.
        """
        return self._state_of(self.machine_id)

    def ssh_info(self) -> SSHInfo | None:
        """SSH connection details for a running machine.

        Returns:
            SSHInfo, or None if the machine is not running or its detail
            could not be fetched

        Raises:
            SSHNotReady: In direct mode, if the machine has no IP address
                yet or no login user can be determined
        """
        machine_id = self.machine_id
        if self._state_of(machine_id).id != MachineStateId.RUNNING:
            return None

        if self.config.ssh_mode_enum == SSHMode.PROXY:
            return self._proxy_ssh_info(machine_id)
        return self._direct_ssh_info(machine_id)

    def ensure_ssh_ready(self) -> str:
        """Check that the machine can accept an SSH session.

        Returns:
            Machine ID

        Raises:
            InvalidMachineIdentity: If no machine was created
            SSHNotReady: If the machine is not running
        """
        machine_id = self._require_machine_id("ssh")
        if self._state_of(machine_id).id != MachineStateId.RUNNING:
            raise SSHNotReady(machine_id, "machine is not running")
        return machine_id

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def up(self) -> str:
        """Create the machine, or start it if it exists but is not running. Idempotent.

        A persisted ID is only replaced when orb has no record of that machine.

        Returns:
            Machine ID

        Raises:
            MachineNameCollisionError: If no unique name could be generated
            CommandExecutionError: If orb rejects create or start
            CommandTimeoutError: If create or start times out
            SSHNotReady: If the machine does not come up in time
        """
        machine_id = self.machine_id
        current = self._query_state(machine_id) if machine_id else ControllerState.not_created()

        if machine_id and current.id == MachineStateId.RUNNING:
            self.ui.info("Machine is already running")
            return machine_id

        if machine_id and current.id == MachineStateId.STOPPED:
            self.ui.info("Starting stopped machine...")
            return self._start_existing(machine_id)

        if machine_id and current.id == MachineStateId.NOT_CREATED:
            # not_created also covers transitional statuses; only a machine
            # orb has no record of may be replaced
            record = self.cli.machine_info(machine_id)
            if record is not None:
                self.ui.info(f"Machine is {record.status or 'in an unknown state'}, starting it...")
                return self._start_existing(machine_id)

        return self._create()

    def halt(self) -> None:
        """Stop the machine.

        Raises:
            InvalidMachineIdentity: If no machine was created
            CommandExecutionError: If orb fails to stop the machine
            CommandTimeoutError: If stopping times out
        """
        machine_id = self._require_machine_id("halt")
        self.ui.info(f"Halting machine '{machine_id}'...")
        try:
            self.cli.stop_machine(machine_id)
        finally:
            self.invalidate_state_cache(machine_id)

    def start(self) -> None:
        """Start the machine.

        Raises:
            InvalidMachineIdentity: If no machine was created
            CommandExecutionError: If orb fails to start the machine
            CommandTimeoutError: If starting times out
        """
        machine_id = self._require_machine_id("start")
        self.ui.info(f"Starting machine '{machine_id}'...")
        try:
            self.cli.start_machine(machine_id)
        finally:
            self.invalidate_state_cache(machine_id)

    def reload(self) -> None:
        """Halt then start. A failed halt aborts before start."""
        self.halt()
        self.start()

    def wait_for_ssh(self) -> None:
        """Block until the machine is ready for SSH.

        Raises:
            InvalidMachineIdentity: If no machine was created
            SSHNotReady: If the machine does not come up in time
        """
        machine_id = self._require_machine_id("wait for")
        self.readiness.wait_for_ready(machine_id)

    def destroy(self) -> None:
        """Delete the machine and its local state. Idempotent, never raises
        for backend failures."""
        machine_id = self.machine_id

        if not machine_id:
            self.ui.info("Machine is already destroyed or was never created.")
            self.store.remove()
            self.invalidate_state_cache()
            return

        self.ui.info(f"Destroying machine '{machine_id}'...")

        try:
            self.cli.delete_machine(machine_id)
        except OrbStackError as e:
            logger.warning(f"Backend deletion of '{machine_id}' failed: {e}")
            self.ui.warn(f"Error deleting machine from OrbStack: {e}")
            self.ui.warn("Continuing with local cleanup...")

        self.store.remove()
        self.invalidate_state_cache(machine_id)
        self.ui.info(f"Machine '{machine_id}' destroyed")

    def invalidate_state_cache(self, machine_id: str | None = None) -> None:
        """Drop cached state for machine_id, or everything if not given."""
        if machine_id:
            self.cache.invalidate(machine_id)
        else:
            self.cache.invalidate_all()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create(self) -> str:
        self.ui.info("Creating new machine...")

        machine_id = self.namer.generate(self.logical_name)
        distribution = self.config.distribution

        try:
            self.cli.create_machine(machine_id, distribution)
            self._persist(machine_id, distribution)
        finally:
            self.invalidate_state_cache(machine_id)

        self.ui.info(f"Machine '{machine_id}' created successfully")
        self.readiness.wait_for_ready(machine_id)
        return machine_id

    def _start_existing(self, machine_id: str) -> str:
        try:
            self.cli.start_machine(machine_id)
        finally:
            self.invalidate_state_cache(machine_id)
        self.readiness.wait_for_ready(machine_id)
        return machine_id

    def _persist(self, machine_id: str, distribution: str) -> None:
        self.store.write_machine_id(machine_id)
        self.store.write_metadata(
            {
                "machine_name": machine_id,
                "distribution": distribution,
                "created_at": utc_timestamp(),
            }
        )

    def _state_of(self, machine_id: str | None) -> ControllerState:
        """state() for an already-read machine ID."""
        if not machine_id:
            return ControllerState.not_created()

        try:
            return self._query_state(machine_id)
        except (OrbStackError, OSError) as e:
            logger.warning(f"State query for '{machine_id}' failed: {e}")
            self.ui.warn(f"Could not query OrbStack machine state: {e}")
            return ControllerState.not_created(f"Machine state could not be determined: {e}")

    def _query_state(self, machine_id: str) -> ControllerState:
        """Cached state lookup. Gateway errors propagate."""
        cached = self.cache.get(machine_id)
        if cached is not None:
            return cached

        records = self.cli.list_machines()
        record = next((r for r in records if r.name == machine_id), None)
        state = map_record_to_state(record)

        self.cache.set(machine_id, state)
        logger.debug(f"Machine '{machine_id}' state: {state.id.value}")
        return state

    def _require_machine_id(self, action: str) -> str:
        machine_id = self.machine_id
        if not machine_id:
            raise InvalidMachineIdentity(action)
        return machine_id

    def _proxy_ssh_info(self, machine_id: str) -> SSHInfo:
        return SSHInfo(
            host=SSH_PROXY_HOST,
            port=SSH_PROXY_PORT,
            username=machine_id,
            forward_agent=self.config.forward_agent,
            private_key_path=str(ORBSTACK_SSH_KEY.expanduser()),
            proxy_command=f"'{ORBSTACK_HELPER}' ssh-proxy-fdpass {os.getuid()}",
        )

    def _direct_ssh_info(self, machine_id: str) -> SSHInfo | None:
        try:
            record = self.cli.machine_info(machine_id)
        except OrbStackError as e:
            logger.warning(f"Could not fetch machine info for '{machine_id}': {e}")
            self.ui.warn(f"Could not fetch SSH info from OrbStack: {e}")
            return None

        if record is None:
            return None

        if not record.ip_address:
            raise SSHNotReady(machine_id, "machine has no IP address yet")

        username = self.config.ssh_username or record.default_username
        if not username:
            raise SSHNotReady(machine_id, "no SSH username configured or reported")

        return SSHInfo(
            host=record.ip_address,
            port=SSH_DIRECT_PORT,
            username=username,
            forward_agent=self.config.forward_agent,
        )


__all__ = [
    "Machine",
    "MachineHandle",
    "Provider",
    "map_record_to_state",
    "utc_timestamp",
]
