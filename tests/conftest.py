"""
Shared test fixtures for orbstack-provider tests.

This module provides common fixtures used across all test types:
- FakeOrbStackCLI, an in-memory CLIGateway
- Recording message sink
- Machine handles backed by tmp_path
- Providers wired with fakes and a controllable clock
"""

from pathlib import Path

import pytest

from orbstack_provider.config import ProviderConfig
from orbstack_provider.errors import CommandExecutionError
from orbstack_provider.machine_namer import MachineNamer
from orbstack_provider.orbstack_cli import MachineRecord
from orbstack_provider.provider import Machine, Provider
from orbstack_provider.ssh_readiness import SSHReadinessChecker
from orbstack_provider.state_cache import StateCache
from orbstack_provider.ui import RecordingMessageSink

# ============================================================================
# FAKES
# ============================================================================


class FakeOrbStackCLI:
    """In-memory CLIGateway.

    Machines live in ``self.machines`` (name -> MachineRecord). Every call is
    appended to ``self.calls`` as (method, args) for assertions. Set
    ``self.errors[method]`` to an exception to make that method raise.
    """

    def __init__(self, machines: list[MachineRecord] | None = None):
        self.machines: dict[str, MachineRecord] = {m.name: m for m in machines or []}
        self.calls: list[tuple[str, tuple]] = []
        self.errors: dict[str, Exception] = {}
        self.is_available = True
        self.is_running = True

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, args))
        if method in self.errors:
            raise self.errors[method]

    def calls_to(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    def list_machines(self) -> list[MachineRecord]:
        self._record("list_machines")
        return list(self.machines.values())

    def machine_info(self, name: str) -> MachineRecord | None:
        self._record("machine_info", name)
        return self.machines.get(name)

    def create_machine(self, name: str, distribution: str) -> MachineRecord:
        self._record("create_machine", name, distribution)
        record = MachineRecord(
            name=name, status="running", ip_address="192.168.139.10", default_username="dev"
        )
        self.machines[name] = record
        return record

    def start_machine(self, name: str) -> MachineRecord:
        self._record("start_machine", name)
        record = self._replace_status(name, "running")
        return record

    def stop_machine(self, name: str) -> MachineRecord:
        self._record("stop_machine", name)
        return self._replace_status(name, "stopped")

    def delete_machine(self, name: str) -> bool:
        self._record("delete_machine", name)
        if name not in self.machines:
            raise CommandExecutionError("delete", f"orb delete --force {name}", 1, "machine not found", name)
        del self.machines[name]
        return True

    def available(self) -> bool:
        return self.is_available

    def running(self) -> bool:
        return self.is_running

    def version(self) -> str | None:
        return "1.7.4" if self.is_available else None

    def check_environment(self) -> None:
        self._record("check_environment")

    def _replace_status(self, name: str, status: str) -> MachineRecord:
        current = self.machines.get(name, MachineRecord(name=name, status=status))
        record = MachineRecord(
            name=name,
            status=status,
            ip_address=current.ip_address if status == "running" else None,
            default_username=current.default_username,
        )
        self.machines[name] = record
        return record


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SequenceSuffixes:
    """Suffix generator returning preset values and counting calls."""

    def __init__(self, *suffixes: str):
        self._suffixes = list(suffixes)
        self.calls = 0

    def __call__(self) -> str:
        suffix = self._suffixes[min(self.calls, len(self._suffixes) - 1)]
        self.calls += 1
        return suffix


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def fake_cli():
    """Empty fake OrbStack gateway."""
    return FakeOrbStackCLI()


@pytest.fixture
def ui():
    """Recording message sink."""
    return RecordingMessageSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def data_dir(tmp_path) -> Path:
    """Per-machine data directory (not created until first write)."""
    return tmp_path / ".orbstack" / "machines" / "default"


@pytest.fixture
def provider_config():
    return ProviderConfig(distro="ubuntu", version="noble").finalize()


@pytest.fixture
def machine(provider_config, data_dir):
    return Machine(name="default", config=provider_config, data_dir=data_dir)


@pytest.fixture
def suffixes():
    return SequenceSuffixes("a3b2c1")


@pytest.fixture
def provider(machine, ui, fake_cli, clock, suffixes):
    """Provider wired with fakes; SSH readiness never sleeps."""
    return Provider(
        machine,
        ui,
        cli=fake_cli,
        cache=StateCache(clock=clock),
        namer=MachineNamer(fake_cli, suffix_generator=suffixes),
        readiness=SSHReadinessChecker(fake_cli, ui, sleep=lambda _: None),
    )


@pytest.fixture
def make_suffixes():
    """Factory for SequenceSuffixes: make_suffixes("aaaaaa", "bbbbbb")."""
    return SequenceSuffixes


@pytest.fixture
def make_fake_cli():
    """Factory for FakeOrbStackCLI pre-populated with machine records."""
    return FakeOrbStackCLI
