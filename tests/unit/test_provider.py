"""Unit tests for Provider state and SSH queries."""

import os
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from orbstack_provider.config import ProviderConfig
from orbstack_provider.errors import (
    CommandExecutionError,
    CommandTimeoutError,
    InvalidMachineIdentity,
    SSHNotReady,
)
from orbstack_provider.machine_state import ControllerState, MachineStateId
from orbstack_provider.orbstack_cli import MachineRecord, OrbStackCLI
from orbstack_provider.provider import (
    SSH_PROXY_PORT,
    Machine,
    Provider,
    map_record_to_state,
)
from orbstack_provider.state_cache import StateCache

MACHINE_ID = "vagrant-default-a3b2c1"


@pytest.fixture
def existing(provider, fake_cli):
    """Provider whose machine ID is persisted; returns a function to set status."""

    def _existing(status="running", ip_address="192.168.139.10", default_username="dev"):
        provider.store.write_machine_id(MACHINE_ID)
        fake_cli.machines[MACHINE_ID] = MachineRecord(
            name=MACHINE_ID,
            status=status,
            ip_address=ip_address,
            default_username=default_username,
        )
        return provider

    return _existing


def direct_provider(machine, ui, fake_cli, clock, **config):
    machine.config = ProviderConfig(ssh_mode="direct", **config).finalize()
    return Provider(machine, ui, cli=fake_cli, cache=StateCache(clock=clock))


class TestMapRecordToState:
    def test_absent_is_not_created(self):
        assert map_record_to_state(None).id == MachineStateId.NOT_CREATED

    def test_running(self):
        assert map_record_to_state(MachineRecord("vm", "running")) == ControllerState.running()

    def test_stopped(self):
        assert map_record_to_state(MachineRecord("vm", "stopped")) == ControllerState.stopped()

    @pytest.mark.parametrize("status", ["paused", "starting", ""])
    def test_unknown_status_is_not_created(self, status):
        state = map_record_to_state(MachineRecord("vm", status))

        assert state.id == MachineStateId.NOT_CREATED
        assert state.short_description == "unknown"


class TestState:
    """Test Provider.state()."""

    def test_no_machine_id_makes_no_backend_call(self, provider, fake_cli):
        state = provider.state()

        assert state.id == MachineStateId.NOT_CREATED
        assert fake_cli.calls == []

    def test_running(self, existing):
        assert existing("running").state().id == MachineStateId.RUNNING

    def test_stopped(self, existing):
        assert existing("stopped").state().id == MachineStateId.STOPPED

    def test_machine_missing_from_backend(self, provider, fake_cli):
        provider.store.write_machine_id(MACHINE_ID)

        assert provider.state().id == MachineStateId.NOT_CREATED
        assert len(fake_cli.calls_to("list_machines")) == 1

    def test_unknown_status(self, existing):
        state = existing("paused").state()

        assert state.id == MachineStateId.NOT_CREATED
        assert "paused" in state.long_description

    def test_cached_within_ttl(self, existing, fake_cli, clock):
        provider = existing("running")

        provider.state()
        clock.advance(4.9)
        provider.state()

        assert len(fake_cli.calls_to("list_machines")) == 1

    def test_refetched_after_ttl(self, existing, fake_cli, clock):
        provider = existing("running")

        provider.state()
        clock.advance(5.1)
        provider.state()

        assert len(fake_cli.calls_to("list_machines")) == 2

    def test_cache_serves_stale_value_within_ttl(self, existing, fake_cli):
        """State changed behind our back is not seen until the TTL passes."""
        provider = existing("running")
        provider.state()

        fake_cli.machines[MACHINE_ID] = MachineRecord(MACHINE_ID, "stopped")

        assert provider.state().id == MachineStateId.RUNNING

    def test_invalidate_forces_refetch(self, existing, fake_cli):
        provider = existing("running")
        provider.state()

        fake_cli.machines[MACHINE_ID] = MachineRecord(MACHINE_ID, "stopped")
        provider.invalidate_state_cache(MACHINE_ID)

        assert provider.state().id == MachineStateId.STOPPED

    @pytest.mark.parametrize(
        "error",
        [
            CommandExecutionError("list", "orb list", 1, "daemon unavailable"),
            CommandTimeoutError("orb list", 30),
        ],
    )
    def test_query_failure_reports_not_created(self, existing, fake_cli, ui, error):
        provider = existing("running")
        fake_cli.errors["list_machines"] = error

        state = provider.state()

        assert state.id == MachineStateId.NOT_CREATED
        assert len(ui.warnings) == 1

    def test_query_failure_is_not_cached(self, existing, fake_cli):
        provider = existing("running")
        fake_cli.errors["list_machines"] = CommandTimeoutError("orb list", 30)
        provider.state()

        del fake_cli.errors["list_machines"]

        assert provider.state().id == MachineStateId.RUNNING


class TestProxySSHInfo:
    """Test ssh_info() in the default proxy mode."""

    def test_not_created_returns_none(self, provider, fake_cli):
        assert provider.ssh_info() is None
        assert fake_cli.calls == []

    def test_stopped_returns_none(self, existing):
        assert existing("stopped").ssh_info() is None

    def test_running_returns_proxy_endpoint(self, existing):
        info = existing("running").ssh_info()

        assert info.host == "127.0.0.1"
        assert info.port == SSH_PROXY_PORT == 32222
        assert info.username == MACHINE_ID
        assert info.private_key_path == str(Path("~/.orbstack/ssh/id_ed25519").expanduser())
        assert info.proxy_command.endswith(f"ssh-proxy-fdpass {os.getuid()}")
        assert "OrbStack Helper" in info.proxy_command
        assert info.forward_agent is False

    def test_does_not_query_machine_info(self, existing, fake_cli):
        existing("running").ssh_info()

        assert fake_cli.calls_to("machine_info") == []

    def test_forward_agent_from_config(self, existing, provider_config):
        provider_config.forward_agent = True

        assert existing("running").ssh_info().forward_agent is True


class TestDirectSSHInfo:
    """Test ssh_info() with ssh_mode = "direct"."""

    def seed(self, fake_cli, machine, **record):
        machine.data_dir.mkdir(parents=True, exist_ok=True)
        (machine.data_dir / "id").write_text(MACHINE_ID)
        fake_cli.machines[MACHINE_ID] = MachineRecord(MACHINE_ID, "running", **record)

    def test_uses_ip_and_default_username(self, machine, ui, fake_cli, clock):
        self.seed(fake_cli, machine, ip_address="192.168.139.10", default_username="dev")
        provider = direct_provider(machine, ui, fake_cli, clock)

        info = provider.ssh_info()

        assert info.host == "192.168.139.10"
        assert info.port == 22
        assert info.username == "dev"
        assert info.proxy_command is None
        assert info.private_key_path is None

    def test_configured_username_wins(self, machine, ui, fake_cli, clock):
        self.seed(fake_cli, machine, ip_address="192.168.139.10", default_username="dev")
        provider = direct_provider(machine, ui, fake_cli, clock, ssh_username="ops")

        assert provider.ssh_info().username == "ops"

    def test_missing_ip_raises(self, machine, ui, fake_cli, clock):
        self.seed(fake_cli, machine, ip_address=None, default_username="dev")
        provider = direct_provider(machine, ui, fake_cli, clock)

        with pytest.raises(SSHNotReady):
            provider.ssh_info()

    def test_missing_username_raises(self, machine, ui, fake_cli, clock):
        self.seed(fake_cli, machine, ip_address="192.168.139.10", default_username=None)
        provider = direct_provider(machine, ui, fake_cli, clock)

        with pytest.raises(SSHNotReady):
            provider.ssh_info()

    def test_gateway_error_returns_none(self, machine, ui, fake_cli, clock):
        self.seed(fake_cli, machine, ip_address="192.168.139.10", default_username="dev")
        fake_cli.errors["machine_info"] = CommandTimeoutError("orb info", 30)
        provider = direct_provider(machine, ui, fake_cli, clock)

        assert provider.ssh_info() is None
        assert any("Could not fetch SSH info" in w for w in ui.warnings)

    def test_info_absent_returns_none(self, machine, ui, fake_cli, clock):
        self.seed(fake_cli, machine, ip_address="192.168.139.10", default_username="dev")
        provider = direct_provider(machine, ui, fake_cli, clock)
        provider.state()

        # Removed between the state query and the info query
        del fake_cli.machines[MACHINE_ID]

        assert provider.ssh_info() is None


class TestEnsureSSHReady:
    def test_running(self, existing):
        assert existing("running").ensure_ssh_ready() == MACHINE_ID

    def test_stopped_raises(self, existing):
        with pytest.raises(SSHNotReady):
            existing("stopped").ensure_ssh_ready()

    def test_no_id_raises_invalid_identity(self, provider):
        with pytest.raises(InvalidMachineIdentity):
            provider.ensure_ssh_ready()


class TestGatewayFailuresStayInTaxonomy:
    """Provider queries over the real OrbStackCLI with subprocess.run patched."""

    LIST_OUTPUT = f"NAME  STATE  DISTRO\n{MACHINE_ID}  running  ubuntu\n"

    def make_provider(self, machine, ui, clock, ssh_mode="proxy"):
        machine.config = ProviderConfig(ssh_mode=ssh_mode).finalize()
        machine.data_dir.mkdir(parents=True, exist_ok=True)
        (machine.data_dir / "id").write_text(MACHINE_ID)
        return Provider(machine, ui, cli=OrbStackCLI(), cache=StateCache(clock=clock))

    @pytest.mark.parametrize(
        "error",
        [
            UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte"),
            PermissionError(13, "Permission denied", "orb"),
        ],
    )
    @patch("orbstack_provider.orbstack_cli.subprocess.run")
    def test_state_reports_not_created(self, mock_run, machine, ui, clock, error):
        mock_run.side_effect = error
        provider = self.make_provider(machine, ui, clock)

        state = provider.state()

        assert state.id == MachineStateId.NOT_CREATED
        assert len(ui.warnings) == 1

    @patch("orbstack_provider.orbstack_cli.subprocess.run")
    def test_halt_raises_command_error(self, mock_run, machine, ui, clock):
        mock_run.side_effect = PermissionError(13, "Permission denied", "orb")
        provider = self.make_provider(machine, ui, clock)

        with pytest.raises(CommandExecutionError):
            provider.halt()

    @pytest.mark.parametrize("payload", ["[]", "null"])
    @patch("orbstack_provider.orbstack_cli.subprocess.run")
    def test_direct_ssh_info_with_non_object_json(self, mock_run, machine, ui, clock, payload):
        def run(cmd, **kwargs):
            stdout = self.LIST_OUTPUT if cmd[1] == "list" else payload
            return subprocess.CompletedProcess(cmd, 0, stdout, "")

        mock_run.side_effect = run
        provider = self.make_provider(machine, ui, clock, ssh_mode="direct")

        assert provider.ssh_info() is None


class TestMachineIdReads:
    def test_ssh_info_reads_id_file_once(self, existing):
        provider = existing("running")

        with patch.object(
            provider.store, "read_machine_id", wraps=provider.store.read_machine_id
        ) as mock_read:
            provider.ssh_info()

        assert mock_read.call_count == 1

    def test_ensure_ssh_ready_reads_id_file_once(self, existing):
        provider = existing("running")

        with patch.object(
            provider.store, "read_machine_id", wraps=provider.store.read_machine_id
        ) as mock_read:
            provider.ensure_ssh_ready()

        assert mock_read.call_count == 1


class TestProviderBasics:
    def test_str(self, provider):
        assert str(provider) == "OrbStack"

    def test_logical_name_defaults_to_machine_name(self, provider):
        assert provider.logical_name == "default"

    def test_logical_name_from_config(self, ui, fake_cli, data_dir):
        config = ProviderConfig(machine_name="web").finalize()
        provider = Provider(Machine("default", config, data_dir), ui, cli=fake_cli)

        assert provider.logical_name == "web"
