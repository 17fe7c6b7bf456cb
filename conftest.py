"""Pytest configuration and fixtures for orbstack-provider tests.

CRITICAL: Prevents tests from touching real OrbStack machines.
"""

import pytest


class RealOrbCommandError(RuntimeError):
    """Raised when a test reaches the real subprocess layer."""


@pytest.fixture(autouse=True)
def block_real_orb_commands(monkeypatch):
    """Fail any test that would execute a real ``orb`` command.

    Tests that exercise the CLI gateway patch
    ``orbstack_provider.orbstack_cli.subprocess.run`` themselves; that patch
    takes precedence over this guard.
    """

    def _refuse(cmd, *args, **kwargs):
        raise RealOrbCommandError(f"Test attempted to run a real command: {cmd}")

    monkeypatch.setattr("orbstack_provider.orbstack_cli.subprocess.run", _refuse)


@pytest.fixture(autouse=True)
def clean_orbstack_env(monkeypatch):
    """Remove ORBSTACK_* overrides so the developer's shell cannot leak into tests."""
    for var in ("ORBSTACK_DISTRO", "ORBSTACK_VERSION", "ORBSTACK_SSH_USERNAME", "ORBSTACK_SSH_MODE"):
        monkeypatch.delenv(var, raising=False)
