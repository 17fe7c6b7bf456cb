"""Wait for a machine to become reachable over SSH.

After create or start, OrbStack returns before the machine has finished
booting. This module polls ``orb info`` until the machine reports running,
bounded by MAX_WAIT_TIME so a stuck boot surfaces as SSHNotReady instead of
hanging the caller.
"""

import logging
import time
from collections.abc import Callable

from orbstack_provider.errors import SSHNotReady
from orbstack_provider.orbstack_cli import CLIGateway
from orbstack_provider.ui import MessageSink

logger = logging.getLogger(__name__)


class SSHReadinessChecker:
    """Poll machine status until it is running."""

    MAX_WAIT_TIME = 120  # seconds
    POLL_INTERVAL = 2  # seconds

    def __init__(
        self,
        cli: CLIGateway,
        ui: MessageSink,
        max_wait: float = MAX_WAIT_TIME,
        poll_interval: float = POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cli = cli
        self.ui = ui
        self.max_wait = max_wait
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def wait_for_ready(self, machine_name: str) -> bool:
        """Block until the machine is running.

        Args:
            machine_name: Machine to poll

        Returns:
            True once the machine reports running

        Raises:
            SSHNotReady: If the machine is not running within max_wait
            CommandExecutionError: If the orb CLI fails
            CommandTimeoutError: If a single probe times out
        """
        self.ui.info(f"Waiting for SSH to become available on {machine_name}...")

        start = self._clock()
        elapsed = 0.0

        while elapsed < self.max_wait:
            if self._machine_running(machine_name):
                self.ui.info("SSH is ready!")
                logger.debug(f"Machine '{machine_name}' ready after {elapsed:.0f}s")
                return True

            self._sleep(self.poll_interval)
            elapsed = self._clock() - start
            self.ui.info(f"  Still waiting... ({int(elapsed)} seconds elapsed)")

        logger.error(f"Machine '{machine_name}' not ready after {self.max_wait}s")
        raise SSHNotReady(
            machine_name, f"machine did not report running within {self.max_wait} seconds"
        )

    def _machine_running(self, machine_name: str) -> bool:
        record = self.cli.machine_info(machine_name)
        return record is not None and record.is_running


__all__ = ["SSHReadinessChecker"]
