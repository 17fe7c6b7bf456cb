"""Durable per-machine storage.

Each managed machine owns a data directory holding two files:

- ``id``             plain text, the generated machine name
- ``metadata.json``  {"machine_name", "distribution", "created_at"}

Both are written once at creation and removed at destroy. Writes go through
a temporary file and an atomic rename so a crash never leaves a half-written
ID behind.

Security:
- File permissions: 0600 (owner read/write only)
- Atomic writes using temporary file
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from orbstack_provider.errors import MachineStoreError
from orbstack_provider.ui import MessageSink

logger = logging.getLogger(__name__)


class MachineStore:
    """Read and write the machine ID and metadata files."""

    ID_FILE = "id"
    METADATA_FILE = "metadata.json"

    def __init__(self, data_dir: Path, ui: MessageSink | None = None):
        """Initialize store.

        Args:
            data_dir: Per-machine directory supplied by the host
            ui: Sink for warnings about unreadable files
        """
        self.data_dir = Path(data_dir)
        self.ui = ui

    @property
    def id_file_path(self) -> Path:
        return self.data_dir / self.ID_FILE

    @property
    def metadata_file_path(self) -> Path:
        return self.data_dir / self.METADATA_FILE

    def read_machine_id(self) -> str | None:
        """Read the persisted machine ID.

        Returns:
            Machine ID, or None if the file is missing, empty or unreadable
        """
        if not self.id_file_path.exists():
            return None

        try:
            machine_id = self.id_file_path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            self._warn(f"OrbStack: Could not read machine ID: {e}")
            return None

        return machine_id or None

    def write_machine_id(self, machine_id: str) -> None:
        """Persist the machine ID.

        Raises:
            MachineStoreError: If the file cannot be written
        """
        self._atomic_write(self.id_file_path, machine_id)
        logger.debug(f"Wrote machine ID '{machine_id}' to {self.id_file_path}")

    def read_metadata(self) -> dict[str, Any]:
        """Read persisted metadata.

        Returns:
            Metadata dict, empty if the file is missing or corrupt
        """
        if not self.metadata_file_path.exists():
            return {}

        try:
            data = json.loads(self.metadata_file_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            self._warn(f"OrbStack: Could not read metadata: {e}")
            return {}

        if not isinstance(data, dict):
            self._warn("OrbStack: Could not read metadata: expected a JSON object")
            return {}

        return data

    def write_metadata(self, metadata: dict[str, Any]) -> None:
        """Persist metadata as pretty-printed JSON.

        Raises:
            MachineStoreError: If the file cannot be written
        """
        self._atomic_write(self.metadata_file_path, json.dumps(metadata, indent=2) + "\n")
        logger.debug(f"Wrote metadata to {self.metadata_file_path}")

    def remove(self) -> None:
        """Delete both files. Missing files are not an error."""
        self.id_file_path.unlink(missing_ok=True)
        self.metadata_file_path.unlink(missing_ok=True)
        logger.debug(f"Removed machine files from {self.data_dir}")

    def _atomic_write(self, path: Path, content: str) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(content, encoding="utf-8")
            os.chmod(temp_path, 0o600)
            temp_path.replace(path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            if self.ui is not None:
                self.ui.error(f"OrbStack: Could not write {path.name}: {e}")
            raise MachineStoreError(f"Failed to write {path}: {e}") from e

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if self.ui is not None:
            self.ui.warn(message)


__all__ = ["MachineStore"]
