"""Durable backups of cluster recreation data.

The backup store lives outside the shared key-value store so that a cluster
can be rebuilt after its live state is lost.
"""

import shlex
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from pgcluster.config import BackupConfig
from pgcluster.exceptions import BackupError, NotFoundError
from pgcluster.logging_config import get_logger
from pgcluster.models import ClusterRecreationData

logger = get_logger(__name__)


class RecreationBackup(ABC):
    """Write and restore ClusterRecreationData."""

    configured = True

    @abstractmethod
    def write_recreation_data(self, data: ClusterRecreationData) -> None:
        """Persist ``data``, replacing any earlier backup of the instance."""

    @abstractmethod
    def restore_recreation_data(self, instance_id: str) -> ClusterRecreationData:
        """Return the backup of ``instance_id``, raising NotFoundError if absent."""


class NullRecreationBackup(RecreationBackup):
    """Backups disabled."""

    configured = False

    def write_recreation_data(self, data: ClusterRecreationData) -> None:
        logger.debug(f"Backups not configured, skipping backup of {data.instance_id}")

    def restore_recreation_data(self, instance_id: str) -> ClusterRecreationData:
        raise NotFoundError(
            f"No backup available for service instance {instance_id}",
            "Recreation backups are not configured",
        )


class CommandRecreationBackup(RecreationBackup):
    """Delegate to external callback commands.

    The backup command receives the JSON document on stdin. The restore
    command receives the instance id as its last argument and prints the JSON
    document on stdout; a non-zero exit means no backup exists.
    """

    def __init__(self, backup_command: str, restore_command: str, timeout: int = 30):
        self.backup_command = shlex.split(backup_command)
        self.restore_command = shlex.split(restore_command)
        self.timeout = timeout

    def _run(self, command: list[str], stdin: str | None = None) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                command,
                input=stdin,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Backup callback timed out after {self.timeout} seconds: {command[0]}")
            raise BackupError(
                "Backup callback timed out",
                f"'{' '.join(command)}' did not finish within {self.timeout} seconds",
            )
        except FileNotFoundError:
            logger.error(f"Backup callback not found: {command[0]}")
            raise BackupError(
                f"Backup callback not found: {command[0]}",
                "Check the backup section of the broker configuration",
            )

    def write_recreation_data(self, data: ClusterRecreationData) -> None:
        logger.info(f"Backing up recreation data of {data.instance_id}")
        try:
            self._run(self.backup_command, stdin=data.model_dump_json())
        except subprocess.CalledProcessError as e:
            logger.error(f"Backup callback failed with return code {e.returncode}: {e.stderr}")
            raise BackupError(
                f"Backup of service instance {data.instance_id} failed",
                f"Command output: {e.stderr}",
            )

    def restore_recreation_data(self, instance_id: str) -> ClusterRecreationData:
        logger.info(f"Restoring recreation data of {instance_id}")
        try:
            result = self._run([*self.restore_command, instance_id])
        except subprocess.CalledProcessError as e:
            logger.warning(f"Restore callback failed with return code {e.returncode}: {e.stderr}")
            raise NotFoundError(
                f"No backup available for service instance {instance_id}",
                f"Command output: {e.stderr}",
            )

        try:
            return ClusterRecreationData.model_validate_json(result.stdout)
        except PydanticValidationError as e:
            raise BackupError(f"Backup of service instance {instance_id} is corrupt", str(e))


class DirectoryRecreationBackup(RecreationBackup):
    """One JSON document per instance in a local directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, instance_id: str) -> Path:
        return self.directory / f"{instance_id}.json"

    def write_recreation_data(self, data: ClusterRecreationData) -> None:
        path = self._path(data.instance_id)
        logger.info(f"Backing up recreation data of {data.instance_id} to {path}")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(data.model_dump_json(indent=2))
        except OSError as e:
            raise BackupError(f"Failed to write backup {path}", str(e))

    def restore_recreation_data(self, instance_id: str) -> ClusterRecreationData:
        path = self._path(instance_id)
        if not path.exists():
            raise NotFoundError(
                f"No backup available for service instance {instance_id}", str(path)
            )
        try:
            return ClusterRecreationData.model_validate_json(path.read_text())
        except (OSError, PydanticValidationError) as e:
            raise BackupError(f"Backup {path} is unreadable", str(e))


def build_backup(config: BackupConfig) -> RecreationBackup:
    """Create the backup store selected by configuration."""
    if config.backup_command and config.restore_command:
        return CommandRecreationBackup(
            config.backup_command, config.restore_command, timeout=config.timeout
        )
    if config.directory:
        return DirectoryRecreationBackup(config.directory)
    return NullRecreationBackup()
