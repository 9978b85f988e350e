"""Unit tests for recreation backups."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from pgcluster.backup import (
    CommandRecreationBackup,
    DirectoryRecreationBackup,
    NullRecreationBackup,
    build_backup,
)
from pgcluster.config import BackupConfig
from pgcluster.exceptions import BackupError, NotFoundError
from pgcluster.models import ClusterRecreationData, PostgresCredentials


@pytest.fixture
def data():
    return ClusterRecreationData(
        instance_id="inst-1",
        service_id="svc",
        plan_id="plan",
        organization_guid="org",
        space_guid="space",
        admin_credentials=PostgresCredentials(username="pgadmin", password="pw"),
        allocated_port=30005,
        target_node_count=3,
    )


def test_directory_round_trip(tmp_path, data):
    """Test that a written backup restores identically."""
    backup = DirectoryRecreationBackup(tmp_path / "backups")

    backup.write_recreation_data(data)

    assert (tmp_path / "backups" / "inst-1.json").exists()
    assert backup.restore_recreation_data("inst-1") == data


def test_directory_missing_backup(tmp_path):
    """Test that restoring an unknown instance raises NotFoundError."""
    with pytest.raises(NotFoundError):
        DirectoryRecreationBackup(tmp_path).restore_recreation_data("ghost")


def test_directory_corrupt_backup(tmp_path):
    """Test that an unreadable document raises BackupError."""
    (tmp_path / "inst-1.json").write_text("{oops")

    with pytest.raises(BackupError):
        DirectoryRecreationBackup(tmp_path).restore_recreation_data("inst-1")


def test_null_backup(data):
    """Test that disabled backups accept writes and never restore."""
    backup = NullRecreationBackup()
    backup.write_recreation_data(data)

    assert not backup.configured
    with pytest.raises(NotFoundError):
        backup.restore_recreation_data("inst-1")


@patch("subprocess.run")
def test_command_backup_write(mock_run, data):
    """Test that the backup command receives the document on stdin."""
    mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
    backup = CommandRecreationBackup("/usr/local/bin/backup --bucket x", "/usr/local/bin/restore")

    backup.write_recreation_data(data)

    args, kwargs = mock_run.call_args
    assert args[0] == ["/usr/local/bin/backup", "--bucket", "x"]
    assert ClusterRecreationData.model_validate_json(kwargs["input"]) == data
    assert kwargs["check"] is True
    assert kwargs["timeout"] == 30


@patch("subprocess.run")
def test_command_backup_restore(mock_run, data):
    """Test that the restore command gets the instance id and prints the document."""
    mock_run.return_value = MagicMock(returncode=0, stdout=data.model_dump_json(), stderr="")
    backup = CommandRecreationBackup("backup", "restore --from s3")

    assert backup.restore_recreation_data("inst-1") == data
    args, _ = mock_run.call_args
    assert args[0] == ["restore", "--from", "s3", "inst-1"]


@patch("subprocess.run")
def test_command_restore_failure_means_not_found(mock_run):
    """Test that a failing restore command means there is no backup."""
    mock_run.side_effect = subprocess.CalledProcessError(1, "restore", stderr="no such key")

    with pytest.raises(NotFoundError) as exc_info:
        CommandRecreationBackup("backup", "restore").restore_recreation_data("inst-1")

    assert "no such key" in exc_info.value.details


@patch("subprocess.run")
def test_command_write_failure(mock_run, data):
    """Test that a failing backup command raises BackupError."""
    mock_run.side_effect = subprocess.CalledProcessError(2, "backup", stderr="denied")

    with pytest.raises(BackupError):
        CommandRecreationBackup("backup", "restore").write_recreation_data(data)


@patch("subprocess.run")
def test_command_timeout(mock_run, data):
    """Test that a hanging callback raises BackupError."""
    mock_run.side_effect = subprocess.TimeoutExpired("backup", 5)

    with pytest.raises(BackupError) as exc_info:
        CommandRecreationBackup("backup", "restore", timeout=5).write_recreation_data(data)

    assert "timed out" in exc_info.value.message


@patch("subprocess.run")
def test_command_not_installed(mock_run, data):
    """Test that a missing executable raises BackupError."""
    mock_run.side_effect = FileNotFoundError()

    with pytest.raises(BackupError) as exc_info:
        CommandRecreationBackup("backup", "restore").write_recreation_data(data)

    assert "not found" in exc_info.value.message


@patch("subprocess.run")
def test_command_restore_garbage(mock_run):
    """Test that unparsable restore output raises BackupError."""
    mock_run.return_value = MagicMock(returncode=0, stdout="not json", stderr="")

    with pytest.raises(BackupError):
        CommandRecreationBackup("backup", "restore").restore_recreation_data("inst-1")


def test_build_backup(tmp_path):
    """Test that configuration selects the backup store."""
    assert isinstance(build_backup(BackupConfig()), NullRecreationBackup)
    assert isinstance(
        build_backup(BackupConfig(directory=str(tmp_path))), DirectoryRecreationBackup
    )
    assert isinstance(
        build_backup(BackupConfig(backup_command="b", restore_command="r")),
        CommandRecreationBackup,
    )
