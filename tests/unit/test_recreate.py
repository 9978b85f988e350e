"""Unit tests for rebuilding a cluster from its recreation backup."""

from unittest.mock import patch

import pytest

from pgcluster.backup import DirectoryRecreationBackup
from pgcluster.config import RoutingConfig, WaitConfig
from pgcluster.exceptions import BackendError, ConflictError, NotFoundError, PollTimeoutError
from pgcluster.models import ClusterRecreationData, ClusterState, PostgresCredentials
from pgcluster.recreate import RecreateWorkflow
from pgcluster.router import Router


@pytest.fixture
def backup(tmp_path):
    return DirectoryRecreationBackup(tmp_path / "backups")


@pytest.fixture
def router(store):
    return Router(store, RoutingConfig(port_range_start=30000, port_range_end=30009))


@pytest.fixture
def workflow(state_store, router, scheduler, status, backup):
    return RecreateWorkflow(
        state_store,
        router,
        scheduler,
        status,
        backup,
        waits=WaitConfig(member_running_timeout=1, poll_interval=0.1),
        sleep=lambda _seconds: None,
    )


def backed_up(backup, target_node_count=3) -> ClusterRecreationData:
    data = ClusterRecreationData(
        instance_id="inst-1",
        service_id="svc",
        plan_id="plan",
        organization_guid="org",
        space_guid="space",
        admin_credentials=PostgresCredentials(username="pgadmin", password="p1"),
        superuser_credentials=PostgresCredentials(username="postgres", password="p2"),
        app_credentials=PostgresCredentials(username="appuser", password="p3"),
        allocated_port=30007,
        target_node_count=target_node_count,
    )
    backup.write_recreation_data(data)
    return data


def test_recreate_restores_identity(workflow, backup, state_store):
    """Test that the rebuilt cluster carries the backed-up identity."""
    data = backed_up(backup)

    cluster = workflow.recreate("inst-1")

    assert cluster.recreation_data() == data
    assert state_store.load_cluster("inst-1").recreation_data() == data


def test_recreate_schedules_target_nodes(workflow, backup):
    """Test that the backed-up node count is scheduled from scratch."""
    backed_up(backup, target_node_count=3)

    cluster = workflow.recreate("inst-1")

    assert cluster.node_count() == 3
    assert cluster.primary_node() is not None
    assert cluster.scheduling_info.status == "success"


def test_recreate_restores_port(workflow, backup, router):
    """Test that the original public port is reassigned."""
    backed_up(backup)

    workflow.recreate("inst-1")

    assert router.assigned_port("inst-1") == 30007


def test_recreate_without_target_schedules_one_node(workflow, backup):
    """Test that a backup without a node count still yields a running node."""
    backed_up(backup, target_node_count=0)

    cluster = workflow.recreate("inst-1")

    assert cluster.node_count() == 1
    assert cluster.target_node_count == 1


def test_recreate_rewrites_backup(workflow, backup):
    """Test that the backup reflects the recreated cluster."""
    backed_up(backup, target_node_count=0)

    workflow.recreate("inst-1")

    assert backup.restore_recreation_data("inst-1").target_node_count == 1


def test_recreate_existing_instance(workflow, backup, state_store):
    """Test that live instances are never recreated."""
    backed_up(backup)
    state_store.save_cluster(ClusterState(instance_id="inst-1"))

    with pytest.raises(ConflictError):
        workflow.recreate("inst-1")


def test_recreate_without_backup(workflow):
    """Test that a missing backup raises NotFoundError."""
    with pytest.raises(NotFoundError):
        workflow.recreate("inst-1")


def test_recreate_failure_is_persisted(workflow, backup, backends, state_store):
    """Test that a failed rebuild leaves a failed snapshot behind."""
    backed_up(backup)
    for backend in backends:
        backend.fail_provision = True

    with pytest.raises(BackendError):
        workflow.recreate("inst-1")

    assert state_store.load_cluster("inst-1").scheduling_info.status == "failed"


def test_prepare_does_not_touch_state(workflow, backup, state_store, router):
    """Test that preparing only reads the backup."""
    backed_up(backup)

    cluster, target = workflow.prepare("inst-1")

    assert target == 3
    assert cluster.node_count() == 0
    assert not state_store.cluster_exists("inst-1")
    assert router.assigned_port("inst-1") is None


def test_prepare_queues_the_run(workflow, backup):
    """Test that the prepared cluster is already in progress."""
    backed_up(backup)

    cluster, _target = workflow.prepare("inst-1")

    assert cluster.scheduling_info.status == "in-progress"
    assert cluster.scheduling_info.last_message == "Recreate queued"


def test_recreate_port_taken_is_persisted(workflow, backup, router, state_store):
    """Test that losing the backed-up port to another instance is recorded."""
    backed_up(backup)
    router.assign_port_to_cluster("other", 30007)

    with pytest.raises(ConflictError):
        workflow.recreate("inst-1")

    info = state_store.load_cluster("inst-1").scheduling_info
    assert info.status == "failed"
    assert "Restoring port 30007 failed" in info.last_message
    assert router.assigned_port("other") == 30007


def test_recreate_port_wait_timeout_is_persisted(workflow, backup, router, state_store):
    """Test that an unconfirmed port allocation fails the run."""
    backed_up(backup)

    with patch.object(
        router,
        "wait_for_routing_port_allocation",
        side_effect=PollTimeoutError("Timed out waiting for the routing port of inst-1"),
    ):
        with pytest.raises(PollTimeoutError):
            workflow.recreate("inst-1")

    assert state_store.load_cluster("inst-1").scheduling_info.status == "failed"
