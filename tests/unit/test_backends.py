"""Unit tests for the HTTP backend client."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from pgcluster.backends import Backend, Backends
from pgcluster.config import BackendConfig
from pgcluster.exceptions import BackendError
from pgcluster.models import PRIMARY, ClusterState, Node


@pytest.fixture
def backend():
    return Backend(
        BackendConfig(
            guid="cell-a1",
            availability_zone="az-a",
            uri="http://10.0.0.10:8889/",
            username="admin",
            password="secret",
        )
    )


@pytest.fixture
def cluster():
    return ClusterState(
        instance_id="inst-1", service_id="svc", plan_id="plan", allocated_port=30000
    )


def response(status_code, text=""):
    mock = MagicMock()
    mock.status_code = status_code
    mock.text = text
    return mock


@patch("requests.put")
def test_provision_node(mock_put, backend, cluster):
    """Test that provisioning sends the node and cluster identity."""
    mock_put.return_value = response(201)

    node = backend.provision_node(cluster, "n1", PRIMARY)

    assert node == Node(
        id="n1", backend_id="cell-a1", plan_id="plan", service_id="svc", role=PRIMARY
    )
    args, kwargs = mock_put.call_args
    assert args[0] == "http://10.0.0.10:8889/api/v1/clusters/inst-1/nodes/n1"
    assert kwargs["json"]["node"]["role"] == PRIMARY
    assert kwargs["json"]["cluster"]["allocated_port"] == 30000
    assert kwargs["auth"] == ("admin", "secret")


@patch("requests.put")
def test_provision_node_rejected(mock_put, backend, cluster):
    """Test that an error status raises BackendError."""
    mock_put.return_value = response(503, "no capacity")

    with pytest.raises(BackendError) as exc_info:
        backend.provision_node(cluster, "n1", PRIMARY)

    assert "no capacity" in exc_info.value.details


@patch("requests.put")
def test_provision_node_unreachable(mock_put, backend, cluster):
    """Test that connection errors raise BackendError."""
    mock_put.side_effect = requests.ConnectionError("refused")

    with pytest.raises(BackendError) as exc_info:
        backend.provision_node(cluster, "n1", PRIMARY)

    assert "unreachable" in exc_info.value.message


@patch("requests.delete")
def test_deprovision_node(mock_delete, backend):
    """Test that deprovisioning deletes the node resource."""
    mock_delete.return_value = response(204)

    backend.deprovision_node("inst-1", Node(id="n1", backend_id="cell-a1"))

    args, _ = mock_delete.call_args
    assert args[0] == "http://10.0.0.10:8889/api/v1/clusters/inst-1/nodes/n1"


@patch("requests.delete")
def test_deprovision_missing_node(mock_delete, backend):
    """Test that an already removed node counts as removed."""
    mock_delete.return_value = response(404)

    backend.deprovision_node("inst-1", Node(id="n1", backend_id="cell-a1"))


@patch("requests.delete")
def test_deprovision_node_rejected(mock_delete, backend):
    """Test that other error statuses raise BackendError."""
    mock_delete.return_value = response(500, "boom")

    with pytest.raises(BackendError):
        backend.deprovision_node("inst-1", Node(id="n1", backend_id="cell-a1"))


def test_backends_lookup():
    """Test building backends from configuration and looking them up."""
    backends = Backends.from_config(
        [
            BackendConfig(guid="cell-a1", availability_zone="az-a"),
            BackendConfig(guid="cell-b1", availability_zone="az-b"),
        ]
    )

    assert len(backends) == 2
    assert backends.guids() == ["cell-a1", "cell-b1"]
    assert backends.get("cell-b1").availability_zone == "az-b"
    assert backends.get("cell-z9") is None
    assert backends.get("cell-a1")._auth() is None
