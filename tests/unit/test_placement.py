"""Unit tests for availability-zone aware placement."""

from unittest.mock import patch

import pytest

from pgcluster.exceptions import StoreError, ValidationError
from pgcluster.models import REPLICA, Node


def place(state_store, instance_id, *backend_ids):
    for i, backend_id in enumerate(backend_ids):
        state_store.record_node(instance_id, Node(id=f"n{i}", backend_id=backend_id, role=REPLICA))


def test_all_azs(placement):
    """Test that AZs are deduplicated and sorted."""
    assert placement.all_azs() == ["az-a", "az-b", "az-c"]
    assert placement.all_azs(["cell-c1", "cell-a2"]) == ["az-a", "az-c"]


def test_rank_empty_cluster(placement):
    """Test that a cluster without nodes ranks AZs by name."""
    assert placement.rank_azs_by_unusedness("inst-1") == ["az-a", "az-b", "az-c"]


def test_rank_prefers_unused_azs(placement, state_store):
    """Test that the least used AZ comes first."""
    place(state_store, "inst-1", "cell-a1", "cell-c1")

    assert placement.rank_azs_by_unusedness("inst-1") == ["az-b", "az-a", "az-c"]


def test_rank_ignores_other_clusters(placement, state_store):
    """Test that only the cluster's own nodes count."""
    place(state_store, "other", "cell-a1", "cell-b1")

    assert placement.rank_azs_by_unusedness("inst-1") == ["az-a", "az-b", "az-c"]


def test_select_backend_in_least_used_az(placement, state_store):
    """Test that the next node lands in the least used AZ."""
    place(state_store, "inst-1", "cell-a1", "cell-c1")

    assert placement.select_backend("inst-1").guid == "cell-b1"


def test_select_backend_prefers_unused_backend_in_az(placement, state_store):
    """Test that within an AZ an unused backend is preferred."""
    place(state_store, "inst-1", "cell-a1", "cell-b1", "cell-c1")

    assert placement.select_backend("inst-1").guid == "cell-a2"


def test_select_backend_reuses_backend_when_az_full(placement, state_store):
    """Test that a used backend is chosen when its AZ has no other."""
    place(state_store, "inst-1", "cell-a1", "cell-a2", "cell-b1", "cell-c1", "cell-a1")

    # az-b and az-c hold one node each, az-a three
    assert placement.select_backend("inst-1").guid == "cell-b1"


def test_select_backend_respects_cells(placement, state_store):
    """Test that requested cells restrict the candidates."""
    place(state_store, "inst-1", "cell-a1")

    backend = placement.select_backend("inst-1", ["cell-a1", "cell-a2"])

    assert backend.guid == "cell-a2"


def test_select_backend_unknown_cells(placement):
    """Test that an empty candidate set is rejected."""
    with pytest.raises(ValidationError):
        placement.select_backend("inst-1", ["cell-z9"])


def test_store_errors_mean_no_usage(placement, state_store):
    """Test that unreadable node records count as an empty cluster."""
    with patch.object(state_store, "node_backend_guids", side_effect=StoreError("down")):
        assert placement.used_backend_guids("inst-1") == []
        assert placement.rank_azs_by_unusedness("inst-1") == ["az-a", "az-b", "az-c"]
