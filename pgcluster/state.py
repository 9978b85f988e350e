"""Persistence of cluster state in the shared key-value store.

Layout, rooted at the instance id::

    /serviceinstances/<instance>/meta                    ClusterState JSON
    /serviceinstances/<instance>/plan_id
    /serviceinstances/<instance>/nodes/<node-id>/backend backend GUID

The store assumes a single writer per instance. Nothing here is transactional
across keys.
"""

from pydantic import ValidationError as PydanticValidationError

from pgcluster.exceptions import KeyNotFoundError, NotFoundError, StoreError
from pgcluster.kvstore import KVStore
from pgcluster.logging_config import get_logger
from pgcluster.models import ClusterState, Node
from pgcluster.router import allocation_key

logger = get_logger(__name__)

INSTANCES_ROOT = "/serviceinstances"


def instance_key(instance_id: str) -> str:
    return f"{INSTANCES_ROOT}/{instance_id}"


def meta_key(instance_id: str) -> str:
    return f"{instance_key(instance_id)}/meta"


def nodes_key(instance_id: str) -> str:
    return f"{instance_key(instance_id)}/nodes"


def node_backend_key(instance_id: str, node_id: str) -> str:
    return f"{nodes_key(instance_id)}/{node_id}/backend"


class StateStore:
    """Load, save and delete cluster snapshots."""

    def __init__(self, store: KVStore):
        self.store = store

    def cluster_exists(self, instance_id: str) -> bool:
        return self.store.exists(meta_key(instance_id))

    def load_cluster(self, instance_id: str) -> ClusterState:
        """Load the persisted snapshot of an instance.

        Raises:
            NotFoundError: If the instance has no snapshot
            StoreError: If the snapshot cannot be read or decoded
        """
        try:
            raw = self.store.get(meta_key(instance_id))
        except KeyNotFoundError:
            raise NotFoundError(f"Service instance {instance_id} doesn't exist")

        try:
            return ClusterState.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error(f"Corrupt cluster snapshot for {instance_id}: {e}")
            raise StoreError(f"Cluster snapshot for {instance_id} is corrupt", str(e))

    def save_cluster(self, cluster: ClusterState) -> None:
        """Overwrite the persisted snapshot and node records of ``cluster``."""
        instance_id = cluster.instance_id
        logger.debug(
            f"Writing state for {instance_id}: {cluster.node_count()} node(s), "
            f"status {cluster.scheduling_info.status}"
        )
        self.store.set(f"{instance_key(instance_id)}/plan_id", cluster.plan_id)
        self.store.set(meta_key(instance_id), cluster.model_dump_json())

        current = {node.id for node in cluster.nodes}
        for node in cluster.nodes:
            self.record_node(instance_id, node)
        for node_id in self._recorded_node_ids(instance_id):
            if node_id not in current:
                self.forget_node(instance_id, node_id)

    def delete_cluster(self, instance_id: str) -> None:
        """Remove the snapshot, all node records and the port-allocation record."""
        logger.info(f"Deleting state for {instance_id}")
        for key in (instance_key(instance_id), allocation_key(instance_id)):
            try:
                self.store.delete(key, recursive=True)
            except KeyNotFoundError:
                logger.debug(f"Nothing to delete at {key}")

    def record_node(self, instance_id: str, node: Node) -> None:
        self.store.set(node_backend_key(instance_id, node.id), node.backend_id)

    def forget_node(self, instance_id: str, node_id: str) -> None:
        try:
            self.store.delete(f"{nodes_key(instance_id)}/{node_id}", recursive=True)
        except KeyNotFoundError:
            logger.debug(f"Node record {node_id} of {instance_id} already gone")

    def _recorded_node_ids(self, instance_id: str) -> list[str]:
        try:
            return [entry.name for entry in self.store.children(nodes_key(instance_id))]
        except KeyNotFoundError:
            return []

    def node_backend_guids(self, instance_id: str) -> list[str]:
        """Follow each recorded node to the backend hosting it.

        Raises:
            StoreError: If the node records cannot be enumerated
        """
        guids = []
        for node_id in self._recorded_node_ids(instance_id):
            guids.append(self.store.get(node_backend_key(instance_id, node_id)))
        return guids

    def list_clusters(self) -> list[str]:
        try:
            entries = self.store.children(INSTANCES_ROOT)
        except KeyNotFoundError:
            return []
        return [entry.name for entry in entries if entry.is_dir]
