"""Units of work that move a cluster one node closer to its desired topology."""

import logging
import uuid
from abc import ABC, abstractmethod

from pgcluster.backends import Backends
from pgcluster.exceptions import ConsistencyError
from pgcluster.logging_config import get_logger
from pgcluster.models import PRIMARY, REPLICA, ClusterFeatures, ClusterState, Node
from pgcluster.placement import PlacementPlanner
from pgcluster.state import StateStore

logger = get_logger(__name__)


class Step(ABC):
    """A single scheduling action.

    Steps mutate the shared ``ClusterState`` and must run one at a time.
    """

    @property
    @abstractmethod
    def step_type(self) -> str:
        """Short label used in logs and progress messages."""

    @abstractmethod
    def perform(self) -> None:
        """Run the action, raising on failure."""

    def __repr__(self) -> str:
        return self.step_type


class AddNode(Step):
    """Provision one more node on the least used availability zone."""

    def __init__(
        self,
        cluster: ClusterState,
        features: ClusterFeatures,
        placement: PlacementPlanner,
        state_store: StateStore,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.cluster = cluster
        self.features = features
        self.placement = placement
        self.state_store = state_store
        self.logger = log or logger

    @property
    def step_type(self) -> str:
        return "AddNode"

    def perform(self) -> None:
        instance_id = self.cluster.instance_id
        backend = self.placement.select_backend(instance_id, self.features.cell_guids)
        node_id = uuid.uuid4().hex
        role = PRIMARY if self.cluster.primary_node() is None else REPLICA

        self.logger.info(
            f"Adding {role} node {node_id} on backend {backend.guid} "
            f"(AZ {backend.availability_zone})"
        )
        node = backend.provision_node(self.cluster, node_id, role)

        self.cluster.add_node(node)
        self.state_store.record_node(instance_id, node)


class RemoveNode(Step):
    """Deprovision a specific node from its backend."""

    def __init__(
        self,
        node: Node,
        cluster: ClusterState,
        backends: Backends,
        state_store: StateStore,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.node = node
        self.cluster = cluster
        self.backends = backends
        self.state_store = state_store
        self.logger = log or logger

    @property
    def step_type(self) -> str:
        return f"RemoveNode({self.node.id})"

    def perform(self) -> None:
        backend = self.backends.get(self.node.backend_id)
        if backend is None:
            self.logger.error(
                f"Node {self.node.id} is assigned to unknown backend {self.node.backend_id}"
            )
            raise ConsistencyError(
                "Internal error: node assigned to a backend that no longer exists",
                f"node {self.node.id}, backend {self.node.backend_id}",
            )

        self.logger.info(f"Removing {self.node.role} node {self.node.id} from {backend.guid}")
        backend.deprovision_node(self.cluster.instance_id, self.node)

        self.cluster.remove_node(self.node)
        self.state_store.forget_node(self.cluster.instance_id, self.node.id)
